"""Ephemeral helper containers that bridge copies into the shared volume."""

from __future__ import annotations

import logging
import re
import time
import uuid
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from typing import TypeVar

from i2p_testnet.config import Settings
from i2p_testnet.errors import (
    SandboxCommandError,
    SandboxCreateFailed,
    SandboxStartFailed,
    SandboxTimeout,
    TransferFailed,
)
from i2p_testnet.models import ContainerSpec, ExecResult, HelperSandbox, HelperState
from i2p_testnet.sandbox.docker import SandboxControl

HELPER_NAME_PREFIX = "netdb-helper"

T = TypeVar("T")

logger = logging.getLogger(__name__)
teardown_logger = logging.getLogger(f"{__name__}.teardown")

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_.-]+")


def helper_name(label: str | None = None) -> str:
    """Unique container name: ``netdb-helper[-<label>]-<nonce>``."""
    nonce = uuid.uuid4().hex[:12]
    cleaned = _UNSAFE_NAME_CHARS.sub("-", label or "").strip("-.")[:24]
    if cleaned:
        return f"{HELPER_NAME_PREFIX}-{cleaned}-{nonce}"
    return f"{HELPER_NAME_PREFIX}-{nonce}"


class Deadline:
    """Caps each primitive call by the step timeout and the time left overall."""

    def __init__(self, step_seconds: float, total_seconds: float | None = None) -> None:
        self.step_seconds = step_seconds
        self._expires_at = None if total_seconds is None else time.monotonic() + total_seconds

    def remaining(self) -> float | None:
        if self._expires_at is None:
            return None
        return self._expires_at - time.monotonic()

    def budget(self, what: str) -> float:
        remaining = self.remaining()
        if remaining is None:
            return self.step_seconds
        if remaining <= 0:
            raise TransferFailed(f"deadline exceeded before {what}")
        return min(self.step_seconds, remaining)


class HelperHandle:
    """Operations on a live helper; valid only while the helper is in use."""

    def __init__(self, control: SandboxControl, sandbox: HelperSandbox, deadline: Deadline) -> None:
        self._control = control
        self._sandbox = sandbox
        self._deadline = deadline

    @property
    def name(self) -> str:
        return self._sandbox.name

    @property
    def state(self) -> HelperState:
        return self._sandbox.state

    def _require_live(self, what: str) -> str:
        if self._sandbox.state is not HelperState.IN_USE:
            raise TransferFailed(f"cannot {what}: helper {self._sandbox.name} is {self._sandbox.state.value}")
        return self._sandbox.handle

    def copy_archive_in(self, dest_path: str, archive: bytes) -> None:
        handle = self._require_live("copy into helper")
        try:
            self._control.copy_into(handle, dest_path, archive, timeout=self._deadline.budget("copy in"))
        except SandboxCommandError as exc:
            raise TransferFailed(f"copy into {self.name}:{dest_path} failed: {exc}") from exc

    def copy_archive_out(self, src_path: str) -> bytes:
        handle = self._require_live("copy out of helper")
        try:
            archive, _ = self._control.copy_from(handle, src_path, timeout=self._deadline.budget("copy out"))
        except SandboxCommandError as exc:
            raise TransferFailed(f"copy out of {self.name}:{src_path} failed: {exc}") from exc
        return archive

    def run_command(self, argv: Sequence[str]) -> ExecResult:
        handle = self._require_live("run a command in helper")
        if not argv:
            raise TransferFailed(f"refusing to run an empty command in {self.name}")
        try:
            return self._control.execute(handle, list(argv), timeout=self._deadline.budget(argv[0]))
        except SandboxCommandError as exc:
            raise TransferFailed(f"{' '.join(argv)} in {self.name} failed: {exc}") from exc

    def ensure_directory(self, path: str) -> None:
        result = self.run_command(["mkdir", "-p", path])
        if not result.ok:
            raise TransferFailed(
                f"mkdir -p {path} in {self.name} exited {result.exit_code}: {result.stderr.strip()}"
            )


class TransferAgent:
    """Creates one disposable helper per transfer and always removes it.

    Lifecycle: created, started, in use, torn down. Teardown is a forced
    removal issued from a ``finally`` block, so it also runs when the caller
    raises or is interrupted. Removal problems are reported on the
    ``teardown`` child logger and never replace the transfer's own outcome.
    """

    def __init__(self, control: SandboxControl, settings: Settings) -> None:
        self._control = control
        self._settings = settings

    def _create(self, sandbox: HelperSandbox, deadline: Deadline) -> None:
        spec = ContainerSpec(
            image=self._settings.helper_image,
            command=sandbox.command,
            name=sandbox.name,
            binds=((sandbox.volume, sandbox.mount_point),),
        )
        try:
            container_id = self._control.create(spec, timeout=deadline.budget("create"))
        except SandboxTimeout as exc:
            # The daemon may still have created it under our name.
            sandbox.state = HelperState.CREATED
            raise TransferFailed(f"creating helper {sandbox.name} timed out: {exc}") from exc
        except SandboxCommandError as exc:
            raise SandboxCreateFailed(f"error creating helper container {sandbox.name}: {exc}") from exc
        sandbox.container_id = container_id or None
        sandbox.state = HelperState.CREATED
        logger.debug("Created helper %s (%s) on volume %s", sandbox.name, sandbox.handle, sandbox.volume)

    def _start(self, sandbox: HelperSandbox, deadline: Deadline) -> None:
        try:
            self._control.start(sandbox.handle, timeout=deadline.budget("start"))
        except SandboxTimeout as exc:
            raise TransferFailed(f"starting helper {sandbox.name} timed out: {exc}") from exc
        except SandboxCommandError as exc:
            raise SandboxStartFailed(f"error starting helper container {sandbox.name}: {exc}") from exc
        sandbox.state = HelperState.STARTED

    def _teardown(self, sandbox: HelperSandbox) -> None:
        if sandbox.state is HelperState.PENDING:
            sandbox.state = HelperState.TORN_DOWN
            return
        try:
            self._control.remove(
                sandbox.handle,
                force=True,
                timeout=self._settings.teardown_timeout_seconds,
            )
            logger.debug("Removed helper %s", sandbox.name)
        except Exception as exc:  # noqa: BLE001
            teardown_logger.warning(
                "Failed to remove helper container %s (%s); abandoning it: %s",
                sandbox.name,
                sandbox.handle,
                exc,
            )
        finally:
            sandbox.state = HelperState.TORN_DOWN

    @contextmanager
    def helper(
        self,
        volume: str,
        label: str | None = None,
        timeout: float | None = None,
    ) -> Iterator[HelperHandle]:
        sandbox = HelperSandbox(
            name=helper_name(label),
            volume=volume,
            mount_point=self._settings.shared_mount,
            command=tuple(self._settings.helper_command),
        )
        deadline = Deadline(self._settings.timeout_seconds, timeout)
        try:
            self._create(sandbox, deadline)
            self._start(sandbox, deadline)
            sandbox.state = HelperState.IN_USE
            yield HelperHandle(self._control, sandbox, deadline)
        finally:
            self._teardown(sandbox)

    def with_helper(
        self,
        volume: str,
        fn: Callable[[HelperHandle], T],
        label: str | None = None,
        timeout: float | None = None,
    ) -> T:
        with self.helper(volume, label=label, timeout=timeout) as handle:
            return fn(handle)
