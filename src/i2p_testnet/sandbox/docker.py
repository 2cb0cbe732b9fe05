"""Docker command-line implementation of the sandbox control primitive."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence
from typing import Protocol

from i2p_testnet.archive import peek_stat
from i2p_testnet.errors import SandboxCommandError, SandboxPathNotFound, SandboxTimeout, is_not_found
from i2p_testnet.models import ContainerSpec, ExecResult, PathStat

logger = logging.getLogger(__name__)


class SandboxControl(Protocol):
    def create(self, spec: ContainerSpec, timeout: float | None = None) -> str:
        ...

    def start(self, handle: str, timeout: float | None = None) -> None:
        ...

    def stop(self, handle: str, grace_seconds: int = 10, timeout: float | None = None) -> None:
        ...

    def remove(self, handle: str, force: bool = True, timeout: float | None = None) -> None:
        ...

    def execute(self, handle: str, argv: Sequence[str], timeout: float | None = None) -> ExecResult:
        ...

    def copy_into(self, handle: str, dest_path: str, archive: bytes, timeout: float | None = None) -> None:
        ...

    def copy_from(self, handle: str, src_path: str, timeout: float | None = None) -> tuple[bytes, PathStat]:
        ...


class ProvisioningControl(SandboxControl, Protocol):
    def remove_volume(self, name: str, timeout: float | None = None) -> None:
        ...

    def remove_network(self, name: str, timeout: float | None = None) -> None:
        ...


class DockerCli:
    """Drives containers through the ``docker`` binary.

    Archive transfers use ``docker cp`` with ``-`` so tar streams flow over
    stdin/stdout; nothing is staged on the host filesystem.
    """

    def __init__(self, binary: str = "docker") -> None:
        self.binary = binary

    def _run(
        self,
        args: Sequence[str],
        timeout: float | None,
        stdin: bytes | None = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess:
        argv = [self.binary, *args]
        logger.debug("Running %s", " ".join(argv))
        try:
            completed = subprocess.run(
                argv,
                input=stdin,
                capture_output=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise SandboxTimeout(argv, timeout) from exc
        except OSError as exc:
            raise SandboxCommandError(argv, None, f"cannot run docker binary {self.binary}: {exc}") from exc
        if check and completed.returncode != 0:
            stderr = completed.stderr.decode("utf-8", errors="replace")
            if is_not_found(stderr):
                raise SandboxPathNotFound(argv, completed.returncode, stderr)
            raise SandboxCommandError(argv, completed.returncode, stderr)
        return completed

    def create(self, spec: ContainerSpec, timeout: float | None = None) -> str:
        args = ["create"]
        if spec.name:
            args.extend(["--name", spec.name])
        for source, target in spec.binds:
            args.extend(["-v", f"{source}:{target}"])
        args.append(spec.image)
        args.extend(spec.command)
        completed = self._run(args, timeout)
        return completed.stdout.decode("utf-8", errors="replace").strip()

    def start(self, handle: str, timeout: float | None = None) -> None:
        self._run(["start", handle], timeout)

    def stop(self, handle: str, grace_seconds: int = 10, timeout: float | None = None) -> None:
        self._run(["stop", "-t", str(int(grace_seconds)), handle], timeout)

    def remove(self, handle: str, force: bool = True, timeout: float | None = None) -> None:
        args = ["rm", "-f", handle] if force else ["rm", handle]
        self._run(args, timeout)

    def execute(self, handle: str, argv: Sequence[str], timeout: float | None = None) -> ExecResult:
        completed = self._run(["exec", handle, *argv], timeout, check=False)
        return ExecResult(
            stdout=completed.stdout.decode("utf-8", errors="replace"),
            stderr=completed.stderr.decode("utf-8", errors="replace"),
            exit_code=int(completed.returncode),
        )

    def copy_into(self, handle: str, dest_path: str, archive: bytes, timeout: float | None = None) -> None:
        self._run(["cp", "-", f"{handle}:{dest_path}"], timeout, stdin=archive)

    def copy_from(self, handle: str, src_path: str, timeout: float | None = None) -> tuple[bytes, PathStat]:
        completed = self._run(["cp", f"{handle}:{src_path}", "-"], timeout)
        archive = bytes(completed.stdout)
        return archive, peek_stat(archive)

    def remove_volume(self, name: str, timeout: float | None = None) -> None:
        self._run(["volume", "rm", name], timeout)

    def remove_network(self, name: str, timeout: float | None = None) -> None:
        self._run(["network", "rm", name], timeout)
