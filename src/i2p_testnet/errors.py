"""Error taxonomy shared by the sandbox primitive and the sync engine."""

from __future__ import annotations

from collections.abc import Sequence


class SyncError(Exception):
    """Base class for every failure surfaced to the control process."""


class RecordUnavailable(SyncError):
    pass


class RecordMalformed(SyncError):
    pass


class InvalidHash(SyncError, ValueError):
    pass


class ArchiveCorrupt(SyncError):
    pass


class ArchiveIOError(SyncError, OSError):
    pass


class SandboxCreateFailed(SyncError):
    pass


class SandboxStartFailed(SyncError):
    pass


class TransferFailed(SyncError):
    pass


class SandboxCommandError(SyncError):
    """A docker command exited non-zero."""

    def __init__(
        self,
        argv: Sequence[str],
        returncode: int | None,
        stderr: str = "",
    ) -> None:
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr.strip()
        command = " ".join(self.argv[:3])
        super().__init__(f"{command} failed (exit={returncode}): {self.stderr or 'no output'}")


class SandboxPathNotFound(SandboxCommandError):
    pass


class SandboxTimeout(SandboxCommandError):
    def __init__(self, argv: Sequence[str], timeout: float | None) -> None:
        self.timeout = timeout
        super().__init__(argv, None, f"timed out after {timeout}s")


def is_not_found(stderr: str) -> bool:
    """Check if docker stderr output means a path inside a container is missing.

    ``docker cp`` reports ``Could not find the file ...`` or
    ``No such container:path`` depending on the daemon version. A missing
    container (``No such container: NAME``) is not a missing path.
    """
    lowered = stderr.lower()
    return (
        "could not find the file" in lowered
        or "no such container:path" in lowered
        or "no such file or directory" in lowered
    )
