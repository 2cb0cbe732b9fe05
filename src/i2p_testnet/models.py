"""Shared typed models used across the sandbox, netDb and sync layers."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import NamedTuple

ROUTER_INFO_PREFIX = "routerInfo-"
ROUTER_INFO_SUFFIX = ".dat"


def router_info_filename(encoded_hash: str) -> str:
    return f"{ROUTER_INFO_PREFIX}{encoded_hash}{ROUTER_INFO_SUFFIX}"


class ArchiveEntry(NamedTuple):
    path: str
    data: bytes = b""
    is_dir: bool = False


@dataclass(frozen=True)
class PathStat:
    name: str
    size: int
    mode: int
    is_dir: bool

    @property
    def is_regular(self) -> bool:
        return not self.is_dir


@dataclass(frozen=True)
class ExecResult:
    stdout: str
    stderr: str
    exit_code: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class ContainerSpec:
    image: str
    command: tuple[str, ...]
    name: str | None = None
    binds: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True)
class RouterAddress:
    cost: int
    expiration: int
    transport_style: str
    options: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class IdentityRecord:
    raw_bytes: bytes
    identity_hash: bytes
    encoded_hash: str
    published: int = 0
    signature_type: int = 0
    addresses: tuple[RouterAddress, ...] = ()
    options: dict[str, str] = field(default_factory=dict)

    @property
    def filename(self) -> str:
        return router_info_filename(self.encoded_hash)

    @property
    def caps(self) -> str:
        return self.options.get("caps", "")


class HelperState(enum.Enum):
    PENDING = "pending"
    CREATED = "created"
    STARTED = "started"
    IN_USE = "in_use"
    TORN_DOWN = "torn_down"


@dataclass
class HelperSandbox:
    """Lifecycle record of one helper container, owned by a single transfer."""

    name: str
    volume: str
    mount_point: str
    command: tuple[str, ...]
    container_id: str | None = None
    state: HelperState = HelperState.PENDING

    @property
    def handle(self) -> str:
        return self.container_id or self.name


@dataclass(frozen=True)
class NodeOutcome:
    node: str
    verb: str
    ok: bool
    detail: str = ""
    error_type: str | None = None
