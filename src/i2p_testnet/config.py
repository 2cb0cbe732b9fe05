"""Configuration handling for testnet netDb synchronization."""

from __future__ import annotations

import os
import posixpath
from dataclasses import dataclass

from i2p_testnet.netdb.sharding import scheme_by_name

DEFAULT_DOCKER_BINARY = "docker"
DEFAULT_HELPER_IMAGE = "alpine"
DEFAULT_HELPER_COMMAND = ("sleep", "3600")
DEFAULT_SHARED_VOLUME = "go-i2p-testnet-shared"
DEFAULT_SHARED_MOUNT = "/shared"
DEFAULT_STORE_DIRECTORY = "netDb"
DEFAULT_NODE_NETDB_PATH = "/root/.i2pd/netDb"
DEFAULT_ROUTER_INFO_PATH = "/root/.i2pd/router.info"
DEFAULT_SHARD_SCHEME = "i2p"
DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_TEARDOWN_TIMEOUT_SECONDS = 15.0

_DEBUG_LEVELS = {
    "debug": "DEBUG",
    "info": "INFO",
    "warn": "WARNING",
    "warning": "WARNING",
    "error": "ERROR",
}


@dataclass(frozen=True)
class Settings:
    docker_binary: str
    helper_image: str
    helper_command: tuple[str, ...]
    shared_volume: str
    shared_mount: str
    store_directory: str
    node_netdb_path: str
    router_info_path: str
    shard_scheme: str
    timeout_seconds: float
    teardown_timeout_seconds: float
    log_level: str

    @property
    def shared_netdb_root(self) -> str:
        return posixpath.join(self.shared_mount, self.store_directory)


def _env_or_default(name: str, default: str) -> str:
    value = os.getenv(name, "").strip()
    return value or default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number of seconds, got {raw!r}") from exc


def resolve_log_level(level: str | None) -> str:
    """Pick the log level from the CLI, then DEBUG_TESTNET, then WARNING."""
    if level:
        return level.upper()
    debug = os.getenv("DEBUG_TESTNET", "").strip().lower()
    if not debug:
        return "WARNING"
    return _DEBUG_LEVELS.get(debug, "DEBUG")


def resolve_container_path(path: str, label: str) -> str:
    normalized = posixpath.normpath(path.strip())
    if not normalized.startswith("/"):
        raise ValueError(f"{label} must be an absolute container path: {path!r}")
    return normalized


def build_settings(
    docker_binary: str | None = None,
    helper_image: str | None = None,
    shared_volume: str | None = None,
    shard_scheme: str | None = None,
    timeout_seconds: float | None = None,
    teardown_timeout_seconds: float | None = None,
    log_level: str | None = None,
    node_netdb_path: str = DEFAULT_NODE_NETDB_PATH,
    router_info_path: str = DEFAULT_ROUTER_INFO_PATH,
    shared_mount: str = DEFAULT_SHARED_MOUNT,
    helper_command: tuple[str, ...] = DEFAULT_HELPER_COMMAND,
) -> Settings:
    timeout = (
        timeout_seconds
        if timeout_seconds is not None
        else _float_env("TESTNET_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS)
    )
    teardown_timeout = (
        teardown_timeout_seconds
        if teardown_timeout_seconds is not None
        else _float_env("TESTNET_TEARDOWN_TIMEOUT_SECONDS", DEFAULT_TEARDOWN_TIMEOUT_SECONDS)
    )
    if timeout <= 0:
        raise ValueError(f"timeout must be positive, got {timeout}")
    if teardown_timeout <= 0:
        raise ValueError(f"teardown timeout must be positive, got {teardown_timeout}")
    if not helper_command:
        raise ValueError("helper command must not be empty")
    scheme = scheme_by_name(shard_scheme or _env_or_default("TESTNET_SHARD_SCHEME", DEFAULT_SHARD_SCHEME))
    return Settings(
        docker_binary=docker_binary or _env_or_default("TESTNET_DOCKER_BIN", DEFAULT_DOCKER_BINARY),
        helper_image=helper_image or _env_or_default("TESTNET_HELPER_IMAGE", DEFAULT_HELPER_IMAGE),
        helper_command=tuple(helper_command),
        shared_volume=shared_volume or _env_or_default("TESTNET_SHARED_VOLUME", DEFAULT_SHARED_VOLUME),
        shared_mount=resolve_container_path(shared_mount, "shared mount"),
        store_directory=DEFAULT_STORE_DIRECTORY,
        node_netdb_path=resolve_container_path(node_netdb_path, "node netDb path"),
        router_info_path=resolve_container_path(router_info_path, "router info path"),
        shard_scheme=scheme.name,
        timeout_seconds=float(timeout),
        teardown_timeout_seconds=float(teardown_timeout),
        log_level=resolve_log_level(log_level),
    )
