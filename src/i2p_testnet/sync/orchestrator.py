"""NetDb sync verbs between node containers and the shared volume."""

from __future__ import annotations

import logging
import posixpath
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field

from i2p_testnet.archive import decode, encode, rebase
from i2p_testnet.config import Settings
from i2p_testnet.errors import (
    ArchiveCorrupt,
    ArchiveIOError,
    SandboxCommandError,
    SandboxPathNotFound,
    SyncError,
    TransferFailed,
)
from i2p_testnet.models import ArchiveEntry, IdentityRecord, NodeOutcome
from i2p_testnet.netdb.routerinfo import IdentityRecordReader
from i2p_testnet.netdb.sharding import ShardingScheme, scheme_by_name
from i2p_testnet.registry import NodeRegistry
from i2p_testnet.sandbox.docker import SandboxControl
from i2p_testnet.sync.helper import Deadline, HelperHandle, TransferAgent

VERB_PUBLISH = "publish"
VERB_PUSH = "push"
VERB_PULL = "pull"
VERBS = (VERB_PUBLISH, VERB_PUSH, VERB_PULL)

logger = logging.getLogger(__name__)


def _decode_subtree(archive: bytes, origin: str) -> list[ArchiveEntry]:
    try:
        return rebase(decode(archive))
    except (ArchiveCorrupt, ArchiveIOError) as exc:
        raise TransferFailed(f"archive copied from {origin} is unreadable: {exc}") from exc


def _file_count(entries: Sequence[ArchiveEntry]) -> int:
    return sum(1 for entry in entries if not entry.is_dir)


class NetDbSyncOrchestrator:
    """Public sync verbs, one node per call.

    Holds collaborators and settings only; every call works from the node
    handle and shared volume it is given.
    """

    def __init__(
        self,
        control: SandboxControl,
        settings: Settings,
        reader: IdentityRecordReader | None = None,
        scheme: ShardingScheme | None = None,
        agent: TransferAgent | None = None,
    ) -> None:
        self._control = control
        self._settings = settings
        self._reader = reader or IdentityRecordReader(control, timeout=settings.timeout_seconds)
        self._scheme = scheme or scheme_by_name(settings.shard_scheme)
        self._agent = agent or TransferAgent(control, settings)

    @property
    def scheme(self) -> ShardingScheme:
        return self._scheme

    def extract_identity_record(
        self,
        node: str,
        record_path: str | None = None,
        timeout: float | None = None,
    ) -> IdentityRecord:
        return self._reader.extract(node, record_path or self._settings.router_info_path, timeout=timeout)

    def _deadline(self, timeout: float | None) -> Deadline:
        return Deadline(self._settings.timeout_seconds, timeout)

    def publish_record(self, node: str, shared_volume: str, timeout: float | None = None) -> str:
        """Write the node's own RouterInfo into its shard of the shared store.

        ``timeout`` bounds the whole verb; each docker call is also capped by
        the per-call timeout from settings.
        """
        deadline = self._deadline(timeout)
        record = self.extract_identity_record(node, timeout=deadline.budget("extract"))
        shard = self._scheme.shard_for(record.encoded_hash)
        root = self._settings.shared_netdb_root
        archive = encode([ArchiveEntry(f"{shard}/{record.filename}", record.raw_bytes)])

        def _publish(helper: HelperHandle) -> None:
            helper.ensure_directory(posixpath.join(root, shard))
            helper.copy_archive_in(root, archive)

        self._agent.with_helper(shared_volume, _publish, label=node, timeout=deadline.remaining())
        target = posixpath.join(root, shard, record.filename)
        logger.info("Published %s from %s to %s:%s", record.filename, node, shared_volume, target)
        return target

    def push_node_db_to_shared(self, node: str, shared_volume: str, timeout: float | None = None) -> int:
        """Merge the node's whole netDb directory into the shared store."""
        deadline = self._deadline(timeout)
        source = self._settings.node_netdb_path
        try:
            archive, stat = self._control.copy_from(node, source, timeout=deadline.budget("copy out of node"))
        except SandboxPathNotFound as exc:
            raise TransferFailed(f"{node} has no netDb at {source}") from exc
        except (SandboxCommandError, ArchiveCorrupt, ArchiveIOError) as exc:
            raise TransferFailed(f"copying {source} out of {node} failed: {exc}") from exc
        if not stat.is_dir:
            raise TransferFailed(f"{source} in {node} is not a directory")
        entries = _decode_subtree(archive, f"{node}:{source}")
        root = self._settings.shared_netdb_root

        def _push(helper: HelperHandle) -> None:
            helper.ensure_directory(root)
            if entries:
                helper.copy_archive_in(root, encode(entries))

        self._agent.with_helper(shared_volume, _push, label=node, timeout=deadline.remaining())
        files = _file_count(entries)
        logger.info("Pushed %d netDb files from %s to %s", files, node, shared_volume)
        return files

    def pull_shared_to_node_db(self, node: str, shared_volume: str, timeout: float | None = None) -> int:
        """Copy the shared store into the node's netDb, keeping local-only files."""
        deadline = self._deadline(timeout)
        root = self._settings.shared_netdb_root

        def _read_store(helper: HelperHandle) -> bytes:
            helper.ensure_directory(root)
            return helper.copy_archive_out(root)

        archive = self._agent.with_helper(
            shared_volume,
            _read_store,
            label=node,
            timeout=deadline.remaining(),
        )
        entries = _decode_subtree(archive, f"{shared_volume}:{root}")
        if not entries:
            logger.info("Shared store on %s is empty; nothing to pull into %s", shared_volume, node)
            return 0

        destination = self._settings.node_netdb_path
        try:
            result = self._control.execute(
                node,
                ["mkdir", "-p", destination],
                timeout=deadline.budget("mkdir in node"),
            )
            if not result.ok:
                raise TransferFailed(
                    f"mkdir -p {destination} in {node} exited {result.exit_code}: {result.stderr.strip()}"
                )
            self._control.copy_into(node, destination, encode(entries), timeout=deadline.budget("copy into node"))
        except SandboxCommandError as exc:
            raise TransferFailed(f"copying shared netDb into {node}:{destination} failed: {exc}") from exc
        files = _file_count(entries)
        logger.info("Pulled %d netDb files from %s into %s", files, shared_volume, node)
        return files

    def run_verb(self, verb: str, node: str, shared_volume: str, timeout: float | None = None) -> str:
        if verb == VERB_PUBLISH:
            return self.publish_record(node, shared_volume, timeout=timeout)
        if verb == VERB_PUSH:
            return f"{self.push_node_db_to_shared(node, shared_volume, timeout=timeout)} files pushed"
        if verb == VERB_PULL:
            return f"{self.pull_shared_to_node_db(node, shared_volume, timeout=timeout)} files pulled"
        raise ValueError(f"Unknown sync verb {verb!r} (expected one of: {', '.join(VERBS)})")


@dataclass(frozen=True)
class SyncPassReport:
    shared_volume: str
    verbs: tuple[str, ...]
    outcomes: list[NodeOutcome] = field(default_factory=list)
    cancelled: bool = False

    @property
    def error_count(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.ok)

    def as_payload(self) -> dict[str, object]:
        return {
            "shared_volume": self.shared_volume,
            "verbs": list(self.verbs),
            "cancelled": self.cancelled,
            "error_count": self.error_count,
            "outcomes": [
                {
                    "node": outcome.node,
                    "verb": outcome.verb,
                    "ok": outcome.ok,
                    "detail": outcome.detail,
                    "error_type": outcome.error_type,
                }
                for outcome in self.outcomes
            ],
        }


def run_sync_pass(
    orchestrator: NetDbSyncOrchestrator,
    registry: NodeRegistry,
    verbs: Sequence[str] = (VERB_PUBLISH, VERB_PULL),
    cancel: threading.Event | None = None,
    node_timeout: float | None = None,
) -> SyncPassReport:
    """Run each verb over every registered node, verb by verb.

    A failing node is recorded and the pass moves on. Cancellation is
    checked between nodes; an operation already in flight finishes first.
    ``node_timeout`` bounds each verb on each node.
    """
    for verb in verbs:
        if verb not in VERBS:
            raise ValueError(f"Unknown sync verb {verb!r} (expected one of: {', '.join(VERBS)})")
    outcomes: list[NodeOutcome] = []
    nodes = registry.nodes()
    for verb in verbs:
        for node in nodes:
            if cancel is not None and cancel.is_set():
                logger.warning("Sync pass cancelled before %s on %s", verb, node)
                return SyncPassReport(
                    shared_volume=registry.shared_volume,
                    verbs=tuple(verbs),
                    outcomes=outcomes,
                    cancelled=True,
                )
            try:
                detail = orchestrator.run_verb(verb, node, registry.shared_volume, timeout=node_timeout)
            except SyncError as exc:
                logger.error("%s failed for %s: %s", verb, node, exc)
                outcomes.append(
                    NodeOutcome(node=node, verb=verb, ok=False, detail=str(exc), error_type=type(exc).__name__)
                )
                continue
            outcomes.append(NodeOutcome(node=node, verb=verb, ok=True, detail=detail))
    report = SyncPassReport(shared_volume=registry.shared_volume, verbs=tuple(verbs), outcomes=outcomes)
    logger.info(
        "Sync pass complete: nodes=%d verbs=%s errors=%d",
        len(nodes),
        ",".join(verbs),
        report.error_count,
    )
    return report
