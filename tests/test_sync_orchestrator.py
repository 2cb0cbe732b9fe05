from __future__ import annotations

import tempfile
import threading
import unittest
from pathlib import Path

from i2p_testnet.config import build_settings
from i2p_testnet.errors import RecordUnavailable, SandboxCommandError, TransferFailed
from i2p_testnet.models import IdentityRecord
from i2p_testnet.netdb.routerinfo import encode_hash
from i2p_testnet.registry import NodeRegistry
from i2p_testnet.sync.orchestrator import (
    VERB_PUBLISH,
    VERB_PULL,
    VERB_PUSH,
    NetDbSyncOrchestrator,
    run_sync_pass,
)
from tests.fakes import FakeSandboxControl, build_router_info, identity_hash_of

ROUTER_INFO = "/root/.i2pd/router.info"
NODE_NETDB = "/root/.i2pd/netDb"
SEQUENTIAL_FILENAME = "routerInfo-AAECAwQFBgcICQoLDA0ODxAREhMUFRYXGBkaGxwdHh8=.dat"


class _StubReader:
    def __init__(self, record: IdentityRecord) -> None:
        self.record = record
        self.calls: list[tuple[str, str]] = []

    def extract(self, node: str, record_path: str, timeout: float | None = None) -> IdentityRecord:
        self.calls.append((node, record_path))
        return self.record


class _CancelAfterFirst:
    def __init__(self, orchestrator: NetDbSyncOrchestrator, cancel: threading.Event) -> None:
        self._orchestrator = orchestrator
        self._cancel = cancel
        self.seen: list[tuple[str, str]] = []

    def run_verb(self, verb: str, node: str, shared_volume: str, timeout: float | None = None) -> str:
        self.seen.append((verb, node))
        self._cancel.set()
        return self._orchestrator.run_verb(verb, node, shared_volume, timeout=timeout)


class OrchestratorTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.control = FakeSandboxControl(Path(self._tmp.name))
        self.settings = build_settings(
            shared_volume="shared-vol",
            shard_scheme="i2p",
            timeout_seconds=10.0,
            log_level="WARNING",
        )
        self.orchestrator = NetDbSyncOrchestrator(self.control, self.settings)

    def add_router(self, name: str, seed: int) -> bytes:
        self.control.add_node(name)
        raw = build_router_info(seed=seed)
        self.control.write_file(name, ROUTER_INFO, raw)
        return raw

    def store_files(self) -> list[str]:
        base = self.control.volume_path("shared-vol") / "netDb"
        if not base.exists():
            return []
        return sorted(p.relative_to(base).as_posix() for p in base.rglob("*") if p.is_file())


class PublishRecordTests(OrchestratorTestCase):
    def test_publish_writes_record_into_its_shard(self) -> None:
        self.control.add_node("router-a")
        raw = b"\x01router-info-bytes\xff"
        record = IdentityRecord(
            raw_bytes=raw,
            identity_hash=bytes(range(32)),
            encoded_hash=encode_hash(bytes(range(32))),
        )
        reader = _StubReader(record)
        orchestrator = NetDbSyncOrchestrator(self.control, self.settings, reader=reader)

        target = orchestrator.publish_record("router-a", "shared-vol")

        self.assertEqual(target, f"/shared/netDb/rA/{SEQUENTIAL_FILENAME}")
        stored = self.control.volume_path("shared-vol") / "netDb" / "rA" / SEQUENTIAL_FILENAME
        self.assertEqual(stored.read_bytes(), raw)
        self.assertEqual(reader.calls, [("router-a", ROUTER_INFO)])
        self.assertEqual(self.control.helpers(), [])

    def test_publish_uses_raw_scheme_when_selected(self) -> None:
        self.control.add_node("router-a")
        record = IdentityRecord(
            raw_bytes=b"x",
            identity_hash=bytes(range(32)),
            encoded_hash=encode_hash(bytes(range(32))),
        )
        settings = build_settings(shared_volume="shared-vol", shard_scheme="raw", log_level="WARNING")
        orchestrator = NetDbSyncOrchestrator(self.control, settings, reader=_StubReader(record))

        target = orchestrator.publish_record("router-a", "shared-vol")

        self.assertEqual(target, f"/shared/netDb/AA/{SEQUENTIAL_FILENAME}")

    def test_publish_parses_real_router_info(self) -> None:
        raw = self.add_router("router-a", seed=4)
        encoded = encode_hash(identity_hash_of(raw))

        target = self.orchestrator.publish_record("router-a", "shared-vol")

        self.assertEqual(target, f"/shared/netDb/r{encoded[0]}/routerInfo-{encoded}.dat")
        self.assertEqual(self.store_files(), [f"r{encoded[0]}/routerInfo-{encoded}.dat"])

    def test_publish_twice_leaves_one_identical_file(self) -> None:
        raw = self.add_router("router-a", seed=4)
        self.orchestrator.publish_record("router-a", "shared-vol")
        self.orchestrator.publish_record("router-a", "shared-vol")

        files = self.store_files()
        self.assertEqual(len(files), 1)
        stored = self.control.volume_path("shared-vol") / "netDb" / files[0]
        self.assertEqual(stored.read_bytes(), raw)
        self.assertEqual(len(self.control.created_helper_names()), 2)
        self.assertEqual(self.control.helpers(), [])

    def test_extraction_failure_skips_helper(self) -> None:
        self.control.add_node("router-a")
        with self.assertRaises(RecordUnavailable):
            self.orchestrator.publish_record("router-a", "shared-vol")
        self.assertEqual(self.control.created_helper_names(), [])
        self.assertEqual(self.store_files(), [])

    def test_missing_node_is_transfer_failed(self) -> None:
        with self.assertRaises(TransferFailed) as ctx:
            self.orchestrator.publish_record("ghost", "shared-vol")
        self.assertNotIsInstance(ctx.exception, RecordUnavailable)
        self.assertEqual(self.control.created_helper_names(), [])

    def test_copy_failure_is_transfer_failed_and_helper_removed(self) -> None:
        self.add_router("router-a", seed=4)
        self.control.fail_on("copy_into", SandboxCommandError(["docker", "cp"], 1, "disk full"))
        with self.assertRaises(TransferFailed):
            self.orchestrator.publish_record("router-a", "shared-vol")
        self.assertEqual(self.control.helpers(), [])


class PushPullTests(OrchestratorTestCase):
    def test_push_merges_into_store(self) -> None:
        shared = self.control.volume_path("shared-vol") / "netDb" / "rX"
        shared.mkdir(parents=True)
        (shared / "routerInfo-X.dat").write_bytes(b"existing")
        self.control.add_node("router-a")
        self.control.write_file("router-a", f"{NODE_NETDB}/rY/routerInfo-Y.dat", b"y")
        self.control.write_file("router-a", f"{NODE_NETDB}/rZ/routerInfo-Z.dat", b"z")

        count = self.orchestrator.push_node_db_to_shared("router-a", "shared-vol")

        self.assertEqual(count, 2)
        self.assertEqual(
            self.store_files(),
            ["rX/routerInfo-X.dat", "rY/routerInfo-Y.dat", "rZ/routerInfo-Z.dat"],
        )
        self.assertEqual((shared / "routerInfo-X.dat").read_bytes(), b"existing")
        self.assertEqual(self.control.helpers(), [])

    def test_push_overwrites_same_named_file(self) -> None:
        shared = self.control.volume_path("shared-vol") / "netDb" / "rY"
        shared.mkdir(parents=True)
        (shared / "routerInfo-Y.dat").write_bytes(b"old")
        self.control.add_node("router-a")
        self.control.write_file("router-a", f"{NODE_NETDB}/rY/routerInfo-Y.dat", b"new")

        self.orchestrator.push_node_db_to_shared("router-a", "shared-vol")

        self.assertEqual((shared / "routerInfo-Y.dat").read_bytes(), b"new")

    def test_push_without_local_netdb_fails(self) -> None:
        self.control.add_node("router-a")
        with self.assertRaises(TransferFailed):
            self.orchestrator.push_node_db_to_shared("router-a", "shared-vol")
        self.assertEqual(self.control.created_helper_names(), [])

    def test_pull_is_additive(self) -> None:
        shared = self.control.volume_path("shared-vol") / "netDb"
        (shared / "rA").mkdir(parents=True)
        (shared / "rA" / "routerInfo-A.dat").write_bytes(b"a")
        (shared / "rB").mkdir()
        (shared / "rB" / "routerInfo-B.dat").write_bytes(b"b")
        self.control.add_node("router-c")
        self.control.write_file("router-c", f"{NODE_NETDB}/rC/routerInfo-C.dat", b"local")

        count = self.orchestrator.pull_shared_to_node_db("router-c", "shared-vol")

        self.assertEqual(count, 2)
        self.assertEqual(
            self.control.list_files("router-c", NODE_NETDB),
            ["rA/routerInfo-A.dat", "rB/routerInfo-B.dat", "rC/routerInfo-C.dat"],
        )
        self.assertEqual(self.control.read_file("router-c", f"{NODE_NETDB}/rC/routerInfo-C.dat"), b"local")
        self.assertEqual(self.control.helpers(), [])

    def test_pull_creates_missing_node_netdb(self) -> None:
        shared = self.control.volume_path("shared-vol") / "netDb" / "rA"
        shared.mkdir(parents=True)
        (shared / "routerInfo-A.dat").write_bytes(b"a")
        self.control.add_node("router-new")

        self.assertEqual(self.orchestrator.pull_shared_to_node_db("router-new", "shared-vol"), 1)
        self.assertEqual(self.control.list_files("router-new", NODE_NETDB), ["rA/routerInfo-A.dat"])

    def test_pull_from_empty_store_writes_nothing(self) -> None:
        self.control.add_node("router-a")
        self.assertEqual(self.orchestrator.pull_shared_to_node_db("router-a", "shared-vol"), 0)
        self.assertEqual(self.control.list_files("router-a", NODE_NETDB), [])
        self.assertNotIn(("copy_into", "router-a"), self.control.calls)

    def test_publish_then_pull_spreads_records(self) -> None:
        raws = {name: self.add_router(name, seed) for name, seed in (("router-a", 1), ("router-b", 2))}
        for name in raws:
            self.orchestrator.publish_record(name, "shared-vol")
        for name in raws:
            self.orchestrator.pull_shared_to_node_db(name, "shared-vol")

        expected = sorted(
            f"r{encoded[0]}/routerInfo-{encoded}.dat"
            for encoded in (encode_hash(identity_hash_of(raw)) for raw in raws.values())
        )
        for name in raws:
            self.assertEqual(self.control.list_files(name, NODE_NETDB), expected)


class VerbDeadlineTests(OrchestratorTestCase):
    def test_deadline_caps_every_docker_call(self) -> None:
        self.control.add_node("router-a")
        self.control.write_file("router-a", f"{NODE_NETDB}/rY/routerInfo-Y.dat", b"y")

        self.orchestrator.push_node_db_to_shared("router-a", "shared-vol", timeout=2.0)

        ops = [op for op, _ in self.control.calls]
        self.assertEqual(ops, ["copy_from", "create", "start", "execute", "copy_into", "remove"])
        for op, timeout in zip(ops, self.control.timeouts):
            with self.subTest(op=op):
                if op == "remove":
                    self.assertEqual(timeout, self.settings.teardown_timeout_seconds)
                else:
                    self.assertGreater(timeout, 0.0)
                    self.assertLessEqual(timeout, 2.0)

    def test_without_deadline_calls_use_step_timeout(self) -> None:
        self.add_router("router-a", seed=1)
        self.orchestrator.publish_record("router-a", "shared-vol")
        for (op, _), timeout in zip(self.control.calls, self.control.timeouts):
            if op != "remove":
                self.assertEqual(timeout, 10.0)

    def test_expired_deadline_fails_before_any_docker_call(self) -> None:
        self.add_router("router-a", seed=1)
        for verb in (VERB_PUBLISH, VERB_PUSH, VERB_PULL):
            with self.subTest(verb=verb):
                with self.assertRaises(TransferFailed):
                    self.orchestrator.run_verb(verb, "router-a", "shared-vol", timeout=-1.0)
        self.assertEqual(self.control.calls, [])

    def test_pass_applies_node_timeout(self) -> None:
        self.add_router("router-a", seed=1)
        registry = NodeRegistry(shared_volume="shared-vol")
        registry.add_node("router-a")

        with self.assertLogs("i2p_testnet.sync.orchestrator", level="ERROR"):
            report = run_sync_pass(self.orchestrator, registry, node_timeout=-1.0)

        self.assertEqual(report.error_count, 2)
        self.assertEqual({outcome.error_type for outcome in report.outcomes}, {"TransferFailed"})


class SyncPassTests(OrchestratorTestCase):
    def test_pass_continues_past_failing_node(self) -> None:
        self.add_router("router-a", seed=1)
        self.control.add_node("router-broken")
        self.add_router("router-c", seed=3)
        registry = NodeRegistry(shared_volume="shared-vol")
        for node in ("router-a", "router-broken", "router-c"):
            registry.add_node(node)

        with self.assertLogs("i2p_testnet.sync.orchestrator", level="ERROR"):
            report = run_sync_pass(self.orchestrator, registry)

        self.assertEqual(report.verbs, (VERB_PUBLISH, VERB_PULL))
        self.assertEqual(len(report.outcomes), 6)
        self.assertEqual(report.error_count, 1)
        failed = [outcome for outcome in report.outcomes if not outcome.ok]
        self.assertEqual((failed[0].node, failed[0].verb), ("router-broken", VERB_PUBLISH))
        self.assertEqual(failed[0].error_type, "RecordUnavailable")
        self.assertEqual(len(self.control.list_files("router-broken", NODE_NETDB)), 2)
        payload = report.as_payload()
        self.assertEqual(payload["error_count"], 1)
        self.assertFalse(payload["cancelled"])

    def test_pass_stops_between_nodes_when_cancelled(self) -> None:
        self.add_router("router-a", seed=1)
        self.add_router("router-b", seed=2)
        registry = NodeRegistry(shared_volume="shared-vol")
        registry.add_node("router-a")
        registry.add_node("router-b")
        cancel = threading.Event()
        wrapper = _CancelAfterFirst(self.orchestrator, cancel)

        report = run_sync_pass(wrapper, registry, verbs=(VERB_PUBLISH,), cancel=cancel)

        self.assertTrue(report.cancelled)
        self.assertEqual(wrapper.seen, [(VERB_PUBLISH, "router-a")])
        self.assertEqual(len(report.outcomes), 1)
        self.assertTrue(report.outcomes[0].ok)
        self.assertEqual(self.control.helpers(), [])

    def test_unknown_verb_is_rejected(self) -> None:
        registry = NodeRegistry(shared_volume="shared-vol")
        with self.assertRaises(ValueError):
            run_sync_pass(self.orchestrator, registry, verbs=(VERB_PUSH, "gossip"))
        with self.assertRaises(ValueError):
            self.orchestrator.run_verb("gossip", "router-a", "shared-vol")


if __name__ == "__main__":
    unittest.main()
