"""CLI entry point for testnet netDb synchronization."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

from i2p_testnet.config import Settings, build_settings
from i2p_testnet.errors import SyncError
from i2p_testnet.netdb.sharding import SCHEMES
from i2p_testnet.registry import NodeRegistry
from i2p_testnet.sandbox.docker import DockerCli, ProvisioningControl
from i2p_testnet.sync.orchestrator import (
    VERB_PUBLISH,
    VERB_PULL,
    VERB_PUSH,
    NetDbSyncOrchestrator,
    run_sync_pass,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="i2p-testnet-sync",
        description="Synchronize RouterInfo records between testnet router containers.",
    )
    parser.add_argument(
        "--volume",
        default=None,
        help="Shared docker volume holding the netDb store. Defaults to $TESTNET_SHARED_VOLUME.",
    )
    parser.add_argument("--docker", default=None, help="Path to the docker binary.")
    parser.add_argument("--helper-image", default=None, help="Image used for helper containers.")
    parser.add_argument(
        "--shard-scheme",
        choices=sorted(SCHEMES),
        default=None,
        help="Shard directory layout of the shared store.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Per-call timeout for docker operations in seconds.",
    )
    parser.add_argument(
        "--deadline",
        type=float,
        default=None,
        help="Overall time budget in seconds for each verb on each node.",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Log verbosity level. Defaults to $DEBUG_TESTNET or WARNING.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    extract_parser = subparsers.add_parser("extract", help="Print a node's parsed RouterInfo.")
    extract_parser.add_argument("node", help="Router container name or id.")
    extract_parser.add_argument("--path", default=None, help="RouterInfo path inside the container.")

    for verb, help_text in (
        (VERB_PUBLISH, "Publish each node's own RouterInfo into the shared store."),
        (VERB_PUSH, "Merge each node's whole netDb into the shared store."),
        (VERB_PULL, "Merge the shared store into each node's netDb."),
    ):
        verb_parser = subparsers.add_parser(verb, help=help_text)
        verb_parser.add_argument("nodes", nargs="+", help="Router container names or ids.")

    sync_parser = subparsers.add_parser(
        "sync",
        help="Publish every node, optionally push every node, then pull into every node.",
    )
    sync_parser.add_argument("nodes", nargs="+", help="Router container names or ids.")
    sync_parser.add_argument(
        "--bulk",
        action="store_true",
        help="Also push each node's whole netDb before pulling.",
    )

    cleanup_parser = subparsers.add_parser("cleanup", help="Stop and remove testnet containers.")
    cleanup_parser.add_argument("nodes", nargs="*", help="Router container names or ids.")
    cleanup_parser.add_argument(
        "--remove-volume",
        action="store_true",
        help="Also remove the shared volume.",
    )
    cleanup_parser.add_argument("--network", default=None, help="Docker network to remove.")
    return parser


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _verbs_for(args: argparse.Namespace) -> tuple[str, ...]:
    if args.command == "sync":
        if args.bulk:
            return (VERB_PUBLISH, VERB_PUSH, VERB_PULL)
        return (VERB_PUBLISH, VERB_PULL)
    return (str(args.command),)


def _record_payload(
    orchestrator: NetDbSyncOrchestrator,
    node: str,
    path: str | None,
    timeout: float | None = None,
) -> dict[str, Any]:
    record = orchestrator.extract_identity_record(node, path, timeout=timeout)
    return {
        "node": node,
        "filename": record.filename,
        "encoded_hash": record.encoded_hash,
        "shard": orchestrator.scheme.shard_for(record.encoded_hash),
        "size_bytes": len(record.raw_bytes),
        "published": record.published,
        "caps": record.caps,
        "signature_type": record.signature_type,
        "addresses": [
            {
                "transport": address.transport_style,
                "cost": address.cost,
                "options": address.options,
            }
            for address in record.addresses
        ],
        "options": record.options,
    }


def run_command(
    args: argparse.Namespace,
    settings: Settings,
    control: ProvisioningControl,
) -> tuple[dict[str, Any], int]:
    """Execute one parsed command and return its JSON payload and exit status."""
    orchestrator = NetDbSyncOrchestrator(control, settings)
    if args.command == "extract":
        return _record_payload(orchestrator, args.node, args.path, args.deadline), 0

    registry = NodeRegistry(shared_volume=settings.shared_volume, network=getattr(args, "network", None))
    for node in args.nodes:
        registry.add_node(node)

    if args.command == "cleanup":
        if args.remove_volume:
            registry.add_volume(settings.shared_volume)
        report = registry.cleanup(control, timeout=settings.timeout_seconds)
        payload = {
            "removed_nodes": report.removed_nodes,
            "removed_volumes": report.removed_volumes,
            "removed_network": report.removed_network,
            "failures": report.failures,
        }
        return payload, 1 if report.failures else 0

    report = run_sync_pass(orchestrator, registry, verbs=_verbs_for(args), node_timeout=args.deadline)
    return report.as_payload(), 1 if report.error_count else 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        settings = build_settings(
            docker_binary=args.docker,
            helper_image=args.helper_image,
            shared_volume=args.volume,
            shard_scheme=args.shard_scheme,
            timeout_seconds=args.timeout,
            log_level=args.log_level,
        )
    except ValueError as exc:
        parser.error(str(exc))
    if args.deadline is not None and args.deadline <= 0:
        parser.error(f"--deadline must be positive, got {args.deadline}")
    configure_logging(settings.log_level)
    logging.getLogger(__name__).info(
        "Testnet sync initialized (command=%s, volume=%s, scheme=%s)",
        args.command,
        settings.shared_volume,
        settings.shard_scheme,
    )

    control = DockerCli(settings.docker_binary)
    try:
        payload, status = run_command(args, settings, control)
    except SyncError as exc:
        logging.getLogger(__name__).error("%s failed: %s", args.command, exc)
        print(json.dumps({"error": str(exc), "error_type": type(exc).__name__}, sort_keys=True))
        return 1
    print(json.dumps(payload, sort_keys=True))
    return status


if __name__ == "__main__":
    sys.exit(main())
