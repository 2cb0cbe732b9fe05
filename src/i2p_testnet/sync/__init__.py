"""NetDb synchronization through ephemeral helper containers."""

from i2p_testnet.sync.helper import Deadline, HelperHandle, TransferAgent, helper_name
from i2p_testnet.sync.orchestrator import (
    VERBS,
    NetDbSyncOrchestrator,
    SyncPassReport,
    run_sync_pass,
)

__all__ = [
    "Deadline",
    "HelperHandle",
    "TransferAgent",
    "helper_name",
    "VERBS",
    "NetDbSyncOrchestrator",
    "SyncPassReport",
    "run_sync_pass",
]
