"""Registry of live testnet resources owned by the control process."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

from i2p_testnet.sandbox.docker import ProvisioningControl

logger = logging.getLogger(__name__)


@dataclass
class CleanupReport:
    removed_nodes: list[str] = field(default_factory=list)
    removed_volumes: list[str] = field(default_factory=list)
    removed_network: str | None = None
    failures: list[str] = field(default_factory=list)


class NodeRegistry:
    """Tracks node containers, volumes and the network of one testnet.

    The sync engine never holds this state itself; the control process
    passes node handles and the shared volume from here into each verb.
    """

    def __init__(self, shared_volume: str, network: str | None = None) -> None:
        self.shared_volume = shared_volume
        self.network = network
        self._nodes: list[str] = []
        self._volumes: list[str] = []
        self._lock = threading.Lock()

    def add_node(self, node: str) -> None:
        with self._lock:
            if node not in self._nodes:
                self._nodes.append(node)

    def remove_node(self, node: str) -> bool:
        with self._lock:
            if node in self._nodes:
                self._nodes.remove(node)
                return True
            return False

    def nodes(self) -> list[str]:
        with self._lock:
            return list(self._nodes)

    def add_volume(self, volume: str) -> None:
        with self._lock:
            if volume not in self._volumes:
                self._volumes.append(volume)

    def volumes(self) -> list[str]:
        with self._lock:
            return list(self._volumes)

    def cleanup(
        self,
        control: ProvisioningControl,
        stop_grace_seconds: int = 10,
        timeout: float | None = None,
    ) -> CleanupReport:
        """Stop and remove every node, then tracked volumes, then the network.

        Failures are collected and logged; cleanup keeps going so one stuck
        container does not leave the rest of the testnet behind.
        """
        report = CleanupReport()
        for node in self.nodes():
            try:
                control.stop(node, grace_seconds=stop_grace_seconds, timeout=timeout)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Failed to stop container %s: %s", node, exc)
            try:
                control.remove(node, force=True, timeout=timeout)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Failed to remove container %s: %s", node, exc)
                report.failures.append(f"container {node}: {exc}")
                continue
            self.remove_node(node)
            report.removed_nodes.append(node)
            logger.info("Removed container %s", node)

        for volume in self.volumes():
            try:
                control.remove_volume(volume, timeout=timeout)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Failed to remove volume %s: %s", volume, exc)
                report.failures.append(f"volume {volume}: {exc}")
                continue
            with self._lock:
                self._volumes.remove(volume)
            report.removed_volumes.append(volume)
            logger.info("Removed volume %s", volume)

        if self.network:
            try:
                control.remove_network(self.network, timeout=timeout)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Failed to remove network %s: %s", self.network, exc)
                report.failures.append(f"network {self.network}: {exc}")
            else:
                logger.info("Removed network %s", self.network)
                report.removed_network = self.network
                self.network = None
        return report
