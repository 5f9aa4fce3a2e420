"""Per-layer upgrade actions used by the node sequencer."""

import asyncio
from typing import Protocol

from ..errors import UpgradeFailed, UpgradeTimeout, WaterError, describe
from ..model.cluster import ClusterSnapshot, NodeInfo
from ..model.result import UpgradeLayer
from ..utils.logger import get_logger

logger = get_logger(__name__)


class ClusterSource(Protocol):
    async def snapshot(self) -> ClusterSnapshot: ...


class NodeUpgrader(Protocol):
    async def upgrade(self, endpoint: str, image_ref: str) -> None: ...

    async def await_healthy(self, endpoint: str, timeout: float) -> None: ...


class WorkloadUpgrader(Protocol):
    async def upgrade(self, endpoint: str, current_version: str, target_version: str) -> None: ...


def is_converged(layer: UpgradeLayer, node: NodeInfo, snapshot: ClusterSnapshot, target_version: str) -> bool:
    """A node has converged when it is ready and reports the target version.

    Talos versions are reported per node; the Kubernetes version is
    cluster-wide and shared by every node.
    """
    if not node.ready:
        return False
    if layer is UpgradeLayer.TALOS:
        return node.talos_version == target_version
    return snapshot.k8s_version == target_version


class LayerDriver:
    """Upgrade and readiness actions for one layer."""

    layer: UpgradeLayer
    target_version: str

    async def upgrade_node(self, node: NodeInfo) -> None:
        raise NotImplementedError

    async def await_node(self, node: NodeInfo) -> None:
        raise NotImplementedError


class TalosLayer(LayerDriver):
    """Host layer: install a new Talos image and wait for the reboot."""

    layer = UpgradeLayer.TALOS

    def __init__(self, upgrader: NodeUpgrader, target_version: str, image_ref: str, reboot_timeout: float):
        self.upgrader = upgrader
        self.target_version = target_version
        self.image_ref = image_ref
        self.reboot_timeout = reboot_timeout

    async def upgrade_node(self, node: NodeInfo) -> None:
        await self.upgrader.upgrade(node.endpoint, self.image_ref)

    async def await_node(self, node: NodeInfo) -> None:
        await self.upgrader.await_healthy(node.endpoint, self.reboot_timeout)


class KubernetesLayer(LayerDriver):
    """Orchestration layer: upgrade Kubernetes components through one node."""

    layer = UpgradeLayer.KUBERNETES

    def __init__(
        self,
        upgrader: WorkloadUpgrader,
        inspector: ClusterSource,
        target_version: str,
        ready_timeout: float,
        probe_interval: float,
    ):
        self.upgrader = upgrader
        self.inspector = inspector
        self.target_version = target_version
        self.ready_timeout = ready_timeout
        self.probe_interval = probe_interval

    async def upgrade_node(self, node: NodeInfo) -> None:
        # The cluster version moves as earlier nodes finish; read it fresh
        try:
            snapshot = await self.inspector.snapshot()
        except WaterError as e:
            raise UpgradeFailed(f"failed to get current Kubernetes version: {describe(e)}")
        await self.upgrader.upgrade(node.endpoint, snapshot.k8s_version, self.target_version)

    async def await_node(self, node: NodeInfo) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.ready_timeout

        while True:
            try:
                snapshot = await self.inspector.snapshot()
                current = snapshot.get_node(node.name)
                if current is not None and current.ready:
                    logger.info(f"Node {node.name} is ready")
                    return
                logger.debug(f"Node {node.name} not ready yet")
            except WaterError as e:
                logger.debug(f"Error checking readiness of {node.name}: {describe(e)}")

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise UpgradeTimeout(f"timeout waiting for node {node.name} to become ready", [node.name])
            await asyncio.sleep(min(self.probe_interval, remaining))
