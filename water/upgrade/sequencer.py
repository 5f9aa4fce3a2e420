"""One-node-at-a-time upgrade of a role group."""

import asyncio
from typing import Dict, Iterable, List, Optional, Union

from ..errors import NodeNotFound, describe
from ..model.cluster import NodeInfo
from ..model.result import UpgradeResult
from ..utils.logger import get_logger
from .layers import LayerDriver
from .monitor import ProgressMonitor

logger = get_logger(__name__)


def _node_lookup(nodes: Union[Dict[str, NodeInfo], Iterable[NodeInfo]]) -> Dict[str, NodeInfo]:
    if isinstance(nodes, dict):
        return nodes
    return {node.name: node for node in nodes}


class NodeSequencer:
    """Upgrades a batch of nodes strictly in order, never concurrently.

    A node that fails to upgrade or to come back is recorded and the batch
    moves on. A node missing from the lookup table means the plan is stale:
    the whole batch is aborted with NodeNotFound.
    """

    def __init__(
        self,
        monitor: ProgressMonitor,
        inter_node_delay: float = 30.0,
        node_upgrade_timeout: float = 600.0,
    ):
        self.monitor = monitor
        self.inter_node_delay = inter_node_delay
        self.node_upgrade_timeout = node_upgrade_timeout

    async def _upgrade_one(self, node: NodeInfo, driver: LayerDriver, result: UpgradeResult) -> bool:
        layer = driver.layer.display_name
        try:
            await asyncio.wait_for(driver.upgrade_node(node), self.node_upgrade_timeout)
        except asyncio.TimeoutError:
            error = f"failed to upgrade {layer} on node {node.name}: timed out after {self.node_upgrade_timeout:.0f}s"
            logger.error(error)
            result.add_failed_node(node.name)
            result.add_error(error)
            return False
        except Exception as e:
            error = f"failed to upgrade {layer} on node {node.name}: {describe(e)}"
            logger.error(error)
            result.add_failed_node(node.name)
            result.add_error(error)
            return False

        logger.info(f"{layer} upgrade initiated on {node.name}, waiting for it to become healthy")
        try:
            await driver.await_node(node)
        except Exception as e:
            error = f"node {node.name} failed to come back online after {layer} upgrade: {describe(e)}"
            logger.warning(error)
            result.add_failed_node(node.name)
            result.add_error(error)
            return False

        logger.info(f"{layer} upgrade completed on node {node.name}")
        result.add_upgraded_node(node.name)
        return True

    async def run(
        self,
        node_names: List[str],
        nodes: Union[Dict[str, NodeInfo], Iterable[NodeInfo]],
        driver: LayerDriver,
        result: UpgradeResult,
    ) -> List[str]:
        """Upgrade ``node_names`` in order and monitor the batch.

        Returns the names that converged. Raises NodeNotFound or the
        monitor's UpgradeTimeout as batch-level errors; per-node outcomes
        already recorded in ``result`` are kept either way.
        """
        lookup = _node_lookup(nodes)
        total = len(node_names)

        for index, name in enumerate(node_names, start=1):
            logger.info(f"Starting {driver.layer.display_name} upgrade for node {name} ({index}/{total})")

            node: Optional[NodeInfo] = lookup.get(name)
            if node is None:
                raise NodeNotFound(name)

            await self._upgrade_one(node, driver, result)

            if index < total and self.inter_node_delay > 0:
                logger.info(f"Waiting {self.inter_node_delay:.0f}s before upgrading next node...")
                await asyncio.sleep(self.inter_node_delay)

        logger.info(f"Starting post-upgrade monitoring for {', '.join(node_names)}")
        return await self.monitor.wait_for_convergence(driver.target_version, node_names, driver.layer)
