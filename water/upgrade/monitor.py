"""Post-batch convergence monitoring."""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from ..errors import UpgradeTimeout, WaterError, describe
from ..model.cluster import ClusterSnapshot
from ..model.result import UpgradeLayer
from ..utils.logger import get_logger
from .layers import ClusterSource, is_converged

logger = get_logger(__name__)


class MonitorState(Enum):
    POLLING = "polling"
    DONE = "done"


@dataclass
class ConvergenceTracker:
    """Tracks which nodes of a batch have converged.

    Convergence is monotonic: once a node is seen converged it is not
    re-evaluated for the rest of the run.
    """

    layer: UpgradeLayer
    target_version: str
    node_names: List[str]
    converged: List[str] = field(default_factory=list)
    state: MonitorState = MonitorState.POLLING
    timed_out: bool = False

    @property
    def outstanding(self) -> List[str]:
        return [name for name in self.node_names if name not in self.converged]

    @property
    def complete(self) -> bool:
        return not self.outstanding

    def observe(self, snapshot: ClusterSnapshot) -> bool:
        """Evaluate outstanding nodes against a snapshot; True once all converged."""
        for name in self.outstanding:
            node = snapshot.get_node(name)
            if node is None:
                logger.debug(f"Node {name} not present in cluster info")
                continue
            if is_converged(self.layer, node, snapshot, self.target_version):
                self.converged.append(name)
                logger.info(f"Node {name} reached {self.layer.value} {self.target_version}")

        logger.debug(f"Upgrade progress: {len(self.converged)}/{len(self.node_names)} nodes converged")
        if self.complete:
            self.state = MonitorState.DONE
        return self.complete

    def expire(self) -> None:
        self.state = MonitorState.DONE
        self.timed_out = True


class ProgressMonitor:
    """Polls cluster state until a batch converges or the deadline passes."""

    def __init__(
        self,
        inspector: ClusterSource,
        interval: float = 30.0,
        timeout: float = 600.0,
        poll_timeout: float = 30.0,
    ):
        self.inspector = inspector
        self.interval = interval
        self.timeout = timeout
        self.poll_timeout = poll_timeout
        self.last_tracker: Optional[ConvergenceTracker] = None

    async def _poll(self, tracker: ConvergenceTracker) -> None:
        try:
            snapshot = await asyncio.wait_for(self.inspector.snapshot(), self.poll_timeout)
        except (WaterError, asyncio.TimeoutError) as e:
            logger.debug(f"Error checking upgrade progress: {describe(e)}")
            return
        tracker.observe(snapshot)

    async def wait_for_convergence(
        self, target_version: str, node_names: List[str], layer: UpgradeLayer
    ) -> List[str]:
        """Return the converged node names, or raise UpgradeTimeout naming the rest."""
        layer = UpgradeLayer(layer)
        tracker = ConvergenceTracker(layer=layer, target_version=target_version, node_names=list(node_names))
        self.last_tracker = tracker
        logger.info(
            f"Monitoring {layer.value} upgrade to {target_version} on {', '.join(node_names) or 'no nodes'}"
        )

        if tracker.complete:
            tracker.state = MonitorState.DONE
            return []

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout

        while tracker.state is MonitorState.POLLING:
            remaining = deadline - loop.time()
            at_deadline = remaining <= self.interval
            if remaining > 0:
                await asyncio.sleep(min(self.interval, remaining))

            # The poll due at the deadline still counts
            await self._poll(tracker)
            if tracker.state is MonitorState.POLLING and at_deadline:
                tracker.expire()

        if tracker.timed_out:
            outstanding = tracker.outstanding
            logger.error(f"Upgrade monitoring timed out, outstanding nodes: {', '.join(outstanding)}")
            raise UpgradeTimeout(
                f"upgrade monitoring timed out, nodes not at {target_version}: {', '.join(outstanding)}",
                outstanding,
            )

        logger.info(f"All nodes converged on {layer.value} {target_version}")
        return list(tracker.converged)
