"""Talos (host layer) node upgrades."""

import asyncio

from ..errors import CommandError, UpgradeInitiationFailed, UpgradeTimeout, describe
from ..utils.logger import get_logger
from .client import TalosClient

logger = get_logger(__name__)


class TalosNodeUpgrader:
    """Issues Talos upgrades and waits for the node to come back."""

    def __init__(
        self,
        client: TalosClient,
        settle_delay: float = 30.0,
        probe_interval: float = 15.0,
        probe_timeout: float = 10.0,
    ):
        self.client = client
        self.settle_delay = settle_delay
        self.probe_interval = probe_interval
        self.probe_timeout = probe_timeout

    async def upgrade(self, endpoint: str, image_ref: str) -> None:
        """Start the upgrade; the node reboots on its own afterwards."""
        logger.info(f"Starting Talos upgrade on {endpoint} with image {image_ref}")
        try:
            output = await self.client.execute(
                ["upgrade", "--image", image_ref, "--wait=false"],
                node=endpoint,
            )
        except CommandError as e:
            raise UpgradeInitiationFailed(f"failed to initiate Talos upgrade on node {endpoint}: {describe(e)}")
        logger.debug(f"Upgrade initiated on {endpoint}: {output.strip()}")

    async def _probe(self, endpoint: str) -> bool:
        try:
            await asyncio.wait_for(self.client.version(endpoint), self.probe_timeout)
        except (CommandError, asyncio.TimeoutError) as e:
            logger.debug(f"Node {endpoint} not ready yet: {describe(e)}")
            return False
        return True

    async def await_healthy(self, endpoint: str, timeout: float) -> None:
        """Wait for the node's Talos API to answer again after a reboot."""
        logger.info(f"Waiting up to {timeout:.0f}s for {endpoint} to reboot and come back online")
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        # Give the node time to actually go down before probing
        await asyncio.sleep(min(self.settle_delay, timeout))

        while True:
            if await self._probe(endpoint):
                logger.info(f"Node {endpoint} is back online")
                return
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise UpgradeTimeout(f"timeout waiting for node {endpoint} to come back online")
            await asyncio.sleep(min(self.probe_interval, remaining))
