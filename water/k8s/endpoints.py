"""Node name to Talos endpoint cache."""

import asyncio
import time
from typing import Dict, Optional

from ..errors import ClusterUnavailable, CommandError, describe
from ..talos.client import TalosClient
from ..utils.locks import ReadWriteLock
from ..utils.logger import get_logger

logger = get_logger(__name__)


class EndpointCache:
    """Maps node hostnames to the Talos endpoint that answers for them.

    Built lazily on first lookup by asking every configured endpoint for its
    hostname. Lookups share a read lock; building takes the write lock and
    re-checks, so racing first callers build once. Call ``invalidate`` when
    the cluster membership is known to have changed (for example after a
    node could not be found); the next lookup rebuilds.
    """

    def __init__(self, talos_client: TalosClient, timeout: float = 10.0, retry_after: float = 30.0):
        self.talos_client = talos_client
        self.timeout = timeout
        self.retry_after = retry_after
        self._lock = ReadWriteLock()
        self._mappings: Optional[Dict[str, str]] = None
        self._failure: Optional[ClusterUnavailable] = None
        self._failed_at = 0.0
        self.builds = 0
        self.build_attempts = 0

    @property
    def is_built(self) -> bool:
        return self._mappings is not None

    async def _hostname(self, endpoint: str) -> Optional[str]:
        try:
            return await asyncio.wait_for(self.talos_client.hostname(endpoint), self.timeout)
        except (CommandError, asyncio.TimeoutError) as e:
            logger.warning(f"Failed to get hostname from endpoint {endpoint}: {describe(e)}")
            return None

    async def _build(self) -> Dict[str, str]:
        endpoints = self.talos_client.configured_endpoints()
        if not endpoints:
            raise ClusterUnavailable("no Talos endpoints configured")

        logger.info(f"Building node endpoint cache from {len(endpoints)} Talos endpoints")
        mappings: Dict[str, str] = {}
        for endpoint in endpoints:
            hostname = await self._hostname(endpoint)
            if hostname:
                mappings[hostname] = endpoint
                logger.debug(f"Cached node endpoint mapping {hostname} -> {endpoint}")

        if not mappings:
            raise ClusterUnavailable("failed to build any node endpoint mappings")

        logger.info(f"Built node endpoint cache with {len(mappings)} mappings")
        return mappings

    def _raise_if_recently_failed(self) -> None:
        if self._failure is not None and time.monotonic() - self._failed_at < self.retry_after:
            raise self._failure

    async def _ensure_built(self) -> Dict[str, str]:
        async with self._lock.read():
            if self._mappings is not None:
                return self._mappings
            self._raise_if_recently_failed()
        async with self._lock.write():
            # Another caller may have built, or failed to, while we waited for the write lock
            if self._mappings is None:
                self._raise_if_recently_failed()
                self.build_attempts += 1
                try:
                    self._mappings = await self._build()
                except ClusterUnavailable as e:
                    self._failure = e
                    self._failed_at = time.monotonic()
                    raise
                self._failure = None
                self.builds += 1
            return self._mappings

    async def lookup(self, node_name: str) -> Optional[str]:
        """Talos endpoint for a node, or None when the node is unknown."""
        mappings = await self._ensure_built()
        return mappings.get(node_name)

    async def lookup_all(self) -> Dict[str, str]:
        """Copy of every known node to endpoint mapping.

        A failed build is remembered for ``retry_after`` seconds and re-raised
        without contacting Talos again, unless ``invalidate`` is called first.
        """
        mappings = await self._ensure_built()
        return dict(mappings)

    async def invalidate(self) -> None:
        async with self._lock.write():
            if self._mappings is not None:
                logger.info("Invalidating node endpoint cache")
            self._mappings = None
            self._failure = None
