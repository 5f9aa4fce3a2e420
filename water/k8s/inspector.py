"""Cluster introspection: builds ClusterSnapshot objects from kubectl output."""

import asyncio
import re
from typing import Any, Dict, List, Optional

from ..errors import ClusterUnavailable, CommandError, WaterError, describe
from ..model.cluster import ClusterSnapshot, NodeInfo, NodeRole
from ..utils.logger import get_logger
from ..utils.retry import RetryPolicy
from .client import K8sClient
from .endpoints import EndpointCache

logger = get_logger(__name__)

CONTROL_PLANE_LABELS = (
    "node-role.kubernetes.io/control-plane",
    "node-role.kubernetes.io/master",
)
LEGACY_ROLE_LABEL = ("kubernetes.io/role", "master")
ADDRESS_PREFERENCE = ("InternalIP", "ExternalIP", "Hostname")
OS_IMAGE_VERSION = re.compile(r"\((v\d+\.\d+\.\d+[^)]*)\)")


def is_control_plane(labels: Optional[Dict[str, str]]) -> bool:
    if not labels:
        return False
    if any(label in labels for label in CONTROL_PLANE_LABELS):
        return True
    key, value = LEGACY_ROLE_LABEL
    return labels.get(key) == value


def is_ready(conditions: Optional[List[Dict[str, Any]]]) -> bool:
    for condition in conditions or []:
        if condition.get("type") == "Ready":
            return condition.get("status") == "True"
    return False


def node_address(name: str, addresses: Optional[List[Dict[str, Any]]]) -> str:
    """Preferred address for direct node operations."""
    by_type = {}
    for address in addresses or []:
        by_type.setdefault(address.get("type"), address.get("address"))
    for address_type in ADDRESS_PREFERENCE:
        if by_type.get(address_type):
            return by_type[address_type]
    return name


def talos_version_from_os_image(os_image: str) -> str:
    """Extract the Talos version from an osImage such as ``Talos (v1.10.5)``."""
    match = OS_IMAGE_VERSION.search(os_image or "")
    return match.group(1) if match else ""


def parse_node(node: Dict[str, Any]) -> NodeInfo:
    metadata = node.get("metadata", {})
    status = node.get("status", {})
    name = metadata.get("name", "")

    return NodeInfo(
        name=name,
        role=NodeRole.CONTROL_PLANE if is_control_plane(metadata.get("labels")) else NodeRole.WORKER,
        ready=is_ready(status.get("conditions")),
        talos_version=talos_version_from_os_image(status.get("nodeInfo", {}).get("osImage", "")),
        endpoint=node_address(name, status.get("addresses")),
    )


class ClusterInspector:
    """Reads cluster topology and per-node versions."""

    def __init__(
        self,
        client: K8sClient,
        endpoint_cache: Optional[EndpointCache] = None,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: float = 30.0,
    ):
        self.client = client
        self.endpoint_cache = endpoint_cache
        self.retry_policy = retry_policy or RetryPolicy(retry_on=(ClusterUnavailable,))
        self.timeout = timeout

    async def _endpoint_map(self) -> Dict[str, str]:
        """Node to Talos endpoint map, resolved once per snapshot."""
        if self.endpoint_cache is None:
            return {}
        try:
            return await asyncio.wait_for(self.endpoint_cache.lookup_all(), self.timeout)
        except (WaterError, asyncio.TimeoutError) as e:
            logger.debug(f"Endpoint cache unavailable, using node addresses: {describe(e)}")
            return {}

    @staticmethod
    def _apply_endpoint(node: NodeInfo, endpoints: Dict[str, str]) -> NodeInfo:
        endpoint = endpoints.get(node.name)
        if endpoint and endpoint != node.endpoint:
            return node.copy(update={"endpoint": endpoint})
        return node

    async def _read(self) -> ClusterSnapshot:
        try:
            items = await asyncio.wait_for(self.client.get_nodes(), self.timeout)
        except (CommandError, asyncio.TimeoutError) as e:
            raise ClusterUnavailable(f"failed to list nodes: {describe(e)}")

        try:
            k8s_version = await asyncio.wait_for(self.client.get_server_version(), self.timeout)
        except (CommandError, asyncio.TimeoutError) as e:
            logger.warning(f"Failed to get Kubernetes version, using placeholder: {describe(e)}")
            k8s_version = None

        endpoints = await self._endpoint_map()
        nodes = [self._apply_endpoint(parse_node(item), endpoints) for item in items]
        talos_version = next((node.talos_version for node in nodes if node.talos_version), "")

        snapshot = ClusterSnapshot(
            talos_version=talos_version,
            k8s_version=k8s_version or "unknown",
            nodes=nodes,
        )
        logger.info(
            f"Cluster information retrieved: talos={snapshot.talos_version or 'unknown'}, "
            f"k8s={snapshot.k8s_version}, nodes={len(snapshot.nodes)}"
        )
        return snapshot

    async def snapshot(self) -> ClusterSnapshot:
        """Fetch a fresh snapshot, retrying transient failures."""
        return await self.retry_policy.call("Reading cluster state", self._read)
