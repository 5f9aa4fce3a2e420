"""Cluster topology models."""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class NodeRole(str, Enum):
    """Role group a node belongs to."""

    CONTROL_PLANE = "control-plane"
    WORKER = "worker"


class NodeInfo(BaseModel):
    """Information about a single cluster node."""

    name: str
    role: NodeRole = NodeRole.WORKER
    ready: bool = False
    talos_version: str = ""
    endpoint: str = ""

    class Config:
        frozen = True

    @property
    def is_control_plane(self) -> bool:
        return self.role == NodeRole.CONTROL_PLANE


class ClusterSnapshot(BaseModel):
    """Point-in-time read of cluster state."""

    talos_version: str = ""
    k8s_version: str = "unknown"
    nodes: List[NodeInfo] = Field(default_factory=list)

    class Config:
        frozen = True

    def node_map(self) -> Dict[str, NodeInfo]:
        """Name to NodeInfo lookup for this snapshot."""
        return {node.name: node for node in self.nodes}

    def get_node(self, name: str) -> Optional[NodeInfo]:
        return self.node_map().get(name)

    @property
    def control_plane_nodes(self) -> List[NodeInfo]:
        return [node for node in self.nodes if node.is_control_plane]

    @property
    def worker_nodes(self) -> List[NodeInfo]:
        return [node for node in self.nodes if not node.is_control_plane]

    @property
    def not_ready_nodes(self) -> List[str]:
        return [node.name for node in self.nodes if not node.ready]
