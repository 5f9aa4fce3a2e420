"""Stored run-history models."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class NodeOutcomeRecord(BaseModel):
    """Outcome for one node in a stored run."""

    node_name: str
    succeeded: bool


class UpgradeRunRecord(BaseModel):
    """A stored upgrade or check run."""

    id: int
    started_at: datetime
    mode: str
    talos_target: Optional[str] = None
    k8s_target: Optional[str] = None
    talos_upgraded: bool = False
    k8s_upgraded: bool = False
    rollback_required: bool = False
    duration_seconds: float = 0.0
    error_count: int = 0
    summary: Optional[str] = None
    details: Optional[str] = None
    nodes: List[NodeOutcomeRecord] = Field(default_factory=list)

    @property
    def failed_nodes(self) -> List[str]:
        return [node.node_name for node in self.nodes if not node.succeeded]
