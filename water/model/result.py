"""Upgrade run results and check reports."""

from datetime import timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class UpgradeLayer(str, Enum):
    """The two independently versioned layers."""

    TALOS = "talos"
    KUBERNETES = "kubernetes"

    @property
    def display_name(self) -> str:
        return "Talos" if self is UpgradeLayer.TALOS else "Kubernetes"


class UpgradeResult(BaseModel):
    """Outcome of one orchestration run.

    Successful and failed node sets stay disjoint: a node that fails in any
    phase is removed from the successes, and a node that already failed is
    never reported as upgraded.
    """

    talos_upgraded: bool = False
    k8s_upgraded: bool = False
    errors: List[str] = Field(default_factory=list)
    nodes_upgraded: List[str] = Field(default_factory=list)
    failed_nodes: List[str] = Field(default_factory=list)
    skipped_layers: Dict[str, str] = Field(default_factory=dict)
    rollback_required: bool = False
    duration: timedelta = timedelta(0)

    def add_error(self, error: Any) -> None:
        self.errors.append(str(error))

    def add_upgraded_node(self, node_name: str) -> None:
        if node_name in self.failed_nodes or node_name in self.nodes_upgraded:
            return
        self.nodes_upgraded.append(node_name)

    def add_failed_node(self, node_name: str) -> None:
        if node_name in self.nodes_upgraded:
            self.nodes_upgraded.remove(node_name)
        if node_name not in self.failed_nodes:
            self.failed_nodes.append(node_name)
        self.rollback_required = True

    def skip_layer(self, layer: UpgradeLayer, reason: str) -> None:
        self.skipped_layers[layer.value] = reason

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0

    @property
    def success_rate(self) -> float:
        total = len(self.nodes_upgraded) + len(self.failed_nodes)
        if total == 0:
            return 0.0
        return len(self.nodes_upgraded) / total

    @property
    def any_upgraded(self) -> bool:
        return self.talos_upgraded or self.k8s_upgraded

    def summary(self) -> str:
        if self.has_errors:
            return (
                f"Upgrades completed with errors: Talos={self.talos_upgraded}, "
                f"K8s={self.k8s_upgraded}, Errors={len(self.errors)}"
            )
        return f"Upgrades completed successfully: Talos={self.talos_upgraded}, K8s={self.k8s_upgraded}"

    def to_dict(self) -> Dict[str, Any]:
        data = self.dict()
        data["duration_seconds"] = self.duration.total_seconds()
        data["success_rate"] = self.success_rate
        del data["duration"]
        return data


class LayerCheck(BaseModel):
    """Decision for one layer in check-only mode."""

    layer: UpgradeLayer
    current_version: str
    target_version: str
    version_available: bool = False
    needs_upgrade: bool = False
    nodes_to_upgrade: List[str] = Field(default_factory=list)
    skip_reason: Optional[str] = None
    error: Optional[str] = None


class CheckReport(BaseModel):
    """Decisions reported by a check-only run."""

    talos: LayerCheck
    kubernetes: LayerCheck
    not_ready_nodes: List[str] = Field(default_factory=list)

    @property
    def errors(self) -> List[str]:
        return [check.error for check in (self.talos, self.kubernetes) if check.error]

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0

    @property
    def upgrades_needed(self) -> bool:
        return self.talos.needs_upgrade or self.kubernetes.needs_upgrade

    @property
    def all_versions_available(self) -> bool:
        return self.talos.version_available and self.kubernetes.version_available

    def summary(self) -> str:
        if self.upgrades_needed:
            return "Upgrades are needed - run without --check-only to perform upgrades"
        if self.all_versions_available:
            return "No upgrades needed - cluster is up to date"
        return "No upgrades needed for available versions - some versions skipped (not yet released)"
