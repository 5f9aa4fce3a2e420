"""Upgrade orchestration."""

from .layers import KubernetesLayer, LayerDriver, TalosLayer, is_converged
from .manager import OrchestratorState, UpgradeManager, order_role_groups
from .monitor import ConvergenceTracker, MonitorState, ProgressMonitor
from .sequencer import NodeSequencer

__all__ = [
    "KubernetesLayer",
    "LayerDriver",
    "TalosLayer",
    "is_converged",
    "OrchestratorState",
    "UpgradeManager",
    "order_role_groups",
    "ConvergenceTracker",
    "MonitorState",
    "ProgressMonitor",
    "NodeSequencer",
]
