"""Data models for water."""

from .cluster import ClusterSnapshot, NodeInfo, NodeRole
from .config import (
    K8sConfig,
    TalosConfig,
    UpgradeConfig,
    UpgradeOrder,
    UpgradeTimings,
    load_config,
    parse_config,
    parse_upgrade_order,
)
from .result import CheckReport, LayerCheck, UpgradeLayer, UpgradeResult

__all__ = [
    "ClusterSnapshot",
    "NodeInfo",
    "NodeRole",
    "K8sConfig",
    "TalosConfig",
    "UpgradeConfig",
    "UpgradeOrder",
    "UpgradeTimings",
    "load_config",
    "parse_config",
    "parse_upgrade_order",
    "CheckReport",
    "LayerCheck",
    "UpgradeLayer",
    "UpgradeResult",
]
