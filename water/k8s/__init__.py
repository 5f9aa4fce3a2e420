"""Kubernetes interaction module."""

from .client import K8sClient
from .endpoints import EndpointCache
from .inspector import ClusterInspector
from .upgrader import KubernetesUpgrader, UpgradePath

__all__ = ["K8sClient", "EndpointCache", "ClusterInspector", "KubernetesUpgrader", "UpgradePath"]
