"""Test configuration and fixtures."""

from typing import Dict, List, Optional

import pytest
from unittest.mock import AsyncMock, Mock

pytest_plugins = ("pytest_asyncio",)

from water.model.cluster import ClusterSnapshot, NodeInfo, NodeRole
from water.model.config import K8sConfig, TalosConfig, UpgradeConfig, UpgradeTimings
from water.errors import NotYetReleased
from water.version.releases import ReleaseType


def make_node(
    name: str,
    role: NodeRole = NodeRole.WORKER,
    ready: bool = True,
    talos_version: str = "v1.10.4",
    endpoint: Optional[str] = None,
) -> NodeInfo:
    return NodeInfo(
        name=name,
        role=role,
        ready=ready,
        talos_version=talos_version,
        endpoint=endpoint or f"10.0.0.{abs(hash(name)) % 250 + 1}",
    )


def make_snapshot(nodes: List[NodeInfo], k8s_version: str = "v1.33.2") -> ClusterSnapshot:
    talos_version = next((node.talos_version for node in nodes if node.talos_version), "")
    return ClusterSnapshot(talos_version=talos_version, k8s_version=k8s_version, nodes=nodes)


def zero_timings(**overrides) -> UpgradeTimings:
    """Timings with every delay removed so tests never sleep."""
    values = dict(
        inter_node_delay=0,
        talos_group_stabilization=0,
        k8s_group_stabilization=0,
        layer_stabilization=0,
        node_upgrade_timeout=5,
        reboot_timeout=5,
        reboot_settle_delay=0,
        reboot_probe_interval=0.01,
        node_ready_timeout=1,
        monitor_interval=0.01,
        monitor_timeout=1,
        snapshot_timeout=1,
        release_fetch_timeout=1,
        retry_attempts=1,
        retry_delay=0,
    )
    values.update(overrides)
    return UpgradeTimings(**values)


def make_config(
    talos_version: str = "v1.10.5",
    k8s_version: str = "v1.33.3",
    talos_order: str = "control-plane-first",
    k8s_order: str = "control-plane-first",
    **timing_overrides,
) -> UpgradeConfig:
    return UpgradeConfig(
        talos=TalosConfig(
            version=talos_version,
            image_id="factory.talos.dev/installer/abc123",
            upgrade_order=talos_order,
        ),
        k8s=K8sConfig(version=k8s_version, upgrade_order=k8s_order),
        timings=zero_timings(**timing_overrides),
    )


class FakeInspector:
    """Returns queued snapshots, repeating the last one."""

    def __init__(self, *snapshots: ClusterSnapshot):
        self.snapshots = list(snapshots)
        self.calls = 0

    def push(self, snapshot: ClusterSnapshot) -> None:
        self.snapshots.append(snapshot)

    async def snapshot(self) -> ClusterSnapshot:
        self.calls += 1
        if len(self.snapshots) > 1:
            item = self.snapshots.pop(0)
        else:
            item = self.snapshots[0]
        if isinstance(item, Exception):
            raise item
        return item


class FakeReleaseIndex:
    """Release index with a fixed version list per layer, or an error."""

    def __init__(self, talos=("v1.10.5", "v1.10.4"), kubernetes=("v1.33.3", "v1.33.2")):
        self.available: Dict[ReleaseType, object] = {
            ReleaseType.TALOS: talos,
            ReleaseType.KUBERNETES: kubernetes,
        }
        self.closed = False

    async def validate_target_available(self, release_type, target_version):
        release_type = ReleaseType(release_type)
        available = self.available[release_type]
        if isinstance(available, Exception):
            raise available
        if target_version not in available:
            raise NotYetReleased(release_type.value, target_version, list(available))
        return list(available)

    async def close(self):
        self.closed = True


class RecordingNodeUpgrader:
    """Talos upgrader double that records calls and can fail per endpoint."""

    def __init__(self, fail_upgrade=(), fail_health=(), on_upgrade=None):
        self.fail_upgrade = set(fail_upgrade)
        self.fail_health = set(fail_health)
        self.on_upgrade = on_upgrade
        self.upgraded: List[str] = []
        self.health_checked: List[str] = []

    async def upgrade(self, endpoint: str, image_ref: str) -> None:
        from water.errors import UpgradeInitiationFailed

        self.upgraded.append(endpoint)
        if endpoint in self.fail_upgrade:
            raise UpgradeInitiationFailed(f"failed to initiate Talos upgrade on node {endpoint}")
        if self.on_upgrade:
            self.on_upgrade(endpoint)

    async def await_healthy(self, endpoint: str, timeout: float) -> None:
        from water.errors import UpgradeTimeout

        self.health_checked.append(endpoint)
        if endpoint in self.fail_health:
            raise UpgradeTimeout(f"timeout waiting for node {endpoint} to come back online")


class RecordingWorkloadUpgrader:
    def __init__(self, fail=(), on_upgrade=None):
        self.fail = set(fail)
        self.on_upgrade = on_upgrade
        self.calls: List[tuple] = []

    async def upgrade(self, endpoint: str, current_version: str, target_version: str) -> None:
        from water.errors import UpgradeFailed

        self.calls.append((endpoint, current_version, target_version))
        if endpoint in self.fail:
            raise UpgradeFailed(f"failed to upgrade Kubernetes on node {endpoint}")
        if self.on_upgrade:
            self.on_upgrade(endpoint)


@pytest.fixture
def config() -> UpgradeConfig:
    return make_config()


@pytest.fixture
def mock_talos_client():
    """Talos client with every talosctl call mocked."""
    client = Mock()
    client.execute = AsyncMock(return_value="")
    client.version = AsyncMock(return_value="Tag: v1.10.5")
    client.hostname = AsyncMock()
    client.configured_endpoints = Mock(return_value=[])
    return client
