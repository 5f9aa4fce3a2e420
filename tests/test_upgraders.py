"""Test the per-node Talos and Kubernetes upgraders."""

import pytest
from unittest.mock import AsyncMock

from water.errors import CommandError, UpgradeFailed, UpgradeInitiationFailed, UpgradeTimeout
from water.k8s.upgrader import KubernetesUpgrader, UpgradePath
from water.talos.upgrader import TalosNodeUpgrader


def command_error(stderr="rpc error: connection refused"):
    return CommandError(["talosctl"], stderr, 1)


class TestTalosNodeUpgrader:
    @pytest.mark.asyncio
    async def test_upgrade_command(self, mock_talos_client):
        upgrader = TalosNodeUpgrader(mock_talos_client)
        await upgrader.upgrade("10.0.0.2", "factory.talos.dev/installer/abc:v1.10.5")

        mock_talos_client.execute.assert_awaited_once_with(
            ["upgrade", "--image", "factory.talos.dev/installer/abc:v1.10.5", "--wait=false"],
            node="10.0.0.2",
        )

    @pytest.mark.asyncio
    async def test_upgrade_failure(self, mock_talos_client):
        mock_talos_client.execute.side_effect = command_error()
        with pytest.raises(UpgradeInitiationFailed, match="10.0.0.2"):
            await TalosNodeUpgrader(mock_talos_client).upgrade("10.0.0.2", "installer:v1.10.5")

    @pytest.mark.asyncio
    async def test_await_healthy_after_reboot(self, mock_talos_client):
        mock_talos_client.version.side_effect = [command_error(), command_error(), "Tag: v1.10.5"]
        upgrader = TalosNodeUpgrader(mock_talos_client, settle_delay=0, probe_interval=0.001)

        await upgrader.await_healthy("10.0.0.2", timeout=5)
        assert mock_talos_client.version.await_count == 3

    @pytest.mark.asyncio
    async def test_await_healthy_timeout(self, mock_talos_client):
        mock_talos_client.version.side_effect = command_error()
        upgrader = TalosNodeUpgrader(mock_talos_client, settle_delay=0, probe_interval=0.01)

        with pytest.raises(UpgradeTimeout, match="10.0.0.2"):
            await upgrader.await_healthy("10.0.0.2", timeout=0.05)


class TestUpgradePath:
    def test_create(self):
        path = UpgradePath.create("v1.32.4", "v1.33.3")
        assert path.from_version == "1.32.4"
        assert path.to_version == "1.33.3"
        assert path.crosses_minor
        assert not path.is_noop

    def test_noop(self):
        assert UpgradePath.create("v1.33.3", "1.33.3").is_noop

    def test_refuses_downgrade(self):
        with pytest.raises(UpgradeFailed, match="downgrade"):
            UpgradePath.create("v1.34.0", "v1.33.3")

    def test_unknown_current_version(self):
        with pytest.raises(UpgradeFailed, match="failed to create upgrade path"):
            UpgradePath.create("unknown", "v1.33.3")


class TestKubernetesUpgrader:
    @pytest.mark.asyncio
    async def test_upgrade_command(self, mock_talos_client):
        await KubernetesUpgrader(mock_talos_client).upgrade("10.0.0.1", "v1.33.2", "v1.33.3")

        mock_talos_client.execute.assert_awaited_once_with(
            [
                "upgrade-k8s",
                "--from",
                "1.33.2",
                "--to",
                "1.33.3",
                "--endpoint",
                "10.0.0.1",
                "--upgrade-kubelet=true",
                "--pre-pull-images=false",
            ],
            node="10.0.0.1",
        )

    @pytest.mark.asyncio
    async def test_already_at_target(self, mock_talos_client):
        await KubernetesUpgrader(mock_talos_client).upgrade("10.0.0.1", "v1.33.3", "v1.33.3")
        mock_talos_client.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failure(self, mock_talos_client):
        mock_talos_client.execute = AsyncMock(side_effect=command_error("etcd unhealthy"))
        with pytest.raises(UpgradeFailed, match="etcd unhealthy"):
            await KubernetesUpgrader(mock_talos_client).upgrade("10.0.0.1", "v1.33.2", "v1.33.3")
