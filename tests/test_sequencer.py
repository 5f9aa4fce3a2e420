"""Test one-node-at-a-time sequencing."""

import asyncio

import pytest
from unittest.mock import AsyncMock, Mock

from conftest import RecordingNodeUpgrader, make_node
from water.errors import NodeNotFound, UpgradeTimeout
from water.model.result import UpgradeLayer, UpgradeResult
from water.upgrade.layers import LayerDriver, TalosLayer
from water.upgrade.sequencer import NodeSequencer


def fake_monitor(converged=None, error=None):
    monitor = Mock()
    monitor.wait_for_convergence = AsyncMock(side_effect=error, return_value=converged or [])
    return monitor


def nodes(*names):
    return {name: make_node(name, endpoint=f"ep-{name}") for name in names}


def talos_driver(upgrader):
    return TalosLayer(upgrader, target_version="v1.10.5", image_ref="installer:v1.10.5", reboot_timeout=5)


class TestNodeSequencer:
    @pytest.mark.asyncio
    async def test_upgrades_in_order_then_monitors(self):
        upgrader = RecordingNodeUpgrader()
        monitor = fake_monitor(["n1", "n2", "n3"])
        result = UpgradeResult()

        converged = await NodeSequencer(monitor, inter_node_delay=0).run(
            ["n1", "n2", "n3"], nodes("n1", "n2", "n3"), talos_driver(upgrader), result
        )

        assert upgrader.upgraded == ["ep-n1", "ep-n2", "ep-n3"]
        assert upgrader.health_checked == ["ep-n1", "ep-n2", "ep-n3"]
        assert result.nodes_upgraded == ["n1", "n2", "n3"]
        assert converged == ["n1", "n2", "n3"]
        monitor.wait_for_convergence.assert_awaited_once_with("v1.10.5", ["n1", "n2", "n3"], UpgradeLayer.TALOS)

    @pytest.mark.asyncio
    async def test_failed_node_does_not_stop_the_batch(self):
        upgrader = RecordingNodeUpgrader(fail_upgrade={"ep-n2"})
        result = UpgradeResult()

        await NodeSequencer(fake_monitor(), inter_node_delay=0).run(
            ["n1", "n2", "n3"], nodes("n1", "n2", "n3"), talos_driver(upgrader), result
        )

        assert upgrader.upgraded == ["ep-n1", "ep-n2", "ep-n3"]
        assert result.nodes_upgraded == ["n1", "n3"]
        assert result.failed_nodes == ["n2"]
        assert result.rollback_required
        assert len(result.errors) == 1
        assert "n2" in result.errors[0]

    @pytest.mark.asyncio
    async def test_unhealthy_node_is_recorded(self):
        upgrader = RecordingNodeUpgrader(fail_health={"ep-n1"})
        result = UpgradeResult()

        await NodeSequencer(fake_monitor(), inter_node_delay=0).run(
            ["n1", "n2"], nodes("n1", "n2"), talos_driver(upgrader), result
        )

        assert result.failed_nodes == ["n1"]
        assert result.nodes_upgraded == ["n2"]
        assert "failed to come back online" in result.errors[0]

    @pytest.mark.asyncio
    async def test_missing_node_aborts_batch(self):
        upgrader = RecordingNodeUpgrader()
        monitor = fake_monitor()
        result = UpgradeResult()

        with pytest.raises(NodeNotFound, match="node n2 not found in cluster info"):
            await NodeSequencer(monitor, inter_node_delay=0).run(
                ["n1", "n2", "n3"], nodes("n1", "n3"), talos_driver(upgrader), result
            )

        assert upgrader.upgraded == ["ep-n1"]
        assert result.nodes_upgraded == ["n1"]
        monitor.wait_for_convergence.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_node_upgrade_timeout_is_a_node_failure(self):
        class SlowDriver(LayerDriver):
            layer = UpgradeLayer.TALOS
            target_version = "v1.10.5"

            async def upgrade_node(self, node):
                await asyncio.sleep(10)

            async def await_node(self, node):
                pass

        result = UpgradeResult()
        await NodeSequencer(fake_monitor(), inter_node_delay=0, node_upgrade_timeout=0.01).run(
            ["n1"], nodes("n1"), SlowDriver(), result
        )

        assert result.failed_nodes == ["n1"]
        assert "timed out" in result.errors[0]

    @pytest.mark.asyncio
    async def test_monitor_timeout_propagates(self):
        monitor = fake_monitor(error=UpgradeTimeout("upgrade monitoring timed out", ["n1"]))
        result = UpgradeResult()

        with pytest.raises(UpgradeTimeout):
            await NodeSequencer(monitor, inter_node_delay=0).run(
                ["n1"], nodes("n1"), talos_driver(RecordingNodeUpgrader()), result
            )
        assert result.nodes_upgraded == ["n1"]

    @pytest.mark.asyncio
    async def test_inter_node_delay_between_nodes_only(self, monkeypatch):
        sleeps = []
        real_sleep = asyncio.sleep

        async def recording_sleep(seconds):
            sleeps.append(seconds)
            await real_sleep(0)

        monkeypatch.setattr("water.upgrade.sequencer.asyncio.sleep", recording_sleep)
        await NodeSequencer(fake_monitor(), inter_node_delay=30).run(
            ["n1", "n2", "n3"], nodes("n1", "n2", "n3"), talos_driver(RecordingNodeUpgrader()), UpgradeResult()
        )
        assert sleeps == [30, 30]

    @pytest.mark.asyncio
    async def test_accepts_node_iterable(self):
        result = UpgradeResult()
        await NodeSequencer(fake_monitor(), inter_node_delay=0).run(
            ["n1"], list(nodes("n1").values()), talos_driver(RecordingNodeUpgrader()), result
        )
        assert result.nodes_upgraded == ["n1"]
