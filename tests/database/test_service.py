"""Tests for the run-history service against a real SQLite file."""

from datetime import datetime, timedelta

import pytest

from conftest import make_config
from water.database import RunHistoryService
from water.model.result import CheckReport, LayerCheck, UpgradeLayer, UpgradeResult


@pytest.fixture
async def service(tmp_path):
    svc = RunHistoryService(f"sqlite:///{tmp_path / 'history.db'}")
    yield svc
    await svc.close()


def make_result() -> UpgradeResult:
    result = UpgradeResult(talos_upgraded=True, duration=timedelta(seconds=95))
    result.add_upgraded_node("cp-1")
    result.add_upgraded_node("w-1")
    result.add_failed_node("w-2")
    result.add_error("failed to upgrade Talos on node w-2: connection refused")
    return result


def make_report() -> CheckReport:
    return CheckReport(
        talos=LayerCheck(
            layer=UpgradeLayer.TALOS,
            current_version="v1.10.4",
            target_version="v1.10.5",
            version_available=True,
            needs_upgrade=True,
            nodes_to_upgrade=["cp-1"],
        ),
        kubernetes=LayerCheck(
            layer=UpgradeLayer.KUBERNETES,
            current_version="v1.33.3",
            target_version="v1.33.3",
            version_available=True,
        ),
    )


@pytest.mark.integration
class TestRunHistoryService:
    @pytest.mark.asyncio
    async def test_record_and_get_upgrade(self, service):
        started = datetime(2025, 7, 1, 12, 0, 0)
        run_id = await service.record_upgrade(make_config(), make_result(), started)

        run = await service.get_run(run_id)
        assert run.mode == "upgrade"
        assert run.started_at == started
        assert run.talos_target == "v1.10.5"
        assert run.talos_upgraded is True
        assert run.k8s_upgraded is False
        assert run.rollback_required is True
        assert run.duration_seconds == 95
        assert run.error_count == 1
        assert run.failed_nodes == ["w-2"]
        assert [node.node_name for node in run.nodes if node.succeeded] == ["cp-1", "w-1"]

    @pytest.mark.asyncio
    async def test_record_check(self, service):
        run_id = await service.record_check(make_config(), make_report(), datetime(2025, 7, 2, 8, 30, 0))

        run = await service.get_run(run_id)
        assert run.mode == "check"
        assert run.error_count == 0
        assert run.summary.startswith("Upgrades are needed")
        assert run.nodes == []

    @pytest.mark.asyncio
    async def test_list_runs_newest_first(self, service):
        config = make_config()
        await service.record_check(config, make_report(), datetime(2025, 7, 1, 9, 0, 0))
        await service.record_upgrade(config, make_result(), datetime(2025, 7, 3, 9, 0, 0))
        await service.record_check(config, make_report(), datetime(2025, 7, 2, 9, 0, 0))

        runs = await service.list_runs(limit=2)
        assert [run.started_at.day for run in runs] == [3, 2]

    @pytest.mark.asyncio
    async def test_missing_run(self, service):
        assert await service.get_run(999) is None
