"""Test the command line interface."""

import pytest
import yaml
from unittest.mock import AsyncMock, Mock, patch
from typer.testing import CliRunner

from water import __version__
from water.cli.main import app
from water.errors import PrerequisitesNotMet
from water.model.config import UpgradeOrder
from water.model.result import CheckReport, LayerCheck, UpgradeLayer, UpgradeResult

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "water.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "talos": {"version": "v1.10.5", "imageId": "factory.talos.dev/installer/abc"},
                "k8s": {"version": "v1.33.3"},
            }
        )
    )
    return path


def fake_manager(result=None, report=None, error=None):
    manager = Mock()
    manager.perform_upgrade = AsyncMock(return_value=result, side_effect=error)
    manager.check_only = AsyncMock(return_value=report)
    manager.release_index = Mock(close=AsyncMock())
    return manager


def invoke(manager, *args):
    with patch("water.cli.main.build_manager", return_value=manager) as build:
        outcome = runner.invoke(app, ["upgrade", *args, "--no-store-history"])
    return outcome, build


class TestUpgradeCommand:
    def test_successful_upgrade(self, config_file):
        result = UpgradeResult(talos_upgraded=True, k8s_upgraded=True, nodes_upgraded=["cp-1"])
        outcome, _ = invoke(fake_manager(result=result), "--config", str(config_file))

        assert outcome.exit_code == 0
        assert "Upgrade Result" in outcome.stdout

    def test_errors_exit_non_zero(self, config_file):
        result = UpgradeResult(failed_nodes=["w-1"], errors=["failed to upgrade Talos on node w-1"])
        outcome, _ = invoke(fake_manager(result=result), "--config", str(config_file))

        assert outcome.exit_code == 1
        assert "failed to upgrade Talos on node w-1" in outcome.stdout

    def test_prerequisites_not_met(self, config_file):
        manager = fake_manager(error=PrerequisitesNotMet("some nodes are not ready for upgrade: w-1"))
        outcome, _ = invoke(manager, "--config", str(config_file))

        assert outcome.exit_code == 1
        assert "not ready" in outcome.stdout
        manager.release_index.close.assert_awaited_once()

    def test_missing_config(self, tmp_path):
        outcome, build = invoke(fake_manager(), "--config", str(tmp_path / "missing.yaml"))

        assert outcome.exit_code == 1
        assert "Configuration error" in outcome.stdout
        build.assert_not_called()

    def test_order_overrides(self, config_file):
        outcome, build = invoke(
            fake_manager(result=UpgradeResult()),
            "--config",
            str(config_file),
            "--talos-upgrade-order",
            "workers-first",
        )

        assert outcome.exit_code == 0
        config = build.call_args.args[0]
        assert config.talos.upgrade_order is UpgradeOrder.WORKERS_FIRST
        assert config.k8s.upgrade_order is UpgradeOrder.CONTROL_PLANE_FIRST

    def test_check_only(self, config_file):
        report = CheckReport(
            talos=LayerCheck(layer=UpgradeLayer.TALOS, current_version="v1.10.5", target_version="v1.10.5",
                             version_available=True),
            kubernetes=LayerCheck(layer=UpgradeLayer.KUBERNETES, current_version="v1.33.3",
                                  target_version="v1.33.3", version_available=True),
        )
        manager = fake_manager(report=report)
        outcome, _ = invoke(manager, "--config", str(config_file), "--check-only")

        assert outcome.exit_code == 0
        assert "cluster is up to date" in outcome.stdout
        manager.perform_upgrade.assert_not_awaited()


class TestOtherCommands:
    def test_version(self):
        outcome = runner.invoke(app, ["version"])
        assert outcome.exit_code == 0
        assert __version__ in outcome.stdout

    def test_history_empty(self, tmp_path):
        outcome = runner.invoke(app, ["history", "--database-url", f"sqlite:///{tmp_path / 'history.db'}"])
        assert outcome.exit_code == 0
        assert "No run history found" in outcome.stdout
        assert "History database:" in outcome.stdout
        assert "(aiosqlite)" in outcome.stdout
