"""Run-history service."""

import json
from datetime import datetime
from typing import List, Optional

from ..model.config import UpgradeConfig
from ..model.database import NodeOutcomeRecord, UpgradeRunRecord
from ..model.result import CheckReport, UpgradeResult
from ..utils.logger import get_logger
from .connection import AsyncDatabaseConnection, DatabaseDialect

logger = get_logger(__name__)


def _parse_timestamp(value) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


class RunHistoryService:
    """Records upgrade and check runs and reads them back."""

    def __init__(self, database_url: Optional[str] = None, connection: Optional[AsyncDatabaseConnection] = None):
        self.connection = connection or AsyncDatabaseConnection(database_url)

    async def close(self) -> None:
        await self.connection.disconnect()

    def _timestamp(self, value: datetime):
        # asyncpg binds datetimes natively; SQLite stores ISO-8601 text
        if self.connection.dialect == DatabaseDialect.POSTGRESQL.value:
            return value
        return value.isoformat()

    async def record_upgrade(self, config: UpgradeConfig, result: UpgradeResult, started_at: datetime) -> int:
        """Store an upgrade result with its per-node outcomes."""
        async with self.connection.transaction():
            run_id = await self.connection.insert_returning_id(
                "upgrade_runs",
                {
                    "started_at": self._timestamp(started_at),
                    "mode": "upgrade",
                    "talos_target": config.talos.version,
                    "k8s_target": config.k8s.version,
                    "talos_upgraded": result.talos_upgraded,
                    "k8s_upgraded": result.k8s_upgraded,
                    "rollback_required": result.rollback_required,
                    "duration_seconds": result.duration.total_seconds(),
                    "error_count": len(result.errors),
                    "summary": result.summary(),
                    "details": json.dumps(result.to_dict(), default=str),
                },
            )
            outcomes = [(name, True) for name in result.nodes_upgraded]
            outcomes += [(name, False) for name in result.failed_nodes]
            for name, succeeded in outcomes:
                await self.connection.insert_returning_id(
                    "node_outcomes", {"run_id": run_id, "node_name": name, "succeeded": succeeded}
                )

        logger.info(f"Upgrade run stored with ID {run_id}")
        return run_id

    async def record_check(self, config: UpgradeConfig, report: CheckReport, started_at: datetime) -> int:
        run_id = await self.connection.insert_returning_id(
            "upgrade_runs",
            {
                "started_at": self._timestamp(started_at),
                "mode": "check",
                "talos_target": config.talos.version,
                "k8s_target": config.k8s.version,
                "error_count": len(report.errors),
                "summary": report.summary(),
                "details": report.json(),
            },
        )
        logger.info(f"Check run stored with ID {run_id}")
        return run_id

    def _to_record(self, row: dict, nodes: Optional[List[dict]] = None) -> UpgradeRunRecord:
        data = dict(row)
        data["started_at"] = _parse_timestamp(data["started_at"])
        for flag in ("talos_upgraded", "k8s_upgraded", "rollback_required"):
            data[flag] = bool(data.get(flag))
        data["nodes"] = [
            NodeOutcomeRecord(node_name=node["node_name"], succeeded=bool(node["succeeded"])) for node in nodes or []
        ]
        return UpgradeRunRecord(**data)

    async def list_runs(self, limit: int = 20) -> List[UpgradeRunRecord]:
        rows = await self.connection.fetch_all(
            "SELECT * FROM upgrade_runs ORDER BY started_at DESC, id DESC LIMIT :limit", {"limit": limit}
        )
        return [self._to_record(row) for row in rows]

    async def get_run(self, run_id: int) -> Optional[UpgradeRunRecord]:
        row = await self.connection.fetch_one("SELECT * FROM upgrade_runs WHERE id = :id", {"id": run_id})
        if row is None:
            return None
        nodes = await self.connection.fetch_all(
            "SELECT node_name, succeeded FROM node_outcomes WHERE run_id = :run_id ORDER BY id", {"run_id": run_id}
        )
        return self._to_record(row, nodes)
