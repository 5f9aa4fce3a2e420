"""Async database connection using aiosqlite or asyncpg."""

import re
from contextlib import asynccontextmanager
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import aiosqlite
import asyncpg

from ..utils.logger import get_logger

logger = get_logger(__name__)


class DatabaseDialect(Enum):
    """Enum for database dialects."""

    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"
    UNKNOWN = "unknown"


DIALECT_DETECTORS: Dict[str, Callable[[str], bool]] = {
    "sqlite": lambda url: url.startswith("sqlite"),
    "postgresql": lambda url: url.startswith("postgresql"),
}


def detect_database_dialect(database_url: str) -> str:
    """Detect database dialect from URL."""
    for dialect_name, detector_func in DIALECT_DETECTORS.items():
        if detector_func(database_url):
            return dialect_name
    return DatabaseDialect.UNKNOWN.value


def default_database_url() -> str:
    db_path = Path.home() / ".water" / "history.db"
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{db_path}"


def _convert_postgres(query: str, values: Optional[Dict[str, Any]]) -> Tuple[str, List[Any]]:
    """Convert :named parameters to asyncpg positional parameters."""
    if not values:
        return query, []

    new_query = ""
    params: List[Any] = []
    idx = 1
    i = 0
    while i < len(query):
        if query[i] == ":":
            j = i + 1
            while j < len(query) and (query[j].isalnum() or query[j] == "_"):
                j += 1
            name = query[i + 1 : j]
            new_query += f"${idx}"
            params.append(values.get(name))
            idx += 1
            i = j
        else:
            new_query += query[i]
            i += 1
    return new_query, params


SQLITE_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS upgrade_runs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        started_at TIMESTAMP NOT NULL,
        mode TEXT NOT NULL,
        talos_target TEXT,
        k8s_target TEXT,
        talos_upgraded BOOLEAN DEFAULT FALSE,
        k8s_upgraded BOOLEAN DEFAULT FALSE,
        rollback_required BOOLEAN DEFAULT FALSE,
        duration_seconds REAL DEFAULT 0,
        error_count INTEGER DEFAULT 0,
        summary TEXT,
        details TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS node_outcomes (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        run_id INTEGER NOT NULL,
        node_name TEXT NOT NULL,
        succeeded BOOLEAN NOT NULL,
        FOREIGN KEY (run_id) REFERENCES upgrade_runs (id) ON DELETE CASCADE
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_run_started ON upgrade_runs (started_at)",
    "CREATE INDEX IF NOT EXISTS idx_outcome_run ON node_outcomes (run_id)",
]

POSTGRESQL_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS upgrade_runs (
        id SERIAL PRIMARY KEY,
        started_at TIMESTAMP NOT NULL,
        mode VARCHAR(20) NOT NULL,
        talos_target VARCHAR(50),
        k8s_target VARCHAR(50),
        talos_upgraded BOOLEAN DEFAULT FALSE,
        k8s_upgraded BOOLEAN DEFAULT FALSE,
        rollback_required BOOLEAN DEFAULT FALSE,
        duration_seconds DOUBLE PRECISION DEFAULT 0,
        error_count INTEGER DEFAULT 0,
        summary TEXT,
        details TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS node_outcomes (
        id SERIAL PRIMARY KEY,
        run_id INTEGER NOT NULL REFERENCES upgrade_runs (id) ON DELETE CASCADE,
        node_name VARCHAR(255) NOT NULL,
        succeeded BOOLEAN NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_run_started ON upgrade_runs (started_at)",
    "CREATE INDEX IF NOT EXISTS idx_outcome_run ON node_outcomes (run_id)",
]


class AsyncDatabaseConnection:
    """Async database connection manager."""

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or default_database_url()
        self.dialect = detect_database_dialect(self.database_url)
        self._connected = False
        self._conn: Optional[aiosqlite.Connection] = None
        self._pool: Optional[asyncpg.pool.Pool] = None
        self._in_transaction = 0
        self._tx_conn: Optional[asyncpg.Connection] = None

        logger.debug(f"Database initialized: {self.database_url}")

    async def connect(self):
        """Connect to database."""
        if self._connected:
            return

        if self.dialect == DatabaseDialect.SQLITE.value:
            path = self.database_url.replace("sqlite:///", "")
            self._conn = await aiosqlite.connect(path)
            self._conn.row_factory = aiosqlite.Row
        elif self.dialect == DatabaseDialect.POSTGRESQL.value:
            self._pool = await asyncpg.create_pool(self.database_url)
        else:
            raise ValueError(f"Unsupported database URL: {self.database_url}")

        self._connected = True
        await self.initialize_schema()
        logger.debug("Database connected")

    async def disconnect(self):
        """Disconnect from database."""
        if not self._connected:
            return

        if self.dialect == DatabaseDialect.SQLITE.value and self._conn:
            await self._conn.close()
        elif self.dialect == DatabaseDialect.POSTGRESQL.value and self._pool:
            await self._pool.close()

        self._connected = False
        logger.debug("Database disconnected")

    @asynccontextmanager
    async def transaction(self):
        """Transaction context manager."""
        await self.connect()
        if self.dialect == DatabaseDialect.SQLITE.value and self._conn:
            await self._conn.execute("BEGIN")
            self._in_transaction += 1
            try:
                yield self
                await self._conn.commit()
            except Exception:
                await self._conn.rollback()
                raise
            finally:
                self._in_transaction -= 1
        elif self.dialect == DatabaseDialect.POSTGRESQL.value and self._pool:
            conn = await self._pool.acquire()
            tx = conn.transaction()
            await tx.start()
            self._in_transaction += 1
            prev_conn = self._tx_conn
            self._tx_conn = conn
            try:
                yield self
                await tx.commit()
            except Exception:
                await tx.rollback()
                raise
            finally:
                self._in_transaction -= 1
                self._tx_conn = prev_conn
                await self._pool.release(conn)
        else:
            yield self

    async def initialize_schema(self):
        """Initialize database schema."""
        schemas = {
            DatabaseDialect.SQLITE.value: SQLITE_SCHEMA,
            DatabaseDialect.POSTGRESQL.value: POSTGRESQL_SCHEMA,
        }
        queries = schemas.get(self.dialect)
        if queries is None:
            logger.warning(f"No schema initializer for dialect: {self.dialect}")
            return
        for query in queries:
            await self.execute(query)

    async def execute(self, query: str, values: Optional[Dict[str, Any]] = None) -> int:
        """Execute a query and return affected rows."""
        await self.connect()
        if self.dialect == DatabaseDialect.SQLITE.value and self._conn:
            cursor = await self._conn.execute(query, values or {})
            if self._in_transaction == 0:
                await self._conn.commit()
            return cursor.rowcount
        elif self.dialect == DatabaseDialect.POSTGRESQL.value and self._pool:
            pg_query, params = _convert_postgres(query, values)
            conn = self._tx_conn or self._pool
            result = await conn.execute(pg_query, *params)
            try:
                return int(result.split()[-1])
            except (ValueError, IndexError):
                return 0
        else:
            raise RuntimeError("Database not connected")

    async def fetch_one(self, query: str, values: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """Fetch one row as dictionary."""
        await self.connect()
        if self.dialect == DatabaseDialect.SQLITE.value and self._conn:
            cursor = await self._conn.execute(query, values or {})
            row = await cursor.fetchone()
            return dict(row) if row else None
        elif self.dialect == DatabaseDialect.POSTGRESQL.value and self._pool:
            pg_query, params = _convert_postgres(query, values)
            conn = self._tx_conn or self._pool
            row = await conn.fetchrow(pg_query, *params)
            return dict(row) if row else None
        return None

    async def fetch_all(self, query: str, values: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Fetch all rows as list of dictionaries."""
        await self.connect()
        if self.dialect == DatabaseDialect.SQLITE.value and self._conn:
            cursor = await self._conn.execute(query, values or {})
            rows = await cursor.fetchall()
            return [dict(row) for row in rows]
        elif self.dialect == DatabaseDialect.POSTGRESQL.value and self._pool:
            pg_query, params = _convert_postgres(query, values)
            conn = self._tx_conn or self._pool
            rows = await conn.fetch(pg_query, *params)
            return [dict(r) for r in rows]
        return []

    async def insert_returning_id(self, table: str, data: Dict[str, Any]) -> Optional[int]:
        """Insert and return the new record ID."""
        await self.connect()
        columns = list(data.keys())
        placeholders = [f":{col}" for col in columns]
        if self.dialect == DatabaseDialect.SQLITE.value and self._conn:
            query = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({', '.join(placeholders)})"
            cursor = await self._conn.execute(query, data)
            if self._in_transaction == 0:
                await self._conn.commit()
            return cursor.lastrowid
        elif self.dialect == DatabaseDialect.POSTGRESQL.value and self._pool:
            query = (
                f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({', '.join(placeholders)}) RETURNING id"
            )
            pg_query, params = _convert_postgres(query, data)
            conn = self._tx_conn or self._pool
            row = await conn.fetchrow(pg_query, *params)
            return row["id"] if row else None
        return None

    def get_database_info(self) -> Dict[str, Any]:
        """Get database information, with any password in the URL masked."""
        engine = "aiosqlite" if self.dialect == DatabaseDialect.SQLITE.value else "asyncpg"
        return {
            "url": re.sub(r"//([^:/@]+):[^@]*@", r"//\1:***@", self.database_url),
            "connected": self._connected,
            "engine": engine,
        }
