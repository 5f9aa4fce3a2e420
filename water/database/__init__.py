"""Run-history persistence."""

from .connection import AsyncDatabaseConnection, default_database_url
from .service import RunHistoryService

__all__ = ["AsyncDatabaseConnection", "RunHistoryService", "default_database_url"]
