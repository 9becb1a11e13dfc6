"""Repository package for database access."""

from .content import SqliteContentRepository
from .sync_history import SqliteSyncHistoryRepository

__all__ = [
    "SqliteContentRepository",
    "SqliteSyncHistoryRepository",
]
