"""SQLite infrastructure for image and mailbox state storage."""

from mailvision.infrastructure.sqlite.client import SQLiteImageStore

__all__ = [
    "SQLiteImageStore",
]
