# src/mailvision/infrastructure/__init__.py
"""Infrastructure layer - IMAP, SQLite, vision API and configuration."""

from mailvision.infrastructure.settings import Settings, get_settings
from mailvision.infrastructure.sqlite import SQLiteImageStore

__all__ = [
    # Settings
    "Settings",
    "get_settings",
    # Storage
    "SQLiteImageStore",
]
