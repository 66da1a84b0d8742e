"""Data store selection.

``get_store()`` returns the process-wide store: Postgres when
``DATABASE_URL`` is configured, otherwise the in-process store.
"""

from __future__ import annotations

import logging

from course_platform.config import get_settings
from course_platform.store.base import DataStore
from course_platform.store.memory import MemoryStore

logger = logging.getLogger(__name__)

_store: DataStore | None = None


def get_store() -> DataStore:
    """Get or create the global data store."""
    global _store
    if _store is None:
        dsn = get_settings().database_url
        if dsn:
            from course_platform.store.postgres import PostgresStore

            store = PostgresStore(dsn)
            store.init_tables()
            _store = store
        else:
            logger.warning("DATABASE_URL not set, using in-process store (single instance only)")
            _store = MemoryStore()
    return _store


def set_store(store: DataStore | None) -> None:
    """Replace the global store (tests, alternate backends)."""
    global _store
    _store = store


__all__ = ["DataStore", "MemoryStore", "get_store", "set_store"]
