"""Database module for practice persistence.

Provides:
- Store protocols and in-memory stores (stores)
- SQLite connection management and schema initialization (database)
- SQLite store implementations (sqlite_stores)
"""

from drillcoach.db.database import get_db, init_db
from drillcoach.db.stores import (
    DuplicateDrillError,
    StoreError,
    Stores,
    create_memory_stores,
)
from drillcoach.db.sqlite_stores import create_sqlite_stores

__all__ = [
    "get_db",
    "init_db",
    "DuplicateDrillError",
    "StoreError",
    "Stores",
    "create_memory_stores",
    "create_sqlite_stores",
]
