"""SQLite database connection and schema management.

Provides connection management and schema initialization for the practice core.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

import structlog

logger = structlog.get_logger(__name__)

# Default database location
DEFAULT_DB_PATH = Path("db/practice.db")

# Current connection (module-level for simplicity in CLI context)
_db_path: Path | None = None


def init_db(db_path: Path | None = None) -> None:
    """Initialize database with schema.

    Creates the database file and all required tables if they don't exist.

    Args:
        db_path: Path to database file. Defaults to db/practice.db
    """
    global _db_path
    _db_path = db_path or DEFAULT_DB_PATH

    # Ensure directory exists
    _db_path.parent.mkdir(parents=True, exist_ok=True)

    with get_db() as conn:
        _create_schema(conn)

    logger.info("database.initialized", path=str(_db_path))


@contextmanager
def get_db(db_path: Path | None = None) -> Generator[sqlite3.Connection, None, None]:
    """Get database connection as context manager.

    Args:
        db_path: Explicit database file (defaults to the initialized one)

    Yields:
        SQLite connection with row factory set to sqlite3.Row

    Example:
        with get_db() as conn:
            cursor = conn.execute("SELECT * FROM skills")
            rows = cursor.fetchall()
    """
    path = db_path or _db_path or DEFAULT_DB_PATH

    # Ensure directory exists
    path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")

    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _create_schema(conn: sqlite3.Connection) -> None:
    """Create database schema.

    Indexed columns are duplicated out of the JSON payload for lookups.
    Uses IF NOT EXISTS for idempotency.
    """
    conn.executescript(
        """
        -- skills: one row per skill, payload holds the full record
        CREATE TABLE IF NOT EXISTS skills (
            skill_id TEXT PRIMARY KEY,
            goal_id TEXT NOT NULL,
            quest_id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            order_index INTEGER NOT NULL DEFAULT 0,
            payload TEXT NOT NULL
        );

        -- drills: at most one per (user, goal, date)
        CREATE TABLE IF NOT EXISTS drills (
            drill_id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            goal_id TEXT NOT NULL,
            scheduled_date TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'scheduled'
                CHECK(status IN ('scheduled', 'completed', 'missed')),
            outcome TEXT CHECK(outcome IN ('pass', 'fail', 'partial', 'skipped')),
            payload TEXT NOT NULL,
            UNIQUE(user_id, goal_id, scheduled_date)
        );

        CREATE TABLE IF NOT EXISTS week_plans (
            week_plan_id TEXT PRIMARY KEY,
            goal_id TEXT NOT NULL,
            week_number INTEGER NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending'
                CHECK(status IN ('pending', 'active', 'completed')),
            payload TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS learning_plans (
            goal_id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            payload TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS milestones (
            quest_id TEXT PRIMARY KEY,
            goal_id TEXT NOT NULL,
            payload TEXT NOT NULL
        );

        -- Indexes
        CREATE INDEX IF NOT EXISTS idx_skills_goal ON skills(goal_id);
        CREATE INDEX IF NOT EXISTS idx_skills_quest ON skills(quest_id);
        CREATE INDEX IF NOT EXISTS idx_skills_user ON skills(user_id);
        CREATE INDEX IF NOT EXISTS idx_drills_goal ON drills(goal_id);
        CREATE INDEX IF NOT EXISTS idx_week_plans_goal ON week_plans(goal_id);
        CREATE INDEX IF NOT EXISTS idx_milestones_goal ON milestones(goal_id);
        """
    )
