"""
SQLite database setup and connection management.

The database only carries small cross-tool handoff payloads (core keyword
list, comparison summary); analysis results themselves stay in memory.
"""

import sqlite3
import os
import logging
from contextlib import contextmanager

logger = logging.getLogger(__name__)

DB_PATH = os.getenv("DB_PATH", "seo_analyzer.db")


def get_connection() -> sqlite3.Connection:
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


@contextmanager
def db_conn():
    conn = get_connection()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db() -> None:
    """Create all tables if they don't exist."""
    with db_conn() as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS handoff (
                key         TEXT    PRIMARY KEY,
                payload     TEXT    NOT NULL,   -- JSON document
                updated_at  TEXT    NOT NULL DEFAULT (datetime('now'))
            );
        """)
    logger.info("Database initialised at %s", DB_PATH)
