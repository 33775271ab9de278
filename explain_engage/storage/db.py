"""
Database connection management.

Provides short-lived SQLite connections for the engagement store.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "explain_engage.db"

# Seconds a writer waits on a locked database before giving up
BUSY_TIMEOUT = 5.0


def get_connection(db_path: str = DEFAULT_DB_PATH, timeout: float = BUSY_TIMEOUT) -> sqlite3.Connection:
    """Open a SQLite connection with foreign keys enabled.

    Concurrent writers serialize on the database lock; each waits up to
    timeout seconds before sqlite raises "database is locked".

    Args:
        db_path: Path to SQLite database file
        timeout: Busy timeout in seconds

    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=timeout)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn
