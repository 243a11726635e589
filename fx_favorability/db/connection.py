"""
SQLite connection management.

``get_connection()`` yields a connection that:
  - Uses WAL journal mode (optional) so readers don't block the recorder.
  - Waits ``busy_timeout_ms`` on lock contention instead of failing at once.
  - Returns ``sqlite3.Row`` rows (dict-like access).
  - Commits on clean exit, rolls back on exception, always closes.

Usage::

    from fx_favorability.db.connection import get_connection

    with get_connection("data/db/fx_favorability.db") as conn:
        store = SqliteKeyValueStore(conn)
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

logger = logging.getLogger(__name__)

IN_MEMORY = ":memory:"


@contextmanager
def get_connection(
    db_path: str,
    wal_mode: bool = True,
    busy_timeout_ms: int = 5000,
) -> Generator[sqlite3.Connection, None, None]:
    """Context manager yielding a configured SQLite connection.

    Args:
        db_path: Database file path, or ``":memory:"``. Parent directories
            are created when missing.
        wal_mode: Enable WAL journal mode (ignored for in-memory databases).
        busy_timeout_ms: Lock wait before ``OperationalError`` is raised.

    Yields:
        An open ``sqlite3.Connection``.

    Raises:
        sqlite3.OperationalError: If the database cannot be opened or is locked.
    """
    if db_path != IN_MEMORY:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    # check_same_thread=False: the history store may be driven from worker
    # threads. Per-pair locks order appends within a pair; the key-value
    # store's write lock keeps each write and its commit together.
    conn = sqlite3.connect(
        db_path, timeout=busy_timeout_ms / 1000, check_same_thread=False
    )
    conn.row_factory = sqlite3.Row
    logger.debug("Opened SQLite connection: %s", db_path)

    try:
        conn.execute(f"PRAGMA busy_timeout = {busy_timeout_ms};")
        if wal_mode and db_path != IN_MEMORY:
            conn.execute("PRAGMA journal_mode = WAL;")

        yield conn
        conn.commit()

    except Exception:
        conn.rollback()
        raise

    finally:
        conn.close()
