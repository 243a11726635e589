"""
SQLite-backed ``KeyValueStore`` over the ``kv_documents`` table.

Every ``set`` / ``delete`` commits immediately so a document is durable as
soon as the history store hands it back. Storage errors are logged and
reported as ``None`` / ``False`` — they never propagate to the caller.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from typing import Optional

from fx_favorability.db.repositories.base import BaseRepository
from fx_favorability.storage.kv import KeyValueStore
from fx_favorability.utils.time_utils import format_timestamp, utcnow

logger = logging.getLogger(__name__)


class SqliteKeyValueStore(BaseRepository, KeyValueStore):
    """Read/write access to ``kv_documents``.

    Writes hold one store-wide lock from statement to commit, so threads
    appending different pairs never share (or commit) each other's transaction.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        super().__init__(conn)
        self._write_lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        try:
            row = self.fetchone("SELECT payload FROM kv_documents WHERE key = ?;", (key,))
        except sqlite3.Error as exc:
            logger.error("Failed to read %s: %s", key, exc, extra={"key": key})
            return None
        return row["payload"] if row else None

    def set(self, key: str, payload: str) -> bool:
        try:
            with self._write_lock:
                self.execute(
                    """
                    INSERT INTO kv_documents (key, payload, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        payload    = excluded.payload,
                        updated_at = excluded.updated_at;
                    """,
                    (key, payload, format_timestamp(utcnow())),
                )
                self.conn.commit()
        except sqlite3.Error as exc:
            logger.error("Failed to write %s: %s", key, exc, extra={"key": key})
            return False
        return True

    def delete(self, key: str) -> bool:
        try:
            with self._write_lock:
                self.execute("DELETE FROM kv_documents WHERE key = ?;", (key,))
                self.conn.commit()
        except sqlite3.Error as exc:
            logger.error("Failed to delete %s: %s", key, exc, extra={"key": key})
            return False
        return True

    def keys(self, prefix: str = "") -> list[str]:
        """Stored keys starting with ``prefix``, sorted."""
        rows = self.fetchall(
            "SELECT key FROM kv_documents WHERE key LIKE ? ESCAPE '\\' ORDER BY key;",
            (_escape_like(prefix) + "%",),
        )
        return [r["key"] for r in rows]


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
