"""
SQLite schema DDL.

All statements use ``IF NOT EXISTS`` so ``apply_schema()`` is idempotent.

Tables:
  1. kv_documents  — string payloads keyed by string (backs ``KeyValueStore``);
                     rate histories live here under ``fx:<pair>`` keys.
  2. run_metadata  — one audit row per pipeline run.
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

_DDL_KV_DOCUMENTS = """
CREATE TABLE IF NOT EXISTS kv_documents (
    key         TEXT    PRIMARY KEY,
    payload     TEXT    NOT NULL,
    updated_at  TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);
"""

_DDL_RUN_METADATA = """
CREATE TABLE IF NOT EXISTS run_metadata (
    run_id          INTEGER PRIMARY KEY AUTOINCREMENT,
    run_slug        TEXT    NOT NULL UNIQUE,
    pipeline_stage  TEXT    NOT NULL,
    status          TEXT    NOT NULL DEFAULT 'started',
    config_snapshot TEXT    NOT NULL,
    rows_processed  INTEGER NOT NULL DEFAULT 0,
    error_message   TEXT,
    started_at      TEXT    NOT NULL,
    finished_at     TEXT
);
CREATE INDEX IF NOT EXISTS idx_run_metadata_stage_started
    ON run_metadata (pipeline_stage, started_at);
"""

_ALL_DDL = (
    _DDL_KV_DOCUMENTS,
    _DDL_RUN_METADATA,
)

ALL_TABLE_NAMES: tuple[str, ...] = ("kv_documents", "run_metadata")


def apply_schema(conn: sqlite3.Connection) -> None:
    """Create all tables and indexes that do not exist yet.

    Args:
        conn: An open ``sqlite3.Connection``.
    """
    for ddl in _ALL_DDL:
        for statement in _split_ddl(ddl):
            conn.execute(statement)
    conn.commit()
    logger.info("Schema applied: %d tables created/verified.", len(ALL_TABLE_NAMES))


def _split_ddl(ddl: str) -> list[str]:
    return [s.strip() for s in ddl.split(";") if s.strip()]


def get_existing_tables(conn: sqlite3.Connection) -> list[str]:
    """Return table names present in the database, sorted."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name;"
    ).fetchall()
    return [row[0] for row in rows]
