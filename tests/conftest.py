"""
Shared pytest fixtures for the FX Favorability test suite.

Provides:
  - ``in_memory_db``: a fresh in-memory SQLite connection with the schema applied.
  - ``memory_kv`` / ``sqlite_kv``: key-value stores for history tests.
  - ``history_config`` / ``app_config``: small, quiet configurations.
"""

from __future__ import annotations

import sqlite3
from typing import Generator

import pytest

from fx_favorability.config import AppConfig, HistoryConfig, LoggingConfig
from fx_favorability.db.repositories.kv_repo import SqliteKeyValueStore
from fx_favorability.db.schema import apply_schema
from fx_favorability.storage.kv import InMemoryKeyValueStore


# ── Database fixtures ─────────────────────────────────────────────────────────

@pytest.fixture
def in_memory_db() -> Generator[sqlite3.Connection, None, None]:
    """Yield a fresh in-memory SQLite connection with the schema applied."""
    conn = sqlite3.connect(":memory:", check_same_thread=False)
    conn.row_factory = sqlite3.Row
    apply_schema(conn)
    yield conn
    conn.close()


@pytest.fixture
def sqlite_kv(in_memory_db: sqlite3.Connection) -> SqliteKeyValueStore:
    return SqliteKeyValueStore(in_memory_db)


@pytest.fixture
def memory_kv() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


# ── Config fixtures ───────────────────────────────────────────────────────────

@pytest.fixture
def history_config() -> HistoryConfig:
    """Small retention window so truncation is easy to exercise."""
    return HistoryConfig(max_samples=5, min_gap_minutes=60)


@pytest.fixture
def app_config(tmp_path) -> AppConfig:
    """Full config pointing at a throwaway database with quiet logging."""
    return AppConfig(
        database={"db_path": str(tmp_path / "fx.db"), "wal_mode": False},
        history=HistoryConfig(max_samples=5, min_gap_minutes=60),
        logging=LoggingConfig(level="ERROR", log_file=""),
    )
