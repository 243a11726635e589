"""Tests for SQLite schema — idempotency, table/index creation, connection setup."""

from __future__ import annotations

import sqlite3

import pytest

from fx_favorability.db.connection import get_connection
from fx_favorability.db.schema import ALL_TABLE_NAMES, apply_schema, get_existing_tables


class TestApplySchema:
    def test_all_tables_created(self, in_memory_db):
        tables = get_existing_tables(in_memory_db)
        for expected_table in ALL_TABLE_NAMES:
            assert expected_table in tables, (
                f"Expected table '{expected_table}' not found in database. "
                f"Found: {tables}"
            )

    def test_idempotent_double_apply(self, in_memory_db):
        """apply_schema() called twice must not raise errors."""
        apply_schema(in_memory_db)
        tables = get_existing_tables(in_memory_db)
        assert set(ALL_TABLE_NAMES) <= set(tables)

    def test_run_metadata_index_created(self, in_memory_db):
        indexes = [
            row[0]
            for row in in_memory_db.execute(
                "SELECT name FROM sqlite_master WHERE type='index';"
            ).fetchall()
        ]
        assert "idx_run_metadata_stage_started" in indexes


class TestTableStructure:
    def test_kv_documents_columns(self, in_memory_db):
        cols = [
            row[1]
            for row in in_memory_db.execute("PRAGMA table_info(kv_documents);").fetchall()
        ]
        assert cols == ["key", "payload", "updated_at"]

    def test_run_slug_is_unique(self, in_memory_db):
        insert = (
            "INSERT INTO run_metadata (run_slug, pipeline_stage, config_snapshot, started_at) "
            "VALUES ('dup', 'record', '{}', '2026-10-01T00:00:00');"
        )
        in_memory_db.execute(insert)
        with pytest.raises(sqlite3.IntegrityError):
            in_memory_db.execute(insert)


class TestGetConnection:
    def test_creates_parent_directories(self, tmp_path):
        db_path = tmp_path / "nested" / "dir" / "fx.db"
        with get_connection(str(db_path)) as conn:
            apply_schema(conn)
        assert db_path.exists()

    def test_wal_mode_enabled(self, tmp_path):
        with get_connection(str(tmp_path / "fx.db"), wal_mode=True) as conn:
            mode = conn.execute("PRAGMA journal_mode;").fetchone()[0]
        assert mode.lower() == "wal"

    def test_row_factory(self, tmp_path):
        with get_connection(str(tmp_path / "fx.db")) as conn:
            row = conn.execute("SELECT 1 AS one;").fetchone()
        assert row["one"] == 1

    def test_commits_on_clean_exit(self, tmp_path):
        db_path = str(tmp_path / "fx.db")
        with get_connection(db_path) as conn:
            apply_schema(conn)
            conn.execute("INSERT INTO kv_documents (key, payload) VALUES ('k', 'v');")
        with get_connection(db_path) as conn:
            row = conn.execute("SELECT payload FROM kv_documents WHERE key = 'k';").fetchone()
        assert row["payload"] == "v"

    def test_rolls_back_on_error(self, tmp_path):
        db_path = str(tmp_path / "fx.db")
        with get_connection(db_path) as conn:
            apply_schema(conn)
        with pytest.raises(RuntimeError):
            with get_connection(db_path) as conn:
                conn.execute("INSERT INTO kv_documents (key, payload) VALUES ('k', 'v');")
                raise RuntimeError("boom")
        with get_connection(db_path) as conn:
            row = conn.execute("SELECT COUNT(*) AS n FROM kv_documents;").fetchone()
        assert row["n"] == 0

    def test_in_memory_path(self):
        with get_connection(":memory:") as conn:
            apply_schema(conn)
            assert "kv_documents" in get_existing_tables(conn)
