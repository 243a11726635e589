"""
Tests for fx_favorability/pipeline/record.py and pipeline/base.py.

A fake rates client stands in for the HTTP client; storage is either the
in-memory key-value store or a throwaway SQLite file.

What we test
------------
derive_pair_rates():
  - Plain symbols map to ``BASE->SYM``.
  - Cross pairs replace ``BASE->SYM`` with ``SYM->TARGET`` = target / sym.
  - Cross pairs with a missing target are skipped.

RecordRatesStage.run():
  - One sample and one report per derived pair.
  - Previous snapshot drives ``delta`` on the next run.
  - Failed fetch records nothing and still succeeds.
  - Client exceptions mark the run failed and propagate.
  - Run metadata persisted when ``persist_runs`` is on.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional, get_type_hints

import pytest

from fx_favorability.config import AppConfig
from fx_favorability.db.connection import get_connection
from fx_favorability.db.repositories.kv_repo import SqliteKeyValueStore
from fx_favorability.db.repositories.run_repo import RunMetadataRepository
from fx_favorability.db.schema import apply_schema
from fx_favorability.history.store import TimeSeriesStore
from fx_favorability.models.rates import ExchangeRates
from fx_favorability.pipeline.record import (
    PREVIOUS_RATES_KEY_PREFIX,
    RecordRatesStage,
    derive_pair_rates,
    load_previous_rates,
)
from fx_favorability.scoring.favorability import Label

T0 = datetime(2026, 10, 1, 12, 0, 0, tzinfo=timezone.utc)


# ── Helpers ────────────────────────────────────────────────────────────────────

def _rates(cop: float = 4000.0, mxn: float = 18.0, eur: float = 0.8) -> ExchangeRates:
    return ExchangeRates(
        base="USD",
        date="2026-10-01",
        rates={"COP": cop, "MXN": mxn, "EUR": eur},
    )


class _FakeClient:
    """Returns queued snapshots in order; ``None`` entries simulate failures."""

    def __init__(self, *responses: Optional[ExchangeRates]) -> None:
        self.responses = list(responses)
        self.calls: list[tuple[str, list[str]]] = []

    def fetch_latest(self, base: str, symbols: list[str]) -> Optional[ExchangeRates]:
        self.calls.append((base, symbols))
        return self.responses.pop(0)


class _ExplodingClient:
    def fetch_latest(self, base: str, symbols: list[str]):
        raise RuntimeError("provider exploded")


def _by_pair(stage: RecordRatesStage) -> dict:
    return {r.pair: r for r in stage.reports}


# ── Pair derivation ────────────────────────────────────────────────────────────

class TestDerivePairRates:
    def test_plain_symbols(self):
        assert derive_pair_rates(_rates(), {}) == {
            "USD->COP": 4000.0,
            "USD->MXN": 18.0,
            "USD->EUR": 0.8,
        }

    def test_cross_pair_replaces_direct_pair(self):
        result = derive_pair_rates(_rates(), {"EUR": "COP"})
        assert "USD->EUR" not in result
        assert result["EUR->COP"] == pytest.approx(5000.0)
        assert result["USD->COP"] == 4000.0

    def test_cross_pair_missing_target_skipped(self):
        result = derive_pair_rates(_rates(), {"EUR": "BRL"})
        assert "EUR->BRL" not in result
        assert "USD->EUR" not in result
        assert set(result) == {"USD->COP", "USD->MXN"}


# ── Stage execution ────────────────────────────────────────────────────────────

class TestRecordRatesStage:
    def test_records_each_pair(self, app_config, memory_kv):
        client = _FakeClient(_rates())
        stage = RecordRatesStage(app_config, persist_runs=False, client=client, kv=memory_kv)

        run = stage.run(observed_at=T0)

        assert run.status == "success"
        assert run.rows_processed == 3
        assert client.calls == [("USD", ["COP", "MXN", "EUR"])]

        reports = _by_pair(stage)
        assert set(reports) == {"USD->COP", "USD->MXN", "EUR->COP"}
        cop = reports["USD->COP"]
        assert cop.rate == 4000.0
        assert cop.samples == 1
        assert cop.previous_rate is None
        assert cop.delta is None
        assert cop.score.buyer_score == 50
        assert cop.score.buyer_label is Label.NEUTRAL

        doc = TimeSeriesStore(memory_kv).load("EUR->COP")
        assert doc.values() == [pytest.approx(5000.0)]
        assert doc.updated_at == T0

    def test_snapshot_saved_and_delta_computed(self, app_config, memory_kv):
        client = _FakeClient(_rates(cop=4000.0), _rates(cop=4100.0))
        stage = RecordRatesStage(app_config, persist_runs=False, client=client, kv=memory_kv)

        stage.run(observed_at=T0)
        assert load_previous_rates(memory_kv, "USD").rates["COP"] == 4000.0

        stage.run(observed_at=T0 + timedelta(hours=2))
        cop = _by_pair(stage)["USD->COP"]

        assert cop.previous_rate == 4000.0
        assert cop.delta == pytest.approx(100.0)
        assert cop.samples == 2
        # New high against a one-value history.
        assert cop.score.percentile == pytest.approx(0.75)
        assert cop.score.seller_score == 75
        assert memory_kv.get(PREVIOUS_RATES_KEY_PREFIX + "USD") is not None

    def test_run_within_gap_keeps_one_sample(self, app_config, memory_kv):
        client = _FakeClient(_rates(cop=4000.0), _rates(cop=4100.0))
        stage = RecordRatesStage(app_config, persist_runs=False, client=client, kv=memory_kv)

        stage.run(observed_at=T0)
        stage.run(observed_at=T0 + timedelta(minutes=15))

        doc = TimeSeriesStore(memory_kv).load("USD->COP")
        assert doc.values() == [4000.0]
        assert doc.updated_at == T0 + timedelta(minutes=15)

    def test_sub_millisecond_run_times_respect_gap(self, app_config, memory_kv):
        client = _FakeClient(_rates(cop=4000.0), _rates(cop=4100.0))
        stage = RecordRatesStage(app_config, persist_runs=False, client=client, kv=memory_kv)

        stage.run(observed_at=T0 + timedelta(microseconds=900))
        stage.run(observed_at=T0 + timedelta(minutes=60, microseconds=-400))

        doc = TimeSeriesStore(memory_kv).load("USD->COP")
        assert doc.values() == [4000.0]
        assert doc.samples[0].timestamp == T0

    def test_config_annotated_as_app_config(self):
        assert get_type_hints(RecordRatesStage.__init__)["config"] is AppConfig

    def test_failed_fetch_records_nothing(self, app_config, memory_kv):
        stage = RecordRatesStage(app_config, persist_runs=False, client=_FakeClient(None), kv=memory_kv)

        run = stage.run(observed_at=T0)

        assert run.status == "success"
        assert run.rows_processed == 0
        assert stage.reports == []
        assert memory_kv.keys() == []

    def test_unreadable_previous_snapshot_ignored(self, app_config, memory_kv):
        memory_kv.set(PREVIOUS_RATES_KEY_PREFIX + "USD", '{"base": "USD"}')
        stage = RecordRatesStage(app_config, persist_runs=False, client=_FakeClient(_rates()), kv=memory_kv)

        stage.run(observed_at=T0)

        assert all(r.delta is None for r in stage.reports)

    def test_client_exception_marks_failed_and_propagates(self, app_config, memory_kv):
        stage = RecordRatesStage(app_config, persist_runs=False, client=_ExplodingClient(), kv=memory_kv)
        with pytest.raises(RuntimeError, match="provider exploded"):
            stage.run(observed_at=T0)

    def test_report_to_dict(self, app_config, memory_kv):
        stage = RecordRatesStage(app_config, persist_runs=False, client=_FakeClient(_rates()), kv=memory_kv)
        stage.run(observed_at=T0)

        payload = _by_pair(stage)["USD->MXN"].to_dict()
        assert payload["pair"] == "USD->MXN"
        assert payload["observedAt"] == "2026-10-01T12:00:00.000Z"
        assert payload["score"]["buyerScore"] == 50


# ── SQLite-backed runs ─────────────────────────────────────────────────────────

class TestRecordRatesStageSqlite:
    def test_writes_history_and_run_metadata(self, app_config):
        stage = RecordRatesStage(app_config, client=_FakeClient(_rates()))
        run = stage.run(observed_at=T0)

        with get_connection(app_config.database.db_path, wal_mode=False) as conn:
            kv = SqliteKeyValueStore(conn)
            assert sorted(kv.keys("fx:")) == ["fx:EUR->COP", "fx:USD->COP", "fx:USD->MXN"]
            stored = RunMetadataRepository(conn).get_run_by_slug(run.run_slug)

        assert stored is not None
        assert stored.status == "success"
        assert stored.rows_processed == 3
        assert stored.pipeline_stage == "record"
        assert stored.config_snapshot["history"]["max_samples"] == 5

    def test_failed_run_persisted(self, app_config, memory_kv):
        with get_connection(app_config.database.db_path, wal_mode=False) as conn:
            apply_schema(conn)

        stage = RecordRatesStage(app_config, client=_ExplodingClient(), kv=memory_kv)
        with pytest.raises(RuntimeError):
            stage.run(observed_at=T0)

        with get_connection(app_config.database.db_path, wal_mode=False) as conn:
            runs = RunMetadataRepository(conn).get_recent_runs()

        assert len(runs) == 1
        assert runs[0].status == "failed"
        assert "provider exploded" in runs[0].error_message

    def test_dry_run_does_not_touch_database(self, app_config, memory_kv, tmp_path):
        stage = RecordRatesStage(app_config, persist_runs=False, client=_FakeClient(_rates()), kv=memory_kv)
        stage.run(observed_at=T0)
        assert not (tmp_path / "fx.db").exists()
