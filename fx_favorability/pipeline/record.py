"""
RecordRatesStage — fetch latest rates, extend each pair's history, score it.

Per run:
  1. Fetch ``config.rates.symbols`` against ``config.rates.base``.
  2. Read the previous snapshot (key ``"rates:<BASE>"``) and replace it with
     the new one; deltas are computed against the previous snapshot.
  3. Derive pair values. A plain symbol gives ``BASE->SYM`` = ``rates[SYM]``.
     A symbol listed in ``cross_pairs`` (``{"EUR": "COP"}``) gives
     ``EUR->COP`` = ``rates["COP"] / rates["EUR"]`` in place of ``USD->EUR``.
  4. Append one sample per pair to the ``TimeSeriesStore`` and score the
     resulting series with the ``FavorabilityEngine``.

The stage returns the number of pairs recorded; the per-pair results are
available afterwards as ``stage.reports``. A failed fetch records nothing and
is not an error (the client has already logged why).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from pydantic import ValidationError

from fx_favorability.config import AppConfig
from fx_favorability.history.store import TimeSeriesStore
from fx_favorability.ingestion.rates_client import ExchangeRatesClient
from fx_favorability.models.meta import RunMetadata
from fx_favorability.models.rates import ExchangeRates
from fx_favorability.models.series import Sample
from fx_favorability.pipeline.base import PipelineStage
from fx_favorability.scoring.favorability import FavorabilityEngine, FavorabilityScore
from fx_favorability.storage.kv import KeyValueStore, get_json, save_json
from fx_favorability.utils.time_utils import format_timestamp

logger = logging.getLogger(__name__)

PREVIOUS_RATES_KEY_PREFIX = "rates:"


@dataclass(frozen=True)
class PairReport:
    """Outcome of recording one pair in one run.

    Attributes:
        pair:          Pair identifier, e.g. ``"USD->COP"``.
        rate:          Value recorded this run.
        previous_rate: Value from the previous snapshot, if any.
        delta:         ``rate - previous_rate``; ``None`` without a previous value.
        samples:       Stored history length after the append.
        observed_at:   Timestamp used for the appended sample.
        score:         Favorability of ``rate`` against the stored history.
    """

    pair:          str
    rate:          float
    previous_rate: Optional[float]
    delta:         Optional[float]
    samples:       int
    observed_at:   datetime
    score:         FavorabilityScore

    def to_dict(self) -> dict[str, Any]:
        return {
            "pair":         self.pair,
            "rate":         self.rate,
            "previousRate": self.previous_rate,
            "delta":        self.delta,
            "samples":      self.samples,
            "observedAt":   format_timestamp(self.observed_at),
            "score":        self.score.to_dict(),
        }


def pair_id(base: str, quote: str) -> str:
    return f"{base}->{quote}"


def derive_pair_rates(
    rates: ExchangeRates,
    cross_pairs: dict[str, str],
) -> dict[str, float]:
    """Map a rates snapshot to ``{pair_id: value}``.

    Cross pairs whose target symbol is missing from the snapshot are skipped.
    """
    result: dict[str, float] = {}
    for symbol, rate in rates.rates.items():
        target = cross_pairs.get(symbol)
        if target is None:
            result[pair_id(rates.base, symbol)] = rate
            continue
        target_rate = rates.rates.get(target)
        if target_rate is None:
            logger.warning(
                "Skipping cross pair %s: no %s rate in snapshot",
                pair_id(symbol, target), target,
            )
            continue
        result[pair_id(symbol, target)] = target_rate / rate
    return result


def load_previous_rates(kv: KeyValueStore, base: str) -> Optional[ExchangeRates]:
    payload = get_json(kv, PREVIOUS_RATES_KEY_PREFIX + base)
    if payload is None:
        return None
    try:
        return ExchangeRates.model_validate(payload)
    except ValidationError:
        logger.warning("Ignoring unreadable previous rates snapshot for %s", base)
        return None


class RecordRatesStage(PipelineStage):
    """Record the latest rate of every configured pair and score it.

    Args:
        config: Application config.
        db_path: SQLite path override.
        persist_runs: Write ``run_metadata`` rows.
        client: Rates client; built from ``config.rates`` when ``None``.
        kv: Key-value store; the SQLite store at ``db_path`` when ``None``.
    """

    stage_name = "record"

    def __init__(
        self,
        config: AppConfig,
        db_path: str | None = None,
        persist_runs: bool = True,
        client: Optional[ExchangeRatesClient] = None,
        kv: Optional[KeyValueStore] = None,
    ) -> None:
        super().__init__(config, db_path=db_path, persist_runs=persist_runs)
        self.client = client
        self.kv = kv
        self.reports: list[PairReport] = []

    def _execute(
        self,
        run: RunMetadata,
        observed_at: Optional[datetime] = None,
        **kwargs,
    ) -> int:
        """Record all pairs.

        Args:
            run: In-progress run record.
            observed_at: Timestamp for the appended samples; defaults to the
                run start time.

        Returns:
            Number of pairs recorded.
        """
        at = observed_at or run.started_at
        if self.kv is not None:
            return self._record(self.kv, at)

        from fx_favorability.db.connection import get_connection
        from fx_favorability.db.repositories.kv_repo import SqliteKeyValueStore
        from fx_favorability.db.schema import apply_schema

        with get_connection(
            self.db_path,
            wal_mode=self.config.database.wal_mode,
            busy_timeout_ms=self.config.database.busy_timeout_ms,
        ) as conn:
            apply_schema(conn)
            return self._record(SqliteKeyValueStore(conn), at)

    def _record(self, kv: KeyValueStore, observed_at: datetime) -> int:
        cfg = self.config.rates
        client = self.client or ExchangeRatesClient(cfg)
        self.reports = []

        latest = client.fetch_latest(cfg.base, list(cfg.symbols))
        if latest is None:
            logger.warning("No rates fetched for %s; nothing recorded", cfg.base)
            return 0

        previous = load_previous_rates(kv, cfg.base)
        save_json(kv, PREVIOUS_RATES_KEY_PREFIX + cfg.base, latest.model_dump(mode="json"))
        previous_values = derive_pair_rates(previous, cfg.cross_pairs) if previous else {}

        store = TimeSeriesStore(kv, self.config.history)
        engine = FavorabilityEngine(self.config.scoring)

        for pair, rate in derive_pair_rates(latest, cfg.cross_pairs).items():
            doc = store.append(pair, Sample(timestamp=observed_at, value=rate))
            score = engine.score(doc.values())
            prev = previous_values.get(pair)
            self.reports.append(
                PairReport(
                    pair=pair,
                    rate=rate,
                    previous_rate=prev,
                    delta=rate - prev if prev is not None else None,
                    samples=len(doc.samples),
                    observed_at=observed_at,
                    score=score,
                )
            )
            logger.info(
                "%s = %.4f | buyer=%d seller=%d trend=%s | samples=%d",
                pair, rate, score.buyer_score, score.seller_score,
                score.trend.value, len(doc.samples),
                extra={"pair": pair},
            )

        return len(self.reports)
