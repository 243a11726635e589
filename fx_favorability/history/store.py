"""
TimeSeriesStore — bounded, gap-de-duplicated rate history per pair.

Append policy
-------------
1. ``last`` = newest stored sample (if any).
2. The new sample is stored only when there is no ``last`` or
   ``|sample.timestamp - last.timestamp| > min_gap``. Closer samples are
   dropped silently.
3. ``updated_at`` is set to the sample's timestamp **whether or not it was
   stored**. It records the last attempt, not the last stored sample.
4. After a store, the document is trimmed to the newest ``max_samples``.
5. The document is written back through the ``KeyValueStore``. A failed write
   is logged by the storage layer and here; the caller still gets the
   mutated document (best-effort durability).

Invariant (checked after every mutation): samples ascending by timestamp and
``len(samples) <= max_samples``. A stored sample older than the newest one is
placed in chronological order rather than appended at the end. Documents read
back from storage are re-sorted and trimmed before use.

Concurrency
-----------
load → mutate → persist is a read-modify-write against shared storage. Each
pair has its own ``threading.Lock`` so two appends to the same pair in one
process cannot interleave and lose an update. Separate processes sharing the
same database are not coordinated.
"""

from __future__ import annotations

import bisect
import logging
import threading
from typing import Optional

from pydantic import ValidationError

from fx_favorability.config import HistoryConfig
from fx_favorability.models.series import Sample, SeriesDocument, storage_key
from fx_favorability.storage.kv import KeyValueStore

logger = logging.getLogger(__name__)


class SeriesInvariantError(RuntimeError):
    """Raised when a document breaks the ordering/size invariant after mutation."""


class TimeSeriesStore:
    """Owns append, retention and de-duplication for rate series.

    Attributes:
        kv: Backing key-value storage.
        config: Retention (``max_samples``) and gap (``min_gap``) policy.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        config: Optional[HistoryConfig] = None,
    ) -> None:
        self.kv = kv
        self.config = config or HistoryConfig()
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # ── Public API ────────────────────────────────────────────────────────────

    def load(self, pair: str) -> SeriesDocument:
        """Return the stored document for ``pair``.

        An empty document (no samples, ``updated_at=None``) is returned when
        nothing is stored or the stored payload cannot be parsed.
        """
        with self._lock_for(pair):
            return self._load(pair)

    def append(self, pair: str, sample: Sample) -> SeriesDocument:
        """Apply the append policy for ``sample`` and persist the result.

        Args:
            pair: Pair identifier, e.g. ``"USD->COP"``.
            sample: The new observation.

        Returns:
            The updated document (also when the sample was discarded or the
            write failed).
        """
        with self._lock_for(pair):
            doc = self._load(pair)
            stored = self._apply(doc, sample)
            self._check_invariant(doc)

            if not self.kv.set(storage_key(pair), doc.to_json()):
                logger.warning(
                    "History for %s not persisted; returning in-memory document",
                    pair, extra={"pair": pair},
                )

            logger.debug(
                "%s: sample at %s %s | samples=%d",
                pair, sample.timestamp.isoformat(),
                "stored" if stored else "discarded (within min gap)",
                len(doc.samples),
                extra={"pair": pair},
            )
            return doc

    # ── Internal helpers ──────────────────────────────────────────────────────

    def _lock_for(self, pair: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(pair)
            if lock is None:
                lock = self._locks[pair] = threading.Lock()
            return lock

    def _load(self, pair: str) -> SeriesDocument:
        raw = self.kv.get(storage_key(pair))
        if not raw:
            return SeriesDocument.empty(pair)
        try:
            doc = SeriesDocument.from_json(raw)
        except ValidationError as exc:
            logger.warning(
                "Unreadable history for %s treated as empty: %s",
                pair, exc.errors()[0]["msg"] if exc.errors() else exc,
                extra={"pair": pair},
            )
            return SeriesDocument.empty(pair)

        doc.samples = sorted(doc.samples, key=lambda s: s.timestamp)
        self._trim(doc)
        return doc

    def _apply(self, doc: SeriesDocument, sample: Sample) -> bool:
        """Mutate ``doc`` in place. Returns ``True`` if the sample was stored."""
        last = doc.last
        stored = False
        if last is None or abs(sample.timestamp - last.timestamp) > self.config.min_gap:
            bisect.insort(doc.samples, sample, key=lambda s: s.timestamp)
            self._trim(doc)
            stored = True
        doc.updated_at = sample.timestamp
        return stored

    def _trim(self, doc: SeriesDocument) -> None:
        excess = len(doc.samples) - self.config.max_samples
        if excess > 0:
            doc.samples = doc.samples[excess:]

    def _check_invariant(self, doc: SeriesDocument) -> None:
        if len(doc.samples) > self.config.max_samples:
            raise SeriesInvariantError(
                f"{doc.pair}: {len(doc.samples)} samples exceeds "
                f"max_samples={self.config.max_samples}."
            )
        for prev, cur in zip(doc.samples, doc.samples[1:]):
            if cur.timestamp < prev.timestamp:
                raise SeriesInvariantError(
                    f"{doc.pair}: samples out of order at {cur.timestamp.isoformat()}."
                )
