"""
Key-value persistence contract.

The history store only needs string payloads under string keys:

    get(key)          -> str | None   (None when absent OR on any read error)
    set(key, payload) -> bool         (False on failure; failure is logged here)
    delete(key)       -> bool

Implementations never raise for storage errors; they log and report through
the return value. ``SqliteKeyValueStore`` (``db/repositories/kv_repo.py``) is
the durable implementation; ``InMemoryKeyValueStore`` backs tests and dry runs.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """String-valued key-value storage with absent-on-error reads."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored payload, or ``None`` if absent or unreadable."""

    @abstractmethod
    def set(self, key: str, payload: str) -> bool:
        """Overwrite ``key`` with ``payload``. Returns ``False`` on failure."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove ``key``. Returns ``False`` on failure."""


class InMemoryKeyValueStore(KeyValueStore):
    """Dict-backed store; contents vanish with the process."""

    def __init__(self, initial: Optional[dict[str, str]] = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, payload: str) -> bool:
        self._data[key] = payload
        return True

    def delete(self, key: str) -> bool:
        self._data.pop(key, None)
        return True

    def keys(self) -> list[str]:
        return sorted(self._data)


# ── JSON helpers ──────────────────────────────────────────────────────────────

def get_json(store: KeyValueStore, key: str) -> Optional[Any]:
    """Load and decode a JSON payload; ``None`` if absent or not valid JSON."""
    raw = store.get(key)
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring malformed JSON payload under %s", key, extra={"key": key})
        return None


def save_json(store: KeyValueStore, key: str, payload: Any) -> bool:
    """Encode ``payload`` as JSON and store it under ``key``."""
    return store.set(key, json.dumps(payload, default=str))
