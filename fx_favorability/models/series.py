"""
Rate history models — one ``SeriesDocument`` per tracked pair.

Persisted JSON shape (one key-value entry per pair, key ``"fx:" + pair``)::

    {
      "pair": "USD->COP",
      "updatedAt": "2026-10-19T07:00:00.000Z",
      "samples": [{"ts": "2026-10-18T07:00:00.000Z", "rate": 4170.25}, ...]
    }

``Sample`` is frozen. ``SeriesDocument`` is mutable: the history store
loads it, mutates ``samples`` / ``updated_at`` in place, and persists it.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from fx_favorability.utils.time_utils import format_timestamp, to_millisecond

STORAGE_KEY_PREFIX = "fx:"


def storage_key(pair: str) -> str:
    """Key under which a pair's document is persisted."""
    return f"{STORAGE_KEY_PREFIX}{pair}"


class Sample(BaseModel):
    """A single observation of a pair's rate.

    Attributes:
        timestamp: UTC instant of the observation (``ts`` on the wire),
            truncated to milliseconds so a reloaded sample compares equal.
        value: Observed rate (``rate`` on the wire). Must be finite.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    timestamp: datetime = Field(alias="ts")
    value: float = Field(alias="rate", allow_inf_nan=False)

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, v: datetime) -> datetime:
        return to_millisecond(v)

    @field_serializer("timestamp")
    def serialize_timestamp(self, v: datetime) -> str:
        return format_timestamp(v)


class SeriesDocument(BaseModel):
    """Retained history for one pair.

    ``updated_at`` is the timestamp of the most recent *attempted* append: it
    advances even when the gap rule discards the sample, so it can be newer
    than the last stored sample. ``None`` (``""`` on the wire) means no append
    has ever been attempted.

    Attributes:
        pair: Pair identifier, e.g. ``"USD->COP"``.
        updated_at: Timestamp of the last attempted append, or ``None``.
        samples: Observations, ascending by timestamp.
    """

    # not frozen: the history store mutates documents in place
    model_config = ConfigDict(frozen=False, populate_by_name=True)

    pair: str
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")
    samples: list[Sample] = Field(default_factory=list)

    @field_validator("updated_at", mode="before")
    @classmethod
    def blank_updated_at_is_none(cls, v: object) -> object:
        if v == "":
            return None
        return v

    @field_validator("updated_at")
    @classmethod
    def validate_updated_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_millisecond(v) if v is not None else None

    @field_serializer("updated_at")
    def serialize_updated_at(self, v: Optional[datetime]) -> str:
        return format_timestamp(v) if v is not None else ""

    @classmethod
    def empty(cls, pair: str) -> "SeriesDocument":
        return cls(pair=pair)

    @classmethod
    def from_json(cls, payload: str) -> "SeriesDocument":
        """Parse a persisted payload.

        Raises:
            pydantic.ValidationError: On malformed JSON or schema mismatch.
        """
        return cls.model_validate_json(payload)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @property
    def last(self) -> Optional[Sample]:
        return self.samples[-1] if self.samples else None

    def values(self) -> list[float]:
        """Sample values in chronological order — the input to scoring."""
        return [s.value for s in self.samples]
