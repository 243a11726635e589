"""
Exchange-rate snapshot model — one response of the latest-rates endpoint.

Example payload::

    {"success": true, "timestamp": 1760857200, "base": "USD",
     "date": "2026-10-19", "rates": {"COP": 4170.25, "MXN": 18.41, "EUR": 0.92}}
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator


class ExchangeRates(BaseModel):
    """Latest rates for ``base`` against each requested symbol.

    Attributes:
        base: Base currency code, e.g. ``"USD"``.
        date: Provider's value date (``YYYY-MM-DD``).
        rates: Symbol → units of symbol per one unit of ``base``.
        success: Provider success flag.
        timestamp: Provider's unix timestamp, when supplied.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    base: str
    date: str
    rates: dict[str, float]
    success: bool = True
    timestamp: Optional[int] = None

    @field_validator("rates")
    @classmethod
    def validate_rates_positive(cls, v: dict[str, float]) -> dict[str, float]:
        for symbol, rate in v.items():
            if not rate > 0:
                raise ValueError(f"Rate for '{symbol}' must be positive, got {rate}.")
        return v

    def rate_for(self, symbol: str) -> Optional[float]:
        return self.rates.get(symbol)
