"""
Exchange-rates API client (apilayer ``exchangerates_data``).

Endpoint::

    GET {base_url}/latest?base=USD&symbols=COP,MXN,EUR
    Header: apikey: <EXCHANGE_RATES_API_KEY>

Credential setup (.env, gitignored)::

    EXCHANGE_RATES_API_KEY=your_key_here

``fetch_latest()`` never raises for upstream problems: bad arguments,
transport errors, timeouts, non-200 responses, ``"success": false`` and
malformed bodies are logged and reported as ``None``.
"""

from __future__ import annotations

import logging
import os
from typing import ClassVar, Optional

import httpx
from pydantic import ValidationError

from fx_favorability.config import RatesConfig
from fx_favorability.models.rates import ExchangeRates

logger = logging.getLogger(__name__)

API_KEY_ENV_VAR = "EXCHANGE_RATES_API_KEY"


class ExchangeRatesClient:
    """Latest-rates client.

    Usage::

        client = ExchangeRatesClient(config.rates, api_key=os.environ["EXCHANGE_RATES_API_KEY"])
        rates = client.fetch_latest("USD", ["COP", "MXN"])
        if rates is None:
            ...  # upstream unavailable; already logged

    Attributes:
        base_url: API root, without trailing slash.
        timeout: Request timeout in seconds.
        api_key: Key sent in the ``apikey`` header; ``None`` sends no header.
    """

    LATEST_PATH: ClassVar[str] = "/latest"

    def __init__(
        self,
        config: Optional[RatesConfig] = None,
        api_key: Optional[str] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        """Initialise the client.

        Args:
            config: Rates section of ``AppConfig``; defaults apply when ``None``.
            api_key: API key. Falls back to ``EXCHANGE_RATES_API_KEY``.
            http_client: Pre-built ``httpx.Client`` (tests inject one with a
                ``MockTransport``). A private client is created when ``None``.
        """
        cfg = config or RatesConfig()
        self.base_url = cfg.base_url.rstrip("/")
        self.timeout = cfg.timeout_seconds
        self.api_key = api_key if api_key is not None else os.environ.get(API_KEY_ENV_VAR)
        self._http = http_client

    def build_latest_url(self, base: str, symbols: list[str]) -> str:
        params = httpx.QueryParams({"base": base, "symbols": ",".join(symbols)})
        return f"{self.base_url}{self.LATEST_PATH}?{params}"

    def fetch_latest(self, base: str, symbols: list[str]) -> Optional[ExchangeRates]:
        """Fetch the latest rates of ``symbols`` against ``base``.

        Args:
            base: Base currency code, e.g. ``"USD"``.
            symbols: Target currency codes; must be non-empty.

        Returns:
            ``ExchangeRates`` on success, otherwise ``None``.
        """
        if not base:
            logger.error("Base currency must be provided")
            return None
        if not symbols:
            logger.error("At least one target currency must be provided")
            return None

        url = self.build_latest_url(base, symbols)
        headers = {"apikey": self.api_key} if self.api_key else {}

        try:
            resp = self._get(url, headers)
        except httpx.HTTPError as exc:
            logger.error("Error fetching latest rates for %s: %s", base, exc)
            return None

        if resp.status_code != 200:
            logger.warning(
                "Unexpected response when fetching rates for %s: %d", base, resp.status_code
            )
            return None

        try:
            rates = ExchangeRates.model_validate_json(resp.content)
        except ValidationError as exc:
            logger.error("Malformed rates payload for %s: %s", base, exc)
            return None

        if not rates.success:
            logger.warning("Rates provider reported failure for %s", base)
            return None

        logger.info(
            "Fetched %d rates for %s (date=%s)", len(rates.rates), rates.base, rates.date
        )
        return rates

    def _get(self, url: str, headers: dict[str, str]) -> httpx.Response:
        if self._http is not None:
            return self._http.get(url, headers=headers, timeout=self.timeout)
        return httpx.get(url, headers=headers, timeout=self.timeout)
