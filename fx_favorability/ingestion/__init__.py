"""Rate source clients.

Modules
-------
rates_client — latest-rates HTTP client returning ``ExchangeRates`` or ``None``
"""
