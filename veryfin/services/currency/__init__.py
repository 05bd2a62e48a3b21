"""Exchange rate services package."""

from veryfin.services.currency.exchange_rate_service import (
    ExchangeRateError,
    ExchangeRateService,
    UpstreamUnavailableError,
)

__all__ = [
    "ExchangeRateError",
    "ExchangeRateService",
    "UpstreamUnavailableError",
]
