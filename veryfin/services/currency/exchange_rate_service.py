"""
Exchange Rate Service

Fetches the latest exchange rates for a base currency from a public
rate API (exchangerate-api.com by default).

DESIGN DECISION: Rates are a best-effort enrichment, not a critical
dependency. A failed lookup is surfaced immediately as
UpstreamUnavailableError: no retries, and the upstream error text never
reaches the client.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Optional

import httpx
import structlog

from veryfin.config import get_settings
from veryfin.models.finance import ExchangeRates, ValidationIssue
from veryfin.validation import ValidationFailedError


logger = structlog.get_logger(__name__)

CURRENCY_CODE = re.compile(r"[A-Z]{3}")


class ExchangeRateError(Exception):
    """Base exception for exchange rate lookups."""
    pass


class UpstreamUnavailableError(ExchangeRateError):
    """The rate API could not be reached or returned something unusable."""
    pass


class ExchangeRateService:
    """
    Thin async client for the exchange rate API.

    Args:
        transport: Optional httpx transport (tests pass a MockTransport)
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._settings = get_settings().currency
        self._transport = transport

    def _url_for(self, base: str) -> str:
        return f"{self._settings.api_url.rstrip('/')}/{base}"

    def _parse(self, payload: dict, requested_base: str) -> ExchangeRates:
        """Convert the upstream JSON body into ExchangeRates."""
        try:
            rates = {
                str(code): Decimal(str(rate))
                for code, rate in payload["rates"].items()
            }
        except (KeyError, AttributeError, TypeError, InvalidOperation) as e:
            raise UpstreamUnavailableError(f"Malformed rate payload: {e}") from e

        return ExchangeRates(
            base=str(payload.get("base") or requested_base),
            rates=rates,
            last_updated=payload.get("date"),
        )

    async def get_latest_rates(self, base: Optional[str] = None) -> ExchangeRates:
        """
        Fetch the latest rates for a base currency.

        Args:
            base: ISO 4217 code; defaults to the configured base

        Raises:
            ValidationFailedError: base is not a three-letter code
            UpstreamUnavailableError: On any network, HTTP or payload problem
        """
        base = (base or self._settings.default_base).strip().upper()
        if not CURRENCY_CODE.fullmatch(base):
            raise ValidationFailedError(
                "Invalid currency code",
                [ValidationIssue(
                    field="base",
                    issue_type="invalid_value",
                    message="Currency code must be three letters",
                )],
            )

        try:
            async with httpx.AsyncClient(
                timeout=self._settings.timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.get(self._url_for(base))
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPError as e:
            logger.warning("exchange_rate_request_failed", base=base, error=str(e))
            raise UpstreamUnavailableError(f"Exchange rate request failed: {e}") from e
        except ValueError as e:
            logger.warning("exchange_rate_invalid_json", base=base, error=str(e))
            raise UpstreamUnavailableError(f"Exchange rate response was not JSON: {e}") from e

        if not isinstance(payload, dict):
            raise UpstreamUnavailableError("Exchange rate response was not a JSON object")

        rates = self._parse(payload, base)
        logger.info("exchange_rates_fetched", base=rates.base, currencies=len(rates.rates))
        return rates
