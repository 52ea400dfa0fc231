"""Exchange rate resolution: cache table first, then the external rate service."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.ledger import ExchangeRateCache

logger = logging.getLogger(__name__)

# (rate date, from currency, to currency)
RateKey = tuple[date, str, str]


@dataclass(frozen=True)
class ExchangeRate:
    """Resolved conversion rate and where it came from."""

    rate: Decimal
    source: str


class ExchangeRateClientError(Exception):
    """Base exception for exchange rate client errors."""

    pass


class ExchangeRateAPIError(ExchangeRateClientError):
    """API request failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ExchangeRateClient:
    """Async client for the external exchange rate service."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        path: str | None = None,
    ):
        self.base_url = base_url or settings.exchange_rate_api_url
        self.api_key = api_key or settings.exchange_rate_api_key
        self.path = path or settings.exchange_rate_api_path
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "ExchangeRateClient":
        """Async context manager entry."""
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        self._client = httpx.AsyncClient(base_url=self.base_url, headers=headers, timeout=15.0)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(self, json: dict[str, Any]) -> dict[str, Any]:
        """POST a rate lookup."""
        if self._client is None:
            raise ExchangeRateClientError("Client not initialized. Use async with context manager.")

        try:
            response = await self._client.post(self.path, json=json)
        except httpx.HTTPError as e:
            raise ExchangeRateClientError(f"Rate service unreachable: {e}") from e

        if response.status_code >= 400:
            raise ExchangeRateAPIError(
                f"API error: {response.status_code} - {response.text}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ExchangeRateAPIError(f"Invalid JSON from rate service: {e}") from e

    async def get_rate(self, rate_date: date, from_currency: str, to_currency: str) -> ExchangeRate:
        """Fetch the rate for an exact date.

        Raises:
            ExchangeRateAPIError: If the service answers without a rate
        """
        data = await self._request(
            {
                "date": rate_date.isoformat(),
                "from_currency": from_currency,
                "to_currency": to_currency,
            }
        )

        if not data.get("success") or data.get("rate") is None:
            raise ExchangeRateAPIError(
                f"No rate for {from_currency}/{to_currency} on {rate_date}: "
                f"{data.get('error', 'unsuccessful response')}"
            )

        return ExchangeRate(rate=Decimal(str(data["rate"])), source=data.get("source", "api"))


class ExchangeRateResolver:
    """Resolves same-day conversion rates.

    Lookup order:
    1. Same currency short-circuits to 1.0
    2. ``exchange_rates_cache`` row for the exact date and pair
    3. External rate service (results are not written back here)
    """

    def __init__(
        self,
        session: AsyncSession,
        client: ExchangeRateClient,
        concurrency: int | None = None,
    ):
        self.session = session
        self.client = client
        self.concurrency = concurrency or settings.rate_lookup_concurrency

    @staticmethod
    def normalize_key(rate_date: date, from_currency: str, to_currency: str) -> RateKey:
        return rate_date, from_currency.strip().upper(), to_currency.strip().upper()

    async def resolve(
        self, rate_date: date, from_currency: str, to_currency: str
    ) -> ExchangeRate | None:
        """Resolve a single rate, or None when no rate can be found."""
        key = self.normalize_key(rate_date, from_currency, to_currency)

        local = await self._resolve_local(key)
        if local is not None:
            return local

        return await self._fetch_external(key)

    async def resolve_many(self, keys: list[RateKey]) -> dict[RateKey, ExchangeRate | None]:
        """Resolve a batch of rates.

        Keys are deduplicated, cache hits served first, and the remaining
        lookups fanned out to the rate service with bounded parallelism.
        """
        unique = list(dict.fromkeys(self.normalize_key(*key) for key in keys))
        resolved: dict[RateKey, ExchangeRate | None] = {}
        misses: list[RateKey] = []

        # The session is not safe for concurrent use, so cache reads stay sequential
        for key in unique:
            local = await self._resolve_local(key)
            if local is not None:
                resolved[key] = local
            else:
                misses.append(key)

        if misses:
            logger.info(f"Fetching {len(misses)} exchange rates from rate service")
            semaphore = asyncio.Semaphore(self.concurrency)

            async def bounded(key: RateKey) -> ExchangeRate | None:
                async with semaphore:
                    return await self._fetch_external(key)

            results = await asyncio.gather(*(bounded(key) for key in misses))
            resolved.update(zip(misses, results, strict=True))

        return resolved

    async def _resolve_local(self, key: RateKey) -> ExchangeRate | None:
        """Same-currency short-circuit or cache table hit."""
        rate_date, from_currency, to_currency = key

        if from_currency == to_currency:
            return ExchangeRate(rate=Decimal("1"), source="same_currency")

        result = await self.session.execute(
            select(ExchangeRateCache).where(
                ExchangeRateCache.rate_date == rate_date,
                ExchangeRateCache.from_currency == from_currency,
                ExchangeRateCache.to_currency == to_currency,
            )
        )
        cached = result.scalar_one_or_none()
        if cached is None:
            return None

        return ExchangeRate(rate=Decimal(cached.rate), source=f"{cached.source}_cached")

    async def _fetch_external(self, key: RateKey) -> ExchangeRate | None:
        """Ask the rate service; failures mean no rate, never an error."""
        rate_date, from_currency, to_currency = key
        try:
            return await self.client.get_rate(rate_date, from_currency, to_currency)
        except ExchangeRateClientError as e:
            logger.warning(f"Rate lookup failed for {from_currency}/{to_currency} {rate_date}: {e}")
            return None
