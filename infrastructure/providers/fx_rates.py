import logging
from collections.abc import Iterable
from decimal import Decimal, InvalidOperation

import httpx

from domain.exceptions.rates import MalformedResponseError
from domain.models.rates import SUPPORTED_CURRENCIES
from domain.models.results import FetchResult
from infrastructure.cache.memory_cache import ExpiringCache
from infrastructure.cache.redis_cache import RedisPersistedCache
from infrastructure.providers.base import RateFetcher
from infrastructure.providers.retry import FX_RATES_RETRY, RetryPolicy
from infrastructure.rate_limit.tracker import RateLimitTracker

logger = logging.getLogger(__name__)


class FxRatesProvider(RateFetcher):
    """USD cross rates (value of 1 USD in each currency) from a currencyapi-style endpoint."""

    PROVIDER_NAME = "fx_rates"
    CACHE_KEY = "exchange_rates"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        cache: ExpiringCache,
        rate_limits: RateLimitTracker | None = None,
        persisted_cache: RedisPersistedCache | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 5.0,
        cache_ttl_ms: int = 10 * 60 * 1000,
        persisted_ttl_ms: int = 30 * 60 * 1000,
        retry_policy: RetryPolicy | None = None,
    ):
        super().__init__(
            cache=cache,
            rate_limits=rate_limits,
            retry_policy=retry_policy or FX_RATES_RETRY,
            client=client,
            timeout=timeout,
        )
        self.base_url = base_url
        self.api_key = api_key
        self.persisted_cache = persisted_cache
        self.cache_ttl_ms = cache_ttl_ms
        self.persisted_ttl_ms = persisted_ttl_ms

    def _parse_rates(self, data: dict, currencies: Iterable[str]) -> dict[str, Decimal]:
        if not isinstance(data, dict) or not isinstance(data.get("data"), dict):
            raise MalformedResponseError("FX response is missing the 'data' object", provider=self.name)

        payload = data["data"]
        rates: dict[str, Decimal] = {}
        for code in currencies:
            if code == "USD":
                rates[code] = Decimal("1.0")
                continue

            raw = payload.get(code)
            # some plans wrap each rate as {"code": ..., "value": ...}
            if isinstance(raw, dict):
                raw = raw.get("value")
            if raw is None or isinstance(raw, bool):
                continue
            try:
                value = Decimal(str(raw))
            except InvalidOperation:
                logger.warning(f"Ignoring non-numeric FX rate for {code}: {raw!r}")
                continue
            if value.is_finite() and value > 0:
                rates[code] = value

        if not any(code != "USD" for code in rates):
            raise MalformedResponseError("FX response contained no usable rates", provider=self.name)
        return rates

    async def _request_rates(self, currencies: tuple[str, ...]) -> dict[str, Decimal]:
        data, _ = await self._request_json(
            "GET",
            self.base_url,
            params={"apikey": self.api_key, "currencies": ",".join(currencies)},
        )
        return self._parse_rates(data, currencies)

    async def fetch_rates(self, currencies: Iterable[str] = SUPPORTED_CURRENCIES) -> FetchResult[dict[str, Decimal]]:
        codes = tuple(code.upper() for code in currencies if code.upper() in SUPPORTED_CURRENCIES)

        cached = self.cache.get(self.CACHE_KEY)
        if cached is not None:
            return FetchResult.ok(cached, from_cache=True)

        if self.persisted_cache:
            stored = await self.persisted_cache.get(self.CACHE_KEY)
            if isinstance(stored, dict) and stored:
                try:
                    rates = {code: Decimal(str(value)) for code, value in stored.items()}
                except InvalidOperation:
                    rates = None
                if rates:
                    logger.debug("Using FX rates from the persisted cache")
                    self.cache.set(self.CACHE_KEY, rates, self.cache_ttl_ms)
                    return FetchResult.ok(rates, from_cache=True)

        result = await self._fetch_through(
            self.CACHE_KEY, self.cache_ttl_ms, lambda: self._request_rates(codes)
        )

        if result.is_ok and not result.from_cache and self.persisted_cache:
            await self.persisted_cache.set(self.CACHE_KEY, result.value, self.persisted_ttl_ms)

        return result
