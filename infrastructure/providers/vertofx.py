import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from decimal import Decimal, InvalidOperation

import httpx

from domain.exceptions.rates import MalformedResponseError
from domain.models.rates import SUPPORTED_CURRENCIES, RateQuote, VertoFxQuote
from domain.models.results import FetchResult
from infrastructure.cache.memory_cache import ExpiringCache
from infrastructure.providers.base import RateFetcher, parse_retry_after
from infrastructure.providers.retry import VERTOFX_RETRY, RetryPolicy
from infrastructure.rate_limit.tracker import RateLimitTracker

logger = logging.getLogger(__name__)


def _to_decimal(value) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        return None
    return result if result.is_finite() else None


def quotes_to_rate_table(
    quotes: Mapping[str, VertoFxQuote],
    currencies: Iterable[str] = SUPPORTED_CURRENCIES,
) -> dict[str, RateQuote]:
    """Collapse directional quotes into NGN buy/sell prices per currency.

    ``NGN-X`` gives the buy side (1 / rate), ``X-NGN`` the sell side. A side with
    no quote stays at 0.
    """
    table: dict[str, RateQuote] = {}
    for code in currencies:
        buy = Decimal("0")
        sell = Decimal("0")

        ngn_to_foreign = quotes.get(f"NGN-{code}")
        if ngn_to_foreign and ngn_to_foreign.rate > 0:
            buy = Decimal("1") / ngn_to_foreign.rate

        foreign_to_ngn = quotes.get(f"{code}-NGN")
        if foreign_to_ngn and foreign_to_ngn.rate > 0:
            sell = foreign_to_ngn.rate

        table[code] = RateQuote(buy=buy, sell=sell)
    return table


class VertoFxProvider(RateFetcher):
    PROVIDER_NAME = "vertofx"
    CACHE_KEY = "vertofx_rates_cache"

    def __init__(
        self,
        cache: ExpiringCache,
        rate_limits: RateLimitTracker | None = None,
        base_url: str = "https://api-currency-beta.vertofx.com/p/currencies",
        client: httpx.AsyncClient | None = None,
        timeout: float = 5.0,
        quote_ttl_ms: int = 5 * 60 * 1000,
        partial_ttl_ms: int = 3 * 60 * 1000,
        request_delay: float = 0.1,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        super().__init__(
            cache=cache,
            rate_limits=rate_limits,
            retry_policy=retry_policy or VERTOFX_RETRY,
            client=client,
            timeout=timeout,
        )
        self.base_url = base_url.rstrip("/")
        self.quote_ttl_ms = quote_ttl_ms
        self.partial_ttl_ms = partial_ttl_ms
        self.request_delay = request_delay
        self._sleep = sleep

    def _pair_cache_key(self, from_currency: str, to_currency: str) -> str:
        return f"{self.CACHE_KEY}_{from_currency}_{to_currency}"

    def _parse_quote(self, data: dict, from_currency: str, to_currency: str) -> VertoFxQuote:
        if not isinstance(data, dict) or not data.get("success"):
            raise MalformedResponseError(
                f"Invalid VertoFX response for {from_currency}/{to_currency}", provider=self.name
            )

        raw_rate = _to_decimal(data.get("rate"))
        if raw_rate is None:
            raise MalformedResponseError(
                f"VertoFX response for {from_currency}/{to_currency} has no rate", provider=self.name
            )

        rate_after_spread = _to_decimal(data.get("rateAfterSpread"))
        inverse = _to_decimal(data.get("reversedRate"))
        if inverse is None:
            inverse = Decimal("1") / raw_rate if raw_rate else Decimal("0")

        return VertoFxQuote(
            from_currency=from_currency,
            to_currency=to_currency,
            rate=rate_after_spread if rate_after_spread is not None else raw_rate,
            inverse_rate=inverse,
            raw_rate=raw_rate,
            rate_after_spread=rate_after_spread,
            unit_spread=_to_decimal(data.get("unitSpread")),
            percent_change=_to_decimal(data.get("overnightPercentChange")),
            provider=data.get("provider") or self.name,
            rate_type=data.get("rateType") or "",
        )

    async def _request_quote(self, from_currency: str, to_currency: str) -> VertoFxQuote:
        data, response = await self._request_json(
            "POST",
            f"{self.base_url}/exchange-rate",
            json={
                "currencyFrom": {"label": from_currency},
                "currencyTo": {"label": to_currency},
            },
            headers={"Accept": "application/json", "Content-Type": "application/json"},
        )

        remaining = response.headers.get("x-ratelimit-remaining")
        if remaining is not None and remaining.strip() == "0" and self.rate_limits:
            # quota is spent, the data in this response is still good
            await self.rate_limits.record_limit_hit(self.name, parse_retry_after(response.headers))

        return self._parse_quote(data, from_currency, to_currency)

    async def fetch_quote(self, from_currency: str, to_currency: str) -> FetchResult[VertoFxQuote]:
        from_currency = from_currency.upper()
        to_currency = to_currency.upper()
        return await self._fetch_through(
            self._pair_cache_key(from_currency, to_currency),
            self.quote_ttl_ms,
            lambda: self._request_quote(from_currency, to_currency),
        )

    async def _is_limited(self) -> bool:
        return bool(self.rate_limits) and await self.rate_limits.is_limited(self.name)

    async def fetch_all_ngn_quotes(
        self, currencies: Iterable[str] = SUPPORTED_CURRENCIES
    ) -> dict[str, VertoFxQuote]:
        """Fetch NGN->X then X->NGN for every currency, one request at a time.

        Stops at the first rate limit and returns whatever was collected. Partial
        results are cached for a shorter time than a full set.
        """
        codes = [code.upper() for code in currencies]

        cached = self.cache.get(self.CACHE_KEY)
        if cached is not None:
            logger.debug("Using cached VertoFX quotes for all currencies")
            return cached

        if await self._is_limited():
            wait = await self.rate_limits.time_until_reset(self.name)
            logger.warning(f"VertoFX is rate limited for another {wait}s, skipping NGN quotes")
            return {}

        results: dict[str, VertoFxQuote] = {}
        for code in codes:
            buy_side = await self.fetch_quote("NGN", code)
            if buy_side.is_ok:
                results[f"NGN-{code}"] = buy_side.value
                await self._sleep(self.request_delay)

            if buy_side.is_rate_limited or await self._is_limited():
                logger.warning(f"VertoFX rate limited after NGN-{code}, stopping")
                break

            sell_side = await self.fetch_quote(code, "NGN")
            if sell_side.is_ok:
                results[f"{code}-NGN"] = sell_side.value

            if sell_side.is_rate_limited or await self._is_limited():
                logger.warning(f"VertoFX rate limited after {code}-NGN, stopping")
                break

            await self._sleep(self.request_delay)

        if results:
            is_full = len(results) >= len(codes) * 2
            ttl = self.quote_ttl_ms if is_full else self.partial_ttl_ms
            self.cache.set(self.CACHE_KEY, results, ttl)
            logger.info(f"Fetched {len(results)} VertoFX quotes ({'full' if is_full else 'partial'} set)")

        return results
