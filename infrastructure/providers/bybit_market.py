import logging
from decimal import Decimal, InvalidOperation

import httpx

from domain.exceptions.rates import MalformedResponseError
from domain.models.rates import P2PMarketSummary
from domain.models.results import FetchResult
from infrastructure.providers.base import RateFetcher
from infrastructure.providers.retry import BYBIT_MARKET_RETRY, RetryPolicy
from infrastructure.rate_limit.tracker import RateLimitTracker

logger = logging.getLogger(__name__)


class BybitP2PRateProvider(RateFetcher):
    """Live USDT/NGN rate derived from the public Bybit P2P order book.

    Results are never cached: each call goes to the network through its own
    retry policy.
    """

    PROVIDER_NAME = "bybit_p2p_market"
    MARKET_URL = "https://api2.bybit.com/fiat/otc/item/online"

    def __init__(
        self,
        rate_limits: RateLimitTracker | None = None,
        market_url: str = MARKET_URL,
        client: httpx.AsyncClient | None = None,
        timeout: float = 4.0,
        token_id: str = "USDT",
        currency_id: str = "NGN",
        verified_only: bool = True,
        retry_policy: RetryPolicy | None = None,
    ):
        super().__init__(
            rate_limits=rate_limits,
            retry_policy=retry_policy or BYBIT_MARKET_RETRY,
            client=client,
            timeout=timeout,
        )
        self.market_url = market_url
        self.token_id = token_id
        self.currency_id = currency_id
        self.verified_only = verified_only

    def _payload(self) -> dict:
        return {
            "userId": "",
            "tokenId": self.token_id,
            "currencyId": self.currency_id,
            "payment": [],
            "side": "0",
            "size": "10",
            "page": "1",
            "rows": "10",
            "amount": "",
            "canTrade": True,
            "bulkMaker": False,
            "sortType": "TRADE_PRICE",
            "vaMaker": self.verified_only,
            "verificationFilter": 0,
            "itemRegion": 1,
            "paymentPeriod": [],
        }

    @staticmethod
    def summarize(prices: list[Decimal]) -> P2PMarketSummary:
        ordered = sorted(prices)
        return P2PMarketSummary(
            min_price=ordered[0],
            max_price=ordered[-1],
            average_price=sum(ordered) / len(ordered),
            median_price=ordered[len(ordered) // 2],
            count=len(ordered),
        )

    async def _request_summary(self) -> P2PMarketSummary:
        data, _ = await self._request_json(
            "POST",
            self.market_url,
            json=self._payload(),
            headers={
                "Accept": "application/json",
                "Content-Type": "application/json;charset=UTF-8",
                "Origin": "https://www.bybit.com",
                "Referer": "https://www.bybit.com/",
            },
        )

        if not isinstance(data, dict) or data.get("ret_code") != 0:
            message = data.get("ret_msg") if isinstance(data, dict) else None
            raise MalformedResponseError(
                f"Invalid response from Bybit P2P market: {message or 'no traders found'}", provider=self.name
            )

        items = (data.get("result") or {}).get("items") or []
        prices = []
        for item in items:
            try:
                price = Decimal(str(item.get("price")))
            except InvalidOperation:
                continue
            if price.is_finite() and price > 0:
                prices.append(price)

        if not prices:
            raise MalformedResponseError("Bybit P2P market returned no priced offers", provider=self.name)

        return self.summarize(prices)

    async def fetch_market_summary(self) -> FetchResult[P2PMarketSummary]:
        return await self._fetch_through(None, None, self._request_summary)

    async def fetch_usdt_ngn_rate(self) -> FetchResult[Decimal]:
        result = await self.fetch_market_summary()
        if not result.is_ok:
            return result

        summary = result.value
        logger.info(
            f"Bybit P2P {self.token_id}/{self.currency_id}: min={summary.min_price} "
            f"median={summary.median_price} over {summary.count} offers"
        )
        return FetchResult.ok(summary.min_price)
