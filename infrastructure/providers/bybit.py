import asyncio
import hashlib
import hmac
import logging
from collections.abc import Awaitable, Callable
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any
from urllib.parse import quote

import httpx

from domain.exceptions.rates import (
    MalformedResponseError,
    OrderNotFoundError,
    ProviderError,
    RateLimitedError,
    TransientProviderError,
)
from domain.models.orders import Order, OrderFilter, OrderSide, status_label
from infrastructure.providers.base import RateFetcher
from infrastructure.providers.retry import BYBIT_ORDERS_RETRY, RetryPolicy
from infrastructure.rate_limit.tracker import RateLimitTracker
from infrastructure.utils.time import from_epoch_ms, now_ms

logger = logging.getLogger(__name__)

RATE_LIMIT_CODES = {10016, 10017, 10018}
MAINTENANCE_CODE = 110001
ERROR_MESSAGES = {
    10001: "Invalid API parameters",
    10003: "Invalid API key",
    10004: "API signing error, check the API key and secret",
    10006: "API key has no permission to access P2P trading data",
    10016: "Rate limit exceeded",
    10017: "Rate limit exceeded",
    10018: "Rate limit exceeded",
    MAINTENANCE_CODE: "P2P trading system under temporary maintenance",
}


def sign(payload: str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def prepare_query_string(params: dict[str, Any]) -> str:
    """Sorted, URL-encoded query string. None values are dropped and lists joined with commas."""
    clean: dict[str, str] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            clean[key] = ",".join(str(v) for v in value)
        else:
            clean[key] = str(value)

    return "&".join(f"{quote(key, safe='')}={quote(clean[key], safe='')}" for key in sorted(clean))


def _decimal_or_none(value) -> Decimal | None:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


class BybitP2PClient(RateFetcher):
    """Signed client for the Bybit P2P order API."""

    PROVIDER_NAME = "bybit"
    PRIMARY_URL = "https://api.bybit.com"
    FALLBACK_URL = "https://api.bytick.com"
    TESTNET_URL = "https://api-testnet.bybit.com"
    ORDER_LIST_ENDPOINT = "/p2p/v1/order/list"

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        testnet: bool = False,
        rate_limits: RateLimitTracker | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
        recv_window: int = 5000,
        page_size: int = 30,
        page_delay: float = 0.5,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], int] = now_ms,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        super().__init__(
            rate_limits=rate_limits,
            retry_policy=retry_policy or BYBIT_ORDERS_RETRY,
            client=client,
            timeout=timeout,
        )
        self.api_key = api_key
        self.api_secret = api_secret
        self.testnet = testnet
        self.recv_window = str(recv_window)
        self.page_size = page_size
        self.page_delay = page_delay
        self._clock = clock
        self._sleep = sleep

        if testnet:
            self.primary_base_url = self.TESTNET_URL
            self.fallback_base_url = None
        else:
            self.primary_base_url = self.PRIMARY_URL
            self.fallback_base_url = self.FALLBACK_URL
        self.current_base_url = self.primary_base_url

    def _headers(self, query_string: str) -> dict[str, str]:
        timestamp = str(self._clock())
        signature = sign(timestamp + self.api_key + self.recv_window + query_string, self.api_secret)
        return {
            "Content-Type": "application/json",
            "X-BAPI-API-KEY": self.api_key,
            "X-BAPI-TIMESTAMP": timestamp,
            "X-BAPI-SIGN": signature,
            "X-BAPI-RECV-WINDOW": self.recv_window,
        }

    def _raise_for_code(self, data: dict, endpoint: str) -> None:
        code = data.get("code", data.get("retCode"))
        if code in (0, "0"):
            return

        message = data.get("msg") or data.get("retMsg") or f"API error {code}"
        try:
            code = int(code)
        except (TypeError, ValueError):
            raise MalformedResponseError(
                f"Bybit response from {endpoint} has no result code", provider=self.name
            ) from None

        described = f"Bybit API error {code} on {endpoint}: {ERROR_MESSAGES.get(code, message)}"
        if code in RATE_LIMIT_CODES:
            raise RateLimitedError(described, provider=self.name)
        if code == MAINTENANCE_CODE:
            raise TransientProviderError(described, provider=self.name)
        raise ProviderError(described, provider=self.name)

    async def _signed_get(self, base_url: str, endpoint: str, params: dict[str, Any]) -> dict:
        query_string = prepare_query_string(params)
        url = f"{base_url}{endpoint}"
        if query_string:
            url = f"{url}?{query_string}"

        data, _ = await self._request_json("GET", url, headers=self._headers(query_string))
        if not isinstance(data, dict):
            raise MalformedResponseError(f"Unexpected Bybit response from {endpoint}", provider=self.name)

        self._raise_for_code(data, endpoint)
        return data

    async def _request(self, endpoint: str, params: dict[str, Any] | None = None) -> dict:
        params = params or {}
        try:
            return await self._signed_get(self.current_base_url, endpoint, params)
        except RateLimitedError:
            raise
        except ProviderError as e:
            if not self.fallback_base_url or self.testnet or self.current_base_url == self.fallback_base_url:
                raise
            logger.warning(f"Bybit request to {endpoint} failed ({e}), trying {self.fallback_base_url}")
            self.current_base_url = self.fallback_base_url
            return await self._signed_get(self.current_base_url, endpoint, params)

    async def get_server_time(self) -> datetime:
        data = await self._request("/v5/market/time")
        seconds = (data.get("result") or {}).get("timeSecond")
        try:
            return from_epoch_ms(int(seconds) * 1000)
        except (TypeError, ValueError, OverflowError, OSError) as e:
            raise MalformedResponseError(f"Bybit server time missing from {data!r}", provider=self.name) from e

    async def check_p2p_access(self) -> tuple[bool, str]:
        try:
            await self._request(self.ORDER_LIST_ENDPOINT, {"page": 1, "size": self.page_size})
        except ProviderError as e:
            return False, str(e)
        return True, "P2P API permissions verified"

    async def get_orders(self, page: int = 1, size: int | None = None, filters: OrderFilter | None = None) -> dict:
        params: dict[str, Any] = {"page": page, "size": size or self.page_size}
        if filters:
            params.update({key: value for key, value in filters.to_params().items() if value not in (None, [], "")})
        return await self._request(self.ORDER_LIST_ENDPOINT, params)

    async def get_order_detail(self, order_id: str) -> dict:
        data = await self._request("/p2p/v1/order/detail", {"orderId": order_id})
        return data.get("result") or {}

    async def get_order(self, order_id: str) -> Order:
        detail = await self.get_order_detail(order_id)
        if not detail:
            raise OrderNotFoundError(f"Bybit order {order_id} not found")
        return self._to_order(detail, 1)

    def _to_order(self, item: dict, order_number: int) -> Order:
        if not isinstance(item, dict):
            raise MalformedResponseError(f"Unexpected Bybit order record: {item!r}", provider=self.name)
        try:
            create_date = from_epoch_ms(item.get("createDate") or 0)
        except (TypeError, ValueError, OverflowError, OSError) as e:
            raise MalformedResponseError(
                f"Bybit order {item.get('id')} has an invalid createDate {item.get('createDate')!r}",
                provider=self.name,
            ) from e

        return Order(
            order_number=order_number,
            id=str(item.get("id", "")),
            side=OrderSide.from_code(item.get("side")),
            status=status_label(item.get("status")),
            token_id=item.get("tokenId") or "N/A",
            price=_decimal_or_none(item.get("price")),
            quantity=_decimal_or_none(item.get("notifyTokenQuantity")),
            counterparty_nickname=item.get("targetNickName") or "N/A",
            create_date=create_date,
            amount=_decimal_or_none(item.get("amount")),
        )

    async def fetch_all_orders(self, cutoff: date, filters: OrderFilter | None = None) -> list[Order]:
        """Walk the order list newest-first until an order dated on/before ``cutoff``.

        Pages are requested one after another. Reaching the cutoff ends the whole
        walk, as does a short page, a rate limit or any other provider error; in
        every case the orders collected so far are returned.
        """
        orders: list[Order] = []
        page = 1

        while True:
            if self.rate_limits and await self.rate_limits.is_limited(self.name):
                logger.warning(f"Bybit is rate limited, stopping at page {page}")
                break

            try:
                response = await self.retry_policy.run(
                    lambda: self.get_orders(page, self.page_size, filters)
                )
            except RateLimitedError as e:
                if self.rate_limits:
                    await self.rate_limits.record_limit_hit(self.name, e.retry_after_seconds)
                logger.warning(f"Bybit rate limited on page {page}: {e}")
                break
            except ProviderError as e:
                logger.error(f"Failed to fetch Bybit orders on page {page}: {e}")
                break

            items = (response.get("result") or {}).get("items") or []
            if not items:
                logger.debug(f"No orders on page {page}")
                break

            for item in items:
                try:
                    order = self._to_order(item, len(orders) + 1)
                except MalformedResponseError as e:
                    logger.error(f"Stopping Bybit order walk on page {page}: {e}")
                    return orders
                if order.create_date.date() <= cutoff:
                    logger.info(
                        f"Reached cutoff {cutoff.isoformat()} on page {page}, fetched {len(orders)} orders"
                    )
                    return orders
                orders.append(order)

            if len(items) < self.page_size:
                break

            page += 1
            await self._sleep(self.page_delay)

        if self.rate_limits and orders and not await self.rate_limits.is_limited(self.name):
            await self.rate_limits.record_success(self.name)

        logger.info(f"Fetched {len(orders)} Bybit P2P orders")
        return orders
