import contextlib
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx

from domain.exceptions.rates import (
    MalformedResponseError,
    ProviderError,
    RateLimitedError,
    TransientProviderError,
)
from domain.models.results import FetchResult
from infrastructure.cache.memory_cache import ExpiringCache
from infrastructure.providers.retry import RetryPolicy
from infrastructure.rate_limit.tracker import RateLimitTracker

logger = logging.getLogger(__name__)

T = TypeVar("T")


def parse_retry_after(headers: httpx.Headers | dict | None) -> int | None:
    if not headers:
        return None
    value = headers.get("retry-after")
    if value is None:
        return None
    try:
        seconds = int(float(value))
    except (TypeError, ValueError):
        return None
    return seconds if seconds > 0 else None


class RateFetcher:
    """Shared plumbing for the rate adapters.

    Subclasses set ``PROVIDER_NAME`` and describe a single network call; this class
    handles error classification, retries, caching and rate-limit bookkeeping.
    """

    PROVIDER_NAME = "provider"

    def __init__(
        self,
        cache: ExpiringCache | None = None,
        rate_limits: RateLimitTracker | None = None,
        retry_policy: RetryPolicy | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 5.0,
    ):
        self.cache = cache
        self.rate_limits = rate_limits
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=1)
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def name(self) -> str:
        return self.PROVIDER_NAME

    def _check_status(self, response: httpx.Response) -> None:
        if response.status_code == 429:
            raise RateLimitedError(
                f"{self.name} returned HTTP 429",
                provider=self.name,
                retry_after_seconds=parse_retry_after(response.headers),
            )
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            msg = None
            with contextlib.suppress(Exception):
                msg = e.response.json().get("message")
            detail = msg or e.response.text[:200]
            if e.response.status_code >= 500:
                raise TransientProviderError(
                    f"{self.name} HTTP error {e.response.status_code}: {detail}", provider=self.name
                ) from e
            raise ProviderError(
                f"{self.name} HTTP error {e.response.status_code}: {detail}", provider=self.name
            ) from e

    async def _request_json(self, method: str, url: str, **kwargs) -> tuple[Any, httpx.Response]:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientProviderError(f"{self.name} request timed out", provider=self.name) from e
        except httpx.RequestError as e:
            raise TransientProviderError(
                f"{self.name} request failed: {e.__class__.__name__}", provider=self.name
            ) from e

        self._check_status(response)

        try:
            return response.json(), response
        except ValueError as e:
            raise MalformedResponseError(f"{self.name} returned invalid JSON", provider=self.name) from e

    async def _fetch_through(
        self,
        cache_key: str | None,
        ttl_ms: int | None,
        call: Callable[[], Awaitable[T]],
    ) -> FetchResult[T]:
        if cache_key and self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.debug(f"{self.name}: cache hit for {cache_key}")
                return FetchResult.ok(cached, from_cache=True)

        if self.rate_limits and await self.rate_limits.is_limited(self.name):
            wait = await self.rate_limits.time_until_reset(self.name)
            logger.info(f"{self.name} is rate limited, skipping request ({wait}s left)")
            return FetchResult.rate_limited(f"{self.name} is rate limited", retry_after_seconds=wait)

        try:
            value = await self.retry_policy.run(call)
        except RateLimitedError as e:
            if self.rate_limits:
                await self.rate_limits.record_limit_hit(self.name, e.retry_after_seconds)
            return FetchResult.rate_limited(str(e), retry_after_seconds=e.retry_after_seconds)
        except TransientProviderError as e:
            logger.warning(f"{self.name} unavailable after retries: {e}")
            return FetchResult.transient_failure(str(e))
        except ProviderError as e:
            logger.error(f"{self.name} request failed: {e}")
            return FetchResult.permanent_failure(str(e))

        if cache_key and ttl_ms and self.cache is not None:
            self.cache.set(cache_key, value, ttl_ms)

        if self.rate_limits and not await self.rate_limits.is_limited(self.name):
            await self.rate_limits.record_success(self.name)

        return FetchResult.ok(value)

    async def close(self) -> None:
        await self._client.aclose()
