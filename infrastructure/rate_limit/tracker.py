import logging
import math
from collections.abc import Callable

from redis import asyncio as redis
from redis.exceptions import RedisError

from domain.models.rates import RateLimitState
from infrastructure.utils.time import now_ms

logger = logging.getLogger(__name__)


class RateLimitTracker:
    """Per-provider rate-limit windows kept in Redis so they survive restarts
    and are shared by every process talking to the same provider."""

    BASE_BACKOFF_SECONDS = 60
    MAX_BACKOFF_SECONDS = 15 * 60

    def __init__(
        self,
        redis_client: redis.Redis,
        clock: Callable[[], int] = now_ms,
        key_prefix: str = "rate_limit",
    ):
        self.redis = redis_client
        self._clock = clock
        self.key_prefix = key_prefix

    def _reset_key(self, provider: str) -> str:
        return f"{self.key_prefix}:{provider}:reset_at"

    def _failures_key(self, provider: str) -> str:
        return f"{self.key_prefix}:{provider}:failures"

    @classmethod
    def backoff_seconds(cls, consecutive_failures: int) -> int:
        exponent = min(max(consecutive_failures, 1) - 1, 16)
        return min(2 ** exponent * cls.BASE_BACKOFF_SECONDS, cls.MAX_BACKOFF_SECONDS)

    async def _get_reset_at(self, provider: str) -> int | None:
        value = await self.redis.get(self._reset_key(provider))
        if value is None:
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            logger.warning(f"Discarding unreadable rate-limit reset time for {provider}: {value!r}")
            await self.redis.delete(self._reset_key(provider))
            return None

    async def is_limited(self, provider: str) -> bool:
        try:
            reset_at = await self._get_reset_at(provider)
            if reset_at is None:
                return False

            if self._clock() < reset_at:
                return True

            await self.redis.delete(self._reset_key(provider))
            logger.info(f"Rate limit window for {provider} has expired")
            return False
        except RedisError as e:
            logger.error(f"Could not read rate-limit state for {provider}: {e}")
            return False

    async def record_limit_hit(self, provider: str, retry_after_seconds: int | None = None) -> int | None:
        """Open (or extend) the provider's rate-limit window.

        Returns the new reset time in epoch milliseconds, or None when the state
        could not be written.
        """
        try:
            failures = int(await self.redis.incr(self._failures_key(provider)))

            if retry_after_seconds is not None and retry_after_seconds > 0:
                wait_seconds = int(retry_after_seconds)
            else:
                wait_seconds = self.backoff_seconds(failures)

            reset_at = self._clock() + wait_seconds * 1000
            await self.redis.set(self._reset_key(provider), str(reset_at))
        except RedisError as e:
            logger.error(f"Could not record rate-limit hit for {provider}: {e}")
            return None

        logger.warning(
            f"{provider} rate limited (failure #{failures}), backing off for {wait_seconds}s"
        )
        return reset_at

    async def record_success(self, provider: str) -> None:
        try:
            await self.redis.set(self._failures_key(provider), "0")
        except RedisError as e:
            logger.error(f"Could not reset failure counter for {provider}: {e}")

    async def time_until_reset(self, provider: str) -> int:
        try:
            reset_at = await self._get_reset_at(provider)
        except RedisError as e:
            logger.error(f"Could not read rate-limit state for {provider}: {e}")
            return 0

        if reset_at is None:
            return 0
        return max(0, math.ceil((reset_at - self._clock()) / 1000))

    async def get_state(self, provider: str) -> RateLimitState:
        reset_at = await self._get_reset_at(provider)
        failures = await self.redis.get(self._failures_key(provider))
        return RateLimitState(
            reset_at_ms=reset_at,
            consecutive_failures=int(failures) if failures else 0,
        )

    async def reset(self, provider: str) -> None:
        await self.redis.delete(self._reset_key(provider), self._failures_key(provider))
        logger.info(f"Rate-limit state for {provider} cleared")
