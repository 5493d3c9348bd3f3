import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)

from domain.exceptions.rates import TransientProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    return isinstance(exc, TransientProviderError)


@dataclass(frozen=True)
class RetryPolicy:
    """One retry configuration per provider, executed through tenacity.

    Only errors accepted by ``retryable`` are retried; anything else, including
    rate-limit and malformed-response errors, is re-raised on the first attempt.
    """

    max_attempts: int = 3
    delay_seconds: float = 2.0
    exponential: bool = False
    max_delay_seconds: float = 30.0
    retryable: Callable[[BaseException], bool] = is_transient
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, compare=False)

    def _wait(self):
        if self.exponential:
            return wait_exponential(multiplier=self.delay_seconds, max=self.max_delay_seconds)
        return wait_fixed(self.delay_seconds)

    async def run(self, func: Callable[[], Awaitable[T]]) -> T:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait(),
            retry=retry_if_exception(self.retryable),
            sleep=self.sleep,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await func()


BYBIT_ORDERS_RETRY = RetryPolicy(max_attempts=3, delay_seconds=2.0)
BYBIT_MARKET_RETRY = RetryPolicy(max_attempts=2, delay_seconds=2.0)
FX_RATES_RETRY = RetryPolicy(max_attempts=2, delay_seconds=1.0)
VERTOFX_RETRY = RetryPolicy(max_attempts=2, delay_seconds=0.5)
