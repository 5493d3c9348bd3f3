from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class FetchOutcome(Enum):
    OK = "ok"
    RATE_LIMITED = "rate_limited"
    TRANSIENT_FAILURE = "transient_failure"
    PERMANENT_FAILURE = "permanent_failure"


@dataclass(frozen=True)
class FetchResult(Generic[T]):
    """Outcome of one fetcher call. Failures carry no value; callers branch on ``outcome``."""

    outcome: FetchOutcome
    value: T | None = None
    error: str | None = None
    retry_after_seconds: int | None = None
    from_cache: bool = False

    @classmethod
    def ok(cls, value: T, from_cache: bool = False) -> "FetchResult[T]":
        return cls(FetchOutcome.OK, value=value, from_cache=from_cache)

    @classmethod
    def rate_limited(cls, error: str, retry_after_seconds: int | None = None) -> "FetchResult[T]":
        return cls(FetchOutcome.RATE_LIMITED, error=error, retry_after_seconds=retry_after_seconds)

    @classmethod
    def transient_failure(cls, error: str) -> "FetchResult[T]":
        return cls(FetchOutcome.TRANSIENT_FAILURE, error=error)

    @classmethod
    def permanent_failure(cls, error: str) -> "FetchResult[T]":
        return cls(FetchOutcome.PERMANENT_FAILURE, error=error)

    @property
    def is_ok(self) -> bool:
        return self.outcome is FetchOutcome.OK

    @property
    def is_rate_limited(self) -> bool:
        return self.outcome is FetchOutcome.RATE_LIMITED
