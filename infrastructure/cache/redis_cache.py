import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from redis import asyncio as redis
from redis.exceptions import RedisError

from infrastructure.utils.time import now_ms

logger = logging.getLogger(__name__)


def _json_default(o: Any) -> Any:
    if isinstance(o, (datetime, date)):
        return o.isoformat()
    if isinstance(o, Decimal):
        return str(o)
    if isinstance(o, (set, frozenset, tuple)):
        return list(o)
    if isinstance(o, Mapping):
        return dict(o)
    if is_dataclass(o) and not isinstance(o, type):
        return asdict(o)
    raise TypeError(f"Object of type {type(o).__name__} is not JSON serializable")


def sanitize_for_storage(value: Any) -> Any:
    """Reduce ``value`` to plain JSON types (Decimal -> str, datetime -> ISO string)."""
    return json.loads(json.dumps(value, default=_json_default))


def _is_valid_envelope(payload: Any) -> bool:
    if not isinstance(payload, dict) or "value" not in payload:
        return False
    expiry = payload.get("expiry")
    return isinstance(expiry, (int, float)) and not isinstance(expiry, bool)


class RedisPersistedCache:
    """Durable counterpart of ``ExpiringCache``.

    Every entry is stored as ``{"value": ..., "expiry": epoch_ms}``. Anything that
    doesn't decode to that shape is deleted and reported as a miss. Redis failures
    are logged and never raised to the caller.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        prefix: str = "rates:",
        default_ttl_ms: int = 60 * 60 * 1000,
        clock: Callable[[], int] = now_ms,
    ):
        self.redis = redis_client
        self.prefix = prefix
        self.default_ttl_ms = default_ttl_ms
        self._clock = clock

    def _make_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def _encode(self, value: Any, ttl_ms: int) -> str:
        envelope = {"value": sanitize_for_storage(value), "expiry": self._clock() + ttl_ms}
        return json.dumps(envelope)

    async def get(self, key: str) -> Any | None:
        full_key = self._make_key(key)
        try:
            data = await self.redis.get(full_key)
        except RedisError as e:
            logger.warning(f"Persisted cache read failed for '{key}': {e}")
            return None

        if not data:
            return None

        try:
            payload = json.loads(data)
        except (json.JSONDecodeError, TypeError):
            payload = None

        if not _is_valid_envelope(payload):
            logger.warning(f"Dropping malformed persisted cache entry '{key}'")
            await self._silent_delete(full_key)
            return None

        if self._clock() >= payload["expiry"]:
            await self._silent_delete(full_key)
            return None

        return payload["value"]

    async def set(self, key: str, value: Any, ttl_ms: int | None = None) -> bool:
        ttl = ttl_ms or self.default_ttl_ms
        try:
            await self.redis.set(self._make_key(key), self._encode(value, ttl), px=ttl)
            return True
        except (RedisError, TypeError, ValueError) as e:
            logger.warning(f"Persisted cache write failed for '{key}': {e}")
            return False

    async def set_many(self, items: Mapping[str, Any], ttl_ms: int | None = None) -> bool:
        ttl = ttl_ms or self.default_ttl_ms
        try:
            async with self.redis.pipeline(transaction=False) as pipe:
                for key, value in items.items():
                    pipe.set(self._make_key(key), self._encode(value, ttl), px=ttl)
                await pipe.execute()
            return True
        except (RedisError, TypeError, ValueError) as e:
            logger.warning(f"Persisted cache batch write failed: {e}")
            return False

    async def is_valid(self, key: str) -> bool:
        return await self.get(key) is not None

    async def delete(self, key: str) -> None:
        await self._silent_delete(self._make_key(key))

    async def cleanup(self) -> int:
        removed = 0
        now = self._clock()
        try:
            async for full_key in self.redis.scan_iter(match=f"{self.prefix}*"):
                data = await self.redis.get(full_key)
                try:
                    payload = json.loads(data) if data else None
                except (json.JSONDecodeError, TypeError):
                    payload = None

                if not _is_valid_envelope(payload) or now >= payload["expiry"]:
                    await self.redis.delete(full_key)
                    removed += 1
        except RedisError as e:
            logger.warning(f"Persisted cache cleanup aborted: {e}")

        return removed

    async def _silent_delete(self, full_key: str) -> None:
        try:
            await self.redis.delete(full_key)
        except RedisError as e:
            logger.warning(f"Failed to delete persisted cache entry '{full_key}': {e}")
