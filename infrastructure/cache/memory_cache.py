import logging
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

from domain.models.rates import CacheEntry
from infrastructure.utils.time import now_ms

logger = logging.getLogger(__name__)


class ExpiringCache:
    """In-process key/value cache with per-entry TTL and LRU eviction.

    Entries are kept in recency order: ``get`` hits and overwrites move a key to
    the back, and when the cache is full a new key pushes out the front one.
    Expired entries are dropped lazily on read or in bulk by ``cleanup``.
    """

    def __init__(
        self,
        max_entries: int = 50,
        default_ttl_ms: int = 5 * 60 * 1000,
        clock: Callable[[], int] = now_ms,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.default_ttl_ms = default_ttl_ms
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()

    def set(self, key: str, value: Any, ttl_ms: int | None = None) -> None:
        ttl = self.default_ttl_ms if ttl_ms is None else ttl_ms

        if key in self._entries:
            self._entries.move_to_end(key)
        elif len(self._entries) >= self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Cache full, evicted '{evicted}'")

        self._entries[key] = CacheEntry(value=value, expires_at_ms=self._clock() + ttl)

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return default

        if self._clock() < entry.expires_at_ms:
            self._entries.move_to_end(key)
            return entry.value

        del self._entries[key]
        return default

    def is_valid(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and self._clock() < entry.expires_at_ms

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def cleanup(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at_ms <= now]
        for key in expired:
            del self._entries[key]

        if expired:
            logger.debug(f"Removed {len(expired)} expired cache entries")
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.is_valid(key)
