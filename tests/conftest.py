"""
Shared test fixtures: a manual clock and an in-memory stand-in for the
``redis.asyncio`` client.
"""

import pytest


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakePipeline:
    def __init__(self, redis):
        self.redis = redis
        self.commands = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def set(self, key, value, px=None):
        self.commands.append((key, value, px))
        return self

    async def execute(self):
        for key, value, px in self.commands:
            await self.redis.set(key, value, px=px)
        return [True] * len(self.commands)


class FakeRedis:
    """Covers only the commands the cache and tracker use. TTLs are not enforced."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, px=None):
        self.store[key] = str(value)
        self.ttls[key] = px
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def incr(self, key):
        value = int(self.store.get(key, 0)) + 1
        self.store[key] = str(value)
        return value

    async def scan_iter(self, match=None):
        prefix = match.rstrip('*') if match else ''
        for key in list(self.store):
            if key.startswith(prefix):
                yield key

    def pipeline(self, transaction=True):
        return FakePipeline(self)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis():
    return FakeRedis()
