# nosec B101


import json
from datetime import datetime
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import RedisError

from infrastructure.cache.redis_cache import RedisPersistedCache, sanitize_for_storage


@pytest.fixture
def cache(fake_redis, clock):
    return RedisPersistedCache(fake_redis, clock=clock)


@pytest.mark.asyncio
async def test_set_then_get_returns_value(cache, fake_redis):
    assert await cache.set('fx', {'EUR': '0.92'}, ttl_ms=60_000) is True

    assert await cache.get('fx') == {'EUR': '0.92'}
    assert fake_redis.ttls['rates:fx'] == 60_000


@pytest.mark.asyncio
async def test_stored_value_is_wrapped_in_envelope(cache, fake_redis, clock):
    await cache.set('fx', {'EUR': Decimal('0.92')}, ttl_ms=1000)

    payload = json.loads(fake_redis.store['rates:fx'])

    assert payload == {'value': {'EUR': '0.92'}, 'expiry': clock.now + 1000}


@pytest.mark.asyncio
async def test_get_after_expiry_is_a_miss_and_deletes_entry(cache, fake_redis, clock):
    await cache.set('fx', 'value', ttl_ms=1000)
    clock.advance(1000)

    assert await cache.get('fx') is None
    assert 'rates:fx' not in fake_redis.store


@pytest.mark.asyncio
@pytest.mark.parametrize('raw', ['not json', '{"value": 1}', '{"expiry": 5}', '[1, 2]', '{"value": 1, "expiry": "x"}'])
async def test_malformed_entry_is_deleted_and_reported_as_miss(cache, fake_redis, raw):
    fake_redis.store['rates:bad'] = raw

    assert await cache.get('bad') is None
    assert 'rates:bad' not in fake_redis.store


@pytest.mark.asyncio
async def test_set_many_writes_every_item(cache):
    assert await cache.set_many({'a': 1, 'b': [1, 2]}, ttl_ms=5000) is True

    assert await cache.get('a') == 1
    assert await cache.get('b') == [1, 2]


@pytest.mark.asyncio
async def test_cleanup_drops_expired_and_malformed(cache, fake_redis, clock):
    await cache.set('old', 1, ttl_ms=100)
    await cache.set('fresh', 2, ttl_ms=10_000)
    fake_redis.store['rates:broken'] = '{oops'
    fake_redis.store['other:key'] = 'untouched'

    clock.advance(500)
    removed = await cache.cleanup()

    assert removed == 2
    assert set(fake_redis.store) == {'rates:fresh', 'other:key'}


@pytest.mark.asyncio
async def test_redis_errors_are_not_raised():
    mock_redis = AsyncMock()
    mock_redis.get.side_effect = RedisError('down')
    mock_redis.set.side_effect = RedisError('down')
    cache = RedisPersistedCache(mock_redis)

    assert await cache.get('fx') is None
    assert await cache.set('fx', 1) is False


@pytest.mark.asyncio
async def test_is_valid_and_delete(cache):
    await cache.set('fx', 1)
    assert await cache.is_valid('fx')

    await cache.delete('fx')
    assert not await cache.is_valid('fx')


def test_sanitize_for_storage_converts_non_json_types():
    value = {
        'rate': Decimal('1580.5'),
        'at': datetime(2025, 11, 5, 10, 30),
        'codes': ('USD', 'EUR'),
    }

    assert sanitize_for_storage(value) == {
        'rate': '1580.5',
        'at': '2025-11-05T10:30:00',
        'codes': ['USD', 'EUR'],
    }
