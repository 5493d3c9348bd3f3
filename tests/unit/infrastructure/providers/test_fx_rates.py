# nosec B101


from decimal import Decimal
from unittest.mock import AsyncMock

import httpx
import pytest

from domain.models.results import FetchOutcome
from infrastructure.cache.memory_cache import ExpiringCache
from infrastructure.cache.redis_cache import RedisPersistedCache
from infrastructure.providers.fx_rates import FxRatesProvider
from infrastructure.providers.retry import RetryPolicy
from infrastructure.rate_limit.tracker import RateLimitTracker

BASE_URL = 'https://fx.example.com/v1/latest'


def make_response(status_code, json=None, headers=None):
    return httpx.Response(status_code, json=json, headers=headers, request=httpx.Request('GET', BASE_URL))


@pytest.fixture
def mock_client():
    return AsyncMock(spec=httpx.AsyncClient)


@pytest.fixture
def provider(mock_client, clock, fake_redis):
    return FxRatesProvider(
        base_url=BASE_URL,
        api_key='test_key',
        cache=ExpiringCache(clock=clock),
        rate_limits=RateLimitTracker(fake_redis, clock=clock),
        client=mock_client,
        retry_policy=RetryPolicy(max_attempts=2, delay_seconds=0, sleep=AsyncMock()),
    )


@pytest.mark.asyncio
async def test_fetch_rates_success_returns_decimals(provider, mock_client):
    mock_client.request.return_value = make_response(
        200, {'data': {'EUR': 0.92, 'GBP': 0.79, 'CAD': 1.36, 'USD': 1}}
    )

    result = await provider.fetch_rates(['USD', 'EUR', 'GBP', 'CAD'])

    assert result.is_ok
    assert result.from_cache is False
    assert result.value == {
        'USD': Decimal('1.0'),
        'EUR': Decimal('0.92'),
        'GBP': Decimal('0.79'),
        'CAD': Decimal('1.36'),
    }
    call_args = mock_client.request.call_args
    assert call_args[0] == ('GET', BASE_URL)
    assert call_args[1]['params'] == {'apikey': 'test_key', 'currencies': 'USD,EUR,GBP,CAD'}


@pytest.mark.asyncio
async def test_usd_is_pinned_and_unknown_codes_ignored(provider, mock_client):
    mock_client.request.return_value = make_response(
        200, {'data': {'USD': 1.5, 'EUR': 0.92, 'JPY': 150, 'GBP': 'n/a', 'CAD': -1}}
    )

    result = await provider.fetch_rates()

    assert result.value == {'USD': Decimal('1.0'), 'EUR': Decimal('0.92')}


@pytest.mark.asyncio
async def test_wrapped_values_are_unwrapped(provider, mock_client):
    mock_client.request.return_value = make_response(
        200, {'data': {'EUR': {'code': 'EUR', 'value': 0.9}}}
    )

    result = await provider.fetch_rates(['USD', 'EUR'])

    assert result.value['EUR'] == Decimal('0.9')


@pytest.mark.asyncio
async def test_second_call_is_served_from_cache(provider, mock_client):
    mock_client.request.return_value = make_response(200, {'data': {'EUR': 0.92}})

    await provider.fetch_rates()
    result = await provider.fetch_rates()

    assert result.is_ok
    assert result.from_cache is True
    assert mock_client.request.await_count == 1


@pytest.mark.asyncio
async def test_missing_data_is_a_permanent_failure(provider, mock_client):
    mock_client.request.return_value = make_response(200, {'error': 'nope'})

    result = await provider.fetch_rates()

    assert result.outcome is FetchOutcome.PERMANENT_FAILURE
    assert mock_client.request.await_count == 1


@pytest.mark.asyncio
async def test_timeout_is_retried_then_reported_transient(provider, mock_client):
    mock_client.request.side_effect = httpx.ReadTimeout('timed out')

    result = await provider.fetch_rates()

    assert result.outcome is FetchOutcome.TRANSIENT_FAILURE
    assert mock_client.request.await_count == 2


@pytest.mark.asyncio
async def test_server_error_then_success(provider, mock_client):
    mock_client.request.side_effect = [
        make_response(503, {'message': 'unavailable'}),
        make_response(200, {'data': {'EUR': 0.92}}),
    ]

    result = await provider.fetch_rates()

    assert result.is_ok
    assert result.value['EUR'] == Decimal('0.92')


@pytest.mark.asyncio
async def test_429_records_limit_and_blocks_next_call(provider, mock_client):
    mock_client.request.return_value = make_response(429, {'message': 'too many'}, headers={'Retry-After': '30'})

    first = await provider.fetch_rates()
    second = await provider.fetch_rates()

    assert first.outcome is FetchOutcome.RATE_LIMITED
    assert first.retry_after_seconds == 30
    assert second.outcome is FetchOutcome.RATE_LIMITED
    assert second.retry_after_seconds == 30
    assert mock_client.request.await_count == 1


@pytest.mark.asyncio
async def test_persisted_cache_is_used_before_network(mock_client, clock, fake_redis):
    persisted = RedisPersistedCache(fake_redis, clock=clock)
    await persisted.set(FxRatesProvider.CACHE_KEY, {'USD': '1.0', 'EUR': '0.91'})
    provider = FxRatesProvider(
        base_url=BASE_URL,
        api_key='test_key',
        cache=ExpiringCache(clock=clock),
        persisted_cache=persisted,
        client=mock_client,
    )

    result = await provider.fetch_rates()

    assert result.from_cache is True
    assert result.value == {'USD': Decimal('1.0'), 'EUR': Decimal('0.91')}
    mock_client.request.assert_not_called()


@pytest.mark.asyncio
async def test_fresh_rates_are_written_to_persisted_cache(mock_client, clock, fake_redis):
    persisted = RedisPersistedCache(fake_redis, clock=clock)
    provider = FxRatesProvider(
        base_url=BASE_URL,
        api_key='test_key',
        cache=ExpiringCache(clock=clock),
        persisted_cache=persisted,
        client=mock_client,
    )
    mock_client.request.return_value = make_response(200, {'data': {'EUR': 0.92}})

    await provider.fetch_rates()

    assert await persisted.get(FxRatesProvider.CACHE_KEY) == {'USD': '1.0', 'EUR': '0.92'}
