# nosec B101


from decimal import Decimal
from unittest.mock import AsyncMock

import httpx
import pytest

from domain.models.rates import RateQuote, VertoFxQuote
from domain.models.results import FetchOutcome
from infrastructure.cache.memory_cache import ExpiringCache
from infrastructure.providers.retry import RetryPolicy
from infrastructure.providers.vertofx import VertoFxProvider, quotes_to_rate_table
from infrastructure.rate_limit.tracker import RateLimitTracker

BASE_URL = 'https://verto.example.com/p/currencies'

RATES = {
    ('NGN', 'USD'): 0.000625,
    ('USD', 'NGN'): 1600,
    ('NGN', 'EUR'): 0.0005,
    ('EUR', 'NGN'): 1805,
    ('NGN', 'GBP'): 0.0004,
    ('GBP', 'NGN'): 2080,
    ('NGN', 'CAD'): 0.0008,
    ('CAD', 'NGN'): 1140,
}


def make_response(status_code, json=None, headers=None):
    return httpx.Response(
        status_code, json=json, headers=headers, request=httpx.Request('POST', f'{BASE_URL}/exchange-rate')
    )


def quote_body(rate, **extra):
    return {'success': True, 'rate': rate, 'reversedRate': 1 / rate, 'provider': 'verto', 'rateType': 'live', **extra}


def pair_of(call_kwargs):
    body = call_kwargs['json']
    return body['currencyFrom']['label'], body['currencyTo']['label']


@pytest.fixture
def mock_client():
    return AsyncMock(spec=httpx.AsyncClient)


@pytest.fixture
def tracker(fake_redis, clock):
    return RateLimitTracker(fake_redis, clock=clock)


@pytest.fixture
def cache(clock):
    return ExpiringCache(clock=clock)


@pytest.fixture
def provider(mock_client, cache, tracker):
    return VertoFxProvider(
        cache=cache,
        rate_limits=tracker,
        base_url=BASE_URL,
        client=mock_client,
        retry_policy=RetryPolicy(max_attempts=1),
        sleep=AsyncMock(),
    )


@pytest.mark.asyncio
async def test_fetch_quote_parses_response(provider, mock_client):
    mock_client.request.return_value = make_response(
        200, quote_body(1600, rateAfterSpread=1590, unitSpread=10, overnightPercentChange=0.4)
    )

    result = await provider.fetch_quote('usd', 'ngn')

    assert result.is_ok
    quote = result.value
    assert quote.pair == 'USD-NGN'
    assert quote.rate == Decimal('1590')
    assert quote.raw_rate == Decimal('1600')
    assert quote.unit_spread == Decimal('10')
    assert quote.provider == 'verto'
    args, kwargs = mock_client.request.call_args
    assert args == ('POST', f'{BASE_URL}/exchange-rate')
    assert kwargs['json'] == {'currencyFrom': {'label': 'USD'}, 'currencyTo': {'label': 'NGN'}}


@pytest.mark.asyncio
async def test_unsuccessful_body_is_permanent_failure(provider, mock_client):
    mock_client.request.return_value = make_response(200, {'success': False})

    result = await provider.fetch_quote('USD', 'NGN')

    assert result.outcome is FetchOutcome.PERMANENT_FAILURE


@pytest.mark.asyncio
async def test_fetch_all_returns_every_direction(provider, mock_client, cache):
    async def respond(method, url, **kwargs):
        return make_response(200, quote_body(RATES[pair_of(kwargs)]))

    mock_client.request.side_effect = respond

    quotes = await provider.fetch_all_ngn_quotes()

    assert set(quotes) == {
        'NGN-USD', 'USD-NGN', 'NGN-EUR', 'EUR-NGN', 'NGN-GBP', 'GBP-NGN', 'NGN-CAD', 'CAD-NGN',
    }
    assert cache.get(VertoFxProvider.CACHE_KEY) == quotes
    requested = [pair_of(c.kwargs) for c in mock_client.request.call_args_list]
    assert requested[:2] == [('NGN', 'USD'), ('USD', 'NGN')]


@pytest.mark.asyncio
async def test_rate_limit_mid_cycle_keeps_partial_results(provider, mock_client, cache, clock):
    async def respond(method, url, **kwargs):
        pair = pair_of(kwargs)
        if pair == ('EUR', 'NGN'):
            return make_response(429, {'message': 'slow down'}, headers={'Retry-After': '60'})
        return make_response(200, quote_body(RATES[pair]))

    mock_client.request.side_effect = respond

    quotes = await provider.fetch_all_ngn_quotes()

    assert 'NGN-EUR' in quotes
    assert 'EUR-NGN' not in quotes
    assert set(quotes) == {'NGN-USD', 'USD-NGN', 'NGN-EUR'}
    requested = [pair_of(c.kwargs) for c in mock_client.request.call_args_list]
    assert ('NGN', 'GBP') not in requested
    assert mock_client.request.await_count == 4

    clock.advance(3 * 60 * 1000)
    assert cache.get(VertoFxProvider.CACHE_KEY) is None


@pytest.mark.asyncio
async def test_exhausted_quota_header_still_returns_data(provider, mock_client, tracker):
    mock_client.request.return_value = make_response(
        200, quote_body(1600), headers={'x-ratelimit-remaining': '0', 'retry-after': '120'}
    )

    quotes = await provider.fetch_all_ngn_quotes(['USD'])

    assert set(quotes) == {'NGN-USD'}
    assert await tracker.is_limited('vertofx')
    assert await tracker.time_until_reset('vertofx') == 120


@pytest.mark.asyncio
async def test_fetch_all_skips_network_while_limited(provider, mock_client, tracker):
    await tracker.record_limit_hit('vertofx', retry_after_seconds=60)

    quotes = await provider.fetch_all_ngn_quotes()

    assert quotes == {}
    mock_client.request.assert_not_called()


@pytest.mark.asyncio
async def test_fresh_cached_set_is_served_while_limited(provider, mock_client, cache, tracker):
    cached = {
        'NGN-USD': _quote('NGN', 'USD', 0.000625),
        'USD-NGN': _quote('USD', 'NGN', 1600),
    }
    cache.set(VertoFxProvider.CACHE_KEY, cached, 3 * 60 * 1000)
    await tracker.record_limit_hit('vertofx', retry_after_seconds=60)

    quotes = await provider.fetch_all_ngn_quotes()

    assert quotes == cached
    mock_client.request.assert_not_called()


def _quote(from_currency, to_currency, rate):
    rate = Decimal(str(rate))
    return VertoFxQuote(
        from_currency=from_currency,
        to_currency=to_currency,
        rate=rate,
        inverse_rate=Decimal('1') / rate,
        raw_rate=rate,
        rate_after_spread=None,
        unit_spread=None,
        percent_change=None,
        provider='verto',
        rate_type='live',
    )


def test_quotes_to_rate_table_derives_buy_and_sell():
    quotes = {
        'NGN-USD': _quote('NGN', 'USD', '0.000625'),
        'USD-NGN': _quote('USD', 'NGN', '1600'),
        'NGN-EUR': _quote('NGN', 'EUR', '0.0005'),
    }

    table = quotes_to_rate_table(quotes, ['USD', 'EUR', 'GBP'])

    assert table['USD'] == RateQuote(buy=Decimal('1600'), sell=Decimal('1600'))
    assert table['EUR'] == RateQuote(buy=Decimal('2000'), sell=Decimal('0'))
    assert table['GBP'] == RateQuote.unknown()
    assert not table['GBP'].is_known
