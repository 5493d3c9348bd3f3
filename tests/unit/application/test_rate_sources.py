# nosec B101


from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from application.services.context import RatesContext
from application.services.rate_sources import (
    CurrencyRateLoader,
    RateSource,
    UsdtRateLoader,
    VertoRateLoader,
)
from domain.models.rates import DEFAULT_FX_RATES, DEFAULT_VERTOFX_RATES, RateQuote, VertoFxQuote
from domain.models.results import FetchResult
from infrastructure.cache.memory_cache import ExpiringCache
from infrastructure.persistence.repositories.rates import RatesRepository
from infrastructure.providers.bybit_market import BybitP2PRateProvider
from infrastructure.providers.fx_rates import FxRatesProvider
from infrastructure.providers.vertofx import VertoFxProvider


@pytest.fixture
def context(clock):
    return RatesContext(cache=ExpiringCache(clock=clock), rate_limits=AsyncMock())


@pytest.fixture
def repository():
    repo = AsyncMock(spec=RatesRepository)
    repo.get_latest_usdt_ngn_rate.return_value = None
    repo.get_currency_rates.return_value = {}
    repo.get_vertofx_current_rates.return_value = None
    return repo


def quote(from_currency, to_currency, rate):
    rate = Decimal(rate)
    return VertoFxQuote(from_currency, to_currency, rate, 1 / rate, rate, None, None, None, 'verto', 'live')


class TestUsdtRateLoader:
    @pytest.mark.asyncio
    async def test_stored_rate_is_used(self, context, repository):
        repository.get_latest_usdt_ngn_rate.return_value = Decimal('1590')

        resolved = await UsdtRateLoader(context, repository).load_stored()

        assert resolved.value == Decimal('1590')
        assert resolved.source is RateSource.DATABASE
        assert context.last_known.usdt_ngn_rate == Decimal('1590')

    @pytest.mark.asyncio
    async def test_memory_then_default_when_nothing_stored(self, context, repository):
        loader = UsdtRateLoader(context, repository)

        default = await loader.load_stored()
        context.last_known.usdt_ngn_rate = Decimal('1620')
        memory = await loader.load_stored()

        assert (default.value, default.source) == (Decimal('1580'), RateSource.DEFAULT)
        assert (memory.value, memory.source) == (Decimal('1620'), RateSource.MEMORY)

    @pytest.mark.asyncio
    async def test_database_error_falls_back(self, context, repository):
        repository.get_latest_usdt_ngn_rate.side_effect = OperationalError('select', {}, Exception('x'))

        resolved = await UsdtRateLoader(context, repository).load_stored()

        assert resolved.source is RateSource.DEFAULT

    @pytest.mark.asyncio
    async def test_live_rate_is_remembered_and_saved(self, context, repository):
        market = AsyncMock(spec=BybitP2PRateProvider)
        market.fetch_usdt_ngn_rate.return_value = FetchResult.ok(Decimal('1601'))

        rate = await UsdtRateLoader(context, repository, market).fetch_live()

        assert rate == Decimal('1601')
        assert context.last_known.usdt_ngn_rate == Decimal('1601')
        repository.save_usdt_ngn_rate.assert_awaited_once_with(Decimal('1601'), source='bybit')

    @pytest.mark.asyncio
    async def test_live_failure_returns_none(self, context, repository):
        market = AsyncMock(spec=BybitP2PRateProvider)
        market.fetch_usdt_ngn_rate.return_value = FetchResult.transient_failure('timeout')

        assert await UsdtRateLoader(context, repository, market).fetch_live() is None
        repository.save_usdt_ngn_rate.assert_not_awaited()


class TestCurrencyRateLoader:
    @pytest.mark.asyncio
    async def test_live_rates_are_saved(self, context, repository):
        provider = AsyncMock(spec=FxRatesProvider)
        provider.fetch_rates.return_value = FetchResult.ok({'USD': Decimal('1'), 'EUR': Decimal('0.9')})

        resolved = await CurrencyRateLoader(context, repository, provider).load()

        assert resolved.source is RateSource.LIVE
        assert resolved.value['EUR'] == Decimal('0.9')
        repository.save_currency_rates.assert_awaited_once()
        assert context.last_known.fx_rates['EUR'] == Decimal('0.9')

    @pytest.mark.asyncio
    async def test_cached_rates_are_not_saved_again(self, context, repository):
        provider = AsyncMock(spec=FxRatesProvider)
        provider.fetch_rates.return_value = FetchResult.ok({'EUR': Decimal('0.9')}, from_cache=True)

        resolved = await CurrencyRateLoader(context, repository, provider).load()

        assert resolved.source is RateSource.CACHE
        assert resolved.value['USD'] == Decimal('1.0')
        repository.save_currency_rates.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failure_uses_database_then_default(self, context, repository):
        provider = AsyncMock(spec=FxRatesProvider)
        provider.fetch_rates.return_value = FetchResult.rate_limited('limited', retry_after_seconds=60)
        loader = CurrencyRateLoader(context, repository, provider)

        default = await loader.load()
        repository.get_currency_rates.return_value = {'EUR': Decimal('0.95')}
        stored = await loader.load()

        assert default.source is RateSource.DEFAULT
        assert default.value == DEFAULT_FX_RATES
        assert stored.source is RateSource.DATABASE
        assert stored.value == {'EUR': Decimal('0.95'), 'USD': Decimal('1.0')}

    @pytest.mark.asyncio
    async def test_failure_prefers_memory(self, context, repository):
        provider = AsyncMock(spec=FxRatesProvider)
        provider.fetch_rates.return_value = FetchResult.permanent_failure('bad')
        context.last_known.fx_rates = {'USD': Decimal('1'), 'EUR': Decimal('0.93')}

        resolved = await CurrencyRateLoader(context, repository, provider).load()

        assert resolved.source is RateSource.MEMORY
        repository.get_currency_rates.assert_not_awaited()


class TestVertoRateLoader:
    @pytest.mark.asyncio
    async def test_fresh_quotes_are_converted_and_saved(self, context, repository, clock):
        provider = AsyncMock(spec=VertoFxProvider)
        provider.fetch_all_ngn_quotes.return_value = {
            'NGN-USD': quote('NGN', 'USD', '0.000625'),
            'USD-NGN': quote('USD', 'NGN', '1600'),
        }

        resolved = await VertoRateLoader(context, repository, provider, clock=clock).load()

        assert resolved.source is RateSource.LIVE
        assert resolved.value['USD'] == RateQuote(buy=Decimal('1600'), sell=Decimal('1600'))
        assert resolved.value['EUR'] == DEFAULT_VERTOFX_RATES['EUR']
        repository.save_vertofx_current_rates.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cooldown_skips_provider(self, context, repository, clock):
        provider = AsyncMock(spec=VertoFxProvider)
        provider.fetch_all_ngn_quotes.return_value = {'USD-NGN': quote('USD', 'NGN', '1600')}
        loader = VertoRateLoader(context, repository, provider, cooldown_seconds=600, clock=clock)

        await loader.load()
        clock.advance(60_000)
        resolved = await loader.load()

        assert provider.fetch_all_ngn_quotes.await_count == 1
        assert resolved.source is RateSource.MEMORY
        assert loader.time_until_next_attempt() == 540

    @pytest.mark.asyncio
    async def test_force_refresh_bypasses_cooldown(self, context, repository, clock):
        provider = AsyncMock(spec=VertoFxProvider)
        provider.fetch_all_ngn_quotes.return_value = {'USD-NGN': quote('USD', 'NGN', '1600')}
        loader = VertoRateLoader(context, repository, provider, clock=clock)

        await loader.load()
        await loader.load(force_refresh=True)

        assert provider.fetch_all_ngn_quotes.await_count == 2

    @pytest.mark.asyncio
    async def test_empty_result_falls_back_to_database(self, context, repository, clock):
        provider = AsyncMock(spec=VertoFxProvider)
        provider.fetch_all_ngn_quotes.return_value = {}
        stored = {'USD': RateQuote(buy=Decimal('1650'), sell=Decimal('1610'))}
        repository.get_vertofx_current_rates.return_value = stored

        resolved = await VertoRateLoader(context, repository, provider, clock=clock).load()

        assert resolved.source is RateSource.DATABASE
        assert resolved.value == stored
        repository.save_vertofx_current_rates.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_nothing_anywhere_uses_defaults(self, context, repository, clock):
        provider = AsyncMock(spec=VertoFxProvider)
        provider.fetch_all_ngn_quotes.return_value = {}

        resolved = await VertoRateLoader(context, repository, provider, clock=clock).load()

        assert resolved.source is RateSource.DEFAULT
        assert resolved.value == DEFAULT_VERTOFX_RATES
