import logging
import math
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Generic, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from application.services.context import RatesContext
from domain.models.rates import (
	DEFAULT_FX_RATES,
	DEFAULT_USDT_NGN_RATE,
	DEFAULT_VERTOFX_RATES,
	SUPPORTED_CURRENCIES,
	RateQuote,
)
from infrastructure.persistence.repositories.rates import RatesRepository
from infrastructure.providers.bybit_market import BybitP2PRateProvider
from infrastructure.providers.fx_rates import FxRatesProvider
from infrastructure.providers.vertofx import VertoFxProvider, quotes_to_rate_table
from infrastructure.utils.time import now_ms

logger = logging.getLogger(__name__)

T = TypeVar('T')


class RateSource(str, Enum):
	LIVE = 'live'
	CACHE = 'cache'
	MEMORY = 'memory'
	DATABASE = 'database'
	DEFAULT = 'default'


@dataclass(frozen=True)
class ResolvedRates(Generic[T]):
	value: T
	source: RateSource


class UsdtRateLoader:
	"""USDT/NGN comes from two places: the stored rate (database, then memory,
	then the default) and the live Bybit P2P order book, which is preferred."""

	def __init__(
		self,
		context: RatesContext,
		repository: RatesRepository,
		market: BybitP2PRateProvider | None = None,
	):
		self.context = context
		self.repository = repository
		self.market = market

	def fallback(self) -> ResolvedRates[Decimal]:
		if self.context.last_known.usdt_ngn_rate:
			return ResolvedRates(self.context.last_known.usdt_ngn_rate, RateSource.MEMORY)
		return ResolvedRates(DEFAULT_USDT_NGN_RATE, RateSource.DEFAULT)

	async def load_stored(self) -> ResolvedRates[Decimal]:
		try:
			rate = await self.repository.get_latest_usdt_ngn_rate()
		except SQLAlchemyError as e:
			logger.error(f'Failed to read the latest USDT/NGN rate: {e}')
			rate = None

		if rate is not None and rate > 0:
			if not self.context.last_known.usdt_ngn_rate:
				self.context.last_known.usdt_ngn_rate = rate
			return ResolvedRates(rate, RateSource.DATABASE)

		resolved = self.fallback()
		logger.warning(f'No stored USDT/NGN rate, using {resolved.source.value} value {resolved.value}')
		return resolved

	async def fetch_live(self) -> Decimal | None:
		if self.market is None:
			return None

		result = await self.market.fetch_usdt_ngn_rate()
		if not result.is_ok:
			logger.warning(f'Live USDT/NGN rate unavailable ({result.outcome.value}): {result.error}')
			return None

		rate = result.value
		self.context.last_known.usdt_ngn_rate = rate
		try:
			await self.repository.save_usdt_ngn_rate(rate, source='bybit')
		except SQLAlchemyError as e:
			logger.warning(f'Could not persist live USDT/NGN rate: {e}')
		return rate


class CurrencyRateLoader:
	def __init__(self, context: RatesContext, repository: RatesRepository, provider: FxRatesProvider):
		self.context = context
		self.repository = repository
		self.provider = provider

	def fallback(self) -> ResolvedRates[dict[str, Decimal]]:
		if self.context.last_known.fx_rates:
			return ResolvedRates(dict(self.context.last_known.fx_rates), RateSource.MEMORY)
		return ResolvedRates(dict(DEFAULT_FX_RATES), RateSource.DEFAULT)

	async def load(self) -> ResolvedRates[dict[str, Decimal]]:
		result = await self.provider.fetch_rates(SUPPORTED_CURRENCIES)

		if result.is_ok:
			rates = {**result.value, 'USD': Decimal('1.0')}
			self.context.last_known.fx_rates = rates
			if not result.from_cache:
				try:
					await self.repository.save_currency_rates(rates, source='api')
				except SQLAlchemyError as e:
					logger.warning(f'Could not persist FX rates: {e}')
			return ResolvedRates(rates, RateSource.CACHE if result.from_cache else RateSource.LIVE)

		logger.warning(f'FX rates unavailable ({result.outcome.value}): {result.error}')

		if self.context.last_known.fx_rates:
			return self.fallback()

		try:
			stored = await self.repository.get_currency_rates()
		except SQLAlchemyError as e:
			logger.error(f'Failed to read stored FX rates: {e}')
			stored = {}

		if stored:
			return ResolvedRates({**stored, 'USD': Decimal('1.0')}, RateSource.DATABASE)

		return self.fallback()


class VertoRateLoader:
	"""VertoFX buy/sell quotes, fetched at most once per cooldown window."""

	def __init__(
		self,
		context: RatesContext,
		repository: RatesRepository,
		provider: VertoFxProvider,
		cooldown_seconds: int = 600,
		clock: Callable[[], int] = now_ms,
	):
		self.context = context
		self.repository = repository
		self.provider = provider
		self.cooldown_ms = cooldown_seconds * 1000
		self._clock = clock

	def time_until_next_attempt(self) -> int:
		last_attempt = self.context.last_vertofx_attempt_ms
		if last_attempt is None:
			return 0
		remaining_ms = last_attempt + self.cooldown_ms - self._clock()
		return max(0, math.ceil(remaining_ms / 1000))

	def fallback(self) -> ResolvedRates[dict[str, RateQuote]]:
		if self.context.last_known.vertofx_rates:
			return ResolvedRates(dict(self.context.last_known.vertofx_rates), RateSource.MEMORY)
		return ResolvedRates(dict(DEFAULT_VERTOFX_RATES), RateSource.DEFAULT)

	def _merge_with_known(self, table: dict[str, RateQuote]) -> dict[str, RateQuote]:
		known = self.context.last_known.vertofx_rates
		return {
			code: quote if quote.is_known else known.get(code, DEFAULT_VERTOFX_RATES.get(code, quote))
			for code, quote in table.items()
		}

	async def load(self, force_refresh: bool = False) -> ResolvedRates[dict[str, RateQuote]]:
		if not force_refresh and self.time_until_next_attempt() > 0:
			logger.debug(f'VertoFX cooldown active for {self.time_until_next_attempt()}s')
		else:
			self.context.last_vertofx_attempt_ms = self._clock()
			quotes = await self.provider.fetch_all_ngn_quotes(SUPPORTED_CURRENCIES)
			table = quotes_to_rate_table(quotes, SUPPORTED_CURRENCIES)

			if any(quote.is_known for quote in table.values()):
				rates = self._merge_with_known(table)
				self.context.last_known.vertofx_rates = rates
				try:
					await self.repository.save_vertofx_current_rates(table)
				except SQLAlchemyError as e:
					logger.warning(f'Could not persist VertoFX rates: {e}')
				return ResolvedRates(rates, RateSource.LIVE)

			logger.warning('No VertoFX quotes received, falling back')

		if self.context.last_known.vertofx_rates:
			return self.fallback()

		try:
			stored = await self.repository.get_vertofx_current_rates()
		except SQLAlchemyError as e:
			logger.error(f'Failed to read stored VertoFX rates: {e}')
			stored = None

		if stored and any(quote.is_known for quote in stored.values()):
			return ResolvedRates(stored, RateSource.DATABASE)

		return self.fallback()
