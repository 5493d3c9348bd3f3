import asyncio
import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime
from decimal import Decimal, InvalidOperation

from application.services.context import RatesContext
from application.services.cost_price_service import CostPriceService
from application.services.margin_service import MarginService
from application.services.rate_sources import (
	CurrencyRateLoader,
	RateSource,
	ResolvedRates,
	UsdtRateLoader,
	VertoRateLoader,
)
from application.services.snapshot_service import SnapshotService
from domain.exceptions.rates import RatesUnavailableError
from domain.models.rates import RateQuote, RateSnapshot
from infrastructure.cache.redis_cache import RedisPersistedCache
from infrastructure.utils.time import utc_now

logger = logging.getLogger(__name__)


class RatesLoader:
	"""Builds a rate snapshot from every source.

	The three source loads run concurrently and each falls back on its own, so a
	cycle always ends with a snapshot. The live USDT/NGN rate gets ``race_timeout``
	seconds to arrive before the stored rate is used instead.
	"""

	LOADING_FLAG_KEY = 'rates_loading_status'
	LAST_KNOWN_KEYS = {
		'usdt_ngn_rate': 'last_known_usdt_ngn_rate',
		'fx_rates': 'last_known_fx_rates',
		'vertofx_rates': 'last_known_vertofx_rates',
		'cost_prices': 'last_known_cost_prices',
	}

	def __init__(
		self,
		context: RatesContext,
		usdt_loader: UsdtRateLoader,
		fx_loader: CurrencyRateLoader,
		verto_loader: VertoRateLoader,
		margin_service: MarginService,
		cost_price_service: CostPriceService,
		snapshot_service: SnapshotService,
		race_timeout: float = 1.5,
		loading_flag_ttl_ms: int = 5000,
		clock: Callable[[], datetime] = utc_now,
		persisted_cache: RedisPersistedCache | None = None,
		last_known_ttl_ms: int = 24 * 60 * 60 * 1000,
	):
		self.context = context
		self.usdt_loader = usdt_loader
		self.fx_loader = fx_loader
		self.verto_loader = verto_loader
		self.margin_service = margin_service
		self.cost_price_service = cost_price_service
		self.snapshot_service = snapshot_service
		self.race_timeout = race_timeout
		self.loading_flag_ttl_ms = loading_flag_ttl_ms
		self._clock = clock
		self.persisted_cache = persisted_cache
		self.last_known_ttl_ms = last_known_ttl_ms

	@property
	def is_loading(self) -> bool:
		return self.context.cache.get(self.LOADING_FLAG_KEY) is not None

	async def _await_preferred(self) -> Decimal | None:
		try:
			return await asyncio.wait_for(self.usdt_loader.fetch_live(), timeout=self.race_timeout)
		except TimeoutError:
			logger.warning(f'Live USDT/NGN rate did not arrive within {self.race_timeout}s')
			return None
		except Exception as e:
			logger.error(f'Live USDT/NGN rate failed: {e}')
			return None

	@staticmethod
	def _settle(result, loader) -> ResolvedRates:
		if isinstance(result, BaseException):
			logger.error(f'{type(loader).__name__} failed, using fallback: {result}')
			return loader.fallback()
		return result

	async def load_all(self, force_refresh: bool = False) -> RateSnapshot | None:
		"""Run one refresh cycle.

		Returns the previous snapshot untouched when another cycle is still running.
		"""
		if self.is_loading:
			logger.info('Rate load already in progress, skipping')
			return self.context.last_snapshot

		self.context.cache.cleanup()
		self.context.cache.set(self.LOADING_FLAG_KEY, True, self.loading_flag_ttl_ms)
		try:
			preferred, stored, fx, verto = await asyncio.gather(
				self._await_preferred(),
				self.usdt_loader.load_stored(),
				self.fx_loader.load(),
				self.verto_loader.load(force_refresh=force_refresh),
				return_exceptions=True,
			)
			stored = self._settle(stored, self.usdt_loader)
			fx = self._settle(fx, self.fx_loader)
			verto = self._settle(verto, self.verto_loader)

			if isinstance(preferred, Decimal) and preferred > 0:
				usdt = ResolvedRates(preferred, RateSource.LIVE)
			else:
				usdt = stored

			margins = await self.margin_service.load()
			update = await self.cost_price_service.recalculate(
				usdt.value,
				fx.value,
				margins,
				previous=self.context.last_known.cost_prices or None,
			)
			self.context.last_known.cost_prices = update.prices

			snapshot = RateSnapshot(
				usdt_ngn_rate=usdt.value,
				fx_rates=fx.value,
				vertofx_rates=verto.value,
				cost_prices=update.prices,
				margins=margins,
				timestamp=self._clock(),
				sources={
					'usdt_ngn': usdt.source.value,
					'fx': fx.source.value,
					'vertofx': verto.source.value,
				},
			)
			self.context.last_snapshot = snapshot
			logger.info(
				f'Rates loaded: USDT/NGN {usdt.value} ({usdt.source.value}), '
				f'FX {fx.source.value}, VertoFX {verto.source.value}'
			)

			await self.remember_last_known()
			await self.snapshot_service.save_if_due(snapshot)
			return snapshot
		finally:
			self.context.cache.delete(self.LOADING_FLAG_KEY)

	async def latest_snapshot(self) -> RateSnapshot:
		if self.context.last_snapshot is None:
			await self.load_all()
		if self.context.last_snapshot is None:
			raise RatesUnavailableError('No rate snapshot is available yet')
		return self.context.last_snapshot

	async def apply_margins(self, usd_margin, other_margin) -> RateSnapshot:
		"""Store new margins and re-price the latest snapshot with them."""
		margins = await self.margin_service.update(usd_margin, other_margin)
		current = await self.latest_snapshot()

		update = await self.cost_price_service.recalculate(
			current.usdt_ngn_rate,
			current.fx_rates,
			margins,
			previous=current.cost_prices,
		)
		self.context.last_known.cost_prices = update.prices

		snapshot = replace(
			current,
			cost_prices=update.prices,
			margins=margins,
			timestamp=self._clock(),
		)
		self.context.last_snapshot = snapshot
		await self.snapshot_service.save_if_due(snapshot, source='manual')
		return snapshot

	async def remember_last_known(self) -> bool:
		"""Write every last-known value to the persisted cache in one batch."""
		if self.persisted_cache is None:
			return False

		known = self.context.last_known
		items = {
			key: getattr(known, attr) for attr, key in self.LAST_KNOWN_KEYS.items() if getattr(known, attr)
		}
		if not items:
			return False
		return await self.persisted_cache.set_many(items, self.last_known_ttl_ms)

	async def restore_last_known(self) -> int:
		"""Seed empty last-known values from the persisted cache after a restart.

		Returns how many values were restored.
		"""
		if self.persisted_cache is None:
			return 0

		known = self.context.last_known
		restored = 0

		if not known.usdt_ngn_rate:
			rate = _to_decimal(await self.persisted_cache.get(self.LAST_KNOWN_KEYS['usdt_ngn_rate']))
			if rate is not None and rate > 0:
				known.usdt_ngn_rate = rate
				restored += 1

		for attr in ('fx_rates', 'cost_prices'):
			if getattr(known, attr):
				continue
			table = _to_decimal_table(await self.persisted_cache.get(self.LAST_KNOWN_KEYS[attr]))
			if table:
				setattr(known, attr, table)
				restored += 1

		if not known.vertofx_rates:
			quotes = _to_quote_table(await self.persisted_cache.get(self.LAST_KNOWN_KEYS['vertofx_rates']))
			if quotes:
				known.vertofx_rates = quotes
				restored += 1

		if restored:
			logger.info(f'Restored {restored} last-known rate tables from the persisted cache')
		return restored


def _to_decimal(value) -> Decimal | None:
	if value is None or isinstance(value, bool):
		return None
	try:
		result = Decimal(str(value))
	except InvalidOperation:
		return None
	return result if result.is_finite() else None


def _to_decimal_table(value) -> dict[str, Decimal]:
	if not isinstance(value, dict):
		return {}
	table = {}
	for code, raw in value.items():
		rate = _to_decimal(raw)
		if rate is not None:
			table[code] = rate
	return table


def _to_quote_table(value) -> dict[str, RateQuote]:
	if not isinstance(value, dict):
		return {}
	quotes = {}
	for code, raw in value.items():
		if not isinstance(raw, dict):
			continue
		buy = _to_decimal(raw.get('buy'))
		sell = _to_decimal(raw.get('sell'))
		if buy is None or sell is None or buy < 0 or sell < 0:
			continue
		quotes[code] = RateQuote(buy=buy, sell=sell)
	return quotes
