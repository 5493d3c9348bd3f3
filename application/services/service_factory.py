import logging
from datetime import timedelta
from decimal import Decimal

from redis.asyncio import Redis

from application.services.context import RatesContext
from application.services.cost_price_service import CostPriceService
from application.services.margin_service import MarginService
from application.services.rate_sources import CurrencyRateLoader, UsdtRateLoader, VertoRateLoader
from application.services.rates_loader import RatesLoader
from application.services.snapshot_service import SnapshotService
from config.settings import Settings, get_settings
from domain.models.rates import MarginSettings
from infrastructure.cache.memory_cache import ExpiringCache
from infrastructure.cache.redis_cache import RedisPersistedCache
from infrastructure.persistence.database import Database
from infrastructure.persistence.repositories.rates import RatesRepository
from infrastructure.providers import BybitP2PClient, BybitP2PRateProvider, FxRatesProvider, VertoFxProvider
from infrastructure.rate_limit.tracker import RateLimitTracker

logger = logging.getLogger(__name__)


class ServiceFactory:
	"""Builds and wires every service from settings."""

	def __init__(self, settings: Settings | None = None):
		self.settings = settings or get_settings()
		s = self.settings

		self.db = Database(s.DATABASE_URL)
		self.redis_client = Redis.from_url(s.REDIS_URL, decode_responses=True)

		self.cache = ExpiringCache(
			max_entries=s.MEMORY_CACHE_MAX_ENTRIES,
			default_ttl_ms=s.MEMORY_CACHE_TTL_SECONDS * 1000,
		)
		self.persisted_cache = RedisPersistedCache(self.redis_client)
		self.rate_limits = RateLimitTracker(self.redis_client)
		self.context = RatesContext(cache=self.cache, rate_limits=self.rate_limits)
		self.repository = RatesRepository(self.db)

		self.fx_provider = FxRatesProvider(
			base_url=s.FX_RATES_BASE_URL,
			api_key=s.FX_RATES_API_KEY,
			cache=self.cache,
			rate_limits=self.rate_limits,
			persisted_cache=self.persisted_cache,
			timeout=s.FX_RATES_TIMEOUT_SECONDS,
			cache_ttl_ms=s.FX_RATES_CACHE_TTL_SECONDS * 1000,
			persisted_ttl_ms=s.FX_RATES_PERSISTED_TTL_SECONDS * 1000,
		)
		self.vertofx_provider = VertoFxProvider(
			cache=self.cache,
			rate_limits=self.rate_limits,
			base_url=s.VERTOFX_BASE_URL,
			timeout=s.VERTOFX_TIMEOUT_SECONDS,
			quote_ttl_ms=s.VERTOFX_QUOTE_CACHE_TTL_SECONDS * 1000,
			partial_ttl_ms=s.VERTOFX_PARTIAL_CACHE_TTL_SECONDS * 1000,
			request_delay=s.VERTOFX_REQUEST_DELAY_SECONDS,
		)
		self.market_provider = BybitP2PRateProvider(
			rate_limits=self.rate_limits,
			market_url=s.BYBIT_P2P_MARKET_URL,
		)
		self.bybit_client = BybitP2PClient(
			api_key=s.BYBIT_API_KEY,
			api_secret=s.BYBIT_API_SECRET,
			testnet=s.BYBIT_TESTNET,
			rate_limits=self.rate_limits,
			timeout=s.BYBIT_TIMEOUT_SECONDS,
			recv_window=s.BYBIT_RECV_WINDOW,
			page_size=s.BYBIT_PAGE_SIZE,
			page_delay=s.BYBIT_PAGE_DELAY_SECONDS,
		)

		self.margin_service = MarginService(
			self.repository,
			defaults=MarginSettings(
				usd_margin=Decimal(str(s.DEFAULT_USD_MARGIN)),
				other_currencies_margin=Decimal(str(s.DEFAULT_OTHER_MARGIN)),
			),
		)
		self.cost_price_service = CostPriceService(self.repository)
		self.snapshot_service = SnapshotService(self.repository, dedup_window=timedelta(hours=s.SNAPSHOT_DEDUP_HOURS))

		self.rates_loader = RatesLoader(
			context=self.context,
			usdt_loader=UsdtRateLoader(self.context, self.repository, self.market_provider),
			fx_loader=CurrencyRateLoader(self.context, self.repository, self.fx_provider),
			verto_loader=VertoRateLoader(
				self.context,
				self.repository,
				self.vertofx_provider,
				cooldown_seconds=s.VERTOFX_REFRESH_COOLDOWN_SECONDS,
			),
			margin_service=self.margin_service,
			cost_price_service=self.cost_price_service,
			snapshot_service=self.snapshot_service,
			race_timeout=s.USDT_RATE_RACE_TIMEOUT_SECONDS,
			loading_flag_ttl_ms=s.LOADING_FLAG_TTL_SECONDS * 1000,
			persisted_cache=self.persisted_cache,
			last_known_ttl_ms=s.LAST_KNOWN_TTL_HOURS * 60 * 60 * 1000,
		)

	@property
	def providers(self) -> list:
		return [self.fx_provider, self.vertofx_provider, self.market_provider, self.bybit_client]

	async def startup(self) -> None:
		await self.db.create_tables()
		removed = await self.persisted_cache.cleanup()
		if removed:
			logger.info(f'Removed {removed} stale persisted cache entries')
		await self.rates_loader.restore_last_known()
		logger.info('Services started')

	async def close(self) -> None:
		for provider in self.providers:
			await provider.close()
		await self.redis_client.aclose()
		await self.db.close()
		logger.info('Services cleaned up')
