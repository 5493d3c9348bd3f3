from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
	DATABASE_URL: str = 'sqlite+aiosqlite:///./fx_rates.db'

	REDIS_URL: str = 'redis://localhost:6379'

	# Generic FX cross-rate provider
	FX_RATES_BASE_URL: str = 'https://api.freecurrencyapi.com/v1/latest'
	FX_RATES_API_KEY: str = ''
	FX_RATES_TIMEOUT_SECONDS: float = 5.0
	FX_RATES_CACHE_TTL_SECONDS: int = 600
	FX_RATES_PERSISTED_TTL_SECONDS: int = 1800

	# VertoFX
	VERTOFX_BASE_URL: str = 'https://api-currency-beta.vertofx.com/p/currencies'
	VERTOFX_TIMEOUT_SECONDS: float = 5.0
	VERTOFX_QUOTE_CACHE_TTL_SECONDS: int = 300
	VERTOFX_PARTIAL_CACHE_TTL_SECONDS: int = 180
	VERTOFX_REFRESH_COOLDOWN_SECONDS: int = 600
	VERTOFX_REQUEST_DELAY_SECONDS: float = 0.1

	# Bybit P2P
	BYBIT_API_KEY: str = ''
	BYBIT_API_SECRET: str = ''
	BYBIT_TESTNET: bool = False
	BYBIT_TIMEOUT_SECONDS: float = 10.0
	BYBIT_RECV_WINDOW: int = 5000
	BYBIT_PAGE_SIZE: int = 30
	BYBIT_PAGE_DELAY_SECONDS: float = 0.5
	BYBIT_P2P_MARKET_URL: str = 'https://api2.bybit.com/fiat/otc/item/online'

	# Aggregation
	USDT_RATE_RACE_TIMEOUT_SECONDS: float = 1.5
	LOADING_FLAG_TTL_SECONDS: int = 5
	LAST_KNOWN_TTL_HOURS: int = 24
	SNAPSHOT_DEDUP_HOURS: int = 6
	DEFAULT_USD_MARGIN: float = 2.5
	DEFAULT_OTHER_MARGIN: float = 3.0
	MEMORY_CACHE_MAX_ENTRIES: int = 50
	MEMORY_CACHE_TTL_SECONDS: int = 300
	REFRESH_INTERVAL_SECONDS: int = 300

	# Logging
	LOG_LEVEL: str = 'INFO'
	LOG_DIRECTORY: str | None = None

	# Application
	APP_NAME: str = 'FX Cost Price API'
	DEBUG: bool = True

	model_config = SettingsConfigDict(env_file='.env', case_sensitive=False, extra='ignore')


@lru_cache
def get_settings() -> Settings:
	return Settings()
