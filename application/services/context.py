from dataclasses import dataclass, field
from decimal import Decimal

from domain.models.rates import RateQuote, RateSnapshot
from infrastructure.cache.memory_cache import ExpiringCache
from infrastructure.rate_limit.tracker import RateLimitTracker


@dataclass
class LastKnownRates:
	"""Last good value seen from each source during this process's lifetime."""

	usdt_ngn_rate: Decimal | None = None
	fx_rates: dict[str, Decimal] = field(default_factory=dict)
	vertofx_rates: dict[str, RateQuote] = field(default_factory=dict)
	cost_prices: dict[str, Decimal] = field(default_factory=dict)


@dataclass
class RatesContext:
	cache: ExpiringCache
	rate_limits: RateLimitTracker
	last_known: LastKnownRates = field(default_factory=LastKnownRates)
	last_snapshot: RateSnapshot | None = None
	last_vertofx_attempt_ms: int | None = None
