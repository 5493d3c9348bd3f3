from .context import LastKnownRates, RatesContext
from .cost_price_service import CostPriceService, CostPriceUpdate
from .margin_service import MarginService
from .rate_sources import CurrencyRateLoader, RateSource, ResolvedRates, UsdtRateLoader, VertoRateLoader
from .rates_loader import RatesLoader
from .snapshot_service import SnapshotService

__all__ = [
	'CostPriceService',
	'CostPriceUpdate',
	'CurrencyRateLoader',
	'LastKnownRates',
	'MarginService',
	'RateSource',
	'RatesContext',
	'RatesLoader',
	'ResolvedRates',
	'SnapshotService',
	'UsdtRateLoader',
	'VertoRateLoader',
]
