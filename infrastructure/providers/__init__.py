from .base import RateFetcher
from .bybit import BybitP2PClient
from .bybit_market import BybitP2PRateProvider
from .fx_rates import FxRatesProvider
from .retry import RetryPolicy
from .vertofx import VertoFxProvider, quotes_to_rate_table

__all__ = [
    'RateFetcher',
    'BybitP2PClient',
    'BybitP2PRateProvider',
    'FxRatesProvider',
    'RetryPolicy',
    'VertoFxProvider',
    'quotes_to_rate_table',
]
