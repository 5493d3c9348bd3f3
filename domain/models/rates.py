from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from types import MappingProxyType
from typing import Any

SUPPORTED_CURRENCIES: tuple[str, ...] = ("USD", "EUR", "GBP", "CAD")

DEFAULT_USDT_NGN_RATE = Decimal("1580")

# Value of 1 USD in each currency
DEFAULT_FX_RATES: dict[str, Decimal] = {
    "USD": Decimal("1.0"),
    "EUR": Decimal("0.88"),
    "GBP": Decimal("0.76"),
    "CAD": Decimal("1.38"),
}

DEFAULT_USD_MARGIN = Decimal("2.5")
DEFAULT_OTHER_MARGIN = Decimal("3.0")

CurrencyRateTable = Mapping[str, Decimal]


@dataclass(frozen=True)
class RateQuote:
    """Buy/sell price of one unit of a currency in NGN. ``{0, 0}`` means unknown."""

    buy: Decimal
    sell: Decimal

    def __post_init__(self):
        if self.buy < 0 or self.sell < 0:
            raise ValueError(f"Rate quote values must be non-negative, got buy={self.buy} sell={self.sell}")

    @property
    def is_known(self) -> bool:
        return self.buy > 0 or self.sell > 0

    @classmethod
    def unknown(cls) -> "RateQuote":
        return cls(buy=Decimal("0"), sell=Decimal("0"))


DEFAULT_VERTOFX_RATES: dict[str, RateQuote] = {
    "USD": RateQuote(buy=Decimal("1635"), sell=Decimal("1600")),
    "EUR": RateQuote(buy=Decimal("1870"), sell=Decimal("1805")),
    "GBP": RateQuote(buy=Decimal("2150"), sell=Decimal("2080")),
    "CAD": RateQuote(buy=Decimal("1190"), sell=Decimal("1140")),
}


@dataclass(frozen=True)
class VertoFxQuote:
    from_currency: str
    to_currency: str
    rate: Decimal
    inverse_rate: Decimal
    raw_rate: Decimal
    rate_after_spread: Decimal | None
    unit_spread: Decimal | None
    percent_change: Decimal | None
    provider: str
    rate_type: str

    @property
    def pair(self) -> str:
        return f"{self.from_currency}-{self.to_currency}"


@dataclass(frozen=True)
class MarginSettings:
    usd_margin: Decimal
    other_currencies_margin: Decimal

    @classmethod
    def defaults(cls) -> "MarginSettings":
        return cls(usd_margin=DEFAULT_USD_MARGIN, other_currencies_margin=DEFAULT_OTHER_MARGIN)


@dataclass(frozen=True)
class P2PMarketSummary:
    min_price: Decimal
    max_price: Decimal
    average_price: Decimal
    median_price: Decimal
    count: int


@dataclass(frozen=True)
class RateSnapshot:
    usdt_ngn_rate: Decimal
    fx_rates: CurrencyRateTable
    vertofx_rates: Mapping[str, RateQuote]
    cost_prices: CurrencyRateTable
    margins: MarginSettings
    timestamp: datetime
    sources: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        # Freeze the mappings so a published snapshot can't be edited in place
        for name in ("fx_rates", "vertofx_rates", "cost_prices", "sources"):
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name))))


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    expires_at_ms: int


@dataclass(frozen=True)
class RateLimitState:
    reset_at_ms: int | None
    consecutive_failures: int
