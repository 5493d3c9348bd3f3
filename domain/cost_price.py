from collections.abc import Iterable, Mapping
from decimal import Decimal

from domain.models.rates import SUPPORTED_CURRENCIES

HUNDRED = Decimal("100")


def _with_margin(amount: Decimal, margin_pct: Decimal) -> Decimal:
    return amount * (1 + Decimal(margin_pct) / HUNDRED)


def calculate_usd_price(usdt_ngn_rate: Decimal, usd_margin: Decimal) -> Decimal:
    return _with_margin(Decimal(usdt_ngn_rate), usd_margin)


def calculate_cross_price(usdt_ngn_rate: Decimal, fx_rate: Decimal | None, margin: Decimal) -> Decimal:
    """NGN price of one unit of a currency whose USD cross rate is ``fx_rate``.

    Returns 0 when the cross rate is missing or not positive.
    """
    if fx_rate is None or fx_rate <= 0 or usdt_ngn_rate <= 0:
        return Decimal("0")
    return _with_margin(Decimal(usdt_ngn_rate) / Decimal(fx_rate), margin)


def calculate_cost_prices(
    usdt_ngn_rate: Decimal,
    fx_rates: Mapping[str, Decimal],
    usd_margin: Decimal,
    other_margin: Decimal,
    currencies: Iterable[str] = SUPPORTED_CURRENCIES,
) -> dict[str, Decimal]:
    """Turn the base USDT/NGN rate into per-currency cost prices.

    USD gets its own margin; every other currency is converted through its USD
    cross rate and marked up with ``other_margin``. Currencies without a usable
    cross rate are left out rather than priced at zero.
    """
    if usdt_ngn_rate is None or usdt_ngn_rate <= 0:
        raise ValueError(f"usdt_ngn_rate must be positive, got {usdt_ngn_rate}")

    prices: dict[str, Decimal] = {}
    for code in currencies:
        if code == "USD":
            prices[code] = calculate_usd_price(usdt_ngn_rate, usd_margin)
            continue

        price = calculate_cross_price(usdt_ngn_rate, fx_rates.get(code), other_margin)
        if price > 0:
            prices[code] = price

    return prices


def have_prices_changed(
    new_prices: Mapping[str, Decimal],
    old_prices: Mapping[str, Decimal] | None,
    tracked: Iterable[str] = SUPPORTED_CURRENCIES,
) -> bool:
    if not old_prices:
        return bool(new_prices)

    return any(new_prices.get(code) != old_prices.get(code) for code in tracked)
