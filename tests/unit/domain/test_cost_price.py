# nosec B101


from decimal import ROUND_HALF_UP, Decimal

import pytest

from domain.cost_price import (
    calculate_cost_prices,
    calculate_cross_price,
    calculate_usd_price,
    have_prices_changed,
)


def rounded(value):
    return value.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


def test_usd_price_applies_usd_margin():
    assert calculate_usd_price(Decimal('1500'), Decimal('2.5')) == Decimal('1537.5')


def test_cross_price_converts_through_usd():
    price = calculate_cross_price(Decimal('1500'), Decimal('0.92'), Decimal('3.0'))

    assert rounded(price) == Decimal('1679.35')


@pytest.mark.parametrize('fx_rate', [None, Decimal('0'), Decimal('-1')])
def test_cross_price_without_usable_rate_is_zero(fx_rate):
    assert calculate_cross_price(Decimal('1500'), fx_rate, Decimal('3.0')) == Decimal('0')


def test_cost_prices_for_all_currencies():
    prices = calculate_cost_prices(
        Decimal('1500'),
        {'USD': Decimal('1'), 'EUR': Decimal('0.92')},
        usd_margin=Decimal('2.5'),
        other_margin=Decimal('3.0'),
    )

    assert prices['USD'] == Decimal('1537.5')
    assert rounded(prices['EUR']) == Decimal('1679.35')
    assert 'GBP' not in prices
    assert 'CAD' not in prices


def test_cost_prices_are_deterministic():
    args = (Decimal('1580'), {'EUR': Decimal('0.88'), 'GBP': Decimal('0.76'), 'CAD': Decimal('1.38')}, Decimal('2.5'), Decimal('3'))

    assert calculate_cost_prices(*args) == calculate_cost_prices(*args)


def test_cost_prices_do_not_modify_inputs():
    fx_rates = {'EUR': Decimal('0.92')}

    calculate_cost_prices(Decimal('1500'), fx_rates, Decimal('2.5'), Decimal('3'))

    assert fx_rates == {'EUR': Decimal('0.92')}


@pytest.mark.parametrize('rate', [Decimal('0'), Decimal('-5')])
def test_non_positive_base_rate_is_rejected(rate):
    with pytest.raises(ValueError):
        calculate_cost_prices(rate, {'EUR': Decimal('0.92')}, Decimal('2.5'), Decimal('3'))


def test_zero_margin_leaves_rate_unchanged():
    prices = calculate_cost_prices(Decimal('1500'), {'EUR': Decimal('0.5')}, Decimal('0'), Decimal('0'))

    assert prices == {'USD': Decimal('1500'), 'EUR': Decimal('3000')}


def test_prices_changed_detects_any_difference():
    old = {'USD': Decimal('1537.5'), 'EUR': Decimal('1679.35')}

    assert have_prices_changed({**old, 'EUR': Decimal('1679.36')}, old) is True
    assert have_prices_changed(dict(old), old) is False


def test_prices_changed_when_currency_appears_or_disappears():
    old = {'USD': Decimal('1537.5')}

    assert have_prices_changed({'USD': Decimal('1537.5'), 'GBP': Decimal('2000')}, old) is True
    assert have_prices_changed({}, old) is True


def test_prices_changed_against_empty_previous():
    assert have_prices_changed({'USD': Decimal('1')}, None) is True
    assert have_prices_changed({}, {}) is False


def test_untracked_currencies_are_ignored():
    old = {'USD': Decimal('1'), 'JPY': Decimal('5')}

    assert have_prices_changed({'USD': Decimal('1'), 'JPY': Decimal('6')}, old) is False
