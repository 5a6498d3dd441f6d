from decimal import Decimal

import pytest

from portfolio_engine.utils import numbers


def test_float_input_goes_through_str():
    assert numbers.to_decimal(0.1) == Decimal("0.1")
    assert numbers.to_decimal("1500.25") == Decimal("1500.25")
    assert numbers.to_decimal(7) == Decimal("7")


@pytest.mark.parametrize("value", [True, "abc", float("nan"), float("inf"), "Infinity"])
def test_non_numeric_or_non_finite_rejected(value):
    with pytest.raises(ValueError):
        numbers.to_decimal(value)


def test_rounding_is_half_up_at_each_precision():
    assert numbers.money(Decimal("1.00005")) == Decimal("1.0001")
    assert numbers.units(Decimal("0.0000005")) == Decimal("0.000001")
    assert numbers.nav(Decimal("1.0999995")) == Decimal("1.100000")
    assert numbers.percent(Decimal("33.33335")) == Decimal("33.3334")
