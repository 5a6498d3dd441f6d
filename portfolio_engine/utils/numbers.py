"""Decimal helpers shared by the ledger, fund and snapshot code."""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

Number = Union[Decimal, int, float, str]

MONEY_PLACES = Decimal("0.0001")
UNIT_PLACES = Decimal("0.000001")
NAV_PLACES = Decimal("0.000001")
RATE_PLACES = Decimal("0.000001")
PERCENT_PLACES = Decimal("0.0001")

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value: Number) -> Decimal:
    """
    Coerce a numeric input to Decimal.

    Floats go through ``str`` so 0.1 stays 0.1.

    Raises:
        ValueError: value is not numeric or not finite
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise ValueError(f"Not a number: {value!r}")
    else:
        try:
            result = Decimal(str(value))
        except InvalidOperation as exc:
            raise ValueError(f"Not a number: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"Not a finite number: {value!r}")
    return result


def quantize(value: Decimal, places: Decimal) -> Decimal:
    return value.quantize(places, rounding=ROUND_HALF_UP)


def money(value: Decimal) -> Decimal:
    return quantize(value, MONEY_PLACES)


def units(value: Decimal) -> Decimal:
    return quantize(value, UNIT_PLACES)


def nav(value: Decimal) -> Decimal:
    return quantize(value, NAV_PLACES)


def rate(value: Decimal) -> Decimal:
    return quantize(value, RATE_PLACES)


def percent(value: Decimal) -> Decimal:
    return quantize(value, PERCENT_PLACES)
