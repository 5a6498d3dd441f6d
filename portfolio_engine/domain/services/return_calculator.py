"""
Return Calculator

Pure return math shared by the allocation generator and the performance
aggregator. All figures are percentages (5 means 5%).
"""

import math
from datetime import date
from decimal import Decimal
from typing import Dict, Optional, Sequence

import pandas as pd

from portfolio_engine.utils.numbers import HUNDRED, ZERO, rate

ONE = Decimal("1")
TRADING_DAYS_PER_YEAR = 252

# Window starts for the period returns; YTD is handled separately
PERIOD_OFFSETS: Dict[str, pd.DateOffset] = {
    "1d": pd.DateOffset(days=1),
    "1w": pd.DateOffset(weeks=1),
    "1m": pd.DateOffset(months=1),
    "3m": pd.DateOffset(months=3),
    "6m": pd.DateOffset(months=6),
    "1y": pd.DateOffset(years=1),
}


def daily_return(current_value: Decimal, previous_value: Optional[Decimal]) -> Decimal:
    """
    Percentage change of value vs. the previous snapshot.

    0 for the first snapshot of a series, and when the previous value is 0.
    """
    if previous_value is None or previous_value == ZERO:
        return ZERO
    return (current_value - previous_value) / previous_value * HUNDRED


def chain_cumulative(previous_cumulative: Decimal, daily: Decimal) -> Decimal:
    """
    c_t = ((1 + c_{t-1}/100) * (1 + d_t/100) - 1) * 100
    """
    return ((ONE + previous_cumulative / HUNDRED) * (ONE + daily / HUNDRED) - ONE) * HUNDRED


def return_percentage(total_pl: Decimal, cost_basis: Decimal) -> Decimal:
    if cost_basis == ZERO:
        return ZERO
    return total_pl / cost_basis * HUNDRED


def allocation_percentage(current_value: Decimal, portfolio_total_value: Decimal) -> Decimal:
    if portfolio_total_value == ZERO:
        return ZERO
    return current_value / portfolio_total_value * HUNDRED


def period_return(current_cumulative: Decimal, base_cumulative: Decimal) -> Decimal:
    """
    Time-weighted return between two points of one chained series.
    """
    base = ONE + base_cumulative / HUNDRED
    if base == ZERO:
        return ZERO
    return ((ONE + current_cumulative / HUNDRED) / base - ONE) * HUNDRED


def period_start(as_of: date, period: str) -> date:
    """
    Last date before the period window (the base point of the return).

    >>> period_start(date(2024, 3, 31), "1m")
    datetime.date(2024, 2, 29)
    """
    if period == "ytd":
        return date(as_of.year - 1, 12, 31)
    offset = PERIOD_OFFSETS[period]
    return (pd.Timestamp(as_of) - offset).date()


def annualized_volatility(daily_returns: Sequence[Decimal]) -> Optional[Decimal]:
    """Sample standard deviation of daily returns, annualised; None below two points"""
    if len(daily_returns) < 2:
        return None
    series = pd.Series([float(r) / 100 for r in daily_returns])
    std = series.std(ddof=1)
    if pd.isna(std):
        return None
    return rate(Decimal(str(float(std) * math.sqrt(TRADING_DAYS_PER_YEAR) * 100)))


def max_drawdown(cumulative_returns: Sequence[Decimal]) -> Optional[Decimal]:
    """
    Largest peak-to-trough fall of the wealth curve, as a non-positive percentage.
    """
    if not cumulative_returns:
        return None
    wealth = pd.Series([1 + float(c) / 100 for c in cumulative_returns])
    drawdown = (wealth / wealth.cummax() - 1).min()
    if pd.isna(drawdown):
        return None
    return rate(Decimal(str(float(drawdown) * 100 + 0.0)))

