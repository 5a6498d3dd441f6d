from datetime import date
from decimal import Decimal

import pytest

from portfolio_engine.domain.services import return_calculator as returns


def _chain(values):
    cumulative = Decimal("0")
    series = [cumulative]
    for previous, current in zip(values, values[1:]):
        daily = returns.daily_return(Decimal(current), Decimal(previous))
        cumulative = returns.chain_cumulative(cumulative, daily)
        series.append(cumulative)
    return series


def test_cumulative_chain_matches_price_path():
    series = _chain(["35", "32", "28", "24.936"])

    assert [round(c, 4) for c in series] == [
        Decimal("0"),
        Decimal("-8.5714"),
        Decimal("-20.0000"),
        Decimal("-28.7543"),
    ]


def test_chained_cumulative_equals_total_change():
    series = _chain(["100", "110", "99", "120"])
    assert round(series[-1], 6) == Decimal("20.000000")


def test_daily_return_without_previous_is_zero():
    assert returns.daily_return(Decimal("50"), None) == Decimal("0")
    assert returns.daily_return(Decimal("50"), Decimal("0")) == Decimal("0")


def test_return_and_allocation_percentages_guard_zero_denominators():
    assert returns.return_percentage(Decimal("10"), Decimal("0")) == Decimal("0")
    assert returns.allocation_percentage(Decimal("10"), Decimal("0")) == Decimal("0")
    assert returns.return_percentage(Decimal("25"), Decimal("100")) == Decimal("25")
    assert returns.allocation_percentage(Decimal("30"), Decimal("120")) == Decimal("25")


def test_period_return_between_two_cumulative_points():
    # 10% then a further 10% -> 21% cumulative; the second leg alone is 10%
    assert round(returns.period_return(Decimal("21"), Decimal("10")), 6) == Decimal("10.000000")


@pytest.mark.parametrize(
    "as_of,period,expected",
    [
        (date(2024, 3, 31), "1m", date(2024, 2, 29)),
        (date(2024, 3, 15), "1d", date(2024, 3, 14)),
        (date(2024, 3, 15), "1w", date(2024, 3, 8)),
        (date(2024, 3, 15), "1y", date(2023, 3, 15)),
        (date(2024, 3, 15), "ytd", date(2023, 12, 31)),
    ],
)
def test_period_start(as_of, period, expected):
    assert returns.period_start(as_of, period) == expected


def test_volatility_needs_two_points():
    assert returns.annualized_volatility([Decimal("1")]) is None
    assert returns.annualized_volatility([Decimal("1"), Decimal("1")]) == Decimal("0")


def test_volatility_is_annualised_sample_std():
    vol = returns.annualized_volatility([Decimal("1"), Decimal("-1")])
    # std of [0.01, -0.01] (ddof=1) = 0.0141421..., * sqrt(252) * 100
    assert vol == Decimal("22.449944")


def test_max_drawdown_from_cumulative_curve():
    drawdown = returns.max_drawdown([Decimal("0"), Decimal("10"), Decimal("-12"), Decimal("5")])
    # peak wealth 1.10, trough 0.88 -> -20%
    assert drawdown == Decimal("-20.000000")
    assert returns.max_drawdown([]) is None
    assert returns.max_drawdown([Decimal("0"), Decimal("5")]) == Decimal("0.000000")
