from datetime import date
from decimal import Decimal

import pytest

from portfolio_engine.domain.exceptions import ValidationError
from portfolio_engine.domain.models import Granularity
from portfolio_engine.domain.services.allocation_snapshot_generator import AllocationSnapshotGenerator

pytestmark = [pytest.mark.asyncio, pytest.mark.integration]

DAY1 = date(2024, 3, 1)
DAY2 = date(2024, 3, 4)
DAY3 = date(2024, 3, 5)


@pytest.fixture()
async def holdings(make_portfolio, make_asset):
    portfolio = await make_portfolio()
    aaa = await make_asset("AAA")
    bbb = await make_asset("BBB", asset_group="BOND")
    return portfolio, aaa, bbb


async def test_values_and_allocation_for_one_date(db_session, holdings, make_position):
    portfolio, aaa, bbb = holdings
    generator = AllocationSnapshotGenerator(db_session)

    first = await generator.generate(
        portfolio.id, aaa.id, DAY1, Granularity.DAILY,
        make_position(aaa, 10, 1000), Decimal("120"), Decimal("2000"),
    )
    second = await generator.generate(
        portfolio.id, bbb.id, DAY1, Granularity.DAILY,
        make_position(bbb, 5, 500, realized_pl="25"), Decimal("160"), Decimal("2000"),
    )

    assert first.current_value == Decimal("1200")
    assert first.unrealized_pl == Decimal("200")
    assert first.return_percentage == Decimal("20")
    assert first.allocation_percentage == Decimal("60")
    assert second.total_pl == Decimal("325")
    assert second.allocation_percentage == Decimal("40")
    assert first.allocation_percentage + second.allocation_percentage == Decimal("100")

    # first snapshot of a series has no base
    assert first.daily_return == Decimal("0")
    assert first.cumulative_return == Decimal("0")
    assert first.previous_value is None


async def test_rerun_overwrites_same_row(db_session, holdings, make_position):
    portfolio, aaa, _ = holdings
    generator = AllocationSnapshotGenerator(db_session)
    position = make_position(aaa, 10, 1000)

    first = await generator.generate(portfolio.id, aaa.id, DAY1, Granularity.DAILY, position, "100", "1000")
    first_values = (first.id, first.current_value, first.daily_return, first.cumulative_return)
    again = await generator.generate(portfolio.id, aaa.id, DAY1, Granularity.DAILY, position, "100", "1000")

    assert (again.id, again.current_value, again.daily_return, again.cumulative_return) == first_values
    assert len(await generator.list_snapshots(portfolio.id)) == 1


async def test_returns_chain_over_previous_snapshots(db_session, holdings, make_position):
    portfolio, aaa, _ = holdings
    generator = AllocationSnapshotGenerator(db_session)
    position = make_position(aaa, 10, 1000)

    await generator.generate(portfolio.id, aaa.id, DAY1, Granularity.DAILY, position, "100", "1000")
    day2 = await generator.generate(portfolio.id, aaa.id, DAY2, Granularity.DAILY, position, "110", "1100")
    day3 = await generator.generate(portfolio.id, aaa.id, DAY3, Granularity.DAILY, position, "99", "990")

    assert day2.daily_return == Decimal("10")
    assert day2.cumulative_return == Decimal("10")
    assert day2.previous_value == Decimal("1000")
    assert day3.daily_return == Decimal("-10")
    assert day3.cumulative_return == Decimal("-1")
    assert day3.previous_value == Decimal("1100")
    assert day3.previous_cumulative_return == Decimal("10")


async def test_granularities_are_separate_series(db_session, holdings, make_position):
    portfolio, aaa, _ = holdings
    generator = AllocationSnapshotGenerator(db_session)
    position = make_position(aaa, 10, 1000)

    await generator.generate(portfolio.id, aaa.id, DAY1, Granularity.DAILY, position, "100", "1000")
    weekly = await generator.generate(portfolio.id, aaa.id, DAY2, Granularity.WEEKLY, position, "120", "1200")

    assert weekly.previous_value is None
    assert weekly.daily_return == Decimal("0")


async def test_closed_position_is_inactive(db_session, holdings, make_position):
    portfolio, aaa, _ = holdings
    snapshot = await AllocationSnapshotGenerator(db_session).generate(
        portfolio.id, aaa.id, DAY1, Granularity.DAILY,
        make_position(aaa, 0, 0, realized_pl="80"), "100", "0",
    )
    assert snapshot.is_active is False
    assert snapshot.current_value == Decimal("0")
    assert snapshot.allocation_percentage == Decimal("0")
    assert snapshot.return_percentage == Decimal("0")


@pytest.mark.parametrize("price", [None, "-1", "n/a"])
async def test_bad_price_rejected(db_session, holdings, make_position, price):
    portfolio, aaa, _ = holdings
    with pytest.raises(ValidationError):
        await AllocationSnapshotGenerator(db_session).generate(
            portfolio.id, aaa.id, DAY1, Granularity.DAILY, make_position(aaa, 1, 1), price, "1",
        )


async def test_position_must_match_asset(db_session, holdings, make_position):
    portfolio, aaa, bbb = holdings
    with pytest.raises(ValidationError):
        await AllocationSnapshotGenerator(db_session).generate(
            portfolio.id, bbb.id, DAY1, Granularity.DAILY, make_position(aaa, 1, 1), "1", "1",
        )


async def test_delete_for_date_and_list_range(db_session, holdings, make_position):
    portfolio, aaa, bbb = holdings
    generator = AllocationSnapshotGenerator(db_session)
    for day in (DAY1, DAY2):
        await generator.generate(portfolio.id, aaa.id, day, Granularity.DAILY, make_position(aaa, 1, 10), "10", "20")
        await generator.generate(portfolio.id, bbb.id, day, Granularity.DAILY, make_position(bbb, 1, 10), "10", "20")

    assert len(await generator.list_snapshots(portfolio.id, start=DAY2)) == 2
    assert len(await generator.list_snapshots(portfolio.id, asset_id=aaa.id)) == 2

    deleted = await generator.delete_for_date(portfolio.id, DAY1, Granularity.DAILY)

    assert deleted == 2
    remaining = await generator.list_snapshots(portfolio.id)
    assert {s.snapshot_date for s in remaining} == {DAY2}
