import asyncio
from decimal import Decimal

import pytest

from portfolio_engine.domain.exceptions import (
    InsufficientDataError,
    InsufficientUnitsError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from portfolio_engine.domain.models import CashFlowType, FundTransactionType
from portfolio_engine.domain.services.cash_flow_ledger import CashFlowLedger
from portfolio_engine.domain.services.fund_unit_accounting import FundUnitAccounting

pytestmark = [pytest.mark.asyncio, pytest.mark.integration]


@pytest.fixture()
def accounting(db_session, locks):
    return FundUnitAccounting(db_session, locks, bootstrap_nav=Decimal("1"))


@pytest.fixture()
async def fund_id(accounting, make_portfolio):
    portfolio = await make_portfolio("Balanced Fund")
    portfolio = await accounting.convert_to_fund(portfolio.id)
    return portfolio.id


async def test_convert_sets_bootstrap_state(accounting, fund_id):
    fund = await accounting.portfolios.get(fund_id)
    assert fund.is_fund
    assert Decimal(fund.total_outstanding_units) == Decimal("0")
    assert Decimal(fund.nav_per_unit) == Decimal("1")
    assert fund.last_nav_date is not None


async def test_convert_twice_is_rejected(accounting, fund_id):
    with pytest.raises(InvalidStateError):
        await accounting.convert_to_fund(fund_id)


async def test_subscribe_nav_and_redeem_example(accounting, fund_id):
    subscription = await accounting.subscribe(fund_id, "alice", Decimal("10000000"))
    assert subscription.units == Decimal("10000000")
    assert subscription.nav_per_unit == Decimal("1")
    assert subscription.total_outstanding_units == Decimal("10000000")
    assert subscription.cash_balance == Decimal("10000000")

    nav = await accounting.recalculate_nav(fund_id, Decimal("11000000"))
    assert nav == Decimal("1.1")

    redemption = await accounting.redeem(fund_id, subscription.holding_id, Decimal("1000"))
    assert redemption.amount == Decimal("1100")
    assert redemption.holding_units == Decimal("9999000")
    assert redemption.total_outstanding_units == Decimal("9999000")
    assert redemption.cash_balance == Decimal("9998900")
    assert redemption.transaction_type == FundTransactionType.REDEEM

    detail = await accounting.holding_detail(subscription.holding_id)
    assert Decimal(detail.holding.realized_pl) == Decimal("100")
    assert Decimal(detail.holding.total_investment) == Decimal("9999000")


async def test_subscribe_after_nav_change_issues_fewer_units(accounting, fund_id):
    await accounting.subscribe(fund_id, "alice", Decimal("1000"))
    await accounting.recalculate_nav(fund_id, Decimal("1100"))

    result = await accounting.subscribe(fund_id, "bob", Decimal("1100"))

    assert result.units == Decimal("1000")
    assert result.total_outstanding_units == Decimal("2000")
    portfolio = await accounting.portfolios.get(fund_id)
    assert portfolio.number_of_investors == 2


async def test_subscribe_then_redeem_all_round_trips(accounting, fund_id):
    result = await accounting.subscribe(fund_id, "carol", Decimal("2500.50"))
    redemption = await accounting.redeem(fund_id, result.holding_id, result.units)

    assert redemption.cash_balance == Decimal("0")
    assert redemption.holding_units == Decimal("0")
    assert redemption.total_outstanding_units == Decimal("0")
    portfolio = await accounting.portfolios.get(fund_id)
    assert portfolio.number_of_investors == 0


async def test_fund_cash_flows_are_linked_to_transactions(db_session, locks, accounting, fund_id):
    result = await accounting.subscribe(fund_id, "alice", Decimal("500"))

    flows, total = await CashFlowLedger(db_session, locks).list_flows(fund_id)
    assert total == 1
    assert flows[0].flow_type == CashFlowType.SUBSCRIBE
    assert flows[0].fund_transaction_id == result.transaction_id
    assert flows[0].id == result.cash_flow_id

    with pytest.raises(ValidationError):
        await CashFlowLedger(db_session, locks).delete(result.cash_flow_id)


async def test_oversized_redemption_writes_nothing(accounting, fund_id):
    result = await accounting.subscribe(fund_id, "alice", Decimal("100"))

    with pytest.raises(InsufficientUnitsError):
        await accounting.redeem(fund_id, result.holding_id, Decimal("100.000001"))

    detail = await accounting.holding_detail(result.holding_id)
    assert Decimal(detail.holding.units_held) == Decimal("100")
    assert detail.summary.total_redemptions == 0


async def test_subscribe_requires_fund(accounting, make_portfolio):
    portfolio = await make_portfolio("Plain")
    with pytest.raises(InvalidStateError):
        await accounting.subscribe(portfolio.id, "alice", Decimal("100"))


@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5"), "abc"])
async def test_subscribe_rejects_bad_amounts(accounting, fund_id, amount):
    with pytest.raises(ValidationError):
        await accounting.subscribe(fund_id, "alice", amount)


async def test_subscribe_rejects_blank_investor(accounting, fund_id):
    with pytest.raises(ValidationError):
        await accounting.subscribe(fund_id, "  ", Decimal("100"))


async def test_redeem_without_nav_is_rejected(accounting, fund_id):
    result = await accounting.subscribe(fund_id, "alice", Decimal("100"))
    await accounting.recalculate_nav(fund_id, Decimal("0"))

    with pytest.raises(InsufficientDataError):
        await accounting.redeem(fund_id, result.holding_id, Decimal("1"))
    with pytest.raises(InsufficientDataError):
        await accounting.subscribe(fund_id, "bob", Decimal("100"))


async def test_redeem_unknown_holding(accounting, fund_id):
    with pytest.raises(NotFoundError):
        await accounting.redeem(fund_id, 12345, Decimal("1"))
    with pytest.raises(NotFoundError):
        await accounting.redeem_holding(12345, Decimal("1"))


async def test_holding_detail_summary(accounting, fund_id):
    first = await accounting.subscribe(fund_id, "alice", Decimal("1000"))
    await accounting.subscribe(fund_id, "alice", Decimal("1000"))
    await accounting.recalculate_nav(fund_id, Decimal("2400"))
    await accounting.redeem(fund_id, first.holding_id, Decimal("500"))

    detail = await accounting.holding_detail(first.holding_id)
    summary = detail.summary

    assert detail.nav_per_unit == Decimal("1.2")
    assert summary.total_transactions == 3
    assert summary.total_subscriptions == 2
    assert summary.total_redemptions == 1
    assert summary.total_units_subscribed == Decimal("2000")
    assert summary.total_units_redeemed == Decimal("500")
    assert summary.total_amount_invested == Decimal("2000")
    assert summary.total_amount_received == Decimal("600")
    assert summary.current_value == Decimal("1800")
    assert summary.realized_pl == Decimal("100")
    assert summary.unrealized_pl == Decimal("300")
    assert summary.total_pl == Decimal("400")
    assert summary.return_percentage == Decimal("20")
    assert all(flow is not None for _, flow in detail.entries)


async def test_fund_investors_sorted_by_units(accounting, fund_id):
    await accounting.subscribe(fund_id, "small", Decimal("10"))
    await accounting.subscribe(fund_id, "large", Decimal("1000"))

    investors = await accounting.fund_investors(fund_id)
    assert [h.investor for h in investors] == ["large", "small"]


async def test_concurrent_subscriptions_and_redemptions_serialize(accounting, session_factory, locks, fund_id):
    alice = await accounting.subscribe(fund_id, "alice", Decimal("1000"))

    async def subscribe(investor, amount):
        async with session_factory() as session:
            await FundUnitAccounting(session, locks, bootstrap_nav=Decimal("1")).subscribe(
                fund_id, investor, Decimal(amount)
            )

    async def redeem(units):
        async with session_factory() as session:
            await FundUnitAccounting(session, locks, bootstrap_nav=Decimal("1")).redeem(
                fund_id, alice.holding_id, Decimal(units)
            )

    await asyncio.gather(
        subscribe("bob", "200"),
        redeem("20"),
        subscribe("carol", "300"),
        redeem("30"),
    )

    async with session_factory() as session:
        fresh = FundUnitAccounting(session, locks)
        fund = await fresh.portfolios.get(fund_id)
        holdings = {h.investor: Decimal(h.units_held) for h in await fresh.fund_investors(fund_id)}

    assert Decimal(fund.total_outstanding_units) == Decimal("1450")
    assert Decimal(fund.cash_balance) == Decimal("1450")
    assert holdings == {"alice": Decimal("950"), "bob": Decimal("200"), "carol": Decimal("300")}
    assert sum(holdings.values()) == Decimal(fund.total_outstanding_units)
