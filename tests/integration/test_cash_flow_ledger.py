import asyncio
import itertools
from datetime import datetime
from decimal import Decimal

import pytest

from portfolio_engine.domain.exceptions import NotFoundError, ValidationError
from portfolio_engine.domain.models import CashFlowType
from portfolio_engine.domain.services.cash_flow_ledger import CashFlowLedger

pytestmark = [pytest.mark.asyncio, pytest.mark.integration]


async def _record_all(ledger, portfolio_id, flows):
    recorded = []
    for flow_type, amount in flows:
        recorded.append(await ledger.record(portfolio_id, flow_type, Decimal(amount)))
    return recorded


async def test_balance_follows_sign_table(db_session, locks, make_portfolio):
    portfolio = await make_portfolio()
    ledger = CashFlowLedger(db_session, locks)

    await _record_all(ledger, portfolio.id, [
        (CashFlowType.DEPOSIT, "10000"),
        (CashFlowType.BUY_TRADE, "4000"),
        (CashFlowType.DIVIDEND, "150"),
        (CashFlowType.FEE, "25.5"),
        (CashFlowType.SELL_TRADE, "1200"),
        (CashFlowType.WITHDRAWAL, "500"),
    ])

    await db_session.refresh(portfolio)
    assert Decimal(portfolio.cash_balance) == Decimal("6824.5")


async def test_recompute_matches_incremental_balance(db_session, locks, make_portfolio):
    portfolio = await make_portfolio()
    ledger = CashFlowLedger(db_session, locks)
    await _record_all(ledger, portfolio.id, [
        (CashFlowType.DEPOSIT, "5000"),
        (CashFlowType.TAX, "12.3456"),
        (CashFlowType.INTEREST, "7.1"),
    ])
    await db_session.refresh(portfolio)
    incremental = Decimal(portfolio.cash_balance)

    assert await ledger.recompute_balance(portfolio.id) == incremental
    assert incremental == Decimal("4994.7544")


MIXED_HISTORY = [
    (CashFlowType.DEPOSIT, "5000"),
    (CashFlowType.BUY_TRADE, "3200.25"),
    (CashFlowType.DIVIDEND, "41.5"),
    (CashFlowType.WITHDRAWAL, "900"),
]


@pytest.mark.parametrize("order", list(itertools.permutations(range(len(MIXED_HISTORY))))[::5])
async def test_recompute_is_independent_of_insertion_order(db_session, locks, make_portfolio, order):
    portfolio = await make_portfolio()
    ledger = CashFlowLedger(db_session, locks)
    await _record_all(ledger, portfolio.id, [MIXED_HISTORY[i] for i in order])

    assert await ledger.recompute_balance(portfolio.id) == Decimal("941.25")


async def test_recompute_without_flows_is_zero(db_session, locks, make_portfolio):
    portfolio = await make_portfolio()
    assert await CashFlowLedger(db_session, locks).recompute_balance(portfolio.id) == Decimal("0")


async def test_delete_then_recompute_equals_never_recorded(db_session, locks, make_portfolio):
    with_flow = await make_portfolio("A")
    without_flow = await make_portfolio("B")
    ledger = CashFlowLedger(db_session, locks)

    base = [(CashFlowType.DEPOSIT, "1000"), (CashFlowType.BUY_TRADE, "300")]
    await _record_all(ledger, with_flow.id, base)
    extra = await ledger.record(with_flow.id, CashFlowType.WITHDRAWAL, Decimal("200"))
    await _record_all(ledger, without_flow.id, base)

    balance = await ledger.delete(extra.id)

    assert balance == await ledger.recompute_balance(without_flow.id)
    assert balance == Decimal("700")


async def test_negative_amount_rejected_and_nothing_written(db_session, locks, make_portfolio):
    portfolio = await make_portfolio()
    ledger = CashFlowLedger(db_session, locks)

    with pytest.raises(ValidationError):
        await ledger.record(portfolio.id, CashFlowType.DEPOSIT, Decimal("-1"))

    flows, total = await ledger.list_flows(portfolio.id)
    assert total == 0 and flows == []


@pytest.mark.parametrize("flow_type", [CashFlowType.SUBSCRIBE, CashFlowType.REDEEM])
async def test_fund_flow_types_cannot_be_recorded_directly(db_session, locks, make_portfolio, flow_type):
    portfolio = await make_portfolio()
    with pytest.raises(ValidationError):
        await CashFlowLedger(db_session, locks).record(portfolio.id, flow_type, Decimal("100"))


async def test_unknown_portfolio_and_flow(db_session, locks):
    ledger = CashFlowLedger(db_session, locks)
    with pytest.raises(NotFoundError):
        await ledger.record(999, CashFlowType.DEPOSIT, Decimal("1"))
    with pytest.raises(NotFoundError):
        await ledger.delete(999)


async def test_list_and_summarize(db_session, locks, make_portfolio):
    portfolio = await make_portfolio()
    ledger = CashFlowLedger(db_session, locks)
    await ledger.record(portfolio.id, CashFlowType.DEPOSIT, Decimal("1000"), timestamp=datetime(2024, 1, 1, 9))
    await ledger.record(portfolio.id, CashFlowType.BUY_TRADE, Decimal("400"), timestamp=datetime(2024, 1, 2, 9))
    await ledger.record(portfolio.id, CashFlowType.DEPOSIT, Decimal("50"), timestamp=datetime(2024, 2, 1, 9))

    flows, total = await ledger.list_flows(portfolio.id, end=datetime(2024, 1, 31))
    summary = await ledger.summarize(portfolio.id, up_to=datetime(2024, 1, 31))

    assert total == 2
    assert [f.flow_type for f in flows] == [CashFlowType.BUY_TRADE, CashFlowType.DEPOSIT]
    assert summary.total_inflows == Decimal("1000")
    assert summary.total_outflows == Decimal("400")
    assert summary.net_cash_flow == Decimal("600")


async def test_concurrent_records_do_not_lose_updates(db_session, session_factory, locks, make_portfolio):
    portfolio = await make_portfolio()

    async def deposit(amount):
        async with session_factory() as session:
            await CashFlowLedger(session, locks).record(portfolio.id, CashFlowType.DEPOSIT, Decimal(amount))

    await asyncio.gather(*(deposit("100") for _ in range(5)))

    await db_session.refresh(portfolio)
    assert Decimal(portfolio.cash_balance) == Decimal("500")
