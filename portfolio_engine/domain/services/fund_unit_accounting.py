"""
Fund Unit Accounting

Turns investor subscriptions and redemptions into unit issuance and
cancellation at the portfolio's NAV per unit. NAV and outstanding units are
only ever changed here.

State per portfolio:
    NOT_FUND -> FUND      convert_to_fund
    FUND -> NOT_FUND      reset_fund (cleanup tooling only)
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_engine.config import settings
from portfolio_engine.domain.exceptions import (
    InsufficientDataError,
    InsufficientUnitsError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from portfolio_engine.domain.models import (
    CashFlowType,
    FundResetResult,
    FundTransactionType,
    HoldingSummary,
    UnitTransactionResult,
)
from portfolio_engine.domain.services.cash_flow_ledger import CashFlowLedger
from portfolio_engine.domain.services.fund_reset import FundResetPlan
from portfolio_engine.domain.services.portfolio_locks import PortfolioLockRegistry
from portfolio_engine.infrastructure.db.models import (
    CashFlowModel,
    FundUnitTransactionModel,
    InvestorHoldingModel,
    PortfolioModel,
)
from portfolio_engine.infrastructure.db.repositories.fund_repository import FundRepository
from portfolio_engine.infrastructure.db.repositories.portfolio_repository import PortfolioRepository
from portfolio_engine.infrastructure.db.unit_of_work import portfolio_transaction
from portfolio_engine.utils import numbers
from portfolio_engine.utils.numbers import HUNDRED, Number, ZERO, to_decimal
from portfolio_engine.utils.time import now_local_naive, to_local_naive

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HoldingDetail:
    holding: InvestorHoldingModel
    nav_per_unit: Decimal
    entries: List[Tuple[FundUnitTransactionModel, Optional[CashFlowModel]]]
    summary: HoldingSummary


class FundUnitAccounting:
    def __init__(
        self,
        session: AsyncSession,
        locks: PortfolioLockRegistry,
        bootstrap_nav: Optional[Number] = None,
    ):
        self.session = session
        self.locks = locks
        self.bootstrap_nav = numbers.nav(to_decimal(
            bootstrap_nav if bootstrap_nav is not None else settings.FUND_BOOTSTRAP_NAV
        ))
        if self.bootstrap_nav <= ZERO:
            raise ValueError("Bootstrap NAV must be positive")
        self.ledger = CashFlowLedger(session, locks)
        self.portfolios = PortfolioRepository(session)
        self.funds = FundRepository(session)

    # ------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------

    async def convert_to_fund(self, portfolio_id: int) -> PortfolioModel:
        """
        Switch a portfolio to fund mode with zero units and the bootstrap NAV.

        Raises:
            InvalidStateError: portfolio is already a fund
        """
        async with portfolio_transaction(self.session, self.locks, portfolio_id):
            portfolio = await self._load_portfolio(portfolio_id)
            if portfolio.is_fund:
                raise InvalidStateError(f"Portfolio {portfolio_id} is already a fund")

            portfolio.is_fund = True
            portfolio.total_outstanding_units = ZERO
            portfolio.nav_per_unit = self.bootstrap_nav
            portfolio.last_nav_date = now_local_naive()
            portfolio.number_of_investors = 0
            await self.session.flush()

        logger.info("🏦 Portfolio %s converted to fund | NAV=%s", portfolio_id, self.bootstrap_nav)
        return portfolio

    async def reset_fund(self, portfolio_id: int) -> FundResetResult:
        """
        Remove all fund activity of a portfolio and return it to NOT_FUND.

        Fund-generated cash flows, unit transactions and holdings are deleted
        in that order; the cash balance is then recomputed so unrelated cash
        history is kept.
        """
        async with portfolio_transaction(self.session, self.locks, portfolio_id):
            portfolio = await self._load_portfolio(portfolio_id)
            plan = await FundResetPlan.for_portfolio(self.session, portfolio_id)
            counts = await plan.execute(self.session)

            portfolio.is_fund = False
            portfolio.total_outstanding_units = ZERO
            portfolio.nav_per_unit = ZERO
            portfolio.last_nav_date = None
            portfolio.number_of_investors = 0
            balance = await self.ledger.stage_recompute(portfolio)

        result = FundResetResult(
            portfolio_id=portfolio_id,
            portfolio_name=portfolio.name,
            cash_flows_deleted=counts["cash_flows"],
            transactions_deleted=counts["transactions"],
            holdings_deleted=counts["holdings"],
            cash_balance=balance,
        )
        logger.info(
            "🧹 Fund data reset | portfolio=%s | flows=%s tx=%s holdings=%s | balance=%s",
            portfolio_id, result.cash_flows_deleted, result.transactions_deleted,
            result.holdings_deleted, balance,
        )
        return result

    async def reset_all_funds(self) -> List[FundResetResult]:
        """Reset every portfolio currently in fund mode, one at a time"""
        fund_ids = await self.portfolios.list_fund_ids()
        logger.info("🧹 Resetting %s fund portfolio(s)", len(fund_ids))
        return [await self.reset_fund(portfolio_id) for portfolio_id in fund_ids]

    # ------------------------------------------------------------
    # Unit operations
    # ------------------------------------------------------------

    async def subscribe(
        self,
        portfolio_id: int,
        investor: str,
        cash_amount: Number,
        executed_at: Optional[datetime] = None,
    ) -> UnitTransactionResult:
        """
        Issue units for ``cash_amount`` at the current NAV.

        Raises:
            ValidationError: non-positive amount, blank investor, amount too small for one unit step
            InvalidStateError: portfolio is not a fund
            InsufficientDataError: units outstanding but NAV undefined
        """
        amount = numbers.money(_positive(cash_amount, "Subscription amount"))
        investor = (investor or "").strip()
        if not investor:
            raise ValidationError("Investor is required")
        when = to_local_naive(executed_at) if executed_at else now_local_naive()

        async with portfolio_transaction(self.session, self.locks, portfolio_id):
            portfolio = await self._load_fund(portfolio_id)
            nav = self._issue_nav(portfolio)
            issued = numbers.units(amount / nav)
            if issued <= ZERO:
                raise ValidationError(f"Amount {amount} buys no units at NAV {nav}")

            holding = await self.funds.get_holding_for_investor(portfolio_id, investor)
            if holding is None:
                holding = await self.funds.add_holding(portfolio_id, investor)

            held = Decimal(holding.units_held) + issued
            invested = numbers.money(Decimal(holding.total_investment) + amount)
            holding.units_held = held
            holding.total_investment = invested
            holding.avg_cost_per_unit = numbers.nav(invested / held)

            transaction = await self.funds.add_transaction(
                holding_id=holding.id,
                portfolio_id=portfolio_id,
                transaction_type=FundTransactionType.SUBSCRIBE,
                units_delta=issued,
                nav_per_unit=nav,
                amount=amount,
                executed_at=when,
            )
            flow = await self.ledger.stage_entry(
                portfolio,
                CashFlowType.SUBSCRIBE,
                amount,
                when,
                description=f"Subscription by {investor}",
                fund_transaction_id=transaction.id,
            )
            transaction.cash_flow_id = flow.id

            portfolio.total_outstanding_units = Decimal(portfolio.total_outstanding_units) + issued
            if Decimal(portfolio.nav_per_unit) <= ZERO:
                portfolio.nav_per_unit = nav
            await self.session.flush()
            portfolio.number_of_investors = await self.funds.count_investors(portfolio_id)
            await self.session.flush()

        logger.info(
            "📥 Subscription | portfolio=%s | investor=%s | amount=%s | units=%s @ NAV %s",
            portfolio_id, investor, amount, issued, nav,
        )
        return _result(portfolio, holding, transaction, flow)

    async def redeem(
        self,
        portfolio_id: int,
        holding_id: int,
        units: Number,
        executed_at: Optional[datetime] = None,
    ) -> UnitTransactionResult:
        """
        Cancel ``units`` of a holding and pay out ``units x NAV``.

        Raises:
            ValidationError: non-positive units
            NotFoundError: holding not found in this portfolio
            InsufficientUnitsError: more units than the holding has
            InsufficientDataError: NAV undefined
        """
        requested = numbers.units(_positive(units, "Units"))
        when = to_local_naive(executed_at) if executed_at else now_local_naive()

        async with portfolio_transaction(self.session, self.locks, portfolio_id):
            portfolio = await self._load_fund(portfolio_id)
            holding = await self.funds.get_holding(holding_id, for_update=True)
            if holding is None or holding.portfolio_id != portfolio_id:
                raise NotFoundError(f"Holding {holding_id} not found in portfolio {portfolio_id}")

            nav = Decimal(portfolio.nav_per_unit)
            if nav <= ZERO:
                raise InsufficientDataError(f"Portfolio {portfolio_id} has no NAV; recalculate it first")
            available = Decimal(holding.units_held)
            if requested > available:
                raise InsufficientUnitsError(requested, available)

            cash_out = numbers.money(requested * nav)
            avg_cost = Decimal(holding.avg_cost_per_unit)
            remaining = available - requested
            holding.realized_pl = numbers.money(Decimal(holding.realized_pl) + requested * (nav - avg_cost))
            holding.units_held = remaining
            holding.total_investment = numbers.money(remaining * avg_cost)

            transaction = await self.funds.add_transaction(
                holding_id=holding.id,
                portfolio_id=portfolio_id,
                transaction_type=FundTransactionType.REDEEM,
                units_delta=-requested,
                nav_per_unit=nav,
                amount=cash_out,
                executed_at=when,
            )
            flow = await self.ledger.stage_entry(
                portfolio,
                CashFlowType.REDEEM,
                cash_out,
                when,
                description=f"Redemption by {holding.investor}",
                fund_transaction_id=transaction.id,
            )
            transaction.cash_flow_id = flow.id

            portfolio.total_outstanding_units = Decimal(portfolio.total_outstanding_units) - requested
            await self.session.flush()
            portfolio.number_of_investors = await self.funds.count_investors(portfolio_id)
            await self.session.flush()

        logger.info(
            "📤 Redemption | portfolio=%s | holding=%s | units=%s @ NAV %s | cash_out=%s",
            portfolio_id, holding_id, requested, nav, cash_out,
        )
        return _result(portfolio, holding, transaction, flow)

    async def redeem_holding(
        self, holding_id: int, units: Number, executed_at: Optional[datetime] = None
    ) -> UnitTransactionResult:
        """Redeem when only the holding is known"""
        holding = await self.funds.get_holding(holding_id)
        if holding is None:
            raise NotFoundError(f"Holding {holding_id} not found")
        return await self.redeem(holding.portfolio_id, holding_id, units, executed_at)

    async def recalculate_nav(
        self,
        portfolio_id: int,
        portfolio_market_value: Number,
        as_of: Optional[datetime] = None,
    ) -> Decimal:
        """
        NAV = market value / outstanding units (0 when no units are outstanding).
        """
        try:
            market_value = to_decimal(portfolio_market_value)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        if market_value < ZERO:
            raise ValidationError("Portfolio market value cannot be negative")

        async with portfolio_transaction(self.session, self.locks, portfolio_id):
            portfolio = await self._load_fund(portfolio_id)
            outstanding = Decimal(portfolio.total_outstanding_units)
            nav = numbers.nav(market_value / outstanding) if outstanding > ZERO else ZERO
            portfolio.nav_per_unit = nav
            portfolio.last_nav_date = to_local_naive(as_of) if as_of else now_local_naive()
            await self.session.flush()

        logger.info(
            "📈 NAV recalculated | portfolio=%s | value=%s | units=%s | NAV=%s",
            portfolio_id, market_value, outstanding, nav,
        )
        return nav

    # ------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------

    async def holding_detail(self, holding_id: int) -> HoldingDetail:
        holding = await self.funds.get_holding(holding_id)
        if holding is None:
            raise NotFoundError(f"Holding {holding_id} not found")
        portfolio = await self._load_portfolio(holding.portfolio_id, for_update=False)
        entries = await self.funds.transactions_with_cash_flows(holding_id)
        nav = Decimal(portfolio.nav_per_unit)

        subscriptions = [t for t, _ in entries if t.transaction_type == FundTransactionType.SUBSCRIBE]
        redemptions = [t for t, _ in entries if t.transaction_type == FundTransactionType.REDEEM]
        invested = sum((Decimal(t.amount) for t in subscriptions), ZERO)
        received = sum((Decimal(t.amount) for t in redemptions), ZERO)

        current_value = numbers.money(Decimal(holding.units_held) * nav)
        unrealized = numbers.money(current_value - Decimal(holding.total_investment))
        realized = Decimal(holding.realized_pl)
        total_pl = realized + unrealized
        return_pct = numbers.percent(total_pl / invested * HUNDRED) if invested > ZERO else ZERO

        summary = HoldingSummary(
            total_transactions=len(entries),
            total_subscriptions=len(subscriptions),
            total_redemptions=len(redemptions),
            total_units_subscribed=sum((Decimal(t.units_delta) for t in subscriptions), ZERO),
            total_units_redeemed=sum((-Decimal(t.units_delta) for t in redemptions), ZERO),
            total_amount_invested=invested,
            total_amount_received=received,
            current_value=current_value,
            realized_pl=realized,
            unrealized_pl=unrealized,
            total_pl=total_pl,
            return_percentage=return_pct,
        )
        return HoldingDetail(holding=holding, nav_per_unit=nav, entries=entries, summary=summary)

    async def fund_investors(self, portfolio_id: int) -> List[InvestorHoldingModel]:
        await self._load_fund(portfolio_id, for_update=False)
        return await self.funds.list_holdings(portfolio_id)

    # ------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------

    def _issue_nav(self, portfolio: PortfolioModel) -> Decimal:
        nav = Decimal(portfolio.nav_per_unit)
        if nav > ZERO:
            return nav
        if Decimal(portfolio.total_outstanding_units) == ZERO:
            return self.bootstrap_nav
        raise InsufficientDataError(
            f"Portfolio {portfolio.id} has outstanding units but no NAV; recalculate it first"
        )

    async def _load_portfolio(self, portfolio_id: int, for_update: bool = True) -> PortfolioModel:
        portfolio = await self.portfolios.get(portfolio_id, for_update=for_update)
        if portfolio is None:
            raise NotFoundError(f"Portfolio {portfolio_id} not found")
        return portfolio

    async def _load_fund(self, portfolio_id: int, for_update: bool = True) -> PortfolioModel:
        portfolio = await self._load_portfolio(portfolio_id, for_update=for_update)
        if not portfolio.is_fund:
            raise InvalidStateError(f"Portfolio {portfolio_id} is not a fund")
        return portfolio


def _positive(value: Number, label: str) -> Decimal:
    try:
        amount = to_decimal(value)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    if amount <= ZERO:
        raise ValidationError(f"{label} must be positive")
    return amount


def _result(
    portfolio: PortfolioModel,
    holding: InvestorHoldingModel,
    transaction: FundUnitTransactionModel,
    flow: CashFlowModel,
) -> UnitTransactionResult:
    return UnitTransactionResult(
        transaction_id=transaction.id,
        holding_id=holding.id,
        cash_flow_id=flow.id,
        portfolio_id=portfolio.id,
        investor=holding.investor,
        transaction_type=transaction.transaction_type,
        units=abs(Decimal(transaction.units_delta)),
        nav_per_unit=Decimal(transaction.nav_per_unit),
        amount=Decimal(transaction.amount),
        holding_units=Decimal(holding.units_held),
        total_outstanding_units=Decimal(portfolio.total_outstanding_units),
        cash_balance=Decimal(portfolio.cash_balance),
    )
