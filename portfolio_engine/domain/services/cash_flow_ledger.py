"""
Cash Flow Ledger

Append-only store of typed cash movements per portfolio. Owns
``Portfolio.cash_balance``: recording applies the signed amount, deleting
always recomputes the balance from the remaining rows.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_engine.domain.exceptions import NotFoundError, ValidationError
from portfolio_engine.domain.models import CashFlowSummary, CashFlowType
from portfolio_engine.domain.services.portfolio_locks import PortfolioLockRegistry
from portfolio_engine.infrastructure.db.models import CashFlowModel, PortfolioModel
from portfolio_engine.infrastructure.db.repositories.cash_flow_repository import CashFlowRepository
from portfolio_engine.infrastructure.db.repositories.portfolio_repository import PortfolioRepository
from portfolio_engine.infrastructure.db.unit_of_work import portfolio_transaction
from portfolio_engine.utils.numbers import Number, ZERO, money, to_decimal
from portfolio_engine.utils.time import now_local_naive, to_local_naive

logger = logging.getLogger(__name__)


class CashFlowLedger:
    """
    Public operations (``record``, ``recompute_balance``, ``delete``) take
    the portfolio lock and commit. The ``stage_*`` variants only flush and
    are meant for callers already inside ``portfolio_transaction``.
    """

    def __init__(self, session: AsyncSession, locks: PortfolioLockRegistry):
        self.session = session
        self.locks = locks
        self.portfolios = PortfolioRepository(session)
        self.cash_flows = CashFlowRepository(session)

    async def record(
        self,
        portfolio_id: int,
        flow_type: CashFlowType,
        amount: Number,
        timestamp: Optional[datetime] = None,
        description: Optional[str] = None,
    ) -> CashFlowModel:
        """
        Append a cash flow and apply its signed amount to the balance.

        Raises:
            ValidationError: negative or non-numeric amount, fund flow type
            NotFoundError: unknown portfolio
        """
        magnitude = _validate_amount(amount)
        if flow_type in (CashFlowType.SUBSCRIBE, CashFlowType.REDEEM):
            raise ValidationError(f"{flow_type.value} cash flows are created by fund subscriptions/redemptions")

        async with portfolio_transaction(self.session, self.locks, portfolio_id):
            portfolio = await self._load_portfolio(portfolio_id)
            flow = await self.stage_entry(
                portfolio, flow_type, magnitude, timestamp, description=description
            )

        logger.info(
            "💰 Cash flow recorded | portfolio=%s | %s %s | balance=%s",
            portfolio_id, flow_type.value, magnitude, portfolio.cash_balance,
        )
        return flow

    async def recompute_balance(self, portfolio_id: int) -> Decimal:
        """
        Recalculate ``cash_balance`` from scratch and write it back.

        A portfolio without cash flows ends at 0.
        """
        async with portfolio_transaction(self.session, self.locks, portfolio_id):
            portfolio = await self._load_portfolio(portfolio_id)
            balance = await self.stage_recompute(portfolio)

        logger.info("🔄 Cash balance recomputed | portfolio=%s | balance=%s", portfolio_id, balance)
        return balance

    async def delete(self, cash_flow_id: int) -> Decimal:
        """
        Remove a cash flow, then recompute its portfolio's balance.

        Flows generated by fund subscriptions/redemptions cannot be removed
        on their own; use the fund reset instead.

        Returns:
            The recomputed balance
        """
        flow = await self.cash_flows.get(cash_flow_id)
        if flow is None:
            raise NotFoundError(f"Cash flow {cash_flow_id} not found")
        if flow.fund_transaction_id is not None:
            raise ValidationError(
                f"Cash flow {cash_flow_id} belongs to fund transaction "
                f"{flow.fund_transaction_id}; reset the fund data instead"
            )

        portfolio_id = flow.portfolio_id
        async with portfolio_transaction(self.session, self.locks, portfolio_id):
            portfolio = await self._load_portfolio(portfolio_id)
            flow = await self.cash_flows.get(cash_flow_id)
            if flow is None:
                raise NotFoundError(f"Cash flow {cash_flow_id} not found")
            await self.cash_flows.delete(flow)
            balance = await self.stage_recompute(portfolio)

        logger.info(
            "🗑️ Cash flow %s deleted | portfolio=%s | balance=%s",
            cash_flow_id, portfolio_id, balance,
        )
        return balance

    async def list_flows(
        self,
        portfolio_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Tuple[List[CashFlowModel], int]:
        await self._load_portfolio(portfolio_id, for_update=False)
        return await self.cash_flows.list_for_portfolio(portfolio_id, start, end, limit, offset)

    async def summarize(self, portfolio_id: int, up_to: Optional[datetime] = None) -> CashFlowSummary:
        inflows, outflows = await self.cash_flows.totals(portfolio_id, up_to)
        return CashFlowSummary(total_inflows=money(inflows), total_outflows=money(outflows))

    # ------------------------------------------------------------
    # Staged operations (caller holds the lock and commits)
    # ------------------------------------------------------------

    async def stage_entry(
        self,
        portfolio: PortfolioModel,
        flow_type: CashFlowType,
        amount: Decimal,
        timestamp: Optional[datetime] = None,
        description: Optional[str] = None,
        fund_transaction_id: Optional[int] = None,
    ) -> CashFlowModel:
        flow = await self.cash_flows.add(
            portfolio_id=portfolio.id,
            flow_type=flow_type,
            amount=amount,
            flow_date=to_local_naive(timestamp) if timestamp else now_local_naive(),
            description=description,
            fund_transaction_id=fund_transaction_id,
        )
        portfolio.cash_balance = money(Decimal(portfolio.cash_balance) + flow_type.signed(amount))
        await self.session.flush()
        return flow

    async def stage_recompute(self, portfolio: PortfolioModel) -> Decimal:
        balance = money(await self.cash_flows.signed_sum(portfolio.id))
        portfolio.cash_balance = balance
        await self.session.flush()
        return balance

    async def _load_portfolio(self, portfolio_id: int, for_update: bool = True) -> PortfolioModel:
        portfolio = await self.portfolios.get(portfolio_id, for_update=for_update)
        if portfolio is None:
            raise NotFoundError(f"Portfolio {portfolio_id} not found")
        return portfolio


def _validate_amount(amount: Number) -> Decimal:
    try:
        value = to_decimal(amount)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    if value < ZERO:
        raise ValidationError("Cash flow amount must be a non-negative magnitude")
    return money(value)
