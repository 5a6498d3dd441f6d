"""
Fund Repository

Investor holdings and the unit transactions issued against them.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_engine.domain.models import FundTransactionType
from portfolio_engine.infrastructure.db.models import (
    CashFlowModel,
    FundUnitTransactionModel,
    InvestorHoldingModel,
)


class FundRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    # ------------------------------------------------------------
    # Holdings
    # ------------------------------------------------------------

    async def get_holding(self, holding_id: int, for_update: bool = False) -> Optional[InvestorHoldingModel]:
        stmt = select(InvestorHoldingModel).where(InvestorHoldingModel.id == holding_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_holding_for_investor(self, portfolio_id: int, investor: str) -> Optional[InvestorHoldingModel]:
        result = await self.session.execute(
            select(InvestorHoldingModel)
            .where(
                InvestorHoldingModel.portfolio_id == portfolio_id,
                InvestorHoldingModel.investor == investor,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def add_holding(self, portfolio_id: int, investor: str) -> InvestorHoldingModel:
        holding = InvestorHoldingModel(
            portfolio_id=portfolio_id,
            investor=investor,
            units_held=Decimal("0"),
            avg_cost_per_unit=Decimal("0"),
            total_investment=Decimal("0"),
            realized_pl=Decimal("0"),
        )
        self.session.add(holding)
        await self.session.flush()
        return holding

    async def list_holdings(self, portfolio_id: int) -> List[InvestorHoldingModel]:
        result = await self.session.execute(
            select(InvestorHoldingModel)
            .where(InvestorHoldingModel.portfolio_id == portfolio_id)
            .order_by(InvestorHoldingModel.units_held.desc(), InvestorHoldingModel.id)
        )
        return list(result.scalars().all())

    async def holding_ids(self, portfolio_id: int) -> List[int]:
        result = await self.session.execute(
            select(InvestorHoldingModel.id).where(InvestorHoldingModel.portfolio_id == portfolio_id)
        )
        return list(result.scalars().all())

    async def count_investors(self, portfolio_id: int) -> int:
        """Holdings that still carry units"""
        result = await self.session.execute(
            select(func.count(InvestorHoldingModel.id)).where(
                InvestorHoldingModel.portfolio_id == portfolio_id,
                InvestorHoldingModel.units_held > 0,
            )
        )
        return int(result.scalar_one())

    # ------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------

    async def add_transaction(
        self,
        *,
        holding_id: int,
        portfolio_id: int,
        transaction_type: FundTransactionType,
        units_delta: Decimal,
        nav_per_unit: Decimal,
        amount: Decimal,
        executed_at: datetime,
    ) -> FundUnitTransactionModel:
        transaction = FundUnitTransactionModel(
            holding_id=holding_id,
            portfolio_id=portfolio_id,
            transaction_type=transaction_type,
            units_delta=units_delta,
            nav_per_unit=nav_per_unit,
            amount=amount,
            executed_at=executed_at,
        )
        self.session.add(transaction)
        await self.session.flush()
        return transaction

    async def transactions_with_cash_flows(
        self, holding_id: int
    ) -> List[Tuple[FundUnitTransactionModel, Optional[CashFlowModel]]]:
        """Transactions of a holding, oldest first, each with the cash flow it generated"""
        result = await self.session.execute(
            select(FundUnitTransactionModel, CashFlowModel)
            .outerjoin(CashFlowModel, CashFlowModel.fund_transaction_id == FundUnitTransactionModel.id)
            .where(FundUnitTransactionModel.holding_id == holding_id)
            .order_by(FundUnitTransactionModel.executed_at, FundUnitTransactionModel.id)
        )
        return [(row[0], row[1]) for row in result.all()]

    async def transaction_links(self, holding_ids: List[int]) -> List[Tuple[int, Optional[int]]]:
        """(transaction id, cash flow id) pairs for the given holdings"""
        if not holding_ids:
            return []
        result = await self.session.execute(
            select(FundUnitTransactionModel.id, FundUnitTransactionModel.cash_flow_id)
            .where(FundUnitTransactionModel.holding_id.in_(holding_ids))
        )
        return [(row[0], row[1]) for row in result.all()]

    def delete_transactions_statement(self, transaction_ids: List[int]):
        return delete(FundUnitTransactionModel).where(FundUnitTransactionModel.id.in_(transaction_ids))

    def delete_holdings_statement(self, holding_ids: List[int]):
        return delete(InvestorHoldingModel).where(InvestorHoldingModel.id.in_(holding_ids))
