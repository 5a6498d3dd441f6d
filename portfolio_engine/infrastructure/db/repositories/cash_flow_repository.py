"""
Cash Flow Repository

Storage for typed cash movements. Balance math is done in SQL with the
inflow/outflow sign table from the domain enum.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import case, delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_engine.domain.models import CashFlowType, INFLOW_TYPES
from portfolio_engine.infrastructure.db.models import CashFlowModel

_INFLOWS = sorted(INFLOW_TYPES, key=lambda t: t.value)


class CashFlowRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(
        self,
        *,
        portfolio_id: int,
        flow_type: CashFlowType,
        amount: Decimal,
        flow_date: datetime,
        description: Optional[str] = None,
        fund_transaction_id: Optional[int] = None,
    ) -> CashFlowModel:
        flow = CashFlowModel(
            portfolio_id=portfolio_id,
            flow_type=flow_type,
            amount=amount,
            flow_date=flow_date,
            description=description,
            fund_transaction_id=fund_transaction_id,
        )
        self.session.add(flow)
        await self.session.flush()
        return flow

    async def get(self, cash_flow_id: int) -> Optional[CashFlowModel]:
        result = await self.session.execute(
            select(CashFlowModel).where(CashFlowModel.id == cash_flow_id)
        )
        return result.scalar_one_or_none()

    async def get_many(self, cash_flow_ids: List[int]) -> List[CashFlowModel]:
        if not cash_flow_ids:
            return []
        result = await self.session.execute(
            select(CashFlowModel).where(CashFlowModel.id.in_(cash_flow_ids))
        )
        return list(result.scalars().all())

    async def delete(self, flow: CashFlowModel) -> None:
        await self.session.delete(flow)
        await self.session.flush()

    async def signed_sum(self, portfolio_id: int) -> Decimal:
        """Signed sum of every remaining flow of the portfolio (0 when none)"""
        signed = case(
            (CashFlowModel.flow_type.in_(_INFLOWS), CashFlowModel.amount),
            else_=-CashFlowModel.amount,
        )
        result = await self.session.execute(
            select(func.coalesce(func.sum(signed), 0))
            .where(CashFlowModel.portfolio_id == portfolio_id)
        )
        return Decimal(str(result.scalar_one()))

    async def totals(
        self, portfolio_id: int, up_to: Optional[datetime] = None
    ) -> Tuple[Decimal, Decimal]:
        """
        Total inflows and outflows (both as magnitudes)

        Args:
            up_to: only flows dated on or before this instant
        """
        is_inflow = CashFlowModel.flow_type.in_(_INFLOWS)
        stmt = select(
            func.coalesce(func.sum(case((is_inflow, CashFlowModel.amount), else_=0)), 0),
            func.coalesce(func.sum(case((is_inflow, 0), else_=CashFlowModel.amount)), 0),
        ).where(CashFlowModel.portfolio_id == portfolio_id)
        if up_to is not None:
            stmt = stmt.where(CashFlowModel.flow_date <= up_to)

        row = (await self.session.execute(stmt)).one()
        return Decimal(str(row[0])), Decimal(str(row[1]))

    async def list_for_portfolio(
        self,
        portfolio_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Tuple[List[CashFlowModel], int]:
        conditions = [CashFlowModel.portfolio_id == portfolio_id]
        if start is not None:
            conditions.append(CashFlowModel.flow_date >= start)
        if end is not None:
            conditions.append(CashFlowModel.flow_date <= end)

        total = (await self.session.execute(
            select(func.count(CashFlowModel.id)).where(*conditions)
        )).scalar_one()
        result = await self.session.execute(
            select(CashFlowModel)
            .where(*conditions)
            .order_by(CashFlowModel.flow_date.desc(), CashFlowModel.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), int(total)

    def delete_fund_linked_statement(self, transaction_ids: List[int], cash_flow_ids: List[int]):
        """DELETE for flows generated by the given fund transactions"""
        return delete(CashFlowModel).where(
            or_(
                CashFlowModel.fund_transaction_id.in_(transaction_ids),
                CashFlowModel.id.in_(cash_flow_ids),
            )
        )
