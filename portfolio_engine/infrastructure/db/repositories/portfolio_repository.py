"""
Portfolio Repository
"""

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_engine.infrastructure.db.models import PortfolioModel


class PortfolioRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, portfolio_id: int, for_update: bool = False) -> Optional[PortfolioModel]:
        """
        Load a portfolio.

        With ``for_update`` the row is locked (SELECT ... FOR UPDATE where the
        backend supports it) and re-read even if already in the session.
        """
        stmt = select(PortfolioModel).where(PortfolioModel.id == portfolio_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(self, name: str) -> PortfolioModel:
        portfolio = PortfolioModel(
            name=name,
            is_fund=False,
            total_outstanding_units=0,
            nav_per_unit=0,
            cash_balance=0,
            number_of_investors=0,
        )
        self.session.add(portfolio)
        await self.session.flush()
        return portfolio

    async def list_all(self) -> List[PortfolioModel]:
        result = await self.session.execute(select(PortfolioModel).order_by(PortfolioModel.id))
        return list(result.scalars().all())

    async def list_fund_ids(self) -> List[int]:
        result = await self.session.execute(
            select(PortfolioModel.id)
            .where(PortfolioModel.is_fund.is_(True))
            .order_by(PortfolioModel.id)
        )
        return list(result.scalars().all())
