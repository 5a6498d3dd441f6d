"""
Database Position Provider

Positions derived from the trades table (average-cost method).
"""

from datetime import date
from typing import List

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from portfolio_engine.domain.models import Position
from portfolio_engine.domain.services.position_engine import positions_from_trades
from portfolio_engine.infrastructure.db.repositories.asset_repository import TradeRepository
from portfolio_engine.utils.time import end_of_day


class DatabasePositionProvider:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_positions(self, portfolio_id: int, as_of: date) -> List[Position]:
        """Every asset traded up to the end of ``as_of``, closed ones included"""
        async with self.session_factory() as session:
            rows = await TradeRepository(session).list_with_assets(portfolio_id, end_of_day(as_of))
        return positions_from_trades(rows)
