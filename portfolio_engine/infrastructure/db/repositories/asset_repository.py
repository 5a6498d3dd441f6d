"""
Asset & Trade Repositories

Read side of the position inputs (plus the inserts used by tooling and tests).
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_engine.domain.models import TradeSide
from portfolio_engine.infrastructure.db.models import AssetModel, TradeModel


class AssetRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, asset_id: int) -> Optional[AssetModel]:
        result = await self.session.execute(select(AssetModel).where(AssetModel.id == asset_id))
        return result.scalar_one_or_none()

    async def get_by_symbol(self, symbol: str) -> Optional[AssetModel]:
        result = await self.session.execute(
            select(AssetModel).where(AssetModel.symbol == symbol.upper())
        )
        return result.scalar_one_or_none()

    async def create(self, symbol: str, name: Optional[str] = None, asset_group: str = "UNGROUPED") -> AssetModel:
        asset = AssetModel(symbol=symbol.upper(), name=name, asset_group=asset_group)
        self.session.add(asset)
        await self.session.flush()
        return asset

    async def group_map(self, asset_ids: List[int]) -> Dict[int, str]:
        """asset id -> asset group tag"""
        if not asset_ids:
            return {}
        result = await self.session.execute(
            select(AssetModel.id, AssetModel.asset_group).where(AssetModel.id.in_(asset_ids))
        )
        return {row[0]: row[1] for row in result.all()}


class TradeRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(
        self,
        *,
        portfolio_id: int,
        asset_id: int,
        side: TradeSide,
        quantity: Decimal,
        price: Decimal,
        trade_date: datetime,
        fee: Decimal = Decimal("0"),
        tax: Decimal = Decimal("0"),
    ) -> TradeModel:
        trade = TradeModel(
            portfolio_id=portfolio_id,
            asset_id=asset_id,
            side=side,
            quantity=quantity,
            price=price,
            fee=fee,
            tax=tax,
            trade_date=trade_date,
        )
        self.session.add(trade)
        await self.session.flush()
        return trade

    async def list_with_assets(self, portfolio_id: int, up_to: datetime) -> List[tuple]:
        """(trade, asset) pairs up to ``up_to``, in execution order"""
        result = await self.session.execute(
            select(TradeModel, AssetModel)
            .join(AssetModel, AssetModel.id == TradeModel.asset_id)
            .where(TradeModel.portfolio_id == portfolio_id, TradeModel.trade_date <= up_to)
            .order_by(TradeModel.trade_date, TradeModel.id)
        )
        return [(row[0], row[1]) for row in result.all()]
