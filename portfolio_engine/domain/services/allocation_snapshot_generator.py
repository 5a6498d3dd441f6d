"""
Allocation Snapshot Generator

Computes one asset's allocation/valuation snapshot for a date and upserts it
on (portfolio, asset, date, granularity). Returns are chained against the
latest earlier snapshot of the same series, whose value and cumulative
return are stored on the new row.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_engine.domain.exceptions import ValidationError
from portfolio_engine.domain.models import AllocationFigures, Granularity, Position
from portfolio_engine.domain.services import return_calculator as returns
from portfolio_engine.infrastructure.db.models import AssetAllocationSnapshotModel
from portfolio_engine.infrastructure.db.repositories.snapshot_repository import (
    AllocationSnapshotRepository,
    PerformanceSnapshotRepository,
)
from portfolio_engine.utils import numbers
from portfolio_engine.utils.numbers import Number, ZERO, to_decimal

logger = logging.getLogger(__name__)


class AllocationSnapshotGenerator:
    """
    Writes are flushed, not committed; the caller owns the transaction.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.snapshots = AllocationSnapshotRepository(session)

    @staticmethod
    def value_position(position: Position, price: Number) -> AllocationFigures:
        """
        Value a position at ``price`` (no history, no portfolio context).

        Raises:
            ValidationError: price missing, non-numeric or negative
        """
        if price is None:
            raise ValidationError(f"{position.symbol}: price is required")
        try:
            current_price = to_decimal(price)
        except ValueError as exc:
            raise ValidationError(f"{position.symbol}: {exc}") from exc
        if current_price < ZERO:
            raise ValidationError(f"{position.symbol}: price cannot be negative")

        current_value = numbers.money(position.quantity * current_price)
        cost_basis = numbers.money(position.cost_basis)
        realized = numbers.money(position.realized_pl)
        unrealized = current_value - cost_basis
        total_pl = realized + unrealized
        return AllocationFigures(
            quantity=position.quantity,
            current_price=current_price,
            current_value=current_value,
            cost_basis=cost_basis,
            avg_cost=position.avg_cost,
            realized_pl=realized,
            unrealized_pl=unrealized,
            total_pl=total_pl,
            return_percentage=numbers.rate(returns.return_percentage(total_pl, cost_basis)),
        )

    async def generate(
        self,
        portfolio_id: int,
        asset_id: int,
        as_of: date,
        granularity: Granularity,
        position: Position,
        price: Number,
        portfolio_total_value: Number,
        created_by: str = "system",
    ) -> AssetAllocationSnapshotModel:
        """
        Compute and upsert the snapshot for one asset.

        A rerun for the same key with the same inputs leaves an identical row.
        """
        if position.asset_id != asset_id:
            raise ValidationError(f"Position is for asset {position.asset_id}, not {asset_id}")
        total_value = to_decimal(portfolio_total_value)
        if total_value < ZERO:
            raise ValidationError("Portfolio total value cannot be negative")

        figures = self.value_position(position, price)
        previous = await self.snapshots.get_previous(portfolio_id, asset_id, granularity, as_of)

        if previous is None:
            previous_value: Optional[Decimal] = None
            previous_cumulative: Optional[Decimal] = None
            daily = ZERO
            cumulative = ZERO
        else:
            previous_value = Decimal(previous.current_value)
            previous_cumulative = Decimal(previous.cumulative_return)
            daily = returns.daily_return(figures.current_value, previous_value)
            cumulative = returns.chain_cumulative(previous_cumulative, daily)

        key = {
            "portfolio_id": portfolio_id,
            "asset_id": asset_id,
            "snapshot_date": as_of,
            "granularity": granularity,
        }
        values = {
            "asset_symbol": position.symbol,
            "quantity": figures.quantity,
            "current_price": figures.current_price,
            "current_value": figures.current_value,
            "cost_basis": figures.cost_basis,
            "avg_cost": figures.avg_cost,
            "realized_pl": figures.realized_pl,
            "unrealized_pl": figures.unrealized_pl,
            "total_pl": figures.total_pl,
            "allocation_percentage": numbers.percent(
                returns.allocation_percentage(figures.current_value, total_value)
            ),
            "portfolio_total_value": numbers.money(total_value),
            "return_percentage": figures.return_percentage,
            "daily_return": numbers.rate(daily),
            "cumulative_return": numbers.rate(cumulative),
            "previous_value": previous_value,
            "previous_cumulative_return": previous_cumulative,
            "is_active": position.is_active,
            "created_by": created_by,
        }
        snapshot = await self.snapshots.upsert(key, values)

        logger.debug(
            "📸 Allocation snapshot | portfolio=%s | %s | %s | value=%s | daily=%s%% | cum=%s%%",
            portfolio_id, position.symbol, as_of, figures.current_value,
            values["daily_return"], values["cumulative_return"],
        )
        return snapshot

    async def list_snapshots(
        self,
        portfolio_id: int,
        granularity: Granularity = Granularity.DAILY,
        start: Optional[date] = None,
        end: Optional[date] = None,
        asset_id: Optional[int] = None,
    ) -> List[AssetAllocationSnapshotModel]:
        return await self.snapshots.list_range(portfolio_id, granularity, start, end, asset_id)

    async def delete_for_date(self, portfolio_id: int, snapshot_date: date, granularity: Granularity) -> int:
        """
        Drop a date's allocation rows and the performance rows derived from them.

        Later dates chain from earlier rows, so they must be regenerated after
        removing (or backfilling) an earlier date.
        """
        deleted = await self.snapshots.delete_for_date(portfolio_id, snapshot_date, granularity)
        deleted += await PerformanceSnapshotRepository(self.session).delete_for_date(
            portfolio_id, snapshot_date, granularity
        )
        await self.session.flush()
        logger.info(
            "🗑️ Snapshots deleted | portfolio=%s | %s %s | rows=%s",
            portfolio_id, snapshot_date, granularity.value, deleted,
        )
        return deleted
