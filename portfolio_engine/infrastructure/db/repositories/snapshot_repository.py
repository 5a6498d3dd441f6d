"""
Snapshot Repositories

Allocation snapshots and the three performance series. Writes are upserts
on each table's natural key: select, then create or overwrite, then flush.
"""

from datetime import date
from typing import Any, Dict, List, Optional, Type

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_engine.domain.models import Granularity
from portfolio_engine.infrastructure.db.models import (
    AssetAllocationSnapshotModel,
    AssetGroupPerformanceSnapshotModel,
    AssetPerformanceSnapshotModel,
    Base,
    PortfolioPerformanceSnapshotModel,
)

PERFORMANCE_MODELS = (
    AssetPerformanceSnapshotModel,
    AssetGroupPerformanceSnapshotModel,
    PortfolioPerformanceSnapshotModel,
)


def _key_conditions(model: Type[Base], key: Dict[str, Any]) -> list:
    return [getattr(model, column) == value for column, value in key.items()]


async def _upsert(session: AsyncSession, model: Type[Base], key: Dict[str, Any], values: Dict[str, Any]):
    result = await session.execute(
        select(model).where(*_key_conditions(model, key))
    )
    row = result.scalar_one_or_none()
    if row is None:
        row = model(**key, **values)
        session.add(row)
    else:
        for column, value in values.items():
            setattr(row, column, value)
    await session.flush()
    return row


class AllocationSnapshotRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def upsert(self, key: Dict[str, Any], values: Dict[str, Any]) -> AssetAllocationSnapshotModel:
        """
        Create or fully overwrite the row for
        (portfolio_id, asset_id, snapshot_date, granularity)
        """
        return await _upsert(self.session, AssetAllocationSnapshotModel, key, values)

    async def get_by_key(
        self, portfolio_id: int, asset_id: int, snapshot_date: date, granularity: Granularity
    ) -> Optional[AssetAllocationSnapshotModel]:
        result = await self.session.execute(
            select(AssetAllocationSnapshotModel).where(
                AssetAllocationSnapshotModel.portfolio_id == portfolio_id,
                AssetAllocationSnapshotModel.asset_id == asset_id,
                AssetAllocationSnapshotModel.snapshot_date == snapshot_date,
                AssetAllocationSnapshotModel.granularity == granularity,
            )
        )
        return result.scalar_one_or_none()

    async def get_previous(
        self, portfolio_id: int, asset_id: int, granularity: Granularity, before: date
    ) -> Optional[AssetAllocationSnapshotModel]:
        """Latest snapshot of the same series strictly before ``before``"""
        result = await self.session.execute(
            select(AssetAllocationSnapshotModel)
            .where(
                AssetAllocationSnapshotModel.portfolio_id == portfolio_id,
                AssetAllocationSnapshotModel.asset_id == asset_id,
                AssetAllocationSnapshotModel.granularity == granularity,
                AssetAllocationSnapshotModel.snapshot_date < before,
            )
            .order_by(AssetAllocationSnapshotModel.snapshot_date.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_for_date(
        self, portfolio_id: int, snapshot_date: date, granularity: Granularity
    ) -> List[AssetAllocationSnapshotModel]:
        result = await self.session.execute(
            select(AssetAllocationSnapshotModel)
            .where(
                AssetAllocationSnapshotModel.portfolio_id == portfolio_id,
                AssetAllocationSnapshotModel.snapshot_date == snapshot_date,
                AssetAllocationSnapshotModel.granularity == granularity,
            )
            .order_by(AssetAllocationSnapshotModel.asset_symbol)
        )
        return list(result.scalars().all())

    async def list_range(
        self,
        portfolio_id: int,
        granularity: Granularity,
        start: Optional[date] = None,
        end: Optional[date] = None,
        asset_id: Optional[int] = None,
    ) -> List[AssetAllocationSnapshotModel]:
        conditions = [
            AssetAllocationSnapshotModel.portfolio_id == portfolio_id,
            AssetAllocationSnapshotModel.granularity == granularity,
        ]
        if start is not None:
            conditions.append(AssetAllocationSnapshotModel.snapshot_date >= start)
        if end is not None:
            conditions.append(AssetAllocationSnapshotModel.snapshot_date <= end)
        if asset_id is not None:
            conditions.append(AssetAllocationSnapshotModel.asset_id == asset_id)

        result = await self.session.execute(
            select(AssetAllocationSnapshotModel)
            .where(*conditions)
            .order_by(
                AssetAllocationSnapshotModel.snapshot_date,
                AssetAllocationSnapshotModel.asset_symbol,
            )
        )
        return list(result.scalars().all())

    async def delete_for_date(self, portfolio_id: int, snapshot_date: date, granularity: Granularity) -> int:
        result = await self.session.execute(
            delete(AssetAllocationSnapshotModel).where(
                AssetAllocationSnapshotModel.portfolio_id == portfolio_id,
                AssetAllocationSnapshotModel.snapshot_date == snapshot_date,
                AssetAllocationSnapshotModel.granularity == granularity,
            )
        )
        return result.rowcount or 0

    async def delete_other_assets(
        self, portfolio_id: int, snapshot_date: date, granularity: Granularity, keep_asset_ids: List[int]
    ) -> int:
        """Remove the date's rows for assets outside ``keep_asset_ids``"""
        result = await self.session.execute(
            delete(AssetAllocationSnapshotModel).where(
                AssetAllocationSnapshotModel.portfolio_id == portfolio_id,
                AssetAllocationSnapshotModel.snapshot_date == snapshot_date,
                AssetAllocationSnapshotModel.granularity == granularity,
                AssetAllocationSnapshotModel.asset_id.not_in(keep_asset_ids),
            )
        )
        return result.rowcount or 0


class PerformanceSnapshotRepository:
    """
    Shared access to the asset, group and portfolio performance tables.

    ``series`` is the part of the key that identifies one time series, e.g.
    ``{"portfolio_id": 1, "asset_group": "EQUITY"}``.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def upsert(self, model: Type[Base], key: Dict[str, Any], values: Dict[str, Any]):
        return await _upsert(self.session, model, key, values)

    async def get_previous(
        self, model: Type[Base], series: Dict[str, Any], granularity: Granularity, before: date
    ):
        """Latest row of the series strictly before ``before``"""
        result = await self.session.execute(
            select(model)
            .where(
                *_key_conditions(model, series),
                model.granularity == granularity,
                model.snapshot_date < before,
            )
            .order_by(model.snapshot_date.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_on_or_before(
        self, model: Type[Base], series: Dict[str, Any], granularity: Granularity, on_or_before: date
    ):
        result = await self.session.execute(
            select(model)
            .where(
                *_key_conditions(model, series),
                model.granularity == granularity,
                model.snapshot_date <= on_or_before,
            )
            .order_by(model.snapshot_date.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_series(
        self,
        model: Type[Base],
        series: Dict[str, Any],
        granularity: Granularity,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list:
        """Rows of one series ordered by date; ``end`` is exclusive"""
        conditions = [*_key_conditions(model, series), model.granularity == granularity]
        if start is not None:
            conditions.append(model.snapshot_date >= start)
        if end is not None:
            conditions.append(model.snapshot_date < end)
        result = await self.session.execute(
            select(model).where(*conditions).order_by(model.snapshot_date)
        )
        return list(result.scalars().all())

    async def delete_for_date(self, portfolio_id: int, snapshot_date: date, granularity: Granularity) -> int:
        deleted = 0
        for model in PERFORMANCE_MODELS:
            result = await self.session.execute(
                delete(model).where(
                    model.portfolio_id == portfolio_id,
                    model.snapshot_date == snapshot_date,
                    model.granularity == granularity,
                )
            )
            deleted += result.rowcount or 0
        return deleted
