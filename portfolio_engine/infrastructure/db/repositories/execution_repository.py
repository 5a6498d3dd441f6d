"""
Snapshot Execution Repository

Audit records for snapshot runs.
"""

from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_engine.domain.models import ExecutionFilter, ExecutionStats, ExecutionStatus
from portfolio_engine.infrastructure.db.models import SnapshotExecutionRecordModel


class ExecutionRecordRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, record: SnapshotExecutionRecordModel) -> SnapshotExecutionRecordModel:
        self.session.add(record)
        await self.session.flush()
        return record

    async def get(self, execution_id: str) -> Optional[SnapshotExecutionRecordModel]:
        result = await self.session.execute(
            select(SnapshotExecutionRecordModel)
            .where(SnapshotExecutionRecordModel.execution_id == execution_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list(self, criteria: ExecutionFilter) -> Tuple[List[SnapshotExecutionRecordModel], int]:
        """Filtered records newest first, plus the unpaged total"""
        conditions = []
        if criteria.status is not None:
            conditions.append(SnapshotExecutionRecordModel.status == criteria.status)
        if criteria.execution_type is not None:
            conditions.append(SnapshotExecutionRecordModel.execution_type == criteria.execution_type)
        if criteria.portfolio_id is not None:
            conditions.append(SnapshotExecutionRecordModel.portfolio_id == criteria.portfolio_id)
        if criteria.start_date is not None:
            conditions.append(SnapshotExecutionRecordModel.created_at >= criteria.start_date)
        if criteria.end_date is not None:
            conditions.append(SnapshotExecutionRecordModel.created_at <= criteria.end_date)
        if criteria.top_level_only and criteria.portfolio_id is None:
            conditions.append(SnapshotExecutionRecordModel.parent_execution_id.is_(None))

        total = (await self.session.execute(
            select(func.count(SnapshotExecutionRecordModel.id)).where(*conditions)
        )).scalar_one()
        result = await self.session.execute(
            select(SnapshotExecutionRecordModel)
            .where(*conditions)
            .order_by(SnapshotExecutionRecordModel.created_at.desc(), SnapshotExecutionRecordModel.id.desc())
            .limit(criteria.limit)
            .offset(criteria.offset)
        )
        return list(result.scalars().all()), int(total)

    async def children(self, execution_id: str) -> List[SnapshotExecutionRecordModel]:
        result = await self.session.execute(
            select(SnapshotExecutionRecordModel)
            .where(SnapshotExecutionRecordModel.parent_execution_id == execution_id)
            .order_by(SnapshotExecutionRecordModel.id)
        )
        return list(result.scalars().all())

    async def stats(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> ExecutionStats:
        """Aggregate figures over top-level runs"""
        record = SnapshotExecutionRecordModel
        conditions = [record.parent_execution_id.is_(None)]
        if start is not None:
            conditions.append(record.created_at >= start)
        if end is not None:
            conditions.append(record.created_at <= end)

        totals = (await self.session.execute(
            select(
                func.count(record.id),
                func.avg(record.execution_time_ms),
                func.coalesce(func.sum(record.total_snapshots), 0),
                func.coalesce(func.sum(record.successful_snapshots), 0),
                func.coalesce(func.sum(record.failed_snapshots), 0),
            ).where(*conditions)
        )).one()

        by_status = dict((await self.session.execute(
            select(record.status, func.count(record.id)).where(*conditions).group_by(record.status)
        )).all())

        running = by_status.get(ExecutionStatus.STARTED, 0) + by_status.get(ExecutionStatus.IN_PROGRESS, 0)
        return ExecutionStats(
            total_executions=int(totals[0]),
            completed=by_status.get(ExecutionStatus.COMPLETED, 0),
            failed=by_status.get(ExecutionStatus.FAILED, 0),
            cancelled=by_status.get(ExecutionStatus.CANCELLED, 0),
            running=running,
            average_execution_time_ms=float(totals[1]) if totals[1] is not None else None,
            total_snapshots=int(totals[2]),
            successful_snapshots=int(totals[3]),
            failed_snapshots=int(totals[4]),
        )

    async def delete_older_than(self, cutoff: datetime, terminal_only: bool = True) -> int:
        stmt = delete(SnapshotExecutionRecordModel).where(SnapshotExecutionRecordModel.created_at < cutoff)
        if terminal_only:
            stmt = stmt.where(SnapshotExecutionRecordModel.status.in_([
                ExecutionStatus.COMPLETED,
                ExecutionStatus.FAILED,
                ExecutionStatus.CANCELLED,
            ]))
        result = await self.session.execute(stmt)
        return result.rowcount or 0
