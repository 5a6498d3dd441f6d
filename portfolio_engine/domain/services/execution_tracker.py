"""
Snapshot Execution Tracker

Lifecycle of snapshot runs:

    started -> in_progress -> completed | failed | cancelled

Terminal records never change again. Partial success still ends in
``completed`` (with failed_snapshots > 0); ``failed`` is for errors that
abort a run before every portfolio was attempted.

Each transition is committed immediately so the record is visible while the
run is still going. One tracker may be shared by concurrent tasks; its
session use is serialized internally.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta
from typing import Dict, List, Mapping, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_engine.domain.exceptions import (
    InvalidStateError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from portfolio_engine.domain.models import (
    ExecutionFilter,
    ExecutionStats,
    ExecutionStatus,
    ExecutionType,
    Granularity,
    MetadataValue,
)
from portfolio_engine.infrastructure.db.models import SnapshotExecutionRecordModel
from portfolio_engine.infrastructure.db.repositories.execution_repository import ExecutionRecordRepository
from portfolio_engine.utils.time import now_local_naive

logger = logging.getLogger(__name__)


def new_execution_id() -> str:
    return f"exec_{now_local_naive():%Y%m%d%H%M%S}_{uuid.uuid4().hex[:8]}"


def validate_metadata(metadata: Optional[Mapping]) -> Optional[Dict[str, MetadataValue]]:
    """
    Metadata is a flat mapping of string keys to str/int/float/bool values.

    Raises:
        ValidationError: nested or non-primitive values, non-string keys
    """
    if metadata is None:
        return None
    cleaned: Dict[str, MetadataValue] = {}
    for key, value in metadata.items():
        if not isinstance(key, str) or not key:
            raise ValidationError(f"Metadata keys must be non-empty strings, got {key!r}")
        if not isinstance(value, (str, int, float, bool)):
            raise ValidationError(
                f"Metadata value for {key!r} must be a string, number or boolean"
            )
        cleaned[key] = value
    return cleaned


class SnapshotExecutionTracker:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.records = ExecutionRecordRepository(session)
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------

    async def begin(
        self,
        portfolio_id: Optional[int] = None,
        execution_type: ExecutionType = ExecutionType.MANUAL,
        cron_expression: Optional[str] = None,
        timezone: Optional[str] = None,
        *,
        portfolio_name: Optional[str] = None,
        parent_execution_id: Optional[str] = None,
        snapshot_date: Optional[date] = None,
        granularity: Optional[Granularity] = None,
        total_snapshots: int = 0,
        metadata: Optional[Mapping] = None,
        created_by: str = "system",
    ) -> str:
        """
        Create a record in ``started``.

        Args:
            portfolio_id: scope of the run; None means all portfolios

        Returns:
            The new execution id
        """
        if total_snapshots < 0:
            raise ValidationError("total_snapshots cannot be negative")
        record = SnapshotExecutionRecordModel(
            execution_id=new_execution_id(),
            parent_execution_id=parent_execution_id,
            portfolio_id=portfolio_id,
            portfolio_name=portfolio_name,
            status=ExecutionStatus.STARTED,
            execution_type=execution_type,
            snapshot_date=snapshot_date,
            granularity=granularity,
            started_at=now_local_naive(),
            total_snapshots=total_snapshots,
            successful_snapshots=0,
            failed_snapshots=0,
            execution_metadata=validate_metadata(metadata),
            created_by=created_by,
            cron_expression=cron_expression,
            timezone=timezone,
        )
        async with self._write():
            await self.records.add(record)

        logger.info(
            "🆕 Execution %s started | type=%s | scope=%s",
            record.execution_id, execution_type.value,
            portfolio_id if portfolio_id is not None else "all",
        )
        return record.execution_id

    async def mark_progress(
        self,
        execution_id: str,
        succeeded: int = 0,
        failed: int = 0,
        total: Optional[int] = None,
    ) -> SnapshotExecutionRecordModel:
        """Add to the counts and move ``started`` to ``in_progress``"""
        if succeeded < 0 or failed < 0:
            raise ValidationError("Progress deltas cannot be negative")
        async with self._write():
            record = await self._load_open(execution_id)
            record.successful_snapshots += succeeded
            record.failed_snapshots += failed
            if total is not None:
                record.total_snapshots = total
            record.status = ExecutionStatus.IN_PROGRESS
        return record

    async def complete(
        self,
        execution_id: str,
        successful: int,
        failed: int,
        elapsed_ms: Optional[int] = None,
        error_message: Optional[str] = None,
    ) -> SnapshotExecutionRecordModel:
        """
        Finish a run. Failed units are recorded but the run is still ``completed``.
        """
        if successful < 0 or failed < 0:
            raise ValidationError("Counts cannot be negative")
        async with self._write():
            record = await self._load_open(execution_id)
            record.successful_snapshots = successful
            record.failed_snapshots = failed
            record.total_snapshots = successful + failed
            record.error_message = error_message
            self._close(record, ExecutionStatus.COMPLETED, elapsed_ms)

        logger.info(
            "✅ Execution %s completed | ok=%s failed=%s | %sms",
            execution_id, successful, failed, record.execution_time_ms,
        )
        return record

    async def fail(
        self,
        execution_id: str,
        error_message: str,
        elapsed_ms: Optional[int] = None,
    ) -> SnapshotExecutionRecordModel:
        """Mark a run aborted"""
        async with self._write():
            record = await self._load_open(execution_id)
            record.error_message = error_message
            self._close(record, ExecutionStatus.FAILED, elapsed_ms)

        logger.error("❌ Execution %s failed: %s", execution_id, error_message)
        return record

    async def cancel(self, execution_id: str, reason: str) -> SnapshotExecutionRecordModel:
        """
        Raises:
            InvalidStateError: the record is already terminal
        """
        async with self._write():
            record = await self._load_open(execution_id)
            record.error_message = f"Cancelled: {reason}" if reason else "Cancelled"
            self._close(record, ExecutionStatus.CANCELLED, None)

        logger.warning("🛑 Execution %s cancelled: %s", execution_id, reason)
        return record

    # ------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------

    async def get(self, execution_id: str) -> SnapshotExecutionRecordModel:
        async with self._lock:
            record = await self.records.get(execution_id)
        if record is None:
            raise NotFoundError(f"Execution {execution_id} not found")
        return record

    async def list(self, criteria: ExecutionFilter) -> Tuple[List[SnapshotExecutionRecordModel], int]:
        async with self._lock:
            return await self.records.list(criteria)

    async def recent(self, limit: int = 10) -> List[SnapshotExecutionRecordModel]:
        records, _ = await self.list(ExecutionFilter(limit=limit))
        return records

    async def children(self, execution_id: str) -> List[SnapshotExecutionRecordModel]:
        await self.get(execution_id)
        async with self._lock:
            return await self.records.children(execution_id)

    async def stats(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> ExecutionStats:
        async with self._lock:
            return await self.records.stats(start, end)

    async def cleanup_older_than(self, days: int) -> int:
        """
        Delete terminal records created more than ``days`` ago (0 = all terminal records).
        """
        if days < 0:
            raise ValidationError("days cannot be negative")
        cutoff = now_local_naive() - timedelta(days=days) if days else now_local_naive() + timedelta(seconds=1)
        async with self._write():
            deleted = await self.records.delete_older_than(cutoff)

        logger.info("🧹 Removed %s execution record(s) older than %s days", deleted, days)
        return deleted

    # ------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------

    async def _load_open(self, execution_id: str) -> SnapshotExecutionRecordModel:
        record = await self.records.get(execution_id)
        if record is None:
            raise NotFoundError(f"Execution {execution_id} not found")
        if record.status.is_terminal:
            raise InvalidStateError(
                f"Execution {execution_id} is already {record.status.value}"
            )
        return record

    @staticmethod
    def _close(record: SnapshotExecutionRecordModel, status: ExecutionStatus, elapsed_ms: Optional[int]) -> None:
        completed_at = now_local_naive()
        if elapsed_ms is None:
            elapsed_ms = int((completed_at - record.started_at).total_seconds() * 1000)
        record.status = status
        record.completed_at = completed_at
        record.execution_time_ms = max(int(elapsed_ms), 0)

    @asynccontextmanager
    async def _write(self):
        """Serialize session use; commit on success, roll back on error"""
        async with self._lock:
            try:
                yield
                await self.session.commit()
            except SQLAlchemyError as exc:
                await self.session.rollback()
                raise PersistenceError("Could not store execution record") from exc
            except Exception:
                await self.session.rollback()
                raise
