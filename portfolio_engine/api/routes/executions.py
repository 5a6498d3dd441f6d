"""
Execution API Routes
Inspect and cancel tracked snapshot runs
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_engine.api.dependencies import get_snapshot_runner
from portfolio_engine.api.errors import to_http_exception
from portfolio_engine.domain.exceptions import PortfolioEngineError
from portfolio_engine.domain.models import ExecutionFilter, ExecutionStatus, ExecutionType
from portfolio_engine.domain.schemas.snapshot import (
    CancelRequest,
    ExecutionDetailResponse,
    ExecutionListResponse,
    ExecutionRecordResponse,
    ExecutionStatsResponse,
)
from portfolio_engine.domain.services.execution_tracker import SnapshotExecutionTracker
from portfolio_engine.domain.services.snapshot_runner import SnapshotRunner
from portfolio_engine.infrastructure.db.database import get_db

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("", response_model=ExecutionListResponse)
async def list_executions(
    status: Optional[ExecutionStatus] = None,
    execution_type: Optional[ExecutionType] = None,
    portfolio_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    include_children: bool = False,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    try:
        criteria = ExecutionFilter(
            status=status,
            execution_type=execution_type,
            portfolio_id=portfolio_id,
            start_date=start_date,
            end_date=end_date,
            top_level_only=not include_children,
            limit=limit,
            offset=offset,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    records, total = await SnapshotExecutionTracker(db).list(criteria)
    return ExecutionListResponse(
        total=total,
        limit=limit,
        offset=offset,
        executions=[ExecutionRecordResponse.model_validate(r) for r in records],
    )


@router.get("/stats", response_model=ExecutionStatsResponse)
async def execution_stats(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: AsyncSession = Depends(get_db),
):
    stats = await SnapshotExecutionTracker(db).stats(start_date, end_date)
    return ExecutionStatsResponse(
        total_executions=stats.total_executions,
        completed=stats.completed,
        failed=stats.failed,
        cancelled=stats.cancelled,
        running=stats.running,
        success_rate=stats.success_rate,
        average_execution_time_ms=stats.average_execution_time_ms,
        total_snapshots=stats.total_snapshots,
        successful_snapshots=stats.successful_snapshots,
        failed_snapshots=stats.failed_snapshots,
    )


@router.get("/{execution_id}", response_model=ExecutionDetailResponse)
async def get_execution(execution_id: str, db: AsyncSession = Depends(get_db)):
    tracker = SnapshotExecutionTracker(db)
    try:
        record = await tracker.get(execution_id)
        children = await tracker.children(execution_id)
    except PortfolioEngineError as e:
        raise to_http_exception(e)

    detail = ExecutionDetailResponse.model_validate(record)
    detail.children = [ExecutionRecordResponse.model_validate(c) for c in children]
    return detail


@router.post("/{execution_id}/cancel", response_model=ExecutionRecordResponse)
async def cancel_execution(
    execution_id: str,
    request: Optional[CancelRequest] = None,
    runner: SnapshotRunner = Depends(get_snapshot_runner),
):
    reason = request.reason if request else "cancelled by operator"
    try:
        record = await runner.cancel(execution_id, reason)
    except PortfolioEngineError as e:
        logger.warning("⚠️ Cancel of %s rejected: %s", execution_id, e)
        raise to_http_exception(e)
    return ExecutionRecordResponse.model_validate(record)
