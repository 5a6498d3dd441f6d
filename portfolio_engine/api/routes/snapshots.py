"""
Snapshot API Routes
Trigger tracked snapshot runs and read allocation snapshots
"""

import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_engine.api.dependencies import get_snapshot_runner
from portfolio_engine.api.errors import to_http_exception
from portfolio_engine.domain.exceptions import PortfolioEngineError
from portfolio_engine.domain.models import ExecutionStatus, ExecutionType, Granularity
from portfolio_engine.domain.schemas.snapshot import (
    AllocationSnapshotResponse,
    SnapshotRunRequest,
    SnapshotRunResponse,
)
from portfolio_engine.domain.services.allocation_snapshot_generator import AllocationSnapshotGenerator
from portfolio_engine.domain.services.snapshot_runner import SnapshotRunner
from portfolio_engine.infrastructure.db.database import get_db
from portfolio_engine.infrastructure.db.repositories.portfolio_repository import PortfolioRepository
from portfolio_engine.utils.time import today_local

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/run", response_model=SnapshotRunResponse, status_code=202)
async def run_snapshots(
    request: SnapshotRunRequest,
    runner: SnapshotRunner = Depends(get_snapshot_runner),
):
    """
    Start a manual snapshot run in the background.

    Poll ``/executions/{execution_id}`` for progress.
    """
    snapshot_date = request.snapshot_date or today_local()
    logger.info(
        "📸 Manual snapshot run requested | scope=%s | %s %s",
        request.portfolio_id if request.portfolio_id is not None else "all",
        snapshot_date, request.granularity.value,
    )
    try:
        execution_id = await runner.start(
            portfolio_id=request.portfolio_id,
            execution_type=ExecutionType.MANUAL,
            as_of=snapshot_date,
            granularity=request.granularity,
        )
    except PortfolioEngineError as e:
        raise to_http_exception(e)
    return SnapshotRunResponse(
        execution_id=execution_id,
        status=ExecutionStatus.STARTED,
        snapshot_date=snapshot_date,
    )


@router.get("/{portfolio_id}", response_model=List[AllocationSnapshotResponse])
async def list_snapshots(
    portfolio_id: int,
    start: Optional[date] = None,
    end: Optional[date] = None,
    granularity: Granularity = Granularity.DAILY,
    asset_id: Optional[int] = None,
    db: AsyncSession = Depends(get_db),
):
    if start and end and start > end:
        raise HTTPException(status_code=400, detail="start must not be after end")
    if await PortfolioRepository(db).get(portfolio_id) is None:
        raise HTTPException(status_code=404, detail=f"Portfolio {portfolio_id} not found")

    snapshots = await AllocationSnapshotGenerator(db).list_snapshots(
        portfolio_id, granularity, start, end, asset_id
    )
    return [AllocationSnapshotResponse.model_validate(s) for s in snapshots]
