"""
Admin API Routes
Fund data cleanup and execution-tracking retention
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_engine.api.dependencies import get_portfolio_locks
from portfolio_engine.api.errors import to_http_exception
from portfolio_engine.config import settings
from portfolio_engine.domain.exceptions import PortfolioEngineError
from portfolio_engine.domain.schemas.fund import FundResetRequest, FundResetResponse
from portfolio_engine.domain.schemas.snapshot import TrackingCleanupRequest
from portfolio_engine.domain.services.execution_tracker import SnapshotExecutionTracker
from portfolio_engine.domain.services.fund_unit_accounting import FundUnitAccounting
from portfolio_engine.domain.services.portfolio_locks import PortfolioLockRegistry
from portfolio_engine.infrastructure.db.database import get_db

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/reset-fund-data", response_model=List[FundResetResponse])
async def reset_fund_data(
    request: Optional[FundResetRequest] = None,
    db: AsyncSession = Depends(get_db),
    locks: PortfolioLockRegistry = Depends(get_portfolio_locks),
):
    """
    Delete fund-generated cash flows, unit transactions and holdings, then
    recompute cash balances and return the portfolios to non-fund mode.

    Without a portfolio id every fund portfolio is reset.
    """
    portfolio_id = request.portfolio_id if request else None
    logger.warning("🧹 Fund data reset requested | scope=%s", portfolio_id if portfolio_id is not None else "all funds")
    accounting = FundUnitAccounting(db, locks)
    try:
        if portfolio_id is not None:
            results = [await accounting.reset_fund(portfolio_id)]
        else:
            results = await accounting.reset_all_funds()
    except PortfolioEngineError as e:
        logger.error("❌ Fund data reset failed: %s", e)
        raise to_http_exception(e)
    return [FundResetResponse.model_validate(r) for r in results]


@router.post("/tracking/cleanup")
async def cleanup_tracking(
    request: Optional[TrackingCleanupRequest] = None,
    db: AsyncSession = Depends(get_db),
):
    days = request.days_to_keep if request and request.days_to_keep is not None else settings.TRACKING_RETENTION_DAYS
    try:
        deleted = await SnapshotExecutionTracker(db).cleanup_older_than(days)
    except PortfolioEngineError as e:
        raise to_http_exception(e)
    return {"deleted": deleted, "days_to_keep": days}
