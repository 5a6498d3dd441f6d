import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_engine.infrastructure.db.database import get_db

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health")
async def health(request: Request, db: AsyncSession = Depends(get_db)):
    db_status = "connected"
    db_error = None
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error("❌ Database health check failed: %s", exc)
        db_status = "error"
        db_error = str(exc)

    scheduler = getattr(request.app.state, "snapshot_scheduler", None)
    if scheduler is None:
        scheduler_status = "disabled"
    else:
        scheduler_status = "running" if scheduler.running else "stopped"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "services": {
            "api": "running",
            "database": db_status,
            "scheduler": scheduler_status,
        },
        "database_error": db_error,
    }
