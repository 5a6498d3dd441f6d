"""
FastAPI Main Application
Portfolio valuation and fund ledger engine with the snapshot scheduler
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from portfolio_engine.api.routes import admin, cash_flows, executions, funds, health, portfolios, snapshots
from portfolio_engine.config import settings
from portfolio_engine.core.logging import setup_logging
from portfolio_engine.domain.services.snapshot_runner import SnapshotRunner
from portfolio_engine.infrastructure.db.database import async_session_factory, close_db, init_db
from portfolio_engine.infrastructure.market_data.position_provider import DatabasePositionProvider
from portfolio_engine.infrastructure.market_data.yfinance_provider import YFinancePriceProvider
from portfolio_engine.scheduler.scheduler import SnapshotScheduler

setup_logging(settings.LOG_LEVEL, settings.LOG_FILE, settings.LOG_MAX_BYTES, settings.LOG_BACKUP_COUNT)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager
    Handles startup and shutdown of the database, runner and scheduler
    """
    # ===================
    # STARTUP
    # ===================
    logger.info("=" * 60)
    logger.info("🚀 Starting Portfolio Engine")
    logger.info("=" * 60)

    logger.info("📊 Step 1/3: Initializing database...")
    await init_db()
    logger.info("✅ Database initialized")

    logger.info("🔧 Step 2/3: Initializing snapshot runner...")
    runner = SnapshotRunner(
        async_session_factory,
        YFinancePriceProvider(),
        DatabasePositionProvider(async_session_factory),
    )
    app.state.snapshot_runner = runner
    logger.info(
        "✅ Snapshot runner ready | portfolios=%s assets=%s timeout=%ss",
        runner.max_concurrency, runner.asset_concurrency, runner.lookup_timeout,
    )

    logger.info("📅 Step 3/3: Starting scheduler...")
    scheduler = None
    if settings.SCHEDULER_ENABLED:
        scheduler = SnapshotScheduler(runner, async_session_factory)
        scheduler.start()
    else:
        logger.info("⏰ Scheduler disabled")
    app.state.snapshot_scheduler = scheduler

    logger.info("🎯 API Server: http://%s:%s", settings.API_HOST, settings.API_PORT)

    yield

    # ===================
    # SHUTDOWN
    # ===================
    logger.info("🛑 Shutting down Portfolio Engine...")
    if scheduler:
        scheduler.stop()
    await runner.shutdown()
    await close_db()
    logger.info("👋 Portfolio Engine shutdown complete")


def include_routers(app: FastAPI) -> FastAPI:
    app.include_router(health.router, tags=["Health"])
    app.include_router(portfolios.router, prefix="/api/v1/portfolios", tags=["Portfolios"])
    app.include_router(cash_flows.router, prefix="/api/v1", tags=["Cash Flows"])
    app.include_router(funds.router, prefix="/api/v1/funds", tags=["Funds"])
    app.include_router(snapshots.router, prefix="/api/v1/snapshots", tags=["Snapshots"])
    app.include_router(executions.router, prefix="/api/v1/executions", tags=["Executions"])
    app.include_router(admin.router, prefix="/api/v1/admin", tags=["Admin"])
    return app


app = include_routers(FastAPI(
    title="Portfolio Engine",
    description="Cash-flow ledger, fund unit accounting and performance snapshots",
    version="1.0.0",
    lifespan=lifespan,
))


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "portfolio_engine.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.DEBUG,
    )
