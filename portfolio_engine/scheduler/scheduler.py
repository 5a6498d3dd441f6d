"""
Snapshot Scheduler

Cron-triggered AUTOMATED snapshot runs plus a daily retention cleanup of
execution records. Orchestration only; the work happens in SnapshotRunner.
"""

import logging
from typing import Optional

import pytz
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from portfolio_engine.config import settings
from portfolio_engine.domain.exceptions import PortfolioEngineError
from portfolio_engine.domain.models import ExecutionType, Granularity
from portfolio_engine.domain.services.execution_tracker import SnapshotExecutionTracker
from portfolio_engine.domain.services.snapshot_runner import SnapshotRunner
from portfolio_engine.utils.time import today_local

logger = logging.getLogger(__name__)


class SnapshotScheduler:
    def __init__(
        self,
        runner: SnapshotRunner,
        session_factory: async_sessionmaker[AsyncSession],
        cron_expression: Optional[str] = None,
        timezone: Optional[str] = None,
        granularity: Optional[Granularity] = None,
        retention_days: Optional[int] = None,
    ):
        self.runner = runner
        self.session_factory = session_factory
        self.cron_expression = cron_expression or settings.SNAPSHOT_CRON
        self.timezone = timezone or settings.SNAPSHOT_TIMEZONE
        self.granularity = granularity or Granularity(settings.SNAPSHOT_GRANULARITY)
        self.retention_days = settings.TRACKING_RETENTION_DAYS if retention_days is None else retention_days
        self.scheduler = AsyncIOScheduler(timezone=pytz.timezone(self.timezone))

    @property
    def running(self) -> bool:
        return bool(getattr(self.scheduler, "running", False))

    def start(self):
        """Register jobs and start"""
        tz = pytz.timezone(self.timezone)

        # Daily snapshots (default 19:00 local, after market close)
        self.scheduler.add_job(
            self.automated_snapshot_job,
            trigger=CronTrigger.from_crontab(self.cron_expression, timezone=tz),
            id="automated_snapshot_job",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        # Execution record retention
        self.scheduler.add_job(
            self.tracking_cleanup_job,
            trigger=CronTrigger(hour=2, minute=30, timezone=tz),
            id="tracking_cleanup_job",
            replace_existing=True,
        )

        self.scheduler.start()
        logger.info(
            "✅ Snapshot scheduler started | cron='%s' | tz=%s | granularity=%s",
            self.cron_expression, self.timezone, self.granularity.value,
        )

    def stop(self):
        if self.running:
            self.scheduler.shutdown(wait=False)
            logger.info("🛑 Snapshot scheduler stopped")

    async def automated_snapshot_job(self):
        """Snapshot every portfolio for today"""
        logger.info("🔄 Starting automated snapshot job...")
        try:
            result = await self.runner.run(
                execution_type=ExecutionType.AUTOMATED,
                as_of=today_local(),
                granularity=self.granularity,
                cron_expression=self.cron_expression,
                timezone=self.timezone,
                created_by="scheduler",
            )
        except PortfolioEngineError as e:
            logger.error(f"❌ Automated snapshot job failed: {e}")
            return None

        logger.info(
            f"✅ Automated snapshot job {result.execution_id} {result.status.value} | "
            f"ok={result.successful} failed={result.failed}"
        )
        return result

    async def tracking_cleanup_job(self):
        logger.info("🧹 Starting tracking cleanup job...")
        try:
            async with self.session_factory() as session:
                deleted = await SnapshotExecutionTracker(session).cleanup_older_than(self.retention_days)
        except PortfolioEngineError as e:
            logger.error(f"❌ Tracking cleanup failed: {e}")
            return 0
        return deleted
