"""
Snapshot Runner

Orchestrates one tracked snapshot run:

1. A parent execution record is opened (one run, many portfolios).
2. Portfolios are processed on a bounded pool; each gets a child record.
3. Inside a portfolio, price lookups run concurrently with a timeout each.
4. Once all asset tasks have reported: if any asset failed, nothing is
   written for that portfolio/date and it counts as failed, so earlier rows
   for the date stay as they were. Otherwise every allocation row, the
   removal of rows for assets no longer held, and the aggregation are
   committed together.
5. The parent record is completed with per-portfolio success/failure counts.

Storage errors abort the run (``failed``). Cancellation stops portfolios that
have not started yet; portfolios already committed stay.
"""

import asyncio
import logging
import time
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from portfolio_engine.config import settings
from portfolio_engine.domain.exceptions import (
    AggregationIncompleteError,
    InvalidStateError,
    NotFoundError,
    PersistenceError,
    PortfolioEngineError,
    SnapshotComputationError,
)
from portfolio_engine.domain.models import (
    ExecutionStatus,
    ExecutionType,
    Granularity,
    PortfolioOutcome,
    Position,
    SnapshotRunResult,
)
from portfolio_engine.domain.services.allocation_snapshot_generator import AllocationSnapshotGenerator
from portfolio_engine.domain.services.execution_tracker import SnapshotExecutionTracker
from portfolio_engine.domain.services.performance_aggregator import PerformanceAggregator
from portfolio_engine.infrastructure.db.models import PortfolioModel
from portfolio_engine.infrastructure.db.repositories.portfolio_repository import PortfolioRepository
from portfolio_engine.infrastructure.market_data.types import PositionProvider, PriceProvider
from portfolio_engine.utils.concurrency import bounded_gather
from portfolio_engine.utils.numbers import ZERO
from portfolio_engine.utils.time import today_local

logger = logging.getLogger(__name__)


class SnapshotRunner:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        price_provider: PriceProvider,
        position_provider: PositionProvider,
        max_concurrency: Optional[int] = None,
        asset_concurrency: Optional[int] = None,
        lookup_timeout: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.price_provider = price_provider
        self.position_provider = position_provider
        self.max_concurrency = max_concurrency or settings.SNAPSHOT_MAX_CONCURRENCY
        self.asset_concurrency = asset_concurrency or settings.SNAPSHOT_ASSET_CONCURRENCY
        self.lookup_timeout = lookup_timeout or settings.SNAPSHOT_LOOKUP_TIMEOUT_SECONDS
        self._cancellations: Dict[str, asyncio.Event] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------

    async def start(
        self,
        portfolio_id: Optional[int] = None,
        execution_type: ExecutionType = ExecutionType.MANUAL,
        as_of: Optional[date] = None,
        granularity: Granularity = Granularity.DAILY,
        created_by: str = "api",
    ) -> str:
        """
        Open the execution record and run in the background.

        Returns:
            execution id (poll the tracker for progress)
        """
        as_of = as_of or today_local()
        execution_id = await self._begin(portfolio_id, execution_type, as_of, granularity, None, None, created_by)
        task = asyncio.create_task(
            self._execute(execution_id, execution_type, portfolio_id, as_of, granularity),
            name=f"snapshot-run-{execution_id}",
        )
        self._tasks[execution_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(execution_id, None))
        return execution_id

    async def run(
        self,
        portfolio_id: Optional[int] = None,
        execution_type: ExecutionType = ExecutionType.MANUAL,
        as_of: Optional[date] = None,
        granularity: Granularity = Granularity.DAILY,
        cron_expression: Optional[str] = None,
        timezone: Optional[str] = None,
        created_by: str = "system",
    ) -> SnapshotRunResult:
        """Open the execution record and run to completion"""
        as_of = as_of or today_local()
        execution_id = await self._begin(
            portfolio_id, execution_type, as_of, granularity, cron_expression, timezone, created_by
        )
        return await self._execute(execution_id, execution_type, portfolio_id, as_of, granularity)

    async def cancel(self, execution_id: str, reason: str = "cancelled by operator"):
        """
        Stop scheduling further portfolios of a run and mark it cancelled.

        Raises:
            NotFoundError / InvalidStateError from the tracker
        """
        async with self.session_factory() as session:
            record = await SnapshotExecutionTracker(session).cancel(execution_id, reason)
        event = self._cancellations.get(execution_id)
        if event is not None:
            event.set()
        return record

    async def wait(self, execution_id: str) -> None:
        """Wait for a background run started by ``start``"""
        task = self._tasks.get(execution_id)
        if task is not None:
            await asyncio.shield(task)

    async def shutdown(self) -> None:
        for execution_id in list(self._tasks):
            self._cancellations.setdefault(execution_id, asyncio.Event()).set()
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)

    # ------------------------------------------------------------
    # Run
    # ------------------------------------------------------------

    async def _begin(self, portfolio_id, execution_type, as_of, granularity, cron_expression, timezone, created_by) -> str:
        async with self.session_factory() as session:
            portfolio_name = None
            if portfolio_id is not None:
                portfolio = await PortfolioRepository(session).get(portfolio_id)
                if portfolio is None:
                    raise NotFoundError(f"Portfolio {portfolio_id} not found")
                portfolio_name = portfolio.name
            execution_id = await SnapshotExecutionTracker(session).begin(
                portfolio_id,
                execution_type,
                cron_expression,
                timezone,
                portfolio_name=portfolio_name,
                snapshot_date=as_of,
                granularity=granularity,
                created_by=created_by,
                metadata={
                    "max_concurrency": self.max_concurrency,
                    "asset_concurrency": self.asset_concurrency,
                    "lookup_timeout_seconds": float(self.lookup_timeout),
                },
            )
        self._cancellations[execution_id] = asyncio.Event()
        return execution_id

    async def _execute(
        self,
        execution_id: str,
        execution_type: ExecutionType,
        portfolio_id: Optional[int],
        as_of: date,
        granularity: Granularity,
    ) -> SnapshotRunResult:
        started = time.monotonic()
        cancelled = self._cancellations.setdefault(execution_id, asyncio.Event())

        async with self.session_factory() as session:
            tracker = SnapshotExecutionTracker(session)
            try:
                portfolios = await self._portfolios_in_scope(session, portfolio_id)
                await tracker.mark_progress(execution_id, total=len(portfolios))
                logger.info(
                    "🚀 Snapshot run %s | %s portfolio(s) | %s %s | concurrency=%s",
                    execution_id, len(portfolios), as_of, granularity.value, self.max_concurrency,
                )

                outcomes = await bounded_gather(
                    [
                        self._portfolio_task(tracker, execution_id, execution_type, portfolio, as_of, granularity, cancelled)
                        for portfolio in portfolios
                    ],
                    self.max_concurrency,
                )
            except (PersistenceError, SQLAlchemyError) as exc:
                cancelled.set()
                logger.exception("❌ Snapshot run %s aborted", execution_id)
                await self._finish_failed(tracker, execution_id, f"Storage error: {exc}", started)
                return SnapshotRunResult(execution_id, ExecutionStatus.FAILED, as_of)
            except InvalidStateError:
                logger.warning("⚠️ Snapshot run %s was closed before it started", execution_id)
                return SnapshotRunResult(execution_id, ExecutionStatus.CANCELLED, as_of)
            except NotFoundError as exc:
                await self._finish_failed(tracker, execution_id, str(exc), started)
                return SnapshotRunResult(execution_id, ExecutionStatus.FAILED, as_of)
            except Exception as exc:
                cancelled.set()
                logger.exception("❌ Snapshot run %s crashed", execution_id)
                await self._finish_failed(tracker, execution_id, f"Unexpected error: {exc}", started)
                return SnapshotRunResult(execution_id, ExecutionStatus.FAILED, as_of)
            finally:
                self._cancellations.pop(execution_id, None)

            attempted = [o for o in outcomes if not o.skipped]
            failed = [o for o in attempted if not o.succeeded]
            summary = "; ".join(f"{o.portfolio_name}: {o.error}" for o in failed) or None
            try:
                await tracker.complete(
                    execution_id,
                    successful=len(attempted) - len(failed),
                    failed=len(failed),
                    elapsed_ms=_elapsed_ms(started),
                    error_message=summary,
                )
                status = ExecutionStatus.COMPLETED
            except InvalidStateError:
                logger.warning("⚠️ Snapshot run %s was cancelled before completion", execution_id)
                status = ExecutionStatus.CANCELLED

        logger.info(
            "🏁 Snapshot run %s %s | ok=%s failed=%s skipped=%s | %sms",
            execution_id, status.value, len(attempted) - len(failed), len(failed),
            len(outcomes) - len(attempted), _elapsed_ms(started),
        )
        return SnapshotRunResult(execution_id, status, as_of, outcomes)

    async def _finish_failed(self, tracker, execution_id: str, message: str, started: float) -> None:
        try:
            await tracker.fail(execution_id, message, _elapsed_ms(started))
        except (InvalidStateError, PersistenceError) as exc:
            logger.error("❌ Could not mark run %s failed: %s", execution_id, exc)

    async def _portfolios_in_scope(self, session: AsyncSession, portfolio_id: Optional[int]) -> List[PortfolioModel]:
        repo = PortfolioRepository(session)
        if portfolio_id is None:
            return await repo.list_all()
        portfolio = await repo.get(portfolio_id)
        if portfolio is None:
            raise NotFoundError(f"Portfolio {portfolio_id} not found")
        return [portfolio]

    def _portfolio_task(self, tracker, execution_id, execution_type, portfolio, as_of, granularity, cancelled):
        portfolio_id, portfolio_name = portfolio.id, portfolio.name

        async def _task() -> PortfolioOutcome:
            if cancelled.is_set():
                return PortfolioOutcome(portfolio_id, portfolio_name, succeeded=False, skipped=True)
            return await self._run_portfolio(
                tracker, execution_id, execution_type, portfolio_id, portfolio_name, as_of, granularity
            )

        return _task

    # ------------------------------------------------------------
    # Per portfolio
    # ------------------------------------------------------------

    async def _run_portfolio(
        self,
        tracker: SnapshotExecutionTracker,
        execution_id: str,
        execution_type: ExecutionType,
        portfolio_id: int,
        portfolio_name: str,
        as_of: date,
        granularity: Granularity,
    ) -> PortfolioOutcome:
        started = time.monotonic()
        child_id = await tracker.begin(
            portfolio_id,
            execution_type,
            portfolio_name=portfolio_name,
            parent_execution_id=execution_id,
            snapshot_date=as_of,
            granularity=granularity,
        )

        try:
            async with self.session_factory() as session:
                outcome = await self._snapshot_portfolio(session, portfolio_id, portfolio_name, as_of, granularity)
        except SQLAlchemyError as exc:
            await tracker.fail(child_id, f"Storage error: {exc}", _elapsed_ms(started))
            raise PersistenceError(f"Storage error while snapshotting portfolio {portfolio_id}") from exc
        except PersistenceError as exc:
            await tracker.fail(child_id, str(exc), _elapsed_ms(started))
            raise

        ok_assets = outcome.assets_expected - outcome.assets_failed
        if outcome.succeeded:
            await tracker.complete(child_id, ok_assets, outcome.assets_failed, _elapsed_ms(started))
        else:
            await tracker.mark_progress(child_id, ok_assets, outcome.assets_failed, total=outcome.assets_expected)
            await tracker.fail(child_id, outcome.error or "failed", _elapsed_ms(started))

        try:
            await tracker.mark_progress(execution_id, 1 if outcome.succeeded else 0, 0 if outcome.succeeded else 1)
        except InvalidStateError:
            logger.info("Run %s already closed; portfolio %s result kept on its own record", execution_id, portfolio_id)
        return outcome

    async def _snapshot_portfolio(
        self,
        session: AsyncSession,
        portfolio_id: int,
        portfolio_name: str,
        as_of: date,
        granularity: Granularity,
    ) -> PortfolioOutcome:
        try:
            positions = await self._with_timeout(
                self.position_provider.get_positions(portfolio_id, as_of),
                f"positions of portfolio {portfolio_id}",
            )
        except SnapshotComputationError as exc:
            logger.warning("⚠️ Portfolio %s skipped: %s", portfolio_id, exc)
            return PortfolioOutcome(portfolio_id, portfolio_name, succeeded=False, error=str(exc))

        priced = await bounded_gather(
            [self._price_task(position, as_of) for position in positions],
            self.asset_concurrency,
        )
        errors = [error for _, _, error in priced if error is not None]
        if errors:
            detail = "; ".join(errors)
            logger.warning(
                "⚠️ Portfolio %s not snapshotted: %s of %s asset(s) failed (%s)",
                portfolio_id, len(errors), len(positions), detail,
            )
            return PortfolioOutcome(
                portfolio_id, portfolio_name, succeeded=False,
                assets_expected=len(positions), assets_failed=len(errors),
                error=f"{len(errors)} of {len(positions)} asset(s) could not be valued: {detail}",
            )

        generator = AllocationSnapshotGenerator(session)
        total_value = sum(
            (generator.value_position(position, price).current_value for position, price, _ in priced),
            ZERO,
        )
        asset_ids = [position.asset_id for position in positions]
        try:
            for position, price, _ in priced:
                await generator.generate(
                    portfolio_id, position.asset_id, as_of, granularity, position, price, total_value,
                    created_by="snapshot-runner",
                )
            dropped = await generator.snapshots.delete_other_assets(portfolio_id, as_of, granularity, asset_ids)
            await PerformanceAggregator(session).aggregate(portfolio_id, as_of, granularity, asset_ids)
            await session.commit()
        except AggregationIncompleteError as exc:
            await session.rollback()
            logger.warning("⚠️ Portfolio %s not aggregated: %s", portfolio_id, exc)
            return PortfolioOutcome(
                portfolio_id, portfolio_name, succeeded=False,
                assets_expected=len(positions), assets_failed=len(exc.missing_asset_ids),
                error=str(exc),
            )

        if dropped:
            logger.info("🧹 Portfolio %s: %s snapshot(s) of assets no longer held removed for %s", portfolio_id, dropped, as_of)
        return PortfolioOutcome(
            portfolio_id, portfolio_name, succeeded=True,
            assets_expected=len(positions), assets_failed=0,
        )

    def _price_task(self, position: Position, as_of: date):
        async def _task() -> Tuple[Position, Optional[Decimal], Optional[str]]:
            try:
                price = await self._with_timeout(
                    self.price_provider.get_price(position.symbol, as_of),
                    f"price of {position.symbol}",
                )
                if price is None:
                    raise SnapshotComputationError(
                        f"No price for {position.symbol} on {as_of}", position.asset_id, position.symbol
                    )
                AllocationSnapshotGenerator.value_position(position, price)
            except PortfolioEngineError as exc:
                logger.warning("⚠️ Asset %s failed: %s", position.symbol, exc)
                return position, None, str(exc)
            return position, price, None

        return _task

    async def _with_timeout(self, awaitable, what: str):
        """
        Await a provider call with the lookup timeout.

        Timeouts and provider errors become SnapshotComputationError.
        """
        try:
            return await asyncio.wait_for(awaitable, timeout=self.lookup_timeout)
        except asyncio.TimeoutError as exc:
            raise SnapshotComputationError(f"Timed out after {self.lookup_timeout}s fetching {what}") from exc
        except Exception as exc:
            raise SnapshotComputationError(f"Could not fetch {what}: {exc}") from exc


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
