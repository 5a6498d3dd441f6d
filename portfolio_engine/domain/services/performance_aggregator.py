"""
Performance Aggregator

Rolls the allocation snapshots of one portfolio/date/granularity into
asset, asset-group and portfolio performance snapshots.

Each series chains daily/cumulative returns against its own previous row.
Period returns (1D..YTD) are derived from the stored cumulative returns, and
volatility / max drawdown from the series' rows inside the window.
"""

import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Type

from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_engine.domain.exceptions import AggregationIncompleteError, NotFoundError
from portfolio_engine.domain.models import Granularity
from portfolio_engine.domain.services import return_calculator as returns
from portfolio_engine.infrastructure.db.models import (
    AssetAllocationSnapshotModel,
    AssetGroupPerformanceSnapshotModel,
    AssetPerformanceSnapshotModel,
    Base,
    PortfolioPerformanceSnapshotModel,
)
from portfolio_engine.infrastructure.db.repositories.asset_repository import AssetRepository
from portfolio_engine.infrastructure.db.repositories.cash_flow_repository import CashFlowRepository
from portfolio_engine.infrastructure.db.repositories.portfolio_repository import PortfolioRepository
from portfolio_engine.infrastructure.db.repositories.snapshot_repository import (
    AllocationSnapshotRepository,
    PerformanceSnapshotRepository,
)
from portfolio_engine.utils import numbers
from portfolio_engine.utils.numbers import ZERO
from portfolio_engine.utils.time import end_of_day

logger = logging.getLogger(__name__)

RISK_WINDOWS = ("1m", "1y")


class PerformanceAggregator:
    """
    Writes are flushed, not committed; the caller owns the transaction.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.allocations = AllocationSnapshotRepository(session)
        self.performance = PerformanceSnapshotRepository(session)
        self.portfolios = PortfolioRepository(session)
        self.assets = AssetRepository(session)
        self.cash_flows = CashFlowRepository(session)

    async def aggregate(
        self,
        portfolio_id: int,
        snapshot_date: date,
        granularity: Granularity,
        expected_asset_ids: Iterable[int],
    ) -> PortfolioPerformanceSnapshotModel:
        """
        Build all performance snapshots for one portfolio/date.

        Raises:
            AggregationIncompleteError: an expected asset has no allocation snapshot
                for the date
            NotFoundError: unknown portfolio
        """
        portfolio = await self.portfolios.get(portfolio_id)
        if portfolio is None:
            raise NotFoundError(f"Portfolio {portfolio_id} not found")

        expected = set(expected_asset_ids)
        # rows of assets no longer held are left out of the totals
        rows = [
            r for r in await self.allocations.list_for_date(portfolio_id, snapshot_date, granularity)
            if r.asset_id in expected
        ]
        missing = expected - {r.asset_id for r in rows}
        if missing:
            raise AggregationIncompleteError(portfolio_id, len(expected), len(rows), sorted(missing))

        total_value = sum((Decimal(r.current_value) for r in rows), ZERO)

        for row in rows:
            await self._write_asset(row)

        group_tags = await self.assets.group_map([r.asset_id for r in rows])
        members: Dict[str, List[AssetAllocationSnapshotModel]] = defaultdict(list)
        for row in rows:
            members[group_tags.get(row.asset_id, "UNGROUPED")].append(row)
        for group, group_rows in sorted(members.items()):
            await self._write_group(portfolio_id, group, group_rows, snapshot_date, granularity, total_value)

        snapshot = await self._write_portfolio(portfolio_id, rows, snapshot_date, granularity, total_value)
        logger.info(
            "📊 Performance aggregated | portfolio=%s | %s | assets=%s groups=%s | value=%s | cum=%s%%",
            portfolio_id, snapshot_date, len(rows), len(members), total_value, snapshot.cumulative_return,
        )
        return snapshot

    # ------------------------------------------------------------
    # Series writers
    # ------------------------------------------------------------

    async def _write_asset(self, row: AssetAllocationSnapshotModel):
        series = {"portfolio_id": row.portfolio_id, "asset_id": row.asset_id}
        totals = _Totals.of([row])
        values = await self._series_values(
            AssetPerformanceSnapshotModel, series, row.snapshot_date, row.granularity, totals
        )
        values["asset_symbol"] = row.asset_symbol
        return await self.performance.upsert(
            AssetPerformanceSnapshotModel,
            {**series, "snapshot_date": row.snapshot_date, "granularity": row.granularity},
            values,
        )

    async def _write_group(
        self,
        portfolio_id: int,
        group: str,
        rows: List[AssetAllocationSnapshotModel],
        snapshot_date: date,
        granularity: Granularity,
        portfolio_total: Decimal,
    ):
        series = {"portfolio_id": portfolio_id, "asset_group": group}
        totals = _Totals.of(rows)
        values = await self._series_values(
            AssetGroupPerformanceSnapshotModel, series, snapshot_date, granularity, totals
        )
        values.update(
            asset_count=len(rows),
            active_asset_count=len([r for r in rows if r.is_active]),
            allocation_percentage=numbers.percent(
                returns.allocation_percentage(totals.current_value, portfolio_total)
            ),
        )
        return await self.performance.upsert(
            AssetGroupPerformanceSnapshotModel,
            {**series, "snapshot_date": snapshot_date, "granularity": granularity},
            values,
        )

    async def _write_portfolio(
        self,
        portfolio_id: int,
        rows: List[AssetAllocationSnapshotModel],
        snapshot_date: date,
        granularity: Granularity,
        total_value: Decimal,
    ) -> PortfolioPerformanceSnapshotModel:
        series = {"portfolio_id": portfolio_id}
        totals = _Totals.of(rows)
        values = await self._series_values(
            PortfolioPerformanceSnapshotModel, series, snapshot_date, granularity, totals
        )

        inflows, outflows = await self.cash_flows.totals(portfolio_id, end_of_day(snapshot_date))
        net = numbers.money(inflows - outflows)
        values.update(
            portfolio_total_value=numbers.money(total_value),
            cash_balance=net,
            total_cash_inflows=numbers.money(inflows),
            total_cash_outflows=numbers.money(outflows),
            net_cash_flow=net,
            asset_count=len(rows),
        )
        return await self.performance.upsert(
            PortfolioPerformanceSnapshotModel,
            {**series, "snapshot_date": snapshot_date, "granularity": granularity},
            values,
        )

    async def _series_values(
        self,
        model: Type[Base],
        series: Dict[str, Any],
        snapshot_date: date,
        granularity: Granularity,
        totals: "_Totals",
    ) -> Dict[str, Any]:
        previous = await self.performance.get_previous(model, series, granularity, snapshot_date)
        if previous is None:
            previous_value: Optional[Decimal] = None
            previous_cumulative: Optional[Decimal] = None
            daily = ZERO
            cumulative = ZERO
        else:
            previous_value = Decimal(previous.current_value)
            previous_cumulative = Decimal(previous.cumulative_return)
            daily = returns.daily_return(totals.current_value, previous_value)
            cumulative = returns.chain_cumulative(previous_cumulative, daily)

        values: Dict[str, Any] = {
            "current_value": totals.current_value,
            "cost_basis": totals.cost_basis,
            "realized_pl": totals.realized_pl,
            "unrealized_pl": totals.unrealized_pl,
            "total_pl": totals.total_pl,
            "return_percentage": numbers.rate(returns.return_percentage(totals.total_pl, totals.cost_basis)),
            "daily_return": numbers.rate(daily),
            "cumulative_return": numbers.rate(cumulative),
            "previous_value": previous_value,
            "previous_cumulative_return": previous_cumulative,
        }

        for period in ("1d", "1w", "1m", "3m", "6m", "1y", "ytd"):
            base = await self.performance.get_on_or_before(
                model, series, granularity, returns.period_start(snapshot_date, period)
            )
            values[f"twr_{period}"] = (
                numbers.rate(returns.period_return(cumulative, Decimal(base.cumulative_return)))
                if base is not None else None
            )

        for window in RISK_WINDOWS:
            history = await self.performance.list_series(
                model, series, granularity,
                start=returns.period_start(snapshot_date, window),
                end=snapshot_date,
            )
            daily_returns = [Decimal(r.daily_return) for r in history] + [daily]
            cumulatives = [Decimal(r.cumulative_return) for r in history] + [cumulative]
            values[f"volatility_{window}"] = returns.annualized_volatility(daily_returns)
            values[f"max_drawdown_{window}"] = returns.max_drawdown(cumulatives)

        return values


class _Totals:
    """Summed value / cost / P&L over a set of allocation rows"""

    def __init__(self, current_value, cost_basis, realized_pl, unrealized_pl):
        self.current_value = numbers.money(current_value)
        self.cost_basis = numbers.money(cost_basis)
        self.realized_pl = numbers.money(realized_pl)
        self.unrealized_pl = numbers.money(unrealized_pl)
        self.total_pl = self.realized_pl + self.unrealized_pl

    @classmethod
    def of(cls, rows: List[AssetAllocationSnapshotModel]) -> "_Totals":
        return cls(
            current_value=sum((Decimal(r.current_value) for r in rows), ZERO),
            cost_basis=sum((Decimal(r.cost_basis) for r in rows), ZERO),
            realized_pl=sum((Decimal(r.realized_pl) for r in rows), ZERO),
            unrealized_pl=sum((Decimal(r.unrealized_pl) for r in rows), ZERO),
        )
