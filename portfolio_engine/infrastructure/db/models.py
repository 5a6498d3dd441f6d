"""
Database Models (SQLAlchemy ORM)

Cash flows and fund unit transactions are insert-only; they are removed
only through the ledger or the ordered fund reset.
"""

from sqlalchemy import (
    Column, Integer, String, Numeric, Date, DateTime,
    Boolean, ForeignKey, Text, Enum as SQLEnum, Index, JSON, UniqueConstraint
)
from sqlalchemy.orm import declarative_mixin, relationship

from portfolio_engine.domain.models import (
    CashFlowType,
    ExecutionStatus,
    ExecutionType,
    FundTransactionType,
    Granularity,
    TradeSide,
)
from portfolio_engine.infrastructure.db.database import Base
from portfolio_engine.utils.time import now_local_naive


# Column types
MONEY = Numeric(20, 4)
QUANTITY = Numeric(24, 6)
RATE = Numeric(20, 6)


@declarative_mixin
class TimestampMixin:
    created_at = Column(DateTime, nullable=False, default=now_local_naive)
    updated_at = Column(DateTime, nullable=False, default=now_local_naive, onupdate=now_local_naive)


# Portfolio & ledger

class PortfolioModel(TimestampMixin, Base):
    """Portfolio; fund fields owned by fund accounting, cash_balance by the ledger"""
    __tablename__ = "portfolios"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    is_fund = Column(Boolean, nullable=False, default=False)
    total_outstanding_units = Column(QUANTITY, nullable=False, default=0)
    nav_per_unit = Column(RATE, nullable=False, default=0)
    cash_balance = Column(MONEY, nullable=False, default=0)
    last_nav_date = Column(DateTime, nullable=True)
    number_of_investors = Column(Integer, nullable=False, default=0)

    cash_flows = relationship("CashFlowModel", back_populates="portfolio")
    holdings = relationship("InvestorHoldingModel", back_populates="portfolio")


class CashFlowModel(Base):
    """Typed cash movement - never updated after insert"""
    __tablename__ = "cash_flows"

    id = Column(Integer, primary_key=True, autoincrement=True)
    portfolio_id = Column(Integer, ForeignKey("portfolios.id"), nullable=False)
    flow_type = Column(SQLEnum(CashFlowType), nullable=False)
    amount = Column(MONEY, nullable=False)
    flow_date = Column(DateTime, nullable=False, default=now_local_naive)
    description = Column(Text, nullable=True)
    fund_transaction_id = Column(
        Integer, ForeignKey("fund_unit_transactions.id"), nullable=True, index=True
    )
    created_at = Column(DateTime, nullable=False, default=now_local_naive)

    portfolio = relationship("PortfolioModel", back_populates="cash_flows")

    __table_args__ = (
        Index("ix_cash_flows_portfolio_date", "portfolio_id", "flow_date"),
    )


class InvestorHoldingModel(TimestampMixin, Base):
    """Units of a fund held by one investor"""
    __tablename__ = "investor_holdings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    portfolio_id = Column(Integer, ForeignKey("portfolios.id"), nullable=False)
    investor = Column(String(200), nullable=False)
    units_held = Column(QUANTITY, nullable=False, default=0)
    avg_cost_per_unit = Column(RATE, nullable=False, default=0)
    total_investment = Column(MONEY, nullable=False, default=0)
    realized_pl = Column(MONEY, nullable=False, default=0)

    portfolio = relationship("PortfolioModel", back_populates="holdings")
    transactions = relationship("FundUnitTransactionModel", back_populates="holding")

    __table_args__ = (
        UniqueConstraint("portfolio_id", "investor", name="uq_investor_holding"),
    )


class FundUnitTransactionModel(Base):
    """Unit issuance or cancellation - AUDIT RECORD"""
    __tablename__ = "fund_unit_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    holding_id = Column(Integer, ForeignKey("investor_holdings.id"), nullable=False, index=True)
    portfolio_id = Column(Integer, ForeignKey("portfolios.id"), nullable=False, index=True)
    transaction_type = Column(SQLEnum(FundTransactionType), nullable=False)
    units_delta = Column(QUANTITY, nullable=False)
    nav_per_unit = Column(RATE, nullable=False)
    amount = Column(MONEY, nullable=False)
    # Plain column: the FK runs from cash_flows to this table
    cash_flow_id = Column(Integer, nullable=True)
    executed_at = Column(DateTime, nullable=False, default=now_local_naive)

    holding = relationship("InvestorHoldingModel", back_populates="transactions")


# Positions input

class AssetModel(Base):
    """Tradable instrument; asset_group is the roll-up tag"""
    __tablename__ = "assets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    symbol = Column(String(30), nullable=False, unique=True, index=True)
    name = Column(String(200), nullable=True)
    asset_group = Column(String(50), nullable=False, default="UNGROUPED")
    created_at = Column(DateTime, nullable=False, default=now_local_naive)


class TradeModel(Base):
    """Executed trade - cost basis and realized P&L are derived from these"""
    __tablename__ = "trades"

    id = Column(Integer, primary_key=True, autoincrement=True)
    portfolio_id = Column(Integer, ForeignKey("portfolios.id"), nullable=False)
    asset_id = Column(Integer, ForeignKey("assets.id"), nullable=False)
    side = Column(SQLEnum(TradeSide), nullable=False)
    quantity = Column(QUANTITY, nullable=False)
    price = Column(RATE, nullable=False)
    fee = Column(MONEY, nullable=False, default=0)
    tax = Column(MONEY, nullable=False, default=0)
    trade_date = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False, default=now_local_naive)

    asset = relationship("AssetModel")

    __table_args__ = (
        Index("ix_trades_portfolio_date", "portfolio_id", "trade_date"),
    )


# Snapshots

class AssetAllocationSnapshotModel(TimestampMixin, Base):
    """One asset's valuation for a date; unique per (portfolio, asset, date, granularity)"""
    __tablename__ = "asset_allocation_snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    portfolio_id = Column(Integer, ForeignKey("portfolios.id"), nullable=False)
    asset_id = Column(Integer, ForeignKey("assets.id"), nullable=False)
    asset_symbol = Column(String(30), nullable=False)
    snapshot_date = Column(Date, nullable=False)
    granularity = Column(SQLEnum(Granularity), nullable=False, default=Granularity.DAILY)

    quantity = Column(QUANTITY, nullable=False)
    current_price = Column(RATE, nullable=False)
    current_value = Column(MONEY, nullable=False)
    cost_basis = Column(MONEY, nullable=False)
    avg_cost = Column(RATE, nullable=False)
    realized_pl = Column(MONEY, nullable=False)
    unrealized_pl = Column(MONEY, nullable=False)
    total_pl = Column(MONEY, nullable=False)
    allocation_percentage = Column(Numeric(10, 4), nullable=False)
    portfolio_total_value = Column(MONEY, nullable=False)
    return_percentage = Column(RATE, nullable=False)
    daily_return = Column(RATE, nullable=False)
    cumulative_return = Column(RATE, nullable=False)
    previous_value = Column(MONEY, nullable=True)
    previous_cumulative_return = Column(RATE, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(String(100), nullable=False, default="system")

    __table_args__ = (
        UniqueConstraint(
            "portfolio_id", "asset_id", "snapshot_date", "granularity",
            name="uq_asset_allocation_snapshot_key",
        ),
        Index("ix_asset_allocation_portfolio_date", "portfolio_id", "snapshot_date"),
    )


@declarative_mixin
class PerformanceFiguresMixin:
    """Columns shared by the asset, group and portfolio performance series"""
    snapshot_date = Column(Date, nullable=False)
    granularity = Column(SQLEnum(Granularity), nullable=False, default=Granularity.DAILY)

    current_value = Column(MONEY, nullable=False)
    cost_basis = Column(MONEY, nullable=False)
    realized_pl = Column(MONEY, nullable=False)
    unrealized_pl = Column(MONEY, nullable=False)
    total_pl = Column(MONEY, nullable=False)
    return_percentage = Column(RATE, nullable=False)
    daily_return = Column(RATE, nullable=False)
    cumulative_return = Column(RATE, nullable=False)
    previous_value = Column(MONEY, nullable=True)
    previous_cumulative_return = Column(RATE, nullable=True)

    twr_1d = Column(RATE, nullable=True)
    twr_1w = Column(RATE, nullable=True)
    twr_1m = Column(RATE, nullable=True)
    twr_3m = Column(RATE, nullable=True)
    twr_6m = Column(RATE, nullable=True)
    twr_1y = Column(RATE, nullable=True)
    twr_ytd = Column(RATE, nullable=True)
    volatility_1m = Column(RATE, nullable=True)
    volatility_1y = Column(RATE, nullable=True)
    max_drawdown_1m = Column(RATE, nullable=True)
    max_drawdown_1y = Column(RATE, nullable=True)


class AssetPerformanceSnapshotModel(PerformanceFiguresMixin, TimestampMixin, Base):
    """Per-asset performance series"""
    __tablename__ = "asset_performance_snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    portfolio_id = Column(Integer, ForeignKey("portfolios.id"), nullable=False)
    asset_id = Column(Integer, ForeignKey("assets.id"), nullable=False)
    asset_symbol = Column(String(30), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "portfolio_id", "asset_id", "snapshot_date", "granularity",
            name="uq_asset_performance_snapshot_key",
        ),
    )


class AssetGroupPerformanceSnapshotModel(PerformanceFiguresMixin, TimestampMixin, Base):
    """Per asset-group performance series"""
    __tablename__ = "asset_group_performance_snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    portfolio_id = Column(Integer, ForeignKey("portfolios.id"), nullable=False)
    asset_group = Column(String(50), nullable=False)
    asset_count = Column(Integer, nullable=False, default=0)
    active_asset_count = Column(Integer, nullable=False, default=0)
    allocation_percentage = Column(Numeric(10, 4), nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint(
            "portfolio_id", "asset_group", "snapshot_date", "granularity",
            name="uq_asset_group_performance_snapshot_key",
        ),
    )


class PortfolioPerformanceSnapshotModel(PerformanceFiguresMixin, TimestampMixin, Base):
    """Whole-portfolio performance series; portfolio_total_value is authoritative"""
    __tablename__ = "portfolio_performance_snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    portfolio_id = Column(Integer, ForeignKey("portfolios.id"), nullable=False)
    portfolio_total_value = Column(MONEY, nullable=False)
    cash_balance = Column(MONEY, nullable=False, default=0)
    total_cash_inflows = Column(MONEY, nullable=False, default=0)
    total_cash_outflows = Column(MONEY, nullable=False, default=0)
    net_cash_flow = Column(MONEY, nullable=False, default=0)
    asset_count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint(
            "portfolio_id", "snapshot_date", "granularity",
            name="uq_portfolio_performance_snapshot_key",
        ),
    )


# Execution tracking

class SnapshotExecutionRecordModel(TimestampMixin, Base):
    """Lifecycle of one snapshot run (or of one portfolio inside a run)"""
    __tablename__ = "snapshot_execution_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    execution_id = Column(String(64), nullable=False, unique=True, index=True)
    parent_execution_id = Column(String(64), nullable=True, index=True)
    portfolio_id = Column(Integer, nullable=True, index=True)
    portfolio_name = Column(String(200), nullable=True)

    status = Column(SQLEnum(ExecutionStatus), nullable=False, default=ExecutionStatus.STARTED)
    execution_type = Column(SQLEnum(ExecutionType), nullable=False)
    snapshot_date = Column(Date, nullable=True)
    granularity = Column(SQLEnum(Granularity), nullable=True)

    started_at = Column(DateTime, nullable=False, default=now_local_naive)
    completed_at = Column(DateTime, nullable=True)
    total_snapshots = Column(Integer, nullable=False, default=0)
    successful_snapshots = Column(Integer, nullable=False, default=0)
    failed_snapshots = Column(Integer, nullable=False, default=0)
    execution_time_ms = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    execution_metadata = Column("metadata", JSON, nullable=True)
    created_by = Column(String(100), nullable=False, default="system")
    cron_expression = Column(String(100), nullable=True)
    timezone = Column(String(64), nullable=True)

    __table_args__ = (
        Index("ix_snapshot_execution_status_type_created", "status", "execution_type", "created_at"),
    )
