from portfolio_engine.domain.models.entities import (
    AllocationFigures,
    CashFlowSummary,
    CashFlowType,
    ExecutionFilter,
    ExecutionStats,
    ExecutionStatus,
    ExecutionType,
    FundResetResult,
    FundTransactionType,
    Granularity,
    HoldingSummary,
    INFLOW_TYPES,
    MetadataValue,
    PortfolioOutcome,
    Position,
    SnapshotRunResult,
    TradeSide,
    UnitTransactionResult,
)

__all__ = [
    "AllocationFigures",
    "CashFlowSummary",
    "CashFlowType",
    "ExecutionFilter",
    "ExecutionStats",
    "ExecutionStatus",
    "ExecutionType",
    "FundResetResult",
    "FundTransactionType",
    "Granularity",
    "HoldingSummary",
    "INFLOW_TYPES",
    "MetadataValue",
    "PortfolioOutcome",
    "Position",
    "SnapshotRunResult",
    "TradeSide",
    "UnitTransactionResult",
]
