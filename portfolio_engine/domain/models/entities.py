"""
Domain Entities
Plain value objects shared by services, repositories and the API
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Union


class CashFlowType(str, Enum):
    """Typed cash movement; the sign table lives in ``is_inflow``"""
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    DIVIDEND = "DIVIDEND"
    INTEREST = "INTEREST"
    BUY_TRADE = "BUY_TRADE"
    SELL_TRADE = "SELL_TRADE"
    FEE = "FEE"
    TAX = "TAX"
    DEPOSIT_SETTLEMENT = "DEPOSIT_SETTLEMENT"
    SUBSCRIBE = "SUBSCRIBE"
    REDEEM = "REDEEM"

    @property
    def is_inflow(self) -> bool:
        return self in INFLOW_TYPES

    def signed(self, amount: Decimal) -> Decimal:
        """Contribution of ``amount`` (a magnitude) to the cash balance"""
        return amount if self.is_inflow else -amount


INFLOW_TYPES = frozenset({
    CashFlowType.DEPOSIT,
    CashFlowType.DIVIDEND,
    CashFlowType.INTEREST,
    CashFlowType.SELL_TRADE,
    CashFlowType.DEPOSIT_SETTLEMENT,
    CashFlowType.SUBSCRIBE,
})


class FundTransactionType(str, Enum):
    SUBSCRIBE = "SUBSCRIBE"
    REDEEM = "REDEEM"


class TradeSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class Granularity(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


class ExecutionStatus(str, Enum):
    STARTED = "started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ExecutionStatus.COMPLETED,
            ExecutionStatus.FAILED,
            ExecutionStatus.CANCELLED,
        )


class ExecutionType(str, Enum):
    AUTOMATED = "automated"
    MANUAL = "manual"
    TEST = "test"


MetadataValue = Union[str, int, float, bool]


@dataclass(frozen=True)
class Position:
    """
    Holding of one asset in one portfolio as of a date.

    Supplied by a position provider; cost figures come from trade history.
    """
    asset_id: int
    symbol: str
    quantity: Decimal
    cost_basis: Decimal
    avg_cost: Decimal
    realized_pl: Decimal = Decimal("0")
    asset_group: str = "UNGROUPED"

    def __post_init__(self):
        if self.quantity < 0:
            raise ValueError(f"{self.symbol}: quantity cannot be negative")
        if self.cost_basis < 0:
            raise ValueError(f"{self.symbol}: cost basis cannot be negative")

    @property
    def is_active(self) -> bool:
        return self.quantity > 0


@dataclass(frozen=True)
class AllocationFigures:
    """Valuation of one position at one price (no history involved)"""
    quantity: Decimal
    current_price: Decimal
    current_value: Decimal
    cost_basis: Decimal
    avg_cost: Decimal
    realized_pl: Decimal
    unrealized_pl: Decimal
    total_pl: Decimal
    return_percentage: Decimal


@dataclass(frozen=True)
class CashFlowSummary:
    total_inflows: Decimal
    total_outflows: Decimal

    @property
    def net_cash_flow(self) -> Decimal:
        return self.total_inflows - self.total_outflows


@dataclass(frozen=True)
class UnitTransactionResult:
    """Outcome of a subscription or redemption"""
    transaction_id: int
    holding_id: int
    cash_flow_id: int
    portfolio_id: int
    investor: str
    transaction_type: FundTransactionType
    units: Decimal
    nav_per_unit: Decimal
    amount: Decimal
    holding_units: Decimal
    total_outstanding_units: Decimal
    cash_balance: Decimal


@dataclass(frozen=True)
class FundResetResult:
    portfolio_id: int
    portfolio_name: str
    cash_flows_deleted: int
    transactions_deleted: int
    holdings_deleted: int
    cash_balance: Decimal


@dataclass(frozen=True)
class HoldingSummary:
    total_transactions: int
    total_subscriptions: int
    total_redemptions: int
    total_units_subscribed: Decimal
    total_units_redeemed: Decimal
    total_amount_invested: Decimal
    total_amount_received: Decimal
    current_value: Decimal
    realized_pl: Decimal
    unrealized_pl: Decimal
    total_pl: Decimal
    return_percentage: Decimal


@dataclass(frozen=True)
class ExecutionFilter:
    """Audit query over execution records"""
    status: Optional[ExecutionStatus] = None
    execution_type: Optional[ExecutionType] = None
    portfolio_id: Optional[int] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    top_level_only: bool = True
    limit: int = 50
    offset: int = 0

    def __post_init__(self):
        if self.limit < 1 or self.limit > 500:
            raise ValueError("limit must be between 1 and 500")
        if self.offset < 0:
            raise ValueError("offset cannot be negative")
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")


@dataclass(frozen=True)
class ExecutionStats:
    total_executions: int
    completed: int
    failed: int
    cancelled: int
    running: int
    average_execution_time_ms: Optional[float]
    total_snapshots: int
    successful_snapshots: int
    failed_snapshots: int

    @property
    def success_rate(self) -> float:
        if self.total_executions == 0:
            return 0.0
        return round(self.completed / self.total_executions * 100, 2)


@dataclass(frozen=True)
class PortfolioOutcome:
    """Result of snapshotting one portfolio inside a run"""
    portfolio_id: int
    portfolio_name: str
    succeeded: bool
    skipped: bool = False
    assets_expected: int = 0
    assets_failed: int = 0
    error: Optional[str] = None


@dataclass(frozen=True)
class SnapshotRunResult:
    execution_id: str
    status: ExecutionStatus
    snapshot_date: date
    outcomes: List[PortfolioOutcome] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len([o for o in self.outcomes if not o.skipped])

    @property
    def successful(self) -> int:
        return len([o for o in self.outcomes if o.succeeded])

    @property
    def failed(self) -> int:
        return len([o for o in self.outcomes if not o.succeeded and not o.skipped])

    @property
    def errors(self) -> Dict[int, str]:
        return {o.portfolio_id: o.error for o in self.outcomes if o.error}
