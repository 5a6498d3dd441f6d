from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from portfolio_engine.domain.models import ExecutionStatus, ExecutionType, Granularity


class SnapshotRunRequest(BaseModel):
    portfolio_id: Optional[int] = None
    snapshot_date: Optional[date] = None
    granularity: Granularity = Granularity.DAILY


class SnapshotRunResponse(BaseModel):
    execution_id: str
    status: ExecutionStatus
    snapshot_date: date


class AllocationSnapshotResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    portfolio_id: int
    asset_id: int
    asset_symbol: str
    snapshot_date: date
    granularity: Granularity
    quantity: Decimal
    current_price: Decimal
    current_value: Decimal
    cost_basis: Decimal
    avg_cost: Decimal
    realized_pl: Decimal
    unrealized_pl: Decimal
    total_pl: Decimal
    allocation_percentage: Decimal
    portfolio_total_value: Decimal
    return_percentage: Decimal
    daily_return: Decimal
    cumulative_return: Decimal
    previous_value: Optional[Decimal] = None
    previous_cumulative_return: Optional[Decimal] = None
    is_active: bool


class ExecutionRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    execution_id: str
    parent_execution_id: Optional[str] = None
    portfolio_id: Optional[int] = None
    portfolio_name: Optional[str] = None
    status: ExecutionStatus
    execution_type: ExecutionType
    snapshot_date: Optional[date] = None
    granularity: Optional[Granularity] = None
    started_at: datetime
    completed_at: Optional[datetime] = None
    total_snapshots: int
    successful_snapshots: int
    failed_snapshots: int
    execution_time_ms: Optional[int] = None
    error_message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="execution_metadata")
    created_by: str
    cron_expression: Optional[str] = None
    timezone: Optional[str] = None
    created_at: datetime


class ExecutionDetailResponse(ExecutionRecordResponse):
    children: List[ExecutionRecordResponse] = []


class ExecutionListResponse(BaseModel):
    total: int
    limit: int
    offset: int
    executions: List[ExecutionRecordResponse]


class ExecutionStatsResponse(BaseModel):
    total_executions: int
    completed: int
    failed: int
    cancelled: int
    running: int
    success_rate: float
    average_execution_time_ms: Optional[float] = None
    total_snapshots: int
    successful_snapshots: int
    failed_snapshots: int


class CancelRequest(BaseModel):
    reason: str = "cancelled by operator"


class TrackingCleanupRequest(BaseModel):
    days_to_keep: Optional[int] = Field(None, ge=0)
