from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from portfolio_engine.domain.models import CashFlowType, FundTransactionType


class SubscribeRequest(BaseModel):
    investor: str = Field(..., min_length=1, max_length=200)
    amount: Decimal
    executed_at: Optional[datetime] = None


class RedeemRequest(BaseModel):
    units: Decimal
    executed_at: Optional[datetime] = None


class NavRecalculationRequest(BaseModel):
    market_value: Decimal
    as_of: Optional[datetime] = None


class NavResponse(BaseModel):
    portfolio_id: int
    nav_per_unit: Decimal
    total_outstanding_units: Decimal
    last_nav_date: Optional[datetime] = None


class UnitTransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

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


class HoldingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    portfolio_id: int
    investor: str
    units_held: Decimal
    avg_cost_per_unit: Decimal
    total_investment: Decimal
    realized_pl: Decimal


class HoldingTransactionResponse(BaseModel):
    transaction_id: int
    transaction_type: FundTransactionType
    units: Decimal
    nav_per_unit: Decimal
    amount: Decimal
    executed_at: datetime
    cash_flow_id: Optional[int] = None
    cash_flow_type: Optional[CashFlowType] = None
    cash_flow_amount: Optional[Decimal] = None


class HoldingSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

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


class HoldingDetailResponse(BaseModel):
    holding: HoldingResponse
    nav_per_unit: Decimal
    transactions: List[HoldingTransactionResponse]
    summary: HoldingSummaryResponse


class FundResetResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    portfolio_id: int
    portfolio_name: str
    cash_flows_deleted: int
    transactions_deleted: int
    holdings_deleted: int
    cash_balance: Decimal


class FundResetRequest(BaseModel):
    portfolio_id: Optional[int] = None
