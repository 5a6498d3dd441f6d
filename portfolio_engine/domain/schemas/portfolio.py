from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from portfolio_engine.domain.models import CashFlowType


class PortfolioCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)


class PortfolioResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    is_fund: bool
    cash_balance: Decimal
    total_outstanding_units: Decimal
    nav_per_unit: Decimal
    last_nav_date: Optional[datetime] = None
    number_of_investors: int


class CashFlowCreateRequest(BaseModel):
    flow_type: CashFlowType
    amount: Decimal
    flow_date: Optional[datetime] = None
    description: Optional[str] = Field(None, max_length=1000)


class CashFlowResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    portfolio_id: int
    flow_type: CashFlowType
    amount: Decimal
    flow_date: datetime
    description: Optional[str] = None
    fund_transaction_id: Optional[int] = None


class CashFlowListResponse(BaseModel):
    portfolio_id: int
    total: int
    total_inflows: Decimal
    total_outflows: Decimal
    net_cash_flow: Decimal
    cash_flows: List[CashFlowResponse]


class CashBalanceResponse(BaseModel):
    portfolio_id: int
    cash_balance: Decimal
