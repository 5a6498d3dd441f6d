"""
Cash Flow API Routes
Record, list and delete ledger entries; recompute cash balances
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_engine.api.dependencies import get_portfolio_locks
from portfolio_engine.api.errors import to_http_exception
from portfolio_engine.domain.exceptions import PortfolioEngineError
from portfolio_engine.domain.schemas.portfolio import (
    CashBalanceResponse,
    CashFlowCreateRequest,
    CashFlowListResponse,
    CashFlowResponse,
)
from portfolio_engine.domain.services.cash_flow_ledger import CashFlowLedger
from portfolio_engine.domain.services.portfolio_locks import PortfolioLockRegistry
from portfolio_engine.infrastructure.db.database import get_db

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/portfolios/{portfolio_id}/cash-flows", response_model=CashFlowResponse, status_code=201)
async def record_cash_flow(
    portfolio_id: int,
    request: CashFlowCreateRequest,
    db: AsyncSession = Depends(get_db),
    locks: PortfolioLockRegistry = Depends(get_portfolio_locks),
):
    """
    Append a cash flow and apply it to the portfolio's cash balance.

    SUBSCRIBE / REDEEM flows are only created by the fund endpoints.
    """
    try:
        flow = await CashFlowLedger(db, locks).record(
            portfolio_id,
            request.flow_type,
            request.amount,
            timestamp=request.flow_date,
            description=request.description,
        )
    except PortfolioEngineError as e:
        logger.warning("⚠️ Cash flow rejected for portfolio %s: %s", portfolio_id, e)
        raise to_http_exception(e)
    return CashFlowResponse.model_validate(flow)


@router.get("/portfolios/{portfolio_id}/cash-flows", response_model=CashFlowListResponse)
async def list_cash_flows(
    portfolio_id: int,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    locks: PortfolioLockRegistry = Depends(get_portfolio_locks),
):
    ledger = CashFlowLedger(db, locks)
    try:
        flows, total = await ledger.list_flows(portfolio_id, start, end, limit, offset)
        summary = await ledger.summarize(portfolio_id, end)
    except PortfolioEngineError as e:
        raise to_http_exception(e)
    return CashFlowListResponse(
        portfolio_id=portfolio_id,
        total=total,
        total_inflows=summary.total_inflows,
        total_outflows=summary.total_outflows,
        net_cash_flow=summary.net_cash_flow,
        cash_flows=[CashFlowResponse.model_validate(f) for f in flows],
    )


@router.delete("/cash-flows/{cash_flow_id}", response_model=CashBalanceResponse)
async def delete_cash_flow(
    cash_flow_id: int,
    db: AsyncSession = Depends(get_db),
    locks: PortfolioLockRegistry = Depends(get_portfolio_locks),
):
    ledger = CashFlowLedger(db, locks)
    try:
        flow = await ledger.cash_flows.get(cash_flow_id)
        portfolio_id = flow.portfolio_id if flow is not None else None
        balance = await ledger.delete(cash_flow_id)
    except PortfolioEngineError as e:
        logger.warning("⚠️ Cash flow %s not deleted: %s", cash_flow_id, e)
        raise to_http_exception(e)
    return CashBalanceResponse(portfolio_id=portfolio_id, cash_balance=balance)


@router.post("/portfolios/{portfolio_id}/cash-balance/recompute", response_model=CashBalanceResponse)
async def recompute_cash_balance(
    portfolio_id: int,
    db: AsyncSession = Depends(get_db),
    locks: PortfolioLockRegistry = Depends(get_portfolio_locks),
):
    try:
        balance = await CashFlowLedger(db, locks).recompute_balance(portfolio_id)
    except PortfolioEngineError as e:
        raise to_http_exception(e)
    return CashBalanceResponse(portfolio_id=portfolio_id, cash_balance=balance)
