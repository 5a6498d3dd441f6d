"""
Fund API Routes
Fund conversion, subscriptions, redemptions, NAV and investor holdings
"""

import logging
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_engine.api.dependencies import get_portfolio_locks
from portfolio_engine.api.errors import to_http_exception
from portfolio_engine.domain.exceptions import PortfolioEngineError
from portfolio_engine.domain.schemas.fund import (
    HoldingDetailResponse,
    HoldingResponse,
    HoldingSummaryResponse,
    HoldingTransactionResponse,
    NavRecalculationRequest,
    NavResponse,
    RedeemRequest,
    SubscribeRequest,
    UnitTransactionResponse,
)
from portfolio_engine.domain.schemas.portfolio import PortfolioResponse
from portfolio_engine.domain.services.fund_unit_accounting import FundUnitAccounting
from portfolio_engine.domain.services.portfolio_locks import PortfolioLockRegistry
from portfolio_engine.infrastructure.db.database import get_db

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/{portfolio_id}/convert", response_model=PortfolioResponse)
async def convert_to_fund(
    portfolio_id: int,
    db: AsyncSession = Depends(get_db),
    locks: PortfolioLockRegistry = Depends(get_portfolio_locks),
):
    try:
        portfolio = await FundUnitAccounting(db, locks).convert_to_fund(portfolio_id)
    except PortfolioEngineError as e:
        logger.warning("⚠️ Fund conversion failed for portfolio %s: %s", portfolio_id, e)
        raise to_http_exception(e)
    return PortfolioResponse.model_validate(portfolio)


@router.post("/{portfolio_id}/subscribe", response_model=UnitTransactionResponse, status_code=201)
async def subscribe(
    portfolio_id: int,
    request: SubscribeRequest,
    db: AsyncSession = Depends(get_db),
    locks: PortfolioLockRegistry = Depends(get_portfolio_locks),
):
    """
    Issue fund units to an investor at the current NAV.

    Records a SUBSCRIBE cash flow linked to the unit transaction.
    """
    logger.info("📥 Subscription request | portfolio=%s | investor=%s", portfolio_id, request.investor)
    try:
        result = await FundUnitAccounting(db, locks).subscribe(
            portfolio_id, request.investor, request.amount, request.executed_at
        )
    except PortfolioEngineError as e:
        logger.warning("⚠️ Subscription rejected: %s", e)
        raise to_http_exception(e)
    return UnitTransactionResponse.model_validate(result)


@router.post("/holdings/{holding_id}/redeem", response_model=UnitTransactionResponse, status_code=201)
async def redeem(
    holding_id: int,
    request: RedeemRequest,
    db: AsyncSession = Depends(get_db),
    locks: PortfolioLockRegistry = Depends(get_portfolio_locks),
):
    """Cancel units of a holding and pay out units x NAV"""
    try:
        result = await FundUnitAccounting(db, locks).redeem_holding(holding_id, request.units, request.executed_at)
    except PortfolioEngineError as e:
        logger.warning("⚠️ Redemption rejected for holding %s: %s", holding_id, e)
        raise to_http_exception(e)
    return UnitTransactionResponse.model_validate(result)


@router.get("/holdings/{holding_id}", response_model=HoldingDetailResponse)
async def get_holding(
    holding_id: int,
    db: AsyncSession = Depends(get_db),
    locks: PortfolioLockRegistry = Depends(get_portfolio_locks),
):
    try:
        detail = await FundUnitAccounting(db, locks).holding_detail(holding_id)
    except PortfolioEngineError as e:
        raise to_http_exception(e)

    transactions = [
        HoldingTransactionResponse(
            transaction_id=tx.id,
            transaction_type=tx.transaction_type,
            units=abs(tx.units_delta),
            nav_per_unit=tx.nav_per_unit,
            amount=tx.amount,
            executed_at=tx.executed_at,
            cash_flow_id=flow.id if flow is not None else None,
            cash_flow_type=flow.flow_type if flow is not None else None,
            cash_flow_amount=flow.amount if flow is not None else None,
        )
        for tx, flow in detail.entries
    ]
    return HoldingDetailResponse(
        holding=HoldingResponse.model_validate(detail.holding),
        nav_per_unit=detail.nav_per_unit,
        transactions=transactions,
        summary=HoldingSummaryResponse.model_validate(detail.summary),
    )


@router.post("/{portfolio_id}/nav", response_model=NavResponse)
async def recalculate_nav(
    portfolio_id: int,
    request: NavRecalculationRequest,
    db: AsyncSession = Depends(get_db),
    locks: PortfolioLockRegistry = Depends(get_portfolio_locks),
):
    accounting = FundUnitAccounting(db, locks)
    try:
        nav = await accounting.recalculate_nav(portfolio_id, request.market_value, request.as_of)
        portfolio = await accounting.portfolios.get(portfolio_id)
    except PortfolioEngineError as e:
        raise to_http_exception(e)
    return NavResponse(
        portfolio_id=portfolio_id,
        nav_per_unit=nav,
        total_outstanding_units=portfolio.total_outstanding_units,
        last_nav_date=portfolio.last_nav_date,
    )


@router.get("/{portfolio_id}/investors", response_model=List[HoldingResponse])
async def list_investors(
    portfolio_id: int,
    db: AsyncSession = Depends(get_db),
    locks: PortfolioLockRegistry = Depends(get_portfolio_locks),
):
    try:
        holdings = await FundUnitAccounting(db, locks).fund_investors(portfolio_id)
    except PortfolioEngineError as e:
        raise to_http_exception(e)
    return [HoldingResponse.model_validate(h) for h in holdings]
