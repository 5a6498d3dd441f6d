"""
Portfolio API Routes
Create and inspect portfolios
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_engine.domain.schemas.portfolio import PortfolioCreateRequest, PortfolioResponse
from portfolio_engine.infrastructure.db.database import get_db
from portfolio_engine.infrastructure.db.repositories.portfolio_repository import PortfolioRepository

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("", response_model=PortfolioResponse, status_code=201)
async def create_portfolio(request: PortfolioCreateRequest, db: AsyncSession = Depends(get_db)):
    name = request.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Portfolio name is required")
    portfolio = await PortfolioRepository(db).create(name)
    await db.commit()
    logger.info("✅ Portfolio created | id=%s | name=%s", portfolio.id, portfolio.name)
    return PortfolioResponse.model_validate(portfolio)


@router.get("/{portfolio_id}", response_model=PortfolioResponse)
async def get_portfolio(portfolio_id: int, db: AsyncSession = Depends(get_db)):
    portfolio = await PortfolioRepository(db).get(portfolio_id)
    if portfolio is None:
        raise HTTPException(status_code=404, detail=f"Portfolio {portfolio_id} not found")
    return PortfolioResponse.model_validate(portfolio)
