"""
Per-portfolio unit of work

Every ledger and fund mutation runs inside ``portfolio_transaction``: the
portfolio lock is held for the whole read-modify-write and the session is
committed (or rolled back) before the lock is released.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio_engine.domain.exceptions import PersistenceError
from portfolio_engine.domain.services.portfolio_locks import PortfolioLockRegistry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def portfolio_transaction(
    session: AsyncSession,
    locks: PortfolioLockRegistry,
    portfolio_id: int,
) -> AsyncIterator[AsyncSession]:
    async with locks.lock_for(portfolio_id):
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.error("❌ Portfolio %s write failed: %s", portfolio_id, exc)
            raise PersistenceError(f"Storage error for portfolio {portfolio_id}") from exc
        except Exception:
            await session.rollback()
            raise
