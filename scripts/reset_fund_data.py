"""
Reset fund data

Deletes fund-generated cash flows, unit transactions and investor holdings,
recomputes cash balances and returns the portfolios to non-fund mode.

    python scripts/reset_fund_data.py                  # every fund portfolio
    python scripts/reset_fund_data.py --portfolio-id 3
"""

import argparse
import asyncio
import logging

from portfolio_engine.config import settings
from portfolio_engine.core.logging import setup_logging
from portfolio_engine.domain.exceptions import PortfolioEngineError
from portfolio_engine.domain.services.fund_unit_accounting import FundUnitAccounting
from portfolio_engine.domain.services.portfolio_locks import PortfolioLockRegistry
from portfolio_engine.infrastructure.db.database import async_session_factory, close_db

logger = logging.getLogger(__name__)


async def reset(portfolio_id=None):
    async with async_session_factory() as session:
        accounting = FundUnitAccounting(session, PortfolioLockRegistry())
        if portfolio_id is not None:
            return [await accounting.reset_fund(portfolio_id)]
        return await accounting.reset_all_funds()


async def main(portfolio_id=None) -> int:
    try:
        results = await reset(portfolio_id)
    except PortfolioEngineError as e:
        logger.error(f"❌ Reset failed: {e}")
        return 1
    finally:
        await close_db()

    if not results:
        print("No fund portfolios found - nothing to reset.")
        return 0

    for r in results:
        print(f"\n📁 {r.portfolio_name} (id={r.portfolio_id})")
        print(f"   Cash flows deleted:   {r.cash_flows_deleted}")
        print(f"   Transactions deleted: {r.transactions_deleted}")
        print(f"   Holdings deleted:     {r.holdings_deleted}")
        print(f"   Cash balance now:     {r.cash_balance}")

    print("\nNext steps:")
    print("  1. Convert the portfolio back to a fund:  POST /api/v1/funds/{id}/convert")
    print("  2. Re-enter subscriptions:                POST /api/v1/funds/{id}/subscribe")
    print("  3. Re-run snapshots for affected dates:   POST /api/v1/snapshots/run")
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Reset fund data for one or all fund portfolios")
    parser.add_argument("--portfolio-id", type=int, default=None, help="Only reset this portfolio")
    args = parser.parse_args()

    setup_logging(settings.LOG_LEVEL)
    raise SystemExit(asyncio.run(main(args.portfolio_id)))
