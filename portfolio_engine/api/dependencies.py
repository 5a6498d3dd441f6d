from fastapi import HTTPException, Request

from portfolio_engine.domain.services.portfolio_locks import PortfolioLockRegistry
from portfolio_engine.domain.services.snapshot_runner import SnapshotRunner

# Process-wide: requests for the same portfolio share one lock
portfolio_locks = PortfolioLockRegistry()


def get_portfolio_locks() -> PortfolioLockRegistry:
    return portfolio_locks


def get_snapshot_runner(request: Request) -> SnapshotRunner:
    runner = getattr(request.app.state, "snapshot_runner", None)
    if runner is None:
        raise HTTPException(status_code=503, detail="Snapshot runner not initialized")
    return runner
