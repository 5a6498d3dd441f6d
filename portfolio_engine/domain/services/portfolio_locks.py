import asyncio
from typing import Dict


class PortfolioLockRegistry:
    """
    One asyncio.Lock per portfolio id.

    Serializes ledger and fund mutations of the same portfolio inside this
    process; the row lock taken by the repositories covers other processes.
    """

    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = {}

    def lock_for(self, portfolio_id: int) -> asyncio.Lock:
        lock = self._locks.get(portfolio_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[portfolio_id] = lock
        return lock
