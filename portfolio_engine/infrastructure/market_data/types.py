"""
External input protocols for type hints.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import List, Optional, Protocol

from portfolio_engine.domain.models import Position


class PriceProvider(Protocol):
    async def get_price(self, symbol: str, as_of: date) -> Optional[Decimal]:
        """Closing price on ``as_of`` (or the last close before it); None when unknown"""
        ...


class PositionProvider(Protocol):
    async def get_positions(self, portfolio_id: int, as_of: date) -> List[Position]:
        ...
