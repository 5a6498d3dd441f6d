"""
Position Engine

Average-cost positions from trade history. Fees and taxes are added to the
cost of buys and deducted from the proceeds of sells.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Protocol

from portfolio_engine.domain.exceptions import ValidationError
from portfolio_engine.domain.models import Position, TradeSide
from portfolio_engine.utils import numbers
from portfolio_engine.utils.numbers import ZERO


class TradeLike(Protocol):
    side: TradeSide
    quantity: Decimal
    price: Decimal
    fee: Decimal
    tax: Decimal


@dataclass
class _Lot:
    quantity: Decimal = ZERO
    cost: Decimal = ZERO
    realized: Decimal = ZERO

    @property
    def avg_cost(self) -> Decimal:
        return self.cost / self.quantity if self.quantity > ZERO else ZERO


def build_position(
    asset_id: int,
    symbol: str,
    trades: Iterable[TradeLike],
    asset_group: str = "UNGROUPED",
) -> Position:
    """
    Fold trades (in execution order) into one average-cost position.

    Raises:
        ValidationError: a sell exceeds the quantity held at that point
    """
    lot = _Lot()
    for trade in trades:
        quantity = Decimal(trade.quantity)
        price = Decimal(trade.price)
        charges = Decimal(trade.fee or 0) + Decimal(trade.tax or 0)

        if trade.side == TradeSide.BUY:
            lot.cost += quantity * price + charges
            lot.quantity += quantity
        else:
            if quantity > lot.quantity:
                raise ValidationError(
                    f"{symbol}: sell of {quantity} exceeds held quantity {lot.quantity}"
                )
            avg_cost = lot.avg_cost
            lot.realized += quantity * price - charges - quantity * avg_cost
            lot.cost -= quantity * avg_cost
            lot.quantity -= quantity
            if lot.quantity == ZERO:
                lot.cost = ZERO

    return Position(
        asset_id=asset_id,
        symbol=symbol,
        quantity=numbers.units(lot.quantity),
        cost_basis=numbers.money(lot.cost),
        avg_cost=numbers.nav(lot.avg_cost),
        realized_pl=numbers.money(lot.realized),
        asset_group=asset_group,
    )


def positions_from_trades(rows: Iterable[tuple]) -> List[Position]:
    """
    Group ``(trade, asset)`` rows by asset and build one position each.

    Fully closed positions are kept (they still carry realized P&L).
    """
    grouped = {}
    for trade, asset in rows:
        entry = grouped.setdefault(asset.id, (asset, []))
        entry[1].append(trade)

    return [
        build_position(asset.id, asset.symbol, trades, asset.asset_group)
        for asset, trades in grouped.values()
    ]
