from dataclasses import dataclass
from decimal import Decimal

import pytest

from portfolio_engine.domain.exceptions import ValidationError
from portfolio_engine.domain.models import TradeSide
from portfolio_engine.domain.services.position_engine import build_position, positions_from_trades


@dataclass
class Trade:
    side: TradeSide
    quantity: Decimal
    price: Decimal
    fee: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")


@dataclass
class Asset:
    id: int
    symbol: str
    asset_group: str = "EQUITY"


def _trade(side, quantity, price, fee="0", tax="0"):
    return Trade(side, Decimal(quantity), Decimal(price), Decimal(fee), Decimal(tax))


def test_buys_average_cost_with_fees():
    position = build_position(1, "VFF", [
        _trade(TradeSide.BUY, "100", "10", fee="5"),
        _trade(TradeSide.BUY, "100", "12", fee="5"),
    ])

    assert position.quantity == Decimal("200")
    assert position.cost_basis == Decimal("2210.0000")
    assert position.avg_cost == Decimal("11.050000")
    assert position.realized_pl == Decimal("0.0000")


def test_sell_realizes_pl_net_of_charges():
    position = build_position(1, "VFF", [
        _trade(TradeSide.BUY, "100", "10"),
        _trade(TradeSide.SELL, "40", "15", fee="2", tax="3"),
    ])

    assert position.quantity == Decimal("60")
    assert position.cost_basis == Decimal("600.0000")
    assert position.avg_cost == Decimal("10.000000")
    # 40 * 15 - 5 - 40 * 10
    assert position.realized_pl == Decimal("195.0000")


def test_fully_closed_position_keeps_realized_pl():
    position = build_position(1, "VFF", [
        _trade(TradeSide.BUY, "10", "10"),
        _trade(TradeSide.SELL, "10", "8"),
    ])

    assert position.quantity == Decimal("0")
    assert position.cost_basis == Decimal("0")
    assert position.realized_pl == Decimal("-20.0000")
    assert not position.is_active


def test_oversell_is_rejected():
    with pytest.raises(ValidationError):
        build_position(1, "VFF", [
            _trade(TradeSide.BUY, "10", "10"),
            _trade(TradeSide.SELL, "11", "10"),
        ])


def test_positions_grouped_per_asset():
    vff, vnm = Asset(1, "VFF", "FUND"), Asset(2, "VNM")
    rows = [
        (_trade(TradeSide.BUY, "10", "35"), vff),
        (_trade(TradeSide.BUY, "5", "70"), vnm),
        (_trade(TradeSide.BUY, "10", "33"), vff),
    ]

    positions = {p.symbol: p for p in positions_from_trades(rows)}

    assert set(positions) == {"VFF", "VNM"}
    assert positions["VFF"].quantity == Decimal("20")
    assert positions["VFF"].asset_group == "FUND"
    assert positions["VNM"].cost_basis == Decimal("350.0000")
