from datetime import date
from decimal import Decimal

import pandas as pd
import pytest

from portfolio_engine.infrastructure.market_data import yfinance_provider
from portfolio_engine.infrastructure.market_data.yfinance_provider import YFinancePriceProvider


class FakeTicker:
    frames = {}
    requested = []

    def __init__(self, symbol):
        self.symbol = symbol
        FakeTicker.requested.append(symbol)

    def history(self, **kwargs):
        return FakeTicker.frames.get(self.symbol, pd.DataFrame())


@pytest.fixture(autouse=True)
def fake_yfinance(monkeypatch):
    FakeTicker.frames = {}
    FakeTicker.requested = []
    monkeypatch.setattr(yfinance_provider.yf, "Ticker", FakeTicker)
    return FakeTicker


def _closes(values):
    index = pd.DatetimeIndex(list(values.keys()))
    return pd.DataFrame({"Close": list(values.values())}, index=index)


async def test_close_on_requested_date():
    FakeTicker.frames["VFF"] = _closes({"2024-01-02": 35.0, "2024-01-03": 32.0})
    provider = YFinancePriceProvider(cache_ttl_seconds=60)

    assert await provider.get_price("VFF", date(2024, 1, 2)) == Decimal("35.000000")


async def test_falls_back_to_last_close_before_date():
    FakeTicker.frames["VFF"] = _closes({"2024-01-02": 35.0, "2024-01-03": 32.0})
    provider = YFinancePriceProvider(cache_ttl_seconds=60)

    assert await provider.get_price("VFF", date(2024, 1, 6)) == Decimal("32.000000")


async def test_no_history_returns_none():
    provider = YFinancePriceProvider(cache_ttl_seconds=60)
    assert await provider.get_price("UNKNOWN", date(2024, 1, 2)) is None


async def test_prices_are_cached():
    FakeTicker.frames["VFF"] = _closes({"2024-01-02": 35.0})
    provider = YFinancePriceProvider(cache_ttl_seconds=60)

    await provider.get_price("VFF", date(2024, 1, 2))
    await provider.get_price("VFF", date(2024, 1, 2))

    assert FakeTicker.requested == ["VFF"]


async def test_symbol_overrides_from_env(monkeypatch):
    monkeypatch.setenv("YF_SYMBOL_OVERRIDES", "VFF=VFF.VN")
    FakeTicker.frames["VFF.VN"] = _closes({"2024-01-02": 35.0})
    provider = YFinancePriceProvider(cache_ttl_seconds=60)

    assert await provider.get_price("vff", date(2024, 1, 2)) == Decimal("35.000000")
    assert FakeTicker.requested == ["VFF.VN"]


async def test_expired_prices_are_evicted(monkeypatch):
    FakeTicker.frames["VFF"] = _closes({"2024-01-02": 35.0, "2024-01-03": 32.0})
    provider = YFinancePriceProvider(cache_ttl_seconds=60)
    clock = {"now": 1000.0}
    monkeypatch.setattr(yfinance_provider.time, "time", lambda: clock["now"])

    await provider.get_price("VFF", date(2024, 1, 2))
    clock["now"] += 120
    await provider.get_price("VFF", date(2024, 1, 3))

    assert list(provider._cache) == ["VFF:2024-01-03"]

    await provider.get_price("VFF", date(2024, 1, 2))
    assert FakeTicker.requested == ["VFF", "VFF", "VFF"]
