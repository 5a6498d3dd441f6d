import asyncio
import os
from datetime import date, datetime
from decimal import Decimal
from typing import AsyncGenerator, Dict, Iterable, List, Optional

# The app engine is never connected in tests; keep it off the production URL
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import pytest
from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from portfolio_engine.domain.models import Position, TradeSide
from portfolio_engine.domain.services.portfolio_locks import PortfolioLockRegistry
from portfolio_engine.domain.services.snapshot_runner import SnapshotRunner
from portfolio_engine.infrastructure.db import models  # noqa: F401
from portfolio_engine.infrastructure.db.database import Base, get_db
from portfolio_engine.infrastructure.db.repositories.asset_repository import AssetRepository, TradeRepository
from portfolio_engine.infrastructure.db.repositories.portfolio_repository import PortfolioRepository
from portfolio_engine.main import include_routers


class StubPriceProvider:
    """Prices keyed by symbol or (symbol, date); listed symbols raise"""

    def __init__(self, prices: Optional[Dict] = None, failing: Iterable[str] = (), delay: float = 0.0):
        self.prices = dict(prices or {})
        self.failing = set(failing)
        self.delay = delay
        self.calls: List[str] = []

    async def get_price(self, symbol: str, as_of: date) -> Optional[Decimal]:
        self.calls.append(symbol)
        if self.delay:
            await asyncio.sleep(self.delay)
        if symbol in self.failing:
            raise ConnectionError(f"price feed unavailable for {symbol}")
        price = self.prices.get((symbol, as_of), self.prices.get(symbol))
        return Decimal(str(price)) if price is not None else None


class StubPositionProvider:
    def __init__(self, positions: Optional[Dict[int, List[Position]]] = None):
        self.positions = dict(positions or {})

    async def get_positions(self, portfolio_id: int, as_of: date) -> List[Position]:
        return list(self.positions.get(portfolio_id, []))


def make_position(asset, quantity, cost_basis, realized_pl="0") -> Position:
    quantity = Decimal(str(quantity))
    cost_basis = Decimal(str(cost_basis))
    return Position(
        asset_id=asset.id,
        symbol=asset.symbol,
        quantity=quantity,
        cost_basis=cost_basis,
        avg_cost=(cost_basis / quantity).quantize(Decimal("0.000001")) if quantity else Decimal("0"),
        realized_pl=Decimal(str(realized_pl)),
        asset_group=asset.asset_group,
    )


@pytest.fixture()
async def db_engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        future=True,
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture()
def locks() -> PortfolioLockRegistry:
    return PortfolioLockRegistry()


@pytest.fixture()
def make_portfolio(db_session):
    async def _make(name: str = "Growth Portfolio"):
        portfolio = await PortfolioRepository(db_session).create(name)
        await db_session.commit()
        return portfolio

    return _make


@pytest.fixture()
def make_asset(db_session):
    async def _make(symbol: str, asset_group: str = "EQUITY", name: Optional[str] = None):
        asset = await AssetRepository(db_session).create(symbol, name=name, asset_group=asset_group)
        await db_session.commit()
        return asset

    return _make


@pytest.fixture()
def make_trade(db_session):
    async def _make(portfolio, asset, side: TradeSide, quantity, price, trade_date: datetime, fee="0", tax="0"):
        trade = await TradeRepository(db_session).add(
            portfolio_id=portfolio.id,
            asset_id=asset.id,
            side=side,
            quantity=Decimal(str(quantity)),
            price=Decimal(str(price)),
            trade_date=trade_date,
            fee=Decimal(str(fee)),
            tax=Decimal(str(tax)),
        )
        await db_session.commit()
        return trade

    return _make


@pytest.fixture()
def price_provider() -> StubPriceProvider:
    return StubPriceProvider()


@pytest.fixture()
def position_provider() -> StubPositionProvider:
    return StubPositionProvider()


@pytest.fixture()
def snapshot_runner(session_factory, price_provider, position_provider) -> SnapshotRunner:
    return SnapshotRunner(
        session_factory,
        price_provider,
        position_provider,
        max_concurrency=1,
        asset_concurrency=4,
        lookup_timeout=2.0,
    )


@pytest.fixture()
async def app(db_session, snapshot_runner) -> FastAPI:
    app = include_routers(FastAPI())

    async def override_get_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    app.state.snapshot_runner = snapshot_runner
    app.state.snapshot_scheduler = None
    return app


@pytest.fixture()
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture(name="make_position")
def make_position_fixture():
    return make_position
