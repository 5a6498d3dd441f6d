"""
YFinance Price Provider
Async-safe Yahoo Finance closing prices for snapshot valuation
"""

import asyncio
import os
import random
import time
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, Optional
import logging

import yfinance as yf

from portfolio_engine.config import settings

logger = logging.getLogger(__name__)


class YFinancePriceProvider:
    """
    Closing prices from Yahoo Finance.

    yfinance is blocking, so history() calls run in a worker thread. Results
    are cached per (symbol, date) for ``cache_ttl_seconds``.
    """

    def __init__(self, cache_ttl_seconds: Optional[int] = None, retries: int = 2):
        self.cache_ttl_seconds = (
            cache_ttl_seconds if cache_ttl_seconds is not None else settings.PRICE_CACHE_TTL_SECONDS
        )
        self.retries = retries
        self.symbol_mapping: Dict[str, str] = {}
        self._cache: Dict[str, tuple[float, Decimal]] = {}
        self._apply_symbol_overrides()

    def _apply_symbol_overrides(self) -> None:
        """
        Apply Yahoo symbol mapping overrides from env.

        Format: YF_SYMBOL_OVERRIDES="VFF=VFF.VN,FUEVFVND=FUEVFVND.VN"
        """
        raw = os.getenv("YF_SYMBOL_OVERRIDES", "").strip()
        if not raw:
            return
        for pair in raw.split(","):
            pair = pair.strip()
            if not pair or "=" not in pair:
                continue
            key, value = pair.split("=", 1)
            key = key.strip().upper()
            value = value.strip()
            if key and value:
                self.symbol_mapping[key] = value

    async def _history(self, ticker: yf.Ticker, **kwargs):
        """
        Async-safe wrapper around yfinance history()
        """
        return await asyncio.to_thread(ticker.history, **kwargs)

    async def _history_with_retry(self, ticker: yf.Ticker, **kwargs):
        """
        Retry wrapper around history() to handle transient failures.
        """
        for attempt in range(self.retries + 1):
            try:
                return await self._history(ticker, **kwargs)
            except Exception:
                if attempt == self.retries:
                    raise
                await asyncio.sleep(0.4 * (2 ** attempt) + random.random() * 0.2)

    def _cache_get(self, key: str) -> Optional[Decimal]:
        cached = self._cache.get(key)
        if not cached:
            return None
        ts, value = cached
        if time.time() - ts > self.cache_ttl_seconds:
            self._cache.pop(key, None)
            return None
        return value

    def _cache_set(self, key: str, value: Decimal) -> None:
        now = time.time()
        expired = [k for k, (ts, _) in self._cache.items() if now - ts > self.cache_ttl_seconds]
        for k in expired:
            del self._cache[k]
        self._cache[key] = (now, value)

    async def get_price(self, symbol: str, as_of: date) -> Optional[Decimal]:
        """
        Close on ``as_of``, falling back to the last close in the prior week.

        Returns None when Yahoo has no data; network errors propagate so the
        caller can count the asset as failed.
        """
        cache_key = f"{symbol}:{as_of.isoformat()}"
        cached = self._cache_get(cache_key)
        if cached is not None:
            return cached

        yf_symbol = self.symbol_mapping.get(symbol.upper(), symbol)
        ticker = yf.Ticker(yf_symbol)
        hist = await self._history_with_retry(
            ticker,
            start=as_of - timedelta(days=7),
            end=as_of + timedelta(days=1),
            interval="1d",
            auto_adjust=False,
        )

        if hist is None or hist.empty:
            logger.warning("⚠️ No price history for %s (%s) up to %s", symbol, yf_symbol, as_of)
            return None

        hist.index = hist.index.date
        closes = hist["Close"].dropna()
        if closes.empty:
            return None
        close = float(closes.loc[as_of]) if as_of in closes.index else float(closes.iloc[-1])

        price = Decimal(str(close)).quantize(Decimal("0.000001"))
        self._cache_set(cache_key, price)
        return price
