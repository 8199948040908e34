# src/collector/price_fetcher.py
import logging
import time
from typing import Any

import ccxt.async_support as ccxt

from src.storage.models import Tick

logger = logging.getLogger(__name__)

QUOTE_ASSETS = ("FDUSD", "USDT", "USDC", "BUSD", "TUSD", "BTC", "ETH", "BNB", "EUR", "TRY")


def to_unified_symbol(symbol: str) -> str | None:
    """BTCUSDT -> BTC/USDT"""
    for quote in QUOTE_ASSETS:
        if symbol.endswith(quote) and len(symbol) > len(quote):
            return f"{symbol[: -len(quote)]}/{quote}"
    return None


class PriceFetcher:
    """批量获取现货最新价，给定时巡检用"""

    def __init__(self) -> None:
        self.exchange: ccxt.binance | None = None

    async def init(self) -> None:
        self.exchange = ccxt.binance()

    async def close(self) -> None:
        if self.exchange:
            await self.exchange.close()

    async def fetch_prices(self, symbols: list[str]) -> list[Tick]:
        assert self.exchange is not None

        unified: dict[str, str] = {}
        for symbol in symbols:
            market = to_unified_symbol(symbol)
            if market is None:
                logger.warning(f"Unknown quote asset for {symbol}, skipping")
                continue
            unified[market] = symbol

        if not unified:
            return []

        tickers: dict[str, Any] = await self.exchange.fetch_tickers(list(unified))
        now = int(time.time() * 1000)

        ticks: list[Tick] = []
        for market, ticker in tickers.items():
            symbol = unified.get(market)
            price = ticker.get("last")
            if symbol is None or price is None:
                continue
            ticks.append(
                Tick(symbol=symbol, price=float(price), timestamp=ticker.get("timestamp") or now)
            )
        return ticks
