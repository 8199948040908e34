# src/collector/binance_kline.py
import asyncio
import json
import logging
from collections.abc import Callable, Coroutine
from typing import Any

import websockets

from src.client.models import Interval
from src.storage.models import Tick

from .base import BaseCollector, FeedStatus

logger = logging.getLogger(__name__)

BINANCE_SPOT_WS = "wss://stream.binance.com:9443/ws"


class BinanceKlineStream(BaseCollector):
    def __init__(
        self,
        symbols: list[str],
        on_tick: Callable[[Tick], Coroutine[Any, Any, None]],
        interval: Interval | str = Interval.FIVE_MINUTES,
        reconnect_seconds: float = 5,
        on_status: Callable[[FeedStatus], None] | None = None,
        ws_url: str = BINANCE_SPOT_WS,
    ):
        super().__init__(symbols, on_tick, on_status)
        self.interval = Interval(interval)
        self.reconnect_seconds = reconnect_seconds
        self.ws_url = ws_url
        self.ws: Any = None

    def _stream_url(self) -> str:
        streams = [f"{s.lower()}@kline_{self.interval.value}" for s in self.symbols]
        return f"{self.ws_url}/{'/'.join(streams)}"

    async def connect(self) -> None:
        self.ws = await websockets.connect(self._stream_url())

    async def disconnect(self) -> None:
        if self.ws:
            await self.ws.close()
            self.ws = None

    def _parse_message(self, message: str) -> list[Tick]:
        try:
            data = json.loads(message)
            if data.get("e") != "kline":
                return []

            # 用 K 线开盘时间做时间戳，同一根 K 线的更新会被去重/覆盖
            kline = data["k"]
            return [
                Tick(
                    symbol=data["s"],
                    price=float(kline["c"]),
                    timestamp=int(kline["t"]),
                )
            ]
        except (AttributeError, KeyError, TypeError, ValueError):
            # 坏消息只丢弃这一条，不能让接收循环退出
            logger.warning(f"Failed to parse kline message: {message}")
            return []

    async def _run(self) -> None:
        while self.running:
            try:
                if self.ws is None:
                    await self.connect()
                message = await self.ws.recv()
            except asyncio.CancelledError:
                break
            except websockets.ConnectionClosed:
                logger.warning("Binance kline WS disconnected, reconnecting...")
                self.ws = None
                self._mark_failure()
                await asyncio.sleep(self.reconnect_seconds)
                continue
            except Exception as e:
                logger.error(f"Binance kline stream error: {e}")
                await self.disconnect()
                self._mark_failure()
                await asyncio.sleep(self.reconnect_seconds)
                continue

            await self._handle(message)
