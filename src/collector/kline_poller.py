# src/collector/kline_poller.py
import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from src.client.binance import BinanceClient
from src.client.models import Interval, Kline
from src.storage.models import Tick

from .base import BaseCollector, FeedStatus

logger = logging.getLogger(__name__)


class KlinePoller(BaseCollector):
    """定时拉取最新一根 K 线，作为没有 websocket 时的行情源"""

    def __init__(
        self,
        client: BinanceClient,
        symbols: list[str],
        on_tick: Callable[[Tick], Coroutine[Any, Any, None]],
        interval: Interval | str = Interval.FIVE_MINUTES,
        poll_seconds: float = 15,
        on_status: Callable[[FeedStatus], None] | None = None,
    ):
        super().__init__(symbols, on_tick, on_status)
        self.client = client
        self.interval = Interval(interval)
        self.poll_seconds = poll_seconds

    async def connect(self) -> None:
        # session 由外部持有
        await self.client.init()

    async def disconnect(self) -> None:
        pass

    def _parse_message(self, message: list[tuple[str, list[Kline]]]) -> list[Tick]:
        return [
            Tick(symbol=symbol, price=klines[-1].close, timestamp=klines[-1].open_time)
            for symbol, klines in message
            if klines
        ]

    async def fetch_latest(self) -> list[tuple[str, list[Kline]]]:
        results = await asyncio.gather(
            *(self.client.get_klines(s, self.interval, limit=1) for s in self.symbols),
            return_exceptions=True,
        )

        batch: list[tuple[str, list[Kline]]] = []
        errors: list[BaseException] = []
        for symbol, result in zip(self.symbols, results):
            if isinstance(result, BaseException):
                logger.warning(f"Failed to poll klines for {symbol}: {result}")
                errors.append(result)
            else:
                batch.append((symbol, result))

        if errors and not batch:
            raise errors[0]
        return batch

    async def _run(self) -> None:
        await self.connect()

        while self.running:
            try:
                batch = await self.fetch_latest()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Kline poll error: {e}")
                self._mark_failure()
            else:
                await self._handle(batch)

            await asyncio.sleep(self.poll_seconds)
