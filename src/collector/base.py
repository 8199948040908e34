# src/collector/base.py
import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Coroutine
from enum import Enum
from typing import Any

from src.storage.models import Tick

logger = logging.getLogger(__name__)


class FeedStatus(Enum):
    CONNECTING = "connecting"
    LIVE = "live"
    DEGRADED = "degraded"  # 断线，但还有上一次的价格
    OFFLINE = "offline"  # 从来没拿到过数据


class TickDeduplicator:
    """同一 symbol 同一时间戳的 tick 只往下游送一次。

    未收盘 K 线被后续轮询修正时（同一时间戳、价格不同），新值覆盖旧值并继续下发；
    完全相同的重复 tick 和比上一次更旧的 tick 直接丢弃。
    """

    def __init__(self) -> None:
        self._last: dict[str, Tick] = {}

    def accept(self, tick: Tick) -> bool:
        last = self._last.get(tick.symbol)
        if last is not None:
            if tick.timestamp < last.timestamp:
                return False
            if tick.timestamp == last.timestamp and tick.price == last.price:
                return False
        self._last[tick.symbol] = tick
        return True

    def latest(self, symbol: str) -> Tick | None:
        return self._last.get(symbol)

    def latest_prices(self) -> dict[str, float]:
        return {symbol: tick.price for symbol, tick in self._last.items()}

    def has_data(self) -> bool:
        return bool(self._last)


class BaseCollector(ABC):
    def __init__(
        self,
        symbols: list[str],
        on_tick: Callable[[Tick], Coroutine[Any, Any, None]],
        on_status: Callable[[FeedStatus], None] | None = None,
    ):
        self.symbols = symbols
        self.on_tick = on_tick
        self.on_status = on_status
        self.status = FeedStatus.CONNECTING
        self.dedup = TickDeduplicator()
        self.running = False
        self._task: asyncio.Task[None] | None = None
        self._inflight: asyncio.Future[None] | None = None

    @abstractmethod
    async def connect(self) -> None:
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        pass

    @abstractmethod
    def _parse_message(self, message: Any) -> list[Tick]:
        pass

    @abstractmethod
    async def _run(self) -> None:
        pass

    def _set_status(self, status: FeedStatus) -> None:
        if status is self.status:
            return
        previous, self.status = self.status, status
        if status is FeedStatus.LIVE:
            logger.info(f"{self.__class__.__name__} feed live (was {previous.value})")
        else:
            logger.warning(f"{self.__class__.__name__} feed {status.value}")
        if self.on_status:
            self.on_status(status)

    def _mark_failure(self) -> None:
        self._set_status(FeedStatus.DEGRADED if self.dedup.has_data() else FeedStatus.OFFLINE)

    async def _process_message(self, message: Any) -> None:
        ticks = self._parse_message(message)
        if ticks:
            self._set_status(FeedStatus.LIVE)
        for tick in ticks:
            if not self.dedup.accept(tick):
                continue
            try:
                await self.on_tick(tick)
            except Exception as e:
                logger.error(f"Failed to evaluate tick {tick.symbol} {tick.price}: {e}")

    async def _handle(self, message: Any) -> None:
        # stop() 取消的是等待行情的地方，正在处理的 tick 要跑完
        self._inflight = asyncio.ensure_future(self._process_message(message))
        await asyncio.shield(self._inflight)

    async def start(self) -> None:
        self.running = True
        self._task = asyncio.create_task(self._run())
        logger.info(f"{self.__class__.__name__} started for {', '.join(self.symbols)}")

    async def stop(self) -> None:
        self.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"{self.__class__.__name__} task ended with error: {e}")
        if self._inflight and not self._inflight.done():
            await self._inflight
        await self.disconnect()
        logger.info(f"{self.__class__.__name__} stopped")
