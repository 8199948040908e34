# src/alert/queue.py
import asyncio
import logging

from src.alert.engine import TriggerEvent

logger = logging.getLogger(__name__)


class TriggerQueue:
    """evaluate 和推送之间的有界队列。

    满了就丢弃最旧的事件，publish 永远不会阻塞行情处理。
    被丢弃的提醒在库里仍然是 triggered，不会重复触发，只是少发一条通知。
    """

    def __init__(self, maxsize: int = 1000):
        if maxsize <= 0:
            raise ValueError("maxsize must be positive")
        self._queue: asyncio.Queue[TriggerEvent] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def publish(self, event: TriggerEvent) -> None:
        if self._queue.full():
            oldest = self._queue.get_nowait()
            self._queue.task_done()
            self.dropped += 1
            logger.warning(
                f"Trigger queue full, dropped oldest event for alert {oldest.alert_id}"
            )
        self._queue.put_nowait(event)

    async def get(self) -> TriggerEvent:
        return await self._queue.get()

    def task_done(self) -> None:
        self._queue.task_done()

    async def join(self) -> None:
        await self._queue.join()

    def qsize(self) -> int:
        return self._queue.qsize()
