# src/alert/dispatcher.py
import asyncio
import logging
from enum import Enum

from src.alert.engine import TriggerEvent
from src.alert.queue import TriggerQueue
from src.notifier.base import NotificationChannel, SendResult
from src.notifier.formatter import build_payload
from src.storage.database import Database

logger = logging.getLogger(__name__)


class DeliveryOutcome(Enum):
    DELIVERED = "delivered"
    CHANNEL_INVALID = "channel_invalid"
    FAILED = "failed"
    NO_CHANNEL = "no_channel"


class NotificationDispatcher:
    """把 TriggerEvent 推送到通知渠道。

    自己不做重试：FAILED 的事件放进 retry 列表，由调用方（定时巡检）
    调 retry_failed 重新投递，超过 max_attempts 后放弃。
    无论投递结果如何都不会改动提醒的 triggered 状态。
    """

    def __init__(
        self,
        db: Database,
        channel: NotificationChannel,
        queue: TriggerQueue,
        max_attempts: int = 3,
    ):
        self.db = db
        self.channel = channel
        self.queue = queue
        self.max_attempts = max_attempts
        self._retry: list[tuple[TriggerEvent, int]] = []
        self._purge_lock = asyncio.Lock()

    @property
    def retry_backlog(self) -> int:
        return len(self._retry)

    async def deliver(self, event: TriggerEvent) -> DeliveryOutcome:
        if not event.channel_key:
            logger.info(f"No channel for alert {event.alert_id}, skipping notification")
            return DeliveryOutcome.NO_CHANNEL

        channel = await self.db.find_channel(event.channel_key)
        if channel is None:
            logger.info(
                f"Channel {event.channel_key} for alert {event.alert_id} not registered, "
                f"skipping notification"
            )
            return DeliveryOutcome.NO_CHANNEL

        result = await self.channel.send(channel.key, build_payload(event))

        if result is SendResult.OK:
            logger.info(f"Delivered alert {event.alert_id} to {channel.key}")
            return DeliveryOutcome.DELIVERED

        if result is SendResult.GONE:
            await self._purge(channel.key)
            return DeliveryOutcome.CHANNEL_INVALID

        logger.warning(f"Transient failure delivering alert {event.alert_id} to {channel.key}")
        return DeliveryOutcome.FAILED

    async def _purge(self, channel_key: str) -> None:
        # 多个 worker 可能同时拿到 GONE，只有第一个真正删除
        async with self._purge_lock:
            if await self.db.find_channel(channel_key) is None:
                return
            if await self.db.purge_channel(channel_key):
                logger.warning(f"Channel {channel_key} is gone, purged from registry")

    def park(self, event: TriggerEvent, attempt: int = 1) -> None:
        if attempt < self.max_attempts:
            self._retry.append((event, attempt))
        else:
            logger.warning(
                f"Giving up on alert {event.alert_id} after {attempt} delivery attempts"
            )

    async def dispatch(self, event: TriggerEvent, attempt: int = 1) -> DeliveryOutcome:
        outcome = await self.deliver(event)
        if outcome is DeliveryOutcome.FAILED:
            self.park(event, attempt)
        return outcome

    async def retry_failed(self) -> int:
        pending, self._retry = self._retry, []
        for event, attempt in pending:
            try:
                await self.dispatch(event, attempt + 1)
            except Exception as e:
                logger.error(f"Retry of alert {event.alert_id} failed: {e}")
                self.park(event, attempt + 1)
        return len(pending)

    async def run_worker(self, worker_id: int = 0) -> None:
        logger.info(f"Dispatcher worker {worker_id} started")
        while True:
            event = await self.queue.get()
            try:
                await self.dispatch(event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Dispatcher worker {worker_id} failed on {event.alert_id}: {e}")
                self.park(event)
            finally:
                self.queue.task_done()
