# src/alert/sweep.py
import asyncio
import logging
from dataclasses import dataclass

from src.alert.dispatcher import DeliveryOutcome, NotificationDispatcher
from src.alert.engine import AlertEngine, TriggerEvent
from src.collector.price_fetcher import PriceFetcher
from src.storage.database import Database

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    checked: int
    triggered: int
    delivered: int
    retried: int


class PriceSweep:
    """定时巡检：拉最新价重新评估所有未触发的提醒，并重投之前失败的通知。

    只查询 triggered = 0 的提醒，重复执行不会产生重复事件。
    """

    def __init__(
        self,
        db: Database,
        engine: AlertEngine,
        dispatcher: NotificationDispatcher,
        fetcher: PriceFetcher,
    ):
        self.db = db
        self.engine = engine
        self.dispatcher = dispatcher
        self.fetcher = fetcher

    async def run_once(self) -> SweepResult:
        retried = await self.dispatcher.retry_failed()

        pending = await self.db.find_alerts(triggered=False)
        symbols = sorted({alert.symbol for alert in pending})
        if not symbols:
            return SweepResult(checked=0, triggered=0, delivered=0, retried=retried)

        ticks = await self.fetcher.fetch_prices(symbols)

        events: list[TriggerEvent] = []
        for tick in ticks:
            events.extend(await self.engine.evaluate(tick))

        delivered = 0
        for event in events:
            try:
                outcome = await self.dispatcher.dispatch(event)
            except Exception as e:
                # 提醒已经落库为 triggered，通知不能丢，留给下一轮重投
                logger.error(f"Delivery of alert {event.alert_id} failed: {e}")
                self.dispatcher.park(event)
                continue
            if outcome is DeliveryOutcome.DELIVERED:
                delivered += 1

        return SweepResult(
            checked=len(pending),
            triggered=len(events),
            delivered=delivered,
            retried=retried,
        )

    async def run_forever(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                result = await self.run_once()
                logger.info(
                    f"Sweep checked {result.checked} alerts, triggered {result.triggered}, "
                    f"delivered {result.delivered}, retried {result.retried}"
                )
            except Exception as e:
                # 行情拉取失败时保持原状态，下个周期再试
                logger.error(f"Price sweep failed: {e}")
