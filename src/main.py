# src/main.py
import asyncio
import logging
import signal
import time
from pathlib import Path

from src.alert.dispatcher import NotificationDispatcher
from src.alert.engine import AlertEngine
from src.alert.queue import TriggerQueue
from src.alert.sweep import PriceSweep
from src.client.binance import BinanceClient
from src.collector.base import BaseCollector
from src.collector.binance_kline import BinanceKlineStream
from src.collector.kline_poller import KlinePoller
from src.collector.price_fetcher import PriceFetcher
from src.config import Config, load_config
from src.notifier.formatter import format_alert_list, format_status
from src.notifier.telegram import TelegramNotifier
from src.storage.database import Database
from src.storage.models import Alert, Tick

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class AlertService:
    def __init__(self, config: Config):
        self.config = config
        self.db = Database(config.database.path)
        self.engine = AlertEngine(self.db)
        self.queue = TriggerQueue(config.dispatcher.queue_size)
        self.notifier = TelegramNotifier(config.telegram.bot_token)
        self.dispatcher = NotificationDispatcher(
            self.db,
            self.notifier,
            self.queue,
            max_attempts=config.dispatcher.max_attempts,
        )
        self.binance_client = BinanceClient()
        self.price_fetcher = PriceFetcher()
        self.sweep = PriceSweep(self.db, self.engine, self.dispatcher, self.price_fetcher)
        self.collector: BaseCollector | None = None
        self.start_time = time.time()

    async def init(self) -> None:
        # Ensure data directory exists
        Path(self.config.database.path).parent.mkdir(parents=True, exist_ok=True)

        await self.db.init()
        await self.engine.load()
        await self.binance_client.init()
        await self.price_fetcher.init()

        if self.config.telegram.chat_id:
            await self.db.register_channel(self.config.telegram.chat_id)

        feed = self.config.feed
        if feed.mode == "stream":
            self.collector = BinanceKlineStream(
                symbols=self.config.symbols,
                on_tick=self._on_tick,
                interval=feed.interval,
                reconnect_seconds=feed.reconnect_seconds,
            )
        else:
            self.collector = KlinePoller(
                client=self.binance_client,
                symbols=self.config.symbols,
                on_tick=self._on_tick,
                interval=feed.interval,
                poll_seconds=feed.poll_seconds,
            )

        # Setup Telegram callbacks
        self.notifier.on_start = self._on_start
        self.notifier.on_watch = self._on_watch
        self.notifier.on_unwatch = self._on_unwatch
        self.notifier.on_reset = self._on_reset
        self.notifier.on_list = self._on_list
        self.notifier.on_status = self._on_status

    async def _on_tick(self, tick: Tick) -> None:
        for event in await self.engine.evaluate(tick):
            self.queue.publish(event)

    async def _on_start(self, chat_id: str) -> None:
        await self.db.register_channel(chat_id)
        logger.info(f"Registered channel {chat_id}")

    async def _on_watch(self, chat_id: str, symbol: str, direction: str, price: float) -> Alert:
        return await self.engine.arm(symbol, price, direction, channel_key=chat_id)

    def _owned_by(self, alert_id: str, chat_id: str) -> bool:
        alert = self.engine.get(alert_id)
        return alert is not None and alert.channel_key == chat_id

    async def _on_unwatch(self, chat_id: str, alert_id: str) -> bool:
        if not self._owned_by(alert_id, chat_id):
            return False
        return await self.engine.disarm(alert_id)

    async def _on_reset(self, chat_id: str, alert_id: str) -> bool:
        if not self._owned_by(alert_id, chat_id):
            return False
        return await self.engine.reset(alert_id)

    async def _on_list(self, chat_id: str) -> str:
        return format_alert_list(self.engine.list_alerts(channel_key=chat_id))

    async def _on_status(self) -> str:
        alerts = self.engine.list_alerts()
        triggered = sum(1 for a in alerts if a.triggered)
        return format_status(
            {
                "uptime_seconds": time.time() - self.start_time,
                "feed_mode": self.config.feed.mode,
                "feed_status": self.collector.status.value if self.collector else "offline",
                "latest_prices": self.collector.dedup.latest_prices() if self.collector else {},
                "armed": len(alerts) - triggered,
                "triggered": triggered,
                "queue_size": self.queue.qsize(),
                "dropped": self.queue.dropped,
                "retry_backlog": self.dispatcher.retry_backlog,
            }
        )

    async def run(self) -> None:
        await self.init()
        assert self.collector is not None

        await self.collector.start()

        # Start Telegram bot
        await self.notifier.start_polling()

        # Start background tasks
        tasks = [
            asyncio.create_task(self.dispatcher.run_worker(i))
            for i in range(self.config.dispatcher.workers)
        ]
        if self.config.sweep.enabled:
            tasks.append(
                asyncio.create_task(
                    self.sweep.run_forever(self.config.sweep.interval_minutes * 60)
                )
            )

        logger.info("Crypto Alerts started")

        # Wait for shutdown signal
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

        await stop_event.wait()

        # Cleanup: 先停行情，让正在处理的 tick 跑完
        await self.collector.stop()
        try:
            await asyncio.wait_for(self.queue.join(), timeout=10)
        except TimeoutError:
            logger.warning(f"Stopping with {self.queue.qsize()} undelivered notifications")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.notifier.stop_polling()
        await self.price_fetcher.close()
        await self.binance_client.close()
        await self.db.close()

        logger.info("Crypto Alerts stopped")


async def main() -> None:
    config = load_config(Path("config.yaml"))
    service = AlertService(config)
    await service.run()


if __name__ == "__main__":
    asyncio.run(main())
