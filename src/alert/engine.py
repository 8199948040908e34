# src/alert/engine.py
import asyncio
import logging
import math
import time
import uuid
from dataclasses import dataclass

from src.storage.database import Database
from src.storage.models import Alert, Direction, Tick, normalize_symbol

logger = logging.getLogger(__name__)


class AlertValidationError(ValueError):
    """价位提醒参数不合法"""


class AlertPersistenceError(RuntimeError):
    """价位提醒写库失败，提醒未生效"""


@dataclass(frozen=True)
class TriggerEvent:
    alert_id: str
    symbol: str
    target_price: float
    direction: Direction
    observed_price: float
    timestamp: int
    channel_key: str | None


def parse_direction(value: Direction | str) -> Direction:
    if isinstance(value, Direction):
        return value
    for direction in Direction:
        if direction.value.lower() == str(value).strip().lower():
            return direction
    raise AlertValidationError(f"Unknown direction: {value}")


class AlertEngine:
    """按 symbol 分组维护已布防的价位提醒。

    同一 symbol 的 evaluate / arm / disarm / reset 在该 symbol 的锁内串行执行，
    不同 symbol 之间互不影响。triggered 的 false -> true 由存储层的
    compare-and-set 决定，实时行情和定时巡检两条路径只会有一条成功。
    """

    def __init__(self, db: Database):
        self.db = db
        self._alerts: dict[str, dict[str, Alert]] = {}
        self._symbol_of: dict[str, str] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, symbol: str) -> asyncio.Lock:
        lock = self._locks.get(symbol)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[symbol] = lock
        return lock

    def _add(self, alert: Alert) -> None:
        self._alerts.setdefault(alert.symbol, {})[alert.id] = alert
        self._symbol_of[alert.id] = alert.symbol

    def _remove(self, alert_id: str) -> None:
        symbol = self._symbol_of.pop(alert_id, None)
        if symbol is None:
            return
        bucket = self._alerts.get(symbol, {})
        bucket.pop(alert_id, None)
        if not bucket:
            self._alerts.pop(symbol, None)

    async def load(self) -> int:
        """从数据库恢复提醒"""
        alerts = await self.db.find_alerts()
        for alert in alerts:
            self._add(alert)
        logger.info(f"Loaded {len(alerts)} alerts from store")
        return len(alerts)

    def get(self, alert_id: str) -> Alert | None:
        symbol = self._symbol_of.get(alert_id)
        if symbol is None:
            return None
        return self._alerts[symbol].get(alert_id)

    def list_alerts(
        self, symbol: str | None = None, channel_key: str | None = None
    ) -> list[Alert]:
        if symbol is not None:
            alerts = list(self._alerts.get(symbol, {}).values())
        else:
            alerts = [a for bucket in self._alerts.values() for a in bucket.values()]
        if channel_key is not None:
            alerts = [a for a in alerts if a.channel_key == channel_key]
        return sorted(alerts, key=lambda a: a.created_at)

    def symbols(self) -> list[str]:
        return sorted(self._alerts)

    async def arm(
        self,
        symbol: str,
        target_price: float,
        direction: Direction | str,
        channel_key: str | None = None,
    ) -> Alert:
        try:
            symbol = normalize_symbol(symbol)
        except ValueError as e:
            raise AlertValidationError(str(e)) from e
        direction = parse_direction(direction)
        if not isinstance(target_price, (int, float)) or isinstance(target_price, bool):
            raise AlertValidationError(f"Target price must be a number: {target_price!r}")
        if not math.isfinite(target_price) or target_price <= 0:
            raise AlertValidationError(f"Target price must be positive: {target_price}")

        alert = Alert(
            id=uuid.uuid4().hex,
            symbol=symbol,
            target_price=float(target_price),
            direction=direction,
            triggered=False,
            channel_key=channel_key,
            created_at=int(time.time() * 1000),
        )

        async with self._lock(symbol):
            self._add(alert)
            try:
                await self.db.insert_alert(alert)
            except Exception as e:
                self._remove(alert.id)
                raise AlertPersistenceError(f"Failed to persist alert for {symbol}") from e

        logger.info(
            f"Armed {alert.id}: {symbol} {direction.value} {alert.target_price} "
            f"(channel={channel_key})"
        )
        return alert

    async def disarm(self, alert_id: str) -> bool:
        symbol = self._symbol_of.get(alert_id)
        if symbol is None:
            return False

        async with self._lock(symbol):
            if alert_id not in self._symbol_of:
                return False
            await self.db.delete_alert(alert_id)
            self._remove(alert_id)

        logger.info(f"Disarmed {alert_id}")
        return True

    async def reset(self, alert_id: str) -> bool:
        symbol = self._symbol_of.get(alert_id)
        if symbol is None:
            return False

        async with self._lock(symbol):
            alert = self.get(alert_id)
            if alert is None or not alert.triggered:
                return False
            await self.db.update_triggered_flag(alert_id, False)
            alert.triggered = False

        logger.info(f"Reset {alert_id}")
        return True

    async def evaluate(self, tick: Tick) -> list[TriggerEvent]:
        if tick.symbol not in self._alerts:
            return []

        events: list[TriggerEvent] = []
        async with self._lock(tick.symbol):
            for alert in list(self._alerts.get(tick.symbol, {}).values()):
                if alert.triggered:
                    continue
                if not alert.direction.is_met(tick.price, alert.target_price):
                    continue

                try:
                    claimed = await self.db.mark_triggered(alert.id)
                except Exception as e:
                    # 保持未触发，下一个 tick 再试
                    logger.error(f"Failed to record trigger for {alert.id}: {e}")
                    continue

                alert.triggered = True
                if not claimed:
                    logger.debug(f"Alert {alert.id} already triggered elsewhere")
                    continue

                logger.info(
                    f"Triggered {alert.id}: {alert.symbol} {alert.direction.value} "
                    f"{alert.target_price} at {tick.price}"
                )
                events.append(
                    TriggerEvent(
                        alert_id=alert.id,
                        symbol=alert.symbol,
                        target_price=alert.target_price,
                        direction=alert.direction,
                        observed_price=tick.price,
                        timestamp=tick.timestamp,
                        channel_key=alert.channel_key,
                    )
                )

        return events
