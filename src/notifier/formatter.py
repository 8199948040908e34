# src/notifier/formatter.py
from datetime import UTC, datetime
from decimal import Decimal
from html import escape
from typing import Any

from src.alert.engine import TriggerEvent
from src.notifier.base import NotificationPayload
from src.storage.models import Alert, Direction

ICON_URL = "https://assets.coincap.io/assets/icons/{asset}@2x.png"


def _format_price(value: float) -> str:
    if value == int(value):
        return str(int(value))
    # 小数价格不能出现 1e-07 这样的科学计数法
    return format(Decimal(str(value)), "f")


def base_asset(symbol: str) -> str:
    if symbol.endswith("USDT") and len(symbol) > 4:
        return symbol[:-4].lower()
    return symbol.lower()


def build_payload(event: TriggerEvent) -> NotificationPayload:
    return NotificationPayload(
        title=f"{event.symbol} Price Alert!",
        body=(
            f"Price crossed your target of ${_format_price(event.target_price)}. "
            f"Current price: ${event.observed_price:.2f}"
        ),
        icon_ref=ICON_URL.format(asset=base_asset(event.symbol)),
    )


def format_notification(payload: NotificationPayload) -> str:
    # 零宽链接让 Telegram 用图标做预览
    return (
        f'<a href="{escape(payload.icon_ref)}">&#8203;</a>'
        f"🔔 <b>{escape(payload.title)}</b>\n\n{escape(payload.body)}"
    )


def format_alert(alert: Alert) -> str:
    arrow = "≥" if alert.direction is Direction.ABOVE else "≤"
    state = "✅ triggered" if alert.triggered else "👀 watching"
    return f"{alert.symbol} {arrow} {_format_price(alert.target_price)} ({state}) [{alert.id}]"


def format_alert_list(alerts: list[Alert]) -> str:
    if not alerts:
        return "No alerts. Use /watch BTCUSDT above 100000"

    lines = ["📋 Your alerts\n"]
    for alert in alerts:
        lines.append(f"• {format_alert(alert)}")
    return "\n".join(lines)


def format_status(data: dict[str, Any]) -> str:
    now = datetime.now(UTC).strftime("%Y-%m-%d %H:%M UTC")
    uptime = data["uptime_seconds"]
    days = int(uptime // 86400)
    hours = int((uptime % 86400) // 3600)
    minutes = int((uptime % 3600) // 60)

    feed_emoji = {"live": "🟢", "degraded": "🟡", "offline": "🔴"}.get(data["feed_status"], "⚪")

    prices = data.get("latest_prices", {})
    price_lines = [f"  {symbol}: ${price:,.2f}" for symbol, price in sorted(prices.items())]

    lines = [
        "🔧 System status",
        "",
        f"Uptime: {days}d {hours}h {minutes}m",
        f"Price feed: {feed_emoji} {data['feed_status']} ({data['feed_mode']})",
        f"Alerts: {data['armed']} watching / {data['triggered']} triggered",
        f"Delivery queue: {data['queue_size']} pending, {data['dropped']} dropped",
        f"Retry backlog: {data['retry_backlog']}",
    ]
    if price_lines:
        lines.append("")
        lines.append("Latest prices:")
        lines.extend(price_lines)
    lines.append("")
    lines.append(f"⏰ {now}")
    return "\n".join(lines)
