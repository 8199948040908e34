# src/notifier/telegram.py
import logging
import re
from collections.abc import Callable, Coroutine
from typing import Any

from telegram import Bot, BotCommand, Update
from telegram.error import BadRequest, Forbidden, TelegramError
from telegram.ext import Application, CommandHandler, ContextTypes

from src.alert.engine import AlertPersistenceError, AlertValidationError
from src.notifier.base import NotificationChannel, NotificationPayload, SendResult
from src.notifier.formatter import format_alert, format_notification
from src.storage.models import Alert

logger = logging.getLogger(__name__)

WELCOME_MESSAGE = """
🔔 <b>Crypto Alerts</b> - price threshold notifications

This chat is now registered for alerts. You will be notified even when
you are not looking at a chart.

Type /help to see all commands
"""

HELP_MESSAGE = """
📖 <b>Commands</b>

<b>🔔 Alerts</b>
/watch BTCUSDT above 100000 - notify when price ≥ 100000
/watch ETHUSDT below 3000 - notify when price ≤ 3000
/unwatch &lt;id&gt; - remove an alert
/reset &lt;id&gt; - re-arm a triggered alert
/list - your alerts

<b>📊 System</b>
/status - feed and delivery status
"""

BOT_COMMANDS = [
    BotCommand("start", "Register this chat"),
    BotCommand("help", "Show help"),
    BotCommand("watch", "Add a price alert"),
    BotCommand("unwatch", "Remove a price alert"),
    BotCommand("reset", "Re-arm a triggered alert"),
    BotCommand("list", "List your alerts"),
    BotCommand("status", "System status"),
]

# 这些 BadRequest 说明 chat 已经不存在了
GONE_MESSAGES = ("chat not found", "user is deactivated", "chat_id is empty")


class TelegramNotifier(NotificationChannel):
    def __init__(self, bot_token: str):
        self.bot_token = bot_token
        self.bot = Bot(token=bot_token)
        self.app: Application | None = None  # type: ignore[type-arg]

        # Callbacks
        self.on_start: Callable[[str], Coroutine[Any, Any, None]] | None = None
        self.on_watch: Callable[[str, str, str, float], Coroutine[Any, Any, Alert]] | None = None
        self.on_unwatch: Callable[[str, str], Coroutine[Any, Any, bool]] | None = None
        self.on_reset: Callable[[str, str], Coroutine[Any, Any, bool]] | None = None
        self.on_list: Callable[[str], Coroutine[Any, Any, str]] | None = None
        self.on_status: Callable[[], Coroutine[Any, Any, str]] | None = None

    async def send(self, channel_key: str, payload: NotificationPayload) -> SendResult:
        try:
            await self.bot.send_message(
                chat_id=channel_key,
                text=format_notification(payload),
                parse_mode="HTML",
            )
        except Forbidden as e:
            logger.warning(f"Chat {channel_key} blocked the bot: {e.message}")
            return SendResult.GONE
        except BadRequest as e:
            if any(msg in e.message.lower() for msg in GONE_MESSAGES):
                logger.warning(f"Chat {channel_key} no longer exists: {e.message}")
                return SendResult.GONE
            logger.error(f"Telegram rejected message to {channel_key}: {e.message}")
            return SendResult.TRANSIENT
        except TelegramError as e:
            logger.warning(f"Telegram send to {channel_key} failed: {e.message}")
            return SendResult.TRANSIENT
        return SendResult.OK

    @staticmethod
    def _parse_watch_command(text: str) -> tuple[str, str, float] | None:
        match = re.match(r"/watch(?:@\w+)?\s+(\w+)\s+(above|below)\s+([\d.]+)\s*$", text, re.I)
        if not match:
            return None
        try:
            price = float(match.group(3))
        except ValueError:
            return None
        return match.group(1).upper(), match.group(2).capitalize(), price

    @staticmethod
    def _parse_id_command(text: str) -> str | None:
        match = re.match(r"/\w+(?:@\w+)?\s+([0-9a-fA-F]+)\s*$", text)
        if match:
            return match.group(1).lower()
        return None

    async def _handle_watch(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.message or not update.message.text or not update.effective_chat:
            return

        result = self._parse_watch_command(update.message.text)
        if not result:
            await update.message.reply_text("Usage: /watch BTCUSDT above 100000")
            return

        symbol, direction, price = result
        if not self.on_watch:
            await update.message.reply_text("Alerts are not available right now")
            return

        try:
            alert = await self.on_watch(str(update.effective_chat.id), symbol, direction, price)
        except AlertValidationError as e:
            await update.message.reply_text(f"❌ {e}")
            return
        except AlertPersistenceError:
            logger.exception(f"Failed to arm {symbol} {direction} {price}")
            await update.message.reply_text("❌ Could not save the alert, please try again")
            return

        await update.message.reply_text(f"✅ Watching {format_alert(alert)}")

    async def _handle_unwatch(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.message or not update.message.text or not update.effective_chat:
            return

        alert_id = self._parse_id_command(update.message.text)
        if not alert_id:
            await update.message.reply_text("Usage: /unwatch <id>")
            return

        removed = False
        if self.on_unwatch:
            removed = await self.on_unwatch(str(update.effective_chat.id), alert_id)
        if removed:
            await update.message.reply_text(f"✅ Removed alert {alert_id}")
        else:
            await update.message.reply_text(f"No alert {alert_id}")

    async def _handle_reset(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.message or not update.message.text or not update.effective_chat:
            return

        alert_id = self._parse_id_command(update.message.text)
        if not alert_id:
            await update.message.reply_text("Usage: /reset <id>")
            return

        rearmed = False
        if self.on_reset:
            rearmed = await self.on_reset(str(update.effective_chat.id), alert_id)
        if rearmed:
            await update.message.reply_text(f"✅ Alert {alert_id} is watching again")
        else:
            await update.message.reply_text(f"Alert {alert_id} is not triggered")

    async def _handle_list(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.message or not update.effective_chat:
            return

        if self.on_list:
            text = await self.on_list(str(update.effective_chat.id))
            await update.message.reply_text(text)
        else:
            await update.message.reply_text("No alerts")

    async def _handle_status(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.message:
            return

        if self.on_status:
            text = await self.on_status()
            await update.message.reply_text(text)
        else:
            await update.message.reply_text("Running")

    async def _handle_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.message or not update.effective_chat:
            return
        if self.on_start:
            await self.on_start(str(update.effective_chat.id))
        await update.message.reply_text(WELCOME_MESSAGE, parse_mode="HTML")

    async def _handle_help(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.message:
            return
        await update.message.reply_text(HELP_MESSAGE, parse_mode="HTML")

    def setup_handlers(self, app: Application) -> None:  # type: ignore[type-arg]
        app.add_handler(CommandHandler("start", self._handle_start))
        app.add_handler(CommandHandler("help", self._handle_help))
        app.add_handler(CommandHandler("watch", self._handle_watch))
        app.add_handler(CommandHandler("unwatch", self._handle_unwatch))
        app.add_handler(CommandHandler("reset", self._handle_reset))
        app.add_handler(CommandHandler("list", self._handle_list))
        app.add_handler(CommandHandler("status", self._handle_status))

    async def start_polling(self) -> None:
        self.app = Application.builder().token(self.bot_token).build()
        self.setup_handlers(self.app)
        await self.app.initialize()
        await self.app.start()

        # Set bot command menu
        await self.bot.set_my_commands(BOT_COMMANDS)

        if self.app.updater:
            await self.app.updater.start_polling()

    async def stop_polling(self) -> None:
        if self.app:
            if self.app.updater:
                await self.app.updater.stop()
            await self.app.stop()
            await self.app.shutdown()
