from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from telegram.error import BadRequest, Forbidden, NetworkError, TimedOut

from src.alert.engine import AlertPersistenceError, AlertValidationError
from src.notifier.base import NotificationPayload, SendResult
from src.storage.models import Alert, Direction

PAYLOAD = NotificationPayload(
    title="BTCUSDT Price Alert!",
    body="Price crossed your target of $50000. Current price: $50000.00",
    icon_ref="https://assets.coincap.io/assets/icons/btc@2x.png",
)


def _notifier(send_side_effect=None):
    with patch("src.notifier.telegram.Bot") as MockBot:
        mock_bot = MagicMock()
        mock_bot.send_message = AsyncMock(side_effect=send_side_effect)
        MockBot.return_value = mock_bot

        from src.notifier.telegram import TelegramNotifier

        return TelegramNotifier(bot_token="test"), mock_bot


def _update(text: str, chat_id: int = 123):
    update = MagicMock()
    update.message.text = text
    update.message.reply_text = AsyncMock()
    update.effective_chat.id = chat_id
    return update


async def test_send_ok():
    notifier, mock_bot = _notifier()

    assert await notifier.send("123", PAYLOAD) is SendResult.OK

    kwargs = mock_bot.send_message.call_args.kwargs
    assert kwargs["chat_id"] == "123"
    assert kwargs["parse_mode"] == "HTML"
    assert "BTCUSDT Price Alert!" in kwargs["text"]


@pytest.mark.parametrize(
    "error,expected",
    [
        (Forbidden("Forbidden: bot was blocked by the user"), SendResult.GONE),
        (BadRequest("Chat not found"), SendResult.GONE),
        (BadRequest("Message is too long"), SendResult.TRANSIENT),
        (TimedOut(), SendResult.TRANSIENT),
        (NetworkError("Connection reset"), SendResult.TRANSIENT),
    ],
)
async def test_send_maps_errors(error, expected):
    notifier, _ = _notifier(send_side_effect=error)

    assert await notifier.send("123", PAYLOAD) is expected


def test_parse_watch_command():
    from src.notifier.telegram import TelegramNotifier

    assert TelegramNotifier._parse_watch_command("/watch BTCUSDT above 100000") == (
        "BTCUSDT",
        "Above",
        100000.0,
    )
    assert TelegramNotifier._parse_watch_command("/watch ethusdt BELOW 3500.5") == (
        "ETHUSDT",
        "Below",
        3500.5,
    )
    assert TelegramNotifier._parse_watch_command("/watch BTC 100000") is None
    assert TelegramNotifier._parse_watch_command("/watch BTCUSDT above 1.2.3") is None


def test_parse_id_command():
    from src.notifier.telegram import TelegramNotifier

    assert TelegramNotifier._parse_id_command("/unwatch 9F3a") == "9f3a"
    assert TelegramNotifier._parse_id_command("/reset@my_bot abc") == "abc"
    assert TelegramNotifier._parse_id_command("/unwatch") is None


async def test_handle_watch_arms_alert():
    notifier, _ = _notifier()
    alert = Alert(
        id="abc",
        symbol="BTCUSDT",
        target_price=100000.0,
        direction=Direction.ABOVE,
        triggered=False,
        channel_key="123",
        created_at=0,
    )
    notifier.on_watch = AsyncMock(return_value=alert)
    update = _update("/watch BTCUSDT above 100000")

    await notifier._handle_watch(update, MagicMock())

    notifier.on_watch.assert_awaited_once_with("123", "BTCUSDT", "Above", 100000.0)
    reply = update.message.reply_text.call_args.args[0]
    assert reply.startswith("✅ Watching BTCUSDT ≥ 100000")


@pytest.mark.parametrize(
    "error,expected",
    [
        (AlertValidationError("Target price must be positive: 0.0"), "❌ Target price"),
        (AlertPersistenceError("db down"), "❌ Could not save"),
    ],
)
async def test_handle_watch_reports_failure(error, expected):
    notifier, _ = _notifier()
    notifier.on_watch = AsyncMock(side_effect=error)
    update = _update("/watch BTCUSDT above 0")

    await notifier._handle_watch(update, MagicMock())

    assert update.message.reply_text.call_args.args[0].startswith(expected)


async def test_handle_unwatch_and_reset():
    notifier, _ = _notifier()
    notifier.on_unwatch = AsyncMock(return_value=True)
    notifier.on_reset = AsyncMock(return_value=False)

    update = _update("/unwatch abc")
    await notifier._handle_unwatch(update, MagicMock())
    notifier.on_unwatch.assert_awaited_once_with("123", "abc")
    assert "Removed" in update.message.reply_text.call_args.args[0]

    update = _update("/reset abc")
    await notifier._handle_reset(update, MagicMock())
    assert "not triggered" in update.message.reply_text.call_args.args[0]


async def test_handle_start_registers_chat():
    notifier, _ = _notifier()
    notifier.on_start = AsyncMock()
    update = _update("/start", chat_id=42)

    await notifier._handle_start(update, MagicMock())

    notifier.on_start.assert_awaited_once_with("42")
