# tests/collector/test_binance_kline.py
import asyncio
import json
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
import websockets

from src.client.models import Interval
from src.collector.base import FeedStatus
from src.collector.binance_kline import BinanceKlineStream
from src.storage.models import Tick


class FakeWebSocket:
    def __init__(self) -> None:
        self.inbox: asyncio.Queue[Any] = asyncio.Queue()
        self.close = AsyncMock()

    async def recv(self) -> str:
        item = await self.inbox.get()
        if isinstance(item, Exception):
            raise item
        return item


async def _wait_for(condition) -> None:
    for _ in range(100):
        if condition():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition not reached")


def _kline_message(close: str, open_time: int = 1706600000000) -> str:
    # Binance kline 原始格式
    return json.dumps(
        {
            "e": "kline",
            "E": open_time + 1234,
            "s": "BTCUSDT",
            "k": {
                "t": open_time,
                "T": open_time + 299999,
                "s": "BTCUSDT",
                "i": "5m",
                "o": "49900.00",
                "c": close,
                "h": "50100.00",
                "l": "49800.00",
                "x": False,
            },
        }
    )


def test_stream_url():
    stream = BinanceKlineStream(
        symbols=["BTCUSDT", "ETHUSDT"], on_tick=AsyncMock(), interval="15m"
    )

    assert stream.interval is Interval.FIFTEEN_MINUTES
    assert stream._stream_url() == (
        "wss://stream.binance.com:9443/ws/btcusdt@kline_15m/ethusdt@kline_15m"
    )


def test_rejects_unknown_interval():
    with pytest.raises(ValueError):
        BinanceKlineStream(symbols=["BTCUSDT"], on_tick=AsyncMock(), interval="1m")


def test_parse_kline_message():
    stream = BinanceKlineStream(symbols=["BTCUSDT"], on_tick=AsyncMock())

    ticks = stream._parse_message(_kline_message("50012.50"))

    assert ticks == [Tick(symbol="BTCUSDT", price=50012.5, timestamp=1706600000000)]


def test_parse_ignores_other_events_and_garbage():
    stream = BinanceKlineStream(symbols=["BTCUSDT"], on_tick=AsyncMock())

    assert stream._parse_message(json.dumps({"result": None, "id": 1})) == []
    assert stream._parse_message("not json") == []


async def test_process_message_forwards_refined_candle_once():
    on_tick = AsyncMock()
    stream = BinanceKlineStream(symbols=["BTCUSDT"], on_tick=on_tick)

    await stream._process_message(_kline_message("50000.00"))
    await stream._process_message(_kline_message("50000.00"))
    await stream._process_message(_kline_message("50010.00"))

    prices = [call.args[0].price for call in on_tick.await_args_list]
    assert prices == [50000.0, 50010.0]


def test_parse_drops_malformed_kline():
    stream = BinanceKlineStream(symbols=["BTCUSDT"], on_tick=AsyncMock())

    assert stream._parse_message(json.dumps({"e": "kline", "s": "BTCUSDT"})) == []
    assert stream._parse_message(json.dumps([1, 2])) == []
    assert stream._parse_message(
        json.dumps({"e": "kline", "s": "BTCUSDT", "k": {"t": 1, "c": "n/a"}})
    ) == []


async def test_run_keeps_going_after_malformed_message():
    on_tick = AsyncMock()
    ws = FakeWebSocket()
    ws.inbox.put_nowait(json.dumps({"e": "kline", "s": "BTCUSDT"}))
    ws.inbox.put_nowait(json.dumps([1, 2]))
    ws.inbox.put_nowait(_kline_message("50000.00"))

    with patch("src.collector.binance_kline.websockets.connect", AsyncMock(return_value=ws)):
        stream = BinanceKlineStream(symbols=["BTCUSDT"], on_tick=on_tick)
        await stream.start()
        await _wait_for(lambda: on_tick.await_count == 1)
        await stream.stop()

    assert on_tick.await_args.args[0] == Tick("BTCUSDT", 50000.0, 1706600000000)
    assert stream.status is FeedStatus.LIVE
    ws.close.assert_awaited_once()


async def test_run_reports_degraded_and_reconnects():
    on_tick = AsyncMock()
    statuses = []
    ws = FakeWebSocket()
    ws.inbox.put_nowait(_kline_message("50000.00"))
    ws.inbox.put_nowait(websockets.ConnectionClosed(None, None))
    ws.inbox.put_nowait(_kline_message("50010.00"))
    connect = AsyncMock(return_value=ws)

    with patch("src.collector.binance_kline.websockets.connect", connect):
        stream = BinanceKlineStream(
            symbols=["BTCUSDT"],
            on_tick=on_tick,
            reconnect_seconds=0,
            on_status=statuses.append,
        )
        await stream.start()
        await _wait_for(lambda: on_tick.await_count == 2)
        await stream.stop()

    assert statuses == [FeedStatus.LIVE, FeedStatus.DEGRADED, FeedStatus.LIVE]
    assert connect.await_count == 2
    prices = [call.args[0].price for call in on_tick.await_args_list]
    assert prices == [50000.0, 50010.0]
