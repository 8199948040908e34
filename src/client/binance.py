"""Binance Spot API 客户端"""

import json
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from src.client.models import Interval, Kline


class BinanceAPIError(Exception):
    """Binance API 错误"""

    def __init__(self, code: int, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


@dataclass
class BinanceClient:
    """Binance Spot API 客户端"""

    base_url: str = "https://api.binance.com"
    ws_url: str = "wss://stream.binance.com:9443"
    _session: aiohttp.ClientSession | None = field(default=None, repr=False)

    async def init(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession()

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """发送 HTTP 请求"""
        if self._session is None:
            raise RuntimeError("Session not initialized. Use 'async with' context.")

        url = f"{self.base_url}{endpoint}"

        if method == "GET":
            response = await self._session.get(url, params=params)
        else:
            response = await self._session.post(url, data=params)

        if response.status != 200:
            error_text = await response.text()
            try:
                error_data = json.loads(error_text)
                raise BinanceAPIError(error_data.get("code", -1), error_data.get("msg", error_text))
            except json.JSONDecodeError:
                raise BinanceAPIError(-1, error_text)

        return await response.json()

    async def __aenter__(self) -> "BinanceClient":
        await self.init()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def get_klines(
        self,
        symbol: str,
        interval: Interval | str,
        limit: int = 100,
    ) -> list[Kline]:
        """获取 K 线数据，最后一根可能是未收盘的"""
        interval = Interval(interval)

        data = await self._request(
            "GET",
            "/api/v3/klines",
            {"symbol": symbol, "interval": interval.value, "limit": limit},
        )
        return [
            Kline(
                open_time=int(k[0]),
                open=float(k[1]),
                high=float(k[2]),
                low=float(k[3]),
                close=float(k[4]),
                volume=float(k[5]),
                close_time=int(k[6]),
            )
            for k in data
        ]
