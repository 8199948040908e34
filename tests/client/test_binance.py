import pytest
from unittest.mock import AsyncMock, MagicMock

from src.client.binance import BinanceClient, BinanceAPIError
from src.client.models import Interval


def test_binance_client_init():
    client = BinanceClient()
    assert client.base_url == "https://api.binance.com"
    assert client.ws_url == "wss://stream.binance.com:9443"


def test_binance_client_custom_urls():
    client = BinanceClient(
        base_url="https://custom.api.com",
        ws_url="wss://custom.ws.com",
    )
    assert client.base_url == "https://custom.api.com"
    assert client.ws_url == "wss://custom.ws.com"


@pytest.mark.asyncio
async def test_request_requires_session():
    client = BinanceClient()

    with pytest.raises(RuntimeError):
        await client._request("GET", "/api/v3/klines")


@pytest.mark.asyncio
async def test_request_handles_error():
    client = BinanceClient()

    mock_response = MagicMock()
    mock_response.status = 400
    mock_response.text = AsyncMock(return_value='{"code": -1121, "msg": "Invalid symbol."}')

    mock_session = MagicMock()
    mock_session.get = AsyncMock(return_value=mock_response)
    client._session = mock_session

    with pytest.raises(BinanceAPIError, match="Invalid symbol") as exc_info:
        await client._request("GET", "/api/v3/klines", {"symbol": "INVALID"})
    assert exc_info.value.code == -1121


@pytest.mark.asyncio
async def test_request_handles_non_json_error():
    client = BinanceClient()

    mock_response = MagicMock()
    mock_response.status = 502
    mock_response.text = AsyncMock(return_value="Bad Gateway")

    mock_session = MagicMock()
    mock_session.get = AsyncMock(return_value=mock_response)
    client._session = mock_session

    with pytest.raises(BinanceAPIError) as exc_info:
        await client._request("GET", "/api/v3/klines")
    assert exc_info.value.code == -1


@pytest.mark.asyncio
async def test_get_klines():
    from src.client.models import Kline

    client = BinanceClient()

    mock_data = [
        [1704067200000, "42000.0", "42500.0", "41800.0", "42300.0", "1000.0", 1704067499999]
    ]
    mock_response = MagicMock()
    mock_response.status = 200
    mock_response.json = AsyncMock(return_value=mock_data)

    mock_session = MagicMock()
    mock_session.get = AsyncMock(return_value=mock_response)
    client._session = mock_session

    klines = await client.get_klines("BTCUSDT", Interval.FIVE_MINUTES, limit=1)
    assert len(klines) == 1
    assert isinstance(klines[0], Kline)
    assert klines[0].close == 42300.0

    mock_session.get.assert_called_once_with(
        "https://api.binance.com/api/v3/klines",
        params={"symbol": "BTCUSDT", "interval": "5m", "limit": 1},
    )


@pytest.mark.asyncio
async def test_get_klines_rejects_unknown_interval():
    client = BinanceClient()
    client._session = MagicMock()

    with pytest.raises(ValueError):
        await client.get_klines("BTCUSDT", "2h")


@pytest.mark.asyncio
async def test_context_manager_closes_session():
    async with BinanceClient() as client:
        session = client._session
        assert session is not None
    assert client._session is None
    assert session.closed
