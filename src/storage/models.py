# src/storage/models.py
import re
from dataclasses import dataclass
from enum import Enum

SYMBOL_PATTERN = re.compile(r"^[A-Z0-9]{5,20}$")


def normalize_symbol(symbol: str) -> str:
    """BTCUSDT 这种大写交易对"""
    if not isinstance(symbol, str):
        raise ValueError(f"Invalid symbol: {symbol!r}")
    normalized = symbol.strip().upper()
    if not SYMBOL_PATTERN.match(normalized):
        raise ValueError(f"Invalid symbol: {symbol!r}")
    return normalized


class Direction(Enum):
    ABOVE = "Above"
    BELOW = "Below"

    def is_met(self, price: float, target_price: float) -> bool:
        # 边界价位也算触发
        if self is Direction.ABOVE:
            return price >= target_price
        return price <= target_price


@dataclass
class Alert:
    id: str
    symbol: str
    target_price: float
    direction: Direction
    triggered: bool
    channel_key: str | None  # 只保存 key，不持有 channel
    created_at: int


@dataclass
class Channel:
    key: str  # endpoint, 对 telegram 来说就是 chat_id
    kind: str
    created_at: int


@dataclass(frozen=True)
class Tick:
    symbol: str
    price: float
    timestamp: int  # ms
