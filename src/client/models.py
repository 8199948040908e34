"""Binance API 数据模型"""

from dataclasses import dataclass
from enum import Enum


class Interval(Enum):
    """K 线周期"""

    FIVE_MINUTES = "5m"
    FIFTEEN_MINUTES = "15m"
    THIRTY_MINUTES = "30m"
    ONE_HOUR = "1h"
    FOUR_HOURS = "4h"
    ONE_DAY = "1d"
    ONE_WEEK = "1w"
    ONE_MONTH = "1M"


@dataclass
class Kline:
    """K 线数据"""

    open_time: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    close_time: int
