# src/config.py
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, field_validator

from src.client.models import Interval
from src.storage.models import normalize_symbol


class FeedConfig(BaseModel):
    mode: Literal["stream", "poll"] = "stream"
    interval: Interval = Interval.FIVE_MINUTES
    poll_seconds: float = 15
    reconnect_seconds: float = 5


class SweepConfig(BaseModel):
    enabled: bool = True
    interval_minutes: float = 5


class DispatcherConfig(BaseModel):
    queue_size: int = 1000
    workers: int = 2
    max_attempts: int = 3

    @field_validator("queue_size", "workers", "max_attempts")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be positive")
        return value


class TelegramConfig(BaseModel):
    bot_token: str
    chat_id: str | None = None


class DatabaseConfig(BaseModel):
    path: str = "data/alerts.db"


class Config(BaseModel):
    symbols: list[str] = ["BTCUSDT", "ETHUSDT"]
    feed: FeedConfig = FeedConfig()
    sweep: SweepConfig = SweepConfig()
    dispatcher: DispatcherConfig = DispatcherConfig()
    telegram: TelegramConfig
    database: DatabaseConfig = DatabaseConfig()

    @field_validator("symbols")
    @classmethod
    def _normalize_symbols(cls, value: list[str]) -> list[str]:
        return [normalize_symbol(s) for s in value]


def load_config(path: Path) -> Config:
    with open(path) as f:
        data = yaml.safe_load(f)
    return Config(**data)
