# src/notifier/base.py
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum


class SendResult(Enum):
    OK = "ok"
    GONE = "gone"  # endpoint 已失效，不要再发
    TRANSIENT = "transient"


@dataclass(frozen=True)
class NotificationPayload:
    title: str
    body: str
    icon_ref: str


class NotificationChannel(ABC):
    @abstractmethod
    async def send(self, channel_key: str, payload: NotificationPayload) -> SendResult:
        pass
