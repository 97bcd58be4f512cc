"""Send notifications through senders registered per channel."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable


class Channel(str, Enum):
    """Delivery channel of a notification."""

    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"


@dataclass
class Notification:
    """A message bound for one recipient over one channel."""

    channel: Channel | str
    to: str
    subject: str = ""
    body: str = ""
    data: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class Sender(Protocol):
    """Delivers notifications for a channel; raises on failure."""

    def send(self, notification: Notification) -> None: ...


class NotificationError(Exception):
    """Raised when a notification cannot be routed to a sender."""


def _channel_name(channel: Channel | str) -> str:
    return channel.value if isinstance(channel, Channel) else str(channel)


class NotificationManager:
    """Routes notifications to the sender registered for their channel."""

    def __init__(self) -> None:
        self._senders: dict[str, Sender] = {}
        self._lock = threading.Lock()

    def register_sender(self, channel: Channel | str, sender: Sender) -> None:
        """Use this sender for the channel, replacing any earlier one."""
        with self._lock:
            self._senders[_channel_name(channel)] = sender

    def send(self, notification: Notification) -> None:
        """Deliver the notification; raises NotificationError if no sender fits."""
        name = _channel_name(notification.channel)
        with self._lock:
            sender = self._senders.get(name)
        if sender is None:
            raise NotificationError(f"no sender registered for channel: {name}")
        sender.send(notification)

    def send_email(self, to: str, subject: str, body: str) -> None:
        self.send(Notification(channel=Channel.EMAIL, to=to, subject=subject, body=body))

    def send_sms(self, to: str, body: str) -> None:
        self.send(Notification(channel=Channel.SMS, to=to, body=body))