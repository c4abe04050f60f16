from typing import Protocol

from dailyping.models.notification_models import (
    ChannelResult,
    NotificationMessage,
    PushSubscription,
)


class EmailSender(Protocol):
    """Primary channel. Must report failures as a result, not raise."""

    async def send_email(self, address: str, message: NotificationMessage) -> ChannelResult:
        ...


class PushSender(Protocol):
    """Secondary, best-effort channel."""

    async def send_push(self, subscription: PushSubscription, payload: dict) -> ChannelResult:
        ...
