"""NotificationSink interface for the admin message side channel."""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class NotificationKind(str, Enum):
    """Kinds of notification sent to administrators."""

    DeviceActivationRequested = "device_activation_requested"
    DeviceAuthorized = "device_authorized"
    DeviceRejected = "device_rejected"
    KeyBanned = "key_banned"
    KeySuspended = "key_suspended"
    KeyUnbanned = "key_unbanned"
    KeyCreated = "key_created"
    KeyDeleted = "key_deleted"


class Notification(BaseModel):
    """A message for administrators about an access key."""

    kind: NotificationKind
    key: str
    device_id: str | None = None
    reason: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


class NotificationError(Exception):
    """Raised when a notification cannot be delivered."""

    pass


class NotificationSink(ABC):
    """Fire-and-forget delivery of admin notifications.

    Callers treat failures as non-fatal: a :class:`NotificationError` is logged
    and never fails the operation that triggered the notification.
    """

    @abstractmethod
    async def notify(self, notification: Notification) -> None:
        """Deliver a notification.

        Raises:
            NotificationError: If delivery fails.
        """

    async def close(self) -> None:  # noqa: B027
        """Release resources held by the sink."""


class NullNotificationSink(NotificationSink):
    """Sink that drops every notification; used when no channel is configured."""

    async def notify(self, notification: Notification) -> None:
        return None
