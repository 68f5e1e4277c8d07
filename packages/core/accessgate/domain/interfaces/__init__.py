"""Domain interfaces for dependency injection."""

from accessgate.domain.interfaces.access_key_store import (
    AccessKeyStore,
    KeyConflictError,
    StateStoreError,
)
from accessgate.domain.interfaces.notification_sink import (
    Notification,
    NotificationError,
    NotificationKind,
    NotificationSink,
    NullNotificationSink,
)
from accessgate.domain.interfaces.observability_manager import (
    ObservabilityError,
    ObservabilityManager,
)

__all__ = [
    "AccessKeyStore",
    "KeyConflictError",
    "StateStoreError",
    "Notification",
    "NotificationError",
    "NotificationKind",
    "NotificationSink",
    "NullNotificationSink",
    "ObservabilityError",
    "ObservabilityManager",
]
