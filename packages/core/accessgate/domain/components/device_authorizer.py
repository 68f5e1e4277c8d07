"""DeviceAuthorizer component for the per-key device approval flow."""

from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import Any

from accessgate.domain.components.key_administrator import KeyNotFoundError
from accessgate.domain.interfaces.access_key_store import AccessKeyStore
from accessgate.domain.interfaces.notification_sink import (
    Notification,
    NotificationKind,
    NotificationSink,
    NullNotificationSink,
)
from accessgate.domain.interfaces.observability_manager import ObservabilityManager
from accessgate.domain.models.access_key import AccessKey, utcnow
from accessgate.infrastructure.utils.validation import validate_access_key, validate_device_id


class DeviceNotPendingError(Exception):
    """Raised when authorizing or rejecting a device that is not pending."""

    pass


class DeviceNotAuthorizedError(Exception):
    """Raised when unauthorizing a device that is not authorized."""

    pass


class DeviceLimitReachedError(Exception):
    """Raised when a key already has the maximum number of authorized devices."""

    pass


class ActivationResult(str, Enum):
    """Result of a device activation request."""

    Requested = "requested"
    AlreadyPending = "already_pending"
    AlreadyAuthorized = "already_authorized"


class DeviceAuthorizer:
    """Manages which devices may use an access key.

    A device moves ``unknown -> pending`` when it requests activation, then
    ``pending -> authorized`` or back to unknown when an administrator
    rejects it. Authorized devices return to unknown when unauthorized.
    Every move is one conditional update on the key.
    """

    def __init__(
        self,
        access_key_store: AccessKeyStore,
        observability_manager: ObservabilityManager,
        notification_sink: NotificationSink | None = None,
        max_devices_per_key: int = 1,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize DeviceAuthorizer.

        Args:
            access_key_store: Store holding access keys.
            observability_manager: ObservabilityManager for events and logging.
            notification_sink: Admin notification channel; notifications are
                dropped if None.
            max_devices_per_key: Authorized devices allowed per key (0 = unlimited).
            clock: Returns the current UTC time.
        """
        self._store = access_key_store
        self._observability = observability_manager
        self._notifications = notification_sink or NullNotificationSink()
        self._max_devices = max_devices_per_key
        self._clock = clock

    async def request_activation(self, key: str, device_id: str) -> ActivationResult:
        """Queue a device for administrator approval.

        Idempotent: a device that is already pending or authorized is left
        unchanged and no notification is sent.

        Raises:
            ValidationError: If the key or device id is malformed.
            KeyNotFoundError: If the key does not exist.
        """
        key = validate_access_key(key)
        device_id = validate_device_id(device_id)
        now = self._clock()

        updated = await self._store.add_pending_device(key, device_id, now)
        if updated is None:
            record = await self._require_key(key)
            if record.is_authorized(device_id):
                return ActivationResult.AlreadyAuthorized
            if record.is_pending(device_id):
                return ActivationResult.AlreadyPending
            # Rejected concurrently between the update and the re-read.
            updated = await self._store.add_pending_device(key, device_id, now)
            if updated is None:
                return ActivationResult.AlreadyPending

        await self._emit("device_activation_requested", {"key": key, "device_id": device_id})
        await self._notify(
            Notification(
                kind=NotificationKind.DeviceActivationRequested,
                key=key,
                device_id=device_id,
                data={"requested_at": now.strftime("%Y-%m-%d %H:%M:%S UTC")},
            )
        )
        return ActivationResult.Requested

    async def authorize_device(self, key: str, device_id: str) -> AccessKey:
        """Move a pending device to the authorized set.

        Raises:
            KeyNotFoundError: If the key does not exist.
            DeviceNotPendingError: If the device is not pending.
            DeviceLimitReachedError: If the key already has the maximum
                number of authorized devices.
        """
        updated = await self._store.authorize_device(key, device_id, self._max_devices)
        if updated is None:
            record = await self._require_key(key)
            if not record.is_pending(device_id):
                raise DeviceNotPendingError(f"Device {device_id} has no pending activation request")
            raise DeviceLimitReachedError(
                f"Access key already has {len(record.used_devices)} authorized "
                f"device(s) (limit {self._max_devices})"
            )

        await self._emit("device_authorized", {"key": key, "device_id": device_id})
        await self._notify(
            Notification(kind=NotificationKind.DeviceAuthorized, key=key, device_id=device_id)
        )
        return updated

    async def reject_device(self, key: str, device_id: str) -> AccessKey:
        """Drop a pending device request.

        Raises:
            KeyNotFoundError: If the key does not exist.
            DeviceNotPendingError: If the device is not pending.
        """
        updated = await self._store.remove_pending_device(key, device_id)
        if updated is None:
            await self._require_key(key)
            raise DeviceNotPendingError(f"Device {device_id} has no pending activation request")

        await self._emit("device_rejected", {"key": key, "device_id": device_id})
        await self._notify(
            Notification(kind=NotificationKind.DeviceRejected, key=key, device_id=device_id)
        )
        return updated

    async def unauthorize_device(self, key: str, device_id: str) -> AccessKey:
        """Remove a device from the authorized set.

        Raises:
            KeyNotFoundError: If the key does not exist.
            DeviceNotAuthorizedError: If the device is not authorized.
        """
        updated = await self._store.remove_authorized_device(key, device_id)
        if updated is None:
            await self._require_key(key)
            raise DeviceNotAuthorizedError(f"Device {device_id} is not authorized")

        await self._emit("device_unauthorized", {"key": key, "device_id": device_id})
        return updated

    async def _require_key(self, key: str) -> AccessKey:
        record = await self._store.get_key(key)
        if record is None:
            raise KeyNotFoundError("Access key not found")
        return record

    async def _emit(self, event_type: str, payload: dict[str, Any]) -> None:
        try:
            await self._observability.emit_event(event_type=event_type, payload=payload)
        except Exception as e:
            await self._observability.log(
                level="WARNING",
                message=f"Failed to emit {event_type} event: {e}",
                context={"key": payload.get("key", "")},
            )

    async def _notify(self, notification: Notification) -> None:
        try:
            await self._notifications.notify(notification)
        except Exception as e:
            await self._observability.log(
                level="WARNING",
                message=f"Failed to send {notification.kind.value} notification: {e}",
                context={"key": notification.key, "device_id": notification.device_id},
            )
