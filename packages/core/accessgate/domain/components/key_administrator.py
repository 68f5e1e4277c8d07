"""KeyAdministrator component for access key lifecycle management."""

from collections.abc import Callable
from datetime import datetime
from typing import Any

from accessgate.domain.interfaces.access_key_store import (
    AccessKeyStore,
    KeyConflictError,
    StateStoreError,
)
from accessgate.domain.interfaces.notification_sink import (
    Notification,
    NotificationKind,
    NotificationSink,
    NullNotificationSink,
)
from accessgate.domain.interfaces.observability_manager import ObservabilityManager
from accessgate.domain.models.access_key import (
    AccessKey,
    AccessKeyStatus,
    ActiveStatus,
    BannedStatus,
    KeyStatus,
    PanelTypeRestriction,
    SuspendedStatus,
    utcnow,
)
from accessgate.domain.models.state_transition import StateTransition
from accessgate.infrastructure.utils.validation import (
    PERMANENT,
    generate_access_key,
    parse_duration,
    validate_access_key,
    validate_daily_limit,
)


class KeyNotFoundError(Exception):
    """Raised when an access key is not found."""

    pass


class KeyAlreadyExistsError(Exception):
    """Raised when creating an access key that already exists."""

    pass


class KeyAdministrator:
    """Administrative lifecycle of access keys.

    Creates and deletes keys, and moves them between active, suspended and
    banned. Every status change is a single store update, written to the
    audit trail and announced to administrators.

    Example:
        ```python
        admin = KeyAdministrator(store, observability, notification_sink=sink)
        key = await admin.create_key(daily_limit=10, created_by="ops")
        await admin.ban(key.key, duration="7d", reason="spam", banned_by="ops")
        ```
    """

    def __init__(
        self,
        access_key_store: AccessKeyStore,
        observability_manager: ObservabilityManager,
        notification_sink: NotificationSink | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = access_key_store
        self._observability = observability_manager
        self._notifications = notification_sink or NullNotificationSink()
        self._clock = clock

    async def create_key(
        self,
        key: str | None = None,
        panel_type_restriction: PanelTypeRestriction = PanelTypeRestriction.Both,
        daily_limit: int = 0,
        created_by: str | None = None,
    ) -> AccessKey:
        """Create a new active access key.

        Args:
            key: Key value; a random 32 hex character key when None.
            panel_type_restriction: Panel types the key may provision.
            daily_limit: Uses allowed per calendar day (0 = unlimited).
            created_by: Identifier of the administrator creating the key.

        Returns:
            The stored AccessKey.

        Raises:
            ValidationError: If the key or daily limit is malformed.
            KeyAlreadyExistsError: If the key already exists.
        """
        value = validate_access_key(key) if key is not None else generate_access_key()
        record = AccessKey(
            key=value,
            panel_type_restriction=panel_type_restriction,
            daily_limit=validate_daily_limit(daily_limit),
            created_at=self._clock(),
            created_by=created_by,
        )

        try:
            created = await self._store.create_key(record)
        except KeyConflictError as e:
            raise KeyAlreadyExistsError("Access key already exists") from e

        await self._emit(
            "key_created",
            {
                "key": created.key,
                "panel_type_restriction": created.panel_type_restriction.value,
                "daily_limit": created.daily_limit,
                "created_by": created_by,
            },
        )
        await self._notify(
            Notification(
                kind=NotificationKind.KeyCreated,
                key=created.key,
                data={
                    "panel_type": created.panel_type_restriction.value,
                    "daily_limit": created.daily_limit or "unlimited",
                    "created_by": created_by,
                },
            )
        )
        return created

    async def list_keys(self) -> list[AccessKey]:
        return await self._store.list_keys()

    async def get_key(self, key: str) -> AccessKey:
        record = await self._store.get_key(key)
        if record is None:
            raise KeyNotFoundError("Access key not found")
        return record

    async def delete_key(self, key: str, deleted_by: str | None = None) -> None:
        """Permanently delete an access key.

        Raises:
            KeyNotFoundError: If the key does not exist.
        """
        record = await self.get_key(key)
        if not await self._store.delete_key(key):
            raise KeyNotFoundError("Access key not found")

        await self._audit(record.status.kind, "deleted", key, "key_deleted", deleted_by, {})
        await self._notify(
            Notification(kind=NotificationKind.KeyDeleted, key=key, data={"deleted_by": deleted_by})
        )

    async def ban(
        self,
        key: str,
        duration: str = PERMANENT,
        reason: str | None = None,
        banned_by: str | None = None,
    ) -> AccessKey:
        """Ban a key permanently or for a duration.

        Args:
            key: Access key to ban.
            duration: ``"<n>h"``, ``"<n>d"``, ``"<n>w"`` or ``"permanent"``.
            reason: Reason shown to callers of the banned key.
            banned_by: Identifier of the administrator issuing the ban.

        Raises:
            InvalidDurationError: If the duration cannot be parsed.
            KeyNotFoundError: If the key does not exist.
        """
        length = parse_duration(duration)
        now = self._clock()
        status = BannedStatus(
            reason=reason,
            permanent=length is None,
            expires_at=now + length if length is not None else None,
            banned_at=now,
            banned_by=banned_by,
        )
        _, after = await self._change_status(key, status, "admin_ban", banned_by)
        await self._notify(
            Notification(
                kind=NotificationKind.KeyBanned,
                key=key,
                reason=reason,
                data={
                    "duration": PERMANENT if length is None else duration,
                    "expires_at": status.expires_at.isoformat() if status.expires_at else None,
                    "banned_by": banned_by,
                },
            )
        )
        return after

    async def suspend(
        self,
        key: str,
        duration: str | None = None,
        reason: str | None = None,
        suspended_by: str | None = None,
    ) -> AccessKey:
        """Suspend a key, indefinitely when ``duration`` is None or "permanent".

        Raises:
            InvalidDurationError: If the duration cannot be parsed.
            KeyNotFoundError: If the key does not exist.
        """
        length = parse_duration(duration) if duration is not None else None
        until = self._clock() + length if length is not None else None
        _, after = await self._change_status(
            key, SuspendedStatus(reason=reason, until=until), "admin_suspend", suspended_by
        )
        await self._notify(
            Notification(
                kind=NotificationKind.KeySuspended,
                key=key,
                reason=reason,
                data={"until": until.isoformat() if until else "indefinite"},
            )
        )
        return after

    async def unban(self, key: str, actor: str | None = None) -> AccessKey:
        """Return a suspended or banned key to active.

        Unbanning a key that is already active changes nothing and is neither
        audited nor announced.

        Raises:
            KeyNotFoundError: If the key does not exist.
        """
        before, after = await self._change_status(key, ActiveStatus(), "admin_unban", actor)
        if before.status_kind != KeyStatus.Active:
            await self._notify(Notification(kind=NotificationKind.KeyUnbanned, key=key))
        return after

    async def set_daily_limit(self, key: str, daily_limit: int) -> AccessKey:
        """Set the number of uses allowed per day (0 = unlimited).

        Raises:
            ValidationError: If the limit is negative.
            KeyNotFoundError: If the key does not exist.
        """
        updated = await self._store.set_daily_limit(key, validate_daily_limit(daily_limit))
        if updated is None:
            raise KeyNotFoundError("Access key not found")

        await self._emit("daily_limit_changed", {"key": key, "daily_limit": daily_limit})
        return updated

    async def get_state_transitions(self, key: str, limit: int | None = None) -> list[StateTransition]:
        """Audit trail of status changes for a key, oldest first."""
        return await self._store.list_state_transitions(key, limit=limit)

    async def _change_status(
        self,
        key: str,
        status: AccessKeyStatus,
        trigger: str,
        actor: str | None,
    ) -> tuple[AccessKey, AccessKey]:
        """Set ``status`` and audit it; returns the key before and after."""
        result = await self._store.set_status(key, status)
        if result is None:
            raise KeyNotFoundError("Access key not found")

        before, after = result
        if before.status != after.status:
            context = status.model_dump(mode="json", exclude={"kind"}, exclude_none=True)
            await self._audit(before.status.kind, after.status.kind, key, trigger, actor, context)
        return before, after

    async def _audit(
        self,
        from_state: str,
        to_state: str,
        key: str,
        trigger: str,
        actor: str | None,
        context: dict[str, Any],
    ) -> None:
        transition = StateTransition(
            entity_id=key,
            from_state=from_state,
            to_state=to_state,
            trigger=trigger,
            actor=actor,
            context=context,
        )
        # Status is already changed; a failed audit write is logged, not raised.
        try:
            await self._store.save_state_transition(transition)
        except StateStoreError as e:
            await self._observability.log(
                level="WARNING",
                message=f"Failed to record {trigger} transition: {e}",
                context={"key": key},
            )
        await self._emit(
            "state_transition",
            {
                "key": key,
                "from_state": from_state,
                "to_state": to_state,
                "reason": trigger,
                "actor": actor,
            },
        )

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
                context={"key": notification.key},
            )
