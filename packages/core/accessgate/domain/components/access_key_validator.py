"""AccessKeyValidator component: the access key validation state machine."""

from collections.abc import Callable
from datetime import date, datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo

from accessgate.domain.components.burst_limiter import BurstLimiter
from accessgate.domain.interfaces.access_key_store import AccessKeyStore, StateStoreError
from accessgate.domain.interfaces.observability_manager import ObservabilityManager
from accessgate.domain.models.access_key import (
    AccessKey,
    BannedStatus,
    KeyStatus,
    SuspendedStatus,
    utcnow,
)
from accessgate.domain.models.decision import Decision, ValidationOutcome
from accessgate.domain.models.state_transition import StateTransition

NO_REASON = "No reason given."


class AccessKeyValidator:
    """Decides whether an access key may be used right now.

    Checks run in order: request shape, existence, device authorization,
    status (clearing elapsed suspensions and time-boxed bans on the way),
    panel type restriction, burst protection, and finally a single atomic
    consume that enforces the daily limit.

    Expected denials are returned as :class:`Decision` values. Only
    :class:`StateStoreError` is raised, after being logged.

    Example:
        ```python
        validator = AccessKeyValidator(store, observability)
        decision = await validator.validate("abc123", device_id="dev-1", panel_type="public")
        ```
    """

    def __init__(
        self,
        access_key_store: AccessKeyStore,
        observability_manager: ObservabilityManager,
        burst_limiter: BurstLimiter | None = None,
        require_device_id: bool = False,
        usage_history_size: int = 20,
        timezone: str | ZoneInfo = "UTC",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize AccessKeyValidator.

        Args:
            access_key_store: Store holding access keys.
            observability_manager: ObservabilityManager for events and logging.
            burst_limiter: Optional burst protection run before consumption.
            require_device_id: Reject requests that carry no device id.
            usage_history_size: Usage timestamps kept per key.
            timezone: Timezone whose calendar day bounds the daily limit.
            clock: Returns the current UTC time.
        """
        self._store = access_key_store
        self._observability = observability_manager
        self._burst_limiter = burst_limiter
        self._require_device_id = require_device_id
        self._history_size = usage_history_size
        self._zone = timezone if isinstance(timezone, ZoneInfo) else ZoneInfo(timezone)
        self._clock = clock

    def today(self, now: datetime) -> date:
        """Calendar day of ``now`` in the configured timezone."""
        return now.astimezone(self._zone).date()

    async def validate(
        self,
        key: str | None,
        device_id: str | None = None,
        panel_type: str | None = None,
    ) -> Decision:
        """Validate an access key and consume one use if it is admitted.

        Args:
            key: The access key supplied by the caller.
            device_id: Device identifier; when given (or when device ids are
                required) the device must be authorized for the key.
            panel_type: Requested panel type, checked against the key's
                panel type restriction.

        Returns:
            Decision describing the outcome.

        Raises:
            StateStoreError: If the store is unavailable.
        """
        try:
            return await self._validate(key, device_id, panel_type)
        except StateStoreError as e:
            await self._observability.log(
                level="ERROR",
                message=f"Access key validation failed: {e}",
                context={"key": key or "", "device_id": device_id},
            )
            raise

    async def _validate(
        self,
        key: str | None,
        device_id: str | None,
        panel_type: str | None,
    ) -> Decision:
        key = (key or "").strip()
        if not key:
            return Decision.deny(ValidationOutcome.InvalidRequest, "Access key is required.")

        device_id = (device_id or "").strip() or None
        if self._require_device_id and device_id is None:
            return Decision.deny(ValidationOutcome.DeviceUnauthorized, "Device ID is required.")

        now = self._clock()
        record = await self._store.get_key(key)
        if record is None:
            return Decision.deny(ValidationOutcome.NotFound, "Access key is invalid or not found.")

        if device_id is not None:
            denial = self._device_decision(record, device_id)
            if denial is not None:
                return denial

        record, denial = await self._resolve_status(record, now)
        if denial is not None:
            return denial

        if panel_type and not record.panel_type_restriction.allows(panel_type):
            return Decision.deny(
                ValidationOutcome.PanelTypeRestricted,
                f"This access key cannot be used for {panel_type.strip().lower()} panels.",
                {"panel_type_restriction": record.panel_type_restriction.value},
            )

        if self._burst_limiter is not None:
            rejection = await self._burst_limiter.check(record, now)
            if rejection is not None:
                return rejection

        today = self.today(now)
        consumed = await self._store.consume(
            key,
            now=now,
            today=today,
            history_size=self._history_size,
            device_id=device_id,
        )
        if consumed is None:
            return await self._explain_miss(key, device_id, now, today)

        await self._emit(
            "access_key_validated",
            {
                "key": key,
                "device_id": device_id,
                "usage_count": consumed.usage_count,
                "daily_usage": consumed.daily_usage,
            },
        )
        return Decision.allow(details=self._usage_details(consumed, today))

    def _device_decision(self, record: AccessKey, device_id: str) -> Decision | None:
        if record.is_authorized(device_id):
            return None
        if record.is_pending(device_id):
            return Decision.deny(
                ValidationOutcome.DevicePending,
                "This device is awaiting administrator approval.",
                {"device_id": device_id},
            )
        return Decision.deny(
            ValidationOutcome.DeviceUnauthorized,
            "This device is not authorized for this access key.",
            {"device_id": device_id},
        )

    async def _resolve_status(
        self,
        record: AccessKey,
        now: datetime,
        retry: bool = True,
    ) -> tuple[AccessKey, Decision | None]:
        """Return the record to proceed with, or a status denial.

        Elapsed suspensions and time-boxed bans are cleared with a conditional
        update. If that update misses, the status changed concurrently and the
        fresh record is evaluated once more.
        """
        status = record.status
        if isinstance(status, SuspendedStatus) and status.is_expired(now):
            cleared = await self._store.clear_expired_suspension(record.key, now)
            trigger = "suspension_expired"
        elif isinstance(status, BannedStatus) and status.is_expired(now):
            cleared = await self._store.clear_expired_ban(record.key, now)
            trigger = "ban_expired"
        else:
            return record, self._status_decision(record)

        if cleared is not None:
            await self._audit_expiry(record, trigger, now)
            return cleared, None

        fresh = await self._store.get_key(record.key)
        if fresh is None:
            return record, Decision.deny(
                ValidationOutcome.NotFound, "Access key is invalid or not found."
            )
        if retry:
            return await self._resolve_status(fresh, now, retry=False)
        return fresh, self._status_decision(fresh)

    def _status_decision(self, record: AccessKey) -> Decision | None:
        status = record.status
        if isinstance(status, SuspendedStatus):
            return Decision.deny(
                ValidationOutcome.Suspended,
                "This access key has been suspended.",
                {
                    "reason": status.reason or NO_REASON,
                    "suspension_until": status.until.isoformat() if status.until else "permanent",
                },
            )
        if isinstance(status, BannedStatus):
            if status.permanent:
                return Decision.deny(
                    ValidationOutcome.Banned,
                    "This access key has been permanently banned.",
                    {"reason": status.reason or NO_REASON},
                )
            return Decision.deny(
                ValidationOutcome.Banned,
                "This access key has been banned.",
                {
                    "reason": status.reason or NO_REASON,
                    "expires_at": status.expires_at.isoformat() if status.expires_at else None,
                },
            )
        return None

    async def _explain_miss(
        self,
        key: str,
        device_id: str | None,
        now: datetime,
        today: date,
    ) -> Decision:
        """Report why the conditional consume matched nothing.

        The re-read only explains the miss; it never feeds another write.
        """
        record = await self._store.get_key(key)
        if record is None:
            return Decision.deny(ValidationOutcome.NotFound, "Access key is invalid or not found.")
        if record.status_kind != KeyStatus.Active:
            denial = self._status_decision(record)
            if denial is not None:
                return denial
        if device_id is not None:
            denial = self._device_decision(record, device_id)
            if denial is not None:
                return denial

        await self._emit(
            "daily_limit_reached",
            {"key": key, "daily_limit": record.daily_limit},
        )
        return Decision.deny(
            ValidationOutcome.DailyLimitReached,
            "The daily usage limit for this access key has been reached.",
            {
                "daily_limit": record.daily_limit,
                "daily_usage": record.usage_on(today),
                "resets_on": (today + timedelta(days=1)).isoformat(),
            },
        )

    @staticmethod
    def _usage_details(record: AccessKey, today: date) -> dict[str, Any]:
        details: dict[str, Any] = {
            "usage_count": record.usage_count,
            "daily_usage": record.usage_on(today),
        }
        if record.daily_limit:
            details["daily_limit"] = record.daily_limit
            details["remaining_today"] = max(0, record.daily_limit - record.usage_on(today))
        return details

    async def _audit_expiry(self, record: AccessKey, trigger: str, now: datetime) -> None:
        status = record.status
        transition = StateTransition(
            entity_id=record.key,
            from_state=status.kind,
            to_state=KeyStatus.Active.value,
            trigger=trigger,
            actor="system",
            context={"reason": getattr(status, "reason", None), "cleared_at": now.isoformat()},
        )
        try:
            await self._store.save_state_transition(transition)
        except StateStoreError as e:
            await self._observability.log(
                level="WARNING",
                message=f"Failed to record {trigger} transition: {e}",
                context={"key": record.key},
            )
        await self._emit(
            "state_transition",
            {
                "key": record.key,
                "from_state": transition.from_state,
                "to_state": transition.to_state,
                "reason": trigger,
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
