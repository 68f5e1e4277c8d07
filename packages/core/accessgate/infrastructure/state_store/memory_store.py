"""In-memory access key store implementation.

This module provides an in-memory implementation of the AccessKeyStore
interface using Python dictionaries. It needs no external services and is the
default store for development and tests.

Example:
    ```python
    from accessgate.infrastructure.state_store.memory_store import InMemoryAccessKeyStore
    from accessgate.domain.models.access_key import AccessKey

    store = InMemoryAccessKeyStore()
    await store.create_key(AccessKey(key="abc123"))
    record = await store.get_key("abc123")
    ```
"""

import asyncio
from collections.abc import Callable
from datetime import date, datetime

from accessgate.domain.interfaces.access_key_store import (
    AccessKeyStore,
    KeyConflictError,
    StateStoreError,
)
from accessgate.domain.models.access_key import (
    AccessKey,
    AccessKeyStatus,
    ActiveStatus,
    BannedStatus,
    KeyStatus,
    PendingDevice,
    RejectionWindow,
    SuspendedStatus,
)
from accessgate.domain.models.state_transition import StateTransition


class InMemoryAccessKeyStore(AccessKeyStore):
    """In-memory implementation of AccessKeyStore.

    Atomicity:
        Every method runs under a single ``asyncio.Lock``, so each conditional
        transition observes and mutates a record without interleaving. Stored
        records are never handed out; callers receive deep copies.

    Attributes:
        _keys: AccessKey records keyed by ``key``.
        _transitions: Audit trail, oldest first, capped at ``max_transitions``.
        _lock: Lock serializing all operations.
    """

    def __init__(self, max_transitions: int = 1000) -> None:
        """Initialize an empty store.

        Args:
            max_transitions: Maximum number of audit entries kept (FIFO).
                Set to 0 or negative for unlimited storage.
        """
        self._keys: dict[str, AccessKey] = {}
        self._transitions: list[StateTransition] = []
        self._max_transitions = max_transitions if max_transitions > 0 else 0
        self._lock = asyncio.Lock()

    async def _update(
        self,
        key: str,
        predicate: Callable[[AccessKey], bool],
        changes: Callable[[AccessKey], dict],
    ) -> AccessKey | None:
        """Apply ``changes`` to ``key`` if ``predicate`` holds, atomically."""
        try:
            async with self._lock:
                current = self._keys.get(key)
                if current is None or not predicate(current):
                    return None
                updated = AccessKey.model_validate(
                    {**current.model_dump(), **changes(current)}
                )
                self._keys[key] = updated
                return updated.model_copy(deep=True)
        except (ValueError, TypeError) as e:
            raise StateStoreError(f"Failed to update key: {e}") from e

    async def create_key(self, key: AccessKey) -> AccessKey:
        async with self._lock:
            if key.key in self._keys:
                raise KeyConflictError("Access key already exists")
            self._keys[key.key] = key.model_copy(deep=True)
        return key.model_copy(deep=True)

    async def get_key(self, key: str) -> AccessKey | None:
        record = self._keys.get(key)
        return record.model_copy(deep=True) if record is not None else None

    async def list_keys(self) -> list[AccessKey]:
        async with self._lock:
            records = sorted(self._keys.values(), key=lambda k: k.created_at)
            return [r.model_copy(deep=True) for r in records]

    async def delete_key(self, key: str) -> bool:
        async with self._lock:
            return self._keys.pop(key, None) is not None

    async def consume(
        self,
        key: str,
        *,
        now: datetime,
        today: date,
        history_size: int,
        device_id: str | None = None,
    ) -> AccessKey | None:
        def predicate(record: AccessKey) -> bool:
            if record.status_kind != KeyStatus.Active:
                return False
            if device_id is not None and not record.is_authorized(device_id):
                return False
            return record.has_daily_capacity(today)

        def changes(record: AccessKey) -> dict:
            return {
                "daily_usage": record.usage_on(today) + 1,
                "usage_count": record.usage_count + 1,
                "last_used_date": today.isoformat(),
                "last_used_at": now,
                "usage_timestamps": [*record.usage_timestamps, now][-history_size:],
                "rejection_window": None,
            }

        return await self._update(key, predicate, changes)

    async def clear_expired_suspension(self, key: str, now: datetime) -> AccessKey | None:
        return await self._update(
            key,
            lambda r: isinstance(r.status, SuspendedStatus) and r.status.is_expired(now),
            lambda r: {"status": ActiveStatus()},
        )

    async def clear_expired_ban(self, key: str, now: datetime) -> AccessKey | None:
        return await self._update(
            key,
            lambda r: isinstance(r.status, BannedStatus) and r.status.is_expired(now),
            lambda r: {"status": ActiveStatus()},
        )

    async def set_status(
        self, key: str, status: AccessKeyStatus
    ) -> tuple[AccessKey, AccessKey] | None:
        async with self._lock:
            current = self._keys.get(key)
            if current is None:
                return None
            before = current.model_copy(deep=True)
            current.status = status
            return before, current.model_copy(deep=True)

    async def set_daily_limit(self, key: str, daily_limit: int) -> AccessKey | None:
        return await self._update(key, lambda r: True, lambda r: {"daily_limit": daily_limit})

    async def record_usage(self, key: str, now: datetime, history_size: int) -> AccessKey | None:
        return await self._update(
            key,
            lambda r: True,
            lambda r: {
                "usage_timestamps": [*r.usage_timestamps, now][-history_size:],
                "rejection_window": None,
            },
        )

    async def open_rejection_window(self, key: str, window: RejectionWindow) -> AccessKey | None:
        async with self._lock:
            current = self._keys.get(key)
            if current is None:
                return None
            existing = current.rejection_window
            if existing is None or not existing.is_active(window.started_at):
                current.rejection_window = window
            return current.model_copy(deep=True)

    async def add_pending_device(self, key: str, device_id: str, now: datetime) -> AccessKey | None:
        return await self._update(
            key,
            lambda r: not r.is_pending(device_id) and not r.is_authorized(device_id),
            lambda r: {
                "pending_devices": [
                    *r.pending_devices,
                    PendingDevice(device_id=device_id, requested_at=now),
                ]
            },
        )

    async def authorize_device(self, key: str, device_id: str, max_devices: int) -> AccessKey | None:
        def predicate(record: AccessKey) -> bool:
            if not record.is_pending(device_id):
                return False
            return max_devices <= 0 or len(record.used_devices) < max_devices

        return await self._update(
            key,
            predicate,
            lambda r: {
                "pending_devices": [p for p in r.pending_devices if p.device_id != device_id],
                "used_devices": [*r.used_devices, device_id],
            },
        )

    async def remove_pending_device(self, key: str, device_id: str) -> AccessKey | None:
        return await self._update(
            key,
            lambda r: r.is_pending(device_id),
            lambda r: {
                "pending_devices": [p for p in r.pending_devices if p.device_id != device_id]
            },
        )

    async def remove_authorized_device(self, key: str, device_id: str) -> AccessKey | None:
        return await self._update(
            key,
            lambda r: r.is_authorized(device_id),
            lambda r: {"used_devices": [d for d in r.used_devices if d != device_id]},
        )

    async def save_state_transition(self, transition: StateTransition) -> None:
        async with self._lock:
            self._transitions.append(transition)
            if self._max_transitions and len(self._transitions) > self._max_transitions:
                del self._transitions[: len(self._transitions) - self._max_transitions]

    async def list_state_transitions(self, key: str, limit: int | None = None) -> list[StateTransition]:
        matches = [t for t in self._transitions if t.entity_id == key]
        if limit is not None:
            matches = matches[-limit:]
        return matches
