"""AccessKeyStore interface for access key persistence.

Every mutating method is a single atomic, conditional transition on one access
key. Implementations must never read a record, decide in Python and then write
it back: two concurrent callers would both pass a limit check before either
update lands. MongoDB implements each method with one ``find_one_and_update``;
the in-memory store runs each method under one lock.

Methods that return ``AccessKey | None`` return the record *after* the update,
or ``None`` when the conditional filter matched nothing (missing key or a
precondition that no longer holds). Callers re-read with :meth:`get_key` to
explain a miss; that read never feeds another write.

Example:
    ```python
    from accessgate.infrastructure.state_store.memory_store import InMemoryAccessKeyStore

    store = InMemoryAccessKeyStore()
    await store.create_key(AccessKey(key="abc123", daily_limit=5))

    updated = await store.consume(
        "abc123", now=utcnow(), today=date.today(), history_size=20
    )
    ```
"""

from abc import ABC, abstractmethod
from datetime import date, datetime

from accessgate.domain.models.access_key import (
    AccessKey,
    AccessKeyStatus,
    RejectionWindow,
)
from accessgate.domain.models.state_transition import StateTransition


class StateStoreError(Exception):
    """Raised when the backing store is unavailable or an operation fails."""

    pass


class KeyConflictError(Exception):
    """Raised when creating a key that already exists."""

    pass


class AccessKeyStore(ABC):
    """Abstract interface for access key persistence.

    All methods are async. Store failures raise :class:`StateStoreError`.
    """

    @abstractmethod
    async def create_key(self, key: AccessKey) -> AccessKey:
        """Insert a new access key.

        Raises:
            KeyConflictError: If a record with the same ``key`` exists.
            StateStoreError: If the insert fails.
        """

    @abstractmethod
    async def get_key(self, key: str) -> AccessKey | None:
        """Fetch an access key by its unique ``key`` value."""

    @abstractmethod
    async def list_keys(self) -> list[AccessKey]:
        """List all access keys, oldest first."""

    @abstractmethod
    async def delete_key(self, key: str) -> bool:
        """Physically delete an access key. Returns False if it did not exist."""

    @abstractmethod
    async def consume(
        self,
        key: str,
        *,
        now: datetime,
        today: date,
        history_size: int,
        device_id: str | None = None,
    ) -> AccessKey | None:
        """Consume one use of an active key.

        Matches only if the key is active, ``device_id`` (when given) is an
        authorized device, and the daily limit is 0, or the stored usage date
        is not ``today``, or ``daily_usage < daily_limit``. On match:

        - ``daily_usage`` becomes 1 on a new day, otherwise increments
        - ``usage_count`` increments
        - ``last_used_date = today`` and ``last_used_at = now``
        - ``now`` is appended to ``usage_timestamps``, keeping the last
          ``history_size`` entries
        - any burst rejection window is cleared
        """

    @abstractmethod
    async def clear_expired_suspension(self, key: str, now: datetime) -> AccessKey | None:
        """Return a suspended key to active if its suspension ended before ``now``."""

    @abstractmethod
    async def clear_expired_ban(self, key: str, now: datetime) -> AccessKey | None:
        """Return a banned key to active if it is time-boxed and expired before ``now``."""

    @abstractmethod
    async def set_status(self, key: str, status: AccessKeyStatus) -> tuple[AccessKey, AccessKey] | None:
        """Replace the status of a key.

        Returns:
            ``(before, after)`` snapshots, or None if the key does not exist.
        """

    @abstractmethod
    async def set_daily_limit(self, key: str, daily_limit: int) -> AccessKey | None:
        """Set the daily limit (0 = unlimited)."""

    @abstractmethod
    async def record_usage(self, key: str, now: datetime, history_size: int) -> AccessKey | None:
        """Append ``now`` to the bounded usage history and clear any rejection window."""

    @abstractmethod
    async def open_rejection_window(self, key: str, window: RejectionWindow) -> AccessKey | None:
        """Record a burst rejection window unless an active one already exists.

        Returns the key with the window that is now in effect, which may be an
        earlier window opened by a concurrent request.
        """

    @abstractmethod
    async def add_pending_device(self, key: str, device_id: str, now: datetime) -> AccessKey | None:
        """Append a pending device unless it is already pending or authorized."""

    @abstractmethod
    async def authorize_device(self, key: str, device_id: str, max_devices: int) -> AccessKey | None:
        """Move a device from pending to authorized.

        Matches only if the device is pending and, when ``max_devices > 0``,
        fewer than ``max_devices`` devices are authorized.
        """

    @abstractmethod
    async def remove_pending_device(self, key: str, device_id: str) -> AccessKey | None:
        """Drop a pending device. Matches only if the device is pending."""

    @abstractmethod
    async def remove_authorized_device(self, key: str, device_id: str) -> AccessKey | None:
        """Drop an authorized device. Matches only if the device is authorized."""

    @abstractmethod
    async def save_state_transition(self, transition: StateTransition) -> None:
        """Append a status transition to the audit trail."""

    @abstractmethod
    async def list_state_transitions(self, key: str, limit: int | None = None) -> list[StateTransition]:
        """Return the audit trail for a key, oldest first."""

    async def close(self) -> None:  # noqa: B027
        """Release resources held by the store."""
