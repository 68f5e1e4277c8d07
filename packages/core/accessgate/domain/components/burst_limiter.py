"""BurstLimiter component for randomized admission control of bursty keys."""

import math
import random
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta

from accessgate.domain.interfaces.access_key_store import AccessKeyStore
from accessgate.domain.interfaces.observability_manager import ObservabilityManager
from accessgate.domain.models.access_key import AccessKey, RejectionWindow, utcnow
from accessgate.domain.models.decision import Decision, ValidationOutcome

BURST_REJECTION_MESSAGES: tuple[str, ...] = (
    "The system is busy right now. Please try again in a few minutes.",
    "Too many requests in a short time. Please wait a moment before trying again.",
    "An error occurred while creating the panel. Please try again later.",
    "Your request cannot be processed at the moment. Please try again later.",
    "Excessive usage detected. Please slow down and try again later.",
)


class BurstLimiter:
    """Probabilistic rejection of keys that are used in rapid succession.

    When a key has been used ``threshold`` or more times within ``window``,
    each further request is rejected with probability
    ``rejection_probability``. A rejection opens a cooldown window of random
    length between the cooldown bounds; during that window every request is
    rejected with the same message, so retries see a consistent error.

    The random source and clock are injectable so behaviour is deterministic
    under test.

    Example:
        ```python
        limiter = BurstLimiter(store, observability, rng=random.Random(42))
        decision = await limiter.record_burst_and_maybe_reject("abc123")
        ```
    """

    def __init__(
        self,
        access_key_store: AccessKeyStore,
        observability_manager: ObservabilityManager,
        threshold: int = 3,
        window_seconds: float = 600,
        rejection_probability: float = 0.7,
        cooldown_min_seconds: float = 300,
        cooldown_max_seconds: float = 900,
        messages: Sequence[str] = BURST_REJECTION_MESSAGES,
        history_size: int = 20,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize BurstLimiter.

        Args:
            access_key_store: Store holding usage history and rejection windows.
            observability_manager: ObservabilityManager for events and logging.
            threshold: Recent uses that make a key eligible for rejection.
            window_seconds: Length of the "recent" window.
            rejection_probability: Chance of rejecting an eligible request.
            cooldown_min_seconds: Lower bound of the random cooldown.
            cooldown_max_seconds: Upper bound of the random cooldown.
            messages: Rejection messages, one picked at random per window.
            history_size: Usage timestamps kept per key.
            rng: Random source; a fresh ``random.Random`` if None.
            clock: Returns the current UTC time.
        """
        if not messages:
            raise ValueError("At least one rejection message is required")
        if cooldown_min_seconds > cooldown_max_seconds:
            raise ValueError("cooldown_min_seconds must not exceed cooldown_max_seconds")

        self._store = access_key_store
        self._observability = observability_manager
        self._threshold = threshold
        self._window = timedelta(seconds=window_seconds)
        self._probability = rejection_probability
        self._cooldown_bounds = (cooldown_min_seconds, cooldown_max_seconds)
        self._messages = tuple(messages)
        self._history_size = history_size
        self._rng = rng or random.Random()
        self._clock = clock

    async def check(self, record: AccessKey, now: datetime) -> Decision | None:
        """Decide whether ``record`` should be rejected, without recording usage.

        Returns:
            A ``RateLimited`` decision, or None if the request is admitted.
        """
        existing = record.rejection_window
        if existing is not None and existing.is_active(now):
            return self._rejection(existing, now)

        recent = record.recent_usage_count(now, self._window)
        if recent < self._threshold or self._rng.random() >= self._probability:
            return None

        window = RejectionWindow(
            message=self._rng.choice(self._messages),
            started_at=now,
            cooldown_seconds=self._rng.uniform(*self._cooldown_bounds),
        )
        updated = await self._store.open_rejection_window(record.key, window)
        effective = updated.rejection_window if updated and updated.rejection_window else window

        try:
            await self._observability.emit_event(
                event_type="burst_rejection",
                payload={
                    "key": record.key,
                    "recent_uses": recent,
                    "cooldown_seconds": round(effective.cooldown_seconds, 1),
                },
                metadata={"window_ends_at": effective.ends_at.isoformat()},
            )
        except Exception as e:
            await self._observability.log(
                level="WARNING",
                message=f"Failed to emit burst_rejection event: {e}",
                context={"key": record.key},
            )

        return self._rejection(effective, now)

    async def record_burst_and_maybe_reject(self, key: str) -> Decision:
        """Admit or reject a use of ``key``, recording admitted uses.

        Returns:
            ``Valid`` when admitted, ``RateLimited`` when rejected, ``NotFound``
            if the key does not exist.
        """
        now = self._clock()
        record = await self._store.get_key(key)
        if record is None:
            return Decision.deny(ValidationOutcome.NotFound, "Access key not found.")

        rejection = await self.check(record, now)
        if rejection is not None:
            return rejection

        updated = await self._store.record_usage(key, now, self._history_size)
        if updated is None:
            return Decision.deny(ValidationOutcome.NotFound, "Access key not found.")
        return Decision.allow(message="Request admitted.")

    def _rejection(self, window: RejectionWindow, now: datetime) -> Decision:
        remaining = max(0.0, (window.ends_at - now).total_seconds())
        return Decision.deny(
            ValidationOutcome.RateLimited,
            window.message,
            {"retry_after_seconds": math.ceil(remaining)},
        )
