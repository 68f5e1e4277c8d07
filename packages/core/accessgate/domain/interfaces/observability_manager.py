"""ObservabilityManager interface for events and logging."""

from abc import ABC, abstractmethod
from typing import Any


class ObservabilityManager(ABC):
    """Abstract interface for domain events and structured logs."""

    @abstractmethod
    async def emit_event(
        self,
        event_type: str,
        payload: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Emit a domain event.

        Args:
            event_type: Type of event (e.g., "access_key_validated", "device_authorized").
            payload: Event payload data.
            metadata: Optional metadata (request_id, timestamp, etc.).

        Raises:
            ObservabilityError: If event emission fails.
        """

    @abstractmethod
    async def log(
        self,
        level: str,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Log a message with structured context.

        Raises:
            ObservabilityError: If logging fails.
        """


class ObservabilityError(Exception):
    """Raised when observability operations fail."""

    pass
