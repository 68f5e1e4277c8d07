"""Default observability manager implementation."""

import logging
from datetime import UTC, datetime
from typing import Any

import structlog

from accessgate.domain.interfaces.observability_manager import (
    ObservabilityError,
    ObservabilityManager,
)
from accessgate.domain.models.access_key import mask_key

# Context fields that carry access keys or secrets.
SENSITIVE_FIELDS = frozenset({"key", "access_key", "accessKey"})
REDACTED_FIELDS = frozenset({"bot_token", "management_api_key", "authorization"})


def sanitize_for_logging(data: Any) -> Any:
    """Mask access keys and drop secrets before logging.

    Values under access-key fields are masked (first characters kept so
    operators can still correlate entries); secret fields are replaced with
    ``[REDACTED]``. Nested dicts and lists are sanitized recursively.
    """
    if isinstance(data, dict):
        sanitized = {}
        for field, value in data.items():
            if field in REDACTED_FIELDS:
                sanitized[field] = "[REDACTED]"
            elif field in SENSITIVE_FIELDS and isinstance(value, str):
                sanitized[field] = mask_key(value)
            else:
                sanitized[field] = sanitize_for_logging(value)
        return sanitized
    if isinstance(data, list):
        return [sanitize_for_logging(item) for item in data]
    return data


def configure_logging(log_level: str = "INFO", json_format: bool = True) -> None:
    """Configure structlog and the stdlib logging it wraps."""
    processors: list[Any] = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(message)s"
        if json_format
        else "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


class DefaultObservabilityManager(ObservabilityManager):
    """ObservabilityManager backed by structlog.

    JSON output for production, console output in development mode.
    """

    def __init__(self, log_level: str = "INFO", json_format: bool = True) -> None:
        configure_logging(log_level=log_level, json_format=json_format)
        self._logger = structlog.get_logger("accessgate")

    async def emit_event(
        self,
        event_type: str,
        payload: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        try:
            event_data = dict(sanitize_for_logging(payload))
            if metadata:
                sanitized_metadata = sanitize_for_logging(metadata)
                sanitized_metadata.setdefault("timestamp", datetime.now(UTC).isoformat())
                event_data["metadata"] = sanitized_metadata

            self._logger.info("Event emitted", event_type=event_type, **event_data)
        except Exception as e:
            raise ObservabilityError(f"Failed to emit event: {e}") from e

    async def log(
        self,
        level: str,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        try:
            log_method = getattr(self._logger, level.lower(), self._logger.info)
            if context:
                log_method(message, **sanitize_for_logging(context))
            else:
                log_method(message)
        except Exception as e:
            raise ObservabilityError(f"Failed to log message: {e}") from e
