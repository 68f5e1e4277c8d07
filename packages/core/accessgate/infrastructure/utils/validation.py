"""Input validation utilities for access keys, device ids and durations."""

import re
import secrets
from datetime import timedelta


class ValidationError(Exception):
    """Raised when input validation fails."""

    def __init__(self, message: str, field: str | None = None) -> None:
        """Initialize ValidationError.

        Args:
            message: Human-readable error message.
            field: Optional field name that failed validation.
        """
        self.message = message
        self.field = field
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.field:
            return f"Validation error in field '{self.field}': {self.message}"
        return self.message


class InvalidDurationError(ValidationError):
    """Raised when a ban or suspension duration cannot be parsed."""

    def __init__(self, value: str) -> None:
        super().__init__(
            f"Invalid duration '{value}'. Use <n>h, <n>d, <n>w or 'permanent'",
            field="duration",
        )


PERMANENT = "permanent"

_DURATION_PATTERN = re.compile(r"^(\d+)([hdw])$")
_DURATION_UNITS = {"h": "hours", "d": "days", "w": "weeks"}

# Keys and device ids travel in query strings and Telegram callback data.
_TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9._:-]+$")

MAX_KEY_LENGTH = 255
MAX_DEVICE_ID_LENGTH = 128


def parse_duration(value: str) -> timedelta | None:
    """Parse a ban/suspension duration.

    Args:
        value: ``"<n>h"``, ``"<n>d"``, ``"<n>w"`` (n >= 1) or ``"permanent"``.

    Returns:
        The duration, or None for ``"permanent"``.

    Raises:
        InvalidDurationError: If the value is not a recognised duration.

    Example:
        ```python
        parse_duration("12h")        # timedelta(hours=12)
        parse_duration("permanent")  # None
        ```
    """
    normalized = (value or "").strip().lower()
    if normalized == PERMANENT:
        return None

    match = _DURATION_PATTERN.match(normalized)
    if match is None or int(match.group(1)) == 0:
        raise InvalidDurationError(value)

    amount, unit = int(match.group(1)), match.group(2)
    return timedelta(**{_DURATION_UNITS[unit]: amount})


def generate_access_key() -> str:
    """Generate a random 32 hex character access key."""
    return secrets.token_hex(16)


def validate_access_key(key: str) -> str:
    """Validate an access key and return it stripped.

    Raises:
        ValidationError: If the key is empty, too long, or contains characters
            outside ``[A-Za-z0-9._:-]``.
    """
    if not key or not key.strip():
        raise ValidationError("Access key cannot be empty", field="key")

    key = key.strip()
    if len(key) > MAX_KEY_LENGTH:
        raise ValidationError(
            f"Access key must be {MAX_KEY_LENGTH} characters or less",
            field="key",
        )
    if not _TOKEN_PATTERN.match(key):
        raise ValidationError("Access key contains invalid characters", field="key")
    return key


def validate_device_id(device_id: str) -> str:
    """Validate a device identifier and return it stripped."""
    if not device_id or not device_id.strip():
        raise ValidationError("Device ID cannot be empty", field="device_id")

    device_id = device_id.strip()
    if len(device_id) > MAX_DEVICE_ID_LENGTH:
        raise ValidationError(
            f"Device ID must be {MAX_DEVICE_ID_LENGTH} characters or less",
            field="device_id",
        )
    if not _TOKEN_PATTERN.match(device_id):
        raise ValidationError("Device ID contains invalid characters", field="device_id")
    return device_id


def validate_daily_limit(daily_limit: int) -> int:
    if isinstance(daily_limit, bool) or not isinstance(daily_limit, int):
        raise ValidationError("Daily limit must be an integer", field="daily_limit")
    if daily_limit < 0:
        raise ValidationError("Daily limit cannot be negative", field="daily_limit")
    return daily_limit
