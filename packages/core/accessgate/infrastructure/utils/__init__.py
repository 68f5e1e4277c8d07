"""Infrastructure utilities."""

from accessgate.infrastructure.utils.validation import (
    InvalidDurationError,
    ValidationError,
    generate_access_key,
    parse_duration,
    validate_access_key,
    validate_device_id,
)

__all__ = [
    "InvalidDurationError",
    "ValidationError",
    "generate_access_key",
    "parse_duration",
    "validate_access_key",
    "validate_device_id",
]
