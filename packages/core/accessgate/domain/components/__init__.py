"""Domain components."""

from accessgate.domain.components.access_key_validator import AccessKeyValidator
from accessgate.domain.components.burst_limiter import BURST_REJECTION_MESSAGES, BurstLimiter
from accessgate.domain.components.device_authorizer import (
    ActivationResult,
    DeviceAuthorizer,
    DeviceLimitReachedError,
    DeviceNotAuthorizedError,
    DeviceNotPendingError,
)
from accessgate.domain.components.key_administrator import (
    KeyAdministrator,
    KeyAlreadyExistsError,
    KeyNotFoundError,
)

__all__ = [
    "AccessKeyValidator",
    "ActivationResult",
    "BURST_REJECTION_MESSAGES",
    "BurstLimiter",
    "DeviceAuthorizer",
    "DeviceLimitReachedError",
    "DeviceNotAuthorizedError",
    "DeviceNotPendingError",
    "KeyAdministrator",
    "KeyAlreadyExistsError",
    "KeyNotFoundError",
]
