"""Decision model returned by access key validation."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ValidationOutcome(str, Enum):
    """Outcome of a validation or admission check.

    Every value except ``Valid`` is an expected denial, reported through a
    :class:`Decision` rather than raised.
    """

    Valid = "valid"
    InvalidRequest = "invalid_request"
    NotFound = "not_found"
    DeviceUnauthorized = "device_unauthorized"
    DevicePending = "device_pending"
    Suspended = "suspended"
    Banned = "banned"
    PanelTypeRestricted = "panel_type_restricted"
    DailyLimitReached = "daily_limit_reached"
    RateLimited = "rate_limited"


_STATUS_CODES: dict[ValidationOutcome, int] = {
    ValidationOutcome.Valid: 200,
    ValidationOutcome.InvalidRequest: 400,
    ValidationOutcome.NotFound: 401,
    ValidationOutcome.DeviceUnauthorized: 403,
    ValidationOutcome.DevicePending: 403,
    ValidationOutcome.Suspended: 403,
    ValidationOutcome.Banned: 403,
    ValidationOutcome.PanelTypeRestricted: 403,
    ValidationOutcome.DailyLimitReached: 429,
    ValidationOutcome.RateLimited: 429,
}


class Decision(BaseModel):
    """Result of validating an access key.

    Example:
        ```python
        decision = await validator.validate("my-key", device_id="dev-1")
        if not decision.valid:
            return JSONResponse(decision.to_response(), status_code=decision.status_code)
        ```
    """

    valid: bool
    outcome: ValidationOutcome
    message: str
    details: dict[str, Any] | None = Field(default=None)

    model_config = ConfigDict(frozen=True)

    @classmethod
    def allow(cls, message: str = "Access key is valid.", details: dict[str, Any] | None = None) -> "Decision":
        return cls(valid=True, outcome=ValidationOutcome.Valid, message=message, details=details)

    @classmethod
    def deny(
        cls,
        outcome: ValidationOutcome,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> "Decision":
        if outcome is ValidationOutcome.Valid:
            raise ValueError("deny() requires a denial outcome")
        return cls(
            valid=False,
            outcome=outcome,
            message=message,
            details={"status": outcome.value, **(details or {})},
        )

    @property
    def status_code(self) -> int:
        """HTTP-style status code for this decision."""
        return _STATUS_CODES[self.outcome]

    def to_response(self) -> dict[str, Any]:
        """Serialize to the ``{valid, message, details?}`` response body."""
        body: dict[str, Any] = {"valid": self.valid, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body
