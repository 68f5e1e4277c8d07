"""AccessKey data model, status variants and device bookkeeping."""

from datetime import UTC, date, datetime, timedelta
from enum import Enum
from typing import Annotated, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def _as_utc(value: datetime) -> datetime:
    # Naive values come from older documents written without tz info.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


def mask_key(key: str) -> str:
    """Mask an access key for logs and reprs, keeping the first four characters."""
    if len(key) <= 4:
        return "*" * len(key)
    return f"{key[:4]}{'*' * min(len(key) - 4, 8)}"


class KeyStatus(str, Enum):
    """Operational status of an access key."""

    Active = "active"
    """Key may be used, subject to device, panel and daily-limit checks."""

    Suspended = "suspended"
    """Key is suspended, optionally until a point in time."""

    Banned = "banned"
    """Key is banned, permanently or until the ban expires."""


class PanelTypeRestriction(str, Enum):
    """Which panel types a key may provision."""

    Public = "public"
    Private = "private"
    Both = "both"

    def allows(self, panel_type: str) -> bool:
        """Check whether a requested panel type is permitted.

        Only the opposite panel type is refused, so unknown panel types pass
        through to the provisioning layer unchanged.
        """
        requested = panel_type.strip().lower()
        if self is PanelTypeRestriction.Public:
            return requested != PanelTypeRestriction.Private.value
        if self is PanelTypeRestriction.Private:
            return requested != PanelTypeRestriction.Public.value
        return True


class ActiveStatus(BaseModel):
    """Key is active."""

    kind: Literal["active"] = "active"

    model_config = ConfigDict(frozen=True)


class SuspendedStatus(BaseModel):
    """Key is suspended; ``until=None`` means indefinitely."""

    kind: Literal["suspended"] = "suspended"
    reason: str | None = None
    until: UtcDatetime | None = None

    model_config = ConfigDict(frozen=True)

    def is_expired(self, now: datetime) -> bool:
        return self.until is not None and now > self.until


class BannedStatus(BaseModel):
    """Key is banned.

    Permanent bans never expire. Time-boxed bans carry ``expires_at`` and are
    lifted automatically the first time the key is validated after that instant.
    """

    kind: Literal["banned"] = "banned"
    reason: str | None = None
    permanent: bool = True
    expires_at: UtcDatetime | None = None
    banned_at: UtcDatetime | None = None
    banned_by: str | None = None

    model_config = ConfigDict(frozen=True)

    def is_expired(self, now: datetime) -> bool:
        return not self.permanent and self.expires_at is not None and now > self.expires_at


AccessKeyStatus = Annotated[
    ActiveStatus | SuspendedStatus | BannedStatus,
    Field(discriminator="kind"),
]


class PendingDevice(BaseModel):
    """A device waiting for an administrator to approve it."""

    device_id: str = Field(..., min_length=1)
    requested_at: UtcDatetime = Field(default_factory=utcnow)

    model_config = ConfigDict(frozen=True)


class RejectionWindow(BaseModel):
    """Cooldown recorded by the burst limiter after a randomized rejection."""

    message: str
    started_at: UtcDatetime
    cooldown_seconds: float = Field(..., ge=0)

    model_config = ConfigDict(frozen=True)

    @property
    def ends_at(self) -> datetime:
        return self.started_at + timedelta(seconds=self.cooldown_seconds)

    def is_active(self, now: datetime) -> bool:
        return now < self.ends_at


class AccessKey(BaseModel):
    """An access key with its status, counters and device authorizations.

    The ``key`` value is a credential: it is masked in ``repr`` and in logs.
    """

    key: str = Field(..., min_length=1, max_length=255)
    status: AccessKeyStatus = Field(default_factory=ActiveStatus)
    panel_type_restriction: PanelTypeRestriction = PanelTypeRestriction.Both
    daily_limit: int = Field(default=0, ge=0, description="0 means unlimited")
    daily_usage: int = Field(default=0, ge=0)
    last_used_date: str | None = Field(
        default=None,
        description="ISO calendar date of the last successful use",
    )
    last_used_at: UtcDatetime | None = None
    usage_count: int = Field(default=0, ge=0)
    usage_timestamps: list[UtcDatetime] = Field(default_factory=list)
    used_devices: list[str] = Field(default_factory=list)
    pending_devices: list[PendingDevice] = Field(default_factory=list)
    rejection_window: RejectionWindow | None = None
    created_at: UtcDatetime = Field(default_factory=utcnow)
    created_by: str | None = None

    model_config = ConfigDict(
        validate_assignment=True,
        str_strip_whitespace=True,
    )

    @field_validator("key")
    @classmethod
    def validate_key(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Access key cannot be empty")
        return v.strip()

    @field_validator("used_devices")
    @classmethod
    def dedupe_devices(cls, v: list[str]) -> list[str]:
        return list(dict.fromkeys(v))

    @property
    def status_kind(self) -> KeyStatus:
        return KeyStatus(self.status.kind)

    def is_authorized(self, device_id: str) -> bool:
        return device_id in self.used_devices

    def is_pending(self, device_id: str) -> bool:
        return any(p.device_id == device_id for p in self.pending_devices)

    def usage_on(self, today: date) -> int:
        """Daily usage as seen on ``today``; a stale counter counts as zero."""
        if self.last_used_date != today.isoformat():
            return 0
        return self.daily_usage

    def has_daily_capacity(self, today: date) -> bool:
        return self.daily_limit == 0 or self.usage_on(today) < self.daily_limit

    def recent_usage_count(self, now: datetime, window: timedelta) -> int:
        cutoff = now - window
        return sum(1 for ts in self.usage_timestamps if ts > cutoff)

    def __repr__(self) -> str:
        return (
            f"AccessKey(key={mask_key(self.key)!r}, status={self.status_kind.value}, "
            f"usage_count={self.usage_count}, daily_usage={self.daily_usage}/"
            f"{self.daily_limit or 'unlimited'}, devices={len(self.used_devices)})"
        )
