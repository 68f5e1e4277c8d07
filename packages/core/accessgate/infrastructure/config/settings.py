"""Configuration settings using pydantic-settings."""

from typing import Annotated, Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class AccessGateSettings(BaseSettings):
    """Configuration settings for AccessGate.

    Settings are loaded from environment variables prefixed with
    ``ACCESSGATE_`` (e.g. ``ACCESSGATE_REQUIRE_DEVICE_ID=true``) or passed as
    keyword arguments.

    Example:
        ```python
        settings = AccessGateSettings()
        settings = AccessGateSettings(max_devices_per_key=3, burst_protection_enabled=False)
        ```
    """

    model_config = SettingsConfigDict(
        env_prefix="ACCESSGATE_",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Store configuration
    mongodb_url: str | None = Field(
        default=None,
        validation_alias="MONGODB_URL",
        description="MongoDB connection string; the in-memory store is used when unset",
    )
    database_name: str | None = Field(
        default=None,
        description="Database name; defaults to the one in the connection string",
    )
    max_transitions: int = Field(
        default=1000,
        description="Audit entries kept by the in-memory store",
    )

    # Validation configuration
    timezone: str = Field(
        default="UTC",
        description="Timezone that defines the calendar day for daily limits",
    )
    require_device_id: bool = Field(
        default=False,
        description="Require a device id on validation (device-bound keys)",
    )
    max_devices_per_key: int = Field(
        default=1,
        ge=0,
        description="Maximum authorized devices per key (0 = unlimited)",
    )
    usage_history_size: int = Field(
        default=20,
        ge=1,
        description="Number of recent usage timestamps kept per key",
    )

    # Burst protection configuration
    burst_protection_enabled: bool = Field(default=True)
    burst_threshold: int = Field(default=3, ge=1, description="Uses within the window that trigger protection")
    burst_window_seconds: int = Field(default=600, ge=1)
    burst_rejection_probability: float = Field(default=0.7, ge=0.0, le=1.0)
    burst_cooldown_min_seconds: int = Field(default=300, ge=0)
    burst_cooldown_max_seconds: int = Field(default=900, ge=0)

    # Notification configuration
    telegram_bot_token: str | None = Field(default=None)
    telegram_chat_ids: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Admin chat ids, comma separated in the environment",
    )

    # Observability configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(default=True)

    @field_validator("telegram_chat_ids", mode="before")
    @classmethod
    def split_chat_ids(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [part.strip() for part in v.split(",") if part.strip()]
        return v

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @model_validator(mode="after")
    def validate_cooldown_bounds(self) -> "AccessGateSettings":
        if self.burst_cooldown_min_seconds > self.burst_cooldown_max_seconds:
            raise ValueError("burst_cooldown_min_seconds must not exceed burst_cooldown_max_seconds")
        return self

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> "AccessGateSettings":
        return cls(**config)
