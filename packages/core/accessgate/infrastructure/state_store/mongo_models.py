"""MongoDB document models using Beanie ODM.

Access keys live in the ``accessKeys`` collection with camelCase field names,
the shape shared with the panel-provisioning handlers:

```
{
  key, status, reason, suspensionUntil,
  banDetails: {reason, bannedAt, expiresAt, isPermanent, bannedBy},
  panelTypeRestriction, dailyLimit, dailyUsage, lastUsedDate, lastUsedAt,
  usageCount, usageTimestamps, usedDevices,
  pendingDevices: [{deviceId, requestedAt}],
  lastErrorMessage, lastErrorTimestamp, sessionTimeout,   # burst rejection window
  createdAt, createdBy
}
```

``sessionTimeout`` is stored in milliseconds.

Example:
    ```python
    client = AsyncIOMotorClient("mongodb://localhost:27017", tz_aware=True)
    await initialize_beanie_models(client["accessgate"])
    ```
"""

from datetime import datetime
from typing import Any

from beanie import Document, Indexed, init_beanie
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import IndexModel

from accessgate.domain.models.access_key import (
    AccessKey,
    AccessKeyStatus,
    ActiveStatus,
    BannedStatus,
    PanelTypeRestriction,
    PendingDevice,
    RejectionWindow,
    SuspendedStatus,
)
from accessgate.domain.models.state_transition import StateTransition

ACCESS_KEYS_COLLECTION = "accessKeys"

REJECTION_WINDOW_FIELDS = ("lastErrorMessage", "lastErrorTimestamp", "sessionTimeout")


def status_to_fields(status: AccessKeyStatus) -> tuple[dict[str, Any], list[str]]:
    """Map a status variant to ``($set fields, $unset fields)``."""
    if isinstance(status, SuspendedStatus):
        return (
            {"status": "suspended", "reason": status.reason, "suspensionUntil": status.until},
            ["banDetails"],
        )
    if isinstance(status, BannedStatus):
        return (
            {
                "status": "banned",
                "reason": status.reason,
                "suspensionUntil": None,
                "banDetails": {
                    "reason": status.reason,
                    "bannedAt": status.banned_at,
                    "expiresAt": status.expires_at,
                    "isPermanent": status.permanent,
                    "bannedBy": status.banned_by,
                },
            },
            [],
        )
    return {"status": "active", "reason": None, "suspensionUntil": None}, ["banDetails"]


def status_from_fields(raw: dict[str, Any]) -> AccessKeyStatus:
    status = raw.get("status") or "active"
    if status == "suspended":
        return SuspendedStatus(reason=raw.get("reason"), until=raw.get("suspensionUntil"))
    if status == "banned":
        details = raw.get("banDetails") or {}
        return BannedStatus(
            reason=details.get("reason") or raw.get("reason"),
            permanent=details.get("isPermanent", True),
            expires_at=details.get("expiresAt"),
            banned_at=details.get("bannedAt"),
            banned_by=details.get("bannedBy"),
        )
    return ActiveStatus()


def access_key_from_raw(raw: dict[str, Any]) -> AccessKey:
    """Convert a raw ``accessKeys`` document into the domain model."""
    rejection_window = None
    if raw.get("lastErrorTimestamp") is not None and raw.get("lastErrorMessage"):
        rejection_window = RejectionWindow(
            message=raw["lastErrorMessage"],
            started_at=raw["lastErrorTimestamp"],
            cooldown_seconds=(raw.get("sessionTimeout") or 0) / 1000,
        )
    fields: dict[str, Any] = {
        "key": raw["key"],
        "status": status_from_fields(raw),
        "panel_type_restriction": raw.get("panelTypeRestriction") or PanelTypeRestriction.Both,
        "daily_limit": raw.get("dailyLimit") or 0,
        "daily_usage": raw.get("dailyUsage") or 0,
        "last_used_date": raw.get("lastUsedDate"),
        "last_used_at": raw.get("lastUsedAt"),
        "usage_count": raw.get("usageCount") or 0,
        "usage_timestamps": raw.get("usageTimestamps") or [],
        "used_devices": raw.get("usedDevices") or [],
        "pending_devices": [
            PendingDevice(device_id=p["deviceId"], requested_at=p["requestedAt"])
            for p in raw.get("pendingDevices") or []
        ],
        "rejection_window": rejection_window,
        "created_by": raw.get("createdBy"),
    }
    if raw.get("createdAt") is not None:
        fields["created_at"] = raw["createdAt"]
    return AccessKey(**fields)


class AccessKeyDocument(Document):
    """Beanie document model for AccessKey.

    Indexes:
        - key: Unique index, the lookup field for every request
        - status: Index for listing keys by status
        - createdAt: Index for sorting by creation time
    """

    key: Indexed(str, unique=True)  # type: ignore[valid-type]
    status: Indexed(str) = "active"  # type: ignore[valid-type]
    reason: str | None = None
    suspensionUntil: datetime | None = None
    banDetails: dict[str, Any] | None = None
    panelTypeRestriction: str = PanelTypeRestriction.Both.value
    dailyLimit: int = 0
    dailyUsage: int = 0
    lastUsedDate: str | None = None
    lastUsedAt: datetime | None = None
    usageCount: int = 0
    usageTimestamps: list[datetime] = []
    usedDevices: list[str] = []
    pendingDevices: list[dict[str, Any]] = []
    createdAt: datetime
    createdBy: str | None = None

    class Settings:
        """Beanie document settings."""

        name = ACCESS_KEYS_COLLECTION
        indexes = [
            IndexModel([("createdAt", 1)]),
        ]

    @classmethod
    def from_domain_model(cls, key: AccessKey) -> "AccessKeyDocument":
        status_fields, _ = status_to_fields(key.status)
        return cls(
            key=key.key,
            **status_fields,
            panelTypeRestriction=key.panel_type_restriction.value,
            dailyLimit=key.daily_limit,
            dailyUsage=key.daily_usage,
            lastUsedDate=key.last_used_date,
            lastUsedAt=key.last_used_at,
            usageCount=key.usage_count,
            usageTimestamps=key.usage_timestamps,
            usedDevices=key.used_devices,
            pendingDevices=[
                {"deviceId": p.device_id, "requestedAt": p.requested_at}
                for p in key.pending_devices
            ],
            createdAt=key.created_at,
            createdBy=key.created_by,
        )

    def to_domain_model(self) -> AccessKey:
        return access_key_from_raw(self.model_dump(exclude={"id", "revision_id"}))


class StateTransitionDocument(Document):
    """Beanie document model for the access key audit trail."""

    entity_type: str
    entity_id: Indexed(str)  # type: ignore[valid-type]
    from_state: str
    to_state: str
    transition_timestamp: Indexed(datetime)  # type: ignore[valid-type]
    trigger: str
    actor: str | None = None
    context: dict[str, Any] = {}

    class Settings:
        """Beanie document settings."""

        name = "state_transitions"
        indexes = [
            IndexModel([("entity_id", 1), ("transition_timestamp", 1)]),
        ]

    @classmethod
    def from_domain_model(cls, transition: StateTransition) -> "StateTransitionDocument":
        return cls(**transition.model_dump())

    def to_domain_model(self) -> StateTransition:
        return StateTransition(**self.model_dump(exclude={"id", "revision_id"}))


async def initialize_beanie_models(database: AsyncIOMotorDatabase) -> None:
    """Register document models with Beanie and create their indexes."""
    await init_beanie(
        database=database,
        document_models=[AccessKeyDocument, StateTransitionDocument],
    )
