"""Domain models for AccessGate."""

from accessgate.domain.models.access_key import (
    AccessKey,
    AccessKeyStatus,
    ActiveStatus,
    BannedStatus,
    KeyStatus,
    PanelTypeRestriction,
    PendingDevice,
    RejectionWindow,
    SuspendedStatus,
    mask_key,
    utcnow,
)
from accessgate.domain.models.decision import Decision, ValidationOutcome
from accessgate.domain.models.state_transition import StateTransition

__all__ = [
    "AccessKey",
    "AccessKeyStatus",
    "ActiveStatus",
    "BannedStatus",
    "KeyStatus",
    "PanelTypeRestriction",
    "PendingDevice",
    "RejectionWindow",
    "SuspendedStatus",
    "Decision",
    "ValidationOutcome",
    "StateTransition",
    "mask_key",
    "utcnow",
]
