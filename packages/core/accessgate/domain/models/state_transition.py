"""StateTransition data model for the access key audit trail."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from accessgate.domain.models.access_key import UtcDatetime, utcnow


class StateTransition(BaseModel):
    """A recorded change of an access key's status.

    Written for admin actions (ban, suspend, unban, delete) and for automatic
    expiry of suspensions and time-boxed bans.
    """

    entity_type: str = Field(default="AccessKey", min_length=1)
    entity_id: str = Field(..., min_length=1, description="The access key")
    from_state: str
    to_state: str
    transition_timestamp: UtcDatetime = Field(default_factory=utcnow)
    trigger: str = Field(
        ...,
        min_length=1,
        description="What caused the transition (ban, suspend, unban, suspension_expired, ...)",
    )
    actor: str | None = Field(default=None, description="Who performed a manual transition")
    context: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)
