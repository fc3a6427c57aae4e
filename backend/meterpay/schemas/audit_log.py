"""Audit trail entries as returned by the API."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, field_validator

from meterpay.models.shared import as_utc


class AuditLogResponse(BaseModel):
    """One change to a billing resource.

    ``owner_id`` is the owner whose resource changed; it is empty for
    changes with no owner, such as processor events nobody could be matched to.
    ``changes`` maps field names to ``{"old": ..., "new": ...}`` pairs for
    updates and to the initial values for creates. ``actor_type`` is
    ``processor``, ``system``, or whatever the caller sent for API requests.
    """

    model_config = {"from_attributes": True}

    id: UUID
    resource_type: str
    resource_id: UUID
    action: str
    changes: dict[str, Any]
    actor_type: str
    actor_id: str | None
    owner_id: str | None
    metadata_: dict[str, Any] | None
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def created_at_is_utc(cls, v: datetime) -> datetime:
        return as_utc(v) or v
