"""Audit service for recording state changes to billing entities."""

from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from meterpay.repositories.audit_log_repository import AuditLogRepository


@dataclass(frozen=True)
class Actor:
    """Who caused a change: a user, the processor, or the system itself."""

    actor_type: str = "system"
    actor_id: str | None = None


SYSTEM = Actor()
PROCESSOR = Actor(actor_type="processor")


class AuditService:
    """Service for recording audit trail entries.

    Entries are flushed into the caller's transaction, so an audit row exists
    exactly when the change it describes was committed.
    """

    def __init__(self, db: Session):
        self.repo = AuditLogRepository(db)

    def log_create(
        self,
        resource_type: str,
        resource_id: UUID,
        actor: Actor = SYSTEM,
        data: dict[str, Any] | None = None,
        *,
        owner_id: str | None = None,
    ) -> None:
        """Log a resource creation event."""
        self.log_action(
            resource_type, resource_id, "created", actor, {"after": data or {}}, owner_id=owner_id
        )

    def log_update(
        self,
        resource_type: str,
        resource_id: UUID,
        actor: Actor = SYSTEM,
        old_data: dict[str, Any] | None = None,
        new_data: dict[str, Any] | None = None,
        *,
        owner_id: str | None = None,
    ) -> None:
        """Log a resource update event, auto-diffing changed fields."""
        old = old_data or {}
        new = new_data or {}
        changes: dict[str, Any] = {}
        for key in set(old.keys()) | set(new.keys()):
            old_val = old.get(key)
            new_val = new.get(key)
            if old_val != new_val:
                changes[key] = {"old": old_val, "new": new_val}
        if not changes:
            return
        self.log_action(resource_type, resource_id, "updated", actor, changes, owner_id=owner_id)

    def log_status_change(
        self,
        resource_type: str,
        resource_id: UUID,
        old_status: str,
        new_status: str,
        actor: Actor = SYSTEM,
        *,
        owner_id: str | None = None,
    ) -> None:
        """Log a status change event."""
        self.log_action(
            resource_type,
            resource_id,
            "status_changed",
            actor,
            {"status": {"old": old_status, "new": new_status}},
            owner_id=owner_id,
        )

    def log_action(
        self,
        resource_type: str,
        resource_id: UUID,
        action: str,
        actor: Actor = SYSTEM,
        changes: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
        *,
        owner_id: str | None = None,
    ) -> None:
        self.repo.create(
            resource_type=resource_type,
            resource_id=resource_id,
            action=action,
            changes=_jsonable(changes or {}),
            actor_type=actor.actor_type,
            actor_id=actor.actor_id,
            owner_id=owner_id,
            metadata=_jsonable(metadata) if metadata else None,
        )


def _jsonable(value: Any) -> Any:
    """Make Decimals, datetimes and UUIDs storable in a JSON column."""
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, list | tuple | set | frozenset):
        return [_jsonable(v) for v in value]
    if value is None or isinstance(value, bool | int | float | str):
        return value
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)
