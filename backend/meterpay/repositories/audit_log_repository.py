"""Repository for AuditLog rows."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func as sa_func
from sqlalchemy.orm import Session

from meterpay.core.sorting import apply_order_by
from meterpay.models.audit_log import AuditLog


class AuditLogRepository:
    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        *,
        resource_type: str,
        resource_id: UUID,
        action: str,
        changes: dict[str, Any],
        actor_type: str,
        actor_id: str | None = None,
        owner_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditLog:
        # Flushed only: the record commits with the change it describes.
        entry = AuditLog(
            resource_type=resource_type,
            resource_id=resource_id,
            action=action,
            changes=changes,
            actor_type=actor_type,
            actor_id=actor_id,
            owner_id=owner_id,
            metadata_=metadata,
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def get_by_resource(
        self,
        resource_type: str,
        resource_id: UUID,
        skip: int = 0,
        limit: int = 100,
        owner_id: str | None = None,
    ) -> list[AuditLog]:
        """Trail for one entity, newest first."""
        return (
            self._filtered(resource_type=resource_type, resource_id=resource_id, owner_id=owner_id)
            .order_by(AuditLog.created_at.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )

    def _filtered(
        self,
        resource_type: str | None = None,
        resource_id: UUID | None = None,
        action: str | None = None,
        actor_id: str | None = None,
        owner_id: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ):  # type: ignore[no-untyped-def]
        query = self.db.query(AuditLog)
        if resource_type is not None:
            query = query.filter(AuditLog.resource_type == resource_type)
        if resource_id is not None:
            query = query.filter(AuditLog.resource_id == resource_id)
        if action is not None:
            query = query.filter(AuditLog.action == action)
        if actor_id is not None:
            query = query.filter(AuditLog.actor_id == actor_id)
        if owner_id is not None:
            query = query.filter(AuditLog.owner_id == owner_id)
        if start_date is not None:
            query = query.filter(AuditLog.created_at >= start_date)
        if end_date is not None:
            query = query.filter(AuditLog.created_at <= end_date)
        return query

    def get_all(
        self,
        skip: int = 0,
        limit: int = 100,
        order_by: str | None = None,
        **filters: Any,
    ) -> list[AuditLog]:
        query = apply_order_by(self._filtered(**filters), AuditLog, order_by)
        return query.offset(skip).limit(limit).all()

    def count(self, **filters: Any) -> int:
        query = self._filtered(**filters)
        return query.with_entities(sa_func.count(AuditLog.id)).scalar() or 0
