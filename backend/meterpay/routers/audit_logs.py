"""Audit trail API endpoints.

Entries are scoped like payment events: callers see changes to their own
resources, operators see all of them.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from meterpay.core.auth import get_current_owner, get_owner_scope
from meterpay.core.database import get_db
from meterpay.models.audit_log import AuditLog
from meterpay.repositories.audit_log_repository import AuditLogRepository
from meterpay.schemas.audit_log import AuditLogResponse

router = APIRouter()


@router.get(
    "/",
    response_model=list[AuditLogResponse],
    summary="Search the audit trail",
    responses={401: {"description": "Missing owner header"}},
)
async def list_audit_logs(
    response: Response,
    resource_type: str | None = None,
    resource_id: UUID | None = None,
    action: str | None = None,
    actor_id: str | None = None,
    mine: bool = False,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    order_by: str | None = Query(default=None),
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
    scope: str | None = Depends(get_owner_scope),
) -> list[AuditLog]:
    """``mine=true`` keeps only changes the calling owner made."""
    repo = AuditLogRepository(db)
    filters = {
        "resource_type": resource_type,
        "resource_id": resource_id,
        "action": action,
        "actor_id": owner_id if mine else actor_id,
        "owner_id": scope,
        "start_date": start_date,
        "end_date": end_date,
    }
    response.headers["X-Total-Count"] = str(repo.count(**filters))
    return repo.get_all(skip=skip, limit=limit, order_by=order_by, **filters)


@router.get(
    "/{resource_type}/{resource_id}",
    response_model=list[AuditLogResponse],
    summary="Audit trail of one billing entity, newest first",
)
async def get_resource_audit_trail(
    resource_type: str,
    resource_id: UUID,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    db: Session = Depends(get_db),
    scope: str | None = Depends(get_owner_scope),
) -> list[AuditLog]:
    return AuditLogRepository(db).get_by_resource(
        resource_type, resource_id, skip=skip, limit=limit, owner_id=scope
    )
