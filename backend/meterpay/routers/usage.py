"""Usage ledger API endpoints."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from meterpay.core.auth import get_current_actor, get_current_owner
from meterpay.core.database import get_db
from meterpay.models.usage import UsageLog
from meterpay.schemas.usage import (
    FeatureUsageStats,
    MarkSyncedRequest,
    MarkSyncedResponse,
    TrackUsageRequest,
    TrackUsageResult,
    UsageLogResponse,
    UsageSummary,
)
from meterpay.services.audit_service import Actor
from meterpay.services.usage_service import UsageService

router = APIRouter()


@router.post(
    "/track",
    response_model=TrackUsageResult,
    status_code=201,
    summary="Track usage",
    responses={
        404: {"description": "Subscription not found"},
        422: {"description": "Validation error"},
    },
)
async def track_usage(
    data: TrackUsageRequest,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
    actor: Actor = Depends(get_current_actor),
) -> TrackUsageResult:
    """Append a ledger entry and increment the feature's counter."""
    return UsageService(db, actor).track_usage(
        owner_id,
        data.feature_key,
        data.quantity,
        unit=data.unit,
        context=data.context,
        metadata=data.metadata,
    )


@router.get(
    "/stats",
    response_model=FeatureUsageStats | UsageSummary,
    summary="Usage statistics",
    responses={404: {"description": "Subscription not found"}},
)
async def usage_stats(
    feature_key: str | None = None,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
) -> FeatureUsageStats | UsageSummary:
    return UsageService(db).get_usage_stats(owner_id, feature_key)


@router.get(
    "/logs",
    response_model=list[UsageLogResponse],
    summary="List usage ledger entries",
)
async def list_usage_logs(
    feature_key: str | None = None,
    synced: bool | None = None,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
) -> list[UsageLog]:
    return UsageService(db).list_usage_logs(
        owner_id, feature_key, skip=skip, limit=limit, synced=synced
    )


@router.post(
    "/logs/mark_synced",
    response_model=MarkSyncedResponse,
    summary="Mark ledger entries as reported to the processor",
)
async def mark_usage_synced(
    data: MarkSyncedRequest,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
) -> MarkSyncedResponse:
    updated = UsageService(db).mark_usage_synced(data.usage_log_ids, owner_id)
    return MarkSyncedResponse(updated=updated)
