"""Subscription (entitlement) API endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from meterpay.core.auth import get_current_actor, get_current_owner
from meterpay.core.database import get_db
from meterpay.models.subscription import Subscription, SubscriptionStatus
from meterpay.repositories.subscription_repository import SubscriptionRepository
from meterpay.schemas.billing import FeatureAccessResult
from meterpay.schemas.subscription import (
    SubscriptionResponse,
    SubscriptionStats,
    SubscriptionStatusUpdate,
    SubscriptionSync,
    UsageLimitCheck,
)
from meterpay.services.audit_service import Actor
from meterpay.services.feature_access import check_access
from meterpay.services.subscription_service import SubscriptionService

router = APIRouter()


@router.get(
    "/",
    response_model=list[SubscriptionResponse],
    summary="List subscriptions",
    responses={401: {"description": "Missing owner header"}},
)
async def list_subscriptions(
    response: Response,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    status: SubscriptionStatus | None = None,
    plan_id: str | None = None,
    include_deleted: bool = False,
    order_by: str | None = Query(default=None),
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
) -> list[Subscription]:
    """List subscriptions across owners (operator view)."""
    repo = SubscriptionRepository(db)
    status_value = status.value if status else None
    response.headers["X-Total-Count"] = str(repo.count(status=status_value, plan_id=plan_id))
    return repo.get_all(
        skip=skip,
        limit=limit,
        status=status_value,
        plan_id=plan_id,
        include_deleted=include_deleted,
        order_by=order_by,
    )


@router.get(
    "/stats",
    response_model=SubscriptionStats,
    summary="Subscription counts by status and plan",
)
async def subscription_stats(
    plan_id: str | None = None,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
) -> SubscriptionStats:
    return SubscriptionService(db).get_subscription_stats(plan_id)


@router.get(
    "/current",
    response_model=SubscriptionResponse,
    summary="Get the caller's subscription",
    responses={404: {"description": "Subscription not found"}},
)
async def get_current_subscription(
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
) -> Subscription:
    subscription = SubscriptionService(db).get_by_owner(owner_id)
    if subscription is None:
        raise HTTPException(status_code=404, detail="subscription not found")
    return subscription


@router.put(
    "/current",
    response_model=SubscriptionResponse,
    summary="Create or sync the caller's subscription",
    responses={422: {"description": "Validation error"}},
)
async def create_or_sync_subscription(
    data: SubscriptionSync,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
    actor: Actor = Depends(get_current_actor),
) -> Subscription:
    """Create the subscription if the owner has none, otherwise patch it.

    Usage counters are never changed by this call.
    """
    return SubscriptionService(db, actor).create_or_sync(owner_id, data)


@router.patch(
    "/current/status",
    response_model=SubscriptionResponse,
    summary="Update subscription status",
    responses={404: {"description": "Subscription not found"}},
)
async def update_subscription_status(
    data: SubscriptionStatusUpdate,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
    actor: Actor = Depends(get_current_actor),
) -> Subscription:
    return SubscriptionService(db, actor).update_status(owner_id, data.status, data.end_date)


@router.post(
    "/current/reset_usage",
    response_model=SubscriptionResponse,
    summary="Reset usage counters",
    responses={404: {"description": "Subscription not found"}},
)
async def reset_usage(
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
    actor: Actor = Depends(get_current_actor),
) -> Subscription:
    return SubscriptionService(db, actor).reset_usage(owner_id)


@router.delete(
    "/current",
    status_code=204,
    summary="Soft delete the caller's subscription",
    responses={404: {"description": "Subscription not found"}},
)
async def delete_subscription(
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
    actor: Actor = Depends(get_current_actor),
) -> None:
    SubscriptionService(db, actor).delete_subscription(owner_id)


@router.post(
    "/current/restore",
    response_model=SubscriptionResponse,
    summary="Restore a soft-deleted subscription",
    responses={
        404: {"description": "No deleted subscription"},
        409: {"description": "Owner already has a live subscription"},
    },
)
async def restore_subscription(
    subscription_id: UUID | None = None,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
    actor: Actor = Depends(get_current_actor),
) -> Subscription:
    return SubscriptionService(db, actor).restore_subscription(owner_id, subscription_id)


@router.get(
    "/current/access/{feature_key}",
    response_model=FeatureAccessResult,
    summary="Check feature access",
)
async def check_feature_access(
    feature_key: str,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
) -> FeatureAccessResult:
    """Evaluate access against the locally stored subscription."""
    return check_access(SubscriptionService(db).get_by_owner(owner_id), feature_key)


@router.get(
    "/current/limits/{feature_key}",
    response_model=UsageLimitCheck,
    summary="Check whether a usage limit is exceeded",
)
async def check_usage_limit(
    feature_key: str,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
) -> UsageLimitCheck:
    return SubscriptionService(db).is_usage_limit_exceeded(owner_id, feature_key)
