"""Provider-agnostic billing endpoints, served by the active billing backend."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from meterpay.core.auth import get_current_actor, get_current_owner
from meterpay.core.database import get_db
from meterpay.schemas.billing import (
    BillingPortalResult,
    CancelSubscriptionRequest,
    CancelSubscriptionResult,
    CheckoutOptions,
    CheckoutResult,
    FeatureAccessResult,
    ProviderInfo,
)
from meterpay.schemas.subscription import SubscriptionResponse
from meterpay.schemas.usage import (
    FeatureUsageStats,
    TrackUsageRequest,
    TrackUsageResult,
    UsageSummary,
)
from meterpay.services.audit_service import Actor
from meterpay.services.billing_providers.resolver import (
    BillingProviderResolver,
    get_billing_resolver,
)

router = APIRouter()


@router.get(
    "/providers",
    response_model=list[ProviderInfo],
    summary="List billing providers and which one is active",
)
async def list_providers(
    resolver: BillingProviderResolver = Depends(get_billing_resolver),
) -> list[ProviderInfo]:
    return [ProviderInfo(**entry) for entry in resolver.describe()]


@router.post(
    "/checkout",
    response_model=CheckoutResult,
    summary="Create a checkout session",
    responses={503: {"description": "No billing provider configured"}},
)
async def create_checkout(
    options: CheckoutOptions,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
    actor: Actor = Depends(get_current_actor),
    resolver: BillingProviderResolver = Depends(get_billing_resolver),
) -> CheckoutResult:
    """Start checkout; business failures come back with ``success=false``."""
    return resolver.commands(db, owner_id, actor).create_checkout(options)


@router.post(
    "/portal",
    response_model=BillingPortalResult,
    summary="Open the billing portal",
)
async def open_billing_portal(
    return_url: str | None = None,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
    actor: Actor = Depends(get_current_actor),
    resolver: BillingProviderResolver = Depends(get_billing_resolver),
) -> BillingPortalResult:
    return resolver.commands(db, owner_id, actor).open_billing_portal(return_url)


@router.post(
    "/cancel",
    response_model=CancelSubscriptionResult,
    summary="Cancel the caller's subscription",
)
async def cancel_subscription(
    data: CancelSubscriptionRequest,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
    actor: Actor = Depends(get_current_actor),
    resolver: BillingProviderResolver = Depends(get_billing_resolver),
) -> CancelSubscriptionResult:
    return resolver.commands(db, owner_id, actor).cancel_subscription(data.immediate)


@router.get(
    "/access/{feature_key}",
    response_model=FeatureAccessResult,
    summary="Check feature access",
)
async def check_access(
    feature_key: str,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
    resolver: BillingProviderResolver = Depends(get_billing_resolver),
) -> FeatureAccessResult:
    return resolver.queries(db, owner_id).check_access(feature_key)


@router.post(
    "/usage",
    response_model=TrackUsageResult,
    status_code=201,
    summary="Track usage through the active provider",
)
async def track_usage(
    data: TrackUsageRequest,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
    actor: Actor = Depends(get_current_actor),
    resolver: BillingProviderResolver = Depends(get_billing_resolver),
) -> TrackUsageResult:
    return resolver.commands(db, owner_id, actor).track_usage(
        data.feature_key,
        data.quantity,
        unit=data.unit,
        context=data.context,
        metadata=data.metadata,
    )


@router.get(
    "/subscription",
    response_model=SubscriptionResponse,
    summary="Get the caller's subscription from the active provider",
    responses={404: {"description": "Subscription not found"}},
)
async def get_subscription(
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
    resolver: BillingProviderResolver = Depends(get_billing_resolver),
) -> SubscriptionResponse:
    subscription = resolver.queries(db, owner_id).get_subscription()
    if subscription is None:
        raise HTTPException(status_code=404, detail="subscription not found")
    return subscription


@router.get(
    "/usage",
    response_model=FeatureUsageStats | UsageSummary,
    summary="Usage statistics from the active provider",
)
async def get_usage_stats(
    feature_key: str | None = None,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
    resolver: BillingProviderResolver = Depends(get_billing_resolver),
) -> FeatureUsageStats | UsageSummary:
    return resolver.queries(db, owner_id).get_usage_stats(feature_key)
