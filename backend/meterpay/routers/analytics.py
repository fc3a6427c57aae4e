"""Revenue analytics API endpoints."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from meterpay.core.auth import get_current_owner, require_operator
from meterpay.core.database import get_db
from meterpay.schemas.analytics import AccountRevenue, PaymentAnalytics, PlatformRevenue
from meterpay.schemas.subscription import SubscriptionStats
from meterpay.services.connect_service import ConnectService
from meterpay.services.revenue_analytics import RevenueAnalyticsService

router = APIRouter()


@router.get(
    "/platform",
    response_model=PaymentAnalytics,
    summary="Platform-wide payment analytics",
    responses={403: {"description": "Operator access required"}},
)
async def platform_analytics(
    db: Session = Depends(get_db),
    operator_id: str = Depends(require_operator),
) -> PaymentAnalytics:
    return RevenueAnalyticsService(db).get_platform_analytics()


@router.get(
    "/platform/revenue",
    response_model=PlatformRevenue,
    summary="Succeeded-payment revenue across all connected accounts",
    responses={403: {"description": "Operator access required"}},
)
async def platform_revenue(
    start: datetime | None = None,
    end: datetime | None = None,
    db: Session = Depends(get_db),
    operator_id: str = Depends(require_operator),
) -> PlatformRevenue:
    """Platform fees earned and amounts paid out over an optional window."""
    return RevenueAnalyticsService(db).get_platform_revenue(start, end)


@router.get(
    "/accounts/{account_id}",
    response_model=PaymentAnalytics,
    summary="Payment analytics for a connected account",
    responses={404: {"description": "Connected account not found"}},
)
async def account_analytics(
    account_id: UUID,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
) -> PaymentAnalytics:
    ConnectService(db).get_owned_account(account_id, owner_id)
    return RevenueAnalyticsService(db).get_account_analytics(account_id)


@router.get(
    "/accounts/{account_id}/revenue",
    response_model=AccountRevenue,
    summary="Succeeded-payment revenue for a connected account",
    responses={404: {"description": "Connected account not found"}},
)
async def account_revenue(
    account_id: UUID,
    start: datetime | None = None,
    end: datetime | None = None,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
) -> AccountRevenue:
    """Revenue over an optional ``[start, end]`` window."""
    ConnectService(db).get_owned_account(account_id, owner_id)
    return RevenueAnalyticsService(db).get_account_revenue(account_id, start, end)


@router.get(
    "/subscriptions",
    response_model=SubscriptionStats,
    summary="Subscription counts by status and plan",
)
async def subscription_analytics(
    plan_id: str | None = None,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
) -> SubscriptionStats:
    return RevenueAnalyticsService(db).get_subscription_stats(plan_id)
