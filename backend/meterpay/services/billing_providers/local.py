"""Local ledger billing provider.

Entitlements are served straight from our own subscription and usage tables.
There is no hosted checkout or customer portal behind this backend.
"""

from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from meterpay.models.shared import as_utc, utc_now
from meterpay.models.subscription import SubscriptionStatus
from meterpay.schemas.billing import (
    BillingPortalResult,
    CancelSubscriptionResult,
    CheckoutOptions,
    CheckoutResult,
    FeatureAccessResult,
)
from meterpay.schemas.subscription import SubscriptionResponse
from meterpay.schemas.usage import FeatureUsageStats, TrackUsageResult, UsageSummary
from meterpay.services.audit_service import SYSTEM, Actor
from meterpay.services.billing_providers.base import BillingProvider
from meterpay.services.feature_access import check_access
from meterpay.services.subscription_service import SubscriptionService
from meterpay.services.usage_service import UsageService


class LocalBillingProvider(BillingProvider):
    name = "local"

    def __init__(self, db: Session, owner_id: str, actor: Actor = SYSTEM):
        super().__init__(owner_id)
        self.db = db
        self.subscriptions = SubscriptionService(db, actor)
        self.usage = UsageService(db, actor)

    @classmethod
    def is_configured(cls, config: Any) -> bool:
        return bool(config.local_billing_enabled)

    def check_access(self, feature_key: str) -> FeatureAccessResult:
        return check_access(self.subscriptions.get_by_owner(self.owner_id), feature_key)

    def get_subscription(self) -> SubscriptionResponse | None:
        subscription = self.subscriptions.get_by_owner(self.owner_id)
        if subscription is None:
            return None
        return SubscriptionResponse.model_validate(subscription)

    def get_usage_stats(self, feature_key: str | None = None) -> FeatureUsageStats | UsageSummary:
        return self.usage.get_usage_stats(self.owner_id, feature_key)

    def track_usage(
        self,
        feature_key: str,
        quantity: Decimal | int = 1,
        unit: str | None = None,
        context: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TrackUsageResult:
        return self.usage.track_usage(
            self.owner_id, feature_key, quantity, unit=unit, context=context, metadata=metadata
        )

    def create_checkout(self, options: CheckoutOptions) -> CheckoutResult:
        raise self.unsupported(
            "create_checkout", "assign plans with PUT /v1/subscriptions/current instead"
        )

    def open_billing_portal(self, return_url: str | None = None) -> BillingPortalResult:
        raise self.unsupported("open_billing_portal")

    def cancel_subscription(self, immediate: bool = False) -> CancelSubscriptionResult:
        subscription = self.subscriptions.require_by_owner(self.owner_id)
        period_end = as_utc(subscription.current_period_end)
        if not immediate and period_end is not None and period_end > utc_now():
            # Keeps access until the paid period runs out.
            subscription = self.subscriptions.update_status(
                self.owner_id, SubscriptionStatus(subscription.status), end_date=period_end
            )
        else:
            subscription = self.subscriptions.update_status(
                self.owner_id, SubscriptionStatus.CANCELLED, end_date=utc_now()
            )
        return CancelSubscriptionResult(success=True, status=str(subscription.status))
