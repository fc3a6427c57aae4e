"""Stripe Billing provider.

Checkout, the customer portal and cancellation go to Stripe. Entitlement
reads are served from the local subscription mirror that webhook
reconciliation keeps current, and usage is recorded in the local ledger
before being reported to Stripe as a meter event.
"""

import logging
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from meterpay.core.config import settings
from meterpay.core.exceptions import StateConflictError, UpstreamError
from meterpay.models.shared import utc_now
from meterpay.models.subscription import SubscriptionStatus
from meterpay.schemas.billing import (
    BillingPortalResult,
    CancelSubscriptionResult,
    CheckoutOptions,
    CheckoutResult,
)
from meterpay.schemas.usage import TrackUsageResult
from meterpay.services.audit_service import SYSTEM, Actor
from meterpay.services.billing_providers.local import LocalBillingProvider
from meterpay.services.stripe_client import StripeClient

logger = logging.getLogger(__name__)


class StripeBillingProvider(LocalBillingProvider):
    name = "stripe"

    def __init__(
        self,
        db: Session,
        owner_id: str,
        actor: Actor = SYSTEM,
        client: StripeClient | None = None,
    ):
        super().__init__(db, owner_id, actor)
        self.client = client or StripeClient()

    @classmethod
    def is_configured(cls, config: Any) -> bool:
        return bool(config.stripe_api_key)

    def create_checkout(self, options: CheckoutOptions) -> CheckoutResult:
        price_id = options.price_id or options.plan_id
        if not price_id:
            return CheckoutResult(success=False, error="plan_id or price_id is required")

        metadata = {**(options.metadata or {}), "owner_id": self.owner_id}
        if options.plan_id:
            metadata["plan_id"] = options.plan_id
        params: dict[str, Any] = {
            "mode": "subscription",
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": options.success_url,
            "cancel_url": options.cancel_url,
            "client_reference_id": self.owner_id,
            "metadata": metadata,
            "subscription_data": {"metadata": metadata},
        }
        if options.trial_days:
            params["subscription_data"]["trial_period_days"] = options.trial_days
        existing = self.subscriptions.get_by_owner(self.owner_id)
        if existing is not None and existing.external_customer_id:
            params["customer"] = existing.external_customer_id
        elif options.customer_email:
            params["customer_email"] = options.customer_email

        try:
            session = self.client.call(
                "checkout", self.client.stripe.checkout.Session.create, **params
            )
        except UpstreamError as e:
            return CheckoutResult(success=False, error=e.message)
        return CheckoutResult(success=True, url=session.url, session_id=session.id)

    def open_billing_portal(self, return_url: str | None = None) -> BillingPortalResult:
        subscription = self.subscriptions.get_by_owner(self.owner_id)
        if subscription is None or not subscription.external_customer_id:
            return BillingPortalResult(success=False, error="no billing customer for this owner")
        try:
            session = self.client.call(
                "billing portal",
                self.client.stripe.billing_portal.Session.create,
                customer=subscription.external_customer_id,
                return_url=return_url or settings.stripe_billing_portal_return_url or None,
            )
        except UpstreamError as e:
            return BillingPortalResult(success=False, error=e.message)
        return BillingPortalResult(success=True, url=session.url)

    def cancel_subscription(self, immediate: bool = False) -> CancelSubscriptionResult:
        subscription = self.subscriptions.require_by_owner(self.owner_id)
        external_id = subscription.external_subscription_id
        if not external_id:
            raise StateConflictError("subscription is not managed by Stripe")
        if immediate:
            self.client.call("cancel", self.client.stripe.Subscription.cancel, external_id)
            subscription = self.subscriptions.update_status(
                self.owner_id, SubscriptionStatus.CANCELLED, end_date=utc_now()
            )
        else:
            # Status flips when customer.subscription.deleted arrives at period end.
            self.client.call(
                "cancel",
                self.client.stripe.Subscription.modify,
                external_id,
                cancel_at_period_end=True,
            )
        return CancelSubscriptionResult(success=True, status=str(subscription.status))

    def track_usage(
        self,
        feature_key: str,
        quantity: Decimal | int = 1,
        unit: str | None = None,
        context: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TrackUsageResult:
        result = super().track_usage(feature_key, quantity, unit, context, metadata)
        subscription = self.subscriptions.get_by_owner(self.owner_id)
        if subscription is None or not subscription.external_customer_id:
            return result
        try:
            self.client.call(
                "meter event",
                self.client.stripe.billing.MeterEvent.create,
                event_name=feature_key,
                payload={
                    "stripe_customer_id": subscription.external_customer_id,
                    "value": str(quantity),
                },
                identifier=str(result.usage_log_id),
            )
        except UpstreamError:
            # Stays unsynced so it can be reported again later.
            logger.warning("Usage %s not reported to Stripe", result.usage_log_id)
            return result
        self.usage.mark_usage_synced([result.usage_log_id])
        return result
