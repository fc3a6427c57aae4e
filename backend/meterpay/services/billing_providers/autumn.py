"""Autumn billing provider.

Autumn owns plans, balances and checkout. Syncing the customer mirrors the
active product into the local subscription so the rest of the core (usage
ledger, analytics, audit) sees the same record whichever backend is active.
"""

import logging
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

import httpx
from sqlalchemy.orm import Session

from meterpay.core.config import settings
from meterpay.core.exceptions import UpstreamError
from meterpay.models.subscription import PlanType, SubscriptionStatus
from meterpay.schemas.billing import (
    BillingPortalResult,
    CancelSubscriptionResult,
    CheckoutOptions,
    CheckoutResult,
    FeatureAccessResult,
)
from meterpay.schemas.subscription import SubscriptionResponse, SubscriptionSync
from meterpay.schemas.usage import TrackUsageResult
from meterpay.services.audit_service import SYSTEM, Actor
from meterpay.services.billing_providers.local import LocalBillingProvider
from meterpay.services.feature_access import FEATURE_NOT_INCLUDED, USAGE_LIMIT_EXCEEDED
from meterpay.services.usage_service import validate_usage_input

logger = logging.getLogger(__name__)

_PRODUCT_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.TRIALING,
    "past_due": SubscriptionStatus.PAST_DUE,
    "scheduled": SubscriptionStatus.INACTIVE,
    "expired": SubscriptionStatus.CANCELLED,
}


def _from_millis(value: Any) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(int(value) / 1000, tz=UTC)


class AutumnClient:
    """Minimal JSON client for the Autumn REST API."""

    def __init__(self, secret_key: str | None = None, base_url: str | None = None):
        self.secret_key = secret_key or settings.autumn_secret_key
        self.base_url = (base_url or settings.autumn_base_url).rstrip("/")

    def request(
        self, method: str, path: str, payload: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }
        try:
            with httpx.Client(base_url=self.base_url, timeout=30.0) as client:
                resp = client.request(method, path, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Autumn request failed: {exc}") from exc

        if resp.status_code >= 400:
            try:
                message = resp.json().get("message") or resp.text
            except ValueError:
                message = resp.text
            raise UpstreamError(
                f"Autumn {path} returned {resp.status_code}: {message}",
                {"status_code": resp.status_code},
            )
        result: dict[str, Any] = resp.json() if resp.content else {}
        return result


class AutumnBillingProvider(LocalBillingProvider):
    name = "autumn"

    def __init__(
        self,
        db: Session,
        owner_id: str,
        actor: Actor = SYSTEM,
        client: AutumnClient | None = None,
    ):
        super().__init__(db, owner_id, actor)
        self.client = client or AutumnClient()

    @classmethod
    def is_configured(cls, config: Any) -> bool:
        return bool(config.autumn_secret_key)

    def check_access(self, feature_key: str) -> FeatureAccessResult:
        data = self.client.request(
            "POST", "/check", {"customer_id": self.owner_id, "feature_id": feature_key}
        )
        unlimited = bool(data.get("unlimited"))
        usage = Decimal(str(data.get("usage") or 0))
        limit = None if unlimited or data.get("included_usage") is None else Decimal(
            str(data["included_usage"])
        )
        remaining = None if unlimited or data.get("balance") is None else Decimal(
            str(data["balance"])
        )
        if data.get("allowed"):
            return FeatureAccessResult(
                has_access=True, current_usage=usage, limit=limit, remaining=remaining
            )
        if data.get("balance") is None and not unlimited:
            reason = FEATURE_NOT_INCLUDED
        else:
            reason = USAGE_LIMIT_EXCEEDED
            remaining = Decimal("0")
        return FeatureAccessResult(
            has_access=False, reason=reason, current_usage=usage, limit=limit, remaining=remaining
        )

    def get_subscription(self) -> SubscriptionResponse | None:
        """Pull the customer from Autumn and mirror it locally."""
        customer = self.client.request("GET", f"/customers/{self.owner_id}")
        sync = self._to_sync(customer)
        if sync is None:
            return None
        subscription = self.subscriptions.create_or_sync(self.owner_id, sync)
        return SubscriptionResponse.model_validate(subscription)

    def _to_sync(self, customer: dict[str, Any]) -> SubscriptionSync | None:
        products = [p for p in customer.get("products") or [] if not p.get("is_add_on")]
        if not products:
            return None
        product = next(
            (p for p in products if p.get("status") in ("active", "trialing", "past_due")),
            products[0],
        )
        features = customer.get("features") or {}
        limits = {
            key: Decimal(str(feature["included_usage"]))
            for key, feature in features.items()
            if not feature.get("unlimited") and feature.get("included_usage") is not None
        }
        return SubscriptionSync(
            plan_id=product["id"],
            name=product.get("name") or product["id"],
            plan_type=PlanType.FREE if product.get("is_default") else PlanType.PAID,
            status=_PRODUCT_STATUS_MAP.get(product.get("status", ""), SubscriptionStatus.INACTIVE),
            provider=self.name,
            external_customer_id=customer.get("stripe_id") or customer.get("id"),
            features=sorted(features.keys()),
            limits=limits,
            start_date=_from_millis(product.get("started_at")),
            current_period_end=_from_millis(product.get("current_period_end")),
            trial_end_date=_from_millis(product.get("trial_ends_at")),
        )

    def create_checkout(self, options: CheckoutOptions) -> CheckoutResult:
        product_id = options.plan_id or options.price_id
        if not product_id:
            return CheckoutResult(success=False, error="plan_id or price_id is required")
        payload: dict[str, Any] = {
            "customer_id": self.owner_id,
            "product_id": product_id,
            "success_url": options.success_url,
        }
        if options.customer_email:
            payload["customer_data"] = {"email": options.customer_email}
        if options.metadata:
            payload["metadata"] = options.metadata
        try:
            data = self.client.request("POST", "/checkout", payload)
        except UpstreamError as e:
            return CheckoutResult(success=False, error=e.message)
        if not data.get("url"):
            # Already-paid customers are attached without a redirect.
            return CheckoutResult(success=True, url=None)
        return CheckoutResult(success=True, url=data["url"])

    def open_billing_portal(self, return_url: str | None = None) -> BillingPortalResult:
        payload = {"return_url": return_url} if return_url else {}
        try:
            data = self.client.request(
                "POST", f"/customers/{self.owner_id}/billing_portal", payload
            )
        except UpstreamError as e:
            return BillingPortalResult(success=False, error=e.message)
        return BillingPortalResult(success=True, url=data.get("url"))

    def cancel_subscription(self, immediate: bool = False) -> CancelSubscriptionResult:
        subscription = self.subscriptions.require_by_owner(self.owner_id)
        self.client.request(
            "POST",
            "/cancel",
            {
                "customer_id": self.owner_id,
                "product_id": subscription.plan_id,
                "cancel_immediately": immediate,
            },
        )
        if immediate:
            subscription = self.subscriptions.update_status(
                self.owner_id, SubscriptionStatus.CANCELLED
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
        key, amount = validate_usage_input(feature_key, quantity)
        result = super().track_usage(key, amount, unit, context, metadata)
        try:
            self.client.request(
                "POST",
                "/track",
                {
                    "customer_id": self.owner_id,
                    "feature_id": key,
                    "value": float(amount),
                    "idempotency_key": str(result.usage_log_id),
                },
            )
        except UpstreamError:
            logger.warning("Usage %s not reported to Autumn", result.usage_log_id)
            return result
        self.usage.mark_usage_synced([result.usage_log_id])
        return result
