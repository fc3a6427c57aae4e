"""Schemas shared by the billing provider adapters."""

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field


class FeatureAccessResult(BaseModel):
    has_access: bool
    reason: str | None = None
    current_usage: Decimal = Decimal("0")
    limit: Decimal | None = None
    # None means unlimited.
    remaining: Decimal | None = None


class CheckoutOptions(BaseModel):
    plan_id: str | None = Field(default=None, max_length=255)
    price_id: str | None = Field(default=None, max_length=255)
    success_url: str
    cancel_url: str
    trial_days: int | None = Field(default=None, ge=0)
    customer_email: str | None = None
    metadata: dict[str, Any] | None = None


class CheckoutResult(BaseModel):
    success: bool
    url: str | None = None
    session_id: str | None = None
    error: str | None = None


class BillingPortalResult(BaseModel):
    success: bool
    url: str | None = None
    error: str | None = None


class CancelSubscriptionRequest(BaseModel):
    immediate: bool = False


class CancelSubscriptionResult(BaseModel):
    success: bool
    status: str | None = None
    error: str | None = None


class ProviderInfo(BaseModel):
    name: str
    configured: bool
    active: bool
