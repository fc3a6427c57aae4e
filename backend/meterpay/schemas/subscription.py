from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from meterpay.models.subscription import PlanType, SubscriptionStatus


class SubscriptionSync(BaseModel):
    """Attributes applied by create-or-sync.

    Unset fields are left untouched on an existing subscription; usage
    counters are never part of a sync.
    """

    plan_id: str = Field(..., min_length=1, max_length=255)
    plan_type: PlanType = PlanType.FREE
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    name: str | None = Field(default=None, max_length=255)
    description: str | None = None
    provider: str | None = Field(default=None, max_length=50)
    external_customer_id: str | None = Field(default=None, max_length=255)
    external_subscription_id: str | None = Field(default=None, max_length=255)
    features: list[str] | None = None
    limits: dict[str, Decimal] | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    current_period_end: datetime | None = None
    trial_end_date: datetime | None = None
    metadata: dict[str, Any] | None = None


class SubscriptionStatusUpdate(BaseModel):
    status: SubscriptionStatus
    end_date: datetime | None = None


class SubscriptionResponse(BaseModel):
    id: UUID
    owner_id: str
    name: str
    description: str | None
    provider: str
    external_customer_id: str | None
    external_subscription_id: str | None
    plan_id: str
    plan_type: PlanType
    status: SubscriptionStatus
    features: list[str]
    limits: dict[str, Decimal]
    usage: dict[str, Decimal]
    usage_reset_at: datetime | None
    start_date: datetime | None
    end_date: datetime | None
    current_period_end: datetime | None
    trial_end_date: datetime | None
    metadata_: dict[str, Any] | None
    deleted_at: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class UsageLimitCheck(BaseModel):
    exceeded: bool
    current_usage: Decimal
    limit: Decimal | None = None
    remaining: Decimal | None = None


class SubscriptionStats(BaseModel):
    total: int
    by_status: dict[str, int]
    by_plan: dict[str, int]
