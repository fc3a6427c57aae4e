from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class TrackUsageRequest(BaseModel):
    feature_key: str = Field(..., max_length=100)
    quantity: Decimal = Decimal("1")
    unit: str | None = Field(default=None, max_length=50)
    context: str | None = None
    metadata: dict[str, Any] | None = None


class TrackUsageResult(BaseModel):
    usage_log_id: UUID
    current_usage: Decimal
    limit: Decimal | None = None


class FeatureUsageStats(BaseModel):
    feature_key: str
    current_usage: Decimal
    limit: Decimal | None = None
    remaining: Decimal | None = None
    last_reset_at: datetime | None = None


class UsageSummary(BaseModel):
    usage: dict[str, Decimal]
    limits: dict[str, Decimal]
    plan_id: str
    status: str
    last_reset_at: datetime | None = None


class UsageLogResponse(BaseModel):
    id: UUID
    subscription_id: UUID
    owner_id: str
    feature_key: str
    quantity: Decimal
    unit: str | None
    context: str | None
    metadata_: dict[str, Any] | None
    synced_to_provider: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class MarkSyncedRequest(BaseModel):
    usage_log_ids: list[UUID] = Field(..., min_length=1)


class MarkSyncedResponse(BaseModel):
    updated: int
