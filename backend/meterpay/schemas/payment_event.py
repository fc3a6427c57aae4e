from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from meterpay.models.payment_event import PaymentEventSource, PaymentEventType


class PaymentEventCreate(BaseModel):
    """An application-sourced billing event."""

    event_type: PaymentEventType
    description: str | None = None
    event_data: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None


class PaymentEventResponse(BaseModel):
    id: UUID
    owner_id: str | None
    subscription_id: UUID | None
    connected_account_id: UUID | None
    client_payment_id: UUID | None
    event_type: PaymentEventType
    source: PaymentEventSource
    external_event_id: str | None
    external_type: str | None
    event_data: dict[str, Any] | None
    description: str | None
    processed: bool
    error: str | None
    processed_at: datetime | None
    metadata_: dict[str, Any] | None
    created_at: datetime

    model_config = {"from_attributes": True}


class ProcessorEvent(BaseModel):
    """A decoded processor event as delivered to the webhook endpoint."""

    id: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    created: int | None = None
    account: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class ReconcileResult(BaseModel):
    event_id: UUID | None
    processed: bool
    duplicate: bool = False
    stale: bool = False
    error: str | None = None
