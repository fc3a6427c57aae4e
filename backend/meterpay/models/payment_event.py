"""PaymentEvent model - every processor or application billing event."""

from enum import Enum

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, String, Text, func

from meterpay.core.database import Base
from meterpay.models.shared import UUIDType, generate_uuid


class PaymentEventType(str, Enum):
    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    TRIAL_STARTED = "trial_started"
    TRIAL_ENDED = "trial_ended"
    PLAN_UPGRADED = "plan_upgraded"
    PLAN_DOWNGRADED = "plan_downgraded"
    USAGE_TRACKED = "usage_tracked"
    LIMIT_EXCEEDED = "limit_exceeded"
    ACCOUNT_UPDATED = "account_updated"
    REFUND_CREATED = "refund_created"
    OTHER = "other"


class PaymentEventSource(str, Enum):
    PROCESSOR = "processor"
    APPLICATION = "application"


class PaymentEvent(Base):
    __tablename__ = "payment_events"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    owner_id = Column(String(255), nullable=True, index=True)
    subscription_id = Column(
        UUIDType, ForeignKey("subscriptions.id", ondelete="SET NULL"), nullable=True, index=True
    )
    connected_account_id = Column(
        UUIDType,
        ForeignKey("connected_accounts.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    client_payment_id = Column(
        UUIDType, ForeignKey("client_payments.id", ondelete="SET NULL"), nullable=True
    )

    event_type = Column(String(50), nullable=False, index=True)
    source = Column(String(20), nullable=False)
    # Processor event id (e.g. "evt_..."), the de-duplication key for re-deliveries.
    external_event_id = Column(String(255), nullable=True, unique=True, index=True)
    external_type = Column(String(100), nullable=True)
    event_data = Column(JSON, nullable=True)
    description = Column(Text, nullable=True)

    processed = Column(Boolean, nullable=False, default=False, index=True)
    error = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    metadata_ = Column("metadata", JSON, nullable=True, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
