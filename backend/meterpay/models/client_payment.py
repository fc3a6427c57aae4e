from enum import Enum

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text, func

from meterpay.core.database import Base
from meterpay.models.shared import UUIDType, generate_uuid


class ClientPaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class ClientPaymentType(str, Enum):
    ONE_TIME = "one_time"
    SUBSCRIPTION = "subscription"


class ClientSubscriptionStatus(str, Enum):
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"
    UNPAID = "unpaid"


class ClientPayment(Base):
    """A charge taken through a connected account, with the platform's cut."""

    __tablename__ = "client_payments"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    connected_account_id = Column(
        UUIDType,
        ForeignKey("connected_accounts.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    product_id = Column(
        UUIDType, ForeignKey("client_products.id", ondelete="SET NULL"), nullable=True
    )

    # Idempotency key for reconciliation; never changes once set.
    external_payment_intent_id = Column(String(255), nullable=True, unique=True, index=True)
    external_checkout_id = Column(String(255), nullable=True, unique=True, index=True)
    external_charge_id = Column(String(255), nullable=True)
    external_subscription_id = Column(String(255), nullable=True, index=True)
    external_customer_id = Column(String(255), nullable=True)

    customer_email = Column(String(255), nullable=True)
    customer_name = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)

    payment_type = Column(String(20), nullable=False, default=ClientPaymentType.ONE_TIME.value)
    amount = Column(Integer, nullable=False)
    application_fee_amount = Column(Integer, nullable=False, default=0)
    net_amount = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)
    status = Column(
        String(20), nullable=False, default=ClientPaymentStatus.PENDING.value, index=True
    )
    failure_reason = Column(Text, nullable=True)

    subscription_status = Column(String(20), nullable=True)
    subscription_current_period_end = Column(DateTime(timezone=True), nullable=True)

    refunded = Column(Boolean, nullable=False, default=False)
    refund_amount = Column(Integer, nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)

    metadata_ = Column("metadata", JSON, nullable=True, default=dict)
    last_event_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
