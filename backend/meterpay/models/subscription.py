from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Column, DateTime, Index, String, Text, func, text
from sqlalchemy.orm import relationship

from meterpay.core.database import Base
from meterpay.models.shared import UUIDType, generate_uuid


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    CANCELLED = "cancelled"
    PAST_DUE = "past_due"
    TRIALING = "trialing"


class PlanType(str, Enum):
    FREE = "free"
    PAID = "paid"


# Statuses that grant access to features.
ENTITLED_STATUSES = frozenset({SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value})


class Subscription(Base):
    """Billing and entitlement record for one owner."""

    __tablename__ = "subscriptions"
    __table_args__ = (
        # At most one live subscription per owner; soft-deleted rows are kept.
        Index(
            "uq_subscriptions_live_owner",
            "owner_id",
            unique=True,
            sqlite_where=text("deleted_at IS NULL"),
            postgresql_where=text("deleted_at IS NULL"),
        ),
    )

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    owner_id = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=False, default="Subscription")
    description = Column(Text, nullable=True)

    provider = Column(String(50), nullable=False, default="local")
    external_customer_id = Column(String(255), nullable=True, index=True)
    external_subscription_id = Column(String(255), nullable=True, unique=True, index=True)

    plan_id = Column(String(255), nullable=False, index=True)
    plan_type = Column(String(10), nullable=False, default=PlanType.FREE.value)
    status = Column(
        String(20), nullable=False, default=SubscriptionStatus.ACTIVE.value, index=True
    )

    features = Column(JSON, nullable=False, default=list)
    limits = Column(JSON, nullable=False, default=dict)
    usage_reset_at = Column(DateTime(timezone=True), nullable=True)

    start_date = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True)
    trial_end_date = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)

    metadata_ = Column("metadata", JSON, nullable=True, default=dict)
    last_event_at = Column(DateTime(timezone=True), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    usage_counters = relationship(
        "UsageCounter",
        back_populates="subscription",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    @property
    def usage(self) -> dict[str, Decimal]:
        """Cumulative counters keyed by feature."""
        return {str(c.feature_key): Decimal(str(c.quantity)) for c in self.usage_counters}

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def summary(self) -> dict[str, Any]:
        """Compact before/after view used by the audit trail."""
        return {
            "plan_id": self.plan_id,
            "plan_type": self.plan_type,
            "status": self.status,
            "features": list(self.features or []),
            "limits": dict(self.limits or {}),
        }
