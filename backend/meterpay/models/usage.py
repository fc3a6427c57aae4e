from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from meterpay.core.database import Base
from meterpay.models.shared import UUIDType, generate_uuid

# Ledger and counter quantities share one fixed-point column type.
QUANTITY_PRECISION = 20
QUANTITY_SCALE = 4


class UsageCounter(Base):
    """Cumulative per-feature counter for a subscription.

    Incremented with a single ``UPDATE ... SET quantity = quantity + :n`` so
    concurrent writers never base their write on a stale read.
    """

    __tablename__ = "usage_counters"
    __table_args__ = (
        UniqueConstraint("subscription_id", "feature_key", name="uq_usage_counters_sub_feature"),
    )

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    subscription_id = Column(
        UUIDType,
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    feature_key = Column(String(100), nullable=False)
    quantity = Column(Numeric(QUANTITY_PRECISION, QUANTITY_SCALE), nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    subscription = relationship("Subscription", back_populates="usage_counters")


class UsageLog(Base):
    """Append-only ledger entry, one per tracked usage call."""

    __tablename__ = "usage_logs"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    subscription_id = Column(
        UUIDType,
        ForeignKey("subscriptions.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    owner_id = Column(String(255), nullable=False, index=True)
    feature_key = Column(String(100), nullable=False, index=True)
    quantity = Column(Numeric(QUANTITY_PRECISION, QUANTITY_SCALE), nullable=False)
    unit = Column(String(50), nullable=True)
    context = Column(Text, nullable=True)
    metadata_ = Column("metadata", JSON, nullable=True, default=dict)
    synced_to_provider = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
