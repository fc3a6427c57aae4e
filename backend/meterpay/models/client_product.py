from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
)

from meterpay.core.database import Base
from meterpay.models.shared import UUIDType, generate_uuid


class ProductInterval(str, Enum):
    ONE_TIME = "one_time"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class ClientProduct(Base):
    """A product sold through a connected account."""

    __tablename__ = "client_products"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    connected_account_id = Column(
        UUIDType,
        ForeignKey("connected_accounts.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    external_product_id = Column(String(255), nullable=False, unique=True, index=True)
    external_price_id = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    # Minor currency units (cents).
    amount = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)
    interval = Column(String(10), nullable=False, default=ProductInterval.ONE_TIME.value)
    application_fee_percent = Column(Numeric(5, 2), nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    metadata_ = Column("metadata", JSON, nullable=True, default=dict)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def is_recurring(self) -> bool:
        return self.interval != ProductInterval.ONE_TIME.value
