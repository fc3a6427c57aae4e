from enum import Enum

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, String, Text, func, text

from meterpay.core.database import Base
from meterpay.models.shared import UUIDType, generate_uuid


class AccountStatus(str, Enum):
    PENDING = "pending"
    ONBOARDING = "onboarding"
    ACTIVE = "active"
    RESTRICTED = "restricted"
    DISABLED = "disabled"


class AccountType(str, Enum):
    STANDARD = "standard"
    EXPRESS = "express"


class ConnectedAccount(Base):
    """A sub-account that takes payments on the platform's behalf."""

    __tablename__ = "connected_accounts"
    __table_args__ = (
        Index(
            "uq_connected_accounts_live_owner",
            "owner_id",
            unique=True,
            sqlite_where=text("deleted_at IS NULL"),
            postgresql_where=text("deleted_at IS NULL"),
        ),
    )

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    owner_id = Column(String(255), nullable=False, index=True)
    client_name = Column(String(255), nullable=False)
    client_email = Column(String(255), nullable=False, index=True)

    external_account_id = Column(String(255), nullable=False, unique=True, index=True)
    account_type = Column(String(20), nullable=False, default=AccountType.EXPRESS.value)
    account_status = Column(
        String(20), nullable=False, default=AccountStatus.PENDING.value, index=True
    )

    charges_enabled = Column(Boolean, nullable=False, default=False)
    payouts_enabled = Column(Boolean, nullable=False, default=False)
    details_submitted = Column(Boolean, nullable=False, default=False)
    onboarding_completed = Column(Boolean, nullable=False, default=False)
    disabled_reason = Column(String(100), nullable=True)
    capability_card_payments = Column(String(20), nullable=True)
    capability_transfers = Column(String(20), nullable=True)

    statement_descriptor = Column(String(22), nullable=True)
    default_currency = Column(String(3), nullable=True)

    onboarding_link = Column(Text, nullable=True)
    onboarding_link_expires_at = Column(DateTime(timezone=True), nullable=True)

    metadata_ = Column("metadata", JSON, nullable=True, default=dict)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    last_event_at = Column(DateTime(timezone=True), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def can_accept_payments(self) -> bool:
        return self.account_status == AccountStatus.ACTIVE.value and bool(self.charges_enabled)
