"""AuditLog model for tracking state changes to billing entities."""

from sqlalchemy import JSON, Column, DateTime, String, func

from meterpay.core.database import Base
from meterpay.models.shared import UUIDType, generate_uuid


class AuditLog(Base):
    """AuditLog model - one row per state-changing operation."""

    __tablename__ = "audit_logs"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    resource_type = Column(String(50), nullable=False, index=True)
    resource_id = Column(UUIDType, nullable=False, index=True)
    action = Column(String(50), nullable=False, index=True)
    changes = Column(JSON, nullable=False, default=dict)
    actor_type = Column(String(50), nullable=False)
    actor_id = Column(String(255), nullable=True)
    owner_id = Column(String(255), nullable=True, index=True)
    metadata_ = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
