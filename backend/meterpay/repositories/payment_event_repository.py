"""PaymentEvent repository for data access."""

from typing import Any
from uuid import UUID

from sqlalchemy import func as sa_func
from sqlalchemy.orm import Session

from meterpay.core.sorting import apply_order_by
from meterpay.models.payment_event import PaymentEvent


class PaymentEventRepository:
    def __init__(self, db: Session):
        self.db = db

    def create(self, **fields: Any) -> PaymentEvent:
        event = PaymentEvent(**fields)
        self.db.add(event)
        self.db.flush()
        return event

    def get_by_id(self, event_id: UUID) -> PaymentEvent | None:
        return self.db.query(PaymentEvent).filter(PaymentEvent.id == event_id).first()

    def get_by_external_event_id(self, external_event_id: str) -> PaymentEvent | None:
        return (
            self.db.query(PaymentEvent)
            .filter(PaymentEvent.external_event_id == external_event_id)
            .first()
        )

    def _filtered(
        self,
        owner_id: str | None = None,
        event_type: str | None = None,
        source: str | None = None,
        processed: bool | None = None,
        connected_account_id: UUID | None = None,
    ):  # type: ignore[no-untyped-def]
        query = self.db.query(PaymentEvent)
        if owner_id is not None:
            query = query.filter(PaymentEvent.owner_id == owner_id)
        if event_type:
            query = query.filter(PaymentEvent.event_type == event_type)
        if source:
            query = query.filter(PaymentEvent.source == source)
        if processed is not None:
            query = query.filter(PaymentEvent.processed == processed)
        if connected_account_id is not None:
            query = query.filter(PaymentEvent.connected_account_id == connected_account_id)
        return query

    def get_all(
        self,
        skip: int = 0,
        limit: int = 100,
        owner_id: str | None = None,
        event_type: str | None = None,
        source: str | None = None,
        processed: bool | None = None,
        connected_account_id: UUID | None = None,
        order_by: str | None = None,
    ) -> list[PaymentEvent]:
        query = self._filtered(owner_id, event_type, source, processed, connected_account_id)
        query = apply_order_by(query, PaymentEvent, order_by)
        return query.offset(skip).limit(limit).all()

    def count(
        self,
        owner_id: str | None = None,
        event_type: str | None = None,
        source: str | None = None,
        processed: bool | None = None,
        connected_account_id: UUID | None = None,
    ) -> int:
        query = self._filtered(owner_id, event_type, source, processed, connected_account_id)
        return query.with_entities(sa_func.count(PaymentEvent.id)).scalar() or 0

    def get_by_account(self, connected_account_id: UUID, limit: int = 50) -> list[PaymentEvent]:
        """Newest events touching one connected account."""
        return (
            self._filtered(connected_account_id=connected_account_id)
            .order_by(PaymentEvent.created_at.desc())
            .limit(limit)
            .all()
        )
