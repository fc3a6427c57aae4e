"""Application-sourced payment events and manual event maintenance."""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from meterpay.core.database import transaction
from meterpay.core.exceptions import NotFoundError
from meterpay.models.payment_event import PaymentEvent, PaymentEventSource, PaymentEventType
from meterpay.models.shared import utc_now
from meterpay.repositories.payment_event_repository import PaymentEventRepository
from meterpay.repositories.subscription_repository import SubscriptionRepository
from meterpay.services.audit_service import SYSTEM, Actor, AuditService

logger = logging.getLogger(__name__)


class PaymentEventService:
    def __init__(self, db: Session, actor: Actor = SYSTEM):
        self.db = db
        self.actor = actor
        self.repo = PaymentEventRepository(db)
        self.subscriptions = SubscriptionRepository(db)
        self.audit = AuditService(db)

    def log_payment_event(
        self,
        owner_id: str,
        event_type: PaymentEventType,
        description: str | None = None,
        event_data: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> PaymentEvent:
        """Record a business event raised by the application itself.

        Application events have nothing to reconcile, so they are stored as
        already processed.
        """
        subscription = self.subscriptions.get_by_owner(owner_id)
        with transaction(self.db):
            event = self.repo.create(
                owner_id=owner_id,
                subscription_id=subscription.id if subscription is not None else None,
                event_type=event_type.value,
                source=PaymentEventSource.APPLICATION.value,
                description=description,
                event_data=event_data,
                metadata_=metadata or {},
                processed=True,
                processed_at=utc_now(),
            )
        return event

    def get_event(self, event_id: UUID, owner_id: str | None = None) -> PaymentEvent:
        """Fetch an event, hiding it unless it belongs to ``owner_id`` when given."""
        event = self.repo.get_by_id(event_id)
        if event is None or (owner_id is not None and event.owner_id != owner_id):
            raise NotFoundError("payment event not found", {"event_id": str(event_id)})
        return event

    def reset_payment_event(self, event_id: UUID, owner_id: str | None = None) -> PaymentEvent:
        """Clear the processed flag and error so the event can be replayed."""
        with transaction(self.db):
            event = self.get_event(event_id, owner_id)
            previous = {"processed": event.processed, "error": event.error}
            event.processed = False
            event.processed_at = None
            event.error = None
            self.db.flush()
            self.audit.log_update(
                "payment_event",
                event.id,  # type: ignore[arg-type]
                self.actor,
                previous,
                {"processed": False, "error": None},
                owner_id=event.owner_id,  # type: ignore[arg-type]
            )
        logger.info("Payment event %s reset for replay", event_id)
        return event
