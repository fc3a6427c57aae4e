"""Reconciliation of processor events into local billing state.

Events arrive at least once and in no particular order. Each handler is an
upsert keyed by the processor's own identifier (account, payment intent,
checkout session, subscription). A handler never invents a business record
from a partial event: an unknown target is recorded as a failed event so it
can be inspected and replayed.

``reconcile`` never raises. Whatever happens, the outcome ends up on the
stored ``PaymentEvent``.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from meterpay.core.database import transaction
from meterpay.core.exceptions import NotFoundError
from meterpay.models.client_payment import ClientPayment, ClientPaymentStatus
from meterpay.models.payment_event import PaymentEvent, PaymentEventSource, PaymentEventType
from meterpay.models.shared import as_utc, from_timestamp, utc_now
from meterpay.models.subscription import PlanType, Subscription, SubscriptionStatus
from meterpay.repositories.client_payment_repository import ClientPaymentRepository
from meterpay.repositories.connected_account_repository import ConnectedAccountRepository
from meterpay.repositories.payment_event_repository import PaymentEventRepository
from meterpay.repositories.subscription_repository import SubscriptionRepository
from meterpay.schemas.payment_event import ProcessorEvent, ReconcileResult
from meterpay.schemas.subscription import SubscriptionSync
from meterpay.services.audit_service import PROCESSOR, Actor, AuditService
from meterpay.services.connect_service import ConnectService, field
from meterpay.services.stripe_client import StripeClient
from meterpay.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

EVENT_TYPE_MAP: dict[str, PaymentEventType] = {
    "account.updated": PaymentEventType.ACCOUNT_UPDATED,
    "payment_intent.succeeded": PaymentEventType.PAYMENT_SUCCEEDED,
    "payment_intent.payment_failed": PaymentEventType.PAYMENT_FAILED,
    "payment_intent.processing": PaymentEventType.OTHER,
    "payment_intent.canceled": PaymentEventType.PAYMENT_FAILED,
    "charge.succeeded": PaymentEventType.PAYMENT_SUCCEEDED,
    "charge.refunded": PaymentEventType.REFUND_CREATED,
    "checkout.session.completed": PaymentEventType.SUBSCRIPTION_CREATED,
    "customer.subscription.created": PaymentEventType.SUBSCRIPTION_CREATED,
    "customer.subscription.updated": PaymentEventType.SUBSCRIPTION_UPDATED,
    "customer.subscription.deleted": PaymentEventType.SUBSCRIPTION_CANCELLED,
    "customer.subscription.trial_will_end": PaymentEventType.TRIAL_ENDED,
    "invoice.payment_failed": PaymentEventType.PAYMENT_FAILED,
    "invoice.payment_succeeded": PaymentEventType.PAYMENT_SUCCEEDED,
}

# Processor subscription statuses mapped onto the entitlement model.
SUBSCRIPTION_STATUS_MAP: dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.TRIALING,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELLED,
    "incomplete": SubscriptionStatus.INACTIVE,
    "incomplete_expired": SubscriptionStatus.CANCELLED,
    "paused": SubscriptionStatus.INACTIVE,
}

CLIENT_SUBSCRIPTION_STATUS_MAP: dict[str, str] = {
    "active": "active",
    "trialing": "active",
    "past_due": "past_due",
    "unpaid": "unpaid",
    "canceled": "cancelled",
    "incomplete_expired": "cancelled",
}


class StaleEventError(Exception):
    """The target already reflects a newer event; nothing to apply."""


class EventReconciler:
    """Applies processor events to subscriptions, payments and accounts."""

    def __init__(
        self,
        db: Session,
        client: StripeClient | None = None,
        actor: Actor = PROCESSOR,
    ):
        self.db = db
        self.actor = actor
        self.events = PaymentEventRepository(db)
        self.subscriptions = SubscriptionRepository(db)
        self.subscription_service = SubscriptionService(db, actor)
        self.accounts = ConnectedAccountRepository(db)
        self.payments = ClientPaymentRepository(db)
        self.connect = ConnectService(db, client, actor)
        self.audit = AuditService(db)
        self._handlers: dict[str, Callable[[dict[str, Any], datetime | None], None]] = {
            "account.updated": self._handle_account_updated,
            "payment_intent.succeeded": self._handle_payment_intent,
            "payment_intent.payment_failed": self._handle_payment_intent,
            "payment_intent.processing": self._handle_payment_intent,
            "payment_intent.canceled": self._handle_payment_intent,
            "charge.succeeded": self._handle_charge_succeeded,
            "charge.refunded": self._handle_charge_refunded,
            "checkout.session.completed": self._handle_checkout_completed,
            "customer.subscription.created": self._handle_subscription,
            "customer.subscription.updated": self._handle_subscription,
            "customer.subscription.deleted": self._handle_subscription,
            "invoice.payment_failed": self._handle_invoice,
            "invoice.payment_succeeded": self._handle_invoice,
        }
        self._current: PaymentEvent | None = None

    # -- entry points -----------------------------------------------------

    def reconcile(self, event: ProcessorEvent) -> ReconcileResult:
        """Record and apply one processor event."""
        try:
            stored = self._record(event)
        except Exception as exc:
            self.db.rollback()
            logger.exception("Could not record processor event %s", event.id)
            return ReconcileResult(event_id=None, processed=False, error=str(exc))

        if stored.processed:
            logger.info("Processor event %s already processed, skipping", event.id)
            return ReconcileResult(event_id=stored.id, processed=True, duplicate=True)
        return self._apply(stored)

    def replay(self, payment_event_id: UUID) -> ReconcileResult:
        """Re-run an unprocessed processor event from its stored payload."""
        stored = self.events.get_by_id(payment_event_id)
        if stored is None:
            raise NotFoundError("payment event not found")
        if stored.processed:
            return ReconcileResult(event_id=stored.id, processed=True, duplicate=True)
        if stored.source != PaymentEventSource.PROCESSOR.value or not stored.external_type:
            with transaction(self.db):
                stored.processed = True
                stored.processed_at = utc_now()
            return ReconcileResult(event_id=stored.id, processed=True)
        return self._apply(stored)

    # -- internals --------------------------------------------------------

    def _record(self, event: ProcessorEvent) -> PaymentEvent:
        existing = self.events.get_by_external_event_id(event.id)
        if existing is not None:
            return existing
        try:
            with transaction(self.db):
                stored = self.events.create(
                    event_type=EVENT_TYPE_MAP.get(event.type, PaymentEventType.OTHER).value,
                    source=PaymentEventSource.PROCESSOR.value,
                    external_event_id=event.id,
                    external_type=event.type,
                    event_data=event.model_dump(mode="json"),
                    processed=False,
                )
        except IntegrityError:
            # A concurrent delivery of the same event got there first.
            existing = self.events.get_by_external_event_id(event.id)
            if existing is None:
                raise
            return existing
        return stored

    def _apply(self, stored: PaymentEvent) -> ReconcileResult:
        event = ProcessorEvent.model_validate(stored.event_data or {})
        handler = self._handlers.get(event.type)
        data_object: dict[str, Any] = (event.data or {}).get("object") or {}
        event_time = from_timestamp(event.created)
        stale = False

        try:
            with transaction(self.db):
                current = self.events.get_by_id(stored.id)  # type: ignore[arg-type]
                if current is None:
                    raise NotFoundError(f"payment event {stored.id} not found")
                self._current = current
                if handler is None:
                    logger.debug("No handler for processor event type %s", event.type)
                else:
                    try:
                        handler(data_object, event_time)
                    except StaleEventError as exc:
                        stale = True
                        logger.warning("Ignoring stale event %s: %s", event.id, exc)
                current.processed = True
                current.processed_at = utc_now()
                current.error = None
                self.audit.log_action(
                    "payment_event",
                    current.id,  # type: ignore[arg-type]
                    "processed",
                    self.actor,
                    {"external_type": event.type, "stale": stale},
                    owner_id=current.owner_id,  # type: ignore[arg-type]
                )
        except Exception as exc:
            logger.exception("Failed to reconcile processor event %s (%s)", event.id, event.type)
            return self._record_failure(stored.id, exc)  # type: ignore[arg-type]
        finally:
            self._current = None

        return ReconcileResult(event_id=stored.id, processed=True, stale=stale)

    def _record_failure(self, payment_event_id: UUID, exc: Exception) -> ReconcileResult:
        message = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
        try:
            with transaction(self.db):
                stored = self.events.get_by_id(payment_event_id)
                if stored is not None:
                    stored.processed = False
                    stored.error = message[:2000]
        except Exception:
            logger.exception("Could not record failure for payment event %s", payment_event_id)
        return ReconcileResult(event_id=payment_event_id, processed=False, error=message)

    def _link(self, **refs: Any) -> None:
        if self._current is None:
            return
        for key, value in refs.items():
            if value is not None:
                setattr(self._current, key, value)

    def _link_payment(self, payment: ClientPayment) -> None:
        account = self.accounts.get_by_id(payment.connected_account_id)  # type: ignore[arg-type]
        self._link(
            client_payment_id=payment.id,
            connected_account_id=payment.connected_account_id,
            owner_id=account.owner_id if account is not None else None,
        )

    @property
    def _owner_id(self) -> str | None:
        return self._current.owner_id if self._current is not None else None  # type: ignore[return-value]

    @staticmethod
    def _check_fresh(entity: Any, event_time: datetime | None) -> None:
        """Reject events older than the last one applied to ``entity``."""
        last = as_utc(getattr(entity, "last_event_at", None))
        if event_time is not None and last is not None and event_time < last:
            raise StaleEventError(f"event at {event_time.isoformat()} older than {last.isoformat()}")
        if event_time is not None:
            entity.last_event_at = event_time

    # -- handlers ---------------------------------------------------------

    def _handle_account_updated(self, obj: dict[str, Any], event_time: datetime | None) -> None:
        account_id = obj.get("id")
        account = self.accounts.get_by_external_id(account_id) if account_id else None
        if account is None:
            raise NotFoundError(f"connected account {account_id} not found")
        locked_account = self.accounts.get_for_update(account.id)  # type: ignore[arg-type]
        if locked_account is None:
            raise NotFoundError(f"connected account {account_id} not found")
        account = locked_account
        self._link(connected_account_id=account.id, owner_id=account.owner_id)
        self._check_fresh(account, event_time)
        self.connect.apply_processor_account(account, obj, event_time)

    def _require_payment_by_intent(self, intent_id: str | None) -> ClientPayment:
        payment = self.payments.get_by_payment_intent_id(intent_id) if intent_id else None
        if payment is None:
            raise NotFoundError(f"payment for payment intent {intent_id} not found")
        self._link_payment(payment)
        return payment

    def _set_payment_status(self, payment: ClientPayment, status: ClientPaymentStatus) -> None:
        old_status = str(payment.status)
        if old_status == status.value:
            return
        payment.status = status.value
        self.audit.log_status_change(
            "client_payment",
            payment.id,  # type: ignore[arg-type]
            old_status,
            status.value,
            self.actor,
            owner_id=self._owner_id,
        )

    def _handle_payment_intent(self, obj: dict[str, Any], event_time: datetime | None) -> None:
        payment = self._require_payment_by_intent(obj.get("id"))
        self._check_fresh(payment, event_time)
        status = {
            "succeeded": ClientPaymentStatus.SUCCEEDED,
            "processing": ClientPaymentStatus.PROCESSING,
            "canceled": ClientPaymentStatus.CANCELLED,
            "requires_payment_method": ClientPaymentStatus.FAILED,
        }.get(obj.get("status", ""))
        if obj.get("last_payment_error") and status is None:
            status = ClientPaymentStatus.FAILED
        if status is None:
            return
        if payment.refunded and status == ClientPaymentStatus.SUCCEEDED:
            # A refund already settled this payment.
            status = ClientPaymentStatus.REFUNDED
        self._set_payment_status(payment, status)
        if status == ClientPaymentStatus.FAILED:
            payment.failure_reason = field(obj.get("last_payment_error"), "message", "Payment failed")
        latest_charge = obj.get("latest_charge")
        if isinstance(latest_charge, str):
            payment.external_charge_id = latest_charge
        if obj.get("customer"):
            payment.external_customer_id = obj["customer"]

    def _handle_charge_succeeded(self, obj: dict[str, Any], event_time: datetime | None) -> None:
        payment = self._require_payment_by_intent(obj.get("payment_intent"))
        self._check_fresh(payment, event_time)
        payment.external_charge_id = obj.get("id")
        billing = obj.get("billing_details") or {}
        if billing.get("email") and not payment.customer_email:
            payment.customer_email = billing["email"]
        if billing.get("name"):
            payment.customer_name = billing["name"]
        if not payment.refunded:
            self._set_payment_status(payment, ClientPaymentStatus.SUCCEEDED)

    def _handle_charge_refunded(self, obj: dict[str, Any], event_time: datetime | None) -> None:
        intent_id = obj.get("payment_intent")
        payment = self.payments.get_by_payment_intent_id(intent_id) if intent_id else None
        if payment is None and obj.get("id"):
            payment = self.payments.get_by_charge_id(obj["id"])
        if payment is None:
            raise NotFoundError(f"payment for charge {obj.get('id')} not found")
        self._link_payment(payment)
        # Refund amounts only grow, so they apply regardless of arrival order.
        refunded_amount = int(obj.get("amount_refunded") or 0)
        payment.refund_amount = max(int(payment.refund_amount or 0), refunded_amount)
        if payment.refunded_at is None:
            payment.refunded_at = utc_now()
        if obj.get("refunded") or payment.refund_amount >= int(payment.amount):
            payment.refunded = True
            self._set_payment_status(payment, ClientPaymentStatus.REFUNDED)
        if event_time is not None:
            last = as_utc(payment.last_event_at)
            if last is None or event_time > last:
                payment.last_event_at = event_time

    def _handle_checkout_completed(self, obj: dict[str, Any], event_time: datetime | None) -> None:
        checkout_id = obj.get("id")
        payment = self.payments.get_by_checkout_id(checkout_id) if checkout_id else None
        if payment is not None:
            self._link_payment(payment)
            self._check_fresh(payment, event_time)
            if obj.get("payment_intent") and not payment.external_payment_intent_id:
                payment.external_payment_intent_id = obj["payment_intent"]
            if obj.get("subscription"):
                payment.external_subscription_id = obj["subscription"]
                payment.subscription_status = payment.subscription_status or "active"
            if obj.get("customer"):
                payment.external_customer_id = obj["customer"]
            details = obj.get("customer_details") or {}
            if details.get("email"):
                payment.customer_email = details["email"]
            if details.get("name"):
                payment.customer_name = details["name"]
            if obj.get("payment_status") in ("paid", "no_payment_required"):
                if not payment.refunded:
                    self._set_payment_status(payment, ClientPaymentStatus.SUCCEEDED)
            elif payment.status == ClientPaymentStatus.PENDING.value:
                self._set_payment_status(payment, ClientPaymentStatus.PROCESSING)
            return

        metadata = obj.get("metadata") or {}
        owner_id = metadata.get("owner_id") or obj.get("client_reference_id")
        if not owner_id:
            raise NotFoundError(f"checkout session {checkout_id} matches no payment or owner")

        existing = self.subscriptions.get_by_owner(owner_id)
        if existing is not None:
            self._check_fresh(existing, event_time)

        fields: dict[str, Any] = {
            "status": SubscriptionStatus.ACTIVE,
            "provider": "stripe",
            "external_customer_id": obj.get("customer"),
            "external_subscription_id": obj.get("subscription"),
        }
        if metadata.get("plan_id") or existing is None:
            # A completed platform checkout is what first creates the subscription.
            fields.update(plan_id=metadata.get("plan_id") or "default", plan_type=PlanType.PAID)
        else:
            fields["plan_id"] = existing.plan_id
        subscription = self.subscription_service.apply_sync(owner_id, SubscriptionSync(**fields))
        self._link(owner_id=owner_id, subscription_id=subscription.id)
        self._check_fresh(subscription, event_time)

    def _handle_subscription(self, obj: dict[str, Any], event_time: datetime | None) -> None:
        external_id = obj.get("id")
        deleted = obj.get("status") == "canceled" or obj.get("ended_at") is not None
        subscription = (
            self.subscriptions.get_by_external_subscription_id(external_id) if external_id else None
        )
        if subscription is not None:
            self._apply_platform_subscription(subscription, obj, event_time, deleted)
            return

        payment = self.payments.get_by_external_subscription_id(external_id) if external_id else None
        if payment is not None:
            self._link_payment(payment)
            self._check_fresh(payment, event_time)
            status = "cancelled" if deleted else CLIENT_SUBSCRIPTION_STATUS_MAP.get(
                obj.get("status", ""), payment.subscription_status
            )
            payment.subscription_status = status
            period_end = from_timestamp(_period_end(obj))
            if period_end is not None:
                payment.subscription_current_period_end = period_end
            return

        raise NotFoundError(f"subscription {external_id} not found")

    def _apply_platform_subscription(
        self,
        subscription: Subscription,
        obj: dict[str, Any],
        event_time: datetime | None,
        deleted: bool,
    ) -> None:
        locked = self.subscription_service.lock(subscription.id)  # type: ignore[arg-type]
        self._link(subscription_id=locked.id, owner_id=locked.owner_id)
        self._check_fresh(locked, event_time)

        old_status = str(locked.status)
        if deleted:
            new_status = SubscriptionStatus.CANCELLED
        else:
            new_status = SUBSCRIPTION_STATUS_MAP.get(
                obj.get("status", ""), SubscriptionStatus(old_status)
            )
        locked.status = new_status.value
        period_end = from_timestamp(_period_end(obj))
        if period_end is not None:
            locked.current_period_end = period_end
        trial_end = from_timestamp(obj.get("trial_end"))
        if trial_end is not None:
            locked.trial_end_date = trial_end
        if deleted:
            locked.end_date = from_timestamp(obj.get("ended_at")) or utc_now()
        if obj.get("customer"):
            locked.external_customer_id = obj["customer"]
        self.db.flush()
        if old_status != new_status.value:
            self.audit.log_status_change(
                "subscription",
                locked.id,  # type: ignore[arg-type]
                old_status,
                new_status.value,
                self.actor,
                owner_id=locked.owner_id,  # type: ignore[arg-type]
            )

    def _handle_invoice(self, obj: dict[str, Any], event_time: datetime | None) -> None:
        external_id = obj.get("subscription")
        if not external_id:
            # One-off invoices carry nothing to reconcile.
            return
        failed = obj.get("status") != "paid" and not obj.get("paid", False)
        subscription = self.subscriptions.get_by_external_subscription_id(external_id)
        if subscription is not None:
            locked = self.subscription_service.lock(subscription.id)  # type: ignore[arg-type]
            self._link(subscription_id=locked.id, owner_id=locked.owner_id)
            self._check_fresh(locked, event_time)
            old_status = str(locked.status)
            new_status = SubscriptionStatus.PAST_DUE if failed else SubscriptionStatus.ACTIVE
            if old_status == SubscriptionStatus.CANCELLED.value:
                return
            locked.status = new_status.value
            self.db.flush()
            if old_status != new_status.value:
                self.audit.log_status_change(
                    "subscription",
                    locked.id,  # type: ignore[arg-type]
                    old_status,
                    new_status.value,
                    self.actor,
                    owner_id=locked.owner_id,  # type: ignore[arg-type]
                )
            return

        payment = self.payments.get_by_external_subscription_id(external_id)
        if payment is None:
            raise NotFoundError(f"subscription {external_id} not found")
        self._link_payment(payment)
        self._check_fresh(payment, event_time)
        if payment.subscription_status != "cancelled":
            payment.subscription_status = "past_due" if failed else "active"


def _period_end(obj: dict[str, Any]) -> Any:
    if obj.get("current_period_end"):
        return obj["current_period_end"]
    items = (obj.get("items") or {}).get("data") or []
    if items:
        return items[0].get("current_period_end")
    return None
