"""Tests for application-sourced payment events and event maintenance."""

from uuid import uuid4

import pytest

from meterpay.core.database import transaction
from meterpay.core.exceptions import NotFoundError
from meterpay.models.payment_event import PaymentEventSource, PaymentEventType
from meterpay.repositories.audit_log_repository import AuditLogRepository
from meterpay.repositories.connected_account_repository import ConnectedAccountRepository
from meterpay.repositories.payment_event_repository import PaymentEventRepository
from meterpay.schemas.subscription import SubscriptionSync
from meterpay.services.payment_event_service import PaymentEventService
from meterpay.services.subscription_service import SubscriptionService


@pytest.fixture
def service(db_session):
    return PaymentEventService(db_session)


class TestLogPaymentEvent:
    def test_stored_as_processed(self, service, owner_id):
        event = service.log_payment_event(
            owner_id,
            PaymentEventType.PLAN_UPGRADED,
            description="free -> pro",
            event_data={"from": "free", "to": "pro"},
        )

        assert event.id is not None
        assert event.owner_id == owner_id
        assert event.event_type == "plan_upgraded"
        assert event.source == PaymentEventSource.APPLICATION.value
        assert event.processed is True
        assert event.processed_at is not None
        assert event.external_event_id is None
        assert event.event_data == {"from": "free", "to": "pro"}
        assert event.metadata_ == {}

    def test_linked_to_live_subscription(self, db_session, service, owner_id):
        subscription = SubscriptionService(db_session).create_or_sync(
            owner_id, SubscriptionSync(plan_id="pro")
        )
        event = service.log_payment_event(owner_id, PaymentEventType.TRIAL_STARTED)
        assert event.subscription_id == subscription.id

    def test_without_subscription(self, service, owner_id):
        event = service.log_payment_event(owner_id, PaymentEventType.OTHER, metadata={"k": "v"})
        assert event.subscription_id is None
        assert event.metadata_ == {"k": "v"}


class TestGetEvent:
    def test_found(self, service, owner_id):
        event = service.log_payment_event(owner_id, PaymentEventType.OTHER)
        assert service.get_event(event.id).id == event.id

    def test_missing(self, service):
        with pytest.raises(NotFoundError):
            service.get_event(uuid4())

    def test_scoped_to_owner(self, service, owner_id):
        event = service.log_payment_event(owner_id, PaymentEventType.OTHER)
        assert service.get_event(event.id, owner_id).id == event.id
        with pytest.raises(NotFoundError):
            service.get_event(event.id, "someone-else")
        with pytest.raises(NotFoundError):
            service.reset_payment_event(event.id, "someone-else")
        assert service.get_event(event.id).processed is True


class TestResetPaymentEvent:
    def test_clears_processed_and_error(self, db_session, service):
        event = PaymentEventRepository(db_session).create(
            event_type=PaymentEventType.PAYMENT_FAILED.value,
            source=PaymentEventSource.PROCESSOR.value,
            external_event_id="evt_1",
            processed=False,
            error="handler failed",
        )
        db_session.commit()

        reset = service.reset_payment_event(event.id)

        assert reset.processed is False
        assert reset.processed_at is None
        assert reset.error is None
        [log] = AuditLogRepository(db_session).get_by_resource("payment_event", event.id)
        assert log.action == "updated"
        assert log.changes == {"error": {"old": "handler failed", "new": None}}

    def test_missing(self, service):
        with pytest.raises(NotFoundError):
            service.reset_payment_event(uuid4())


class TestListing:
    def test_filters(self, db_session, service, owner_id):
        service.log_payment_event(owner_id, PaymentEventType.USAGE_TRACKED)
        service.log_payment_event("someone-else", PaymentEventType.LIMIT_EXCEEDED)
        repo = PaymentEventRepository(db_session)

        assert repo.count() == 2
        assert repo.count(owner_id=owner_id) == 1
        assert repo.count(event_type="limit_exceeded") == 1
        assert repo.count(source="processor") == 0
        assert len(repo.get_all(processed=True)) == 2

    def test_by_connected_account(self, db_session):
        accounts = ConnectedAccountRepository(db_session)
        with transaction(db_session):
            mine = accounts.create(
                owner_id="a", client_name="A", client_email="a@x.test", external_account_id="acct_a"
            )
            other = accounts.create(
                owner_id="b", client_name="B", client_email="b@x.test", external_account_id="acct_b"
            )
        repo = PaymentEventRepository(db_session)
        with transaction(db_session):
            for n in range(3):
                repo.create(
                    event_type=PaymentEventType.ACCOUNT_UPDATED.value,
                    source=PaymentEventSource.PROCESSOR.value,
                    external_event_id=f"evt_{n}",
                    connected_account_id=mine.id,
                    processed=True,
                )
            repo.create(
                event_type=PaymentEventType.ACCOUNT_UPDATED.value,
                source=PaymentEventSource.PROCESSOR.value,
                external_event_id="evt_other",
                connected_account_id=other.id,
                processed=True,
            )

        assert repo.count(connected_account_id=mine.id) == 3
        assert len(repo.get_all(connected_account_id=other.id)) == 1
        assert len(repo.get_by_account(mine.id)) == 3
        assert len(repo.get_by_account(mine.id, limit=2)) == 2
