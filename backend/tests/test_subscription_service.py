"""Tests for SubscriptionService: create-or-sync, status, reset, soft delete."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from meterpay.core.exceptions import NotFoundError, StateConflictError
from meterpay.models.audit_log import AuditLog
from meterpay.models.subscription import PlanType, SubscriptionStatus
from meterpay.schemas.subscription import SubscriptionSync
from meterpay.services.audit_service import Actor
from meterpay.services.subscription_service import SubscriptionService
from meterpay.services.usage_service import UsageService


@pytest.fixture
def service(db_session):
    return SubscriptionService(db_session, Actor(actor_type="user", actor_id="tester"))


@pytest.fixture
def pro_plan():
    return SubscriptionSync(
        plan_id="pro",
        plan_type=PlanType.PAID,
        features=["api_calls", "exports"],
        limits={"api_calls": Decimal("100")},
    )


class TestCreateOrSync:
    def test_creates_with_zero_usage(self, service, owner_id, pro_plan):
        subscription = service.create_or_sync(owner_id, pro_plan)

        assert subscription.owner_id == owner_id
        assert subscription.plan_id == "pro"
        assert subscription.plan_type == "paid"
        assert subscription.status == "active"
        assert subscription.features == ["api_calls", "exports"]
        assert subscription.limits == {"api_calls": 100}
        assert subscription.usage == {"api_calls": Decimal("0"), "exports": Decimal("0")}
        assert subscription.usage_reset_at is not None
        assert subscription.start_date is not None

    def test_sync_never_touches_usage(self, db_session, service, owner_id, pro_plan):
        service.create_or_sync(owner_id, pro_plan)
        UsageService(db_session).track_usage(owner_id, "api_calls", 7)

        upgraded = SubscriptionSync(
            plan_id="business",
            plan_type=PlanType.PAID,
            features=["api_calls", "exports", "sso"],
            limits={"api_calls": Decimal("1000")},
        )
        subscription = service.create_or_sync(owner_id, upgraded)

        assert subscription.plan_id == "business"
        assert subscription.limits == {"api_calls": 1000}
        assert subscription.usage["api_calls"] == Decimal("7")
        assert subscription.usage["sso"] == Decimal("0")

    def test_sync_keeps_unset_fields(self, service, owner_id, pro_plan):
        service.create_or_sync(owner_id, pro_plan)
        subscription = service.create_or_sync(
            owner_id, SubscriptionSync(plan_id="pro", status=SubscriptionStatus.PAST_DUE)
        )
        assert subscription.status == "past_due"
        assert subscription.features == ["api_calls", "exports"]
        assert subscription.limits == {"api_calls": 100}

    def test_one_live_subscription_per_owner(self, db_session, service, owner_id, pro_plan):
        first = service.create_or_sync(owner_id, pro_plan)
        second = service.create_or_sync(owner_id, pro_plan)
        assert first.id == second.id
        assert len(service.repo.get_all()) == 1

    def test_audit_records_create_and_update(self, db_session, service, owner_id, pro_plan):
        subscription = service.create_or_sync(owner_id, pro_plan)
        service.create_or_sync(owner_id, SubscriptionSync(plan_id="team"))

        actions = [
            log.action
            for log in db_session.query(AuditLog)
            .filter(AuditLog.resource_id == subscription.id)
            .order_by(AuditLog.created_at)
        ]
        assert "created" in actions
        assert "updated" in actions
        log = db_session.query(AuditLog).filter(AuditLog.action == "updated").one()
        assert log.changes["plan_id"] == {"old": "pro", "new": "team"}
        assert log.actor_type == "user"
        assert log.actor_id == "tester"

    def test_fractional_limits_are_stored(self, service, owner_id):
        subscription = service.create_or_sync(
            owner_id,
            SubscriptionSync(plan_id="metered", features=["gb"], limits={"gb": Decimal("2.5")}),
        )
        assert subscription.limits == {"gb": 2.5}


class TestStatusAndReset:
    def test_update_status(self, service, owner_id, pro_plan):
        service.create_or_sync(owner_id, pro_plan)
        end = datetime(2030, 1, 1, tzinfo=UTC)
        subscription = service.update_status(owner_id, SubscriptionStatus.CANCELLED, end)
        assert subscription.status == "cancelled"
        assert subscription.end_date is not None

    def test_update_status_missing_owner(self, service):
        with pytest.raises(NotFoundError):
            service.update_status("nobody", SubscriptionStatus.ACTIVE)

    def test_reset_usage_zeroes_counters(self, db_session, service, owner_id, pro_plan):
        created = service.create_or_sync(owner_id, pro_plan)
        first_reset = created.usage_reset_at
        UsageService(db_session).track_usage(owner_id, "api_calls", 42)
        UsageService(db_session).track_usage(owner_id, "exports", 3)

        subscription = service.reset_usage(owner_id)

        assert subscription.usage == {"api_calls": Decimal("0"), "exports": Decimal("0")}
        assert subscription.usage_reset_at >= first_reset
        log = db_session.query(AuditLog).filter(AuditLog.action == "usage_reset").one()
        assert Decimal(log.changes["usage"]["old"]["api_calls"]) == 42

    def test_reset_keeps_ledger(self, db_session, service, owner_id, pro_plan):
        service.create_or_sync(owner_id, pro_plan)
        usage = UsageService(db_session)
        usage.track_usage(owner_id, "api_calls", 1)
        service.reset_usage(owner_id)
        assert len(usage.list_usage_logs(owner_id)) == 1


class TestSoftDelete:
    def test_delete_hides_subscription(self, service, owner_id, pro_plan):
        service.create_or_sync(owner_id, pro_plan)
        deleted = service.delete_subscription(owner_id)
        assert deleted.deleted_at is not None
        assert service.get_by_owner(owner_id) is None

    def test_restore(self, service, owner_id, pro_plan):
        created = service.create_or_sync(owner_id, pro_plan)
        service.delete_subscription(owner_id)
        restored = service.restore_subscription(owner_id)
        assert restored.id == created.id
        assert service.get_by_owner(owner_id).id == created.id

    def test_restore_conflicts_with_live(self, service, owner_id, pro_plan):
        service.create_or_sync(owner_id, pro_plan)
        service.delete_subscription(owner_id)
        service.create_or_sync(owner_id, SubscriptionSync(plan_id="free"))
        with pytest.raises(StateConflictError):
            service.restore_subscription(owner_id)

    def test_restore_without_deleted(self, service, owner_id):
        with pytest.raises(NotFoundError):
            service.restore_subscription(owner_id)

    def test_delete_missing(self, service):
        with pytest.raises(NotFoundError):
            service.delete_subscription("nobody")


class TestReadHelpers:
    def test_limit_exceeded_without_subscription(self, service):
        check = service.is_usage_limit_exceeded("nobody", "api_calls")
        assert check.exceeded is True
        assert check.current_usage == Decimal("0")

    def test_limit_check(self, db_session, service, owner_id, pro_plan):
        service.create_or_sync(owner_id, pro_plan)
        UsageService(db_session).track_usage(owner_id, "api_calls", 100)
        check = service.is_usage_limit_exceeded(owner_id, "api_calls")
        assert check.exceeded is True
        assert check.remaining == Decimal("0")

    def test_unlimited_feature_never_exceeded(self, db_session, service, owner_id, pro_plan):
        service.create_or_sync(owner_id, pro_plan)
        UsageService(db_session).track_usage(owner_id, "exports", 10_000)
        check = service.is_usage_limit_exceeded(owner_id, "exports")
        assert check.exceeded is False
        assert check.limit is None

    def test_stats(self, service, pro_plan):
        service.create_or_sync("a", pro_plan)
        service.create_or_sync("b", pro_plan)
        service.create_or_sync("c", SubscriptionSync(plan_id="free"))
        service.update_status("b", SubscriptionStatus.CANCELLED)
        service.delete_subscription("c")

        stats = service.get_subscription_stats()
        assert stats.total == 2
        assert stats.by_status == {"active": 1, "cancelled": 1}
        assert stats.by_plan == {"pro": 2}

    def test_stats_empty(self, service):
        stats = service.get_subscription_stats()
        assert stats.total == 0
        assert stats.by_status == {}

    def test_period_end_roundtrip(self, service, owner_id):
        period_end = datetime.now(UTC) + timedelta(days=30)
        subscription = service.create_or_sync(
            owner_id, SubscriptionSync(plan_id="pro", current_period_end=period_end)
        )
        assert subscription.current_period_end is not None

    def test_lock_returns_row(self, service, owner_id, pro_plan):
        subscription = service.create_or_sync(owner_id, pro_plan)
        assert service.lock(subscription.id).id == subscription.id

    def test_lock_missing_row_raises_not_found(self, service):
        with pytest.raises(NotFoundError) as exc_info:
            service.lock(uuid4())
        assert exc_info.value.status_code == 404
