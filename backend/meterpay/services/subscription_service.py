"""Subscription (entitlement) lifecycle: create-or-sync, status, resets, soft delete."""

import logging
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from meterpay.core.database import transaction
from meterpay.core.exceptions import NotFoundError, StateConflictError
from meterpay.models.shared import utc_now
from meterpay.models.subscription import Subscription, SubscriptionStatus
from meterpay.repositories.subscription_repository import SubscriptionRepository
from meterpay.repositories.usage_repository import UsageCounterRepository
from meterpay.schemas.subscription import SubscriptionStats, SubscriptionSync, UsageLimitCheck
from meterpay.services.audit_service import SYSTEM, Actor, AuditService
from meterpay.services.feature_access import get_limit, get_usage

logger = logging.getLogger(__name__)

RESOURCE_TYPE = "subscription"

# Fields a sync may patch on an existing subscription. Usage is never synced.
_SYNC_FIELDS = (
    "plan_id",
    "plan_type",
    "status",
    "name",
    "description",
    "provider",
    "external_customer_id",
    "external_subscription_id",
    "features",
    "limits",
    "start_date",
    "end_date",
    "current_period_end",
    "trial_end_date",
)

# A None for these means "not reported", not "clear it".
_KEEP_WHEN_NONE = (
    "plan_id",
    "features",
    "limits",
    "external_customer_id",
    "external_subscription_id",
)


def _limits_to_json(limits: dict[str, Decimal] | None) -> dict[str, float | int] | None:
    if limits is None:
        return None
    return {
        key: int(value) if value == value.to_integral_value() else float(value)
        for key, value in limits.items()
    }


class SubscriptionService:
    """Service for the owner-scoped entitlement record."""

    def __init__(self, db: Session, actor: Actor = SYSTEM):
        self.db = db
        self.actor = actor
        self.repo = SubscriptionRepository(db)
        self.counters = UsageCounterRepository(db)
        self.audit = AuditService(db)

    def get_by_owner(self, owner_id: str) -> Subscription | None:
        return self.repo.get_by_owner(owner_id)

    def require_by_owner(self, owner_id: str) -> Subscription:
        subscription = self.repo.get_by_owner(owner_id)
        if subscription is None:
            raise NotFoundError("subscription not found", {"owner_id": owner_id})
        return subscription

    def lock(self, subscription_id: UUID) -> Subscription:
        """Re-read a subscription under a row lock."""
        subscription = self.repo.get_for_update(subscription_id)
        if subscription is None:
            raise NotFoundError(
                "subscription not found", {"subscription_id": str(subscription_id)}
            )
        return subscription

    def create_or_sync(self, owner_id: str, data: SubscriptionSync) -> Subscription:
        """Upsert the owner's live subscription.

        A new subscription starts with every counter at zero. An existing one
        has its mutable fields patched; counters are left alone.
        """
        with transaction(self.db):
            subscription = self.apply_sync(owner_id, data)
        return subscription

    def apply_sync(self, owner_id: str, data: SubscriptionSync) -> Subscription:
        """Create-or-sync inside the caller's transaction."""
        values = data.model_dump(exclude_unset=True, exclude={"metadata"})
        values["plan_id"] = data.plan_id
        existing = self.repo.get_by_owner(owner_id)
        if existing is None:
            # Defaults only apply to a new record; a sync patches what it was given.
            values.setdefault("plan_type", data.plan_type)
            values.setdefault("status", data.status)
        for key in ("plan_type", "status"):
            if key in values:
                values[key] = getattr(values[key], "value", values[key])
        if "limits" in values:
            values["limits"] = _limits_to_json(data.limits)
        if "features" in values and values["features"] is not None:
            values["features"] = sorted(set(values["features"]))

        if existing is None:
            now = utc_now()
            subscription = self.repo.create(
                owner_id=owner_id,
                name=values.pop("name", None) or "Subscription",
                features=values.pop("features", None) or [],
                limits=values.pop("limits", None) or {},
                usage_reset_at=now,
                start_date=values.pop("start_date", None) or now,
                metadata_=data.metadata or {},
                **{k: v for k, v in values.items() if k in _SYNC_FIELDS and v is not None},
            )
            self.counters.ensure(
                subscription.id,  # type: ignore[arg-type]
                list(subscription.features or []) + list((subscription.limits or {}).keys()),
            )
            self.audit.log_create(
                RESOURCE_TYPE,
                subscription.id,  # type: ignore[arg-type]
                self.actor,
                subscription.summary(),
                owner_id=owner_id,
            )
            logger.info("Created subscription %s for owner %s", subscription.id, owner_id)
            return subscription

        subscription = self.lock(existing.id)  # type: ignore[arg-type]
        before = subscription.summary()
        for key, value in values.items():
            if key not in _SYNC_FIELDS:
                continue
            if value is None and key in _KEEP_WHEN_NONE:
                continue
            setattr(subscription, key, value)
        if data.metadata is not None:
            subscription.metadata_ = data.metadata
        self.db.flush()
        self.counters.ensure(
            subscription.id,  # type: ignore[arg-type]
            list(subscription.features or []) + list((subscription.limits or {}).keys()),
        )
        self.audit.log_update(
            RESOURCE_TYPE,
            subscription.id,  # type: ignore[arg-type]
            self.actor,
            before,
            subscription.summary(),
            owner_id=owner_id,
        )
        return subscription

    def update_status(
        self,
        owner_id: str,
        status: SubscriptionStatus,
        end_date: datetime | None = None,
    ) -> Subscription:
        with transaction(self.db):
            current = self.require_by_owner(owner_id)
            subscription = self.lock(current.id)  # type: ignore[arg-type]
            old_status = str(subscription.status)
            subscription.status = status.value
            if end_date is not None:
                subscription.end_date = end_date
            self.db.flush()
            if old_status != status.value:
                self.audit.log_status_change(
                    RESOURCE_TYPE,
                    subscription.id,  # type: ignore[arg-type]
                    old_status,
                    status.value,
                    self.actor,
                    owner_id=owner_id,
                )
                logger.info(
                    "Subscription %s status %s -> %s", subscription.id, old_status, status.value
                )
        return subscription

    def reset_usage(self, owner_id: str) -> Subscription:
        """Zero every counter and stamp the reset time (period boundary)."""
        with transaction(self.db):
            current = self.require_by_owner(owner_id)
            subscription = self.lock(current.id)  # type: ignore[arg-type]
            before = {k: str(v) for k, v in subscription.usage.items()}
            reset_count = self.counters.reset(subscription.id)  # type: ignore[arg-type]
            subscription.usage_reset_at = utc_now()
            self.db.flush()
            self.audit.log_action(
                RESOURCE_TYPE,
                subscription.id,  # type: ignore[arg-type]
                "usage_reset",
                self.actor,
                {"usage": {"old": before, "new": {k: "0" for k in before}}},
                owner_id=owner_id,
            )
            logger.info("Reset %d usage counters on subscription %s", reset_count, subscription.id)
        self.db.refresh(subscription)
        return subscription

    def delete_subscription(self, owner_id: str) -> Subscription:
        """Soft delete: the row and its ledger stay for audit and analytics."""
        with transaction(self.db):
            current = self.require_by_owner(owner_id)
            subscription = self.lock(current.id)  # type: ignore[arg-type]
            subscription.deleted_at = utc_now()
            self.db.flush()
            self.audit.log_action(
                RESOURCE_TYPE,
                subscription.id,  # type: ignore[arg-type]
                "deleted",
                self.actor,
                owner_id=owner_id,
            )
        return subscription

    def restore_subscription(self, owner_id: str, subscription_id: UUID | None = None) -> Subscription:
        with transaction(self.db):
            if self.repo.get_by_owner(owner_id) is not None:
                raise StateConflictError("owner already has an active subscription")
            if subscription_id is not None:
                candidate = self.repo.get_by_id(subscription_id)
                if candidate is None or candidate.owner_id != owner_id:
                    raise NotFoundError("subscription not found")
            else:
                candidate = self.repo.get_latest_deleted_by_owner(owner_id)
                if candidate is None:
                    raise NotFoundError("subscription not found")
            if candidate.deleted_at is None:
                raise StateConflictError("subscription is not deleted")
            candidate.deleted_at = None
            self.db.flush()
            self.audit.log_action(
                RESOURCE_TYPE,
                candidate.id,  # type: ignore[arg-type]
                "restored",
                self.actor,
                owner_id=owner_id,
            )
        return candidate

    def is_usage_limit_exceeded(self, owner_id: str, feature_key: str) -> UsageLimitCheck:
        subscription = self.repo.get_by_owner(owner_id)
        if subscription is None:
            return UsageLimitCheck(exceeded=True, current_usage=Decimal("0"))
        current = get_usage(subscription, feature_key)
        limit = get_limit(subscription, feature_key)
        if limit is None:
            return UsageLimitCheck(exceeded=False, current_usage=current)
        return UsageLimitCheck(
            exceeded=current >= limit,
            current_usage=current,
            limit=limit,
            remaining=max(limit - current, Decimal("0")),
        )

    def get_subscription_stats(self, plan_id: str | None = None) -> SubscriptionStats:
        by_status = self.repo.counts_by_status(plan_id)
        return SubscriptionStats(
            total=sum(by_status.values()),
            by_status=by_status,
            by_plan=self.repo.counts_by_plan(plan_id),
        )
