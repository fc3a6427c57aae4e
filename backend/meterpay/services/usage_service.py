"""Usage ledger: append a log entry and bump the counter in one transaction."""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from meterpay.core.database import transaction
from meterpay.core.exceptions import InvalidInputError
from meterpay.models.payment_event import PaymentEventSource, PaymentEventType
from meterpay.models.usage import QUANTITY_PRECISION, QUANTITY_SCALE, UsageLog
from meterpay.repositories.payment_event_repository import PaymentEventRepository
from meterpay.repositories.usage_repository import UsageCounterRepository, UsageLogRepository
from meterpay.schemas.usage import FeatureUsageStats, TrackUsageResult, UsageSummary
from meterpay.services.audit_service import SYSTEM, Actor, AuditService
from meterpay.services.feature_access import get_limit, get_usage
from meterpay.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

# A single quantity at or above this cannot be stored in the counter column.
MAX_QUANTITY = Decimal(10) ** (QUANTITY_PRECISION - QUANTITY_SCALE)


def validate_usage_input(feature_key: str | None, quantity: Any) -> tuple[str, Decimal]:
    """Normalise ``(feature_key, quantity)`` or raise before anything is written."""
    errors: list[str] = []
    key = (feature_key or "").strip()
    if not key:
        errors.append("feature_key must not be empty")
    try:
        amount = Decimal(str(quantity))
    except (InvalidOperation, ValueError):
        errors.append("quantity must be a number")
        amount = Decimal("0")
    else:
        if not amount.is_finite():
            errors.append("quantity must be a finite number")
        elif amount < 0:
            errors.append("quantity must be >= 0")
        elif amount >= MAX_QUANTITY:
            errors.append(f"quantity must be < {MAX_QUANTITY}")
        elif amount != amount.quantize(Decimal(1).scaleb(-QUANTITY_SCALE)):
            errors.append(f"quantity supports at most {QUANTITY_SCALE} decimal places")
    if errors:
        raise InvalidInputError(errors)
    return key, amount


class UsageService:
    """Service for metered usage tracking."""

    def __init__(self, db: Session, actor: Actor = SYSTEM):
        self.db = db
        self.actor = actor
        self.subscriptions = SubscriptionService(db, actor)
        self.counters = UsageCounterRepository(db)
        self.logs = UsageLogRepository(db)
        self.events = PaymentEventRepository(db)
        self.audit = AuditService(db)

    def track_usage(
        self,
        owner_id: str,
        feature_key: str,
        quantity: Any = 1,
        unit: str | None = None,
        context: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TrackUsageResult:
        """Record ``quantity`` units of ``feature_key`` for the owner.

        The ledger row and the counter increment commit together. The
        increment is applied by the database against the stored value, so
        concurrent calls never lose each other's updates.
        """
        key, amount = validate_usage_input(feature_key, quantity)

        with transaction(self.db):
            current = self.subscriptions.require_by_owner(owner_id)
            subscription = self.subscriptions.lock(current.id)  # type: ignore[arg-type]
            subscription_id: UUID = subscription.id  # type: ignore[assignment]
            limit = get_limit(subscription, key)

            entry = self.logs.create(
                subscription_id=subscription_id,
                owner_id=owner_id,
                feature_key=key,
                quantity=amount,
                unit=unit,
                context=context,
                metadata=metadata,
            )
            new_usage = self.counters.increment(subscription_id, key, amount)
            previous_usage = new_usage - amount

            self.audit.log_action(
                "subscription",
                subscription_id,
                "usage_tracked",
                self.actor,
                {
                    "usage": {"old": previous_usage, "new": new_usage},
                    "feature_key": key,
                    "quantity": amount,
                },
                {"usage_log_id": entry.id},
                owner_id=owner_id,
            )
            if limit is not None and previous_usage < limit <= new_usage:
                self.events.create(
                    owner_id=owner_id,
                    subscription_id=subscription_id,
                    event_type=PaymentEventType.LIMIT_EXCEEDED.value,
                    source=PaymentEventSource.APPLICATION.value,
                    description=f"Usage limit reached for {key}",
                    event_data={
                        "feature_key": key,
                        "current_usage": str(new_usage),
                        "limit": str(limit),
                    },
                    processed=True,
                )
                logger.info(
                    "Owner %s reached usage limit for %s (%s/%s)", owner_id, key, new_usage, limit
                )

        return TrackUsageResult(usage_log_id=entry.id, current_usage=new_usage, limit=limit)

    def get_feature_usage(self, owner_id: str, feature_key: str) -> FeatureUsageStats:
        subscription = self.subscriptions.require_by_owner(owner_id)
        current = get_usage(subscription, feature_key)
        limit = get_limit(subscription, feature_key)
        return FeatureUsageStats(
            feature_key=feature_key,
            current_usage=current,
            limit=limit,
            remaining=max(limit - current, Decimal("0")) if limit is not None else None,
            last_reset_at=subscription.usage_reset_at,
        )

    def get_usage_summary(self, owner_id: str) -> UsageSummary:
        subscription = self.subscriptions.require_by_owner(owner_id)
        limits = {
            k: Decimal(str(v)) for k, v in (subscription.limits or {}).items() if v is not None
        }
        return UsageSummary(
            usage=subscription.usage,
            limits=limits,
            plan_id=str(subscription.plan_id),
            status=str(subscription.status),
            last_reset_at=subscription.usage_reset_at,
        )

    def get_usage_stats(
        self, owner_id: str, feature_key: str | None = None
    ) -> FeatureUsageStats | UsageSummary:
        if feature_key:
            return self.get_feature_usage(owner_id, feature_key)
        return self.get_usage_summary(owner_id)

    def list_usage_logs(
        self,
        owner_id: str,
        feature_key: str | None = None,
        skip: int = 0,
        limit: int = 100,
        synced: bool | None = None,
    ) -> list[UsageLog]:
        return self.logs.get_by_owner(owner_id, feature_key, skip=skip, limit=limit, synced=synced)

    def mark_usage_synced(self, usage_log_ids: list[UUID], owner_id: str | None = None) -> int:
        """Flip the sync-to-processor flag; the only mutation a ledger row allows."""
        with transaction(self.db):
            updated = self.logs.mark_synced(usage_log_ids, owner_id)
        return updated
