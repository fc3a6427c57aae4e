"""Subscription repository for data access."""

from typing import Any
from uuid import UUID

from sqlalchemy import func as sa_func
from sqlalchemy.orm import Session

from meterpay.core.sorting import apply_order_by
from meterpay.models.subscription import Subscription


class SubscriptionRepository:
    """Repository for Subscription model."""

    def __init__(self, db: Session):
        self.db = db

    def _live(self):  # type: ignore[no-untyped-def]
        return self.db.query(Subscription).filter(Subscription.deleted_at.is_(None))

    def get_all(
        self,
        skip: int = 0,
        limit: int = 100,
        status: str | None = None,
        plan_id: str | None = None,
        include_deleted: bool = False,
        order_by: str | None = None,
    ) -> list[Subscription]:
        query = self.db.query(Subscription) if include_deleted else self._live()
        if status:
            query = query.filter(Subscription.status == status)
        if plan_id:
            query = query.filter(Subscription.plan_id == plan_id)
        query = apply_order_by(query, Subscription, order_by)
        return query.offset(skip).limit(limit).all()

    def count(self, status: str | None = None, plan_id: str | None = None) -> int:
        query = self.db.query(sa_func.count(Subscription.id)).filter(
            Subscription.deleted_at.is_(None)
        )
        if status:
            query = query.filter(Subscription.status == status)
        if plan_id:
            query = query.filter(Subscription.plan_id == plan_id)
        return query.scalar() or 0

    def get_by_id(self, subscription_id: UUID) -> Subscription | None:
        return self.db.query(Subscription).filter(Subscription.id == subscription_id).first()

    def get_by_owner(self, owner_id: str) -> Subscription | None:
        """Get the owner's live (non-deleted) subscription."""
        return self._live().filter(Subscription.owner_id == owner_id).first()

    def get_latest_deleted_by_owner(self, owner_id: str) -> Subscription | None:
        return (
            self.db.query(Subscription)
            .filter(Subscription.owner_id == owner_id, Subscription.deleted_at.isnot(None))
            .order_by(Subscription.deleted_at.desc())
            .first()
        )

    def get_by_external_subscription_id(self, external_id: str) -> Subscription | None:
        return (
            self.db.query(Subscription)
            .filter(Subscription.external_subscription_id == external_id)
            .first()
        )

    def get_for_update(self, subscription_id: UUID) -> Subscription | None:
        """Re-read the row from the store, locking it where the backend supports it."""
        return (
            self.db.query(Subscription)
            .filter(Subscription.id == subscription_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def create(self, **fields: Any) -> Subscription:
        subscription = Subscription(**fields)
        self.db.add(subscription)
        self.db.flush()
        return subscription

    def counts_by_status(self, plan_id: str | None = None) -> dict[str, int]:
        query = self.db.query(Subscription.status, sa_func.count(Subscription.id)).filter(
            Subscription.deleted_at.is_(None)
        )
        if plan_id:
            query = query.filter(Subscription.plan_id == plan_id)
        return {str(status): int(count) for status, count in query.group_by(Subscription.status)}

    def counts_by_plan(self, plan_id: str | None = None) -> dict[str, int]:
        query = self.db.query(Subscription.plan_id, sa_func.count(Subscription.id)).filter(
            Subscription.deleted_at.is_(None)
        )
        if plan_id:
            query = query.filter(Subscription.plan_id == plan_id)
        return {str(plan): int(count) for plan, count in query.group_by(Subscription.plan_id)}
