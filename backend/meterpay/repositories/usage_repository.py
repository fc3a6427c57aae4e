"""Usage counter and ledger repositories."""

from collections.abc import Iterable
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from meterpay.models.usage import UsageCounter, UsageLog


class UsageCounterRepository:
    """Cumulative per-feature counters.

    All writes are expressed as SQL so the database applies them against the
    stored value; nothing here reads a counter into Python and writes it back.
    """

    def __init__(self, db: Session):
        self.db = db

    def ensure(self, subscription_id: UUID, feature_keys: Iterable[str]) -> None:
        """Create zero-valued counters for any feature that has none yet."""
        existing = {
            key
            for (key,) in self.db.query(UsageCounter.feature_key).filter(
                UsageCounter.subscription_id == subscription_id
            )
        }
        for key in feature_keys:
            if key not in existing:
                self.db.add(
                    UsageCounter(subscription_id=subscription_id, feature_key=key, quantity=0)
                )
                existing.add(key)
        self.db.flush()

    def increment(self, subscription_id: UUID, feature_key: str, quantity: Decimal) -> Decimal:
        """Add ``quantity`` to the stored counter and return the new stored value."""
        stmt = (
            update(UsageCounter)
            .where(
                UsageCounter.subscription_id == subscription_id,
                UsageCounter.feature_key == feature_key,
            )
            .values(quantity=UsageCounter.quantity + quantity)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        if result.rowcount == 0:  # type: ignore[attr-defined]
            try:
                with self.db.begin_nested():
                    self.db.add(
                        UsageCounter(
                            subscription_id=subscription_id,
                            feature_key=feature_key,
                            quantity=quantity,
                        )
                    )
            except IntegrityError:
                # Another writer created the counter first; add onto theirs.
                self.db.execute(stmt)
        return self.get_value(subscription_id, feature_key)

    def get_value(self, subscription_id: UUID, feature_key: str) -> Decimal:
        value = (
            self.db.query(UsageCounter.quantity)
            .filter(
                UsageCounter.subscription_id == subscription_id,
                UsageCounter.feature_key == feature_key,
            )
            .scalar()
        )
        return Decimal(str(value)) if value is not None else Decimal("0")

    def reset(self, subscription_id: UUID) -> int:
        result = self.db.execute(
            update(UsageCounter)
            .where(UsageCounter.subscription_id == subscription_id)
            .values(quantity=0)
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)  # type: ignore[attr-defined]


class UsageLogRepository:
    """Append-only usage ledger."""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        *,
        subscription_id: UUID,
        owner_id: str,
        feature_key: str,
        quantity: Decimal,
        unit: str | None = None,
        context: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> UsageLog:
        entry = UsageLog(
            subscription_id=subscription_id,
            owner_id=owner_id,
            feature_key=feature_key,
            quantity=quantity,
            unit=unit,
            context=context,
            metadata_=metadata or {},
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def get_by_owner(
        self,
        owner_id: str,
        feature_key: str | None = None,
        skip: int = 0,
        limit: int = 100,
        synced: bool | None = None,
    ) -> list[UsageLog]:
        query = self.db.query(UsageLog).filter(UsageLog.owner_id == owner_id)
        if feature_key:
            query = query.filter(UsageLog.feature_key == feature_key)
        if synced is not None:
            query = query.filter(UsageLog.synced_to_provider == synced)
        return (
            query.order_by(UsageLog.created_at.desc(), UsageLog.id)
            .offset(skip)
            .limit(limit)
            .all()
        )

    def count_for_subscription(self, subscription_id: UUID, feature_key: str) -> int:
        return (
            self.db.query(UsageLog)
            .filter(
                UsageLog.subscription_id == subscription_id,
                UsageLog.feature_key == feature_key,
            )
            .count()
        )

    def mark_synced(self, log_ids: list[UUID], owner_id: str | None = None) -> int:
        if not log_ids:
            return 0
        stmt = update(UsageLog).where(
            UsageLog.id.in_(log_ids), UsageLog.synced_to_provider.is_(False)
        )
        if owner_id is not None:
            stmt = stmt.where(UsageLog.owner_id == owner_id)
        result = self.db.execute(
            stmt
            .values(synced_to_provider=True)
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)  # type: ignore[attr-defined]
