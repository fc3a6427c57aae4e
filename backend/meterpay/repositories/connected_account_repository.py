"""ConnectedAccount repository for data access."""

from typing import Any
from uuid import UUID

from sqlalchemy import func as sa_func
from sqlalchemy.orm import Session

from meterpay.core.sorting import apply_order_by
from meterpay.models.connected_account import AccountStatus, ConnectedAccount


class ConnectedAccountRepository:
    def __init__(self, db: Session):
        self.db = db

    def _live(self):  # type: ignore[no-untyped-def]
        return self.db.query(ConnectedAccount).filter(ConnectedAccount.deleted_at.is_(None))

    def create(self, **fields: Any) -> ConnectedAccount:
        account = ConnectedAccount(**fields)
        self.db.add(account)
        self.db.flush()
        return account

    def get_by_id(self, account_id: UUID) -> ConnectedAccount | None:
        return self._live().filter(ConnectedAccount.id == account_id).first()

    def get_for_update(self, account_id: UUID) -> ConnectedAccount | None:
        return (
            self._live()
            .filter(ConnectedAccount.id == account_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def get_by_external_id(self, external_account_id: str) -> ConnectedAccount | None:
        return (
            self._live()
            .filter(ConnectedAccount.external_account_id == external_account_id)
            .first()
        )

    def get_by_owner(self, owner_id: str) -> ConnectedAccount | None:
        return self._live().filter(ConnectedAccount.owner_id == owner_id).first()

    def get_by_email(self, client_email: str) -> ConnectedAccount | None:
        return (
            self._live()
            .filter(ConnectedAccount.client_email == client_email.strip())
            .order_by(ConnectedAccount.created_at.desc())
            .first()
        )

    def get_all(
        self,
        skip: int = 0,
        limit: int = 100,
        account_status: str | None = None,
        order_by: str | None = None,
    ) -> list[ConnectedAccount]:
        query = self._live()
        if account_status:
            query = query.filter(ConnectedAccount.account_status == account_status)
        query = apply_order_by(query, ConnectedAccount, order_by)
        return query.offset(skip).limit(limit).all()

    def get_active(self) -> list[ConnectedAccount]:
        return (
            self._live()
            .filter(
                ConnectedAccount.account_status == AccountStatus.ACTIVE.value,
                ConnectedAccount.charges_enabled.is_(True),
            )
            .order_by(ConnectedAccount.created_at.desc())
            .all()
        )

    def get_pending_onboarding(self) -> list[ConnectedAccount]:
        return (
            self._live()
            .filter(
                ConnectedAccount.account_status.in_(
                    [AccountStatus.PENDING.value, AccountStatus.ONBOARDING.value]
                )
            )
            .order_by(ConnectedAccount.created_at.asc())
            .all()
        )

    def count(self, account_status: str | None = None) -> int:
        query = self.db.query(sa_func.count(ConnectedAccount.id)).filter(
            ConnectedAccount.deleted_at.is_(None)
        )
        if account_status:
            query = query.filter(ConnectedAccount.account_status == account_status)
        return query.scalar() or 0
