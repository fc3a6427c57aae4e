"""ClientPayment repository for data access and revenue aggregation."""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func as sa_func
from sqlalchemy.orm import Session

from meterpay.core.sorting import apply_order_by
from meterpay.models.client_payment import ClientPayment, ClientPaymentStatus


class ClientPaymentRepository:
    def __init__(self, db: Session):
        self.db = db

    def create(self, **fields: Any) -> ClientPayment:
        payment = ClientPayment(**fields)
        self.db.add(payment)
        self.db.flush()
        return payment

    def get_by_id(self, payment_id: UUID) -> ClientPayment | None:
        return self.db.query(ClientPayment).filter(ClientPayment.id == payment_id).first()

    def get_by_payment_intent_id(self, payment_intent_id: str) -> ClientPayment | None:
        return (
            self.db.query(ClientPayment)
            .filter(ClientPayment.external_payment_intent_id == payment_intent_id)
            .first()
        )

    def get_by_checkout_id(self, checkout_id: str) -> ClientPayment | None:
        return (
            self.db.query(ClientPayment)
            .filter(ClientPayment.external_checkout_id == checkout_id)
            .first()
        )

    def get_by_charge_id(self, charge_id: str) -> ClientPayment | None:
        return (
            self.db.query(ClientPayment)
            .filter(ClientPayment.external_charge_id == charge_id)
            .first()
        )

    def get_by_external_subscription_id(self, subscription_id: str) -> ClientPayment | None:
        return (
            self.db.query(ClientPayment)
            .filter(ClientPayment.external_subscription_id == subscription_id)
            .order_by(ClientPayment.created_at.desc())
            .first()
        )

    def _by_account(
        self,
        account_id: UUID,
        status: str | None = None,
        payment_type: str | None = None,
        subscription_status: str | None = None,
    ):  # type: ignore[no-untyped-def]
        query = self.db.query(ClientPayment).filter(
            ClientPayment.connected_account_id == account_id
        )
        if status:
            query = query.filter(ClientPayment.status == status)
        if payment_type:
            query = query.filter(ClientPayment.payment_type == payment_type)
        if subscription_status:
            query = query.filter(ClientPayment.subscription_status == subscription_status)
        return query

    def get_by_account(
        self,
        account_id: UUID,
        skip: int = 0,
        limit: int | None = 100,
        status: str | None = None,
        payment_type: str | None = None,
        subscription_status: str | None = None,
        order_by: str | None = None,
    ) -> list[ClientPayment]:
        query = self._by_account(account_id, status, payment_type, subscription_status)
        query = apply_order_by(query, ClientPayment, order_by)
        return query.offset(skip).limit(limit).all()

    def count_by_account(
        self,
        account_id: UUID,
        status: str | None = None,
        payment_type: str | None = None,
        subscription_status: str | None = None,
    ) -> int:
        query = self._by_account(account_id, status, payment_type, subscription_status)
        return query.with_entities(sa_func.count(ClientPayment.id)).scalar() or 0

    def list_for_analytics(
        self,
        account_id: UUID | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        status: ClientPaymentStatus | None = None,
    ) -> list[ClientPayment]:
        query = self.db.query(ClientPayment)
        if account_id is not None:
            query = query.filter(ClientPayment.connected_account_id == account_id)
        if start is not None:
            query = query.filter(ClientPayment.created_at >= start)
        if end is not None:
            query = query.filter(ClientPayment.created_at <= end)
        if status is not None:
            query = query.filter(ClientPayment.status == status.value)
        return query.all()
