"""ClientProduct repository for data access."""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from meterpay.models.client_product import ClientProduct


class ClientProductRepository:
    def __init__(self, db: Session):
        self.db = db

    def create(self, **fields: Any) -> ClientProduct:
        product = ClientProduct(**fields)
        self.db.add(product)
        self.db.flush()
        return product

    def get_by_id(self, product_id: UUID) -> ClientProduct | None:
        return (
            self.db.query(ClientProduct)
            .filter(ClientProduct.id == product_id, ClientProduct.deleted_at.is_(None))
            .first()
        )

    def get_by_account(self, account_id: UUID, active_only: bool = True) -> list[ClientProduct]:
        query = self.db.query(ClientProduct).filter(
            ClientProduct.connected_account_id == account_id,
            ClientProduct.deleted_at.is_(None),
        )
        if active_only:
            query = query.filter(ClientProduct.active.is_(True))
        return query.order_by(ClientProduct.created_at.desc()).all()

    def soft_delete_for_account(self, account_id: UUID, deleted_at: datetime) -> int:
        products = self.get_by_account(account_id, active_only=False)
        for product in products:
            product.active = False
            product.deleted_at = deleted_at
        self.db.flush()
        return len(products)
