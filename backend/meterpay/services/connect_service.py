"""Marketplace payments through Stripe Connect accounts.

Connected accounts take payments directly; the platform's cut is attached
to each charge as an application fee. Account status is never written by
hand after creation: every sync derives it from the processor's capability
flags (see ``account_status``).
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from meterpay.core.config import settings
from meterpay.core.database import transaction
from meterpay.core.exceptions import NotFoundError, StateConflictError, UpstreamError
from meterpay.models.client_payment import ClientPayment, ClientPaymentStatus, ClientPaymentType
from meterpay.models.client_product import ClientProduct, ProductInterval
from meterpay.models.connected_account import AccountStatus, ConnectedAccount
from meterpay.models.shared import as_utc, from_timestamp, utc_now
from meterpay.repositories.client_payment_repository import ClientPaymentRepository
from meterpay.repositories.client_product_repository import ClientProductRepository
from meterpay.repositories.connected_account_repository import ConnectedAccountRepository
from meterpay.schemas.billing import CheckoutResult
from meterpay.schemas.connect import (
    ClientProductCreate,
    ClientProductUpdate,
    ConnectCheckoutRequest,
    ConnectedAccountCreate,
    OnboardingLinkResponse,
    PaymentIntentCreate,
    PaymentIntentResult,
)
from meterpay.services.account_status import AccountState, derive_account_status
from meterpay.services.audit_service import SYSTEM, Actor, AuditService
from meterpay.services.fee_split import calculate_fee, clamp_fee_percent
from meterpay.services.stripe_client import StripeClient

logger = logging.getLogger(__name__)

ACCOUNT_RESOURCE = "connected_account"
PRODUCT_RESOURCE = "client_product"
PAYMENT_RESOURCE = "client_payment"

CANNOT_ACCEPT_PAYMENTS = "account cannot accept payments"


def field(obj: Any, key: str, default: Any = None) -> Any:
    """Read ``key`` from a processor object or a plain dict."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def account_summary(account: ConnectedAccount) -> dict[str, Any]:
    return {
        "account_status": account.account_status,
        "charges_enabled": account.charges_enabled,
        "payouts_enabled": account.payouts_enabled,
        "details_submitted": account.details_submitted,
        "disabled_reason": account.disabled_reason,
    }


class ConnectService:
    """Service for connected accounts, their products and their payments."""

    def __init__(self, db: Session, client: StripeClient | None = None, actor: Actor = SYSTEM):
        self.db = db
        self.client = client or StripeClient()
        self.actor = actor
        self.account_repo = ConnectedAccountRepository(db)
        self.product_repo = ClientProductRepository(db)
        self.payment_repo = ClientPaymentRepository(db)
        self.audit = AuditService(db)

    # -- accounts ---------------------------------------------------------

    def get_account(self, account_id: UUID) -> ConnectedAccount:
        account = self.account_repo.get_by_id(account_id)
        if account is None:
            raise NotFoundError("connected account not found", {"account_id": str(account_id)})
        return account

    def get_owned_account(self, account_id: UUID, owner_id: str) -> ConnectedAccount:
        account = self.get_account(account_id)
        if account.owner_id != owner_id:
            raise NotFoundError("connected account not found", {"account_id": str(account_id)})
        return account

    def get_account_by_email(self, client_email: str) -> ConnectedAccount:
        account = self.account_repo.get_by_email(client_email)
        if account is None:
            raise NotFoundError("connected account not found", {"client_email": client_email})
        return account

    def create_connected_account(
        self, owner_id: str, data: ConnectedAccountCreate
    ) -> ConnectedAccount:
        if self.account_repo.get_by_owner(owner_id) is not None:
            raise StateConflictError("owner already has a connected account")

        stripe = self.client.stripe
        with transaction(self.db):
            remote = self.client.call(
                "account creation",
                stripe.Account.create,
                type=data.account_type.value,
                country=data.country,
                email=data.client_email,
                capabilities={
                    "card_payments": {"requested": True},
                    "transfers": {"requested": True},
                },
                metadata={"owner_id": owner_id, "client_name": data.client_name},
            )
            account = self.account_repo.create(
                owner_id=owner_id,
                client_name=data.client_name,
                client_email=data.client_email,
                external_account_id=field(remote, "id"),
                account_type=data.account_type.value,
                account_status=AccountStatus.PENDING.value,
                default_currency=data.default_currency or settings.default_currency,
                statement_descriptor=data.statement_descriptor,
                metadata_=data.metadata or {},
            )
            self._copy_capabilities(account, remote)
            self.audit.log_create(
                ACCOUNT_RESOURCE,
                account.id,  # type: ignore[arg-type]
                self.actor,
                account_summary(account),
                owner_id=account.owner_id,  # type: ignore[arg-type]
            )
        logger.info("Created connected account %s for owner %s", account.id, owner_id)
        return account

    def _copy_capabilities(self, account: ConnectedAccount, remote: Any) -> AccountState:
        state = AccountState.from_processor(remote)
        capabilities = field(remote, "capabilities") or {}
        account.charges_enabled = state.charges_enabled
        account.payouts_enabled = state.payouts_enabled
        account.details_submitted = state.details_submitted
        account.disabled_reason = state.disabled_reason
        account.onboarding_completed = state.charges_enabled and state.payouts_enabled
        account.capability_card_payments = field(capabilities, "card_payments")
        account.capability_transfers = field(capabilities, "transfers")
        settings_obj = field(remote, "settings")
        descriptor = field(field(settings_obj, "payments"), "statement_descriptor")
        if descriptor:
            account.statement_descriptor = descriptor[:22]
        currency = field(remote, "default_currency")
        if currency:
            account.default_currency = currency
        account.last_synced_at = utc_now()
        return state

    def apply_processor_account(
        self,
        account: ConnectedAccount,
        remote: Any,
        event_time: datetime | None = None,
    ) -> ConnectedAccount:
        """Apply a processor account snapshot and recompute the status.

        Runs inside the caller's transaction.
        """
        before = account_summary(account)
        state = self._copy_capabilities(account, remote)
        new_status = derive_account_status(state).value
        old_status = str(account.account_status)
        account.account_status = new_status
        if event_time is not None:
            account.last_event_at = event_time
        self.db.flush()

        if old_status != new_status:
            logger.info("Connected account %s status %s -> %s", account.id, old_status, new_status)
            self.audit.log_status_change(
                ACCOUNT_RESOURCE,
                account.id,  # type: ignore[arg-type]
                old_status,
                new_status,
                self.actor,
                owner_id=account.owner_id,  # type: ignore[arg-type]
            )
            if new_status == AccountStatus.ACTIVE.value:
                self.audit.log_action(
                    ACCOUNT_RESOURCE,
                    account.id,  # type: ignore[arg-type]
                    "onboarded",
                    self.actor,
                    owner_id=account.owner_id,  # type: ignore[arg-type]
                )
        else:
            self.audit.log_update(
                ACCOUNT_RESOURCE,
                account.id,  # type: ignore[arg-type]
                self.actor,
                before,
                account_summary(account),
                owner_id=account.owner_id,  # type: ignore[arg-type]
            )
        return account

    def sync_account_from_processor(self, account_id: UUID) -> ConnectedAccount:
        with transaction(self.db):
            account = self.account_repo.get_for_update(account_id)
            if account is None:
                raise NotFoundError("connected account not found")
            remote = self.client.call(
                "account retrieval", self.client.stripe.Account.retrieve, account.external_account_id
            )
            self.apply_processor_account(account, remote)
        return account

    def get_onboarding_link(
        self,
        account_id: UUID,
        refresh_url: str | None = None,
        return_url: str | None = None,
    ) -> OnboardingLinkResponse:
        """Return the cached onboarding link, or create one if it has expired."""
        with transaction(self.db):
            account = self.account_repo.get_for_update(account_id)
            if account is None:
                raise NotFoundError("connected account not found")
            now = utc_now()
            expires_at = as_utc(account.onboarding_link_expires_at)
            if account.onboarding_link and expires_at is not None and expires_at > now:
                return OnboardingLinkResponse(
                    url=str(account.onboarding_link), expires_at=expires_at, reused=True
                )

            link = self.client.call(
                "account link",
                self.client.stripe.AccountLink.create,
                account=account.external_account_id,
                refresh_url=refresh_url or settings.connect_refresh_url,
                return_url=return_url or settings.connect_return_url,
                type="account_onboarding",
            )
            expires_at = from_timestamp(field(link, "expires_at")) or now + timedelta(
                seconds=settings.onboarding_link_ttl_seconds
            )
            account.onboarding_link = field(link, "url")
            account.onboarding_link_expires_at = expires_at
            if account.account_status == AccountStatus.PENDING.value:
                self.audit.log_action(
                    ACCOUNT_RESOURCE,
                    account.id,  # type: ignore[arg-type]
                    "onboarding_started",
                    self.actor,
                    owner_id=account.owner_id,  # type: ignore[arg-type]
                )
            self.db.flush()
        return OnboardingLinkResponse(url=str(account.onboarding_link), expires_at=expires_at, reused=False)

    def delete_connected_account(self, account_id: UUID) -> ConnectedAccount:
        """Soft delete the account and its products; payments are kept."""
        with transaction(self.db):
            account = self.account_repo.get_for_update(account_id)
            if account is None:
                raise NotFoundError("connected account not found")
            now = utc_now()
            account.deleted_at = now
            removed = self.product_repo.soft_delete_for_account(account.id, now)  # type: ignore[arg-type]
            self.audit.log_action(
                ACCOUNT_RESOURCE,
                account.id,  # type: ignore[arg-type]
                "deleted",
                self.actor,
                {"products_removed": removed},
                owner_id=account.owner_id,  # type: ignore[arg-type]
            )
        return account

    # -- products ---------------------------------------------------------

    def create_product(self, account_id: UUID, data: ClientProductCreate) -> ClientProduct:
        """Create the processor product and price and the local row together.

        A processor failure aborts before anything is stored locally.
        """
        account = self.get_account(account_id)
        fee_percent = clamp_fee_percent(
            data.application_fee_percent
            if data.application_fee_percent is not None
            else settings.application_fee_percent
        )
        stripe = self.client.stripe
        stripe_account = account.external_account_id

        with transaction(self.db):
            remote_product = self.client.call(
                "product creation",
                stripe.Product.create,
                name=data.name,
                description=data.description or None,
                metadata=data.metadata or {},
                stripe_account=stripe_account,
            )
            price_params: dict[str, Any] = {
                "product": field(remote_product, "id"),
                "unit_amount": data.amount,
                "currency": data.currency,
                "stripe_account": stripe_account,
            }
            if data.interval != ProductInterval.ONE_TIME:
                price_params["recurring"] = {"interval": data.interval.value}
            try:
                remote_price = self.client.call("price creation", stripe.Price.create, **price_params)
            except UpstreamError:
                self._archive_remote_product(field(remote_product, "id"), stripe_account)
                raise

            product = self.product_repo.create(
                connected_account_id=account.id,
                external_product_id=field(remote_product, "id"),
                external_price_id=field(remote_price, "id"),
                name=data.name,
                description=data.description,
                amount=data.amount,
                currency=data.currency,
                interval=data.interval.value,
                application_fee_percent=fee_percent,
                metadata_=data.metadata or {},
            )
            self.audit.log_create(
                PRODUCT_RESOURCE,
                product.id,  # type: ignore[arg-type]
                self.actor,
                {"name": data.name, "amount": data.amount, "interval": data.interval.value},
                owner_id=account.owner_id,  # type: ignore[arg-type]
            )
        return product

    def _archive_remote_product(self, product_id: str, stripe_account: Any) -> None:
        try:
            self.client.call(
                "product archive",
                self.client.stripe.Product.modify,
                product_id,
                active=False,
                stripe_account=stripe_account,
            )
        except UpstreamError:
            logger.warning("Could not archive orphaned Stripe product %s", product_id)

    def get_product(self, account_id: UUID, product_id: UUID) -> ClientProduct:
        product = self.product_repo.get_by_id(product_id)
        if product is None or product.connected_account_id != account_id:
            raise NotFoundError("product not found", {"product_id": str(product_id)})
        return product

    def list_products(self, account_id: UUID, active_only: bool = True) -> list[ClientProduct]:
        self.get_account(account_id)
        return self.product_repo.get_by_account(account_id, active_only=active_only)

    def update_product(
        self, account_id: UUID, product_id: UUID, data: ClientProductUpdate
    ) -> ClientProduct:
        account = self.get_account(account_id)
        with transaction(self.db):
            product = self.get_product(account_id, product_id)
            updates = data.model_dump(exclude_unset=True)
            before = {k: getattr(product, k if k != "metadata" else "metadata_") for k in updates}
            remote_changes = {
                k: updates[k] for k in ("name", "description", "active") if k in updates
            }
            if remote_changes:
                self.client.call(
                    "product update",
                    self.client.stripe.Product.modify,
                    product.external_product_id,
                    stripe_account=account.external_account_id,
                    **remote_changes,
                )
            for key, value in updates.items():
                if key == "metadata":
                    product.metadata_ = value or {}
                elif key == "application_fee_percent":
                    if value is not None:
                        product.application_fee_percent = clamp_fee_percent(value)
                elif value is not None or key == "description":
                    setattr(product, key, value)
            self.db.flush()
            after = {k: getattr(product, k if k != "metadata" else "metadata_") for k in updates}
            self.audit.log_update(
                PRODUCT_RESOURCE,
                product.id,  # type: ignore[arg-type]
                self.actor,
                before,
                after,
                owner_id=account.owner_id,  # type: ignore[arg-type]
            )
        return product

    def delete_product(self, account_id: UUID, product_id: UUID) -> ClientProduct:
        account = self.get_account(account_id)
        with transaction(self.db):
            product = self.get_product(account_id, product_id)
            self.client.call(
                "product archive",
                self.client.stripe.Product.modify,
                product.external_product_id,
                active=False,
                stripe_account=account.external_account_id,
            )
            product.active = False
            product.deleted_at = utc_now()
            self.db.flush()
            self.audit.log_action(
                PRODUCT_RESOURCE,
                product.id,  # type: ignore[arg-type]
                "deleted",
                self.actor,
                owner_id=account.owner_id,  # type: ignore[arg-type]
            )
        return product

    # -- payments ---------------------------------------------------------

    def create_checkout(self, account_id: UUID, data: ConnectCheckoutRequest) -> CheckoutResult:
        """Start a hosted checkout on the connected account.

        Expected business failures come back as ``success=False`` rather than
        being raised.
        """
        account = self.account_repo.get_by_id(account_id)
        if account is None:
            return CheckoutResult(success=False, error="connected account not found")
        if not account.can_accept_payments:
            return CheckoutResult(success=False, error=CANNOT_ACCEPT_PAYMENTS)
        product = self.product_repo.get_by_id(data.product_id)
        if product is None or product.connected_account_id != account.id or not product.active:
            return CheckoutResult(success=False, error="product not found")

        fee_percent = Decimal(str(product.application_fee_percent))
        recurring = product.is_recurring
        metadata = {**(data.metadata or {}), "product_id": str(product.id)}
        params: dict[str, Any] = {
            "mode": "subscription" if recurring else "payment",
            "line_items": [{"price": product.external_price_id, "quantity": 1}],
            "success_url": data.success_url,
            "cancel_url": data.cancel_url,
            "metadata": metadata,
            "stripe_account": account.external_account_id,
        }
        if data.customer_email:
            params["customer_email"] = data.customer_email

        amount = int(product.amount)
        split = calculate_fee(amount, fee_percent)
        if recurring:
            subscription_data: dict[str, Any] = {
                "application_fee_percent": float(fee_percent),
                "metadata": metadata,
            }
            if data.trial_days:
                subscription_data["trial_period_days"] = data.trial_days
            params["subscription_data"] = subscription_data
        else:
            params["payment_intent_data"] = {
                "application_fee_amount": split.application_fee_amount,
                "metadata": metadata,
            }

        try:
            with transaction(self.db):
                session = self.client.call(
                    "checkout", self.client.stripe.checkout.Session.create, **params
                )
                payment = self.payment_repo.create(
                    connected_account_id=account.id,
                    product_id=product.id,
                    external_checkout_id=field(session, "id"),
                    external_payment_intent_id=field(session, "payment_intent"),
                    customer_email=data.customer_email,
                    description=product.name,
                    payment_type=(
                        ClientPaymentType.SUBSCRIPTION.value
                        if recurring
                        else ClientPaymentType.ONE_TIME.value
                    ),
                    amount=amount,
                    application_fee_amount=split.application_fee_amount,
                    net_amount=split.net_amount,
                    currency=product.currency,
                    status=ClientPaymentStatus.PENDING.value,
                    metadata_=data.metadata or {},
                )
                self.audit.log_create(
                    PAYMENT_RESOURCE,
                    payment.id,  # type: ignore[arg-type]
                    self.actor,
                    {"amount": amount, "application_fee_amount": split.application_fee_amount},
                    owner_id=account.owner_id,  # type: ignore[arg-type]
                )
        except UpstreamError as e:
            return CheckoutResult(success=False, error=e.message)
        return CheckoutResult(success=True, url=field(session, "url"), session_id=field(session, "id"))

    def create_payment_intent(
        self, account_id: UUID, data: PaymentIntentCreate
    ) -> PaymentIntentResult:
        account = self.get_account(account_id)
        if not account.can_accept_payments:
            raise StateConflictError(CANNOT_ACCEPT_PAYMENTS, {"account_status": account.account_status})

        split = calculate_fee(data.amount, settings.application_fee_percent)
        params: dict[str, Any] = {
            "amount": data.amount,
            "currency": data.currency,
            "application_fee_amount": split.application_fee_amount,
            "metadata": data.metadata or {},
            "stripe_account": account.external_account_id,
        }
        if data.customer_email:
            params["receipt_email"] = data.customer_email
        if data.description:
            params["description"] = data.description

        with transaction(self.db):
            intent = self.client.call(
                "payment intent", self.client.stripe.PaymentIntent.create, **params
            )
            payment = self.payment_repo.create(
                connected_account_id=account.id,
                external_payment_intent_id=field(intent, "id"),
                customer_email=data.customer_email,
                description=data.description,
                payment_type=ClientPaymentType.ONE_TIME.value,
                amount=data.amount,
                application_fee_amount=split.application_fee_amount,
                net_amount=split.net_amount,
                currency=data.currency,
                status=ClientPaymentStatus.PENDING.value,
                metadata_=data.metadata or {},
            )
            self.audit.log_create(
                PAYMENT_RESOURCE,
                payment.id,  # type: ignore[arg-type]
                self.actor,
                {"amount": data.amount, "application_fee_amount": split.application_fee_amount},
                owner_id=account.owner_id,  # type: ignore[arg-type]
            )
        return PaymentIntentResult(
            payment_id=payment.id,
            payment_intent_id=str(payment.external_payment_intent_id),
            client_secret=field(intent, "client_secret"),
            amount=data.amount,
            application_fee_amount=split.application_fee_amount,
            net_amount=split.net_amount,
        )

    def list_payments(
        self,
        account_id: UUID,
        skip: int = 0,
        limit: int = 100,
        status: str | None = None,
        payment_type: str | None = None,
        order_by: str | None = None,
    ) -> list[ClientPayment]:
        self.get_account(account_id)
        return self.payment_repo.get_by_account(
            account_id,
            skip=skip,
            limit=limit,
            status=status,
            payment_type=payment_type,
            order_by=order_by,
        )

    def list_subscriptions(self, account_id: UUID, active_only: bool = False) -> list[ClientPayment]:
        """Subscription payments on an account; ``active_only`` keeps live ones."""
        self.get_account(account_id)
        return self.payment_repo.get_by_account(
            account_id,
            limit=None,
            payment_type=ClientPaymentType.SUBSCRIPTION.value,
            subscription_status="active" if active_only else None,
        )
