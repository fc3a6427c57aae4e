"""Stripe Connect API endpoints: accounts, products and payments."""

from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from meterpay.core.auth import get_current_actor, get_current_owner, get_owner_scope
from meterpay.core.config import settings
from meterpay.core.database import get_db
from meterpay.core.exceptions import NotFoundError
from meterpay.models.client_payment import ClientPayment, ClientPaymentStatus, ClientPaymentType
from meterpay.models.client_product import ClientProduct
from meterpay.models.connected_account import ConnectedAccount
from meterpay.models.payment_event import PaymentEvent
from meterpay.repositories.client_payment_repository import ClientPaymentRepository
from meterpay.repositories.payment_event_repository import PaymentEventRepository
from meterpay.schemas.billing import CheckoutResult
from meterpay.schemas.connect import (
    MAX_AMOUNT,
    ClientPaymentResponse,
    ClientProductCreate,
    ClientProductResponse,
    ClientProductUpdate,
    ConnectCheckoutRequest,
    ConnectedAccountCreate,
    ConnectedAccountResponse,
    FeeSplit,
    OnboardingLinkRequest,
    OnboardingLinkResponse,
    PaymentIntentCreate,
    PaymentIntentResult,
)
from meterpay.schemas.payment_event import PaymentEventResponse
from meterpay.services.audit_service import Actor
from meterpay.services.connect_service import ConnectService
from meterpay.services.fee_split import calculate_fee
from meterpay.services.stripe_client import StripeClient, get_stripe_client

router = APIRouter()


def _owned(service: ConnectService, account_id: UUID, owner_id: str) -> ConnectedAccount:
    return service.get_owned_account(account_id, owner_id)


@router.post(
    "/accounts",
    response_model=ConnectedAccountResponse,
    status_code=201,
    summary="Create a connected account",
    responses={
        409: {"description": "Owner already has a connected account"},
        502: {"description": "Stripe request failed"},
    },
)
async def create_account(
    data: ConnectedAccountCreate,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
    actor: Actor = Depends(get_current_actor),
    client: StripeClient = Depends(get_stripe_client),
) -> ConnectedAccount:
    return ConnectService(db, client, actor).create_connected_account(owner_id, data)


@router.get(
    "/accounts/me",
    response_model=ConnectedAccountResponse,
    summary="Get the caller's connected account",
    responses={404: {"description": "No connected account"}},
)
async def get_my_account(
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
) -> ConnectedAccount:
    account = ConnectService(db).account_repo.get_by_owner(owner_id)
    if account is None:
        raise HTTPException(status_code=404, detail="connected account not found")
    return account


@router.get(
    "/accounts/by_email",
    response_model=ConnectedAccountResponse,
    summary="Find a connected account by client email",
    responses={404: {"description": "Connected account not found"}},
)
async def get_account_by_email(
    email: str = Query(..., min_length=3, max_length=255),
    db: Session = Depends(get_db),
    scope: str | None = Depends(get_owner_scope),
) -> ConnectedAccount:
    account = ConnectService(db).get_account_by_email(email)
    if scope is not None and account.owner_id != scope:
        raise NotFoundError("connected account not found", {"client_email": email})
    return account


@router.get(
    "/accounts/{account_id}",
    response_model=ConnectedAccountResponse,
    summary="Get a connected account",
    responses={404: {"description": "Connected account not found"}},
)
async def get_account(
    account_id: UUID,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
) -> ConnectedAccount:
    return _owned(ConnectService(db), account_id, owner_id)


@router.post(
    "/accounts/{account_id}/onboarding_link",
    response_model=OnboardingLinkResponse,
    summary="Get or create the onboarding link",
)
async def get_onboarding_link(
    account_id: UUID,
    data: OnboardingLinkRequest | None = None,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
    actor: Actor = Depends(get_current_actor),
    client: StripeClient = Depends(get_stripe_client),
) -> OnboardingLinkResponse:
    """Reuses the stored link while it has not expired."""
    service = ConnectService(db, client, actor)
    _owned(service, account_id, owner_id)
    data = data or OnboardingLinkRequest()
    return service.get_onboarding_link(account_id, data.refresh_url, data.return_url)


@router.post(
    "/accounts/{account_id}/sync",
    response_model=ConnectedAccountResponse,
    summary="Refresh the account from Stripe",
)
async def sync_account(
    account_id: UUID,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
    actor: Actor = Depends(get_current_actor),
    client: StripeClient = Depends(get_stripe_client),
) -> ConnectedAccount:
    service = ConnectService(db, client, actor)
    _owned(service, account_id, owner_id)
    return service.sync_account_from_processor(account_id)


@router.delete(
    "/accounts/{account_id}",
    status_code=204,
    summary="Soft delete a connected account",
)
async def delete_account(
    account_id: UUID,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
    actor: Actor = Depends(get_current_actor),
) -> None:
    service = ConnectService(db, actor=actor)
    _owned(service, account_id, owner_id)
    service.delete_connected_account(account_id)


@router.post(
    "/accounts/{account_id}/products",
    response_model=ClientProductResponse,
    status_code=201,
    summary="Create a product on the connected account",
)
async def create_product(
    account_id: UUID,
    data: ClientProductCreate,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
    actor: Actor = Depends(get_current_actor),
    client: StripeClient = Depends(get_stripe_client),
) -> ClientProduct:
    service = ConnectService(db, client, actor)
    _owned(service, account_id, owner_id)
    return service.create_product(account_id, data)


@router.get(
    "/accounts/{account_id}/products",
    response_model=list[ClientProductResponse],
    summary="List products",
)
async def list_products(
    account_id: UUID,
    active_only: bool = True,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
) -> list[ClientProduct]:
    service = ConnectService(db)
    _owned(service, account_id, owner_id)
    return service.list_products(account_id, active_only=active_only)


@router.get(
    "/accounts/{account_id}/products/{product_id}",
    response_model=ClientProductResponse,
    summary="Get a product",
)
async def get_product(
    account_id: UUID,
    product_id: UUID,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
) -> ClientProduct:
    service = ConnectService(db)
    _owned(service, account_id, owner_id)
    return service.get_product(account_id, product_id)


@router.patch(
    "/accounts/{account_id}/products/{product_id}",
    response_model=ClientProductResponse,
    summary="Update a product",
)
async def update_product(
    account_id: UUID,
    product_id: UUID,
    data: ClientProductUpdate,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
    actor: Actor = Depends(get_current_actor),
    client: StripeClient = Depends(get_stripe_client),
) -> ClientProduct:
    service = ConnectService(db, client, actor)
    _owned(service, account_id, owner_id)
    return service.update_product(account_id, product_id, data)


@router.delete(
    "/accounts/{account_id}/products/{product_id}",
    status_code=204,
    summary="Archive a product",
)
async def delete_product(
    account_id: UUID,
    product_id: UUID,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
    actor: Actor = Depends(get_current_actor),
    client: StripeClient = Depends(get_stripe_client),
) -> None:
    service = ConnectService(db, client, actor)
    _owned(service, account_id, owner_id)
    service.delete_product(account_id, product_id)


@router.post(
    "/accounts/{account_id}/checkout",
    response_model=CheckoutResult,
    summary="Create a checkout session for a product",
)
async def create_checkout(
    account_id: UUID,
    data: ConnectCheckoutRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    client: StripeClient = Depends(get_stripe_client),
) -> CheckoutResult:
    """Buyer-facing: any caller may check out against a connected account."""
    return ConnectService(db, client, actor).create_checkout(account_id, data)


@router.post(
    "/accounts/{account_id}/payment_intents",
    response_model=PaymentIntentResult,
    status_code=201,
    summary="Create a payment intent with an application fee",
    responses={409: {"description": "Account cannot accept payments"}},
)
async def create_payment_intent(
    account_id: UUID,
    data: PaymentIntentCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    client: StripeClient = Depends(get_stripe_client),
) -> PaymentIntentResult:
    return ConnectService(db, client, actor).create_payment_intent(account_id, data)


@router.get(
    "/accounts/{account_id}/payments",
    response_model=list[ClientPaymentResponse],
    summary="List payments on a connected account",
)
async def list_payments(
    account_id: UUID,
    response: Response,
    status: ClientPaymentStatus | None = None,
    payment_type: ClientPaymentType | None = None,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    order_by: str | None = Query(default=None),
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
) -> list[ClientPayment]:
    service = ConnectService(db)
    _owned(service, account_id, owner_id)
    status_value = status.value if status else None
    type_value = payment_type.value if payment_type else None
    response.headers["X-Total-Count"] = str(
        ClientPaymentRepository(db).count_by_account(account_id, status_value, type_value)
    )
    return service.list_payments(
        account_id,
        skip=skip,
        limit=limit,
        status=status_value,
        payment_type=type_value,
        order_by=order_by,
    )


@router.get(
    "/accounts/{account_id}/subscriptions",
    response_model=list[ClientPaymentResponse],
    summary="List subscription payments on a connected account",
)
async def list_subscriptions(
    account_id: UUID,
    active: bool = False,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
) -> list[ClientPayment]:
    """``active=true`` keeps only subscriptions whose status is active."""
    service = ConnectService(db)
    _owned(service, account_id, owner_id)
    return service.list_subscriptions(account_id, active_only=active)


@router.get(
    "/accounts/{account_id}/events",
    response_model=list[PaymentEventResponse],
    summary="Newest payment events for a connected account",
)
async def list_account_events(
    account_id: UUID,
    limit: int = Query(default=50, ge=1, le=1000),
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
) -> list[PaymentEvent]:
    _owned(ConnectService(db), account_id, owner_id)
    return PaymentEventRepository(db).get_by_account(account_id, limit=limit)


@router.get(
    "/fees",
    response_model=FeeSplit,
    summary="Preview the platform fee for an amount",
)
async def preview_fee(
    amount: int = Query(..., ge=0, le=MAX_AMOUNT),
    fee_percent: Decimal | None = Query(default=None),
) -> FeeSplit:
    percent = fee_percent if fee_percent is not None else settings.application_fee_percent
    return calculate_fee(amount, percent)
