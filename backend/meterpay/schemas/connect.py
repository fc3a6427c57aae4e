from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from meterpay.models.client_payment import ClientPaymentStatus
from meterpay.models.client_product import ProductInterval
from meterpay.models.connected_account import AccountStatus, AccountType

MIN_AMOUNT = 50
MAX_AMOUNT = 99_999_999


class ConnectedAccountCreate(BaseModel):
    client_name: str = Field(..., min_length=1, max_length=100)
    client_email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    account_type: AccountType = AccountType.EXPRESS
    country: str = Field(default="US", min_length=2, max_length=2)
    default_currency: str | None = Field(default=None, pattern=r"^[a-z]{3}$")
    statement_descriptor: str | None = Field(default=None, max_length=22)
    metadata: dict[str, Any] | None = None


class ConnectedAccountResponse(BaseModel):
    id: UUID
    owner_id: str
    client_name: str
    client_email: str
    external_account_id: str
    account_type: AccountType
    account_status: AccountStatus
    charges_enabled: bool
    payouts_enabled: bool
    details_submitted: bool
    onboarding_completed: bool
    disabled_reason: str | None
    capability_card_payments: str | None
    capability_transfers: str | None
    statement_descriptor: str | None
    default_currency: str | None
    metadata_: dict[str, Any] | None
    last_synced_at: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class OnboardingLinkRequest(BaseModel):
    refresh_url: str | None = None
    return_url: str | None = None


class OnboardingLinkResponse(BaseModel):
    url: str
    expires_at: datetime
    reused: bool


class ClientProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    amount: int = Field(..., ge=MIN_AMOUNT, le=MAX_AMOUNT)
    currency: str = Field(default="usd", pattern=r"^[a-z]{3}$")
    interval: ProductInterval = ProductInterval.ONE_TIME
    application_fee_percent: Decimal | None = Field(default=None, ge=0, le=100)
    metadata: dict[str, Any] | None = None


class ClientProductUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    active: bool | None = None
    application_fee_percent: Decimal | None = Field(default=None, ge=0, le=100)
    metadata: dict[str, Any] | None = None


class ClientProductResponse(BaseModel):
    id: UUID
    connected_account_id: UUID
    external_product_id: str
    external_price_id: str
    name: str
    description: str | None
    amount: int
    currency: str
    interval: ProductInterval
    application_fee_percent: Decimal
    active: bool
    metadata_: dict[str, Any] | None
    created_at: datetime

    model_config = {"from_attributes": True}


class ConnectCheckoutRequest(BaseModel):
    product_id: UUID
    success_url: str
    cancel_url: str
    customer_email: str | None = None
    trial_days: int | None = Field(default=None, ge=0, le=730)
    metadata: dict[str, Any] | None = None


class PaymentIntentCreate(BaseModel):
    amount: int = Field(..., ge=MIN_AMOUNT, le=MAX_AMOUNT)
    currency: str = Field(default="usd", pattern=r"^[a-z]{3}$")
    customer_email: str | None = None
    description: str | None = Field(default=None, max_length=500)
    metadata: dict[str, Any] | None = None


class PaymentIntentResult(BaseModel):
    payment_id: UUID
    payment_intent_id: str
    client_secret: str | None
    amount: int
    application_fee_amount: int
    net_amount: int


class FeeSplit(BaseModel):
    application_fee_amount: int
    net_amount: int


class ClientPaymentResponse(BaseModel):
    id: UUID
    connected_account_id: UUID
    product_id: UUID | None
    external_payment_intent_id: str | None
    external_checkout_id: str | None
    external_charge_id: str | None
    external_subscription_id: str | None
    customer_email: str | None
    customer_name: str | None
    description: str | None
    payment_type: str
    amount: int
    application_fee_amount: int
    net_amount: int
    currency: str
    status: ClientPaymentStatus
    failure_reason: str | None
    subscription_status: str | None
    refunded: bool
    refund_amount: int | None
    refunded_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}
