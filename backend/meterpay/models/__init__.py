from meterpay.models.audit_log import AuditLog
from meterpay.models.client_payment import (
    ClientPayment,
    ClientPaymentStatus,
    ClientPaymentType,
    ClientSubscriptionStatus,
)
from meterpay.models.client_product import ClientProduct, ProductInterval
from meterpay.models.connected_account import AccountStatus, AccountType, ConnectedAccount
from meterpay.models.payment_event import PaymentEvent, PaymentEventSource, PaymentEventType
from meterpay.models.subscription import PlanType, Subscription, SubscriptionStatus
from meterpay.models.usage import UsageCounter, UsageLog

__all__ = [
    "AccountStatus",
    "AccountType",
    "AuditLog",
    "ClientPayment",
    "ClientPaymentStatus",
    "ClientPaymentType",
    "ClientProduct",
    "ClientSubscriptionStatus",
    "ConnectedAccount",
    "PaymentEvent",
    "PaymentEventSource",
    "PaymentEventType",
    "PlanType",
    "ProductInterval",
    "Subscription",
    "SubscriptionStatus",
    "UsageCounter",
    "UsageLog",
]
