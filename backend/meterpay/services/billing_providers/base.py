"""Billing backend abstraction.

Every backend serves the same owner-scoped contract, split into two
capability interfaces:

* ``BillingQueries`` reads entitlements (access checks, subscription and
  usage views). Only request handlers acting for a signed-in owner get one.
* ``BillingCommands`` changes billing state (checkout, portal, cancel,
  usage). Background and webhook contexts only ever receive this interface.

A backend that has no real implementation for an operation raises
``ProviderCapabilityError`` instead of silently doing nothing.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any

from meterpay.core.exceptions import ProviderCapabilityError
from meterpay.schemas.billing import (
    BillingPortalResult,
    CancelSubscriptionResult,
    CheckoutOptions,
    CheckoutResult,
    FeatureAccessResult,
)
from meterpay.schemas.subscription import SubscriptionResponse
from meterpay.schemas.usage import FeatureUsageStats, TrackUsageResult, UsageSummary


class BillingQueries(ABC):
    """Read side of a billing backend."""

    @abstractmethod
    def check_access(self, feature_key: str) -> FeatureAccessResult:
        pass  # pragma: no cover

    @abstractmethod
    def get_subscription(self) -> SubscriptionResponse | None:
        pass  # pragma: no cover

    @abstractmethod
    def get_usage_stats(self, feature_key: str | None = None) -> FeatureUsageStats | UsageSummary:
        pass  # pragma: no cover


class BillingCommands(ABC):
    """Write side of a billing backend."""

    @abstractmethod
    def create_checkout(self, options: CheckoutOptions) -> CheckoutResult:
        pass  # pragma: no cover

    @abstractmethod
    def open_billing_portal(self, return_url: str | None = None) -> BillingPortalResult:
        pass  # pragma: no cover

    @abstractmethod
    def cancel_subscription(self, immediate: bool = False) -> CancelSubscriptionResult:
        pass  # pragma: no cover

    @abstractmethod
    def track_usage(
        self,
        feature_key: str,
        quantity: Decimal | int = 1,
        unit: str | None = None,
        context: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TrackUsageResult:
        pass  # pragma: no cover


class BillingProvider(BillingQueries, BillingCommands):
    """A concrete billing backend bound to one owner."""

    name: str = ""

    def __init__(self, owner_id: str):
        self.owner_id = owner_id

    @classmethod
    @abstractmethod
    def is_configured(cls, config: Any) -> bool:
        """Whether ``config`` carries everything this backend needs."""
        pass  # pragma: no cover

    def unsupported(self, operation: str, hint: str = "") -> ProviderCapabilityError:
        message = f"{operation} is not supported by the {self.name} billing provider"
        if hint:
            message = f"{message}; {hint}"
        return ProviderCapabilityError(message, {"provider": self.name, "operation": operation})
