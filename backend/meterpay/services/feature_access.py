"""Feature-access evaluation.

A pure function of a subscription snapshot and a feature key: no database
access and no side effects, so it can back live entitlement checks and run in
tests without any stored subscription.
"""

from collections.abc import Mapping
from decimal import Decimal
from typing import Any, Protocol

from meterpay.models.subscription import ENTITLED_STATUSES
from meterpay.schemas.billing import FeatureAccessResult

NO_SUBSCRIPTION = "no subscription"
FEATURE_NOT_INCLUDED = "feature not included"
USAGE_LIMIT_EXCEEDED = "usage limit exceeded"


class Entitlements(Protocol):
    status: Any
    features: Any
    limits: Any

    @property
    def usage(self) -> Mapping[str, Any]: ...  # pragma: no cover


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def get_limit(subscription: Entitlements, feature_key: str) -> Decimal | None:
    limits = subscription.limits or {}
    if feature_key not in limits or limits[feature_key] is None:
        return None
    return to_decimal(limits[feature_key])


def get_usage(subscription: Entitlements, feature_key: str) -> Decimal:
    return to_decimal((subscription.usage or {}).get(feature_key, 0))


def check_access(subscription: Entitlements | None, feature_key: str) -> FeatureAccessResult:
    """Decide whether ``feature_key`` may be used; the first failing rule wins."""
    if subscription is None:
        return FeatureAccessResult(has_access=False, reason=NO_SUBSCRIPTION)

    status = getattr(subscription.status, "value", subscription.status)
    current_usage = get_usage(subscription, feature_key)
    limit = get_limit(subscription, feature_key)

    if status not in ENTITLED_STATUSES:
        return FeatureAccessResult(
            has_access=False,
            reason=f"subscription is {status}",
            current_usage=current_usage,
            limit=limit,
        )

    if feature_key not in (subscription.features or []):
        return FeatureAccessResult(
            has_access=False,
            reason=FEATURE_NOT_INCLUDED,
            current_usage=current_usage,
            limit=limit,
        )

    if limit is not None and current_usage >= limit:
        return FeatureAccessResult(
            has_access=False,
            reason=USAGE_LIMIT_EXCEEDED,
            current_usage=current_usage,
            limit=limit,
            remaining=Decimal("0"),
        )

    return FeatureAccessResult(
        has_access=True,
        current_usage=current_usage,
        limit=limit,
        remaining=(limit - current_usage) if limit is not None else None,
    )
