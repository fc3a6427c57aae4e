"""Tests for the pure feature-access evaluator."""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from meterpay.services.feature_access import (
    FEATURE_NOT_INCLUDED,
    NO_SUBSCRIPTION,
    USAGE_LIMIT_EXCEEDED,
    check_access,
    get_limit,
    get_usage,
)


@dataclass
class Snapshot:
    status: str = "active"
    features: list[str] = field(default_factory=lambda: ["api_calls", "exports"])
    limits: dict[str, Any] = field(default_factory=dict)
    usage: dict[str, Any] = field(default_factory=dict)


class TestCheckAccess:
    def test_no_subscription(self):
        result = check_access(None, "api_calls")
        assert result.has_access is False
        assert result.reason == NO_SUBSCRIPTION

    def test_inactive_status_denies(self):
        result = check_access(Snapshot(status="past_due"), "api_calls")
        assert result.has_access is False
        assert result.reason == "subscription is past_due"

    def test_cancelled_status_checked_before_features(self):
        result = check_access(Snapshot(status="cancelled", features=[]), "api_calls")
        assert result.reason == "subscription is cancelled"

    def test_trialing_is_entitled(self):
        assert check_access(Snapshot(status="trialing"), "api_calls").has_access is True

    def test_feature_not_included(self):
        result = check_access(Snapshot(), "sso")
        assert result.has_access is False
        assert result.reason == FEATURE_NOT_INCLUDED

    def test_unlimited_feature(self):
        result = check_access(Snapshot(usage={"api_calls": 5000}), "api_calls")
        assert result.has_access is True
        assert result.limit is None
        assert result.remaining is None
        assert result.current_usage == Decimal("5000")

    def test_under_limit_reports_remaining(self):
        snap = Snapshot(limits={"api_calls": 100}, usage={"api_calls": 40})
        result = check_access(snap, "api_calls")
        assert result.has_access is True
        assert result.remaining == Decimal("60")

    def test_at_limit_is_exceeded(self):
        snap = Snapshot(limits={"api_calls": 100}, usage={"api_calls": 100})
        result = check_access(snap, "api_calls")
        assert result.has_access is False
        assert result.reason == USAGE_LIMIT_EXCEEDED
        assert result.remaining == Decimal("0")

    def test_zero_limit_denies_immediately(self):
        snap = Snapshot(limits={"exports": 0})
        result = check_access(snap, "exports")
        assert result.has_access is False
        assert result.reason == USAGE_LIMIT_EXCEEDED

    def test_fractional_usage(self):
        snap = Snapshot(limits={"api_calls": "1.5"}, usage={"api_calls": Decimal("1.25")})
        result = check_access(snap, "api_calls")
        assert result.has_access is True
        assert result.remaining == Decimal("0.25")

    def test_pure_function_does_not_mutate(self):
        snap = Snapshot(limits={"api_calls": 10}, usage={"api_calls": 3})
        check_access(snap, "api_calls")
        check_access(snap, "api_calls")
        assert snap.usage == {"api_calls": 3}


class TestHelpers:
    def test_get_limit_missing_key(self):
        assert get_limit(Snapshot(), "api_calls") is None

    def test_get_limit_none_value_is_unlimited(self):
        assert get_limit(Snapshot(limits={"api_calls": None}), "api_calls") is None

    def test_get_usage_defaults_to_zero(self):
        assert get_usage(Snapshot(), "api_calls") == Decimal("0")
