"""Tests for billing backends and the provider resolver."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import httpx
import pytest

from meterpay.core.config import Settings
from meterpay.core.exceptions import (
    ProviderCapabilityError,
    ProviderNotConfiguredError,
    StateConflictError,
    UpstreamError,
)
from meterpay.models.usage import UsageLog
from meterpay.schemas.billing import CheckoutOptions
from meterpay.schemas.subscription import SubscriptionSync
from meterpay.services.billing_providers.autumn import AutumnBillingProvider, AutumnClient
from meterpay.services.billing_providers.base import BillingCommands, BillingQueries
from meterpay.services.billing_providers.local import LocalBillingProvider
from meterpay.services.billing_providers.resolver import BillingProviderResolver
from meterpay.services.billing_providers.stripe_billing import StripeBillingProvider
from meterpay.services.stripe_client import StripeClient
from meterpay.services.subscription_service import SubscriptionService


class FakeStripeError(Exception):
    user_message = "card declined"


def make_settings(**overrides) -> Settings:
    values = {
        "BILLING_PROVIDER": "",
        "autumn_secret_key": "",
        "stripe_api_key": "",
        "local_billing_enabled": True,
    }
    values.update(overrides)
    return Settings(**values)


def make_stripe_client() -> StripeClient:
    client = StripeClient(api_key="sk_test_123")
    client._stripe = MagicMock()
    client._stripe.error.StripeError = FakeStripeError
    return client


@pytest.fixture
def subscription(db_session, owner_id):
    return SubscriptionService(db_session).create_or_sync(
        owner_id,
        SubscriptionSync(
            plan_id="pro",
            features=["api_calls"],
            limits={"api_calls": Decimal("10")},
            external_customer_id="cus_123",
            external_subscription_id="sub_123",
        ),
    )


CHECKOUT = CheckoutOptions(
    plan_id="price_pro",
    success_url="https://app.example.com/ok",
    cancel_url="https://app.example.com/cancel",
)


class TestResolver:
    def test_local_when_nothing_else_configured(self):
        assert BillingProviderResolver(make_settings()).select() is LocalBillingProvider

    def test_autumn_beats_stripe(self):
        config = make_settings(autumn_secret_key="am_sk", stripe_api_key="sk")
        assert BillingProviderResolver(config).select() is AutumnBillingProvider

    def test_stripe_beats_local(self):
        config = make_settings(stripe_api_key="sk")
        assert BillingProviderResolver(config).select() is StripeBillingProvider

    def test_override_wins(self):
        config = make_settings(
            BILLING_PROVIDER="Local", autumn_secret_key="am_sk", stripe_api_key="sk"
        )
        assert BillingProviderResolver(config).select() is LocalBillingProvider

    def test_override_not_configured(self):
        config = make_settings(BILLING_PROVIDER="stripe")
        with pytest.raises(ProviderNotConfiguredError):
            BillingProviderResolver(config).select()

    def test_unknown_override(self):
        with pytest.raises(ProviderNotConfiguredError):
            BillingProviderResolver(make_settings(BILLING_PROVIDER="paypal")).select()

    def test_nothing_configured(self):
        config = make_settings(local_billing_enabled=False)
        with pytest.raises(ProviderNotConfiguredError):
            BillingProviderResolver(config).select()

    def test_describe(self):
        described = BillingProviderResolver(make_settings(stripe_api_key="sk")).describe()
        by_name = {entry["name"]: entry for entry in described}
        assert by_name["stripe"] == {"name": "stripe", "configured": True, "active": True}
        assert by_name["local"]["active"] is False
        assert by_name["autumn"]["configured"] is False

    def test_only_selected_provider_is_built(self, db_session, owner_id):
        resolver = BillingProviderResolver(make_settings())
        with (
            patch.object(AutumnBillingProvider, "__init__") as autumn_init,
            patch.object(StripeBillingProvider, "__init__") as stripe_init,
        ):
            provider = resolver.provider_for(db_session, owner_id)
        assert isinstance(provider, LocalBillingProvider)
        autumn_init.assert_not_called()
        stripe_init.assert_not_called()

    def test_scoped_contexts(self, db_session, owner_id):
        resolver = BillingProviderResolver(make_settings())
        assert isinstance(resolver.queries(db_session, owner_id), BillingQueries)
        assert isinstance(resolver.commands(db_session, owner_id), BillingCommands)


class TestLocalProvider:
    def test_check_access_and_track(self, db_session, owner_id, subscription):
        provider = LocalBillingProvider(db_session, owner_id)
        provider.track_usage("api_calls", 4)
        result = provider.check_access("api_calls")
        assert result.has_access is True
        assert result.remaining == Decimal("6")

    def test_no_subscription(self, db_session):
        provider = LocalBillingProvider(db_session, "nobody")
        assert provider.get_subscription() is None
        assert provider.check_access("api_calls").reason == "no subscription"

    def test_checkout_unsupported(self, db_session, owner_id):
        with pytest.raises(ProviderCapabilityError) as exc:
            LocalBillingProvider(db_session, owner_id).create_checkout(CHECKOUT)
        assert exc.value.details == {"provider": "local", "operation": "create_checkout"}

    def test_portal_unsupported(self, db_session, owner_id):
        with pytest.raises(ProviderCapabilityError):
            LocalBillingProvider(db_session, owner_id).open_billing_portal()

    def test_cancel_immediately(self, db_session, owner_id, subscription):
        result = LocalBillingProvider(db_session, owner_id).cancel_subscription(immediate=True)
        assert result.success is True
        assert result.status == "cancelled"

    def test_cancel_at_period_end_keeps_access(self, db_session, owner_id, subscription):
        period_end = datetime.now(UTC) + timedelta(days=10)
        SubscriptionService(db_session).create_or_sync(
            owner_id, SubscriptionSync(plan_id="pro", current_period_end=period_end)
        )
        provider = LocalBillingProvider(db_session, owner_id)
        result = provider.cancel_subscription()
        assert result.status == "active"
        assert provider.get_subscription().end_date is not None

    def test_get_subscription(self, db_session, owner_id, subscription):
        response = LocalBillingProvider(db_session, owner_id).get_subscription()
        assert response.plan_id == "pro"
        assert response.usage == {"api_calls": Decimal("0")}


class TestStripeProvider:
    def test_checkout(self, db_session, owner_id, subscription):
        client = make_stripe_client()
        client.stripe.checkout.Session.create.return_value = SimpleNamespace(
            id="cs_1", url="https://checkout.stripe.com/cs_1"
        )
        result = StripeBillingProvider(db_session, owner_id, client=client).create_checkout(
            CHECKOUT
        )

        assert result.success is True
        assert result.session_id == "cs_1"
        kwargs = client.stripe.checkout.Session.create.call_args.kwargs
        assert kwargs["mode"] == "subscription"
        assert kwargs["customer"] == "cus_123"
        assert kwargs["metadata"]["owner_id"] == owner_id
        assert kwargs["client_reference_id"] == owner_id

    def test_checkout_failure_is_a_result(self, db_session, owner_id):
        client = make_stripe_client()
        client.stripe.checkout.Session.create.side_effect = FakeStripeError("boom")
        result = StripeBillingProvider(db_session, owner_id, client=client).create_checkout(
            CHECKOUT
        )
        assert result.success is False
        assert "card declined" in result.error

    def test_checkout_requires_price(self, db_session, owner_id):
        options = CheckoutOptions(success_url="https://a", cancel_url="https://b")
        result = StripeBillingProvider(
            db_session, owner_id, client=make_stripe_client()
        ).create_checkout(options)
        assert result.success is False

    def test_portal_without_customer(self, db_session):
        result = StripeBillingProvider(
            db_session, "nobody", client=make_stripe_client()
        ).open_billing_portal()
        assert result.success is False

    def test_portal(self, db_session, owner_id, subscription):
        client = make_stripe_client()
        client.stripe.billing_portal.Session.create.return_value = SimpleNamespace(
            url="https://billing.stripe.com/p/1"
        )
        result = StripeBillingProvider(db_session, owner_id, client=client).open_billing_portal(
            "https://app.example.com"
        )
        assert result.url == "https://billing.stripe.com/p/1"

    def test_cancel_at_period_end(self, db_session, owner_id, subscription):
        client = make_stripe_client()
        result = StripeBillingProvider(db_session, owner_id, client=client).cancel_subscription()
        client.stripe.Subscription.modify.assert_called_once_with(
            "sub_123", cancel_at_period_end=True
        )
        assert result.status == "active"

    def test_cancel_immediately(self, db_session, owner_id, subscription):
        client = make_stripe_client()
        result = StripeBillingProvider(db_session, owner_id, client=client).cancel_subscription(
            immediate=True
        )
        client.stripe.Subscription.cancel.assert_called_once_with("sub_123")
        assert result.status == "cancelled"

    def test_cancel_unmanaged_subscription(self, db_session, owner_id):
        SubscriptionService(db_session).create_or_sync(owner_id, SubscriptionSync(plan_id="free"))
        with pytest.raises(StateConflictError):
            StripeBillingProvider(
                db_session, owner_id, client=make_stripe_client()
            ).cancel_subscription()

    def test_track_usage_reports_meter_event(self, db_session, owner_id, subscription):
        client = make_stripe_client()
        result = StripeBillingProvider(db_session, owner_id, client=client).track_usage(
            "api_calls", 2
        )
        kwargs = client.stripe.billing.MeterEvent.create.call_args.kwargs
        assert kwargs["payload"]["stripe_customer_id"] == "cus_123"
        assert kwargs["identifier"] == str(result.usage_log_id)
        entry = db_session.query(UsageLog).one()
        assert entry.synced_to_provider is True

    def test_track_usage_upstream_failure_stays_unsynced(self, db_session, owner_id, subscription):
        client = make_stripe_client()
        client.stripe.billing.MeterEvent.create.side_effect = FakeStripeError("down")
        result = StripeBillingProvider(db_session, owner_id, client=client).track_usage(
            "api_calls", 2
        )
        assert result.current_usage == Decimal("2")
        assert db_session.query(UsageLog).one().synced_to_provider is False


class TestAutumnProvider:
    @pytest.fixture
    def client(self):
        return MagicMock(spec=AutumnClient)

    def test_check_allowed(self, db_session, owner_id, client):
        client.request.return_value = {
            "allowed": True,
            "usage": 3,
            "included_usage": 10,
            "balance": 7,
        }
        result = AutumnBillingProvider(db_session, owner_id, client=client).check_access("api")
        assert result.has_access is True
        assert result.limit == Decimal("10")
        assert result.remaining == Decimal("7")
        client.request.assert_called_once_with(
            "POST", "/check", {"customer_id": owner_id, "feature_id": "api"}
        )

    def test_check_limit_exceeded(self, db_session, owner_id, client):
        client.request.return_value = {"allowed": False, "usage": 10, "included_usage": 10, "balance": 0}
        result = AutumnBillingProvider(db_session, owner_id, client=client).check_access("api")
        assert result.has_access is False
        assert result.reason == "usage limit exceeded"

    def test_check_feature_missing(self, db_session, owner_id, client):
        client.request.return_value = {"allowed": False}
        result = AutumnBillingProvider(db_session, owner_id, client=client).check_access("sso")
        assert result.reason == "feature not included"

    def test_get_subscription_mirrors_locally(self, db_session, owner_id, client):
        client.request.return_value = {
            "id": owner_id,
            "stripe_id": "cus_9",
            "products": [
                {"id": "pro", "name": "Pro", "status": "active", "started_at": 1_700_000_000_000}
            ],
            "features": {
                "api": {"included_usage": 100, "unlimited": False},
                "seats": {"unlimited": True},
            },
        }
        response = AutumnBillingProvider(db_session, owner_id, client=client).get_subscription()

        assert response.plan_id == "pro"
        assert response.provider == "autumn"
        assert response.features == ["api", "seats"]
        assert response.limits == {"api": Decimal("100")}
        local = SubscriptionService(db_session).get_by_owner(owner_id)
        assert local.external_customer_id == "cus_9"

    def test_get_subscription_without_products(self, db_session, owner_id, client):
        client.request.return_value = {"id": owner_id, "products": []}
        assert AutumnBillingProvider(db_session, owner_id, client=client).get_subscription() is None

    def test_checkout(self, db_session, owner_id, client):
        client.request.return_value = {"url": "https://checkout.example.com/x"}
        result = AutumnBillingProvider(db_session, owner_id, client=client).create_checkout(
            CHECKOUT
        )
        assert result.success is True
        assert result.url == "https://checkout.example.com/x"

    def test_checkout_upstream_error(self, db_session, owner_id, client):
        client.request.side_effect = UpstreamError("Autumn /checkout returned 500")
        result = AutumnBillingProvider(db_session, owner_id, client=client).create_checkout(
            CHECKOUT
        )
        assert result.success is False

    def test_track_usage(self, db_session, owner_id, client, subscription):
        result = AutumnBillingProvider(db_session, owner_id, client=client).track_usage(
            "api_calls", 3
        )
        payload = client.request.call_args.args[2]
        assert payload["value"] == 3.0
        assert payload["idempotency_key"] == str(result.usage_log_id)
        assert db_session.query(UsageLog).one().synced_to_provider is True


class TestAutumnClient:
    def _mock_client(self, mock_client_cls, response):
        mock_client = MagicMock()
        mock_client.__enter__ = MagicMock(return_value=mock_client)
        mock_client.__exit__ = MagicMock(return_value=False)
        mock_client.request.return_value = response
        mock_client_cls.return_value = mock_client
        return mock_client

    def test_request_success(self):
        response = MagicMock(status_code=200, content=b"{}")
        response.json.return_value = {"allowed": True}
        with patch("meterpay.services.billing_providers.autumn.httpx.Client") as mock_client_cls:
            mock_client = self._mock_client(mock_client_cls, response)
            data = AutumnClient("am_sk", "https://api.example.com/v1/").request(
                "POST", "/check", {"customer_id": "o"}
            )
        assert data == {"allowed": True}
        headers = mock_client.request.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer am_sk"
        mock_client_cls.assert_called_once_with(base_url="https://api.example.com/v1", timeout=30.0)

    def test_request_error_status(self):
        response = MagicMock(status_code=404, content=b"{}", text="not found")
        response.json.return_value = {"message": "customer not found"}
        with patch("meterpay.services.billing_providers.autumn.httpx.Client") as mock_client_cls:
            self._mock_client(mock_client_cls, response)
            with pytest.raises(UpstreamError) as exc:
                AutumnClient("am_sk").request("GET", "/customers/x")
        assert "customer not found" in exc.value.message
        assert exc.value.details == {"status_code": 404}

    def test_request_transport_error(self):
        with patch("meterpay.services.billing_providers.autumn.httpx.Client") as mock_client_cls:
            mock_client = self._mock_client(mock_client_cls, None)
            mock_client.request.side_effect = httpx.ConnectError("refused")
            with pytest.raises(UpstreamError):
                AutumnClient("am_sk").request("GET", "/customers/x")
