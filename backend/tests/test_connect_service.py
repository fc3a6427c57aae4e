"""Tests for ConnectService: accounts, onboarding links, products and payments."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from meterpay.core.database import transaction
from meterpay.core.exceptions import NotFoundError, StateConflictError, UpstreamError
from meterpay.models.audit_log import AuditLog
from meterpay.models.client_payment import ClientPayment
from meterpay.models.client_product import ClientProduct, ProductInterval
from meterpay.models.connected_account import AccountStatus
from meterpay.repositories.client_payment_repository import ClientPaymentRepository
from meterpay.schemas.connect import (
    ClientProductCreate,
    ClientProductUpdate,
    ConnectCheckoutRequest,
    ConnectedAccountCreate,
    PaymentIntentCreate,
)
from meterpay.services.connect_service import CANNOT_ACCEPT_PAYMENTS, ConnectService


def remote_account(
    account_id="acct_123",
    charges=False,
    payouts=False,
    details=False,
    disabled_reason=None,
):
    return {
        "id": account_id,
        "charges_enabled": charges,
        "payouts_enabled": payouts,
        "details_submitted": details,
        "requirements": {"disabled_reason": disabled_reason},
        "capabilities": {"card_payments": "active" if charges else "inactive"},
        "default_currency": "usd",
    }


@pytest.fixture
def service(db_session, stripe_client):
    stripe_client.stripe.Account.create.return_value = remote_account()
    stripe_client.stripe.Product.create.return_value = {"id": "prod_1"}
    stripe_client.stripe.Price.create.return_value = {"id": "price_1"}
    return ConnectService(db_session, stripe_client)


@pytest.fixture
def account(service, owner_id):
    return service.create_connected_account(
        owner_id,
        ConnectedAccountCreate(client_name="Acme Studio", client_email="owner@acme.test"),
    )


@pytest.fixture
def active_account(service, account):
    service.client.stripe.Account.retrieve.return_value = remote_account(
        charges=True, payouts=True, details=True
    )
    return service.sync_account_from_processor(account.id)


@pytest.fixture
def one_time_product(service, active_account):
    return service.create_product(
        active_account.id,
        ClientProductCreate(name="Logo pack", amount=10000, application_fee_percent=Decimal("5")),
    )


@pytest.fixture
def monthly_product(service, active_account):
    service.client.stripe.Product.create.return_value = {"id": "prod_2"}
    service.client.stripe.Price.create.return_value = {"id": "price_2"}
    return service.create_product(
        active_account.id,
        ClientProductCreate(
            name="Retainer",
            amount=2999,
            interval=ProductInterval.MONTH,
            application_fee_percent=Decimal("10"),
        ),
    )


class TestConnectedAccounts:
    def test_create_starts_pending(self, service, account, owner_id):
        assert account.owner_id == owner_id
        assert account.external_account_id == "acct_123"
        assert account.account_status == AccountStatus.PENDING.value
        assert account.account_type == "express"
        assert account.default_currency == "usd"
        assert account.charges_enabled is False

        kwargs = service.client.stripe.Account.create.call_args.kwargs
        assert kwargs["type"] == "express"
        assert kwargs["email"] == "owner@acme.test"
        assert kwargs["metadata"]["owner_id"] == owner_id

    def test_one_account_per_owner(self, service, account, owner_id):
        with pytest.raises(StateConflictError):
            service.create_connected_account(
                owner_id,
                ConnectedAccountCreate(client_name="Again", client_email="again@acme.test"),
            )

    def test_processor_failure_stores_nothing(self, service, owner_id, stripe_error):
        service.client.stripe.Account.create.side_effect = stripe_error("down")
        with pytest.raises(UpstreamError):
            service.create_connected_account(
                owner_id,
                ConnectedAccountCreate(client_name="Acme", client_email="owner@acme.test"),
            )
        assert service.account_repo.get_by_owner(owner_id) is None

    def test_invalid_input(self):
        with pytest.raises(ValueError):
            ConnectedAccountCreate(client_name="", client_email="owner@acme.test")
        with pytest.raises(ValueError):
            ConnectedAccountCreate(client_name="Acme", client_email="not-an-email")
        with pytest.raises(ValueError):
            ConnectedAccountCreate(
                client_name="Acme", client_email="a@b.co", default_currency="USD"
            )
        with pytest.raises(ValueError):
            ConnectedAccountCreate(
                client_name="Acme", client_email="a@b.co", statement_descriptor="x" * 23
            )

    def test_sync_onboarding_then_active(self, service, account):
        service.client.stripe.Account.retrieve.return_value = remote_account(details=True)
        synced = service.sync_account_from_processor(account.id)
        assert synced.account_status == AccountStatus.ONBOARDING.value

        service.client.stripe.Account.retrieve.return_value = remote_account(
            charges=True, payouts=True, details=True
        )
        synced = service.sync_account_from_processor(account.id)
        assert synced.account_status == AccountStatus.ACTIVE.value
        assert synced.onboarding_completed is True
        assert synced.capability_card_payments == "active"
        assert synced.last_synced_at is not None

    def test_sync_back_to_restricted(self, service, active_account):
        service.client.stripe.Account.retrieve.return_value = remote_account(
            details=True, disabled_reason="requirements.past_due"
        )
        synced = service.sync_account_from_processor(active_account.id)
        assert synced.account_status == AccountStatus.RESTRICTED.value
        assert synced.onboarding_completed is False

    def test_same_inputs_same_status(self, db_session, service, account):
        """Status depends only on the processor inputs, not on what was stored."""
        account.account_status = AccountStatus.ACTIVE.value
        db_session.commit()
        service.client.stripe.Account.retrieve.return_value = remote_account(details=True)

        first = service.sync_account_from_processor(account.id).account_status
        second = service.sync_account_from_processor(account.id).account_status
        assert first == second == AccountStatus.ONBOARDING.value

    def test_status_change_audited(self, db_session, service, active_account):
        actions = {
            log.action
            for log in db_session.query(AuditLog).filter(
                AuditLog.resource_type == "connected_account"
            )
        }
        assert {"created", "status_changed", "onboarded"} <= actions

    def test_sync_unknown_account(self, service):
        with pytest.raises(NotFoundError):
            service.sync_account_from_processor(uuid4())

    def test_get_owned_account_checks_owner(self, service, account):
        assert service.get_owned_account(account.id, account.owner_id).id == account.id
        with pytest.raises(NotFoundError):
            service.get_owned_account(account.id, "someone-else")

    def test_get_account_by_email(self, service, account):
        assert service.get_account_by_email("owner@acme.test").id == account.id
        assert service.get_account_by_email("  owner@acme.test ").id == account.id
        with pytest.raises(NotFoundError):
            service.get_account_by_email("nobody@acme.test")

    def test_deleted_account_not_found_by_email(self, service, account):
        service.delete_connected_account(account.id)
        with pytest.raises(NotFoundError):
            service.get_account_by_email("owner@acme.test")

    def test_delete_soft_deletes_products(self, db_session, service, one_time_product, owner_id):
        account_id = one_time_product.connected_account_id
        service.delete_connected_account(account_id)

        assert service.account_repo.get_by_owner(owner_id) is None
        product = (
            db_session.query(ClientProduct).filter(ClientProduct.id == one_time_product.id).one()
        )
        assert product.active is False
        assert product.deleted_at is not None


class TestOnboardingLink:
    def test_link_is_cached_until_expiry(self, service, account):
        expires = int((datetime.now(UTC) + timedelta(minutes=5)).timestamp())
        service.client.stripe.AccountLink.create.return_value = {
            "url": "https://connect.example/onboard/1",
            "expires_at": expires,
        }

        first = service.get_onboarding_link(account.id)
        second = service.get_onboarding_link(account.id)

        assert first.reused is False
        assert second.reused is True
        assert second.url == first.url
        assert service.client.stripe.AccountLink.create.call_count == 1

    def test_expired_link_is_replaced(self, db_session, service, account):
        account.onboarding_link = "https://connect.example/onboard/old"
        account.onboarding_link_expires_at = datetime.now(UTC) - timedelta(seconds=1)
        db_session.commit()
        service.client.stripe.AccountLink.create.return_value = {
            "url": "https://connect.example/onboard/new",
            "expires_at": None,
        }

        link = service.get_onboarding_link(account.id, return_url="https://app.test/done")

        assert link.reused is False
        assert link.url == "https://connect.example/onboard/new"
        assert link.expires_at > datetime.now(UTC)
        kwargs = service.client.stripe.AccountLink.create.call_args.kwargs
        assert kwargs["return_url"] == "https://app.test/done"
        assert kwargs["type"] == "account_onboarding"


class TestProducts:
    def test_create_one_time(self, service, one_time_product):
        assert one_time_product.external_product_id == "prod_1"
        assert one_time_product.external_price_id == "price_1"
        assert one_time_product.interval == "one_time"
        assert one_time_product.application_fee_percent == Decimal("5")
        price_kwargs = service.client.stripe.Price.create.call_args.kwargs
        assert "recurring" not in price_kwargs
        assert price_kwargs["stripe_account"] == "acct_123"

    def test_create_recurring(self, service, monthly_product):
        price_kwargs = service.client.stripe.Price.create.call_args.kwargs
        assert price_kwargs["recurring"] == {"interval": "month"}
        assert monthly_product.is_recurring is True

    def test_default_fee_percent(self, service, active_account):
        product = service.create_product(
            active_account.id, ClientProductCreate(name="Default", amount=500)
        )
        assert product.application_fee_percent == Decimal("5")

    def test_price_failure_rolls_back(self, db_session, service, active_account, stripe_error):
        service.client.stripe.Price.create.side_effect = stripe_error("bad price")
        with pytest.raises(UpstreamError):
            service.create_product(active_account.id, ClientProductCreate(name="X", amount=500))

        assert db_session.query(ClientProduct).count() == 0
        service.client.stripe.Product.modify.assert_called_once()

    @pytest.mark.parametrize("amount", [49, 100_000_000])
    def test_amount_bounds(self, amount):
        with pytest.raises(ValueError):
            ClientProductCreate(name="X", amount=amount)

    def test_update_and_list(self, service, one_time_product):
        account_id = one_time_product.connected_account_id
        service.update_product(
            account_id, one_time_product.id, ClientProductUpdate(name="Renamed", active=False)
        )

        assert service.list_products(account_id) == []
        products = service.list_products(account_id, active_only=False)
        assert [p.name for p in products] == ["Renamed"]

    def test_delete_product(self, service, one_time_product):
        account_id = one_time_product.connected_account_id
        service.delete_product(account_id, one_time_product.id)
        with pytest.raises(NotFoundError):
            service.get_product(account_id, one_time_product.id)


class TestCheckout:
    def request(self, product, **extra):
        return ConnectCheckoutRequest(
            product_id=product.id,
            success_url="https://shop.test/ok",
            cancel_url="https://shop.test/cancel",
            **extra,
        )

    def test_one_time_fixed_fee(self, db_session, service, one_time_product):
        service.client.stripe.checkout.Session.create.return_value = {
            "id": "cs_1",
            "url": "https://checkout.test/cs_1",
            "payment_intent": "pi_1",
        }

        result = service.create_checkout(
            one_time_product.connected_account_id,
            self.request(one_time_product, customer_email="buyer@shop.test"),
        )

        assert result.success is True
        assert result.url == "https://checkout.test/cs_1"
        params = service.client.stripe.checkout.Session.create.call_args.kwargs
        assert params["mode"] == "payment"
        assert params["payment_intent_data"]["application_fee_amount"] == 500
        assert params["customer_email"] == "buyer@shop.test"

        payment = db_session.query(ClientPayment).one()
        assert payment.status == "pending"
        assert payment.external_checkout_id == "cs_1"
        assert payment.external_payment_intent_id == "pi_1"
        assert payment.application_fee_amount == 500
        assert payment.net_amount == 9500

    def test_recurring_percent_fee_and_trial(self, db_session, service, monthly_product):
        service.client.stripe.checkout.Session.create.return_value = {
            "id": "cs_2",
            "url": "https://checkout.test/cs_2",
            "payment_intent": None,
        }

        result = service.create_checkout(
            monthly_product.connected_account_id, self.request(monthly_product, trial_days=14)
        )

        assert result.success is True
        params = service.client.stripe.checkout.Session.create.call_args.kwargs
        assert params["mode"] == "subscription"
        assert params["subscription_data"]["application_fee_percent"] == 10.0
        assert params["subscription_data"]["trial_period_days"] == 14
        assert "payment_intent_data" not in params
        payment = db_session.query(ClientPayment).one()
        assert payment.payment_type == "subscription"
        assert payment.application_fee_amount == 300

    def test_inactive_account_refused(self, db_session, service, one_time_product):
        service.client.stripe.Account.retrieve.return_value = remote_account(details=True)
        service.sync_account_from_processor(one_time_product.connected_account_id)

        result = service.create_checkout(
            one_time_product.connected_account_id, self.request(one_time_product)
        )

        assert result.success is False
        assert result.error == CANNOT_ACCEPT_PAYMENTS
        service.client.stripe.checkout.Session.create.assert_not_called()
        assert db_session.query(ClientPayment).count() == 0

    def test_unknown_account_is_a_result(self, service, one_time_product):
        result = service.create_checkout(uuid4(), self.request(one_time_product))
        assert result.success is False
        assert result.error == "connected account not found"

    def test_upstream_failure_is_a_result(
        self, db_session, service, one_time_product, stripe_error
    ):
        service.client.stripe.checkout.Session.create.side_effect = stripe_error("down")
        result = service.create_checkout(
            one_time_product.connected_account_id, self.request(one_time_product)
        )
        assert result.success is False
        assert "checkout failed" in result.error
        assert db_session.query(ClientPayment).count() == 0


class TestPaymentIntents:
    def test_creates_pending_payment_with_fee(self, db_session, service, active_account):
        service.client.stripe.PaymentIntent.create.return_value = {
            "id": "pi_42",
            "client_secret": "pi_42_secret",
        }

        result = service.create_payment_intent(
            active_account.id, PaymentIntentCreate(amount=10000, customer_email="b@shop.test")
        )

        assert result.payment_intent_id == "pi_42"
        assert result.client_secret == "pi_42_secret"
        assert result.application_fee_amount == 500
        assert result.net_amount == 9500
        params = service.client.stripe.PaymentIntent.create.call_args.kwargs
        assert params["application_fee_amount"] == 500
        assert params["receipt_email"] == "b@shop.test"
        assert db_session.query(ClientPayment).one().status == "pending"

    def test_pending_account_refused(self, db_session, service, account):
        with pytest.raises(StateConflictError, match=CANNOT_ACCEPT_PAYMENTS):
            service.create_payment_intent(account.id, PaymentIntentCreate(amount=1000))
        service.client.stripe.PaymentIntent.create.assert_not_called()
        assert db_session.query(ClientPayment).count() == 0

    def test_list_payments(self, service, active_account):
        service.client.stripe.PaymentIntent.create.side_effect = [
            {"id": "pi_a", "client_secret": "a"},
            {"id": "pi_b", "client_secret": "b"},
        ]
        service.create_payment_intent(active_account.id, PaymentIntentCreate(amount=1000))
        service.create_payment_intent(active_account.id, PaymentIntentCreate(amount=2000))

        assert len(service.list_payments(active_account.id)) == 2
        assert service.list_payments(active_account.id, status="succeeded") == []


class TestSubscriptionPayments:
    @pytest.fixture
    def payments(self, db_session, active_account):
        repo = ClientPaymentRepository(db_session)
        with transaction(db_session):
            for payment_type, subscription_status in (
                ("subscription", "active"),
                ("subscription", "active"),
                ("subscription", "cancelled"),
                ("one_time", None),
            ):
                repo.create(
                    connected_account_id=active_account.id,
                    payment_type=payment_type,
                    subscription_status=subscription_status,
                    amount=2999,
                    application_fee_amount=150,
                    net_amount=2849,
                    currency="usd",
                    status="succeeded",
                )

    def test_all_subscriptions(self, service, active_account, payments):
        subscriptions = service.list_subscriptions(active_account.id)
        assert len(subscriptions) == 3
        assert {p.payment_type for p in subscriptions} == {"subscription"}

    def test_active_only(self, service, active_account, payments):
        subscriptions = service.list_subscriptions(active_account.id, active_only=True)
        assert [p.subscription_status for p in subscriptions] == ["active", "active"]

    def test_payment_type_filter(self, db_session, service, active_account, payments):
        assert len(service.list_payments(active_account.id, payment_type="one_time")) == 1
        repo = ClientPaymentRepository(db_session)
        assert repo.count_by_account(active_account.id, payment_type="subscription") == 3
        assert repo.count_by_account(active_account.id, subscription_status="cancelled") == 1

    def test_unknown_account(self, service):
        with pytest.raises(NotFoundError):
            service.list_subscriptions(uuid4())
