"""Tests for connected-account status derivation."""

from types import SimpleNamespace

import pytest

from meterpay.models.connected_account import AccountStatus
from meterpay.services.account_status import AccountState, derive_account_status


class TestDeriveAccountStatus:
    def test_fresh_account_is_pending(self):
        assert derive_account_status(AccountState(False, False, False)) == AccountStatus.PENDING

    def test_details_submitted_is_onboarding(self):
        assert derive_account_status(AccountState(False, False, True)) == AccountStatus.ONBOARDING

    def test_charges_and_payouts_is_active(self):
        assert derive_account_status(AccountState(True, True, True)) == AccountStatus.ACTIVE

    def test_active_wins_over_disabled_reason(self):
        state = AccountState(True, True, True, "requirements.past_due")
        assert derive_account_status(state) == AccountStatus.ACTIVE

    def test_charges_only_is_not_active(self):
        assert derive_account_status(AccountState(True, False, True)) == AccountStatus.ONBOARDING

    @pytest.mark.parametrize(
        "reason",
        ["requirements.past_due", "requirements.pending_verification", "under_review"],
    )
    def test_outstanding_requirements_restrict(self, reason):
        state = AccountState(False, False, True, reason)
        assert derive_account_status(state) == AccountStatus.RESTRICTED

    @pytest.mark.parametrize("reason", ["rejected.fraud", "rejected.terms_of_service", "listed"])
    def test_rejections_disable(self, reason):
        state = AccountState(False, False, True, reason)
        assert derive_account_status(state) == AccountStatus.DISABLED

    def test_idempotent(self):
        state = AccountState(False, False, True, "requirements.past_due")
        assert derive_account_status(state) == derive_account_status(state)


class TestAccountStateFromProcessor:
    def test_from_dict(self):
        state = AccountState.from_processor(
            {
                "charges_enabled": True,
                "payouts_enabled": False,
                "details_submitted": True,
                "requirements": {"disabled_reason": "requirements.past_due"},
            }
        )
        assert state == AccountState(True, False, True, "requirements.past_due")

    def test_from_object(self):
        remote = SimpleNamespace(
            charges_enabled=True,
            payouts_enabled=True,
            details_submitted=True,
            requirements=SimpleNamespace(disabled_reason=None),
        )
        assert AccountState.from_processor(remote) == AccountState(True, True, True, None)

    def test_missing_fields_default_false(self):
        assert AccountState.from_processor({}) == AccountState(False, False, False, None)
