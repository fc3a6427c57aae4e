"""Connected-account status derivation."""

from dataclasses import dataclass
from typing import Any

from meterpay.models.connected_account import AccountStatus

# Processor disable reasons that mean the platform or processor shut the
# account down, rather than the account merely owing information.
_DISABLED_PREFIXES = ("rejected.", "platform_paused", "listed")


@dataclass(frozen=True)
class AccountState:
    charges_enabled: bool
    payouts_enabled: bool
    details_submitted: bool
    disabled_reason: str | None = None

    @classmethod
    def from_processor(cls, account: Any) -> "AccountState":
        """Read the status inputs off a processor account object or dict."""
        get = account.get if isinstance(account, dict) else lambda k, d=None: getattr(account, k, d)
        requirements = get("requirements") or {}
        if isinstance(requirements, dict):
            reason = requirements.get("disabled_reason")
        else:
            reason = getattr(requirements, "disabled_reason", None)
        return cls(
            charges_enabled=bool(get("charges_enabled", False)),
            payouts_enabled=bool(get("payouts_enabled", False)),
            details_submitted=bool(get("details_submitted", False)),
            disabled_reason=reason or None,
        )


def derive_account_status(state: AccountState) -> AccountStatus:
    """Compute the account status from its capability inputs alone.

    The stored status is never consulted, so re-syncing identical inputs
    always lands on the same status.
    """
    if state.charges_enabled and state.payouts_enabled:
        return AccountStatus.ACTIVE
    if state.disabled_reason:
        if state.disabled_reason.startswith(_DISABLED_PREFIXES):
            return AccountStatus.DISABLED
        return AccountStatus.RESTRICTED
    if state.details_submitted:
        return AccountStatus.ONBOARDING
    return AccountStatus.PENDING
