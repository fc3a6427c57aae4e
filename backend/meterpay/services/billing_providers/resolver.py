"""Selection of the single active billing backend."""

import logging
from typing import Any

from sqlalchemy.orm import Session

from meterpay.core.config import Settings, settings
from meterpay.core.exceptions import ProviderNotConfiguredError
from meterpay.services.audit_service import SYSTEM, Actor
from meterpay.services.billing_providers.autumn import AutumnBillingProvider
from meterpay.services.billing_providers.base import (
    BillingCommands,
    BillingProvider,
    BillingQueries,
)
from meterpay.services.billing_providers.local import LocalBillingProvider
from meterpay.services.billing_providers.stripe_billing import StripeBillingProvider

logger = logging.getLogger(__name__)

# Auto-selection order when no explicit override is configured.
PROVIDER_PRECEDENCE: tuple[type[BillingProvider], ...] = (
    AutumnBillingProvider,
    StripeBillingProvider,
    LocalBillingProvider,
)


class BillingProviderResolver:
    """Picks exactly one backend per process configuration.

    Only the selected backend is ever instantiated; the others are never
    touched.
    """

    def __init__(
        self,
        config: Settings | None = None,
        providers: tuple[type[BillingProvider], ...] = PROVIDER_PRECEDENCE,
    ):
        self.config = config or settings
        self.providers = {p.name: p for p in providers}
        self.precedence = providers

    def select(self) -> type[BillingProvider]:
        override = (self.config.BILLING_PROVIDER or "").strip().lower()
        if override:
            provider = self.providers.get(override)
            if provider is None:
                raise ProviderNotConfiguredError(
                    f"Unknown billing provider '{override}'",
                    {"available": sorted(self.providers)},
                )
            if not provider.is_configured(self.config):
                raise ProviderNotConfiguredError(
                    f"Billing provider '{override}' is selected but not configured"
                )
            return provider
        for provider in self.precedence:
            if provider.is_configured(self.config):
                return provider
        raise ProviderNotConfiguredError("No billing provider configured")

    @property
    def active_name(self) -> str:
        return self.select().name

    def describe(self) -> list[dict[str, Any]]:
        try:
            active = self.select().name
        except ProviderNotConfiguredError:
            active = None
        return [
            {
                "name": name,
                "configured": provider.is_configured(self.config),
                "active": name == active,
            }
            for name, provider in self.providers.items()
        ]

    def provider_for(
        self, db: Session, owner_id: str, actor: Actor = SYSTEM, **kwargs: Any
    ) -> BillingProvider:
        provider_cls = self.select()
        logger.debug("Using %s billing provider for owner %s", provider_cls.name, owner_id)
        return provider_cls(db, owner_id, actor, **kwargs)  # type: ignore[call-arg]

    def queries(self, db: Session, owner_id: str, actor: Actor = SYSTEM) -> BillingQueries:
        """Query-capable context for request handlers acting for an owner."""
        return self.provider_for(db, owner_id, actor)

    def commands(self, db: Session, owner_id: str, actor: Actor = SYSTEM) -> BillingCommands:
        """Command-only context, used by webhook and background code."""
        return self.provider_for(db, owner_id, actor)


def get_billing_resolver() -> BillingProviderResolver:
    """FastAPI dependency; overridden in tests to inject other settings."""
    return BillingProviderResolver(settings)
