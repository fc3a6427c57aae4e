"""Thin holder for the Stripe SDK, shared by billing and Connect code."""

import logging
from typing import Any

from meterpay.core.config import settings
from meterpay.core.exceptions import UpstreamError

logger = logging.getLogger(__name__)


class StripeClient:
    """Lazily configured Stripe SDK handle."""

    def __init__(self, api_key: str | None = None):
        self.api_key = api_key if api_key is not None else settings.stripe_api_key
        self._stripe: Any = None

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    @property
    def stripe(self) -> Any:
        """Lazy-load stripe module."""
        if self._stripe is None:
            try:
                import stripe

                stripe.api_key = self.api_key
                self._stripe = stripe
            except ImportError as e:
                raise ImportError("stripe package not installed. Run: pip install stripe") from e
        return self._stripe

    def call(self, operation: str, func: Any, *args: Any, **kwargs: Any) -> Any:
        """Invoke an SDK function, turning processor failures into ``UpstreamError``."""
        try:
            return func(*args, **kwargs)
        except self.stripe.error.StripeError as e:
            logger.warning("Stripe %s failed: %s", operation, e)
            message = getattr(e, "user_message", None) or str(e)
            raise UpstreamError(f"Stripe {operation} failed: {message}") from e

    def construct_event(self, payload: bytes, signature: str, secret: str) -> dict[str, Any]:
        """Verify a webhook signature and return the decoded event.

        Raises ``ValueError`` for bad payloads or signatures.
        """
        try:
            event = self.stripe.Webhook.construct_event(payload, signature, secret)
        except self.stripe.error.SignatureVerificationError as e:
            raise ValueError("Invalid webhook signature") from e
        if hasattr(event, "to_dict"):
            return dict(event.to_dict())
        return dict(event)


def get_stripe_client() -> StripeClient:
    """FastAPI dependency returning a client for the configured account."""
    return StripeClient()
