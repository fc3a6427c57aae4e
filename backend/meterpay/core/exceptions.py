"""Error taxonomy for the billing core.

Every error is a ``ValueError`` so callers that only care about "bad request"
can keep catching that, while routers can map the precise category to an
HTTP status via ``status_code``.
"""

from http import HTTPStatus
from typing import Any


class BillingError(ValueError):
    """Base class for expected, business-level failures."""

    status_code: int = HTTPStatus.BAD_REQUEST

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.__class__.__name__, "message": self.message, "details": self.details}


class InvalidInputError(BillingError):
    """Input rejected before anything was written."""

    status_code = HTTPStatus.UNPROCESSABLE_ENTITY

    def __init__(self, errors: list[str] | str):
        self.errors = [errors] if isinstance(errors, str) else list(errors)
        super().__init__(f"Validation failed: {', '.join(self.errors)}", {"errors": self.errors})


class NotFoundError(BillingError):
    status_code = HTTPStatus.NOT_FOUND


class StateConflictError(BillingError):
    """The target exists but is not in a state that allows the operation."""

    status_code = HTTPStatus.CONFLICT


class ProviderNotConfiguredError(StateConflictError):
    status_code = HTTPStatus.SERVICE_UNAVAILABLE


class ProviderCapabilityError(StateConflictError):
    """The active billing backend has no implementation for this operation."""


class UpstreamError(BillingError):
    """The payment processor or metering API failed."""

    status_code = HTTPStatus.BAD_GATEWAY
