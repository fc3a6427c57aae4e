from fastapi import Depends, HTTPException, Request

from meterpay.core.config import settings
from meterpay.services.audit_service import Actor

OWNER_HEADER = "X-Owner-Id"
ACTOR_TYPE_HEADER = "X-Actor-Type"


def get_current_owner(request: Request) -> str:
    """Return the owner reference established by the upstream identity layer.

    Authentication happens before requests reach this service; the gateway
    forwards the resolved owner in ``X-Owner-Id``.
    """
    owner_id = request.headers.get(OWNER_HEADER, "").strip()
    if not owner_id:
        raise HTTPException(status_code=401, detail=f"Missing {OWNER_HEADER} header")
    return owner_id


def get_current_actor(request: Request) -> Actor:
    """Build the audit actor for the calling owner."""
    owner_id = get_current_owner(request)
    actor_type = request.headers.get(ACTOR_TYPE_HEADER, "user").strip() or "user"
    return Actor(actor_type=actor_type, actor_id=owner_id)


def is_operator(owner_id: str) -> bool:
    return owner_id in settings.operator_owner_ids


def get_owner_scope(owner_id: str = Depends(get_current_owner)) -> str | None:
    """Owner that cross-owner records must belong to; ``None`` for operators."""
    return None if is_operator(owner_id) else owner_id


def require_operator(owner_id: str = Depends(get_current_owner)) -> str:
    if not is_operator(owner_id):
        raise HTTPException(status_code=403, detail="Operator access required")
    return owner_id
