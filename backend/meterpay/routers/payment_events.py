"""Payment event API endpoints.

Callers see the events recorded against their own owner id. Operators
(``OPERATOR_OWNER_IDS``) see every event, including processor events that
could not be matched to an owner.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from meterpay.core.auth import get_current_actor, get_current_owner, get_owner_scope
from meterpay.core.database import get_db
from meterpay.models.payment_event import PaymentEvent, PaymentEventSource, PaymentEventType
from meterpay.repositories.payment_event_repository import PaymentEventRepository
from meterpay.schemas.payment_event import (
    PaymentEventCreate,
    PaymentEventResponse,
    ReconcileResult,
)
from meterpay.services.audit_service import Actor
from meterpay.services.event_reconciler import EventReconciler
from meterpay.services.payment_event_service import PaymentEventService
from meterpay.services.stripe_client import StripeClient, get_stripe_client

router = APIRouter()


@router.get(
    "/",
    response_model=list[PaymentEventResponse],
    summary="List payment events",
)
async def list_payment_events(
    response: Response,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    event_type: PaymentEventType | None = None,
    source: PaymentEventSource | None = None,
    processed: bool | None = None,
    connected_account_id: UUID | None = None,
    mine: bool = False,
    order_by: str | None = Query(default=None),
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
    scope: str | None = Depends(get_owner_scope),
) -> list[PaymentEvent]:
    """List events; ``mine=true`` narrows an operator's view to their own events."""
    repo = PaymentEventRepository(db)
    filters = {
        "owner_id": owner_id if mine else scope,
        "event_type": event_type.value if event_type else None,
        "source": source.value if source else None,
        "processed": processed,
        "connected_account_id": connected_account_id,
    }
    response.headers["X-Total-Count"] = str(repo.count(**filters))
    return repo.get_all(skip=skip, limit=limit, order_by=order_by, **filters)


@router.post(
    "/",
    response_model=PaymentEventResponse,
    status_code=201,
    summary="Record an application payment event",
)
async def log_payment_event(
    data: PaymentEventCreate,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner),
    actor: Actor = Depends(get_current_actor),
) -> PaymentEvent:
    return PaymentEventService(db, actor).log_payment_event(
        owner_id,
        data.event_type,
        description=data.description,
        event_data=data.event_data,
        metadata=data.metadata,
    )


@router.get(
    "/{event_id}",
    response_model=PaymentEventResponse,
    summary="Get a payment event",
    responses={404: {"description": "Payment event not found"}},
)
async def get_payment_event(
    event_id: UUID,
    db: Session = Depends(get_db),
    scope: str | None = Depends(get_owner_scope),
) -> PaymentEvent:
    return PaymentEventService(db).get_event(event_id, scope)


@router.post(
    "/{event_id}/reset",
    response_model=PaymentEventResponse,
    summary="Clear the processed flag so the event can be replayed",
    responses={404: {"description": "Payment event not found"}},
)
async def reset_payment_event(
    event_id: UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    scope: str | None = Depends(get_owner_scope),
) -> PaymentEvent:
    return PaymentEventService(db, actor).reset_payment_event(event_id, scope)


@router.post(
    "/{event_id}/replay",
    response_model=ReconcileResult,
    summary="Re-run reconciliation for a stored event",
    responses={404: {"description": "Payment event not found"}},
)
async def replay_payment_event(
    event_id: UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    scope: str | None = Depends(get_owner_scope),
    client: StripeClient = Depends(get_stripe_client),
) -> ReconcileResult:
    PaymentEventService(db).get_event(event_id, scope)
    return EventReconciler(db, client, actor).replay(event_id)
