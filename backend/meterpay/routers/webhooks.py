"""Processor webhook ingress.

Stripe sends platform events and Connect events to separate endpoints, each
signed with its own secret. Once the payload is accepted the response is
always 200: reconciliation failures are stored on the payment event rather
than bounced back to the processor.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from meterpay.core.config import settings
from meterpay.core.database import get_db
from meterpay.schemas.payment_event import ProcessorEvent, ReconcileResult
from meterpay.services.event_reconciler import EventReconciler
from meterpay.services.stripe_client import StripeClient, get_stripe_client

logger = logging.getLogger(__name__)

router = APIRouter()


def _decode_event(
    payload: bytes,
    signature: str | None,
    secret: str,
    client: StripeClient,
) -> ProcessorEvent:
    if not secret:
        logger.error("Webhook secret not configured, rejecting event")
        raise HTTPException(status_code=503, detail="Webhook secret not configured")
    if not signature:
        raise HTTPException(status_code=400, detail="Missing Stripe-Signature header")
    try:
        raw: Any = client.construct_event(payload, signature, secret)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid signature or payload") from None

    try:
        return ProcessorEvent.model_validate(raw)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Malformed event") from None


@router.post(
    "/stripe",
    response_model=ReconcileResult,
    summary="Receive platform Stripe events",
    responses={
        400: {"description": "Invalid signature or payload"},
        503: {"description": "Webhook secret not configured"},
    },
)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(None, alias="Stripe-Signature"),
    db: Session = Depends(get_db),
    client: StripeClient = Depends(get_stripe_client),
) -> ReconcileResult:
    payload = await request.body()
    event = _decode_event(payload, stripe_signature, settings.stripe_webhook_secret, client)
    return EventReconciler(db, client).reconcile(event)


@router.post(
    "/stripe_connect",
    response_model=ReconcileResult,
    summary="Receive Stripe Connect events",
    responses={
        400: {"description": "Invalid signature or payload"},
        503: {"description": "Webhook secret not configured"},
    },
)
async def stripe_connect_webhook(
    request: Request,
    stripe_signature: str | None = Header(None, alias="Stripe-Signature"),
    db: Session = Depends(get_db),
    client: StripeClient = Depends(get_stripe_client),
) -> ReconcileResult:
    payload = await request.body()
    event = _decode_event(
        payload, stripe_signature, settings.stripe_connect_webhook_secret, client
    )
    return EventReconciler(db, client).reconcile(event)
