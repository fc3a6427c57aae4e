"""Shared sorting utilities for repository queries."""

from __future__ import annotations

from sqlalchemy import asc, desc
from sqlalchemy.orm import Query

from meterpay.core.database import Base


def apply_order_by(
    query: Query,  # type: ignore[type-arg]
    model: type[Base],
    order_by: str | None,
    default_field: str = "created_at",
    default_direction: str = "desc",
) -> Query:  # type: ignore[type-arg]
    """Apply ``"field:direction"`` ordering, falling back to the defaults.

    Unknown fields and directions are ignored rather than rejected so list
    endpoints stay forgiving about client-supplied sort strings.
    """
    field = default_field
    direction = default_direction

    if order_by:
        candidate_field, _, candidate_direction = order_by.partition(":")
        if hasattr(model, candidate_field):
            field = candidate_field
            direction = candidate_direction if candidate_direction in ("asc", "desc") else "asc"

    column = getattr(model, field)
    order_func = asc if direction == "asc" else desc
    return query.order_by(order_func(column))
