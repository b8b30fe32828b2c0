# Overview: Service-layer operations for the domain event ledger.

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from ..extensions import db
from ..models import DomainEvent
"""
Domain Event Ledger Invariants (authoritative)

- Append-only log of lifecycle events; the subscription surface for
  notifications (offer.accepted, transaction.settled, review.published...).
- No domain/business logic in the ledger itself.
- Events are written inside the same DB transaction as the transition they
  record: if the transition rolls back, so does the event.
- occurred_at is business time; created_at is system time (DB default).
"""


def append_ledger_event(
    *,
    event_type: str,
    entity_type: str,
    entity_id: int,
    actor_user_id: int | None = None,
    property_id: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[dict[str, Any]] = None,
) -> DomainEvent:
    """
    Append-only domain event.

    - No domain logic here.
    - No deletes/updates of existing events.
    - Flushes but never commits; the caller owns the unit of work.
    """
    ev = DomainEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        property_id=property_id,
        occurred_at=occurred_at,  # if None, db default applies
        note=note,
        payload=payload,
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def list_events(
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    event_type: str | None = None,
    as_of: Optional[datetime] = None,
    limit: int = 200,
) -> list[DomainEvent]:
    """
    Read the ledger, oldest first.

    As-of filtering is inclusive: occurred_at <= as_of.
    """
    q = db.session.query(DomainEvent)
    if entity_type is not None:
        q = q.filter(DomainEvent.entity_type == entity_type)
    if entity_id is not None:
        q = q.filter(DomainEvent.entity_id == entity_id)
    if event_type is not None:
        q = q.filter(DomainEvent.event_type == event_type)
    if as_of is not None:
        q = q.filter(DomainEvent.occurred_at <= as_of)
    return q.order_by(DomainEvent.occurred_at.asc(), DomainEvent.id.asc()).limit(limit).all()
