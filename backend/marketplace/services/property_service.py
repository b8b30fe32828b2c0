# Overview: Property status side effects of the transaction lifecycle; never commits on its own.

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..models import Offer, Property, Transaction
from .concurrency import get_locked, lock_for_update
from .ledger_service import append_ledger_event
from .lifecycle_service import (
    OFFER,
    OFFER_ACTIVE_STATUSES,
    TRANSACTION_ACTIVE_STATUSES,
    TXN_SETTLED,
    next_status,
)


PROPERTY_SOLD = "sold"
PROPERTY_ACTIVE = "active"
# Statuses a sale itself puts a listing in; only these are released when it falls through
RELEASABLE_STATUSES = ("under_offer",)

SOLD_RESPONSE = "Property has been sold"


def has_active_transaction(property_id: int) -> bool:
    """True if the property already has a transaction that is neither settled nor fallen through."""
    return (
        db.session.query(Transaction.id)
        .filter(
            Transaction.property_id == property_id,
            Transaction.status.in_(TRANSACTION_ACTIVE_STATUSES),
        )
        .first()
        is not None
    )


def has_settled_transaction(property_id: int) -> bool:
    return (
        db.session.query(Transaction.id)
        .filter(Transaction.property_id == property_id, Transaction.status == TXN_SETTLED)
        .first()
        is not None
    )


def is_sold(prop: Property) -> bool:
    """Sold by status or by a settled transaction on record."""
    return prop.status == PROPERTY_SOLD or has_settled_transaction(prop.id)


def mark_sold(property_id: int, *, sale_price_cents: int, sold_at: datetime) -> Property:
    """
    Flip a property to sold as part of settlement.

    Called inside the settle unit of work; the caller commits.
    """
    prop = get_locked(Property, property_id)
    prop.status = PROPERTY_SOLD
    prop.sold_at = sold_at
    prop.sold_price_cents = sale_price_cents
    return prop


def reject_open_offers(property_id: int, *, now: datetime, user_id: int | None = None) -> int:
    """
    Close every offer still awaiting a response on a property that just sold.

    Runs inside the settle unit of work; returns how many offers were rejected.
    """
    offers = lock_for_update(
        db.session.query(Offer).filter(
            Offer.property_id == property_id,
            Offer.status.in_(OFFER_ACTIVE_STATUSES),
        )
    ).order_by(Offer.id).all()

    for offer in offers:
        offer.status = next_status(OFFER, offer.status, "reject", entity_id=offer.id)
        offer.rejected_at = now
        offer.responded_at = now
        offer.seller_response = SOLD_RESPONSE
        append_ledger_event(
            event_type="offer.rejected",
            entity_type="offer",
            entity_id=offer.id,
            actor_user_id=user_id,
            property_id=property_id,
            occurred_at=now,
            note=SOLD_RESPONSE,
        )
    return len(offers)


def release_to_active(property_id: int) -> Property:
    """
    Put a property back on the market after a sale falls through.

    Only a listing the sale itself took off the market is released; sold,
    withdrawn and draft listings keep their status. Called inside the
    rescind/cancel unit of work; the caller commits.
    """
    prop = get_locked(Property, property_id)
    if prop.status in RELEASABLE_STATUSES:
        prop.status = PROPERTY_ACTIVE
    return prop
