# Overview: Service-layer operations for offers; encapsulates business logic and database work.

"""
Offer Lifecycle Service

WHY: An offer is the only way into a sale. Acceptance is the one offer
transition with a cross-entity effect: it opens the Transaction, and the two
writes commit together or not at all.

DESIGN PRINCIPLES:
- Every transition is lock -> re-read -> next_status() -> write -> commit,
  inside run_with_retry. A caller that loses a race re-reads the winner's
  status and gets InvalidStateTransition instead of overwriting it.
- Counter-offers are new Offer rows pointing at their parent; the parent
  records 'countered' and stops being answerable.
- Expiry is never fired internally. expire_offer() is an idempotent attempt
  for a scheduler; it returns False when there is nothing to do.
- Offers never change the property status.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Entity, Offer, Property, Transaction, User
from ..time_utils import utcnow
from ..validation import (
    ConflictError,
    NotEligibleError,
    NotFoundError,
    ValidationError,
    require_choice,
    require_positive_cents,
    require_positive_int,
)
from .concurrency import get_locked, run_with_retry
from .ledger_service import append_ledger_event
from .lifecycle_service import (
    InvalidStateTransition,
    OFFER,
    OFFER_ACTIVE_STATUSES,
    OFFER_DRAFT,
    OFFER_SUBMITTED,
    TXN_PENDING,
    next_status,
)
from .property_service import has_active_transaction, is_sold
from .transaction_service import log_event


DEFAULT_OFFER_EXPIRY_DAYS = 5
DEFAULT_SETTLEMENT_DAYS = 42


def _expiry_days() -> int:
    return current_app.config.get("OFFER_EXPIRY_DAYS", DEFAULT_OFFER_EXPIRY_DAYS)


def _require_recipient(offer: Offer, user_id: int | None) -> None:
    if user_id is not None and user_id != offer.recipient_user_id:
        raise NotEligibleError(
            f"User {user_id} cannot respond to offer {offer.id}; only the recipient may"
        )


def _require_not_lapsed(offer: Offer, event: str, now: datetime) -> None:
    # A deadline that passed before the sweep ran still closes the offer
    if offer.expires_at is not None and offer.expires_at <= now:
        raise InvalidStateTransition(
            OFFER, offer.status, event, entity_id=offer.id, reason="offer has expired"
        )


def _validate_deposit(deposit_cents: int | None, amount_cents: int) -> None:
    if deposit_cents is None:
        return
    require_positive_cents(deposit_cents, "deposit_cents")
    if deposit_cents > amount_cents:
        raise ValidationError("deposit_cents cannot exceed amount_cents")


# =============================================================================
# CREATION
# =============================================================================

def create_offer(
    property_id: int,
    buyer_id: int,
    *,
    amount_cents: int,
    finance_type: str = "cash",
    settlement_days: int = DEFAULT_SETTLEMENT_DAYS,
    deposit_cents: int | None = None,
    finance_lender: str | None = None,
    buyer_entity_id: int | None = None,
    subject_to_finance: bool = False,
    subject_to_building_inspection: bool = False,
    subject_to_pest_inspection: bool = False,
    other_conditions: str | None = None,
) -> Offer:
    """
    Create a draft offer on a property.

    Raises:
        ValidationError: amount, deposit, finance type or settlement days invalid
        NotFoundError: property or buyer missing
        NotEligibleError: property not accepting offers, buyer owns it, or
            buyer_entity_id belongs to someone else
    """
    require_positive_cents(amount_cents, "amount_cents")
    require_choice(finance_type, Offer.FINANCE_TYPES, "finance_type")
    require_positive_int(settlement_days, "settlement_days")
    _validate_deposit(deposit_cents, amount_cents)

    def _op():
        prop = db.session.get(Property, property_id)
        if prop is None:
            raise NotFoundError(f"Property {property_id} not found")
        if db.session.get(User, buyer_id) is None:
            raise NotFoundError(f"User {buyer_id} not found")

        if not prop.can_receive_offers:
            raise NotEligibleError(f"Property {property_id} is not accepting offers (status '{prop.status}')")
        if prop.owner_id == buyer_id:
            raise NotEligibleError("Buyer cannot make an offer on their own property")

        if buyer_entity_id is not None:
            entity = db.session.get(Entity, buyer_entity_id)
            if entity is None or entity.user_id != buyer_id:
                raise NotEligibleError(f"Entity {buyer_entity_id} does not belong to user {buyer_id}")

        offer = Offer(
            property_id=property_id,
            buyer_id=buyer_id,
            buyer_entity_id=buyer_entity_id,
            made_by_user_id=buyer_id,
            amount_cents=amount_cents,
            deposit_cents=deposit_cents,
            finance_type=finance_type,
            finance_lender=finance_lender,
            settlement_days=settlement_days,
            subject_to_finance=subject_to_finance,
            subject_to_building_inspection=subject_to_building_inspection,
            subject_to_pest_inspection=subject_to_pest_inspection,
            other_conditions=other_conditions,
            status=OFFER_DRAFT,
        )
        db.session.add(offer)
        db.session.commit()
        return offer

    return run_with_retry(_op)


# =============================================================================
# BUYER TRANSITIONS
# =============================================================================

def submit_offer(offer_id: int) -> Offer:
    """
    Submit a draft offer (draft -> submitted).

    Requires a positive amount and a purchasing entity on the buyer's
    profile. Sets submitted_at and the expiry deadline.
    """
    def _op():
        offer = get_locked(Offer, offer_id)
        new_status = next_status(OFFER, offer.status, "submit", entity_id=offer.id)

        if not offer.amount_cents or offer.amount_cents <= 0:
            raise ValidationError("amount_cents must be greater than 0")

        buyer = db.session.get(User, offer.buyer_id)
        if not buyer.has_purchasing_entity:
            raise NotEligibleError(
                f"User {offer.buyer_id} needs a purchasing entity before submitting an offer"
            )
        if offer.buyer_entity_id is None:
            entity = db.session.query(Entity).filter_by(user_id=offer.buyer_id).order_by(Entity.id).first()
            offer.buyer_entity_id = entity.id

        now = utcnow()
        offer.status = new_status
        offer.submitted_at = now
        offer.expires_at = now + timedelta(days=_expiry_days())

        append_ledger_event(
            event_type="offer.submitted",
            entity_type="offer",
            entity_id=offer.id,
            actor_user_id=offer.made_by_user_id,
            property_id=offer.property_id,
            occurred_at=now,
            payload={"amount_cents": offer.amount_cents},
        )
        db.session.commit()
        current_app.logger.info("Offer %s submitted on property %s", offer.id, offer.property_id)
        return offer

    return run_with_retry(_op)


def withdraw_offer(offer_id: int, user_id: int) -> Offer:
    """
    Withdraw an offer (any non-terminal status -> withdrawn).

    Only the offer's author may withdraw it.

    Raises:
        NotEligibleError: user is not the author
        InvalidStateTransition: offer already finalized
    """
    def _op():
        offer = get_locked(Offer, offer_id)
        if offer.made_by_user_id != user_id:
            raise NotEligibleError(f"Only the author of offer {offer.id} may withdraw it")

        new_status = next_status(OFFER, offer.status, "withdraw", entity_id=offer.id)
        now = utcnow()
        offer.status = new_status
        offer.withdrawn_at = now

        append_ledger_event(
            event_type="offer.withdrawn",
            entity_type="offer",
            entity_id=offer.id,
            actor_user_id=user_id,
            property_id=offer.property_id,
            occurred_at=now,
        )
        db.session.commit()
        current_app.logger.info("Offer %s withdrawn by user %s", offer.id, user_id)
        return offer

    return run_with_retry(_op)


# =============================================================================
# RECIPIENT TRANSITIONS
# =============================================================================

def mark_offer_viewed(offer_id: int, viewer_user_id: int) -> Offer:
    """
    Record that the recipient opened the offer (submitted -> viewed).

    Idempotent: no-op when already viewed, finalized, or when the viewer is
    the offer's own author.
    """
    def _op():
        offer = get_locked(Offer, offer_id)
        if offer.status != OFFER_SUBMITTED or viewer_user_id == offer.made_by_user_id:
            return offer

        now = utcnow()
        offer.status = next_status(OFFER, offer.status, "view", entity_id=offer.id)
        offer.viewed_at = now

        append_ledger_event(
            event_type="offer.viewed",
            entity_type="offer",
            entity_id=offer.id,
            actor_user_id=viewer_user_id,
            property_id=offer.property_id,
            occurred_at=now,
        )
        db.session.commit()
        return offer

    return run_with_retry(_op)


def accept_offer(
    offer_id: int,
    *,
    seller_response: str | None = None,
    user_id: int | None = None,
) -> Transaction:
    """
    Accept an offer and open its Transaction in one unit of work.

    The offer moves to accepted and exactly one Transaction is created with
    sale_price_cents = amount_cents and settlement_date = today +
    settlement_days. If anything fails, neither write survives.

    Returns:
        The new Transaction (status pending)

    Raises:
        InvalidStateTransition: offer not submitted/viewed, or lapsed
        ConflictError: property already has an active transaction, or is sold
        NotEligibleError: user_id given and is not the recipient
    """
    def _op():
        offer = get_locked(Offer, offer_id)
        new_status = next_status(OFFER, offer.status, "accept", entity_id=offer.id)
        _require_recipient(offer, user_id)

        now = utcnow()
        _require_not_lapsed(offer, "accept", now)

        prop = get_locked(Property, offer.property_id)
        if is_sold(prop):
            raise ConflictError(f"Property {prop.id} has already been sold")
        if has_active_transaction(prop.id):
            raise ConflictError(f"Property {prop.id} already has an active transaction")

        offer.status = new_status
        offer.accepted_at = now
        offer.responded_at = now
        offer.seller_response = seller_response

        txn = Transaction(
            property_id=prop.id,
            offer_id=offer.id,
            buyer_id=offer.buyer_id,
            seller_id=prop.owner_id,
            buyer_entity_id=offer.buyer_entity_id,
            seller_entity_id=prop.owner_entity_id,
            sale_price_cents=offer.amount_cents,
            deposit_cents=offer.deposit_cents,
            deposit_paid_cents=0,
            status=TXN_PENDING,
            settlement_date=now.date() + timedelta(days=offer.settlement_days),
        )
        db.session.add(txn)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise ConflictError(f"Property {prop.id} already has an active transaction") from exc

        log_event(
            txn,
            "created",
            "Offer accepted",
            user_id=user_id,
            metadata={"offer_id": offer.id, "sale_price_cents": txn.sale_price_cents},
            occurred_at=now,
        )
        append_ledger_event(
            event_type="offer.accepted",
            entity_type="offer",
            entity_id=offer.id,
            actor_user_id=user_id,
            property_id=prop.id,
            occurred_at=now,
            payload={"transaction_id": txn.id},
        )
        append_ledger_event(
            event_type="transaction.created",
            entity_type="transaction",
            entity_id=txn.id,
            actor_user_id=user_id,
            property_id=prop.id,
            occurred_at=now,
            payload={"offer_id": offer.id, "sale_price_cents": txn.sale_price_cents},
        )

        db.session.commit()
        current_app.logger.info(
            "Offer %s accepted; transaction %s opened for property %s",
            offer.id, txn.id, prop.id,
        )
        return txn

    return run_with_retry(_op)


def reject_offer(
    offer_id: int,
    *,
    seller_response: str | None = None,
    user_id: int | None = None,
) -> Offer:
    """Reject an offer (submitted/viewed -> rejected, terminal)."""
    def _op():
        offer = get_locked(Offer, offer_id)
        new_status = next_status(OFFER, offer.status, "reject", entity_id=offer.id)
        _require_recipient(offer, user_id)

        now = utcnow()
        offer.status = new_status
        offer.rejected_at = now
        offer.responded_at = now
        offer.seller_response = seller_response

        append_ledger_event(
            event_type="offer.rejected",
            entity_type="offer",
            entity_id=offer.id,
            actor_user_id=user_id,
            property_id=offer.property_id,
            occurred_at=now,
        )
        db.session.commit()
        current_app.logger.info("Offer %s rejected", offer.id)
        return offer

    return run_with_retry(_op)


def counter_offer(
    offer_id: int,
    counter_amount_cents: int,
    *,
    settlement_days: int | None = None,
    subject_to_finance: bool | None = None,
    subject_to_building_inspection: bool | None = None,
    subject_to_pest_inspection: bool | None = None,
    seller_response: str | None = None,
    user_id: int | None = None,
) -> Offer:
    """
    Answer an offer with a counter-offer.

    The parent moves to countered; a child offer is created already
    submitted, authored by the parent's recipient and directed back at the
    other party. Terms not given are carried over from the parent.

    Returns:
        The new child Offer

    Raises:
        ValidationError: counter amount not positive (nothing is written)
        InvalidStateTransition: parent not submitted/viewed, or lapsed
    """
    require_positive_cents(counter_amount_cents, "counter_amount_cents")
    if settlement_days is not None:
        require_positive_int(settlement_days, "settlement_days")

    def _op():
        parent = get_locked(Offer, offer_id)
        new_status = next_status(OFFER, parent.status, "counter", entity_id=parent.id)
        _require_recipient(parent, user_id)

        now = utcnow()
        _require_not_lapsed(parent, "counter", now)

        deposit_cents = parent.deposit_cents
        if deposit_cents is not None and deposit_cents > counter_amount_cents:
            deposit_cents = counter_amount_cents

        parent.status = new_status
        parent.responded_at = now
        parent.seller_response = seller_response

        child = Offer(
            property_id=parent.property_id,
            buyer_id=parent.buyer_id,
            buyer_entity_id=parent.buyer_entity_id,
            made_by_user_id=parent.recipient_user_id,
            parent_offer_id=parent.id,
            amount_cents=counter_amount_cents,
            deposit_cents=deposit_cents,
            finance_type=parent.finance_type,
            finance_lender=parent.finance_lender,
            settlement_days=settlement_days if settlement_days is not None else parent.settlement_days,
            subject_to_finance=(
                parent.subject_to_finance if subject_to_finance is None else subject_to_finance
            ),
            subject_to_building_inspection=(
                parent.subject_to_building_inspection
                if subject_to_building_inspection is None else subject_to_building_inspection
            ),
            subject_to_pest_inspection=(
                parent.subject_to_pest_inspection
                if subject_to_pest_inspection is None else subject_to_pest_inspection
            ),
            other_conditions=parent.other_conditions,
            status=OFFER_SUBMITTED,
            submitted_at=now,
            expires_at=now + timedelta(days=_expiry_days()),
        )
        db.session.add(child)
        db.session.flush()

        append_ledger_event(
            event_type="offer.countered",
            entity_type="offer",
            entity_id=parent.id,
            actor_user_id=child.made_by_user_id,
            property_id=parent.property_id,
            occurred_at=now,
            payload={"counter_offer_id": child.id, "amount_cents": counter_amount_cents},
        )
        db.session.commit()
        current_app.logger.info(
            "Offer %s countered with offer %s (%s cents)", parent.id, child.id, counter_amount_cents
        )
        return child

    return run_with_retry(_op)


# =============================================================================
# EXPIRY (scheduler entry points)
# =============================================================================

def expire_offer(offer_id: int, *, now: datetime | None = None) -> bool:
    """
    Attempt to expire one offer.

    Returns True if the offer moved to expired, False if it is already
    finalized or its deadline has not passed. Safe to call repeatedly.
    """
    def _op():
        offer = get_locked(Offer, offer_id)
        as_of = now or utcnow()
        if offer.is_finalized:
            return False
        if offer.expires_at is None or offer.expires_at > as_of:
            return False

        offer.status = next_status(OFFER, offer.status, "expire", entity_id=offer.id)
        offer.expired_at = as_of

        append_ledger_event(
            event_type="offer.expired",
            entity_type="offer",
            entity_id=offer.id,
            property_id=offer.property_id,
            occurred_at=as_of,
        )
        db.session.commit()
        return True

    return run_with_retry(_op)


def expire_overdue_offers(*, now: datetime | None = None) -> int:
    """
    Sweep: expire every awaiting-response offer whose deadline has passed.

    Each offer is its own unit of work; returns how many were expired.
    """
    as_of = now or utcnow()
    overdue_ids = [
        row.id
        for row in db.session.query(Offer.id)
        .filter(
            Offer.status.in_(OFFER_ACTIVE_STATUSES),
            Offer.expires_at.isnot(None),
            Offer.expires_at <= as_of,
        )
        .order_by(Offer.id)
        .all()
    ]

    expired = 0
    for offer_id in overdue_ids:
        if expire_offer(offer_id, now=as_of):
            expired += 1

    current_app.logger.info("Offer expiry sweep: %s of %s overdue offers expired", expired, len(overdue_ids))
    return expired


# =============================================================================
# QUERIES
# =============================================================================

def get_offer(offer_id: int) -> Offer:
    offer = db.session.get(Offer, offer_id)
    if offer is None:
        raise NotFoundError(f"Offer {offer_id} not found")
    return offer


def get_offer_chain(offer_id: int) -> list[Offer]:
    """Negotiation history from the buyer's original offer down to offer_id."""
    chain = []
    seen = set()
    offer = get_offer(offer_id)
    while offer is not None and offer.id not in seen:
        seen.add(offer.id)
        chain.append(offer)
        offer = offer.parent_offer
    chain.reverse()
    return chain


def list_offers_for_property(property_id: int, *, status: str | None = None, limit: int = 200) -> list[Offer]:
    q = db.session.query(Offer).filter(Offer.property_id == property_id)
    if status is not None:
        q = q.filter(Offer.status == status)
    return q.order_by(Offer.created_at.desc(), Offer.id.desc()).limit(limit).all()
