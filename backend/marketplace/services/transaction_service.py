# Overview: Service-layer operations for property transactions; encapsulates business logic and database work.

"""
Transaction Lifecycle Service

================================================================================
PURPOSE: Move an accepted sale from contract to settlement (or collapse)
================================================================================

STATE MACHINE:
    pending -> exchanged -> in_cooling_off -> unconditional -> settling -> settled
                                  |
                                  +-- rescind --> fallen_through
    pending | exchanged | unconditional | settling -- cancel --> fallen_through

RULES (NON-NEGOTIABLE):
1. Cannot skip states: settled is only reachable through the full path.
2. cooling_off_ends_at is written once, by start_cooling_off, and every
   time guard reads it from the row. Nothing recomputes it.
3. rescind only while now < cooling_off_ends_at; go_unconditional only
   once now >= cooling_off_ends_at.
4. Finance/inspection flags are recorded while unconditional and gate
   start_settling; they never move the primary status.
5. sale_price_cents is immutable; no function here writes it.
6. Guards run before any attribute write. A failed guard raises and the
   unit of work rolls back.

SIDE EFFECTS:
- settle: property -> sold; offers still awaiting a response are rejected
- rescind / cancel: property -> active (unless already sold)
- every transition appends a timeline TransactionEvent and a DomainEvent

================================================================================
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from flask import current_app

from ..extensions import db
from ..models import Transaction, TransactionEvent
from ..time_utils import add_business_days, end_of_day, to_utc_z, utcnow
from ..validation import (
    NotFoundError,
    ValidationError,
    require_positive_cents,
    require_text,
)
from .concurrency import get_locked, run_with_retry
from .ledger_service import append_ledger_event
from .lifecycle_service import (
    InvalidStateTransition,
    TRANSACTION,
    next_status,
)
from .property_service import mark_sold, reject_open_offers, release_to_active


DEFAULT_COOLING_OFF_BUSINESS_DAYS = 5
DEFAULT_RESCIND_REASON = "Buyer exercised cooling-off rights"

# condition name -> (satisfied flag, timestamp column, timeline event type, title)
_CONDITION_RECORDS = {
    "finance": ("finance_approved", "finance_approved_at", "finance_approved", "Finance has been approved"),
    "building_inspection": (
        "building_inspection_passed", "building_inspection_at",
        "building_inspection_passed", "Building inspection passed",
    ),
    "pest_inspection": (
        "pest_inspection_passed", "pest_inspection_at",
        "pest_inspection_passed", "Pest inspection passed",
    ),
}


def log_event(
    txn: Transaction,
    event_type: str,
    title: str,
    *,
    description: str | None = None,
    user_id: int | None = None,
    metadata: dict[str, Any] | None = None,
    occurred_at: datetime | None = None,
) -> TransactionEvent:
    """
    Append a timeline entry for txn inside the caller's unit of work.

    Flushes but never commits.
    """
    if event_type not in TransactionEvent.EVENT_TYPES:
        raise ValidationError(f"Unknown transaction event type '{event_type}'")

    event = TransactionEvent(
        transaction_id=txn.id,
        user_id=user_id,
        event_type=event_type,
        title=title,
        description=description,
        event_metadata=metadata or {},
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(event)
    db.session.flush()
    return event


def _ledger(txn: Transaction, event_type: str, *, user_id: int | None, occurred_at: datetime, **payload) -> None:
    append_ledger_event(
        event_type=f"transaction.{event_type}",
        entity_type="transaction",
        entity_id=txn.id,
        actor_user_id=user_id,
        property_id=txn.property_id,
        occurred_at=occurred_at,
        payload=payload or None,
    )


def _log_transition(txn: Transaction, previous: str, user_id: int | None) -> None:
    current_app.logger.info(
        "Transaction %s: %s -> %s (user %s)", txn.id, previous, txn.status, user_id
    )


def calculate_cooling_off_end(exchange_date: date, business_days: int | None = None) -> datetime:
    """End of the last business day of the cooling-off window starting at exchange_date."""
    if business_days is None:
        business_days = current_app.config.get(
            "COOLING_OFF_BUSINESS_DAYS", DEFAULT_COOLING_OFF_BUSINESS_DAYS
        )
    return end_of_day(add_business_days(exchange_date, business_days))


# =============================================================================
# PRIMARY TRANSITIONS
# =============================================================================

def exchange(transaction_id: int, *, exchange_date: date | None = None, user_id: int | None = None) -> Transaction:
    """Record contract exchange (pending -> exchanged)."""
    def _op():
        txn = get_locked(Transaction, transaction_id)
        previous = txn.status
        new_status = next_status(TRANSACTION, txn.status, "exchange", entity_id=txn.id)

        now = utcnow()
        txn.status = new_status
        txn.exchange_date = exchange_date or now.date()

        log_event(txn, "exchanged", "Contracts exchanged", user_id=user_id, occurred_at=now)
        _ledger(txn, "exchanged", user_id=user_id, occurred_at=now, exchange_date=txn.exchange_date.isoformat())
        db.session.commit()
        _log_transition(txn, previous, user_id)
        return txn

    return run_with_retry(_op)


def start_cooling_off(
    transaction_id: int,
    *,
    ends_at: datetime | None = None,
    user_id: int | None = None,
) -> Transaction:
    """
    Open the statutory cooling-off window (exchanged -> in_cooling_off).

    cooling_off_ends_at defaults to the end of the
    COOLING_OFF_BUSINESS_DAYS-th business day after exchange.
    """
    def _op():
        txn = get_locked(Transaction, transaction_id)
        previous = txn.status
        new_status = next_status(TRANSACTION, txn.status, "start_cooling_off", entity_id=txn.id)

        now = utcnow()
        cooling_off_end = ends_at or calculate_cooling_off_end(txn.exchange_date or now.date())

        txn.status = new_status
        txn.cooling_off_ends_at = cooling_off_end

        log_event(
            txn,
            "cooling_off_started",
            "Cooling-off period started",
            user_id=user_id,
            metadata={"ends_at": to_utc_z(cooling_off_end)},
            occurred_at=now,
        )
        _ledger(txn, "cooling_off_started", user_id=user_id, occurred_at=now, ends_at=to_utc_z(cooling_off_end))
        db.session.commit()
        _log_transition(txn, previous, user_id)
        return txn

    return run_with_retry(_op)


def go_unconditional(transaction_id: int, *, user_id: int | None = None) -> Transaction:
    """
    Leave cooling-off (in_cooling_off -> unconditional).

    Raises:
        InvalidStateTransition: not in cooling-off, or the window has not ended
    """
    def _op():
        txn = get_locked(Transaction, transaction_id)
        previous = txn.status
        new_status = next_status(TRANSACTION, txn.status, "go_unconditional", entity_id=txn.id)

        now = utcnow()
        if txn.cooling_off_ends_at is None or now < txn.cooling_off_ends_at:
            raise InvalidStateTransition(
                TRANSACTION, txn.status, "go_unconditional",
                entity_id=txn.id,
                reason=f"cooling-off period runs until {to_utc_z(txn.cooling_off_ends_at)}",
            )

        txn.status = new_status

        log_event(txn, "unconditional", "Transaction is now unconditional", user_id=user_id, occurred_at=now)
        _ledger(txn, "unconditional", user_id=user_id, occurred_at=now)
        db.session.commit()
        _log_transition(txn, previous, user_id)
        return txn

    return run_with_retry(_op)


def start_settling(transaction_id: int, *, user_id: int | None = None) -> Transaction:
    """
    Begin settlement (unconditional -> settling).

    Every condition on the originating offer must be satisfied or waived.
    """
    def _op():
        txn = get_locked(Transaction, transaction_id)
        previous = txn.status
        new_status = next_status(TRANSACTION, txn.status, "start_settling", entity_id=txn.id)

        outstanding = txn.outstanding_conditions()
        if outstanding:
            raise InvalidStateTransition(
                TRANSACTION, txn.status, "start_settling",
                entity_id=txn.id,
                reason=f"outstanding conditions: {', '.join(outstanding)}",
            )

        now = utcnow()
        txn.status = new_status

        log_event(txn, "settling", "Settlement process started", user_id=user_id, occurred_at=now)
        _ledger(txn, "settling", user_id=user_id, occurred_at=now)
        db.session.commit()
        _log_transition(txn, previous, user_id)
        return txn

    return run_with_retry(_op)


def settle(transaction_id: int, *, user_id: int | None = None) -> Transaction:
    """
    Complete the sale (settling -> settled, terminal).

    Marks the property sold in the same unit of work and rejects any other
    offer still awaiting a response on it. From here both parties may review
    each other.
    """
    def _op():
        txn = get_locked(Transaction, transaction_id)
        previous = txn.status
        new_status = next_status(TRANSACTION, txn.status, "settle", entity_id=txn.id)

        now = utcnow()
        txn.status = new_status
        txn.settled_at = now
        mark_sold(txn.property_id, sale_price_cents=txn.sale_price_cents, sold_at=now)
        closed = reject_open_offers(txn.property_id, now=now, user_id=user_id)

        log_event(
            txn,
            "settled",
            "Property has settled",
            user_id=user_id,
            metadata={"sale_price_cents": txn.sale_price_cents, "offers_closed": closed},
            occurred_at=now,
        )
        _ledger(txn, "settled", user_id=user_id, occurred_at=now, sale_price_cents=txn.sale_price_cents)
        db.session.commit()
        _log_transition(txn, previous, user_id)
        return txn

    return run_with_retry(_op)


# =============================================================================
# FALLING THROUGH
# =============================================================================

def _fall_through(txn: Transaction, event: str, reason: str, *, user_id: int | None, now: datetime) -> None:
    txn.status = next_status(TRANSACTION, txn.status, event, entity_id=txn.id)
    txn.fallen_through_at = now
    txn.fallen_through_reason = reason
    release_to_active(txn.property_id)

    log_event(
        txn,
        "fallen_through",
        "Transaction has fallen through",
        description=reason,
        user_id=user_id,
        metadata={"reason": reason, "via": event},
        occurred_at=now,
    )
    _ledger(txn, "fallen_through", user_id=user_id, occurred_at=now, reason=reason, via=event)


def rescind(
    transaction_id: int,
    *,
    reason: str = DEFAULT_RESCIND_REASON,
    user_id: int | None = None,
) -> Transaction:
    """
    Buyer exercises cooling-off rights (in_cooling_off -> fallen_through).

    Raises:
        InvalidStateTransition: not in cooling-off, or the window has ended
    """
    def _op():
        txn = get_locked(Transaction, transaction_id)
        previous = txn.status
        next_status(TRANSACTION, txn.status, "rescind", entity_id=txn.id)

        now = utcnow()
        if not txn.can_rescind(now):
            raise InvalidStateTransition(
                TRANSACTION, txn.status, "rescind",
                entity_id=txn.id,
                reason=f"cooling-off period ended at {to_utc_z(txn.cooling_off_ends_at)}",
            )

        _fall_through(txn, "rescind", reason, user_id=user_id, now=now)
        db.session.commit()
        _log_transition(txn, previous, user_id)
        return txn

    return run_with_retry(_op)


def cancel(transaction_id: int, reason: str, *, user_id: int | None = None) -> Transaction:
    """
    Let a sale fall through before settlement.

    Allowed from pending, exchanged, unconditional and settling; a
    transaction in cooling-off leaves through rescind instead.
    """
    reason = require_text(reason, "reason", max_length=2000)

    def _op():
        txn = get_locked(Transaction, transaction_id)
        previous = txn.status
        _fall_through(txn, "cancel", reason, user_id=user_id, now=utcnow())
        db.session.commit()
        _log_transition(txn, previous, user_id)
        return txn

    return run_with_retry(_op)


# =============================================================================
# CONDITIONS
# =============================================================================

def _record_condition(transaction_id: int, condition: str, user_id: int | None) -> Transaction:
    satisfied_flag, at_column, event_type, title = _CONDITION_RECORDS[condition]

    def _op():
        txn = get_locked(Transaction, transaction_id)
        next_status(TRANSACTION, txn.status, "record_condition", entity_id=txn.id)
        if getattr(txn, satisfied_flag):
            return txn

        now = utcnow()
        setattr(txn, satisfied_flag, True)
        setattr(txn, at_column, now)

        log_event(txn, event_type, title, user_id=user_id, occurred_at=now)
        _ledger(txn, event_type, user_id=user_id, occurred_at=now)
        db.session.commit()
        current_app.logger.info("Transaction %s: %s recorded", txn.id, event_type)
        return txn

    return run_with_retry(_op)


def approve_finance(transaction_id: int, *, user_id: int | None = None) -> Transaction:
    """Record finance approval. Idempotent; only while unconditional."""
    return _record_condition(transaction_id, "finance", user_id)


def pass_building_inspection(transaction_id: int, *, user_id: int | None = None) -> Transaction:
    """Record a passed building inspection. Idempotent; only while unconditional."""
    return _record_condition(transaction_id, "building_inspection", user_id)


def pass_pest_inspection(transaction_id: int, *, user_id: int | None = None) -> Transaction:
    """Record a passed pest inspection. Idempotent; only while unconditional."""
    return _record_condition(transaction_id, "pest_inspection", user_id)


def waive_condition(transaction_id: int, condition: str, *, user_id: int | None = None) -> Transaction:
    """
    Waive one of the offer's conditions so it no longer gates settlement.

    Args:
        condition: finance, building_inspection or pest_inspection
    """
    waived_flags = {name: waived for name, _, _, waived in Transaction.CONDITIONS}
    if condition not in waived_flags:
        raise ValidationError(f"condition must be one of: {', '.join(waived_flags)}")

    def _op():
        txn = get_locked(Transaction, transaction_id)
        next_status(TRANSACTION, txn.status, "record_condition", entity_id=txn.id)
        if getattr(txn, waived_flags[condition]):
            return txn

        now = utcnow()
        setattr(txn, waived_flags[condition], True)

        log_event(
            txn,
            "condition_waived",
            f"Condition waived: {condition.replace('_', ' ')}",
            user_id=user_id,
            metadata={"condition": condition},
            occurred_at=now,
        )
        _ledger(txn, "condition_waived", user_id=user_id, occurred_at=now, condition=condition)
        db.session.commit()
        return txn

    return run_with_retry(_op)


# =============================================================================
# DEPOSIT & TIMELINE
# =============================================================================

def record_deposit_payment(transaction_id: int, amount_cents: int, *, user_id: int | None = None) -> Transaction:
    """Add a deposit instalment to an active transaction."""
    require_positive_cents(amount_cents, "amount_cents")

    def _op():
        txn = get_locked(Transaction, transaction_id)
        if not txn.is_active:
            raise InvalidStateTransition(
                TRANSACTION, txn.status, "record_deposit_payment", entity_id=txn.id
            )

        now = utcnow()
        txn.deposit_paid_cents = (txn.deposit_paid_cents or 0) + amount_cents

        log_event(
            txn,
            "deposit_paid",
            "Deposit payment received",
            user_id=user_id,
            metadata={"amount_cents": amount_cents, "total_paid_cents": txn.deposit_paid_cents},
            occurred_at=now,
        )
        db.session.commit()
        return txn

    return run_with_retry(_op)


def add_timeline_note(
    transaction_id: int,
    title: str,
    *,
    description: str | None = None,
    user_id: int | None = None,
) -> TransactionEvent:
    """Custom timeline entry (conveyancer notes, document uploads...)."""
    title = require_text(title, "title", max_length=255)

    def _op():
        txn = get_locked(Transaction, transaction_id)
        event = log_event(txn, "custom", title, description=description, user_id=user_id)
        db.session.commit()
        return event

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_transaction(transaction_id: int) -> Transaction:
    txn = db.session.get(Transaction, transaction_id)
    if txn is None:
        raise NotFoundError(f"Transaction {transaction_id} not found")
    return txn


def get_timeline(transaction_id: int) -> list[TransactionEvent]:
    get_transaction(transaction_id)
    return (
        db.session.query(TransactionEvent)
        .filter_by(transaction_id=transaction_id)
        .order_by(TransactionEvent.occurred_at.asc(), TransactionEvent.id.asc())
        .all()
    )


def list_transactions(*, status: str | None = None, limit: int = 50) -> list[Transaction]:
    q = db.session.query(Transaction)
    if status is not None:
        q = q.filter(Transaction.status == status)
    return q.order_by(Transaction.created_at.desc(), Transaction.id.desc()).limit(limit).all()
