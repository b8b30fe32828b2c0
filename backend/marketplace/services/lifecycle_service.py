# Overview: Transition tables for offers, transactions, reviews and disputes; pure functions, no database work.

"""
Marketplace Lifecycle Rules

================================================================================
PURPOSE: One authoritative transition table per entity
================================================================================

Every status change in the services goes through next_status(). Services
lock the row, ask this module whether (current status, event) is legal, and
only then write. Nothing here touches the database, so the rules can be
tested (and random-walked) without an app context.

OFFER:
    draft -> submitted -> viewed -> accepted | rejected | countered
    withdrawn / expired reachable from any non-terminal status
    Terminal: accepted, rejected, withdrawn, expired

TRANSACTION:
    pending -> exchanged -> in_cooling_off -> unconditional -> settling -> settled
    in_cooling_off -> fallen_through          (rescind)
    pending | exchanged | unconditional | settling -> fallen_through   (cancel)
    Terminal: settled, fallen_through

REVIEW:
    held -> published
    published | held -> held                  (admin re-hold)
    any -> removed                            (idempotent)

REVIEW DISPUTE:
    pending -> under_review -> upheld | rejected

================================================================================
"""

from __future__ import annotations

from datetime import datetime, timedelta


# Offer statuses
OFFER_DRAFT = "draft"
OFFER_SUBMITTED = "submitted"
OFFER_VIEWED = "viewed"
OFFER_COUNTERED = "countered"
OFFER_ACCEPTED = "accepted"
OFFER_REJECTED = "rejected"
OFFER_WITHDRAWN = "withdrawn"
OFFER_EXPIRED = "expired"

OFFER_STATUSES = (
    OFFER_DRAFT, OFFER_SUBMITTED, OFFER_VIEWED, OFFER_COUNTERED,
    OFFER_ACCEPTED, OFFER_REJECTED, OFFER_WITHDRAWN, OFFER_EXPIRED,
)
OFFER_ACTIVE_STATUSES = (OFFER_SUBMITTED, OFFER_VIEWED)
OFFER_TERMINAL_STATUSES = (OFFER_ACCEPTED, OFFER_REJECTED, OFFER_WITHDRAWN, OFFER_EXPIRED)

# Transaction statuses
TXN_PENDING = "pending"
TXN_EXCHANGED = "exchanged"
TXN_IN_COOLING_OFF = "in_cooling_off"
TXN_UNCONDITIONAL = "unconditional"
TXN_SETTLING = "settling"
TXN_SETTLED = "settled"
TXN_FALLEN_THROUGH = "fallen_through"

TRANSACTION_STATUSES = (
    TXN_PENDING, TXN_EXCHANGED, TXN_IN_COOLING_OFF, TXN_UNCONDITIONAL,
    TXN_SETTLING, TXN_SETTLED, TXN_FALLEN_THROUGH,
)
TRANSACTION_TERMINAL_STATUSES = (TXN_SETTLED, TXN_FALLEN_THROUGH)
TRANSACTION_ACTIVE_STATUSES = tuple(
    s for s in TRANSACTION_STATUSES if s not in TRANSACTION_TERMINAL_STATUSES
)

# Review statuses (disputed is an overlay flag on the review, not a status)
REVIEW_HELD = "held"
REVIEW_PUBLISHED = "published"
REVIEW_REMOVED = "removed"

REVIEW_STATUSES = (REVIEW_HELD, REVIEW_PUBLISHED, REVIEW_REMOVED)

# Dispute statuses
DISPUTE_PENDING = "pending"
DISPUTE_UNDER_REVIEW = "under_review"
DISPUTE_UPHELD = "upheld"
DISPUTE_REJECTED = "rejected"

DISPUTE_STATUSES = (DISPUTE_PENDING, DISPUTE_UNDER_REVIEW, DISPUTE_UPHELD, DISPUTE_REJECTED)
DISPUTE_UNRESOLVED_STATUSES = (DISPUTE_PENDING, DISPUTE_UNDER_REVIEW)


OFFER = "offer"
TRANSACTION = "transaction"
REVIEW = "review"
DISPUTE = "review_dispute"

_OFFER_OPEN = frozenset({OFFER_DRAFT, OFFER_SUBMITTED, OFFER_VIEWED, OFFER_COUNTERED})
_OFFER_RESPONDABLE = frozenset(OFFER_ACTIVE_STATUSES)

# machine -> event -> (allowed source statuses, target status)
TRANSITIONS: dict[str, dict[str, tuple[frozenset[str], str]]] = {
    OFFER: {
        "submit": (frozenset({OFFER_DRAFT}), OFFER_SUBMITTED),
        "view": (frozenset({OFFER_SUBMITTED}), OFFER_VIEWED),
        "accept": (_OFFER_RESPONDABLE, OFFER_ACCEPTED),
        "reject": (_OFFER_RESPONDABLE, OFFER_REJECTED),
        "counter": (_OFFER_RESPONDABLE, OFFER_COUNTERED),
        "withdraw": (_OFFER_OPEN, OFFER_WITHDRAWN),
        "expire": (_OFFER_OPEN, OFFER_EXPIRED),
    },
    TRANSACTION: {
        "exchange": (frozenset({TXN_PENDING}), TXN_EXCHANGED),
        "start_cooling_off": (frozenset({TXN_EXCHANGED}), TXN_IN_COOLING_OFF),
        "rescind": (frozenset({TXN_IN_COOLING_OFF}), TXN_FALLEN_THROUGH),
        "go_unconditional": (frozenset({TXN_IN_COOLING_OFF}), TXN_UNCONDITIONAL),
        # Condition flags are recorded without moving the primary status
        "record_condition": (frozenset({TXN_UNCONDITIONAL}), TXN_UNCONDITIONAL),
        "start_settling": (frozenset({TXN_UNCONDITIONAL}), TXN_SETTLING),
        "settle": (frozenset({TXN_SETTLING}), TXN_SETTLED),
        "cancel": (
            frozenset({TXN_PENDING, TXN_EXCHANGED, TXN_UNCONDITIONAL, TXN_SETTLING}),
            TXN_FALLEN_THROUGH,
        ),
    },
    REVIEW: {
        "publish": (frozenset({REVIEW_HELD}), REVIEW_PUBLISHED),
        "hold": (frozenset({REVIEW_PUBLISHED, REVIEW_HELD}), REVIEW_HELD),
        "remove": (frozenset(REVIEW_STATUSES), REVIEW_REMOVED),
    },
    DISPUTE: {
        "start_review": (frozenset({DISPUTE_PENDING}), DISPUTE_UNDER_REVIEW),
        "uphold": (frozenset({DISPUTE_UNDER_REVIEW}), DISPUTE_UPHELD),
        "reject": (frozenset({DISPUTE_UNDER_REVIEW}), DISPUTE_REJECTED),
    },
}

TERMINAL_STATUSES: dict[str, frozenset[str]] = {
    OFFER: frozenset(OFFER_TERMINAL_STATUSES),
    TRANSACTION: frozenset(TRANSACTION_TERMINAL_STATUSES),
    REVIEW: frozenset({REVIEW_REMOVED}),
    DISPUTE: frozenset({DISPUTE_UPHELD, DISPUTE_REJECTED}),
}


class LifecycleError(ValueError):
    """
    Raised when a lifecycle rule is violated.

    This is a domain error, not a technical error. It indicates
    that the caller attempted an operation that violates business rules.
    """
    pass


class InvalidStateTransition(LifecycleError):
    """
    A transition guard failed: wrong current status, or a time window not met.

    Carries enough context for the caller to explain the refusal.
    """

    def __init__(
        self,
        machine: str,
        current_state: str,
        event: str,
        *,
        entity_id: int | None = None,
        reason: str | None = None,
    ):
        self.machine = machine
        self.current_state = current_state
        self.event = event
        self.entity_id = entity_id
        self.reason = reason

        subject = machine if entity_id is None else f"{machine} {entity_id}"
        message = f"Cannot {event} {subject}: current status is '{current_state}'"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


def _events_for(machine: str) -> dict[str, tuple[frozenset[str], str]]:
    try:
        return TRANSITIONS[machine]
    except KeyError:
        raise LifecycleError(f"Unknown lifecycle '{machine}'") from None


def next_status(machine: str, current: str, event: str, *, entity_id: int | None = None) -> str:
    """
    Resolve (current status, event) to the new status.

    Raises:
        LifecycleError: If the machine or event is unknown
        InvalidStateTransition: If the event is not allowed from current
    """
    events = _events_for(machine)
    if event not in events:
        raise LifecycleError(f"Unknown event '{event}' for {machine}")

    sources, target = events[event]
    if current not in sources:
        raise InvalidStateTransition(machine, current, event, entity_id=entity_id)
    return target


def can_transition(machine: str, current: str, event: str) -> bool:
    sources, _ = _events_for(machine).get(event, (frozenset(), None))
    return current in sources


def allowed_events(machine: str, current: str) -> list[str]:
    """Events legal from current, in table order."""
    return [
        event
        for event, (sources, _) in _events_for(machine).items()
        if current in sources
    ]


def is_terminal(machine: str, status: str) -> bool:
    return status in TERMINAL_STATUSES[machine]


def initial_review_status(
    overall_rating: int,
    now: datetime,
    *,
    negative_threshold: int = 2,
    hold_hours: int = 48,
) -> tuple[str, datetime | None]:
    """
    Decide the status a new review starts in.

    Ratings at or below negative_threshold are held until now + hold_hours;
    everything else is published immediately.
    """
    if overall_rating <= negative_threshold:
        return REVIEW_HELD, now + timedelta(hours=hold_hours)
    return REVIEW_PUBLISHED, None
