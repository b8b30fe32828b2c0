# Overview: Service-layer operations for review moderation; encapsulates business logic and database work.

"""
Review Moderation Service

WHY: Reviews are only allowed between parties to a settled sale, and
negative reviews sit in a hold window before anyone sees them.

RULES:
- Creation requires a settled Transaction between reviewer and reviewee.
- Initial status comes from initial_review_status(): ratings at or below
  REVIEW_NEGATIVE_THRESHOLD are held for REVIEW_HOLD_HOURS, the rest are
  published immediately.
- publish_review() before the hold expires returns False and writes nothing.
  "Not yet" is an expected answer for the sweep, not an error.
- remove_review() is idempotent; removed is terminal.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from flask import current_app
from sqlalchemy import and_, func, or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Review, Transaction, User
from ..time_utils import utcnow
from ..validation import (
    ConflictError,
    NotEligibleError,
    NotFoundError,
    ValidationError,
    require_rating,
    require_text,
)
from .concurrency import get_locked, run_with_retry
from .ledger_service import append_ledger_event
from .lifecycle_service import (
    REVIEW,
    REVIEW_HELD,
    REVIEW_PUBLISHED,
    REVIEW_REMOVED,
    TXN_SETTLED,
    initial_review_status,
    next_status,
)


DEFAULT_NEGATIVE_THRESHOLD = 2
DEFAULT_HOLD_HOURS = 48
AUTO_HOLD_REASON = "Automatic hold for negative review"


def require_admin(user_id: int | None) -> User:
    """Moderation actions are limited to admin users."""
    user = db.session.get(User, user_id) if user_id is not None else None
    if user is None or not user.is_admin:
        raise NotEligibleError(f"User {user_id} is not a moderator")
    return user


def _validate_category_ratings(category_ratings: dict[str, Any] | None, reviewee_role: str) -> dict[str, int]:
    if not category_ratings:
        return {}
    if not isinstance(category_ratings, dict):
        raise ValidationError("category_ratings must be a mapping of category to rating")

    available = Review.CATEGORY_RATINGS[reviewee_role]
    cleaned = {}
    for category, rating in category_ratings.items():
        if category not in available:
            raise ValidationError(f"{category} is not a valid category for {reviewee_role}")
        cleaned[category] = require_rating(rating, f"category_ratings.{category}")
    return cleaned


def find_settled_transaction(user_a_id: int, user_b_id: int) -> Transaction | None:
    """Most recent settled sale with the two users on opposite sides."""
    return (
        db.session.query(Transaction)
        .filter(
            Transaction.status == TXN_SETTLED,
            or_(
                and_(Transaction.buyer_id == user_a_id, Transaction.seller_id == user_b_id),
                and_(Transaction.buyer_id == user_b_id, Transaction.seller_id == user_a_id),
            ),
        )
        .order_by(Transaction.settled_at.desc(), Transaction.id.desc())
        .first()
    )


def has_settled_transaction_between(user_a_id: int, user_b_id: int) -> bool:
    return find_settled_transaction(user_a_id, user_b_id) is not None


def _ledger(review: Review, event_type: str, *, user_id: int | None, occurred_at: datetime, **payload) -> None:
    append_ledger_event(
        event_type=f"review.{event_type}",
        entity_type="review",
        entity_id=review.id,
        actor_user_id=user_id,
        occurred_at=occurred_at,
        payload=payload or None,
    )


# =============================================================================
# CREATION
# =============================================================================

def create_review(
    reviewer_id: int,
    reviewee_id: int,
    *,
    overall_rating: int,
    body: str,
    title: str | None = None,
    category_ratings: dict[str, Any] | None = None,
    transaction_id: int | None = None,
) -> Review:
    """
    Create a review of the counterparty to a settled sale.

    Raises:
        ValidationError: rating, title, body or category ratings invalid
        NotEligibleError: self-review, or no settled transaction between the two
        ConflictError: reviewer already reviewed this transaction
    """
    require_rating(overall_rating)
    body = require_text(body, "body", min_length=10, max_length=2000)
    title = require_text(title, "title", max_length=100, required=False)
    if reviewer_id == reviewee_id:
        raise NotEligibleError("Reviewer cannot review themselves")

    def _op():
        if transaction_id is not None:
            txn = db.session.get(Transaction, transaction_id)
            if (
                txn is None
                or txn.status != TXN_SETTLED
                or {txn.buyer_id, txn.seller_id} != {reviewer_id, reviewee_id}
            ):
                raise NotEligibleError(
                    f"Transaction {transaction_id} is not a settled sale between users {reviewer_id} and {reviewee_id}"
                )
        else:
            txn = find_settled_transaction(reviewer_id, reviewee_id)
            if txn is None:
                raise NotEligibleError(
                    f"Users {reviewer_id} and {reviewee_id} have no settled transaction together"
                )

        existing = db.session.query(Review.id).filter_by(transaction_id=txn.id, reviewer_id=reviewer_id).first()
        if existing is not None:
            raise ConflictError(f"User {reviewer_id} has already reviewed transaction {txn.id}")

        reviewee_role = "buyer" if txn.buyer_id == reviewee_id else "seller"
        ratings = _validate_category_ratings(category_ratings, reviewee_role)

        now = utcnow()
        status, hold_until = initial_review_status(
            overall_rating,
            now,
            negative_threshold=current_app.config.get("REVIEW_NEGATIVE_THRESHOLD", DEFAULT_NEGATIVE_THRESHOLD),
            hold_hours=current_app.config.get("REVIEW_HOLD_HOURS", DEFAULT_HOLD_HOURS),
        )

        review = Review(
            reviewer_id=reviewer_id,
            reviewee_id=reviewee_id,
            transaction_id=txn.id,
            reviewee_role=reviewee_role,
            overall_rating=overall_rating,
            category_ratings=ratings,
            title=title,
            body=body,
            status=status,
            hold_until=hold_until,
            hold_reason=AUTO_HOLD_REASON if status == REVIEW_HELD else None,
            published_at=now if status == REVIEW_PUBLISHED else None,
            created_at=now,
        )
        db.session.add(review)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise ConflictError(f"User {reviewer_id} has already reviewed transaction {txn.id}") from exc

        _ledger(review, "created", user_id=reviewer_id, occurred_at=now, status=status)
        db.session.commit()
        current_app.logger.info(
            "Review %s created by user %s for user %s (rating %s, %s)",
            review.id, reviewer_id, reviewee_id, overall_rating, status,
        )
        return review

    return run_with_retry(_op)


# =============================================================================
# MODERATION
# =============================================================================

def publish_review(
    review_id: int,
    *,
    force: bool = False,
    admin_user_id: int | None = None,
    now: datetime | None = None,
) -> bool:
    """
    Attempt to publish a held review.

    Returns True if the review was published. Returns False, writing
    nothing, when the hold has not expired (and no override was given) or
    the review is already published.

    Args:
        force: administrative override of the hold window; needs admin_user_id

    Raises:
        InvalidStateTransition: review was removed
        NotEligibleError: force without a moderator
    """
    def _op():
        if force:
            require_admin(admin_user_id)
        review = get_locked(Review, review_id)
        if review.status == REVIEW_PUBLISHED:
            return False
        new_status = next_status(REVIEW, review.status, "publish", entity_id=review.id)

        as_of = now or utcnow()
        if not force and not review.hold_expired(as_of):
            return False

        review.status = new_status
        review.published_at = as_of

        _ledger(review, "published", user_id=admin_user_id, occurred_at=as_of, forced=force)
        db.session.commit()
        current_app.logger.info("Review %s published%s", review.id, " (override)" if force else "")
        return True

    return run_with_retry(_op)


def hold_review(review_id: int, admin_user_id: int, *, reason: str) -> Review:
    """
    Moderator re-hold (published/held -> held).

    Records the reason as an admin note and clears hold_until, so the hold
    sweep leaves a re-held review alone until it is explicitly published.
    """
    reason = require_text(reason, "reason", max_length=255)

    def _op():
        require_admin(admin_user_id)
        review = get_locked(Review, review_id)
        previous = review.status
        review.status = next_status(REVIEW, review.status, "hold", entity_id=review.id)

        now = utcnow()
        review.hold_until = None
        review.hold_reason = reason
        review.admin_notes = _append_note(review.admin_notes, f"Held by moderator {admin_user_id}: {reason}")

        _ledger(review, "held", user_id=admin_user_id, occurred_at=now, reason=reason)
        db.session.commit()
        current_app.logger.info("Review %s: %s -> held by moderator %s", review.id, previous, admin_user_id)
        return review

    return run_with_retry(_op)


def _append_note(existing: str | None, note: str) -> str:
    return f"{existing}\n{note}" if existing else note


def remove_locked(review: Review, *, admin_user_id: int | None, admin_notes: str | None, now: datetime) -> bool:
    """
    Remove an already-locked review inside the caller's unit of work.

    Returns False if it was already removed.
    """
    if review.status == REVIEW_REMOVED:
        return False

    review.status = next_status(REVIEW, review.status, "remove", entity_id=review.id)
    review.removed_at = now
    review.removed_by_user_id = admin_user_id
    if admin_notes:
        review.admin_notes = _append_note(review.admin_notes, admin_notes)

    _ledger(review, "removed", user_id=admin_user_id, occurred_at=now, notes=admin_notes)
    return True


def remove_review(review_id: int, *, admin_user_id: int, admin_notes: str | None = None) -> Review:
    """
    Remove a review (any status -> removed, terminal).

    Idempotent: removing a removed review is a no-op.
    """
    def _op():
        require_admin(admin_user_id)
        review = get_locked(Review, review_id)
        if remove_locked(review, admin_user_id=admin_user_id, admin_notes=admin_notes, now=utcnow()):
            db.session.commit()
            current_app.logger.info("Review %s removed by moderator %s", review.id, admin_user_id)
        return review

    return run_with_retry(_op)


def add_public_response(review_id: int, user_id: int, response: str) -> Review:
    """Reviewee's public reply, shown under the review."""
    response = require_text(response, "public_response", max_length=1000)

    def _op():
        review = get_locked(Review, review_id)
        if review.reviewee_id != user_id:
            raise NotEligibleError("Only the reviewee may respond to a review")
        if review.status == REVIEW_REMOVED:
            raise ValidationError("Cannot respond to a removed review")

        review.public_response = response
        review.public_response_at = utcnow()
        db.session.commit()
        return review

    return run_with_retry(_op)


# =============================================================================
# HOLD EXPIRY (scheduler entry point)
# =============================================================================

def publish_expired_holds(*, now: datetime | None = None) -> int:
    """
    Sweep: publish every held review whose hold window has passed.

    Reviews re-held by a moderator without a hold_until are left alone.
    """
    as_of = now or utcnow()
    due_ids = [
        row.id
        for row in db.session.query(Review.id)
        .filter(
            Review.status == REVIEW_HELD,
            Review.hold_until.isnot(None),
            Review.hold_until <= as_of,
        )
        .order_by(Review.id)
        .all()
    ]

    published = 0
    for review_id in due_ids:
        if publish_review(review_id, now=as_of):
            published += 1

    current_app.logger.info("Review hold sweep: %s of %s due reviews published", published, len(due_ids))
    return published


# =============================================================================
# QUERIES
# =============================================================================

def get_review(review_id: int) -> Review:
    review = db.session.get(Review, review_id)
    if review is None:
        raise NotFoundError(f"Review {review_id} not found")
    return review


def rating_summary(user_id: int) -> dict:
    """Average and count over a user's published reviews."""
    avg, count = (
        db.session.query(func.avg(Review.overall_rating), func.count(Review.id))
        .filter(Review.reviewee_id == user_id, Review.status == REVIEW_PUBLISHED)
        .one()
    )
    return {
        "user_id": user_id,
        "review_count": count,
        "average_rating": round(float(avg), 1) if avg is not None else None,
    }
