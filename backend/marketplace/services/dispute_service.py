# Overview: Service-layer operations for review disputes; encapsulates business logic and database work.

"""
Review Dispute Service

LIFECYCLE:
1. open_dispute (pending)      - reviewee challenges a published review
2. start_review (under_review) - moderator picks it up
3. uphold | reject             - moderator decision

An upheld dispute removes the review in the same unit of work. A rejected
dispute leaves the review as it was. Either way the review's is_disputed
overlay is cleared. One unresolved dispute per review, checked here and
backed by a partial unique index.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Review, ReviewDispute
from ..time_utils import to_utc_z, utcnow
from ..validation import (
    ConflictError,
    NotEligibleError,
    NotFoundError,
    ValidationError,
    require_choice,
    require_text,
)
from .concurrency import get_locked, run_with_retry
from .ledger_service import append_ledger_event
from .lifecycle_service import (
    DISPUTE,
    DISPUTE_PENDING,
    DISPUTE_UNRESOLVED_STATUSES,
    REVIEW_PUBLISHED,
    next_status,
)
from .review_service import remove_locked, require_admin


def _ledger(dispute: ReviewDispute, event_type: str, *, user_id: int | None, occurred_at: datetime) -> None:
    append_ledger_event(
        event_type=f"dispute.{event_type}",
        entity_type="review_dispute",
        entity_id=dispute.id,
        actor_user_id=user_id,
        occurred_at=occurred_at,
        payload={"review_id": dispute.review_id, "status": dispute.status},
    )


def has_active_dispute(review_id: int) -> bool:
    return (
        db.session.query(ReviewDispute.id)
        .filter(
            ReviewDispute.review_id == review_id,
            ReviewDispute.status.in_(DISPUTE_UNRESOLVED_STATUSES),
        )
        .first()
        is not None
    )


def open_dispute(review_id: int, user_id: int, *, reason: str, explanation: str) -> ReviewDispute:
    """
    Reviewee disputes a published review.

    Raises:
        ValidationError: reason/explanation invalid
        NotEligibleError: user is not the reviewee, or review not published
        ConflictError: review already has an unresolved dispute
    """
    require_choice(reason, ReviewDispute.REASONS, "reason")
    explanation = require_text(explanation, "explanation", min_length=20, max_length=2000)

    def _op():
        review = get_locked(Review, review_id)
        if review.reviewee_id != user_id:
            raise NotEligibleError("Only the reviewee may dispute a review")
        if review.status != REVIEW_PUBLISHED:
            raise NotEligibleError(f"Only published reviews can be disputed (review is '{review.status}')")
        if has_active_dispute(review.id):
            raise ConflictError(f"Review {review.id} already has an active dispute")

        now = utcnow()
        dispute = ReviewDispute(
            review_id=review.id,
            disputed_by_id=user_id,
            reason=reason,
            explanation=explanation,
            evidence=[],
            status=DISPUTE_PENDING,
        )
        db.session.add(dispute)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise ConflictError(f"Review {review.id} already has an active dispute") from exc

        review.is_disputed = True

        _ledger(dispute, "opened", user_id=user_id, occurred_at=now)
        db.session.commit()
        current_app.logger.info("Dispute %s opened on review %s by user %s", dispute.id, review.id, user_id)
        return dispute

    return run_with_retry(_op)


def start_review(dispute_id: int, admin_user_id: int) -> ReviewDispute:
    """Moderator picks up a dispute (pending -> under_review)."""
    def _op():
        require_admin(admin_user_id)
        dispute = get_locked(ReviewDispute, dispute_id)
        dispute.status = next_status(DISPUTE, dispute.status, "start_review", entity_id=dispute.id)

        now = utcnow()
        dispute.reviewed_by_id = admin_user_id
        dispute.reviewed_at = now

        _ledger(dispute, "under_review", user_id=admin_user_id, occurred_at=now)
        db.session.commit()
        return dispute

    return run_with_retry(_op)


def _resolve(dispute_id: int, admin_user_id: int, event: str, resolution_notes: str | None) -> ReviewDispute:
    def _op():
        require_admin(admin_user_id)
        dispute = get_locked(ReviewDispute, dispute_id)
        new_status = next_status(DISPUTE, dispute.status, event, entity_id=dispute.id)
        review = get_locked(Review, dispute.review_id)

        now = utcnow()
        dispute.status = new_status
        dispute.resolved_at = now
        dispute.resolution_notes = resolution_notes
        review.is_disputed = False

        if event == "uphold":
            remove_locked(
                review,
                admin_user_id=admin_user_id,
                admin_notes=f"Removed due to upheld dispute: {dispute.reason}",
                now=now,
            )

        _ledger(dispute, new_status, user_id=admin_user_id, occurred_at=now)
        db.session.commit()
        current_app.logger.info(
            "Dispute %s %s by moderator %s (review %s now '%s')",
            dispute.id, new_status, admin_user_id, review.id, review.status,
        )
        return dispute

    return run_with_retry(_op)


def uphold_dispute(dispute_id: int, admin_user_id: int, *, resolution_notes: str | None = None) -> ReviewDispute:
    """Uphold (under_review -> upheld); the review is removed."""
    return _resolve(dispute_id, admin_user_id, "uphold", resolution_notes)


def reject_dispute(dispute_id: int, admin_user_id: int, *, resolution_notes: str | None = None) -> ReviewDispute:
    """Reject (under_review -> rejected); the review stays as it is."""
    return _resolve(dispute_id, admin_user_id, "reject", resolution_notes)


def add_evidence(dispute_id: int, user_id: int, *, description: str, url: str | None = None) -> ReviewDispute:
    """Attach supporting evidence to an unresolved dispute (disputer only)."""
    description = require_text(description, "description", max_length=1000)

    def _op():
        dispute = get_locked(ReviewDispute, dispute_id)
        if dispute.disputed_by_id != user_id:
            raise NotEligibleError("Only the user who raised the dispute may add evidence")
        if dispute.is_resolved:
            raise ValidationError(f"Dispute {dispute.id} is already resolved")

        # Reassign so the JSON column change is detected
        dispute.evidence = list(dispute.evidence or []) + [{
            "description": description,
            "url": url,
            "added_at": to_utc_z(utcnow()),
        }]
        db.session.commit()
        return dispute

    return run_with_retry(_op)


def get_dispute(dispute_id: int) -> ReviewDispute:
    dispute = db.session.get(ReviewDispute, dispute_id)
    if dispute is None:
        raise NotFoundError(f"ReviewDispute {dispute_id} not found")
    return dispute


def list_disputes(*, status: str | None = None, limit: int = 100) -> list[ReviewDispute]:
    q = db.session.query(ReviewDispute)
    if status is not None:
        q = q.filter(ReviewDispute.status == status)
    return q.order_by(ReviewDispute.created_at.asc(), ReviewDispute.id.asc()).limit(limit).all()
