from __future__ import annotations

from datetime import datetime

from ..extensions import db
from marketplace.time_utils import to_utc_z, utcnow


_UNRESOLVED_PREDICATE = "status IN ('pending', 'under_review')"


class Review(db.Model):
    """
    A party's review of their counterparty after a settled sale.

    LIFECYCLE: see services/lifecycle_service.py (REVIEW).

    MODERATION:
    - Negative ratings start held until hold_until, everything else starts published.
    - is_disputed is an overlay flag while a dispute is unresolved; it does
      not replace the status.
    """
    __tablename__ = "reviews"
    __table_args__ = (
        db.UniqueConstraint("transaction_id", "reviewer_id", name="uq_reviews_transaction_reviewer"),
        db.Index("ix_reviews_reviewee_status", "reviewee_id", "status"),
        db.Index("ix_reviews_status_hold_until", "status", "hold_until"),
        db.CheckConstraint("overall_rating BETWEEN 1 AND 5", name="ck_reviews_rating_range"),
        {"sqlite_autoincrement": True},
    )

    REVIEWEE_ROLES = ("buyer", "seller")

    CATEGORY_RATINGS = {
        "buyer": ("communication", "reliability", "responsiveness"),
        "seller": ("communication", "honesty", "property_accuracy", "responsiveness"),
    }

    id = db.Column(db.Integer, primary_key=True)
    reviewer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    reviewee_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    reviewee_role = db.Column(db.String(16), nullable=False)

    overall_rating = db.Column(db.Integer, nullable=False)
    category_ratings = db.Column(db.JSON, nullable=False, default=dict)
    title = db.Column(db.String(100), nullable=True)
    body = db.Column(db.Text, nullable=False)

    status = db.Column(db.String(16), nullable=False, index=True)
    is_disputed = db.Column(db.Boolean, nullable=False, default=False)

    hold_until = db.Column(db.DateTime(timezone=True), nullable=True)
    hold_reason = db.Column(db.String(255), nullable=True)
    admin_notes = db.Column(db.Text, nullable=True)

    published_at = db.Column(db.DateTime(timezone=True), nullable=True)
    removed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    removed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    public_response = db.Column(db.Text, nullable=True)
    public_response_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    reviewer = db.relationship("User", foreign_keys=[reviewer_id])
    reviewee = db.relationship("User", foreign_keys=[reviewee_id])
    sale_transaction = db.relationship("Transaction", backref=db.backref("reviews", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_negative(self) -> bool:
        return self.overall_rating is not None and self.overall_rating <= 2

    def on_hold(self, now: datetime | None = None) -> bool:
        return (
            self.status == "held"
            and self.hold_until is not None
            and self.hold_until > (now or utcnow())
        )

    def hold_expired(self, now: datetime | None = None) -> bool:
        return (
            self.status == "held"
            and self.hold_until is not None
            and self.hold_until <= (now or utcnow())
        )

    def hours_until_release(self, now: datetime | None = None) -> int | None:
        now = now or utcnow()
        if not self.on_hold(now):
            return None
        remaining = (self.hold_until - now).total_seconds() / 3600
        return int(-(-remaining // 1))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reviewer_id": self.reviewer_id,
            "reviewee_id": self.reviewee_id,
            "transaction_id": self.transaction_id,
            "reviewee_role": self.reviewee_role,
            "overall_rating": self.overall_rating,
            "category_ratings": self.category_ratings or {},
            "title": self.title,
            "body": self.body,
            "status": self.status,
            "is_disputed": self.is_disputed,
            "hold_until": to_utc_z(self.hold_until) if self.hold_until else None,
            "hold_reason": self.hold_reason,
            "published_at": to_utc_z(self.published_at) if self.published_at else None,
            "public_response": self.public_response,
            "public_response_at": to_utc_z(self.public_response_at) if self.public_response_at else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class ReviewDispute(db.Model):
    """
    Reviewee's challenge to a published review, resolved by a moderator.

    LIFECYCLE: pending -> under_review -> upheld | rejected
    An upheld dispute removes the review; a rejected one leaves it as it was.
    At most one unresolved dispute per review (partial unique index).
    """
    __tablename__ = "review_disputes"
    __table_args__ = (
        db.Index(
            "uq_review_disputes_unresolved_review",
            "review_id",
            unique=True,
            sqlite_where=db.text(_UNRESOLVED_PREDICATE),
            postgresql_where=db.text(_UNRESOLVED_PREDICATE),
        ),
        db.Index("ix_review_disputes_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    REASONS = ("false_information", "inappropriate_content", "wrong_person", "harassment", "other")

    id = db.Column(db.Integer, primary_key=True)
    review_id = db.Column(db.Integer, db.ForeignKey("reviews.id"), nullable=False, index=True)
    disputed_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    reason = db.Column(db.String(32), nullable=False)
    explanation = db.Column(db.Text, nullable=False)
    evidence = db.Column(db.JSON, nullable=False, default=list)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    # Moderator attribution
    reviewed_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resolution_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    review = db.relationship("Review", backref=db.backref("disputes", lazy=True))
    disputed_by = db.relationship("User", foreign_keys=[disputed_by_id])
    reviewed_by = db.relationship("User", foreign_keys=[reviewed_by_id])
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_resolved(self) -> bool:
        return self.status in ("upheld", "rejected")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "review_id": self.review_id,
            "disputed_by_id": self.disputed_by_id,
            "reason": self.reason,
            "explanation": self.explanation,
            "evidence": self.evidence or [],
            "status": self.status,
            "reviewed_by_id": self.reviewed_by_id,
            "reviewed_at": to_utc_z(self.reviewed_at) if self.reviewed_at else None,
            "resolved_at": to_utc_z(self.resolved_at) if self.resolved_at else None,
            "resolution_notes": self.resolution_notes,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
