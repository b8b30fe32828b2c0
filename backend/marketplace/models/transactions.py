from __future__ import annotations

from datetime import date, datetime

from ..extensions import db
from marketplace.time_utils import to_iso_date, to_utc_z, utcnow


_ACTIVE_PREDICATE = "status NOT IN ('settled', 'fallen_through')"


class Transaction(db.Model):
    """
    Legal/settlement process for one property sale, opened when an offer is accepted.

    LIFECYCLE: see services/lifecycle_service.py (TRANSACTION).

    INVARIANTS:
    - One row per accepted offer (offer_id unique).
    - At most one non-terminal transaction per property; backed by a
      partial unique index so concurrent accepts cannot both commit.
    - sale_price_cents is copied from the offer at creation and never written again.
    - cooling_off_ends_at is set once, when cooling-off starts.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.UniqueConstraint("offer_id", name="uq_transactions_offer"),
        db.Index(
            "uq_transactions_active_property",
            "property_id",
            unique=True,
            sqlite_where=db.text(_ACTIVE_PREDICATE),
            postgresql_where=db.text(_ACTIVE_PREDICATE),
        ),
        db.Index("ix_transactions_buyer_seller_status", "buyer_id", "seller_id", "status"),
        db.CheckConstraint("sale_price_cents > 0", name="ck_transactions_sale_price_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    property_id = db.Column(db.Integer, db.ForeignKey("properties.id"), nullable=False, index=True)
    offer_id = db.Column(db.Integer, db.ForeignKey("offers.id"), nullable=False)
    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    buyer_entity_id = db.Column(db.Integer, db.ForeignKey("entities.id"), nullable=True)
    seller_entity_id = db.Column(db.Integer, db.ForeignKey("entities.id"), nullable=True)

    # Amounts (in cents)
    sale_price_cents = db.Column(db.BigInteger, nullable=False)
    deposit_cents = db.Column(db.BigInteger, nullable=True)
    deposit_paid_cents = db.Column(db.BigInteger, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    # Key dates
    exchange_date = db.Column(db.Date, nullable=True)
    settlement_date = db.Column(db.Date, nullable=True, index=True)
    cooling_off_ends_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Condition satisfaction
    finance_approved = db.Column(db.Boolean, nullable=False, default=False)
    finance_approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    building_inspection_passed = db.Column(db.Boolean, nullable=False, default=False)
    building_inspection_at = db.Column(db.DateTime(timezone=True), nullable=True)
    pest_inspection_passed = db.Column(db.Boolean, nullable=False, default=False)
    pest_inspection_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Conditions the buyer has waived instead of satisfying
    finance_waived = db.Column(db.Boolean, nullable=False, default=False)
    building_inspection_waived = db.Column(db.Boolean, nullable=False, default=False)
    pest_inspection_waived = db.Column(db.Boolean, nullable=False, default=False)

    # Completion
    settled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    fallen_through_at = db.Column(db.DateTime(timezone=True), nullable=True)
    fallen_through_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    listing = db.relationship("Property", backref=db.backref("transactions", lazy=True))
    offer = db.relationship("Offer", backref=db.backref("sale_transaction", uselist=False))
    buyer = db.relationship("User", foreign_keys=[buyer_id])
    seller = db.relationship("User", foreign_keys=[seller_id])
    __mapper_args__ = {"version_id_col": version_id}

    # (condition name, offer flag, satisfied flag, waived flag)
    CONDITIONS = (
        ("finance", "subject_to_finance", "finance_approved", "finance_waived"),
        ("building_inspection", "subject_to_building_inspection", "building_inspection_passed", "building_inspection_waived"),
        ("pest_inspection", "subject_to_pest_inspection", "pest_inspection_passed", "pest_inspection_waived"),
    )

    @property
    def is_active(self) -> bool:
        return self.status not in ("settled", "fallen_through")

    def can_rescind(self, now: datetime | None = None) -> bool:
        return (
            self.status == "in_cooling_off"
            and self.cooling_off_ends_at is not None
            and (now or utcnow()) < self.cooling_off_ends_at
        )

    def outstanding_conditions(self) -> list[str]:
        """Offer conditions neither satisfied nor waived."""
        outstanding = []
        for name, offer_flag, satisfied_flag, waived_flag in self.CONDITIONS:
            if not getattr(self.offer, offer_flag):
                continue
            if getattr(self, satisfied_flag) or getattr(self, waived_flag):
                continue
            outstanding.append(name)
        return outstanding

    def all_conditions_satisfied(self) -> bool:
        return not self.outstanding_conditions()

    def days_until_settlement(self, today: date | None = None) -> int | None:
        if self.settlement_date is None:
            return None
        return (self.settlement_date - (today or utcnow().date())).days

    def is_overdue(self, today: date | None = None) -> bool:
        return (
            self.settlement_date is not None
            and self.settlement_date < (today or utcnow().date())
            and self.is_active
        )

    @property
    def deposit_outstanding(self) -> bool:
        if not self.deposit_cents:
            return False
        return (self.deposit_paid_cents or 0) < self.deposit_cents

    @property
    def deposit_remaining_cents(self) -> int:
        if not self.deposit_cents:
            return 0
        return max(self.deposit_cents - (self.deposit_paid_cents or 0), 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "property_id": self.property_id,
            "offer_id": self.offer_id,
            "buyer_id": self.buyer_id,
            "seller_id": self.seller_id,
            "sale_price_cents": self.sale_price_cents,
            "deposit_cents": self.deposit_cents,
            "deposit_paid_cents": self.deposit_paid_cents,
            "status": self.status,
            "exchange_date": to_iso_date(self.exchange_date),
            "settlement_date": to_iso_date(self.settlement_date),
            "cooling_off_ends_at": to_utc_z(self.cooling_off_ends_at) if self.cooling_off_ends_at else None,
            "finance_approved": self.finance_approved,
            "building_inspection_passed": self.building_inspection_passed,
            "pest_inspection_passed": self.pest_inspection_passed,
            "outstanding_conditions": self.outstanding_conditions(),
            "settled_at": to_utc_z(self.settled_at) if self.settled_at else None,
            "fallen_through_at": to_utc_z(self.fallen_through_at) if self.fallen_through_at else None,
            "fallen_through_reason": self.fallen_through_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class TransactionEvent(db.Model):
    """
    Append-only timeline of a transaction (exchange, conditions, deposit, settlement...).

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "transaction_events"
    __table_args__ = (
        db.Index("ix_transaction_events_txn_occurred", "transaction_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    EVENT_TYPES = (
        "created",
        "exchanged",
        "cooling_off_started",
        "unconditional",
        "settling",
        "settled",
        "fallen_through",
        "finance_approved",
        "building_inspection_passed",
        "pest_inspection_passed",
        "condition_waived",
        "deposit_paid",
        "custom",
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    event_type = db.Column(db.String(32), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    event_metadata = db.Column(db.JSON, nullable=False, default=dict)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale_transaction = db.relationship(
        "Transaction",
        backref=db.backref("events", lazy=True, order_by="TransactionEvent.id"),
    )

    @property
    def is_milestone(self) -> bool:
        return self.event_type in ("exchanged", "unconditional", "settled", "fallen_through")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "user_id": self.user_id,
            "event_type": self.event_type,
            "title": self.title,
            "description": self.description,
            "metadata": self.event_metadata or {},
            "occurred_at": to_utc_z(self.occurred_at),
        }
