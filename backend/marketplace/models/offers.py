from __future__ import annotations

from datetime import datetime

from ..extensions import db
from marketplace.time_utils import to_utc_z, utcnow


class Offer(db.Model):
    """
    A formal proposal to buy a property at a price and on terms.

    LIFECYCLE: see services/lifecycle_service.py (OFFER).

    COUNTER CHAIN:
    A counter-offer is a new Offer whose parent_offer_id points at the offer
    it answers. The chain is a singly-linked list walking back to the
    buyer's original offer. buyer_id is the purchasing party for the whole
    chain; made_by_user_id is who authored this particular offer (the buyer
    for the original, the seller for a counter). The recipient of an offer
    is always the other party.

    Offers are never deleted: terminal statuses are the historical record.
    """
    __tablename__ = "offers"
    __table_args__ = (
        db.Index("ix_offers_property_status", "property_id", "status"),
        db.Index("ix_offers_status_expires", "status", "expires_at"),
        db.CheckConstraint("amount_cents > 0", name="ck_offers_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    FINANCE_TYPES = ("cash", "pre_approved", "finance_pending")

    id = db.Column(db.Integer, primary_key=True)
    property_id = db.Column(db.Integer, db.ForeignKey("properties.id"), nullable=False, index=True)
    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    buyer_entity_id = db.Column(db.Integer, db.ForeignKey("entities.id"), nullable=True)
    made_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    parent_offer_id = db.Column(db.Integer, db.ForeignKey("offers.id"), nullable=True, index=True)

    # Amounts (in cents)
    amount_cents = db.Column(db.BigInteger, nullable=False)
    deposit_cents = db.Column(db.BigInteger, nullable=True)

    # Finance
    finance_type = db.Column(db.String(32), nullable=False, default="cash")
    finance_lender = db.Column(db.String(128), nullable=True)

    settlement_days = db.Column(db.Integer, nullable=False)

    # Conditions
    subject_to_finance = db.Column(db.Boolean, nullable=False, default=False)
    subject_to_building_inspection = db.Column(db.Boolean, nullable=False, default=False)
    subject_to_pest_inspection = db.Column(db.Boolean, nullable=False, default=False)
    other_conditions = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="draft", index=True)

    # Status timestamps
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    viewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    responded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    accepted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    withdrawn_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expired_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)

    seller_response = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    listing = db.relationship("Property", backref=db.backref("offers", lazy=True))
    buyer = db.relationship("User", foreign_keys=[buyer_id])
    made_by = db.relationship("User", foreign_keys=[made_by_user_id])
    buyer_entity = db.relationship("Entity", foreign_keys=[buyer_entity_id])
    parent_offer = db.relationship(
        "Offer",
        remote_side=[id],
        backref=db.backref("counter_offers", lazy=True),
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_finalized(self) -> bool:
        from marketplace.services.lifecycle_service import OFFER_TERMINAL_STATUSES
        return self.status in OFFER_TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        """Awaiting a response from the recipient."""
        from marketplace.services.lifecycle_service import OFFER_ACTIVE_STATUSES
        return self.status in OFFER_ACTIVE_STATUSES

    @property
    def is_counter_offer(self) -> bool:
        return self.parent_offer_id is not None

    @property
    def recipient_user_id(self) -> int:
        """The party expected to respond: the seller for buyer offers, the buyer for counters."""
        if self.made_by_user_id == self.buyer_id:
            return self.listing.owner_id
        return self.buyer_id

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.status == "expired":
            return True
        if self.expires_at is None or self.is_finalized:
            return False
        return self.expires_at <= (now or utcnow())

    @property
    def has_conditions(self) -> bool:
        return bool(
            self.subject_to_finance
            or self.subject_to_building_inspection
            or self.subject_to_pest_inspection
            or self.other_conditions
        )

    def conditions_list(self) -> list[str]:
        conditions = []
        if self.subject_to_finance:
            conditions.append("Finance")
        if self.subject_to_building_inspection:
            conditions.append("Building Inspection")
        if self.subject_to_pest_inspection:
            conditions.append("Pest Inspection")
        if self.other_conditions:
            conditions.append(f"Other: {self.other_conditions}")
        return conditions

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "property_id": self.property_id,
            "buyer_id": self.buyer_id,
            "buyer_entity_id": self.buyer_entity_id,
            "made_by_user_id": self.made_by_user_id,
            "parent_offer_id": self.parent_offer_id,
            "amount_cents": self.amount_cents,
            "deposit_cents": self.deposit_cents,
            "finance_type": self.finance_type,
            "finance_lender": self.finance_lender,
            "settlement_days": self.settlement_days,
            "subject_to_finance": self.subject_to_finance,
            "subject_to_building_inspection": self.subject_to_building_inspection,
            "subject_to_pest_inspection": self.subject_to_pest_inspection,
            "other_conditions": self.other_conditions,
            "status": self.status,
            "submitted_at": to_utc_z(self.submitted_at) if self.submitted_at else None,
            "viewed_at": to_utc_z(self.viewed_at) if self.viewed_at else None,
            "responded_at": to_utc_z(self.responded_at) if self.responded_at else None,
            "expires_at": to_utc_z(self.expires_at) if self.expires_at else None,
            "seller_response": self.seller_response,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
