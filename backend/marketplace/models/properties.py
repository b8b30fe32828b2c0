from __future__ import annotations

from ..extensions import db
from marketplace.time_utils import to_utc_z


class Property(db.Model):
    """
    Listed property.

    The lifecycle core only reads and writes `status`:
    - active: listed and accepting offers
    - sold: written when a transaction settles
    - back to active: written when a transaction is rescinded or cancelled,
      only from under_offer; sold, withdrawn and draft listings keep their status

    Offers never change the property status; negotiation is implicit.
    """
    __tablename__ = "properties"
    __table_args__ = (
        db.Index("ix_properties_owner_status", "owner_id", "status"),
        {"sqlite_autoincrement": True},
    )

    STATUSES = ("draft", "active", "under_offer", "sold", "withdrawn")

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    owner_entity_id = db.Column(db.Integer, db.ForeignKey("entities.id"), nullable=True)

    street_address = db.Column(db.String(255), nullable=False)
    suburb = db.Column(db.String(128), nullable=False)
    state = db.Column(db.String(8), nullable=False)
    postcode = db.Column(db.String(8), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="active", index=True)

    # Guide price (in cents)
    price_cents = db.Column(db.BigInteger, nullable=True)

    sold_at = db.Column(db.DateTime(timezone=True), nullable=True)
    sold_price_cents = db.Column(db.BigInteger, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    owner = db.relationship("User", foreign_keys=[owner_id], backref=db.backref("properties", lazy=True))
    owner_entity = db.relationship("Entity", foreign_keys=[owner_entity_id])
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def can_receive_offers(self) -> bool:
        return self.status == "active"

    @property
    def full_address(self) -> str:
        return f"{self.street_address}, {self.suburb} {self.state} {self.postcode}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "owner_entity_id": self.owner_entity_id,
            "address": self.full_address,
            "status": self.status,
            "price_cents": self.price_cents,
            "sold_at": to_utc_z(self.sold_at) if self.sold_at else None,
            "sold_price_cents": self.sold_price_cents,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
