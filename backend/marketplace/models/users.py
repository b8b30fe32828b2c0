from __future__ import annotations

from ..extensions import db
from marketplace.time_utils import to_utc_z


class User(db.Model):
    """
    Marketplace participant (buyer, seller, or moderator).

    The lifecycle services only read identity and the admin flag; account
    management lives outside this package.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("email", name="uq_users_email"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(255), nullable=True)

    # Moderators may hold/remove reviews and resolve disputes
    is_admin = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def has_purchasing_entity(self) -> bool:
        """Buyers need at least one legal entity on file before submitting an offer."""
        return db.session.query(Entity.id).filter_by(user_id=self.id).first() is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "is_admin": self.is_admin,
            "created_at": to_utc_z(self.created_at),
        }


class Entity(db.Model):
    """
    Legal entity a user buys or sells through (themselves, a company, a trust, an SMSF).
    """
    __tablename__ = "entities"
    __table_args__ = {"sqlite_autoincrement": True}

    ENTITY_TYPES = ("individual", "company", "trust", "smsf")

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    entity_type = db.Column(db.String(32), nullable=False, default="individual")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User", backref=db.backref("entities", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "entity_type": self.entity_type,
            "created_at": to_utc_z(self.created_at),
        }
