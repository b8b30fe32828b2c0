from __future__ import annotations

from ..extensions import db
from marketplace.time_utils import to_utc_z


class DomainEvent(db.Model):
    """
    Append-only ledger of lifecycle events (offer.accepted, transaction.settled, review.published...).

    Notification and analytics consumers read from here; the lifecycle
    services never call them directly.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "domain_events"
    __table_args__ = (
        db.Index("ix_domain_events_entity", "entity_type", "entity_id"),
        db.Index("ix_domain_events_type_occurred", "event_type", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    property_id = db.Column(db.Integer, db.ForeignKey("properties.id"), nullable=True, index=True)

    # Business time vs system time
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    note = db.Column(db.Text, nullable=True)
    payload = db.Column(db.JSON, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_user_id": self.actor_user_id,
            "property_id": self.property_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
            "note": self.note,
            "payload": self.payload,
        }
