"""
Dossier Workflow Platform
Event domain model — append-only outbox consumed by the notification orchestrator.

Models:
    - Event: immutable record of a workflow fact (STEP_COMPLETED, DOSSIER_CREATED, ...)

Delivery:
    Events are inserted in the same transaction as the state change they
    describe. The orchestrator polls rows with published_at IS NULL in
    (created_at, id) order and acknowledges them, giving at-least-once, FIFO
    delivery. Payloads are never rewritten after insert.
"""

import uuid
from datetime import datetime, timezone

from app.models import db

# ── Constants ────────────────────────────────────────────────────────────────

EVENT_TYPES = {
    "DOSSIER_CREATED",
    "DOSSIER_STATUS_CHANGED",
    "DOSSIER_RESET",
    "STEP_STARTED",
    "STEP_COMPLETED",
    "DOCUMENT_DELIVERED",
    "DOCUMENT_REVIEWED",
    "PAYMENT_RECEIVED",
}

ACTOR_TYPES = {"SYSTEM", "USER", "AGENT", "ADMIN"}

EVENT_ENTITY_TYPES = {"dossier", "step_instance", "document", "order"}


class Event(db.Model):
    """Immutable, append-only workflow event."""

    __tablename__ = "events"
    __table_args__ = (
        db.Index("ix_events_entity", "entity_type", "entity_id"),
        db.Index("ix_events_outbox", "published_at", "created_at"),
        db.Index("ix_events_type", "event_type"),
        db.Index("ix_events_dossier", "dossier_id", "created_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    entity_type = db.Column(db.String(30), nullable=False, comment="dossier | step_instance | document | order")
    entity_id = db.Column(db.String(36), nullable=False)
    dossier_id = db.Column(
        db.String(36), nullable=True,
        comment="Dossier the event belongs to, for per-dossier history; NULL for order events",
    )
    event_type = db.Column(db.String(40), nullable=False)
    actor_type = db.Column(db.String(10), nullable=False, default="SYSTEM", comment="SYSTEM | USER | AGENT | ADMIN")
    actor_id = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    published_at = db.Column(
        db.DateTime(timezone=True), nullable=True,
        comment="Set once the notification orchestrator has acknowledged the event",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "dossier_id": self.dossier_id,
            "event_type": self.event_type,
            "actor_type": self.actor_type,
            "actor_id": self.actor_id,
            "payload": self.payload or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Event {self.event_type} {self.entity_type}/{self.entity_id}>"
