"""
Workflow Event Outbox Service.

Every workflow state change records a structured Event in the same database
transaction. An out-of-process notification orchestrator reads the outbox
and turns events into emails / SMS according to its own rules.

Functions:
  emit_event()               — append an Event to the current session (no commit)
  fetch_unpublished_events() — FIFO batch of events not yet acknowledged
  mark_events_published()    — acknowledge a batch (commits)
  list_dossier_events()      — history for one dossier, newest first
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select, update

from app.core.exceptions import ValidationError
from app.models import db
from app.models.event import ACTOR_TYPES, EVENT_TYPES, Event

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50


def emit_event(
    *,
    entity_type: str,
    entity_id: str,
    event_type: str,
    actor_type: str = "SYSTEM",
    actor_id: str | None = None,
    payload: dict | None = None,
) -> Event:
    """Append an event to the outbox.

    The event is only added and flushed; the caller's commit publishes it
    together with the state change it describes, or the rollback discards both.
    """
    if event_type not in EVENT_TYPES:
        raise ValueError(f"Unknown event_type '{event_type}'")
    if actor_type not in ACTOR_TYPES:
        raise ValueError(f"Unknown actor_type '{actor_type}'")

    payload = dict(payload or {})
    dossier_id = str(entity_id) if entity_type == "dossier" else payload.get("dossier_id")

    event = Event(
        entity_type=entity_type,
        entity_id=str(entity_id),
        dossier_id=dossier_id,
        event_type=event_type,
        actor_type=actor_type,
        actor_id=str(actor_id) if actor_id is not None else None,
        payload=payload,
    )
    db.session.add(event)
    db.session.flush()

    logger.info(
        "Event emitted: %s %s/%s", event_type, entity_type, entity_id,
        extra={"event_type": event_type, "actor_type": actor_type},
    )
    return event


def fetch_unpublished_events(limit: int = DEFAULT_BATCH_SIZE) -> list[dict]:
    """Return up to ``limit`` unacknowledged events, oldest first."""
    limit = max(1, min(int(limit), 500))
    rows = db.session.execute(
        select(Event)
        .where(Event.published_at.is_(None))
        .order_by(Event.created_at.asc(), Event.id.asc())
        .limit(limit)
    ).scalars().all()
    return [e.to_dict() for e in rows]


def mark_events_published(event_ids: list[str]) -> int:
    """Acknowledge delivered events. Already-acknowledged ids are ignored.

    Returns:
        Number of events newly marked as published.
    """
    if not isinstance(event_ids, list) or not all(isinstance(i, str) for i in event_ids):
        raise ValidationError("event_ids must be a list of event id strings")
    if not event_ids:
        return 0

    try:
        result = db.session.execute(
            update(Event)
            .where(Event.id.in_(event_ids), Event.published_at.is_(None))
            .values(published_at=datetime.now(timezone.utc))
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Outbox acknowledged %d/%d events", result.rowcount, len(event_ids))
    return result.rowcount


def list_dossier_events(dossier_id: str, limit: int | None = None, offset: int = 0) -> tuple[list[dict], int]:
    """Events about a dossier, its step instances and its documents, newest first.

    Returns:
        (page of events, total count for the dossier)
    """
    total = db.session.execute(
        select(func.count(Event.id)).where(Event.dossier_id == dossier_id)
    ).scalar()

    query = (
        select(Event)
        .where(Event.dossier_id == dossier_id)
        .order_by(Event.created_at.desc(), Event.id.desc())
        .offset(max(int(offset), 0))
    )
    if limit is not None:
        query = query.limit(max(int(limit), 1))

    rows = db.session.execute(query).scalars().all()
    return [e.to_dict() for e in rows], total
