"""
Event outbox tests: emission inside the caller's transaction, FIFO fetch,
acknowledgement and per-dossier history.
"""

from datetime import datetime, timedelta, timezone

import pytest

from app.core.exceptions import ValidationError
from app.models import db
from app.models.event import Event
from app.services.event_service import (
    emit_event,
    fetch_unpublished_events,
    list_dossier_events,
    mark_events_published,
)
from app.services.provisioning_service import provision_dossier


def _event(entity_id="d-1", event_type="DOSSIER_CREATED", created_at=None, payload=None, entity_type="dossier"):
    event = Event(
        entity_type=entity_type,
        entity_id=entity_id,
        dossier_id=entity_id if entity_type == "dossier" else (payload or {}).get("dossier_id"),
        event_type=event_type,
        actor_type="SYSTEM",
        payload=payload or {},
    )
    if created_at is not None:
        event.created_at = created_at
    db.session.add(event)
    db.session.commit()
    return event


class TestEmitEvent:
    def test_emit_does_not_commit(self):
        emit_event(entity_type="dossier", entity_id="d-1", event_type="DOSSIER_CREATED")
        db.session.rollback()
        assert Event.query.count() == 0

    def test_emit_persists_with_caller_commit(self):
        event = emit_event(
            entity_type="dossier", entity_id="d-1", event_type="DOSSIER_STATUS_CHANGED",
            actor_type="ADMIN", actor_id="u-admin", payload={"new_status": "COMPLETED"},
        )
        db.session.commit()

        stored = db.session.get(Event, event.id)
        assert stored.payload == {"new_status": "COMPLETED"}
        assert stored.actor_id == "u-admin"
        assert stored.published_at is None

    def test_unknown_event_type(self):
        with pytest.raises(ValueError):
            emit_event(entity_type="dossier", entity_id="d-1", event_type="SOMETHING_ELSE")

    def test_unknown_actor_type(self):
        with pytest.raises(ValueError):
            emit_event(entity_type="dossier", entity_id="d-1", event_type="DOSSIER_CREATED", actor_type="ROBOT")


class TestOutbox:
    def test_fetch_is_fifo(self):
        base = datetime(2026, 1, 1, tzinfo=timezone.utc)
        late = _event("d-late", created_at=base + timedelta(minutes=5))
        early = _event("d-early", created_at=base)
        middle = _event("d-middle", created_at=base + timedelta(minutes=1))

        ids = [e["id"] for e in fetch_unpublished_events()]
        assert ids == [early.id, middle.id, late.id]

    def test_fetch_respects_limit(self):
        for i in range(5):
            _event(f"d-{i}")
        assert len(fetch_unpublished_events(limit=3)) == 3

    def test_acknowledged_events_are_not_refetched(self):
        first = _event("d-1")
        second = _event("d-2")

        assert mark_events_published([first.id]) == 1

        remaining = [e["id"] for e in fetch_unpublished_events()]
        assert remaining == [second.id]

    def test_ack_is_idempotent(self):
        event = _event()
        assert mark_events_published([event.id]) == 1
        assert mark_events_published([event.id]) == 0

    def test_ack_unknown_ids_ignored(self):
        assert mark_events_published(["nope"]) == 0

    def test_ack_empty_list(self):
        assert mark_events_published([]) == 0

    @pytest.mark.parametrize("bad", ["abc", [1, 2], None, {"id": "x"}])
    def test_ack_rejects_malformed_ids(self, bad):
        with pytest.raises(ValidationError):
            mark_events_published(bad)


class TestDossierHistory:
    def test_includes_step_events_of_the_dossier(self, llc_product):
        dossier, _ = provision_dossier("client-1", llc_product.id)
        other, _ = provision_dossier("client-2", llc_product.id)

        history, total = list_dossier_events(dossier.id)
        types = {e["event_type"] for e in history}

        assert types == {"DOSSIER_CREATED", "STEP_STARTED"}
        assert total == len(history)
        assert all(e["dossier_id"] == dossier.id for e in history)
        assert other.id not in {e["entity_id"] for e in history}

    def test_emit_stamps_dossier_id(self):
        on_dossier = emit_event(entity_type="dossier", entity_id="d-1", event_type="DOSSIER_CREATED")
        on_step = emit_event(
            entity_type="step_instance", entity_id="si-1", event_type="STEP_STARTED",
            payload={"dossier_id": "d-1"},
        )
        on_order = emit_event(entity_type="order", entity_id="o-1", event_type="PAYMENT_RECEIVED")
        db.session.commit()

        assert on_dossier.dossier_id == "d-1"
        assert on_step.dossier_id == "d-1"
        assert on_order.dossier_id is None

    def test_newest_first(self):
        base = datetime(2026, 1, 1, tzinfo=timezone.utc)
        older = _event("d-1", created_at=base)
        newer = _event("d-1", event_type="DOSSIER_STATUS_CHANGED", created_at=base + timedelta(hours=1))

        history, _ = list_dossier_events("d-1")
        assert [e["id"] for e in history] == [newer.id, older.id]

    def test_limit_and_offset_page_in_query(self):
        base = datetime(2026, 1, 1, tzinfo=timezone.utc)
        events = [_event("d-1", created_at=base + timedelta(minutes=i)) for i in range(5)]
        _event("d-2", created_at=base + timedelta(minutes=10))

        page, total = list_dossier_events("d-1", limit=2, offset=1)

        assert total == 5
        assert [e["id"] for e in page] == [events[3].id, events[2].id]

    def test_unrelated_document_event_excluded(self):
        _event("doc-1", event_type="DOCUMENT_DELIVERED", entity_type="document", payload={"dossier_id": "d-2"})
        assert list_dossier_events("d-1") == ([], 0)
