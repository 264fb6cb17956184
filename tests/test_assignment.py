"""
Step assignment and ADMIN document delivery tests.
"""

import pytest

from app.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.models import db
from app.models.dossier import Document, StepInstance
from app.models.event import Event
from app.services.assignment_service import assign_step_instance, deliver_document
from app.services.document_readiness import is_step_ready
from app.services.provisioning_service import provision_dossier


def _instance(dossier, code):
    return next(si for si in StepInstance.query.filter_by(dossier_id=dossier.id) if si.step.code == code)


@pytest.fixture()
def dossier(llc_product):
    d, _ = provision_dossier("client-1", llc_product.id)
    return d


class TestAssignStepInstance:
    def test_assign_matching_agent(self, dossier, verificateur):
        agent, _ = verificateur
        s1 = _instance(dossier, "S1_CLIENT_FORM")

        result = assign_step_instance(s1.id, agent.id)

        assert result["assigned_to"] == agent.id
        assert db.session.get(StepInstance, s1.id).assigned_to == agent.id

    def test_unassign(self, dossier, verificateur):
        agent, _ = verificateur
        s1 = _instance(dossier, "S1_CLIENT_FORM")
        assign_step_instance(s1.id, agent.id)

        result = assign_step_instance(s1.id, None)

        assert result["assigned_to"] is None

    def test_type_mismatch_rejected(self, dossier, createur):
        agent, _ = createur
        s1 = _instance(dossier, "S1_CLIENT_FORM")

        with pytest.raises(ValidationError) as exc:
            assign_step_instance(s1.id, agent.id)

        assert exc.value.details["expected_agent_type"] == "VERIFICATEUR"
        assert db.session.get(StepInstance, s1.id).assigned_to is None

    def test_inactive_agent_rejected(self, dossier, make_agent):
        agent = make_agent("gone@example.com", "CREATEUR", active=False)
        s2 = _instance(dossier, "S2_ADMIN_FILING")
        with pytest.raises(ValidationError):
            assign_step_instance(s2.id, agent.id)

    def test_unknown_agent(self, dossier):
        s1 = _instance(dossier, "S1_CLIENT_FORM")
        with pytest.raises(NotFoundError):
            assign_step_instance(s1.id, "missing-agent")

    def test_unknown_instance(self, verificateur):
        agent, _ = verificateur
        with pytest.raises(NotFoundError):
            assign_step_instance("missing-instance", agent.id)


class TestDeliverDocument:
    @pytest.fixture()
    def assigned_s2(self, dossier, createur):
        agent, _ = createur
        s2 = _instance(dossier, "S2_ADMIN_FILING")
        s2.assigned_to = agent.id
        db.session.commit()
        return s2

    def test_deliver_satisfies_readiness(self, assigned_s2, createur, articles_type, make_document):
        _, actor = createur
        doc = make_document(assigned_s2, articles_type, status="UPLOADED")
        assert is_step_ready(assigned_s2.id) is False

        result = deliver_document(doc.id, actor)

        assert result["status"] == "DELIVERED"
        assert result["delivered_at"] is not None
        assert is_step_ready(assigned_s2.id) is True

    def test_deliver_emits_event(self, assigned_s2, createur, articles_type, make_document):
        agent, actor = createur
        doc = make_document(assigned_s2, articles_type)

        deliver_document(doc.id, actor)

        event = Event.query.filter_by(event_type="DOCUMENT_DELIVERED").one()
        assert event.entity_id == doc.id
        assert event.actor_id == agent.id
        assert event.payload["dossier_id"] == assigned_s2.dossier_id
        assert event.payload["document_type"] == "Articles of Organization"
        assert event.payload["agent_type"] == "CREATEUR"

    def test_already_delivered(self, assigned_s2, createur, articles_type, make_document):
        _, actor = createur
        doc = make_document(assigned_s2, articles_type, status="DELIVERED")
        with pytest.raises(ConflictError):
            deliver_document(doc.id, actor)

    def test_client_document_rejected(self, assigned_s2, createur, articles_type, make_document):
        _, actor = createur
        doc = make_document(assigned_s2, articles_type, source="CLIENT")
        with pytest.raises(ValidationError):
            deliver_document(doc.id, actor)

    def test_not_assigned_agent_forbidden(self, dossier, assigned_s2, make_agent, articles_type, make_document):
        from app.auth import Actor

        other = make_agent("other-createur@example.com", "CREATEUR")
        doc = make_document(assigned_s2, articles_type)
        actor = Actor(user_id="u-other", email=other.email, role="AGENT")

        with pytest.raises(ForbiddenError):
            deliver_document(doc.id, actor)
        assert db.session.get(Document, doc.id).status == "PENDING"

    def test_client_step_document_rejected(self, dossier, verificateur, articles_type, make_document):
        agent, actor = verificateur
        s1 = _instance(dossier, "S1_CLIENT_FORM")
        s1.assigned_to = agent.id
        db.session.commit()
        doc = make_document(s1, articles_type)

        with pytest.raises(ValidationError):
            deliver_document(doc.id, actor)

    def test_unknown_document(self, createur):
        _, actor = createur
        with pytest.raises(NotFoundError):
            deliver_document("missing", actor)
