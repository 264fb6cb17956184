"""
Dossier provisioning tests: idempotent creation, step materialization,
payment confirmation, back-office creation and dossier reset.
"""

import pytest

from app.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.models import db
from app.models.dossier import Document, Dossier, Order, StepInstance
from app.models.event import Event
from app.services.provisioning_service import (
    confirm_order_payment,
    create_dossier_for_client,
    provision_dossier,
    reset_dossier,
)


def _order(product, user_id="client-1", status="PENDING"):
    order = Order(user_id=user_id, product_id=product.id, amount=49900, currency="EUR", status=status)
    db.session.add(order)
    db.session.commit()
    return order


def _events(event_type):
    return Event.query.filter_by(event_type=event_type).all()


class TestProvisionDossier:
    def test_materializes_all_steps_in_order(self, llc_product):
        dossier, created = provision_dossier("client-1", llc_product.id)

        assert created is True
        instances = StepInstance.query.filter_by(dossier_id=dossier.id).all()
        assert sorted(si.step.code for si in instances) == ["S1_CLIENT_FORM", "S2_ADMIN_FILING"]

        first = db.session.get(StepInstance, dossier.current_step_instance_id)
        assert first.step.code == "S1_CLIENT_FORM"
        assert first.started_at is not None
        assert first.completed_at is None

        second = next(si for si in instances if si.id != first.id)
        assert second.started_at is None
        assert second.completed_at is None

    def test_initial_status_and_type_from_product(self, llc_product):
        dossier, _ = provision_dossier("client-1", llc_product.id)
        assert dossier.status == "QUALIFICATION"
        assert dossier.type == "LLC_FORMATION"
        assert dossier.meta["created_via"] == "payment"

    def test_idempotent(self, llc_product):
        first, created_first = provision_dossier("client-1", llc_product.id)
        second, created_second = provision_dossier("client-1", llc_product.id)

        assert created_first is True
        assert created_second is False
        assert first.id == second.id
        assert Dossier.query.count() == 1
        assert StepInstance.query.count() == 2
        assert len(_events("DOSSIER_CREATED")) == 1

    def test_emits_created_and_started(self, llc_product):
        dossier, _ = provision_dossier("client-1", llc_product.id)

        created = _events("DOSSIER_CREATED")[0]
        assert created.entity_id == dossier.id
        assert created.actor_type == "SYSTEM"
        assert created.payload["product_name"] == "LLC Formation"
        assert created.payload["status"] == "QUALIFICATION"

        started = _events("STEP_STARTED")[0]
        assert started.entity_id == dossier.current_step_instance_id
        assert started.payload["step_code"] == "S1_CLIENT_FORM"

    def test_links_order(self, llc_product):
        order = _order(llc_product)
        dossier, _ = provision_dossier("client-1", llc_product.id, order.id)
        assert db.session.get(Order, order.id).dossier_id == dossier.id

    def test_replay_links_new_order_to_existing_dossier(self, llc_product):
        dossier, _ = provision_dossier("client-1", llc_product.id)
        order = _order(llc_product)

        again, created = provision_dossier("client-1", llc_product.id, order.id)

        assert created is False
        assert again.id == dossier.id
        assert db.session.get(Order, order.id).dossier_id == dossier.id

    def test_unknown_order_rolls_back(self, llc_product):
        with pytest.raises(NotFoundError):
            provision_dossier("client-1", llc_product.id, "missing-order")
        assert Dossier.query.count() == 0
        assert StepInstance.query.count() == 0
        assert Event.query.count() == 0

    def test_unknown_product(self):
        with pytest.raises(NotFoundError):
            provision_dossier("client-1", "missing-product")

    def test_inactive_product(self, make_product):
        product = make_product([("ONLY", "CLIENT", None)], name="Retired", active=False)
        with pytest.raises(ValidationError):
            provision_dossier("client-1", product.id)

    def test_product_without_steps(self, make_product):
        product = make_product([], name="Empty")
        dossier, created = provision_dossier("client-1", product.id)

        assert created is True
        assert dossier.current_step_instance_id is None
        assert _events("STEP_STARTED") == []

    def test_two_clients_same_product(self, llc_product):
        a, _ = provision_dossier("client-a", llc_product.id)
        b, _ = provision_dossier("client-b", llc_product.id)
        assert a.id != b.id
        assert StepInstance.query.count() == 4


class TestConfirmOrderPayment:
    def test_marks_paid_and_provisions(self, llc_product):
        order = _order(llc_product)

        result = confirm_order_payment(order.id, amount=59900)

        assert result["created"] is True
        assert result["order"]["status"] == "PAID"
        assert result["order"]["amount"] == 59900
        assert result["order"]["paid_at"] is not None
        assert result["order"]["dossier_id"] == result["dossier"]["id"]
        assert result["dossier"]["metadata"]["order_id"] == order.id

        payment = _events("PAYMENT_RECEIVED")
        assert len(payment) == 1
        assert payment[0].entity_type == "order"

    def test_replay_is_noop(self, llc_product):
        order = _order(llc_product)
        first = confirm_order_payment(order.id)
        second = confirm_order_payment(order.id)

        assert second["created"] is False
        assert second["dossier"]["id"] == first["dossier"]["id"]
        assert len(_events("PAYMENT_RECEIVED")) == 1
        assert len(_events("DOSSIER_CREATED")) == 1

    def test_failed_order_rejected(self, llc_product):
        order = _order(llc_product, status="FAILED")
        with pytest.raises(ValidationError):
            confirm_order_payment(order.id)
        assert Dossier.query.count() == 0

    def test_unknown_order(self):
        with pytest.raises(NotFoundError):
            confirm_order_payment("missing")


class TestCreateDossierForClient:
    def test_creates_paid_order_and_dossier(self, llc_product, admin_actor):
        result = create_dossier_for_client("client-9", llc_product.id, admin_actor.user_id)

        order = db.session.get(Order, result["order_id"])
        dossier = db.session.get(Dossier, result["dossier_id"])
        assert order.status == "PAID"
        assert order.amount == 49900
        assert order.dossier_id == dossier.id
        assert dossier.meta["created_via"] == "manual_admin_creation"
        assert dossier.meta["created_by_admin"] == admin_actor.user_id

        created = _events("DOSSIER_CREATED")[0]
        assert created.actor_type == "ADMIN"
        assert created.actor_id == admin_actor.user_id

    def test_initial_status_override(self, llc_product, admin_actor):
        result = create_dossier_for_client(
            "client-9", llc_product.id, admin_actor.user_id, initial_status="FORM_SUBMITTED",
        )
        assert db.session.get(Dossier, result["dossier_id"]).status == "FORM_SUBMITTED"

    def test_invalid_initial_status(self, llc_product, admin_actor):
        with pytest.raises(ValidationError):
            create_dossier_for_client("client-9", llc_product.id, admin_actor.user_id, initial_status="NOPE")

    def test_duplicate_rejected(self, llc_product, admin_actor):
        create_dossier_for_client("client-9", llc_product.id, admin_actor.user_id)
        with pytest.raises(ConflictError):
            create_dossier_for_client("client-9", llc_product.id, admin_actor.user_id)
        assert Order.query.count() == 1

    def test_client_required(self, llc_product, admin_actor):
        with pytest.raises(ValidationError):
            create_dossier_for_client("", llc_product.id, admin_actor.user_id)


class TestResetDossier:
    def _progress(self, dossier, articles_type, make_document):
        """Complete S1 by hand and deliver S2's document."""
        s1 = db.session.get(StepInstance, dossier.current_step_instance_id)
        s2 = StepInstance.query.filter(
            StepInstance.dossier_id == dossier.id, StepInstance.id != s1.id
        ).one()
        s1.completed_at = s1.started_at
        s2.started_at = s1.started_at
        dossier.current_step_instance_id = s2.id
        dossier.status = "FORM_SUBMITTED"
        db.session.commit()
        make_document(s2, articles_type, status="DELIVERED")

    def test_reset_restores_fresh_state(self, llc_product, articles_type, make_document, admin_actor):
        dossier, _ = provision_dossier("client-1", llc_product.id)
        self._progress(dossier, articles_type, make_document)

        result = reset_dossier(dossier.id, admin_actor, "Client restarted the form")

        assert result["documents_deleted"] == 1
        assert result["step_instances_recreated"] == 2
        assert Document.query.count() == 0

        fresh = db.session.get(Dossier, dossier.id)
        assert fresh.status == "QUALIFICATION"
        assert fresh.completed_at is None
        assert fresh.current_step_instance_id == result["current_step_instance_id"]
        assert fresh.meta["reset_reason"] == "Client restarted the form"
        assert fresh.meta["previous_status"] == "FORM_SUBMITTED"
        assert fresh.meta["reset_by"] == admin_actor.user_id

        current = db.session.get(StepInstance, fresh.current_step_instance_id)
        assert current.step.code == "S1_CLIENT_FORM"
        assert current.started_at is not None
        assert StepInstance.query.filter(StepInstance.completed_at.isnot(None)).count() == 0

    def test_reset_event(self, llc_product, admin_actor):
        dossier, _ = provision_dossier("client-1", llc_product.id)
        reset_dossier(dossier.id, admin_actor, "typo in company name")

        event = _events("DOSSIER_RESET")[0]
        assert event.actor_type == "ADMIN"
        assert event.payload["reset_reason"] == "typo in company name"
        assert event.payload["step_instances_recreated"] == 2
        assert len(_events("STEP_STARTED")) == 2

    def test_reason_required(self, llc_product, admin_actor):
        dossier, _ = provision_dossier("client-1", llc_product.id)
        with pytest.raises(ValidationError):
            reset_dossier(dossier.id, admin_actor, "   ")

    def test_admin_only(self, llc_product, verificateur):
        _, actor = verificateur
        dossier, _ = provision_dossier("client-1", llc_product.id)
        with pytest.raises(ForbiddenError):
            reset_dossier(dossier.id, actor, "no")

    def test_unknown_dossier(self, admin_actor):
        with pytest.raises(NotFoundError):
            reset_dossier("missing", admin_actor, "why")

    def test_agent_assignment_is_not_carried_over(self, llc_product, admin_actor, make_agent):
        dossier, _ = provision_dossier("client-1", llc_product.id)
        agent = make_agent("someone@example.com")
        current = db.session.get(StepInstance, dossier.current_step_instance_id)
        current.assigned_to = agent.id
        db.session.commit()

        reset_dossier(dossier.id, admin_actor, "start over")

        assert StepInstance.query.filter(StepInstance.assigned_to.isnot(None)).count() == 0
