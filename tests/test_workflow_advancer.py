"""
Workflow advancer tests: next-step resolution, end of sequence, and
get-or-create idempotence on (dossier_id, step_id).
"""

import pytest

from app.core.exceptions import NotFoundError
from app.models import db
from app.models.catalog import Product, ProductStep, Step
from app.models.dossier import Dossier, StepInstance
from app.services.workflow_advancer import (
    advance,
    find_next_product_step,
    get_or_create_step_instance,
)


@pytest.fixture()
def three_step_product(make_product):
    return make_product(
        [("A_INTAKE", "CLIENT", None), ("B_REVIEW", "CLIENT", None), ("C_FILING", "ADMIN", None)],
        name="Three steps",
    )


def _steps(product):
    return [ps.step for ps in product.product_steps]


def _bare_dossier(product, user_id="client-adv"):
    """Dossier with no materialized instances, so the advancer has to create them."""
    dossier = Dossier(user_id=user_id, product_id=product.id, type=product.dossier_type, status="QUALIFICATION")
    db.session.add(dossier)
    db.session.commit()
    return dossier


class TestFindNextProductStep:
    def test_next_after_first(self, three_step_product):
        a, b, _ = _steps(three_step_product)
        nxt = find_next_product_step(three_step_product.id, a.id)
        assert nxt.step_id == b.id

    def test_none_after_last(self, three_step_product):
        _, _, c = _steps(three_step_product)
        assert find_next_product_step(three_step_product.id, c.id) is None

    def test_none_for_step_not_on_product(self, three_step_product):
        stray = Step(code="STRAY", label="Stray", step_type="CLIENT")
        db.session.add(stray)
        db.session.commit()
        assert find_next_product_step(three_step_product.id, stray.id) is None

    def test_positions_with_gaps(self):
        product = Product(name="Gappy")
        db.session.add(product)
        db.session.flush()
        steps = []
        for code, position in (("G1", 10), ("G2", 40), ("G3", 20)):
            step = Step(code=code, label=code, step_type="CLIENT")
            db.session.add(step)
            db.session.flush()
            db.session.add(ProductStep(product_id=product.id, step_id=step.id, position=position))
            steps.append(step)
        db.session.commit()

        assert find_next_product_step(product.id, steps[0].id).step_id == steps[2].id
        assert find_next_product_step(product.id, steps[2].id).step_id == steps[1].id


class TestAdvance:
    def test_advance_creates_next_instance_and_repoints(self, three_step_product):
        a, b, _ = _steps(three_step_product)
        dossier = _bare_dossier(three_step_product)

        result = advance(dossier.id, a.id)
        db.session.commit()

        assert result["created"] is True
        assert result["next_step_label"] == b.label
        instance = db.session.get(StepInstance, result["next_step_instance_id"])
        assert instance.step_id == b.id
        assert instance.started_at is None
        assert instance.completed_at is None
        assert db.session.get(Dossier, dossier.id).current_step_instance_id == instance.id

    def test_advance_past_last_returns_none(self, three_step_product):
        _, _, c = _steps(three_step_product)
        dossier = _bare_dossier(three_step_product)

        result = advance(dossier.id, c.id)

        assert result["next_step_instance_id"] is None
        assert db.session.get(Dossier, dossier.id).status == "QUALIFICATION"

    def test_advance_twice_reuses_instance(self, three_step_product):
        a, b, _ = _steps(three_step_product)
        dossier = _bare_dossier(three_step_product)

        first = advance(dossier.id, a.id)
        second = advance(dossier.id, a.id)
        db.session.commit()

        assert second["created"] is False
        assert first["next_step_instance_id"] == second["next_step_instance_id"]
        assert StepInstance.query.filter_by(dossier_id=dossier.id, step_id=b.id).count() == 1

    def test_unknown_dossier_raises(self, three_step_product):
        a, _, _ = _steps(three_step_product)
        with pytest.raises(NotFoundError):
            advance("missing-dossier", a.id)


class TestGetOrCreateStepInstance:
    def test_existing_instance_returned(self, three_step_product):
        a, _, _ = _steps(three_step_product)
        dossier = _bare_dossier(three_step_product)
        existing = StepInstance(dossier_id=dossier.id, step_id=a.id)
        db.session.add(existing)
        db.session.commit()

        instance, created = get_or_create_step_instance(dossier.id, a.id)

        assert created is False
        assert instance.id == existing.id

    def test_lost_insert_race_reuses_winner(self, three_step_product, monkeypatch):
        """The existence check misses a row committed concurrently; the unique
        constraint rejects the insert and the winner's row is reused."""
        from app.services import workflow_advancer

        a, _, _ = _steps(three_step_product)
        dossier = _bare_dossier(three_step_product)
        winner = StepInstance(dossier_id=dossier.id, step_id=a.id)
        db.session.add(winner)
        db.session.commit()
        winner_id = winner.id

        real_find = workflow_advancer._find_instance
        calls = []

        def _stale_first_lookup(dossier_id, step_id):
            calls.append(step_id)
            if len(calls) == 1:
                return None
            return real_find(dossier_id, step_id)

        monkeypatch.setattr(workflow_advancer, "_find_instance", _stale_first_lookup)

        instance, created = get_or_create_step_instance(dossier.id, a.id)
        db.session.commit()

        assert created is False
        assert instance.id == winner_id
        assert len(calls) == 2
        assert StepInstance.query.filter_by(dossier_id=dossier.id, step_id=a.id).count() == 1

    def test_creates_with_values(self, three_step_product):
        a, _, _ = _steps(three_step_product)
        dossier = _bare_dossier(three_step_product)

        instance, created = get_or_create_step_instance(dossier.id, a.id, assigned_to=None)
        db.session.commit()

        assert created is True
        assert StepInstance.query.filter_by(dossier_id=dossier.id).count() == 1
