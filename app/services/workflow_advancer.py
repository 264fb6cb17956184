"""
Workflow Advancer.

Given a step that was just completed on a dossier, resolves the next step in
the product's ordered sequence, gets or creates its StepInstance and repoints
Dossier.current_step_instance_id at it.

Concurrency:
    The get-or-create runs inside a SAVEPOINT. Two completions racing on the
    same dossier both try to insert (dossier_id, step_id); the loser hits the
    unique constraint, rolls back to the savepoint and reuses the winner's row.

advance() never commits: it joins the caller's transaction so that the
completion, the advancement and the emitted event land together.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import NotFoundError
from app.models import db
from app.models.catalog import ProductStep
from app.models.dossier import Dossier, StepInstance

logger = logging.getLogger(__name__)


def find_next_product_step(product_id: str, step_id: str) -> ProductStep | None:
    """First ProductStep strictly after ``step_id`` in the product's order.

    Returns None when the step is last, or when it is not configured on the
    product at all.
    """
    current = db.session.execute(
        select(ProductStep).where(
            ProductStep.product_id == product_id,
            ProductStep.step_id == step_id,
        )
    ).scalars().first()
    if current is None:
        return None

    return db.session.execute(
        select(ProductStep)
        .where(
            ProductStep.product_id == product_id,
            ProductStep.position > current.position,
        )
        .order_by(ProductStep.position.asc())
        .limit(1)
    ).scalars().first()


def _find_instance(dossier_id: str, step_id: str) -> StepInstance | None:
    return db.session.execute(
        select(StepInstance).where(
            StepInstance.dossier_id == dossier_id,
            StepInstance.step_id == step_id,
        )
    ).scalars().first()


def get_or_create_step_instance(dossier_id: str, step_id: str, **values) -> tuple[StepInstance, bool]:
    """Return the dossier's instance of ``step_id``, creating it if absent.

    Returns:
        (instance, created)
    """
    existing = _find_instance(dossier_id, step_id)
    if existing is not None:
        return existing, False

    try:
        with db.session.begin_nested():
            instance = StepInstance(dossier_id=dossier_id, step_id=step_id, **values)
            db.session.add(instance)
    except IntegrityError:
        logger.info(
            "Concurrent step instance insert for dossier=%s step=%s, reusing existing row",
            dossier_id, step_id,
        )
        existing = _find_instance(dossier_id, step_id)
        if existing is None:
            raise
        return existing, False

    return instance, True


def advance(dossier_id: str, just_completed_step_id: str) -> dict:
    """Move the dossier's current-step pointer past ``just_completed_step_id``.

    Returns:
        {"next_step_instance_id": str | None, "next_step_label": str | None,
         "created": bool}
        next_step_instance_id is None when the dossier reached the end of its
        step sequence. Reaching the end does not change Dossier.status.

    Raises:
        NotFoundError: If the dossier does not exist.
    """
    dossier = db.session.get(Dossier, dossier_id)
    if dossier is None:
        raise NotFoundError(resource="Dossier", resource_id=dossier_id)

    next_ps = find_next_product_step(dossier.product_id, just_completed_step_id)
    if next_ps is None:
        logger.info(
            "Dossier %s has no step after %s — workflow complete",
            dossier_id, just_completed_step_id,
        )
        return {"next_step_instance_id": None, "next_step_label": None, "created": False}

    # Started_at stays NULL: the next actor starts the step explicitly.
    instance, created = get_or_create_step_instance(dossier.id, next_ps.step_id)

    dossier.current_step_instance_id = instance.id
    db.session.flush()

    logger.info(
        "Dossier %s advanced to step %s (instance=%s, created=%s)",
        dossier_id, next_ps.step.code if next_ps.step else next_ps.step_id, instance.id, created,
    )
    return {
        "next_step_instance_id": instance.id,
        "next_step_label": next_ps.step.label if next_ps.step else None,
        "created": created,
    }
