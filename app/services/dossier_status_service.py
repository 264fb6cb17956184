"""
Dossier Status Transition Service.

Two ways a dossier's overall status moves:
  apply_approval_status()  — automatic, when a step is approved and its
                             ProductStep carries dossier_status_on_approval
  change_dossier_status()  — manual, from the admin back-office

Both emit DOSSIER_STATUS_CHANGED. A misconfigured approval target (unknown
status) is a configuration error: it is logged and ignored, never raised.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select

from app.auth import Actor
from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.catalog import ProductStep
from app.models.dossier import DOSSIER_STATUS_LIST, Dossier, is_valid_dossier_status
from app.services.event_service import emit_event

logger = logging.getLogger(__name__)


def _set_status(dossier: Dossier, new_status: str) -> str:
    previous = dossier.status
    now = datetime.now(timezone.utc)
    dossier.status = new_status
    dossier.updated_at = now
    if new_status == "COMPLETED" and dossier.completed_at is None:
        dossier.completed_at = now
    return previous


def apply_approval_status(dossier_id: str, product_id: str, step_id: str) -> str | None:
    """Apply the ProductStep's configured status to the dossier, if any.

    Only called for approved completions (createur auto-approval or admin
    approval). Does not commit.

    Returns:
        The new status when a transition happened, else None.
    """
    target = db.session.execute(
        select(ProductStep.dossier_status_on_approval).where(
            ProductStep.product_id == product_id,
            ProductStep.step_id == step_id,
        )
    ).scalar()
    target = (target or "").strip()
    if not target:
        return None

    if not is_valid_dossier_status(target):
        logger.warning(
            "Ignoring invalid dossier_status_on_approval=%r on product=%s step=%s",
            target, product_id, step_id,
        )
        return None

    dossier = db.session.get(Dossier, dossier_id)
    if dossier is None:
        raise NotFoundError(resource="Dossier", resource_id=dossier_id)
    if dossier.status == target:
        return None

    previous = _set_status(dossier, target)
    emit_event(
        entity_type="dossier",
        entity_id=dossier.id,
        event_type="DOSSIER_STATUS_CHANGED",
        actor_type="SYSTEM",
        payload={
            "dossier_id": dossier.id,
            "previous_status": previous,
            "new_status": target,
            "reason": "step_approval",
            "step_id": step_id,
        },
    )
    logger.info("Dossier %s status %s → %s on step approval", dossier.id, previous, target)
    return target


def change_dossier_status(dossier_id: str, new_status: str, actor: Actor) -> dict:
    """Admin-driven status change. Commits.

    Raises:
        ValidationError: Unknown status value.
        NotFoundError: Dossier does not exist.
    """
    new_status = (new_status or "").strip()
    if not is_valid_dossier_status(new_status):
        raise ValidationError(
            f"Invalid dossier status '{new_status}'",
            details={"valid_statuses": DOSSIER_STATUS_LIST},
        )

    dossier = db.session.get(Dossier, dossier_id)
    if dossier is None:
        raise NotFoundError(resource="Dossier", resource_id=dossier_id)

    if dossier.status == new_status:
        return dossier.to_dict()

    try:
        previous = _set_status(dossier, new_status)
        emit_event(
            entity_type="dossier",
            entity_id=dossier.id,
            event_type="DOSSIER_STATUS_CHANGED",
            actor_type="ADMIN",
            actor_id=actor.user_id,
            payload={
                "dossier_id": dossier.id,
                "previous_status": previous,
                "new_status": new_status,
                "reason": "manual",
            },
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Dossier %s status %s → %s by %s", dossier.id, previous, new_status, actor.email)
    return dossier.to_dict()
