"""
Step Completion Engine.

Agents close step instances here. Completion is the only way a dossier moves
forward: a completed step triggers the approval status transition (createur
completions are auto-approved) and then the workflow advancer.

Precondition order for complete_step(), first failure wins:
  1. actor resolves to an active Agent                     → ForbiddenError
  2. step instance exists                                  → NotFoundError
  3. actor is the assigned agent (ADMIN bypasses)          → ForbiddenError
  4. agent type may complete the step type                 → ForbiddenError
  5. step instance not already completed                   → ConflictError
  6. createur only: required documents delivered          → FailedPreconditionError

Everything after the checks runs in one transaction: the compare-and-set on
completed_at, the approval fields, the status transition, the advancement and
the STEP_COMPLETED event are committed together or not at all.

validate_all_client_steps() is the verificateur's bulk path: it approves the
client uploads and completes consecutive CLIENT steps in one transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select, update

from app.auth import Actor
from app.core.exceptions import (
    ConflictError,
    FailedPreconditionError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from app.models import db
from app.models.agent import Agent, AgentType, can_complete_step_type
from app.models.catalog import Step, StepType
from app.models.dossier import Document, Dossier, StepInstance
from app.services.document_readiness import (
    get_step_instance_or_404,
    missing_document_type_ids,
)
from app.services.dossier_status_service import apply_approval_status
from app.services.event_service import emit_event
from app.services.workflow_advancer import advance
from app.utils.errors import E

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Agent resolution
# ═════════════════════════════════════════════════════════════════════════════


def resolve_agent(actor: Actor | None) -> Agent:
    """Map the authenticated actor onto an active Agent row.

    ADMIN actors without an Agent row get a CREATEUR agent on first use.

    Raises:
        ForbiddenError: No active agent for a non-admin actor.
    """
    if actor is None or not actor.email:
        raise ForbiddenError("Agent not found", reason="agent_not_found")

    agent = db.session.execute(
        select(Agent).where(Agent.email == actor.email.lower())
    ).scalars().first()

    if agent is None and actor.is_admin:
        agent = Agent(
            email=actor.email.lower(),
            name=actor.email.split("@")[0],
            agent_type=AgentType.CREATEUR.value,
            active=True,
        )
        db.session.add(agent)
        db.session.flush()
        logger.info("Created CREATEUR agent for admin %s", actor.email)

    if agent is None or not agent.active:
        raise ForbiddenError("Agent not found or inactive", reason="agent_not_found")
    return agent


def _check_agent_can_complete(agent: Agent, step: Step) -> None:
    if can_complete_step_type(agent.agent_type, step.step_type):
        return
    if agent.agent_type == AgentType.VERIFICATEUR.value:
        message = "A verificateur can only complete CLIENT steps"
    else:
        message = "A createur can only complete ADMIN steps"
    raise ForbiddenError(message, reason="step_type_mismatch")


def _completion_payload(
    *,
    instance: StepInstance,
    agent: Agent,
    manual: bool,
    next_step_label: str | None,
) -> dict:
    step = instance.step
    return {
        "manual": manual,
        "agent_type": agent.agent_type,
        "agent_name": agent.name or agent.email,
        "step_code": step.code,
        "step_label": step.label,
        "step_name": step.label,
        "dossier_id": instance.dossier_id,
        "next_step_name": next_step_label,
    }


def _is_open_client_step(instance: StepInstance | None) -> bool:
    return (
        instance is not None
        and instance.completed_at is None
        and instance.step.step_type == StepType.CLIENT.value
    )


def _finish_completion(
    instance: StepInstance,
    agent: Agent,
    *,
    approved: bool,
    manual: bool,
) -> dict:
    """Status transition, advancement and event for a freshly completed instance."""
    dossier = db.session.get(Dossier, instance.dossier_id)
    if dossier is None:
        raise NotFoundError(resource="Dossier", resource_id=instance.dossier_id)

    if approved:
        apply_approval_status(dossier.id, dossier.product_id, instance.step_id)

    result = advance(dossier.id, instance.step_id)

    emit_event(
        entity_type="step_instance",
        entity_id=instance.id,
        event_type="STEP_COMPLETED",
        actor_type="AGENT",
        actor_id=agent.id,
        payload=_completion_payload(
            instance=instance,
            agent=agent,
            manual=manual,
            next_step_label=result["next_step_label"],
        ),
    )
    return result


# ═════════════════════════════════════════════════════════════════════════════
# Operations
# ═════════════════════════════════════════════════════════════════════════════


def complete_step(step_instance_id: str, actor: Actor, manual: bool = False) -> dict:
    """Complete a step instance on behalf of an agent.

    Returns:
        {"advanced": bool, "next_step_instance_id": str | None}
    """
    agent = resolve_agent(actor)
    instance = get_step_instance_or_404(step_instance_id)

    if not actor.is_admin and instance.assigned_to != agent.id:
        raise ForbiddenError("You are not assigned to this step", reason="not_assigned")

    _check_agent_can_complete(agent, instance.step)

    if instance.completed_at is not None:
        raise ConflictError(
            resource="StepInstance", field="completed_at",
            message="This step is already completed",
        )

    is_createur = agent.agent_type == AgentType.CREATEUR.value
    # Verificateur completions are not gated: a CLIENT step has no ADMIN
    # deliverables to wait for.
    if is_createur:
        missing = missing_document_type_ids(instance)
        if missing:
            raise FailedPreconditionError(
                "All required documents must be delivered before completing this step",
                code=E.DOCUMENTS_NOT_DELIVERED,
                details={"missing_document_type_ids": missing},
            )

    now = datetime.now(timezone.utc)
    values = {
        "completed_at": now,
        "started_at": func.coalesce(StepInstance.started_at, now),
    }
    if is_createur:
        values.update(validation_status="APPROVED", validated_by=agent.id, validated_at=now)

    try:
        updated = db.session.execute(
            update(StepInstance)
            .where(StepInstance.id == instance.id, StepInstance.completed_at.is_(None))
            .values(**values)
            .execution_options(synchronize_session=False)
        ).rowcount
        if updated == 0:
            raise ConflictError(
                resource="StepInstance", field="completed_at",
                message="This step is already completed",
            )
        db.session.refresh(instance)

        result = _finish_completion(instance, agent, approved=is_createur, manual=manual)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Step instance %s completed by %s (%s), advanced=%s",
        instance.id, agent.email, agent.agent_type, result["next_step_instance_id"] is not None,
        extra={"dossier_id": instance.dossier_id, "step_instance_id": instance.id},
    )
    return {
        "advanced": result["next_step_instance_id"] is not None,
        "next_step_instance_id": result["next_step_instance_id"],
    }


def create_and_complete_step(dossier_id: str, step_id: str, actor: Actor) -> dict:
    """Complete an ADMIN step that may not have been materialized yet.

    Createur only. An open instance is completed in place, after the
    assignment and document checks of complete_step; it must be unassigned
    or assigned to the caller (ADMIN bypasses). Otherwise a new instance is
    created already started, completed and approved.

    Returns:
        {"step_instance_id": str, "advanced": bool, "next_step_instance_id": str | None}
    """
    agent = resolve_agent(actor)
    if agent.agent_type != AgentType.CREATEUR.value:
        raise ForbiddenError("Only a createur can create and complete a step", reason="step_type_mismatch")

    dossier = db.session.get(Dossier, dossier_id)
    if dossier is None:
        raise NotFoundError(resource="Dossier", resource_id=dossier_id)

    step = db.session.get(Step, step_id)
    if step is None:
        raise NotFoundError(resource="Step", resource_id=step_id)
    if step.step_type != StepType.ADMIN.value:
        raise ValidationError("Only ADMIN steps can be created and completed by a createur")

    instance = db.session.execute(
        select(StepInstance).where(
            StepInstance.dossier_id == dossier.id,
            StepInstance.step_id == step.id,
        )
    ).scalars().first()
    if instance is not None:
        # an existing instance gets the same guards as complete_step
        if not actor.is_admin and instance.assigned_to not in (None, agent.id):
            raise ForbiddenError("You are not assigned to this step", reason="not_assigned")
        if instance.completed_at is not None:
            raise ConflictError(
                resource="StepInstance", field="completed_at",
                message="This step is already completed",
            )
        missing = missing_document_type_ids(instance)
        if missing:
            raise FailedPreconditionError(
                "All required documents must be delivered before completing this step",
                code=E.DOCUMENTS_NOT_DELIVERED,
                details={"missing_document_type_ids": missing},
            )

    now = datetime.now(timezone.utc)
    try:
        if instance is None:
            instance = StepInstance(
                dossier_id=dossier.id,
                step_id=step.id,
                assigned_to=agent.id,
                started_at=now,
            )
            db.session.add(instance)
            db.session.flush()

        updated = db.session.execute(
            update(StepInstance)
            .where(StepInstance.id == instance.id, StepInstance.completed_at.is_(None))
            .values(
                assigned_to=agent.id,
                completed_at=now,
                started_at=func.coalesce(StepInstance.started_at, now),
                validation_status="APPROVED",
                validated_by=agent.id,
                validated_at=now,
            )
            .execution_options(synchronize_session=False)
        ).rowcount
        if updated == 0:
            raise ConflictError(
                resource="StepInstance", field="completed_at",
                message="This step is already completed",
            )
        db.session.refresh(instance)

        result = _finish_completion(instance, agent, approved=True, manual=True)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Step %s created and completed on dossier %s by %s",
        step.code, dossier.id, agent.email,
        extra={"dossier_id": dossier.id, "step_instance_id": instance.id},
    )
    return {
        "step_instance_id": instance.id,
        "advanced": result["next_step_instance_id"] is not None,
        "next_step_instance_id": result["next_step_instance_id"],
    }


def approve_step(dossier_id: str, step_instance_id: str, actor: Actor) -> dict:
    """Admin approval of a step instance. Does not advance the dossier."""
    if actor is None or not actor.is_admin:
        raise ForbiddenError("Admin role required", reason="not_admin")

    agent = resolve_agent(actor)
    instance = get_step_instance_or_404(step_instance_id)
    if instance.dossier_id != dossier_id:
        raise ForbiddenError("Step instance does not belong to this dossier", reason="dossier_mismatch")

    dossier = db.session.get(Dossier, dossier_id)
    if dossier is None:
        raise NotFoundError(resource="Dossier", resource_id=dossier_id)

    now = datetime.now(timezone.utc)
    try:
        instance.validation_status = "APPROVED"
        instance.validated_by = agent.id
        instance.validated_at = now
        if instance.completed_at is None:
            instance.completed_at = now
        if instance.started_at is None:
            instance.started_at = now

        new_status = apply_approval_status(dossier.id, dossier.product_id, instance.step_id)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Step instance %s approved by admin %s (status_applied=%s)",
        instance.id, actor.email, new_status,
        extra={"dossier_id": dossier.id, "step_instance_id": instance.id},
    )
    return {"step_instance": instance.to_dict(), "dossier_status": dossier.status}


def validate_all_client_steps(dossier_id: str, actor: Actor, complete_despite_missing: bool = False) -> dict:
    """Approve pending client uploads and complete the dossier's CLIENT steps.

    Walks forward from the dossier's current step while it is an open CLIENT
    step assigned to the caller (ADMIN: any), so the pointer never moves past
    an ADMIN step. Every PENDING or UPLOADED client document of a walked step
    is approved. A step whose required documents are not all APPROVED stops
    the walk, unless complete_despite_missing is set; such completions are
    flagged manual. Everything runs in one transaction.

    Returns:
        {"completed_step_instance_ids": [...], "approved_document_ids": [...],
         "blocked_step_instance_id": str | None,
         "missing_document_type_ids": [...],
         "current_step_instance_id": str | None}
    """
    agent = resolve_agent(actor)
    if not actor.is_admin and agent.agent_type != AgentType.VERIFICATEUR.value:
        raise ForbiddenError("Only a verificateur can validate client steps", reason="step_type_mismatch")

    dossier = db.session.get(Dossier, dossier_id)
    if dossier is None:
        raise NotFoundError(resource="Dossier", resource_id=dossier_id)

    instance = (
        db.session.get(StepInstance, dossier.current_step_instance_id)
        if dossier.current_step_instance_id else None
    )
    if _is_open_client_step(instance) and not actor.is_admin and instance.assigned_to != agent.id:
        raise ForbiddenError("You are not assigned to this step", reason="not_assigned")

    completed, approved = [], []
    blocked_id, missing = None, []
    next_id = dossier.current_step_instance_id
    now = datetime.now(timezone.utc)

    try:
        while _is_open_client_step(instance) and (actor.is_admin or instance.assigned_to == agent.id):
            pending = db.session.execute(
                select(Document).where(
                    Document.step_instance_id == instance.id,
                    Document.source == "CLIENT",
                    Document.status.in_(("PENDING", "UPLOADED")),
                    Document.current_version_id.is_not(None),
                ).order_by(Document.created_at.asc(), Document.id.asc())
            ).scalars().all()
            for document in pending:
                document.status = "APPROVED"
                document.reviewed_by = agent.id
                document.reviewed_at = now
                document.rejection_reason = None
                emit_event(
                    entity_type="document",
                    entity_id=document.id,
                    event_type="DOCUMENT_REVIEWED",
                    actor_type="AGENT",
                    actor_id=agent.id,
                    payload={
                        "status": "APPROVED",
                        "reason": None,
                        "dossier_id": dossier.id,
                        "step_instance_id": instance.id,
                        "reviewer_name": agent.name or agent.email,
                        "agent_type": agent.agent_type,
                        "bulk": True,
                    },
                )
                approved.append(document.id)
            db.session.flush()

            missing = missing_document_type_ids(instance, status="APPROVED")
            if missing and not complete_despite_missing:
                blocked_id = instance.id
                break

            updated = db.session.execute(
                update(StepInstance)
                .where(StepInstance.id == instance.id, StepInstance.completed_at.is_(None))
                .values(
                    completed_at=now,
                    started_at=func.coalesce(StepInstance.started_at, now),
                    validation_status="APPROVED",
                    validated_by=agent.id,
                    validated_at=now,
                )
                .execution_options(synchronize_session=False)
            ).rowcount
            if updated == 0:
                raise ConflictError(
                    resource="StepInstance", field="completed_at",
                    message="This step is already completed",
                )
            db.session.refresh(instance)

            result = _finish_completion(instance, agent, approved=True, manual=bool(missing))
            completed.append(instance.id)
            missing = []
            next_id = result["next_step_instance_id"]
            instance = db.session.get(StepInstance, next_id) if next_id else None

        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Client steps validated on dossier %s by %s: completed=%d approved_documents=%d blocked=%s",
        dossier.id, agent.email, len(completed), len(approved), blocked_id,
        extra={"dossier_id": dossier.id},
    )
    return {
        "completed_step_instance_ids": completed,
        "approved_document_ids": approved,
        "blocked_step_instance_id": blocked_id,
        "missing_document_type_ids": missing,
        "current_step_instance_id": next_id,
    }
