"""
Step assignment, ADMIN document delivery and CLIENT document review.

Assignment pairs a step instance with an agent whose type matches the step
type (VERIFICATEUR ↔ CLIENT, CREATEUR ↔ ADMIN). Delivery is how a createur
satisfies the document readiness gate of an ADMIN step. Review is the
verificateur's approval or rejection of what the client uploaded.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from app.auth import Actor
from app.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.models import db
from app.models.agent import Agent, AgentType, agent_type_for_step_type
from app.models.catalog import StepType
from app.models.dossier import Document
from app.services.document_readiness import get_step_instance_or_404
from app.services.event_service import emit_event
from app.services.step_completion import resolve_agent

logger = logging.getLogger(__name__)


def assign_step_instance(step_instance_id: str, agent_id: str | None) -> dict:
    """Assign (or with ``agent_id=None`` unassign) a step instance."""
    instance = get_step_instance_or_404(step_instance_id)

    if agent_id is None:
        instance.assigned_to = None
        db.session.commit()
        logger.info("Step instance %s unassigned", instance.id, extra={"step_instance_id": instance.id})
        return instance.to_dict()

    agent = db.session.get(Agent, agent_id)
    if agent is None:
        raise NotFoundError(resource="Agent", resource_id=agent_id)
    if not agent.active:
        raise ValidationError("Agent is not active")

    expected = agent_type_for_step_type(instance.step.step_type)
    if expected is None or agent.agent_type != expected.value:
        raise ValidationError(
            f"A {instance.step.step_type} step must be assigned to a "
            f"{expected.value if expected else 'compatible'} agent",
            details={"expected_agent_type": expected.value if expected else None},
        )

    try:
        instance.assigned_to = agent.id
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Step instance %s assigned to %s", instance.id, agent.email,
        extra={"dossier_id": instance.dossier_id, "step_instance_id": instance.id},
    )
    return instance.to_dict()


def deliver_document(document_id: str, actor: Actor) -> dict:
    """Mark an ADMIN document as DELIVERED to the client."""
    agent = resolve_agent(actor)

    document = db.session.get(Document, document_id)
    if document is None:
        raise NotFoundError(resource="Document", resource_id=document_id)
    if document.source != "ADMIN":
        raise ValidationError("Not an admin document")

    instance = document.step_instance
    if instance is None or instance.assigned_to != agent.id:
        raise ForbiddenError("Not authorized to deliver this document", reason="not_assigned")
    if instance.step.step_type != StepType.ADMIN.value:
        raise ValidationError("Not an ADMIN step")
    if document.status == "DELIVERED":
        raise ConflictError(
            resource="Document", field="status", value="DELIVERED",
            message="Document already delivered",
        )

    try:
        document.status = "DELIVERED"
        document.delivered_at = datetime.now(timezone.utc)
        emit_event(
            entity_type="document",
            entity_id=document.id,
            event_type="DOCUMENT_DELIVERED",
            actor_type="AGENT",
            actor_id=agent.id,
            payload={
                "dossier_id": document.dossier_id,
                "step_instance_id": instance.id,
                "document_type": document.document_type.label if document.document_type else None,
                "agent_name": agent.name or agent.email,
                "agent_type": agent.agent_type,
            },
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Document %s delivered by %s", document.id, agent.email,
        extra={"dossier_id": document.dossier_id, "step_instance_id": instance.id},
    )
    return document.to_dict()


REVIEW_DECISIONS = ("APPROVED", "REJECTED")
REJECTION_REASON_MIN_LENGTH = 10


def review_document(document_id: str, actor: Actor, decision: str, reason: str | None = None) -> dict:
    """Approve or reject a CLIENT document on behalf of its verificateur.

    A rejection needs a reason of at least REJECTION_REASON_MIN_LENGTH
    characters; it is stored on the document and sent in the event payload.
    ADMIN actors may review any client document.
    """
    if decision not in REVIEW_DECISIONS:
        raise ValidationError("status must be APPROVED or REJECTED")
    reason = (reason or "").strip() or None
    if decision == "REJECTED" and (reason is None or len(reason) < REJECTION_REASON_MIN_LENGTH):
        raise ValidationError(
            f"A reason of at least {REJECTION_REASON_MIN_LENGTH} characters is required to reject a document"
        )

    agent = resolve_agent(actor)

    document = db.session.get(Document, document_id)
    if document is None:
        raise NotFoundError(resource="Document", resource_id=document_id)
    if document.source != "CLIENT":
        raise ValidationError("Not a client document")

    instance = document.step_instance
    if not actor.is_admin:
        if instance is None or instance.assigned_to != agent.id:
            raise ForbiddenError("Not authorized to review this document", reason="not_assigned")
        if agent.agent_type != AgentType.VERIFICATEUR.value:
            raise ForbiddenError("Only a verificateur can review client documents", reason="step_type_mismatch")
    if instance is not None and instance.step.step_type != StepType.CLIENT.value:
        raise ValidationError("Not a CLIENT step")
    if not document.current_version_id:
        raise ValidationError("Document has no uploaded version")
    if document.status == decision:
        raise ConflictError(
            resource="Document", field="status", value=decision,
            message=f"Document already {decision.lower()}",
        )

    try:
        document.status = decision
        document.reviewed_by = agent.id
        document.reviewed_at = datetime.now(timezone.utc)
        document.rejection_reason = reason if decision == "REJECTED" else None
        emit_event(
            entity_type="document",
            entity_id=document.id,
            event_type="DOCUMENT_REVIEWED",
            actor_type="AGENT",
            actor_id=agent.id,
            payload={
                "status": decision,
                "reason": document.rejection_reason,
                "dossier_id": document.dossier_id,
                "step_instance_id": instance.id if instance is not None else None,
                "document_type": document.document_type.label if document.document_type else None,
                "reviewer_name": agent.name or agent.email,
                "agent_type": agent.agent_type,
            },
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Document %s %s by %s", document.id, decision, agent.email,
        extra={"dossier_id": document.dossier_id, "step_instance_id": document.step_instance_id},
    )
    return document.to_dict()
