"""
Document Readiness Evaluator.

A step instance is ready when, for every DocumentType its Step requires
(StepDocumentType), a Document scoped to (dossier, document type, step
instance) exists with status DELIVERED. A step with no required document
types is trivially ready. Read-only.
"""

from __future__ import annotations

from sqlalchemy import select

from app.core.exceptions import NotFoundError
from app.models import db
from app.models.catalog import StepDocumentType
from app.models.dossier import Document, StepInstance

DELIVERED = "DELIVERED"


def get_step_instance_or_404(step_instance_id: str) -> StepInstance:
    instance = db.session.get(StepInstance, step_instance_id)
    if instance is None:
        raise NotFoundError(resource="StepInstance", resource_id=step_instance_id)
    return instance


def required_document_type_ids(step_id: str) -> list[str]:
    return list(db.session.execute(
        select(StepDocumentType.document_type_id)
        .where(StepDocumentType.step_id == step_id)
        .order_by(StepDocumentType.document_type_id)
    ).scalars().all())


def missing_document_type_ids(instance: StepInstance, status: str = DELIVERED) -> list[str]:
    """Required document types with no document in ``status`` for this instance."""
    required = required_document_type_ids(instance.step_id)
    if not required:
        return []

    delivered = set(db.session.execute(
        select(Document.document_type_id).where(
            Document.dossier_id == instance.dossier_id,
            Document.step_instance_id == instance.id,
            Document.document_type_id.in_(required),
            Document.status == status,
        )
    ).scalars().all())
    return [dt_id for dt_id in required if dt_id not in delivered]


def is_step_ready(step_instance_id: str) -> bool:
    """Return True if every required document for the instance is DELIVERED.

    Raises:
        NotFoundError: If the step instance does not exist.
    """
    instance = get_step_instance_or_404(step_instance_id)
    return not missing_document_type_ids(instance)


def readiness_report(step_instance_id: str) -> dict:
    """Readiness plus the document types still missing, for the agent UI."""
    instance = get_step_instance_or_404(step_instance_id)
    required = required_document_type_ids(instance.step_id)
    missing = missing_document_type_ids(instance)
    return {
        "step_instance_id": instance.id,
        "ready": not missing,
        "required_document_type_ids": required,
        "missing_document_type_ids": missing,
    }
