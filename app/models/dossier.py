"""
Dossier Workflow Platform
Dossier domain models — client cases and their materialized steps.

Models:
    - Order:         paid purchase of a Product; provisioning trigger
    - Dossier:       a client's case for one Product
    - StepInstance:  occurrence of a Step within a Dossier
    - Document:      uploaded artifact metadata, optionally scoped to a StepInstance

Architecture:
    Order ──N:1──▶ Dossier ──1:N──▶ StepInstance ──1:N──▶ Document
    Dossier.current_step_instance_id ──▶ StepInstance   (cyclic FK, use_alter)

Lifecycle states:
    StepInstance:  NOT_STARTED → IN_PROGRESS → COMPLETED
                   (derived from started_at / completed_at; timestamps are the
                   persisted history, StepState is the checked view)
    Dossier:       free-form product lifecycle, restricted to DOSSIER_STATUSES
    Document:      PENDING → UPLOADED → APPROVED | REJECTED, ADMIN documents → DELIVERED
"""

import uuid
from datetime import datetime, timezone
from enum import Enum

from app.models import db


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


# ── Constants ────────────────────────────────────────────────────────────────

# Display order matters: admin dropdowns list statuses in this sequence.
DOSSIER_STATUS_LIST = [
    "QUALIFICATION",
    "FORM_SUBMITTED",
    "NM_PENDING",
    "LLC_ACCEPTED",
    "EIN_PENDING",
    "BANK_PREPARATION",
    "BANK_OPENED",
    "WAITING_48H",
    "IN_PROGRESS",
    "UNDER_REVIEW",
    "COMPLETED",
    "CLOSED",
    "ERROR",
]

DOSSIER_STATUSES = frozenset(DOSSIER_STATUS_LIST)

VALIDATION_STATUSES = {"APPROVED", "REJECTED"}

DOCUMENT_STATUSES = {"PENDING", "UPLOADED", "APPROVED", "REJECTED", "DELIVERED"}

DOCUMENT_SOURCES = {"CLIENT", "ADMIN"}

ORDER_STATUSES = {"PENDING", "PAID", "FAILED"}


def is_valid_dossier_status(value) -> bool:
    return isinstance(value, str) and value in DOSSIER_STATUSES


class StepState(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


# ═════════════════════════════════════════════════════════════════════════════
# Order
# ═════════════════════════════════════════════════════════════════════════════

class Order(db.Model):
    """Purchase of a Product. Only PAID orders provision dossiers."""

    __tablename__ = "orders"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    user_id = db.Column(db.String(36), nullable=False, index=True)
    product_id = db.Column(
        db.String(36), db.ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    amount = db.Column(db.Integer, nullable=True, comment="Minor units (cents)")
    currency = db.Column(db.String(3), nullable=False, default="EUR")
    status = db.Column(db.String(10), nullable=False, default="PENDING", comment="PENDING | PAID | FAILED")
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    dossier_id = db.Column(
        db.String(36), db.ForeignKey("dossiers.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "product_id": self.product_id,
            "amount": self.amount,
            "currency": self.currency,
            "status": self.status,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
            "dossier_id": self.dossier_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Order {self.id} {self.status}>"


# ═════════════════════════════════════════════════════════════════════════════
# Dossier
# ═════════════════════════════════════════════════════════════════════════════

class Dossier(db.Model):
    """
    A client's case for one Product.

    Business rules:
    - At most one Dossier per (user_id, product_id); provisioning is idempotent.
    - current_step_instance_id always points at an instance of this dossier,
      or is NULL only when the product has no configured steps.
    - Never hard-deleted in normal operation.
    """

    __tablename__ = "dossiers"
    __table_args__ = (
        db.UniqueConstraint("user_id", "product_id", name="uq_dossiers_user_product"),
        db.Index("ix_dossiers_status", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    user_id = db.Column(db.String(36), nullable=False, index=True)
    product_id = db.Column(
        db.String(36), db.ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    type = db.Column(db.String(50), nullable=False)
    status = db.Column(db.String(30), nullable=False, default="QUALIFICATION")
    current_step_instance_id = db.Column(
        db.String(36),
        db.ForeignKey(
            "step_instances.id",
            ondelete="SET NULL",
            use_alter=True,
            name="fk_dossiers_current_step_instance",
        ),
        nullable=True,
    )
    # "metadata" is reserved on declarative classes
    meta = db.Column("metadata", db.JSON, nullable=False, default=dict)
    is_test = db.Column(db.Boolean, nullable=False, default=False, comment="Excluded from analytics")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    product = db.relationship("Product", lazy="joined")
    step_instances = db.relationship(
        "StepInstance",
        back_populates="dossier",
        foreign_keys="StepInstance.dossier_id",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="select",
    )
    current_step_instance = db.relationship(
        "StepInstance",
        foreign_keys=[current_step_instance_id],
        post_update=True,
        lazy="select",
    )

    def to_dict(self, include_steps=False):
        result = {
            "id": self.id,
            "user_id": self.user_id,
            "product_id": self.product_id,
            "type": self.type,
            "status": self.status,
            "current_step_instance_id": self.current_step_instance_id,
            "metadata": self.meta or {},
            "is_test": self.is_test,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
        if include_steps:
            result["step_instances"] = [si.to_dict() for si in self.step_instances]
        return result

    def __repr__(self):
        return f"<Dossier {self.id} {self.status}>"


# ═════════════════════════════════════════════════════════════════════════════
# StepInstance
# ═════════════════════════════════════════════════════════════════════════════

class StepInstance(db.Model):
    """
    Materialized occurrence of a Step within a Dossier.

    (dossier_id, step_id) is unique: the workflow advancer relies on it to
    turn a racing get-or-create into a reuse instead of a duplicate.
    """

    __tablename__ = "step_instances"
    __table_args__ = (
        db.UniqueConstraint("dossier_id", "step_id", name="uq_step_instances_dossier_step"),
        db.Index("ix_step_instances_assigned_to", "assigned_to"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    dossier_id = db.Column(
        db.String(36), db.ForeignKey("dossiers.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    step_id = db.Column(
        db.String(36), db.ForeignKey("steps.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    assigned_to = db.Column(
        db.String(36), db.ForeignKey("agents.id", ondelete="SET NULL"),
        nullable=True,
    )
    started_at = db.Column(db.DateTime(timezone=True), nullable=True, comment="NULL = not yet reached")
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True, comment="NULL = pending")
    validation_status = db.Column(db.String(10), nullable=True, comment="APPROVED | REJECTED")
    validated_by = db.Column(
        db.String(36), db.ForeignKey("agents.id", ondelete="SET NULL"),
        nullable=True,
    )
    validated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    dossier = db.relationship("Dossier", back_populates="step_instances", foreign_keys=[dossier_id])
    step = db.relationship("Step", lazy="joined")
    documents = db.relationship(
        "Document",
        back_populates="step_instance",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="select",
    )

    @property
    def state(self) -> StepState:
        if self.completed_at is not None:
            return StepState.COMPLETED
        if self.started_at is not None:
            return StepState.IN_PROGRESS
        return StepState.NOT_STARTED

    @property
    def is_completed(self) -> bool:
        return self.state is StepState.COMPLETED

    def to_dict(self):
        return {
            "id": self.id,
            "dossier_id": self.dossier_id,
            "step_id": self.step_id,
            "step_code": self.step.code if self.step else None,
            "step_label": self.step.label if self.step else None,
            "step_type": self.step.step_type if self.step else None,
            "state": self.state.value,
            "assigned_to": self.assigned_to,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "validation_status": self.validation_status,
            "validated_by": self.validated_by,
            "validated_at": self.validated_at.isoformat() if self.validated_at else None,
        }

    def __repr__(self):
        return f"<StepInstance {self.id} {self.state.value}>"


# ═════════════════════════════════════════════════════════════════════════════
# Document
# ═════════════════════════════════════════════════════════════════════════════

class Document(db.Model):
    """
    Uploaded artifact metadata. Binary content lives in external storage;
    current_version_id is an opaque reference to it.

    Only status == DELIVERED satisfies a step's document requirement.
    """

    __tablename__ = "documents"
    __table_args__ = (
        db.Index("ix_documents_readiness", "dossier_id", "document_type_id", "step_instance_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    dossier_id = db.Column(
        db.String(36), db.ForeignKey("dossiers.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    document_type_id = db.Column(
        db.String(36), db.ForeignKey("document_types.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    step_instance_id = db.Column(
        db.String(36), db.ForeignKey("step_instances.id", ondelete="CASCADE"),
        nullable=True, index=True,
    )
    status = db.Column(db.String(12), nullable=False, default="PENDING")
    source = db.Column(db.String(10), nullable=False, default="CLIENT", comment="CLIENT | ADMIN")
    current_version_id = db.Column(db.String(36), nullable=True, comment="Opaque file-version reference")
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reviewed_by = db.Column(db.String(36), nullable=True, comment="Agent who approved or rejected a CLIENT document")
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    document_type = db.relationship("DocumentType", lazy="joined")
    step_instance = db.relationship("StepInstance", back_populates="documents")

    def to_dict(self):
        return {
            "id": self.id,
            "dossier_id": self.dossier_id,
            "document_type_id": self.document_type_id,
            "document_type": self.document_type.label if self.document_type else None,
            "step_instance_id": self.step_instance_id,
            "status": self.status,
            "source": self.source,
            "current_version_id": self.current_version_id,
            "delivered_at": self.delivered_at.isoformat() if self.delivered_at else None,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "rejection_reason": self.rejection_reason,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Document {self.id} {self.status}>"
