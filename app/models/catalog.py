"""
Dossier Workflow Platform
Catalog domain models — products and their ordered step configuration.

Models:
    - Product:           purchasable service offering (one Dossier per paid order)
    - Step:              reusable unit of work, shared across products
    - ProductStep:       orders Steps within a Product; carries approval status target
    - DocumentType:      named category of required document (passport, utility bill, ...)
    - StepDocumentType:  declares which DocumentTypes a Step requires

Architecture:
    Product ──1:N──▶ ProductStep ──N:1──▶ Step ──N:M──▶ DocumentType
                                                 (via StepDocumentType)

Ordering:
    ProductStep.position defines a strict, gap-tolerant order per product.
    (product_id, position) is unique, so "next step" resolution never has to
    break ties.
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

class StepType(str, Enum):
    CLIENT = "CLIENT"
    ADMIN = "ADMIN"


STEP_TYPES = {t.value for t in StepType}

DEFAULT_INITIAL_STATUS = "QUALIFICATION"


class Product(db.Model):
    """Purchasable service offering. Immutable once referenced by live orders."""

    __tablename__ = "products"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(255), nullable=False)
    dossier_type = db.Column(
        db.String(50), nullable=False, default="LLC_FORMATION",
        comment="Case category copied onto every Dossier created for this product",
    )
    initial_status = db.Column(
        db.String(30), nullable=False, default=DEFAULT_INITIAL_STATUS,
        comment="Dossier.status at provisioning time",
    )
    price_amount = db.Column(db.Integer, nullable=True, comment="Minor units (cents)")
    currency = db.Column(db.String(3), nullable=False, default="EUR")
    active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    product_steps = db.relationship(
        "ProductStep",
        back_populates="product",
        order_by="ProductStep.position",
        cascade="all, delete-orphan",
        lazy="select",
    )

    def to_dict(self, include_steps=False):
        result = {
            "id": self.id,
            "name": self.name,
            "dossier_type": self.dossier_type,
            "initial_status": self.initial_status,
            "price_amount": self.price_amount,
            "currency": self.currency,
            "active": self.active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_steps:
            result["steps"] = [ps.to_dict() for ps in self.product_steps]
        return result

    def __repr__(self):
        return f"<Product {self.id}: {self.name}>"


class Step(db.Model):
    """Reusable unit of work. step_type decides which agent type may complete it."""

    __tablename__ = "steps"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    code = db.Column(db.String(100), nullable=False, unique=True)
    label = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    step_type = db.Column(
        db.String(10), nullable=False, default=StepType.CLIENT.value,
        comment="CLIENT | ADMIN",
    )
    position = db.Column(db.Integer, nullable=True, comment="Display hint only; ordering lives on ProductStep")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    document_types = db.relationship(
        "DocumentType",
        secondary="step_document_types",
        viewonly=True,
        lazy="select",
        order_by="DocumentType.code",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "label": self.label,
            "description": self.description,
            "step_type": self.step_type,
            "position": self.position,
        }

    def __repr__(self):
        return f"<Step {self.code} [{self.step_type}]>"


class ProductStep(db.Model):
    """
    Join entity ordering Steps within a Product.

    dossier_status_on_approval, when set, is applied to the Dossier once an
    instance of this step is approved (see dossier_status_service).
    """

    __tablename__ = "product_steps"
    __table_args__ = (
        db.UniqueConstraint("product_id", "position", name="uq_product_steps_product_position"),
        db.UniqueConstraint("product_id", "step_id", name="uq_product_steps_product_step"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    product_id = db.Column(
        db.String(36), db.ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    step_id = db.Column(
        db.String(36), db.ForeignKey("steps.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    position = db.Column(db.Integer, nullable=False)
    is_required = db.Column(db.Boolean, nullable=False, default=True)
    dossier_status_on_approval = db.Column(
        db.String(30), nullable=True,
        comment="Target Dossier.status applied when this step is approved",
    )

    product = db.relationship("Product", back_populates="product_steps")
    step = db.relationship("Step", lazy="joined")

    def to_dict(self):
        return {
            "id": self.id,
            "product_id": self.product_id,
            "step_id": self.step_id,
            "position": self.position,
            "is_required": self.is_required,
            "dossier_status_on_approval": self.dossier_status_on_approval,
            "step": self.step.to_dict() if self.step else None,
        }

    def __repr__(self):
        return f"<ProductStep {self.product_id}@{self.position} → {self.step_id}>"


class DocumentType(db.Model):
    """Named category of document a step may require."""

    __tablename__ = "document_types"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    code = db.Column(db.String(100), nullable=False, unique=True)
    label = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "label": self.label,
            "description": self.description,
        }

    def __repr__(self):
        return f"<DocumentType {self.code}>"


class StepDocumentType(db.Model):
    """Declares that a Step requires a DocumentType to be delivered."""

    __tablename__ = "step_document_types"
    __table_args__ = (
        db.UniqueConstraint("step_id", "document_type_id", name="uq_step_document_types_pair"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    step_id = db.Column(
        db.String(36), db.ForeignKey("steps.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    document_type_id = db.Column(
        db.String(36), db.ForeignKey("document_types.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )

    def __repr__(self):
        return f"<StepDocumentType {self.step_id} ← {self.document_type_id}>"
