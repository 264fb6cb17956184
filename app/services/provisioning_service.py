"""
Dossier Provisioning Service.

Creates a client's dossier for a product and materializes its ordered step
sequence. Entry points:
  provision_dossier()          — core, idempotent on (user_id, product_id)
  confirm_order_payment()      — payment callback: mark order PAID, then provision
  create_dossier_for_client()  — back-office manual creation (PAID order + dossier)
  reset_dossier()              — wipe progress and re-materialize the steps

Each entry point is one transaction: dossier, step instances, current-step
pointer, order linkage and events are committed together or rolled back
together.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError

from app.auth import Actor
from app.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.models import db
from app.models.catalog import DEFAULT_INITIAL_STATUS, Product, ProductStep
from app.models.dossier import Document, Dossier, Order, StepInstance, is_valid_dossier_status
from app.services.event_service import emit_event

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Helpers
# ═════════════════════════════════════════════════════════════════════════════


def _get_active_product(product_id: str) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(resource="Product", resource_id=product_id)
    if not product.active:
        raise ValidationError(f"Product '{product.name}' is not active")
    return product


def _find_dossier(user_id: str, product_id: str) -> Dossier | None:
    return db.session.execute(
        select(Dossier).where(Dossier.user_id == user_id, Dossier.product_id == product_id)
    ).scalars().first()


def _link_order(order_id: str | None, dossier: Dossier) -> None:
    if not order_id:
        return
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError(resource="Order", resource_id=order_id)
    if order.dossier_id is None:
        order.dossier_id = dossier.id


def _materialize_steps(dossier: Dossier) -> StepInstance | None:
    """Create one StepInstance per ProductStep; only the first is started.

    Returns the first instance, or None for a product with no steps.
    """
    product_steps = db.session.execute(
        select(ProductStep)
        .where(ProductStep.product_id == dossier.product_id)
        .order_by(ProductStep.position.asc())
    ).scalars().all()
    if not product_steps:
        return None

    now = datetime.now(timezone.utc)
    instances = [
        StepInstance(
            dossier_id=dossier.id,
            step_id=ps.step_id,
            started_at=now if index == 0 else None,
        )
        for index, ps in enumerate(product_steps)
    ]
    db.session.add_all(instances)
    db.session.flush()

    first = instances[0]
    dossier.current_step_instance_id = first.id
    db.session.flush()

    emit_event(
        entity_type="step_instance",
        entity_id=first.id,
        event_type="STEP_STARTED",
        actor_type="SYSTEM",
        payload={
            "dossier_id": dossier.id,
            "step_code": product_steps[0].step.code,
            "step_name": product_steps[0].step.label,
        },
    )
    return first


def _provision(
    user_id: str,
    product: Product,
    order_id: str | None,
    *,
    created_via: str,
    created_by_admin: str | None,
    initial_status: str | None,
) -> tuple[Dossier, bool]:
    """Provisioning body. Flushes, never commits."""
    existing = _find_dossier(user_id, product.id)
    if existing is not None:
        _link_order(order_id, existing)
        return existing, False

    meta = {"created_via": created_via}
    if order_id:
        meta["order_id"] = order_id
    if created_by_admin:
        meta["created_by_admin"] = created_by_admin

    try:
        with db.session.begin_nested():
            dossier = Dossier(
                user_id=user_id,
                product_id=product.id,
                type=product.dossier_type,
                status=initial_status or product.initial_status or DEFAULT_INITIAL_STATUS,
                meta=meta,
            )
            db.session.add(dossier)
    except IntegrityError:
        # lost the race on (user_id, product_id)
        existing = _find_dossier(user_id, product.id)
        if existing is None:
            raise
        _link_order(order_id, existing)
        return existing, False

    _materialize_steps(dossier)
    _link_order(order_id, dossier)

    emit_event(
        entity_type="dossier",
        entity_id=dossier.id,
        event_type="DOSSIER_CREATED",
        actor_type="ADMIN" if created_by_admin else "SYSTEM",
        actor_id=created_by_admin,
        payload={
            "dossier_id": dossier.id,
            "user_id": user_id,
            "product_id": product.id,
            "product_name": product.name,
            "order_id": order_id,
            "status": dossier.status,
            "created_via": created_via,
        },
    )
    return dossier, True


# ═════════════════════════════════════════════════════════════════════════════
# Operations
# ═════════════════════════════════════════════════════════════════════════════


def provision_dossier(
    user_id: str,
    product_id: str,
    order_id: str | None = None,
    *,
    created_via: str = "payment",
    created_by_admin: str | None = None,
) -> tuple[Dossier, bool]:
    """Create the dossier for (user_id, product_id), or return the existing one.

    Returns:
        (dossier, created). created is False when the dossier already existed;
        it is then returned unchanged apart from linking ``order_id``.

    Raises:
        NotFoundError: Product (or order) does not exist.
        ValidationError: Product is inactive.
    """
    product = _get_active_product(product_id)
    try:
        dossier, created = _provision(
            user_id, product, order_id,
            created_via=created_via,
            created_by_admin=created_by_admin,
            initial_status=None,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    if created:
        logger.info(
            "Provisioned dossier %s for user=%s product=%s via %s",
            dossier.id, user_id, product_id, created_via,
            extra={"dossier_id": dossier.id},
        )
    return dossier, created


def confirm_order_payment(order_id: str, amount: int | None = None) -> dict:
    """Payment callback: mark the order PAID and provision its dossier.

    Replays are safe: an already PAID order emits nothing new and returns the
    same dossier.
    """
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError(resource="Order", resource_id=order_id)
    if order.status == "FAILED":
        raise ValidationError("Cannot confirm payment of a FAILED order")

    product = _get_active_product(order.product_id)

    try:
        if order.status != "PAID":
            order.status = "PAID"
            order.paid_at = datetime.now(timezone.utc)
            if amount is not None:
                order.amount = amount
            emit_event(
                entity_type="order",
                entity_id=order.id,
                event_type="PAYMENT_RECEIVED",
                actor_type="SYSTEM",
                payload={
                    "order_id": order.id,
                    "user_id": order.user_id,
                    "product_id": order.product_id,
                    "amount": order.amount,
                    "currency": order.currency,
                },
            )

        dossier, created = _provision(
            order.user_id, product, order.id,
            created_via="payment",
            created_by_admin=None,
            initial_status=None,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Order %s paid, dossier %s (created=%s)", order.id, dossier.id, created,
        extra={"dossier_id": dossier.id},
    )
    return {"order": order.to_dict(), "dossier": dossier.to_dict(), "created": created}


def create_dossier_for_client(
    client_id: str,
    product_id: str,
    created_by_admin: str,
    initial_status: str | None = None,
) -> dict:
    """Back-office creation: a PAID order for the client, then its dossier.

    Raises:
        ValidationError: Missing client, inactive product, or unknown initial status.
        ConflictError: The client already has a dossier for this product.
    """
    if not client_id:
        raise ValidationError("client_id is required")
    if initial_status and not is_valid_dossier_status(initial_status):
        raise ValidationError(f"Invalid dossier status '{initial_status}'")

    product = _get_active_product(product_id)
    if _find_dossier(client_id, product.id) is not None:
        raise ConflictError(
            resource="Dossier", field="product_id", value=product.id,
            message="This client already has a dossier for this product",
        )

    try:
        order = Order(
            user_id=client_id,
            product_id=product.id,
            amount=product.price_amount,
            currency=product.currency,
            status="PAID",
            paid_at=datetime.now(timezone.utc),
        )
        db.session.add(order)
        db.session.flush()

        dossier, _ = _provision(
            client_id, product, order.id,
            created_via="manual_admin_creation",
            created_by_admin=created_by_admin,
            initial_status=initial_status,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Admin %s created dossier %s for client %s", created_by_admin, dossier.id, client_id,
        extra={"dossier_id": dossier.id},
    )
    return {"dossier_id": dossier.id, "order_id": order.id}


def reset_dossier(dossier_id: str, actor: Actor, reason: str) -> dict:
    """Wipe a dossier's progress as if it had just been provisioned.

    Documents and step instances are deleted, the step sequence is
    re-materialized from the product configuration and the status goes back
    to QUALIFICATION.
    """
    if actor is None or not actor.is_admin:
        raise ForbiddenError("Admin role required", reason="not_admin")
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("reason is required")

    dossier = db.session.get(Dossier, dossier_id)
    if dossier is None:
        raise NotFoundError(resource="Dossier", resource_id=dossier_id)

    previous_status = dossier.status
    try:
        dossier.current_step_instance_id = None
        db.session.flush()

        documents_deleted = db.session.execute(
            delete(Document).where(Document.dossier_id == dossier.id)
        ).rowcount
        db.session.execute(delete(StepInstance).where(StepInstance.dossier_id == dossier.id))
        db.session.expire(dossier, ["step_instances"])

        first = _materialize_steps(dossier)
        recreated = db.session.execute(
            select(func.count(StepInstance.id)).where(StepInstance.dossier_id == dossier.id)
        ).scalar()

        now = datetime.now(timezone.utc)
        dossier.status = DEFAULT_INITIAL_STATUS
        dossier.completed_at = None
        dossier.updated_at = now
        dossier.meta = {
            **(dossier.meta or {}),
            "reset_at": now.isoformat(),
            "reset_reason": reason,
            "reset_by": actor.user_id,
            "previous_status": previous_status,
        }

        emit_event(
            entity_type="dossier",
            entity_id=dossier.id,
            event_type="DOSSIER_RESET",
            actor_type="ADMIN",
            actor_id=actor.user_id,
            payload={
                "dossier_id": dossier.id,
                "reset_reason": reason,
                "reset_by": actor.user_id,
                "previous_status": previous_status,
                "documents_deleted": documents_deleted,
                "step_instances_recreated": recreated,
            },
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Dossier %s reset by %s (was %s): %s", dossier.id, actor.email, previous_status, reason,
        extra={"dossier_id": dossier.id},
    )
    return {
        "dossier_id": dossier.id,
        "current_step_instance_id": first.id if first else None,
        "documents_deleted": documents_deleted,
        "step_instances_recreated": recreated,
    }
