"""
Admin Dossiers Blueprint.

Back-office operations on dossiers. Every route requires the ADMIN role.

Endpoints:
    POST   /api/v1/admin/dossiers
           Body: { "client_id", "product_id", "initial_status"? }
           Returns: 201 { success, dossier_id, order_id }

    POST   /api/v1/admin/dossiers/<dossier_id>/steps/<step_instance_id>/approve
    PATCH  /api/v1/admin/dossiers/<dossier_id>/status       Body: { "status" }
    POST   /api/v1/admin/dossiers/<dossier_id>/reset        Body: { "reason" }
    GET    /api/v1/admin/dossiers/<dossier_id>/events?limit=&offset=
    PATCH  /api/v1/admin/step-instances/<step_instance_id>/assign
           Body: { "agent_id": str | null }
"""

import logging

from flask import Blueprint, jsonify, request

from app.auth import current_actor, require_role
from app.blueprints import pagination_args
from app.core.exceptions import NotFoundError
from app.models import db
from app.models.dossier import Dossier
from app.services import (
    assignment_service,
    dossier_status_service,
    event_service,
    provisioning_service,
    step_completion,
)
from app.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

admin_dossiers_bp = Blueprint("admin_dossiers", __name__, url_prefix="/api/v1/admin")
register_error_handlers(admin_dossiers_bp)


@admin_dossiers_bp.route("/dossiers", methods=["POST"])
@require_role("ADMIN")
def create_dossier():
    """Manual dossier creation for an existing client (PAID order included)."""
    data = request.get_json(silent=True) or {}
    client_id = (data.get("client_id") or "").strip()
    product_id = (data.get("product_id") or "").strip()
    if not client_id or not product_id:
        return api_error(E.VALIDATION_REQUIRED, "client_id and product_id are required")

    result = provisioning_service.create_dossier_for_client(
        client_id,
        product_id,
        created_by_admin=current_actor().user_id,
        initial_status=(data.get("initial_status") or "").strip() or None,
    )
    return jsonify({"success": True, **result}), 201


@admin_dossiers_bp.route("/dossiers/<dossier_id>/steps/<step_instance_id>/approve", methods=["POST"])
@require_role("ADMIN")
def approve_step(dossier_id, step_instance_id):
    result = step_completion.approve_step(dossier_id, step_instance_id, current_actor())
    return jsonify({"success": True, **result}), 200


@admin_dossiers_bp.route("/dossiers/<dossier_id>/status", methods=["PATCH"])
@require_role("ADMIN")
def change_status(dossier_id):
    data = request.get_json(silent=True) or {}
    new_status = (data.get("status") or "").strip()
    if not new_status:
        return api_error(E.VALIDATION_REQUIRED, "Field 'status' is required")

    dossier = dossier_status_service.change_dossier_status(dossier_id, new_status, current_actor())
    return jsonify({"success": True, "dossier": dossier}), 200


@admin_dossiers_bp.route("/dossiers/<dossier_id>/reset", methods=["POST"])
@require_role("ADMIN")
def reset_dossier(dossier_id):
    data = request.get_json(silent=True) or {}
    reason = (data.get("reason") or "").strip()
    if not reason:
        return api_error(E.VALIDATION_REQUIRED, "Field 'reason' is required")

    result = provisioning_service.reset_dossier(dossier_id, current_actor(), reason)
    return jsonify({"success": True, **result}), 200


@admin_dossiers_bp.route("/dossiers/<dossier_id>/events", methods=["GET"])
@require_role("ADMIN")
def dossier_events(dossier_id):
    if db.session.get(Dossier, dossier_id) is None:
        raise NotFoundError(resource="Dossier", resource_id=dossier_id)
    limit, offset = pagination_args()
    events, total = event_service.list_dossier_events(dossier_id, limit=limit, offset=offset)
    return jsonify({"items": events, "total": total}), 200


@admin_dossiers_bp.route("/step-instances/<step_instance_id>/assign", methods=["PATCH"])
@require_role("ADMIN")
def assign_step_instance(step_instance_id):
    data = request.get_json(silent=True) or {}
    if "agent_id" not in data:
        return api_error(E.VALIDATION_REQUIRED, "Field 'agent_id' is required (null to unassign)")

    step_instance = assignment_service.assign_step_instance(step_instance_id, data["agent_id"] or None)
    return jsonify({"success": True, "step_instance": step_instance}), 200
