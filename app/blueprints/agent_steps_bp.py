"""
Agent Steps Blueprint.

HTTP surface used by back-office agents (verificateurs and createurs) to work
the step instances assigned to them.

Endpoints:
    POST   /api/v1/agent/steps/<step_instance_id>/complete
           Body: { "manual": bool (optional) }
           Returns: 200 { success, advanced, next_step_instance_id }

    POST   /api/v1/agent/steps/create-and-complete
           Body: { "dossier_id": str, "step_id": str }
           Returns: 200 { success, step_instance_id, advanced, next_step_instance_id }

    POST   /api/v1/agent/documents/<document_id>/deliver
           Returns: 200 { success, document }

    GET    /api/v1/agent/step-instances/<step_instance_id>/readiness
           Returns: 200 { step_instance_id, ready, required_document_type_ids,
                          missing_document_type_ids }

    POST   /api/v1/agent/documents/<document_id>/review
           Body: { "status": "APPROVED" | "REJECTED", "reason": str (required to reject) }
           Returns: 200 { success, document }

    POST   /api/v1/agent/dossiers/<dossier_id>/validate-all-client-steps
           Body: { "complete_despite_missing": bool (optional) }
           Returns: 200 { success, completed_step_instance_ids, approved_document_ids,
                          blocked_step_instance_id, missing_document_type_ids,
                          current_step_instance_id }

Layer contract:
    - Blueprint: parse + validate input, resolve the actor, call service.
    - NO db.session calls here; all writes are owned by the services.
    - Business guards (assignment, agent/step type pairing, readiness) live
      in step_completion / assignment_service, as do the review rules.
"""

import logging

from flask import Blueprint, jsonify, request

from app.auth import current_actor, require_role
from app.services import assignment_service, document_readiness, step_completion
from app.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

agent_steps_bp = Blueprint("agent_steps", __name__, url_prefix="/api/v1/agent")
register_error_handlers(agent_steps_bp)


@agent_steps_bp.route("/steps/<step_instance_id>/complete", methods=["POST"])
@require_role("AGENT", "ADMIN")
def complete_step(step_instance_id):
    """Complete a step instance. Createur completions are auto-approved."""
    data = request.get_json(silent=True) or {}
    manual = data.get("manual", False)
    if not isinstance(manual, bool):
        return api_error(E.VALIDATION_INVALID, "Field 'manual' must be a boolean")

    result = step_completion.complete_step(step_instance_id, current_actor(), manual=manual)
    return jsonify({"success": True, **result}), 200


@agent_steps_bp.route("/steps/create-and-complete", methods=["POST"])
@require_role("AGENT", "ADMIN")
def create_and_complete_step():
    data = request.get_json(silent=True) or {}
    dossier_id = (data.get("dossier_id") or "").strip()
    step_id = (data.get("step_id") or "").strip()
    if not dossier_id or not step_id:
        return api_error(E.VALIDATION_REQUIRED, "dossier_id and step_id are required")

    result = step_completion.create_and_complete_step(dossier_id, step_id, current_actor())
    return jsonify({"success": True, **result}), 200


@agent_steps_bp.route("/documents/<document_id>/deliver", methods=["POST"])
@require_role("AGENT", "ADMIN")
def deliver_document(document_id):
    document = assignment_service.deliver_document(document_id, current_actor())
    return jsonify({"success": True, "document": document}), 200


@agent_steps_bp.route("/step-instances/<step_instance_id>/readiness", methods=["GET"])
@require_role("AGENT", "ADMIN")
def step_readiness(step_instance_id):
    return jsonify(document_readiness.readiness_report(step_instance_id)), 200


@agent_steps_bp.route("/documents/<document_id>/review", methods=["POST"])
@require_role("AGENT", "ADMIN")
def review_document(document_id):
    """Verificateur approval or rejection of a client document."""
    data = request.get_json(silent=True) or {}
    decision = (data.get("status") or "").strip()
    if not decision:
        return api_error(E.VALIDATION_REQUIRED, "Field 'status' is required")
    reason = data.get("reason")
    if reason is not None and not isinstance(reason, str):
        return api_error(E.VALIDATION_INVALID, "Field 'reason' must be a string")

    document = assignment_service.review_document(document_id, current_actor(), decision, reason)
    return jsonify({"success": True, "document": document}), 200


@agent_steps_bp.route("/dossiers/<dossier_id>/validate-all-client-steps", methods=["POST"])
@require_role("AGENT", "ADMIN")
def validate_all_client_steps(dossier_id):
    data = request.get_json(silent=True) or {}
    complete_despite_missing = data.get("complete_despite_missing", False)
    if not isinstance(complete_despite_missing, bool):
        return api_error(E.VALIDATION_INVALID, "Field 'complete_despite_missing' must be a boolean")

    result = step_completion.validate_all_client_steps(
        dossier_id, current_actor(), complete_despite_missing=complete_despite_missing,
    )
    return jsonify({"success": result["blocked_step_instance_id"] is None, **result}), 200
