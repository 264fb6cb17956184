"""
Event Outbox Blueprint.

Read side of the workflow event outbox, polled by the notification
orchestrator. Authenticated with a service API key (role SYSTEM).

Endpoints:
    GET    /api/v1/events/outbox?limit=50
           Returns: 200 { items: [...], count }   oldest first

    POST   /api/v1/events/outbox/ack
           Body: { "event_ids": [str, ...] }
           Returns: 200 { acknowledged }
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from app.auth import require_role
from app.services import event_service
from app.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

events_bp = Blueprint("events", __name__, url_prefix="/api/v1/events")
register_error_handlers(events_bp)


@events_bp.route("/outbox", methods=["GET"])
@require_role("SYSTEM", "ADMIN")
def outbox():
    default_limit = current_app.config.get("OUTBOX_BATCH_SIZE", event_service.DEFAULT_BATCH_SIZE)
    limit = request.args.get("limit", default_limit, type=int)
    items = event_service.fetch_unpublished_events(limit)
    return jsonify({"items": items, "count": len(items)}), 200


@events_bp.route("/outbox/ack", methods=["POST"])
@require_role("SYSTEM", "ADMIN")
def ack():
    data = request.get_json(silent=True) or {}
    if "event_ids" not in data:
        return api_error(E.VALIDATION_REQUIRED, "Field 'event_ids' is required")

    acknowledged = event_service.mark_events_published(data["event_ids"])
    return jsonify({"acknowledged": acknowledged}), 200
