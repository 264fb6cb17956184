"""
Orders Blueprint.

Internal callback invoked by the payment integration once an order is paid.
Authenticated with a service API key (role SYSTEM).

Endpoints:
    POST   /api/v1/orders/<order_id>/payment-confirmed
           Body: { "amount": int (optional, minor units) }
           Returns: 200 { success, order, dossier, created }
"""

import logging

from flask import Blueprint, jsonify, request

from app.auth import require_role
from app.services import provisioning_service
from app.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

orders_bp = Blueprint("orders", __name__, url_prefix="/api/v1/orders")
register_error_handlers(orders_bp)


@orders_bp.route("/<order_id>/payment-confirmed", methods=["POST"])
@require_role("SYSTEM", "ADMIN")
def payment_confirmed(order_id):
    data = request.get_json(silent=True) or {}
    amount = data.get("amount")
    if amount is not None and (not isinstance(amount, int) or isinstance(amount, bool) or amount < 0):
        return api_error(E.VALIDATION_INVALID, "Field 'amount' must be a non-negative integer")

    result = provisioning_service.confirm_order_payment(order_id, amount=amount)
    return jsonify({"success": True, **result}), 200
