# Overview: Flask API routes for customer orders (Main gateway); parses input and returns JSON responses.

"""
Orders API Routes

DESIGN:
- Customers place, list, inspect and cancel their own orders
- Admins see every order and confirm delivery on behalf of a carrier
- Other customers' orders answer 404, never 403
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, internal_error, require_auth, require_role
from ..errors import GiftsityError
from ..services import lifecycle_service, order_service


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("")
@require_auth
@require_role("customer")
def place_order_route():
    """
    Request body:
    {"items": [{"product_id": 1, "quantity": 2}, ...]}

    Returns:
        201: Order created and moved to PaymentPending
        400: Invalid items
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.place_order(g.identity, data.get("items"))
        return jsonify({"order": order.to_dict()}), 201
    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to place order")
        return internal_error()


@orders_bp.get("")
@require_auth
@require_role("customer", "admin")
def list_orders_route():
    try:
        orders = order_service.list_orders(g.role, g.identity.id, state=request.args.get("state"))
        return jsonify({"orders": [o.to_dict(include_lines=False) for o in orders]}), 200
    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return internal_error()


@orders_bp.get("/<int:order_id>")
@require_auth
@require_role("customer", "admin")
def get_order_route(order_id: int):
    try:
        order = order_service.get_order_for(order_id, g.role, g.identity.id)
        return jsonify({"order": order.to_dict()}), 200
    except GiftsityError as e:
        return error_response(e)


@orders_bp.get("/<int:order_id>/history")
@require_auth
@require_role("customer", "admin")
def order_history_route(order_id: int):
    try:
        order = order_service.get_order_for(order_id, g.role, g.identity.id)
        entries = lifecycle_service.history(order.id)
        return jsonify({
            "order_id": order.id,
            "state": order.state,
            "history": [entry.to_dict() for entry in entries],
        }), 200
    except GiftsityError as e:
        return error_response(e)


@orders_bp.post("/<int:order_id>/cancel")
@require_auth
@require_role("customer", "admin")
def cancel_order_route(order_id: int):
    """
    Request body: {"reason": "..."}  (optional)

    Returns:
        200: Cancelled (refunded first if payment was captured)
        409: Already shipped or already cancelled
        502: Refund failed; order unchanged
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.cancel_order(order_id, g.role, g.identity.id, reason=data.get("reason"))
        return jsonify({"order": order.to_dict()}), 200
    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return internal_error()


@orders_bp.post("/<int:order_id>/deliver")
@require_auth
@require_role("admin")
def deliver_order_route(order_id: int):
    try:
        order = order_service.confirm_delivery(order_id, actor_role="admin", actor_id=g.identity.id)
        return jsonify({"order": order.to_dict()}), 200
    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to confirm delivery")
        return internal_error()
