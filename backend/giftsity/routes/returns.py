# Overview: Flask API routes for returns (Main gateway); parses input and returns JSON responses.

"""
Return Processing API Routes

DESIGN:
- Customers open a return on a delivered order inside the return window
- Admins approve or reject any return and issue the refund
- Sellers decide returns on their own orders through the Seller gateway
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, internal_error, require_auth, require_role
from ..errors import GiftsityError
from ..services import return_service
from ..validation import coerce_int


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


# =============================================================================
# RETURN CREATION
# =============================================================================

@returns_bp.post("")
@require_auth
@require_role("customer")
def create_return_route():
    """
    Request body:
    {
        "order_id": 123,
        "reason": "defective",
        "details": "Handle snapped off"  (optional)
    }

    Returns:
        201: Return requested, order moved to ReturnRequested
        404: Order not found
        409: Not delivered, window closed, or already requested
    """
    try:
        data = request.get_json(silent=True) or {}
        order_id = coerce_int(data.get("order_id"), "order_id", minimum=1)
        request_row = return_service.request_return(
            g.identity.id, order_id, data.get("reason"), data.get("details"),
        )
        return jsonify({"return": request_row.to_dict()}), 201
    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create return")
        return internal_error()


@returns_bp.get("")
@require_auth
@require_role("customer", "admin")
def list_returns_route():
    try:
        rows = return_service.list_returns(g.role, g.identity.id, state=request.args.get("state"))
        return jsonify({"returns": [r.to_dict() for r in rows]}), 200
    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list returns")
        return internal_error()


@returns_bp.get("/<int:return_id>")
@require_auth
@require_role("customer", "admin")
def get_return_route(return_id: int):
    try:
        request_row = return_service.get_return_for(return_id, g.role, g.identity.id)
        return jsonify({"return": request_row.to_dict()}), 200
    except GiftsityError as e:
        return error_response(e)


# =============================================================================
# DECISIONS
# =============================================================================

@returns_bp.post("/<int:return_id>/approve")
@require_auth
@require_role("admin")
def approve_return_route(return_id: int):
    try:
        request_row = return_service.approve_return(return_id, g.role, g.identity.id)
        return jsonify({"return": request_row.to_dict()}), 200
    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to approve return")
        return internal_error()


@returns_bp.post("/<int:return_id>/reject")
@require_auth
@require_role("admin")
def reject_return_route(return_id: int):
    """Request body: {"reason": "..."} (optional). Closes the order."""
    try:
        data = request.get_json(silent=True) or {}
        request_row = return_service.reject_return(return_id, g.role, g.identity.id, data.get("reason"))
        return jsonify({"return": request_row.to_dict()}), 200
    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reject return")
        return internal_error()


@returns_bp.post("/<int:return_id>/refund")
@require_auth
@require_role("admin")
def refund_return_route(return_id: int):
    """
    Request body: {"amount_cents": 1299} (optional, defaults to the order total)

    Returns:
        200: Refunded, order moved to Refunded
        409: Return not approved
        502: Payment provider refused; nothing changed
    """
    try:
        data = request.get_json(silent=True) or {}
        request_row = return_service.refund_return(return_id, g.identity.id, data.get("amount_cents"))
        return jsonify({"return": request_row.to_dict()}), 200
    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to refund return")
        return internal_error()
