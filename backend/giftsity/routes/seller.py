# Overview: Flask API routes for the Seller gateway; profile, order queue, dispatch, returns and payouts.

"""
Seller API Routes

DESIGN:
- A seller only ever sees and acts on orders placed with them
- Admins may act on any seller's orders through this gateway
- Dispatch requires a tracking number; re-dispatching is AlreadyInState
- Sellers read their own payouts; only admins calculate them and mark them paid
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, internal_error, require_auth, require_role
from ..errors import GiftsityError
from ..services import identity_service, order_service, payout_service, return_service, shipment_service


seller_bp = Blueprint("seller", __name__, url_prefix="/api/seller")


# =============================================================================
# PROFILE
# =============================================================================

@seller_bp.get("/profile")
@require_auth
@require_role("seller")
def get_profile_route():
    return jsonify({"seller": g.identity.to_dict()}), 200


@seller_bp.patch("/profile")
@require_auth
@require_role("seller")
def update_profile_route():
    """Request body: any of business_name, phone, pickup_pincode."""
    try:
        seller = identity_service.update_profile(g.identity, request.get_json(silent=True))
        return jsonify({"seller": seller.to_dict()}), 200
    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update seller profile")
        return internal_error()


# =============================================================================
# ORDER QUEUE
# =============================================================================

@seller_bp.get("/orders")
@require_auth
@require_role("seller", "admin")
def list_orders_route():
    """?state=<State> filters; ?open=1 returns only orders awaiting dispatch."""
    try:
        state = request.args.get("state")
        if g.role == "admin":
            orders = order_service.list_orders("admin", g.identity.id, state=state)
        else:
            orders = shipment_service.seller_queue(
                g.identity.id, state=state, open_only=request.args.get("open") in ("1", "true"),
            )
        return jsonify({"orders": [o.to_dict() for o in orders]}), 200
    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list seller orders")
        return internal_error()


@seller_bp.post("/orders/<int:order_id>/fulfil")
@require_auth
@require_role("seller", "admin")
def fulfil_order_route(order_id: int):
    try:
        order = shipment_service.start_fulfilment(order_id, g.role, g.identity.id)
        return jsonify({"order": order.to_dict()}), 200
    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to start fulfilment")
        return internal_error()


@seller_bp.post("/orders/<int:order_id>/ship")
@require_auth
@require_role("seller", "admin")
def ship_order_route(order_id: int):
    """
    Request body: {"tracking_number": "AWB123", "courier": "Delhivery"}

    Returns:
        200: Order Shipped, shipment recorded
        400: Missing tracking number
        409: Not yet paid, or already shipped
    """
    try:
        data = request.get_json(silent=True) or {}
        order = shipment_service.dispatch(
            order_id, g.role, g.identity.id,
            tracking_number=data.get("tracking_number"),
            courier=data.get("courier"),
        )
        shipment = shipment_service.shipment_for(order.id)
        return jsonify({"order": order.to_dict(), "shipment": shipment.to_dict()}), 200
    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to dispatch order")
        return internal_error()


# =============================================================================
# RETURNS
# =============================================================================

@seller_bp.get("/returns")
@require_auth
@require_role("seller", "admin")
def list_returns_route():
    try:
        rows = return_service.list_returns(g.role, g.identity.id, state=request.args.get("state"))
        return jsonify({"returns": [r.to_dict() for r in rows]}), 200
    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list seller returns")
        return internal_error()


@seller_bp.post("/returns/<int:return_id>/approve")
@require_auth
@require_role("seller", "admin")
def approve_return_route(return_id: int):
    try:
        request_row = return_service.approve_return(return_id, g.role, g.identity.id)
        return jsonify({"return": request_row.to_dict()}), 200
    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to approve return")
        return internal_error()


@seller_bp.post("/returns/<int:return_id>/reject")
@require_auth
@require_role("seller", "admin")
def reject_return_route(return_id: int):
    try:
        data = request.get_json(silent=True) or {}
        request_row = return_service.reject_return(return_id, g.role, g.identity.id, data.get("reason"))
        return jsonify({"return": request_row.to_dict()}), 200
    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reject return")
        return internal_error()


# =============================================================================
# PAYOUTS
# =============================================================================

@seller_bp.get("/payouts")
@require_auth
@require_role("seller", "admin")
def list_payouts_route():
    """
    ?status=pending|paid filters.

    Sellers also get "unsettled": closed orders no payout covers yet and
    orders still inside their return window.
    """
    try:
        payouts = payout_service.list_payouts(g.role, g.identity.id, status=request.args.get("status"))
        body = {"payouts": [p.to_dict() for p in payouts]}
        if g.role == "seller":
            body["unsettled"] = payout_service.unsettled_summary(g.identity.id)
        return jsonify(body), 200
    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list payouts")
        return internal_error()


@seller_bp.get("/payouts/<int:payout_id>")
@require_auth
@require_role("seller", "admin")
def get_payout_route(payout_id: int):
    try:
        payout = payout_service.get_payout_for(payout_id, g.role, g.identity.id)
        return jsonify({"payout": payout.to_dict(include_orders=True)}), 200
    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load payout")
        return internal_error()


@seller_bp.post("/payouts/calculate")
@require_auth
@require_role("admin")
def calculate_payouts_route():
    """
    Request body: {"period_start": "2026-10-01", "period_end": "2026-10-15", "period_label": "Oct H1"}

    Returns:
        201: Payouts created by this call (may be empty)
        400: Malformed period
        409: A concurrent calculation claimed the same orders
    """
    try:
        payouts = payout_service.calculate_payouts(g.identity.id, request.get_json(silent=True))
        return jsonify({"payouts": [p.to_dict() for p in payouts]}), 201
    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to calculate payouts")
        return internal_error()


@seller_bp.post("/payouts/<int:payout_id>/mark-paid")
@require_auth
@require_role("admin")
def mark_payout_paid_route(payout_id: int):
    """Request body: {"transaction_reference": "UTR123456"}"""
    try:
        payout = payout_service.mark_paid(payout_id, g.identity.id, request.get_json(silent=True))
        return jsonify({"payout": payout.to_dict()}), 200
    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to mark payout paid")
        return internal_error()
