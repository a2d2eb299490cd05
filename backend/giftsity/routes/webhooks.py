# Overview: Flask API routes for collaborator callbacks (Main gateway); payment provider and carriers.

from flask import Blueprint, current_app, jsonify, request

from ..decorators import error_response, internal_error, require_webhook_secret
from ..errors import GiftsityError
from ..services import order_service, payment_service


webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/webhooks")


@webhooks_bp.post("/payment")
@require_webhook_secret("PAYMENT_WEBHOOK_SECRET")
def payment_webhook_route():
    """
    Payment provider callback. The only way an order reaches PaymentConfirmed.

    Request body:
    {"event_id": "evt_1", "order_number": "GS-...", "status": "succeeded"|"failed",
     "payment_reference": "pay_..."}
    """
    try:
        order = payment_service.handle_payment_callback(request.get_json(silent=True))
        return jsonify({"order_number": order.order_number, "state": order.state}), 200
    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to process payment webhook")
        return internal_error()


@webhooks_bp.post("/delivery")
@require_webhook_secret("CARRIER_WEBHOOK_SECRET")
def delivery_webhook_route():
    """
    Carrier tracking callback.

    Request body:
    {"event_id": "trk_1", "tracking_number": "AWB123", "status": "delivered"}

    Statuses other than "delivered" (in_transit, out_for_delivery...) are
    acknowledged and ignored.
    """
    try:
        data = request.get_json(silent=True)
        if isinstance(data, dict) and data.get("status") != "delivered":
            return jsonify({"ignored": True, "status": data.get("status")}), 200

        order = order_service.handle_carrier_callback(data)
        return jsonify({"order_number": order.order_number, "state": order.state}), 200
    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to process delivery webhook")
        return internal_error()
