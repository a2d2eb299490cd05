# Overview: Service-layer operations for the payment collaborator; initiation, refunds and callbacks.

"""
Payment Collaborator

WHY: Giftsity never touches card data. Payment is initiated with an external
provider after checkout commits; the provider later calls back through
POST /api/webhooks/payment and only that callback confirms payment.

DESIGN PRINCIPLES:
- Initiation is fire-and-forget with bounded retry; failure is logged and
  the order stays PaymentPending until the sweep cancels it
- Refunds must succeed before an order or return settles; failure raises
  PaymentCollaboratorError and the order keeps its state
- Callbacks go through the lifecycle inbox with a dedupe key, so a
  provider retrying the same callback is harmless

Backends are chosen with PAYMENT_GATEWAY_BACKEND:
- "log": logs requests and returns deterministic references (development)
"""

from __future__ import annotations

import time

from flask import current_app

from ..extensions import db
from ..errors import IllegalTransition, NotFound, PaymentCollaboratorError, ValidationError
from ..models import Order
from ..validation import require_text
from . import lifecycle_service
from giftsity.time_utils import utcnow


EXTENSION_KEY = "giftsity.payment_gateway"

CALLBACK_SUCCEEDED = "succeeded"
CALLBACK_FAILED = "failed"


class LogPaymentGateway:
    def create_payment(self, order: Order) -> str:
        reference = f"pay_{order.order_number}"
        current_app.logger.info(
            "Payment requested for %s: %d cents (ref %s)", order.order_number, order.total_cents, reference,
        )
        return reference

    def refund(self, order: Order, amount_cents: int) -> str:
        reference = f"rfd_{order.order_number}_{amount_cents}"
        current_app.logger.info(
            "Refund requested for %s: %d cents (ref %s)", order.order_number, amount_cents, reference,
        )
        return reference


def build_gateway(config) -> object:
    backend = config.get("PAYMENT_GATEWAY_BACKEND", "log")
    if backend == "log":
        return LogPaymentGateway()
    raise ValueError(f"Unknown PAYMENT_GATEWAY_BACKEND '{backend}'")


def _call_with_retry(operation: str, func, *, backoff_base: float = 0.2):
    attempts = max(1, int(current_app.config.get("PAYMENT_GATEWAY_ATTEMPTS", 3)))
    for attempt in range(attempts):
        try:
            return func()
        except Exception:
            current_app.logger.warning(
                "Payment %s failed (attempt %d/%d)", operation, attempt + 1, attempts, exc_info=True,
            )
            if attempt < attempts - 1:
                time.sleep(backoff_base * (2 ** attempt))
    return None


def initiate_payment(order: Order) -> str | None:
    """
    Ask the provider to collect payment for a PaymentPending order.

    Returns the provider reference, or None after the last failed attempt.
    Never raises.
    """
    gateway = current_app.extensions[EXTENSION_KEY]
    reference = _call_with_retry("initiation", lambda: gateway.create_payment(order))

    if reference is None:
        current_app.logger.error("Giving up on payment initiation for %s", order.order_number)
        return None

    order.payment_reference = reference
    db.session.commit()
    return reference


def request_refund(order: Order, amount_cents: int) -> str:
    """
    Refund amount_cents of an order through the provider.

    Raises PaymentCollaboratorError once every attempt failed. Does not
    touch the order; the caller records the reference with its transition.
    """
    if amount_cents <= 0 or amount_cents > order.total_cents:
        raise ValidationError("Refund amount must be between 1 and the order total")

    gateway = current_app.extensions[EXTENSION_KEY]
    reference = _call_with_retry("refund", lambda: gateway.refund(order, amount_cents))
    if reference is None:
        current_app.logger.error("Refund for %s failed, order left in %s", order.order_number, order.state)
        raise PaymentCollaboratorError("Refund could not be processed, try again later")
    return reference


def handle_payment_callback(payload: dict) -> Order:
    """
    Apply a provider callback.

    Expected payload:
        {"event_id": "...", "order_number": "...", "status": "succeeded"|"failed",
         "payment_reference": "..."}

    succeeded -> payment_confirmed, failed -> cancel. The event_id is the
    dedupe key.
    """
    if not isinstance(payload, dict):
        raise ValidationError("JSON body required")

    event_id = require_text(payload.get("event_id"), "event_id", max_length=100)
    order_number = require_text(payload.get("order_number"), "order_number", max_length=32)
    status = payload.get("status")
    if status not in (CALLBACK_SUCCEEDED, CALLBACK_FAILED):
        raise ValidationError("status must be 'succeeded' or 'failed'")
    reference = require_text(payload.get("payment_reference"), "payment_reference", max_length=64, required=False)

    order = db.session.query(Order).filter_by(order_number=order_number).first()
    if order is None:
        raise NotFound(f"Order {order_number} not found")

    dedupe_key = f"payment:{event_id}"
    if status == CALLBACK_SUCCEEDED:
        values = {"payment_reference": reference} if reference else None
        return lifecycle_service.submit_event(
            order.id, lifecycle_service.PAYMENT_CONFIRMED_EVENT,
            actor_role="payment", dedupe_key=dedupe_key, payload=payload, values=values,
        )

    if order.state in lifecycle_service.REFUND_BEFORE_CANCEL:
        # Money was captured; only a refund may cancel from here
        raise IllegalTransition(f"Cannot cancel a {order.state} order on a failed-payment callback",
                                state=order.state)

    return lifecycle_service.submit_event(
        order.id, lifecycle_service.CANCEL,
        actor_role="payment", dedupe_key=dedupe_key, payload=payload,
        note="Payment failed",
        values={"cancelled_at": utcnow(), "cancel_reason": "Payment failed"},
        expected_from=lifecycle_service.UNPAID_STATES,
    )
