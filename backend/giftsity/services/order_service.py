# Overview: Service-layer operations for orders; checkout, lookups, cancellation and delivery.

"""
Orders

Checkout captures a price snapshot per line, writes the creation entry and
moves the order to PaymentPending in one transaction. Payment is initiated
only after that commit.

An order belongs to exactly one seller; carts spanning sellers are split
by the client into separate checkouts.
"""

from __future__ import annotations

import secrets
from datetime import datetime

from flask import current_app

from ..extensions import db
from ..errors import GiftsityError, NotFound, ValidationError
from ..models import Order, OrderLine, Product
from ..validation import parse_line_items, require_text
from . import lifecycle_service, payment_service
from giftsity.time_utils import utcnow


def _order_number(now: datetime) -> str:
    while True:
        number = f"GS-{now:%Y%m%d}-{secrets.token_hex(3).upper()}"
        if db.session.query(Order.id).filter_by(order_number=number).first() is None:
            return number


def place_order(customer, items, *, now: datetime | None = None) -> Order:
    """
    Create an order for a customer from [{"product_id", "quantity"}, ...].

    Raises:
        ValidationError: empty/malformed items, unknown or inactive product,
            products from more than one seller
    """
    pairs = parse_line_items(items)
    now = now or utcnow()

    product_ids = [product_id for product_id, _ in pairs]
    products = {
        product.id: product
        for product in db.session.query(Product).filter(Product.id.in_(product_ids)).all()
    }

    missing = [pid for pid in product_ids if pid not in products or not products[pid].is_active]
    if missing:
        raise ValidationError(f"Products not available: {', '.join(str(pid) for pid in missing)}")

    seller_ids = {products[pid].seller_id for pid in product_ids}
    if len(seller_ids) != 1:
        raise ValidationError("All items in an order must come from the same seller")

    order = Order(
        order_number=_order_number(now),
        customer_id=customer.id,
        seller_id=seller_ids.pop(),
        state=lifecycle_service.PLACED,
        version=1,
        created_at=now,
        updated_at=now,
    )
    db.session.add(order)
    db.session.flush()

    total = 0
    for product_id, quantity in pairs:
        product = products[product_id]
        line_total = product.price_cents * quantity
        total += line_total
        db.session.add(OrderLine(
            order_id=order.id,
            product_id=product.id,
            title=product.title,
            quantity=quantity,
            unit_price_cents=product.price_cents,
            line_total_cents=line_total,
        ))
    order.total_cents = total

    lifecycle_service.record_creation(order, actor_role="customer", actor_id=customer.id, now=now)
    db.session.flush()

    order = lifecycle_service.apply_transition(
        order.id, lifecycle_service.PAYMENT_INITIATED, actor_role="system", now=now,
    )
    db.session.commit()

    current_app.logger.info("Order %s placed by customer %s", order.order_number, customer.id)

    payment_service.initiate_payment(order)
    return order


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFound(f"Order {order_id} not found")
    return order


def get_order_for(order_id: int, role: str, identity_id: int) -> Order:
    """
    Load an order the caller may see.

    Customers see their own orders, sellers the orders placed with them,
    admins everything. Anything else is NotFound (existence is not leaked).
    """
    order = db.session.get(Order, order_id)
    if order is None or not _visible_to(order, role, identity_id):
        raise NotFound(f"Order {order_id} not found")
    return order


def _visible_to(order: Order, role: str, identity_id: int) -> bool:
    if role == "admin":
        return True
    if role == "customer":
        return order.customer_id == identity_id
    if role == "seller":
        return order.seller_id == identity_id
    return False


def list_orders(role: str, identity_id: int, *, state: str | None = None) -> list[Order]:
    query = db.session.query(Order)
    if role == "customer":
        query = query.filter(Order.customer_id == identity_id)
    elif role == "seller":
        query = query.filter(Order.seller_id == identity_id)
    elif role != "admin":
        return []

    if state:
        if state not in lifecycle_service.STATES:
            raise ValidationError(f"Unknown order state '{state}'")
        query = query.filter(Order.state == state)

    return query.order_by(Order.created_at.desc(), Order.id.desc()).all()


def cancel_order(order_id: int, role: str, identity_id: int, *, reason: str | None = None) -> Order:
    """
    Cancel an order before it ships.

    If payment was already captured the refund is requested first; a
    failed refund raises PaymentCollaboratorError and the order keeps its
    state.
    """
    order = get_order_for(order_id, role, identity_id)
    reason = require_text(reason, "reason", required=False) or "Cancelled by " + role

    values = {"cancelled_at": utcnow(), "cancel_reason": reason}

    # Pre-check so a refund is never requested for an order that cannot cancel
    if not lifecycle_service.can_transition(order.state, lifecycle_service.CANCELLED):
        return lifecycle_service.submit_event(
            order.id, lifecycle_service.CANCEL, actor_role=role, actor_id=identity_id, note=reason,
        )

    if order.state not in lifecycle_service.REFUND_BEFORE_CANCEL:
        # Refused if a payment confirmation lands first; the caller retries and takes the refund path
        return lifecycle_service.submit_event(
            order.id, lifecycle_service.CANCEL,
            actor_role=role, actor_id=identity_id, note=reason, values=values,
            expected_from=lifecycle_service.UNPAID_STATES,
        )

    values["refund_reference"] = payment_service.request_refund(order, order.total_cents)
    try:
        return lifecycle_service.submit_event(
            order.id, lifecycle_service.CANCEL,
            actor_role=role, actor_id=identity_id, note=reason, values=values,
            expected_from=lifecycle_service.REFUND_BEFORE_CANCEL,
        )
    except GiftsityError:
        current_app.logger.error(
            "Refund %s issued for %s but the order did not settle at Cancelled; reconcile manually",
            values["refund_reference"], order.order_number,
        )
        raise


def confirm_delivery(order_id: int, *, actor_role: str, actor_id: int | None = None,
                     dedupe_key: str | None = None, payload: dict | None = None,
                     now: datetime | None = None) -> Order:
    """Shipped -> Delivered, reported by the carrier webhook or an admin."""
    now = now or utcnow()
    get_order(order_id)
    return lifecycle_service.submit_event(
        order_id, lifecycle_service.DELIVERY_CONFIRMED,
        actor_role=actor_role, actor_id=actor_id, dedupe_key=dedupe_key, payload=payload,
        values={"delivered_at": now}, now=now,
    )


def handle_carrier_callback(payload: dict) -> Order:
    """
    Apply a carrier tracking callback.

    Expected payload:
        {"event_id": "...", "tracking_number": "...", "status": "delivered"}

    Only delivery is acted on; the route acknowledges other tracking
    statuses without calling this.
    """
    if not isinstance(payload, dict):
        raise ValidationError("JSON body required")

    event_id = require_text(payload.get("event_id"), "event_id", max_length=100)
    tracking_number = require_text(payload.get("tracking_number"), "tracking_number", max_length=64)
    if payload.get("status") != "delivered":
        raise ValidationError("status must be 'delivered'")

    order = db.session.query(Order).filter_by(shipment_reference=tracking_number).first()
    if order is None:
        raise NotFound(f"No order shipped with tracking number {tracking_number}")

    return confirm_delivery(
        order.id, actor_role="carrier", dedupe_key=f"carrier:{event_id}", payload=payload,
    )
