# Overview: Service-layer operations for the seller order queue; fulfilment and dispatch.

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..errors import NotFound
from ..models import Order, Shipment
from ..validation import require_text
from . import lifecycle_service, order_service
from giftsity.time_utils import utcnow


# Orders a seller still has to act on
OPEN_QUEUE_STATES = (
    lifecycle_service.PAYMENT_CONFIRMED,
    lifecycle_service.FULFILLING,
)


def seller_queue(seller_id: int, *, state: str | None = None, open_only: bool = False) -> list[Order]:
    if open_only:
        return (
            db.session.query(Order)
            .filter(Order.seller_id == seller_id, Order.state.in_(OPEN_QUEUE_STATES))
            .order_by(Order.created_at.asc(), Order.id.asc())
            .all()
        )
    return order_service.list_orders("seller", seller_id, state=state)


def start_fulfilment(order_id: int, role: str, identity_id: int) -> Order:
    """PaymentConfirmed -> Fulfilling. Sellers act only on their own orders."""
    order = order_service.get_order_for(order_id, role, identity_id)
    return lifecycle_service.submit_event(
        order.id, lifecycle_service.FULFILMENT_STARTED, actor_role=role, actor_id=identity_id,
    )


def dispatch(
    order_id: int,
    role: str,
    identity_id: int,
    *,
    tracking_number,
    courier=None,
    now: datetime | None = None,
) -> Order:
    """
    Mark an order Shipped and record its shipment.

    A tracking reference is required. Dispatching an order that is already
    Shipped raises AlreadyInState and creates no second shipment.
    """
    tracking_number = require_text(tracking_number, "tracking_number", max_length=64)
    courier = require_text(courier, "courier", max_length=64, required=False)
    order = order_service.get_order_for(order_id, role, identity_id)
    now = now or utcnow()

    def _record_shipment(shipped: Order) -> None:
        db.session.add(Shipment(
            order_id=shipped.id,
            seller_id=shipped.seller_id,
            courier=courier,
            tracking_number=tracking_number,
            dispatched_at=now,
        ))

    return lifecycle_service.submit_event(
        order.id, lifecycle_service.SHIPMENT_DISPATCHED,
        actor_role=role, actor_id=identity_id,
        payload={"tracking_number": tracking_number, "courier": courier},
        note=f"Tracking {tracking_number}",
        values={"shipment_reference": tracking_number},
        on_applied=_record_shipment,
        now=now,
    )


def shipment_for(order_id: int) -> Shipment:
    shipment = db.session.query(Shipment).filter_by(order_id=order_id).first()
    if shipment is None:
        raise NotFound(f"Order {order_id} has not shipped")
    return shipment
