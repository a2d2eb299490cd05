from __future__ import annotations

from ..extensions import db
from giftsity.time_utils import to_utc_z


class Order(db.Model):
    """
    Customer order.

    LIFECYCLE: state changes ONLY through lifecycle_service, which applies
    each transition as a compare-and-swap on (id, state, version) and
    appends an OrderTransition row in the same transaction.

    States: Placed, PaymentPending, PaymentConfirmed, Fulfilling, Shipped,
    Delivered, ReturnRequested, Refunded, Closed, Cancelled.

    Orders are never deleted, only brought to a terminal state.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_customer_created", "customer_id", "created_at"),
        db.Index("ix_orders_seller_state", "seller_id", "state"),
        db.Index("ix_orders_state_updated", "state", "updated_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False, unique=True, index=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False)
    seller_id = db.Column(db.Integer, db.ForeignKey("sellers.id"), nullable=False)

    total_cents = db.Column(db.Integer, nullable=False, default=0)

    state = db.Column(db.String(24), nullable=False, default="Placed")
    version = db.Column(db.Integer, nullable=False, default=1)

    # Collaborator references
    payment_reference = db.Column(db.String(64), nullable=True, index=True)
    refund_reference = db.Column(db.String(64), nullable=True)
    shipment_reference = db.Column(db.String(64), nullable=True)

    # Set once the order is settled to its seller; NULL means not yet paid out
    payout_id = db.Column(db.Integer, db.ForeignKey("seller_payouts.id"), nullable=True, index=True)

    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False)

    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))
    seller = db.relationship("Seller", backref=db.backref("orders", lazy=True))
    lines = db.relationship("OrderLine", backref="order", lazy=True, order_by="OrderLine.id")
    transitions = db.relationship(
        "OrderTransition", backref="order", lazy=True, order_by="OrderTransition.sequence"
    )

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "seller_id": self.seller_id,
            "total_cents": self.total_cents,
            "state": self.state,
            "version": self.version,
            "payment_reference": self.payment_reference,
            "refund_reference": self.refund_reference,
            "shipment_reference": self.shipment_reference,
            "payout_id": self.payout_id,
            "delivered_at": to_utc_z(self.delivered_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancel_reason": self.cancel_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class OrderLine(db.Model):
    """Line item with the price captured at checkout."""
    __tablename__ = "order_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    title = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "title": self.title,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class OrderTransition(db.Model):
    """
    Append-only state history of an order.

    sequence is 1-based; the creation entry has from_state NULL.
    UNIQUE(order_id, sequence) makes a double-applied transition fail at
    the database even if the CAS were bypassed.
    """
    __tablename__ = "order_transitions"
    __table_args__ = (
        db.UniqueConstraint("order_id", "sequence", name="uq_order_transitions_order_seq"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    sequence = db.Column(db.Integer, nullable=False)

    from_state = db.Column(db.String(24), nullable=True)
    to_state = db.Column(db.String(24), nullable=False)
    event_type = db.Column(db.String(32), nullable=False)

    # customer | seller | admin | corporate | system | payment | carrier
    actor_role = db.Column(db.String(16), nullable=False, default="system")
    actor_id = db.Column(db.Integer, nullable=True)
    note = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "sequence": self.sequence,
            "from_state": self.from_state,
            "to_state": self.to_state,
            "event_type": self.event_type,
            "actor_role": self.actor_role,
            "actor_id": self.actor_id,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class OrderEvent(db.Model):
    """
    Inbox of externally reported order events.

    dedupe_key (e.g. a webhook delivery id) is unique; a redelivered event
    is answered from the stored outcome instead of being applied again.
    """
    __tablename__ = "order_events"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    event_type = db.Column(db.String(32), nullable=False)
    dedupe_key = db.Column(db.String(128), nullable=True, unique=True)

    actor_role = db.Column(db.String(16), nullable=False, default="system")
    actor_id = db.Column(db.Integer, nullable=True)
    payload = db.Column(db.JSON, nullable=True)

    # APPLIED | ALREADY_IN_STATE | REJECTED
    outcome = db.Column(db.String(20), nullable=True)
    outcome_detail = db.Column(db.String(255), nullable=True)

    received_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "event_type": self.event_type,
            "dedupe_key": self.dedupe_key,
            "actor_role": self.actor_role,
            "outcome": self.outcome,
            "outcome_detail": self.outcome_detail,
            "received_at": to_utc_z(self.received_at),
        }


class Shipment(db.Model):
    """Dispatch record created by the Seller gateway."""
    __tablename__ = "shipments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("sellers.id"), nullable=False, index=True)

    courier = db.Column(db.String(64), nullable=True)
    tracking_number = db.Column(db.String(64), nullable=False)
    dispatched_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "seller_id": self.seller_id,
            "courier": self.courier,
            "tracking_number": self.tracking_number,
            "dispatched_at": to_utc_z(self.dispatched_at),
        }


class ReturnRequest(db.Model):
    """
    Customer return for a delivered order.

    Exactly one per order. States: requested -> approved -> refunded, or
    requested -> rejected.
    """
    __tablename__ = "return_requests"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("sellers.id"), nullable=False, index=True)

    # defective | wrong_item | not_as_described | size_issue | changed_mind | other
    reason = db.Column(db.String(32), nullable=False)
    details = db.Column(db.Text, nullable=True)

    state = db.Column(db.String(16), nullable=False, default="requested")
    refund_cents = db.Column(db.Integer, nullable=False, default=0)
    refund_reference = db.Column(db.String(64), nullable=True)
    rejection_reason = db.Column(db.String(255), nullable=True)

    decided_by_role = db.Column(db.String(16), nullable=True)
    decided_by_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    order = db.relationship("Order", backref=db.backref("return_request", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "seller_id": self.seller_id,
            "reason": self.reason,
            "details": self.details,
            "state": self.state,
            "refund_cents": self.refund_cents,
            "refund_reference": self.refund_reference,
            "rejection_reason": self.rejection_reason,
            "decided_by_role": self.decided_by_role,
            "created_at": to_utc_z(self.created_at),
            "decided_at": to_utc_z(self.decided_at),
            "refunded_at": to_utc_z(self.refunded_at),
        }
