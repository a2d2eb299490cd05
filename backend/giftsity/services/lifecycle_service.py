# Overview: Service-layer operations for the order lifecycle; state machine, event inbox and history.

"""
Giftsity Order Lifecycle Engine

================================================================================
PURPOSE: Enforce the order state machine for every actor on every gateway
================================================================================

STATE MACHINE:
    Placed -> PaymentPending -> PaymentConfirmed -> [Fulfilling ->] Shipped
           -> Delivered -> ReturnRequested -> Refunded
                        \\-> Closed          \\-> Closed

    Cancelled is reachable from every state before Shipped.

RULES (NON-NEGOTIABLE):
1. Each event type maps to exactly one target state
2. Only the edges in LEGAL_EDGES may be taken; anything else is IllegalTransition
3. An event whose target is the current state is AlreadyInState and writes nothing
4. Every applied transition appends one OrderTransition in the same transaction
5. History is ordered by sequence (== order.version) with non-decreasing timestamps

CONCURRENCY:
Transitions are a compare-and-swap on (id, state, version). Two concurrent
events for one order are serialized by the database: the loser re-reads the
order and either re-applies from the new state (if still legal) or reports
AlreadyInState / IllegalTransition. Callers that already acted on the state
they read (a refund, a timeout) pass expected_from so a moved order is
refused. Losing every round raises ConcurrentUpdate, which is retryable.

INBOX:
Events reported from outside (webhooks, sellers, customers) are recorded in
order_events with their outcome. A repeated dedupe_key is answered from the
stored outcome instead of being applied twice.

================================================================================
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import (
    AlreadyInState, ConcurrentUpdate, Forbidden, GiftsityError, IllegalTransition, NotFound, ValidationError,
)
from ..models import Order, OrderEvent, OrderTransition
from .concurrency import compare_and_swap
from giftsity.time_utils import utcnow


# =============================================================================
# STATES
# =============================================================================

PLACED = "Placed"
PAYMENT_PENDING = "PaymentPending"
PAYMENT_CONFIRMED = "PaymentConfirmed"
FULFILLING = "Fulfilling"
SHIPPED = "Shipped"
DELIVERED = "Delivered"
RETURN_REQUESTED = "ReturnRequested"
REFUNDED = "Refunded"
CLOSED = "Closed"
CANCELLED = "Cancelled"

STATES = (
    PLACED, PAYMENT_PENDING, PAYMENT_CONFIRMED, FULFILLING, SHIPPED,
    DELIVERED, RETURN_REQUESTED, REFUNDED, CLOSED, CANCELLED,
)
TERMINAL_STATES = frozenset({REFUNDED, CLOSED, CANCELLED})

# None is the creation entry
LEGAL_EDGES = {
    None: frozenset({PLACED}),
    PLACED: frozenset({PAYMENT_PENDING, CANCELLED}),
    PAYMENT_PENDING: frozenset({PAYMENT_CONFIRMED, CANCELLED}),
    PAYMENT_CONFIRMED: frozenset({FULFILLING, SHIPPED, CANCELLED}),
    FULFILLING: frozenset({SHIPPED, CANCELLED}),
    SHIPPED: frozenset({DELIVERED}),
    DELIVERED: frozenset({RETURN_REQUESTED, CLOSED}),
    RETURN_REQUESTED: frozenset({REFUNDED, CLOSED}),
    REFUNDED: frozenset(),
    CLOSED: frozenset(),
    CANCELLED: frozenset(),
}

# Cancelling from these states only settles after a successful refund
REFUND_BEFORE_CANCEL = frozenset({PAYMENT_CONFIRMED, FULFILLING})
# Cancelling from these states needs no refund
UNPAID_STATES = frozenset({PLACED, PAYMENT_PENDING})


# =============================================================================
# EVENTS
# =============================================================================

ORDER_PLACED = "order_placed"
PAYMENT_INITIATED = "payment_initiated"
PAYMENT_CONFIRMED_EVENT = "payment_confirmed"
FULFILMENT_STARTED = "fulfilment_started"
SHIPMENT_DISPATCHED = "shipment_dispatched"
DELIVERY_CONFIRMED = "delivery_confirmed"
RETURN_REQUESTED_EVENT = "return_requested"
RETURN_REFUNDED = "return_refunded"
RETURN_REJECTED = "return_rejected"
RETURN_WINDOW_CLOSED = "return_window_closed"
CANCEL = "cancel"

EVENT_TARGETS = {
    ORDER_PLACED: PLACED,
    PAYMENT_INITIATED: PAYMENT_PENDING,
    PAYMENT_CONFIRMED_EVENT: PAYMENT_CONFIRMED,
    FULFILMENT_STARTED: FULFILLING,
    SHIPMENT_DISPATCHED: SHIPPED,
    DELIVERY_CONFIRMED: DELIVERED,
    RETURN_REQUESTED_EVENT: RETURN_REQUESTED,
    RETURN_REFUNDED: REFUNDED,
    RETURN_REJECTED: CLOSED,
    RETURN_WINDOW_CLOSED: CLOSED,
    CANCEL: CANCELLED,
}

# Who may report each event. "payment" and "carrier" are the webhook
# collaborators, "system" is the app itself (checkout, sweeps).
EVENT_ACTORS = {
    ORDER_PLACED: frozenset({"customer", "system"}),
    PAYMENT_INITIATED: frozenset({"system"}),
    PAYMENT_CONFIRMED_EVENT: frozenset({"payment"}),
    FULFILMENT_STARTED: frozenset({"seller", "admin"}),
    SHIPMENT_DISPATCHED: frozenset({"seller", "admin"}),
    DELIVERY_CONFIRMED: frozenset({"carrier", "admin"}),
    RETURN_REQUESTED_EVENT: frozenset({"customer"}),
    RETURN_REFUNDED: frozenset({"admin", "system"}),
    RETURN_REJECTED: frozenset({"seller", "admin"}),
    RETURN_WINDOW_CLOSED: frozenset({"system"}),
    CANCEL: frozenset({"customer", "admin", "payment", "system"}),
}

OUTCOME_APPLIED = "APPLIED"
OUTCOME_ALREADY_IN_STATE = "ALREADY_IN_STATE"
OUTCOME_REJECTED = "REJECTED"

MAX_CAS_ROUNDS = 3


def can_transition(from_state: str | None, to_state: str) -> bool:
    """
    Check if a state transition is valid according to the lifecycle rules.

    from_state None asks whether to_state is a valid creation state.
    Same-state is never a transition.
    """
    if from_state is not None and from_state not in LEGAL_EDGES:
        raise ValidationError(f"Unknown order state '{from_state}'")
    if to_state not in STATES:
        raise ValidationError(f"Unknown order state '{to_state}'")
    return to_state in LEGAL_EDGES[from_state]


def target_for(event_type: str) -> str:
    try:
        return EVENT_TARGETS[event_type]
    except KeyError:
        raise ValidationError(f"Unknown order event '{event_type}'")


# =============================================================================
# HISTORY
# =============================================================================

def record_creation(order: Order, *, actor_role: str = "customer", actor_id: int | None = None,
                    now: datetime | None = None) -> OrderTransition:
    """Append the creation entry (sequence 1, from_state NULL). Caller commits."""
    entry = OrderTransition(
        order_id=order.id,
        sequence=1,
        from_state=None,
        to_state=PLACED,
        event_type=ORDER_PLACED,
        actor_role=actor_role,
        actor_id=actor_id,
        occurred_at=now or order.created_at or utcnow(),
    )
    db.session.add(entry)
    return entry


def history(order_id: int) -> list[OrderTransition]:
    return (
        db.session.query(OrderTransition)
        .filter(OrderTransition.order_id == order_id)
        .order_by(OrderTransition.sequence.asc())
        .all()
    )


def _last_transition_at(order_id: int) -> datetime | None:
    last = (
        db.session.query(OrderTransition.occurred_at)
        .filter(OrderTransition.order_id == order_id)
        .order_by(OrderTransition.sequence.desc())
        .first()
    )
    return last[0] if last else None


# =============================================================================
# APPLY
# =============================================================================

def apply_transition(
    order_id: int,
    event_type: str,
    *,
    actor_role: str,
    actor_id: int | None = None,
    note: str | None = None,
    values: dict | None = None,
    expected_from: frozenset | None = None,
    now: datetime | None = None,
) -> Order:
    """
    Move an order to the target state of event_type.

    Does NOT commit: the caller owns the transaction so that side records
    (shipment, return request) land atomically with the transition.

    Args:
        values: extra Order columns to set in the same UPDATE
            (e.g. delivered_at, cancel_reason, shipment_reference)
        expected_from: states the caller based its side effects on. If the
            order has since moved elsewhere the transition is refused even
            when the edge itself would be legal.

    Raises:
        NotFound, Forbidden (actor may not report this event),
        AlreadyInState, IllegalTransition,
        ConcurrentUpdate (every CAS round lost; nothing written)
    """
    target = target_for(event_type)
    if actor_role not in EVENT_ACTORS[event_type]:
        raise Forbidden(f"{actor_role} cannot report {event_type}")

    now = now or utcnow()

    for _ in range(MAX_CAS_ROUNDS):
        order = db.session.get(Order, order_id, populate_existing=True)
        if order is None:
            raise NotFound(f"Order {order_id} not found")

        current = order.state
        if current == target:
            raise AlreadyInState(f"Order is already {target}", state=current)
        if not can_transition(current, target):
            raise IllegalTransition(
                f"Cannot move order from {current} to {target}",
                state=current, requested=target,
            )
        if expected_from is not None and current not in expected_from:
            raise IllegalTransition(
                f"Order moved to {current} before it could become {target}",
                state=current, requested=target,
            )

        # Timestamps never go backwards, even if clocks disagree between gateways
        last_at = _last_transition_at(order.id)
        occurred_at = max(now, last_at) if last_at else now
        new_version = order.version + 1

        won = compare_and_swap(
            Order, order.id,
            expected={"state": current, "version": order.version},
            values={"state": target, "version": new_version, "updated_at": occurred_at, **(values or {})},
        )
        if not won:
            # Another event got there first; re-read and re-evaluate
            continue

        db.session.add(OrderTransition(
            order_id=order.id,
            sequence=new_version,
            from_state=current,
            to_state=target,
            event_type=event_type,
            actor_role=actor_role,
            actor_id=actor_id,
            note=note,
            occurred_at=occurred_at,
        ))
        db.session.flush()
        return db.session.get(Order, order.id, populate_existing=True)

    raise ConcurrentUpdate(state=order.state)


def submit_event(
    order_id: int,
    event_type: str,
    *,
    actor_role: str,
    actor_id: int | None = None,
    dedupe_key: str | None = None,
    payload: dict | None = None,
    note: str | None = None,
    values: dict | None = None,
    expected_from: frozenset | None = None,
    on_applied=None,
    now: datetime | None = None,
) -> Order:
    """
    Record an inbound event in the inbox, apply it and commit.

    on_applied(order) runs after the transition inside the same transaction;
    raising a GiftsityError from it rolls the transition back.

    A redelivered dedupe_key replays the stored outcome: APPLIED returns the
    order unchanged, anything else re-raises the original error kind.
    ConcurrentUpdate is never stored, so a redelivery of that event is
    applied afresh.
    """
    if dedupe_key:
        replayed = _replay(order_id, dedupe_key)
        if replayed is not None:
            return replayed

    received_at = now or utcnow()
    event = OrderEvent(
        order_id=order_id,
        event_type=event_type,
        dedupe_key=dedupe_key,
        actor_role=actor_role,
        actor_id=actor_id,
        payload=payload or {},
        received_at=received_at,
    )

    try:
        order = apply_transition(
            order_id, event_type,
            actor_role=actor_role, actor_id=actor_id, note=note, values=values,
            expected_from=expected_from, now=now,
        )
        if on_applied is not None:
            on_applied(order)
        event.outcome = OUTCOME_APPLIED
        db.session.add(event)
        db.session.commit()
    except (AlreadyInState, IllegalTransition, Forbidden) as exc:
        db.session.rollback()
        _store_outcome(event, exc)
        raise
    except IntegrityError:
        # Same dedupe_key committed concurrently
        db.session.rollback()
        replayed = _replay(order_id, dedupe_key) if dedupe_key else None
        if replayed is None:
            raise
        return replayed
    except GiftsityError:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Order %s: %s by %s -> %s", order.order_number, event_type, actor_role, order.state,
    )
    return order


def _store_outcome(event: OrderEvent, exc: GiftsityError) -> None:
    if db.session.get(Order, event.order_id) is None:
        return
    event.outcome = OUTCOME_ALREADY_IN_STATE if isinstance(exc, AlreadyInState) else OUTCOME_REJECTED
    event.outcome_detail = exc.message[:255]
    db.session.add(event)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()


def _replay(order_id: int, dedupe_key: str) -> Order | None:
    event = db.session.query(OrderEvent).filter_by(dedupe_key=dedupe_key).first()
    if event is None:
        return None
    if event.order_id != order_id:
        raise ValidationError("Event id already used for another order")

    order = db.session.get(Order, order_id)
    if event.outcome == OUTCOME_APPLIED:
        return order
    if event.outcome == OUTCOME_ALREADY_IN_STATE:
        raise AlreadyInState(event.outcome_detail, state=order.state)
    raise IllegalTransition(event.outcome_detail, state=order.state)


def events_for(order_id: int) -> list[OrderEvent]:
    return (
        db.session.query(OrderEvent)
        .filter(OrderEvent.order_id == order_id)
        .order_by(OrderEvent.received_at.asc(), OrderEvent.id.asc())
        .all()
    )
