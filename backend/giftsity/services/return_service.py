# Overview: Service-layer operations for returns; requests, seller/admin decisions and refunds.

"""
Return Processing Service

WHY: A customer may ask to return a delivered gift within RETURN_WINDOW_DAYS.
The order's state and the return request move together, in one transaction.

DESIGN PRINCIPLES:
- Exactly one return request per order (unique order_id)
- Only Delivered orders inside the return window can be returned
- Sellers decide returns on their own orders; admins decide any
- Money moves only through the payment collaborator, and the refund must
  succeed before the order settles at Refunded

LIFECYCLE:
1. Request (requested)            order Delivered -> ReturnRequested
2. Approve (requested -> approved) order unchanged
   or Reject (requested -> rejected) order ReturnRequested -> Closed
3. Refund (approved -> refunded)  order ReturnRequested -> Refunded
"""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app

from ..extensions import db
from ..errors import AlreadyInState, IllegalTransition, NotFound, ValidationError
from ..models import ReturnRequest
from ..validation import coerce_int, require_text
from . import lifecycle_service, order_service, payment_service
from .concurrency import compare_and_swap
from giftsity.time_utils import utcnow


# =============================================================================
# RETURN STATE CONSTANTS
# =============================================================================

RETURN_STATE_REQUESTED = "requested"
RETURN_STATE_APPROVED = "approved"
RETURN_STATE_REJECTED = "rejected"
RETURN_STATE_REFUNDED = "refunded"

RETURN_REASONS = (
    "defective",
    "wrong_item",
    "not_as_described",
    "size_issue",
    "changed_mind",
    "other",
)


def return_window_open(order, now: datetime | None = None) -> bool:
    if order.delivered_at is None:
        return False
    window = timedelta(days=current_app.config["RETURN_WINDOW_DAYS"])
    return (now or utcnow()) <= order.delivered_at + window


# =============================================================================
# RETURN CREATION
# =============================================================================

def request_return(
    customer_id: int,
    order_id: int,
    reason: str,
    details: str | None = None,
    *,
    now: datetime | None = None,
) -> ReturnRequest:
    """
    Open a return for a delivered order.

    Raises:
        NotFound: order does not exist or belongs to another customer
        ValidationError: unknown reason
        AlreadyInState: a return was already requested for this order
        IllegalTransition: order not Delivered, or the return window closed
    """
    if reason not in RETURN_REASONS:
        raise ValidationError(f"reason must be one of: {', '.join(RETURN_REASONS)}")
    details = require_text(details, "details", max_length=2000, required=False)

    order = order_service.get_order_for(order_id, "customer", customer_id)
    now = now or utcnow()

    if order.state == lifecycle_service.DELIVERED and not return_window_open(order, now):
        raise IllegalTransition(
            f"Return window of {current_app.config['RETURN_WINDOW_DAYS']} days has closed",
            state=order.state,
        )

    created = {}

    def _create_request(returned) -> None:
        request_row = ReturnRequest(
            order_id=returned.id,
            customer_id=returned.customer_id,
            seller_id=returned.seller_id,
            reason=reason,
            details=details,
            state=RETURN_STATE_REQUESTED,
            refund_cents=returned.total_cents,
            created_at=now,
        )
        db.session.add(request_row)
        created["request"] = request_row

    lifecycle_service.submit_event(
        order.id, lifecycle_service.RETURN_REQUESTED_EVENT,
        actor_role="customer", actor_id=customer_id,
        payload={"reason": reason}, note=reason,
        on_applied=_create_request, now=now,
    )
    return created["request"]


# =============================================================================
# LOOKUPS
# =============================================================================

def get_return_for(return_id: int, role: str, identity_id: int) -> ReturnRequest:
    """Customers see their own returns, sellers returns on their orders, admins all."""
    request_row = db.session.get(ReturnRequest, return_id)
    if request_row is None:
        raise NotFound(f"Return {return_id} not found")
    if role == "admin":
        return request_row
    if role == "customer" and request_row.customer_id == identity_id:
        return request_row
    if role == "seller" and request_row.seller_id == identity_id:
        return request_row
    raise NotFound(f"Return {return_id} not found")


def list_returns(role: str, identity_id: int, *, state: str | None = None) -> list[ReturnRequest]:
    query = db.session.query(ReturnRequest)
    if role == "customer":
        query = query.filter(ReturnRequest.customer_id == identity_id)
    elif role == "seller":
        query = query.filter(ReturnRequest.seller_id == identity_id)
    elif role != "admin":
        return []
    if state:
        query = query.filter(ReturnRequest.state == state)
    return query.order_by(ReturnRequest.created_at.desc(), ReturnRequest.id.desc()).all()


# =============================================================================
# DECISIONS
# =============================================================================

def _decide(request_row: ReturnRequest, from_state: str, values: dict) -> None:
    """Conditional state change on the return row; raises if another decision won."""
    won = compare_and_swap(
        ReturnRequest, request_row.id,
        expected={"state": from_state},
        values=values,
    )
    if not won:
        db.session.rollback()
        fresh = db.session.get(ReturnRequest, request_row.id, populate_existing=True)
        if fresh.state == values.get("state"):
            raise AlreadyInState(f"Return is already {fresh.state}", state=fresh.state)
        raise IllegalTransition(f"Return is {fresh.state}, expected {from_state}", state=fresh.state)


def _require_state(request_row: ReturnRequest, expected: str, target: str) -> None:
    if request_row.state == target:
        raise AlreadyInState(f"Return is already {target}", state=request_row.state)
    if request_row.state != expected:
        raise IllegalTransition(
            f"Return is {request_row.state}, must be {expected}", state=request_row.state,
        )


def approve_return(return_id: int, role: str, identity_id: int) -> ReturnRequest:
    """requested -> approved. The order stays ReturnRequested until refunded."""
    request_row = get_return_for(return_id, role, identity_id)
    if role not in ("seller", "admin"):
        raise NotFound(f"Return {return_id} not found")
    _require_state(request_row, RETURN_STATE_REQUESTED, RETURN_STATE_APPROVED)

    _decide(request_row, RETURN_STATE_REQUESTED, {
        "state": RETURN_STATE_APPROVED,
        "decided_by_role": role,
        "decided_by_id": identity_id,
        "decided_at": utcnow(),
    })
    db.session.commit()
    return db.session.get(ReturnRequest, return_id, populate_existing=True)


def reject_return(return_id: int, role: str, identity_id: int, rejection_reason=None) -> ReturnRequest:
    """requested -> rejected, and the order closes."""
    request_row = get_return_for(return_id, role, identity_id)
    if role not in ("seller", "admin"):
        raise NotFound(f"Return {return_id} not found")
    rejection_reason = require_text(rejection_reason, "reason", required=False)
    _require_state(request_row, RETURN_STATE_REQUESTED, RETURN_STATE_REJECTED)

    def _reject(order) -> None:
        _decide(request_row, RETURN_STATE_REQUESTED, {
            "state": RETURN_STATE_REJECTED,
            "rejection_reason": rejection_reason,
            "decided_by_role": role,
            "decided_by_id": identity_id,
            "decided_at": utcnow(),
        })

    lifecycle_service.submit_event(
        request_row.order_id, lifecycle_service.RETURN_REJECTED,
        actor_role=role, actor_id=identity_id, note=rejection_reason, on_applied=_reject,
        expected_from=frozenset({lifecycle_service.RETURN_REQUESTED}),
    )
    return db.session.get(ReturnRequest, return_id, populate_existing=True)


def refund_return(return_id: int, admin_id: int, amount_cents=None) -> ReturnRequest:
    """
    approved -> refunded, order ReturnRequested -> Refunded.

    Admin only. The refund is requested from the payment collaborator first;
    if it fails, PaymentCollaboratorError is raised and nothing changes.
    """
    request_row = get_return_for(return_id, "admin", admin_id)
    _require_state(request_row, RETURN_STATE_APPROVED, RETURN_STATE_REFUNDED)

    order = order_service.get_order(request_row.order_id)
    if order.state != lifecycle_service.RETURN_REQUESTED:
        raise IllegalTransition(f"Order is {order.state}, cannot refund", state=order.state)

    if amount_cents is None:
        amount = request_row.refund_cents
    else:
        amount = coerce_int(amount_cents, "amount_cents", minimum=1, maximum=order.total_cents)

    reference = payment_service.request_refund(order, amount)
    now = utcnow()

    def _mark_refunded(refunded_order) -> None:
        _decide(request_row, RETURN_STATE_APPROVED, {
            "state": RETURN_STATE_REFUNDED,
            "refund_cents": amount,
            "refund_reference": reference,
            "refunded_at": now,
        })

    lifecycle_service.submit_event(
        order.id, lifecycle_service.RETURN_REFUNDED,
        actor_role="admin", actor_id=admin_id,
        payload={"amount_cents": amount, "refund_reference": reference},
        values={"refund_reference": reference},
        on_applied=_mark_refunded, now=now,
    )
    return db.session.get(ReturnRequest, return_id, populate_existing=True)
