# Overview: Service-layer operations for seller payouts; settling closed orders per period.

"""
Seller Payouts

An admin settles sellers one period at a time. A payout collects every
Closed order of one seller that was delivered on or before the period end
and that no earlier payout has taken, so orders closing late roll into the
next period. Delivered orders wait until their return window closes;
Refunded and Cancelled orders are never paid out.

Payout status: pending -> paid

CONCURRENCY:
- Orders are claimed with a conditional UPDATE (payout_id IS NULL); losing
  any claim rolls the whole calculation back with ConcurrentUpdate
- One payout per (seller, period_start, period_end); a seller already
  settled for the exact period is skipped
- mark_paid is a compare-and-swap on status
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, time, timedelta

from flask import current_app
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import AlreadyInState, ConcurrentUpdate, NotFound, ValidationError
from ..models import Order, SellerPayout
from ..validation import require_text
from . import lifecycle_service
from .concurrency import compare_and_swap
from giftsity.time_utils import utcnow


PAYOUT_PENDING = "pending"
PAYOUT_PAID = "paid"
PAYOUT_STATUSES = (PAYOUT_PENDING, PAYOUT_PAID)

# Orders a seller has delivered but that may still be refunded
_AWAITING_SETTLEMENT = (lifecycle_service.DELIVERED, lifecycle_service.RETURN_REQUESTED)


def _parse_date(value, field: str) -> date:
    text = require_text(value, field, max_length=10)
    try:
        return date.fromisoformat(text)
    except ValueError:
        raise ValidationError(f"{field} must be a YYYY-MM-DD date")


def parse_period(data) -> tuple[date, date, str]:
    """(period_start, period_end, period_label) from a request body."""
    if not isinstance(data, dict):
        raise ValidationError("JSON body required")
    start = _parse_date(data.get("period_start"), "period_start")
    end = _parse_date(data.get("period_end"), "period_end")
    if end < start:
        raise ValidationError("period_end must not be before period_start")
    label = require_text(data.get("period_label"), "period_label", max_length=64, required=False)
    return start, end, label or f"{start.isoformat()} to {end.isoformat()}"


def commission_for(total_cents: int, percent: int) -> int:
    """Commission in cents, rounded half up."""
    return (total_cents * percent + 50) // 100


def _settleable(period_end: date):
    cutoff = datetime.combine(period_end + timedelta(days=1), time.min)
    return db.session.query(Order).filter(
        Order.state == lifecycle_service.CLOSED,
        Order.payout_id.is_(None),
        Order.delivered_at.isnot(None),
        Order.delivered_at < cutoff,
    )


def calculate_payouts(admin_id: int | None, data, *, now: datetime | None = None) -> list[SellerPayout]:
    """
    Create one pending payout per seller with settleable orders.

    Returns the payouts created by this call (empty if nothing was due).

    Raises:
        ValidationError: malformed period
        ConcurrentUpdate: another calculation claimed some of the same orders
    """
    start, end, label = parse_period(data)
    now = now or utcnow()
    percent = current_app.config["PAYOUT_COMMISSION_PERCENT"]

    by_seller: dict[int, list[Order]] = defaultdict(list)
    for order in _settleable(end).order_by(Order.seller_id, Order.id).all():
        by_seller[order.seller_id].append(order)

    already_settled = {
        seller_id
        for (seller_id,) in db.session.query(SellerPayout.seller_id).filter(
            SellerPayout.period_start == start,
            SellerPayout.period_end == end,
        )
    }

    created = []
    try:
        for seller_id, orders in by_seller.items():
            if seller_id in already_settled:
                current_app.logger.info(
                    "Seller %s already has a payout for %s; %d orders wait for the next period",
                    seller_id, label, len(orders),
                )
                continue

            total = sum(order.total_cents for order in orders)
            commission = commission_for(total, percent)
            payout = SellerPayout(
                seller_id=seller_id,
                period_start=start,
                period_end=end,
                period_label=label,
                order_count=len(orders),
                total_sales_cents=total,
                commission_percent=percent,
                commission_cents=commission,
                net_payout_cents=total - commission,
                status=PAYOUT_PENDING,
                created_by_admin_id=admin_id,
                created_at=now,
            )
            db.session.add(payout)
            db.session.flush()

            order_ids = [order.id for order in orders]
            claimed = db.session.execute(
                update(Order)
                .where(Order.id.in_(order_ids), Order.payout_id.is_(None))
                .values(payout_id=payout.id)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != len(order_ids):
                raise ConcurrentUpdate("Orders were settled concurrently, try again")
            created.append(payout)

        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConcurrentUpdate("A payout for this period was created concurrently, try again")
    except ConcurrentUpdate:
        db.session.rollback()
        raise

    for payout in created:
        current_app.logger.info(
            "Payout %s created for seller %s (%s): %d orders, net %d cents",
            payout.id, payout.seller_id, label, payout.order_count, payout.net_payout_cents,
        )
    return created


def list_payouts(role: str, identity_id: int, *, status: str | None = None) -> list[SellerPayout]:
    query = db.session.query(SellerPayout)
    if role == "seller":
        query = query.filter(SellerPayout.seller_id == identity_id)
    elif role != "admin":
        return []

    if status:
        if status not in PAYOUT_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(PAYOUT_STATUSES)}")
        query = query.filter(SellerPayout.status == status)

    return query.order_by(SellerPayout.period_end.desc(), SellerPayout.id.desc()).all()


def get_payout_for(payout_id: int, role: str, identity_id: int) -> SellerPayout:
    payout = db.session.get(SellerPayout, payout_id)
    if payout is None or (role != "admin" and payout.seller_id != identity_id):
        raise NotFound(f"Payout {payout_id} not found")
    return payout


def unsettled_summary(seller_id: int) -> dict:
    """What the seller has earned that no payout covers yet."""
    closed_count, closed_total = db.session.query(
        func.count(Order.id), func.coalesce(func.sum(Order.total_cents), 0),
    ).filter(
        Order.seller_id == seller_id,
        Order.state == lifecycle_service.CLOSED,
        Order.payout_id.is_(None),
    ).one()

    waiting = db.session.query(func.count(Order.id)).filter(
        Order.seller_id == seller_id,
        Order.state.in_(_AWAITING_SETTLEMENT),
    ).scalar()

    return {
        "settleable_order_count": closed_count,
        "settleable_sales_cents": closed_total,
        "orders_in_return_window": waiting,
    }


def mark_paid(payout_id: int, admin_id: int, data, *, now: datetime | None = None) -> SellerPayout:
    """
    Record that a pending payout was transferred.

    Raises:
        NotFound, ValidationError (no transaction reference),
        AlreadyInState (already paid)
    """
    if not isinstance(data, dict):
        raise ValidationError("JSON body required")
    reference = require_text(data.get("transaction_reference"), "transaction_reference", max_length=128)

    payout = get_payout_for(payout_id, "admin", admin_id)
    if payout.status == PAYOUT_PAID:
        raise AlreadyInState("Payout is already paid", state=payout.status)

    won = compare_and_swap(
        SellerPayout, payout.id,
        expected={"status": PAYOUT_PENDING},
        values={
            "status": PAYOUT_PAID,
            "transaction_reference": reference,
            "paid_at": now or utcnow(),
            "paid_by_admin_id": admin_id,
        },
    )
    if not won:
        db.session.rollback()
        raise AlreadyInState("Payout was marked paid concurrently", state=PAYOUT_PAID)

    db.session.commit()
    current_app.logger.info("Payout %s marked paid by admin %s (%s)", payout.id, admin_id, reference)
    return db.session.get(SellerPayout, payout.id, populate_existing=True)
