# Overview: Service-layer operations for maintenance; order sweeps and table cleanup.

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app

from ..extensions import db
from ..errors import AlreadyInState, ConcurrentUpdate, Forbidden, IllegalTransition
from ..models import Order
from . import audit_service, lifecycle_service, otp_service, session_service
from giftsity.time_utils import utcnow


def sweep_stale_payments(*, now: datetime | None = None) -> int:
    """
    Cancel PaymentPending orders older than PAYMENT_PENDING_TIMEOUT_MINUTES.

    An order whose payment was confirmed after the stale list was read is
    refused by the engine and skipped; it is never cancelled without a refund.
    """
    now = now or utcnow()
    cutoff = now - timedelta(minutes=current_app.config["PAYMENT_PENDING_TIMEOUT_MINUTES"])

    stale_ids = [
        row.id for row in db.session.query(Order.id).filter(
            Order.state == lifecycle_service.PAYMENT_PENDING,
            Order.updated_at < cutoff,
        ).all()
    ]
    return _apply_each(
        stale_ids, lifecycle_service.CANCEL, now,
        note="Payment not received in time",
        values={"cancelled_at": now, "cancel_reason": "Payment timeout"},
        expected_from=frozenset({lifecycle_service.PAYMENT_PENDING}),
    )


def close_expired_return_windows(*, now: datetime | None = None) -> int:
    """Close Delivered orders whose return window has passed."""
    now = now or utcnow()
    cutoff = now - timedelta(days=current_app.config["RETURN_WINDOW_DAYS"])

    expired_ids = [
        row.id for row in db.session.query(Order.id).filter(
            Order.state == lifecycle_service.DELIVERED,
            Order.delivered_at < cutoff,
        ).all()
    ]
    return _apply_each(
        expired_ids, lifecycle_service.RETURN_WINDOW_CLOSED, now, note="Return window closed",
        expected_from=frozenset({lifecycle_service.DELIVERED}),
    )


def _apply_each(order_ids, event_type: str, now: datetime, **kwargs) -> int:
    applied = 0
    for order_id in order_ids:
        try:
            lifecycle_service.submit_event(order_id, event_type, actor_role="system", now=now, **kwargs)
            applied += 1
        except (AlreadyInState, IllegalTransition, Forbidden) as exc:
            current_app.logger.info("Sweep skipped order %s: %s", order_id, exc.message)
        except ConcurrentUpdate:
            current_app.logger.warning("Sweep lost the race on order %s; next sweep retries", order_id)
    return applied


def sweep_orders(*, now: datetime | None = None) -> dict:
    now = now or utcnow()
    result = {
        "cancelled_unpaid": sweep_stale_payments(now=now),
        "closed_after_return_window": close_expired_return_windows(now=now),
    }
    current_app.logger.info("Order sweep: %s", result)
    return result


def cleanup_sessions(*, older_than_days: int = 30) -> int:
    return session_service.cleanup_expired_sessions(older_than_days=older_than_days)


def cleanup_otps(*, older_than_days: int = 1) -> int:
    return otp_service.cleanup_settled_codes(older_than=timedelta(days=older_than_days))


def purge_audit(*, retention_days: int | None = None) -> int:
    """
    Delete auth audit entries older than the retention window.

    Falls back to AUDIT_RETENTION_DAYS; when that is unset entries are kept
    forever and nothing is deleted.
    """
    if retention_days is None:
        retention_days = current_app.config.get("AUDIT_RETENTION_DAYS")
    if retention_days is None:
        return 0
    return audit_service.purge_older_than(retention_days)
