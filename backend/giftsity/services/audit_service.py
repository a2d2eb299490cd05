# Overview: Service-layer operations for the auth audit trail; append-only.

from __future__ import annotations

from datetime import timedelta

from ..extensions import db
from ..models import AuthAuditEntry
from giftsity.time_utils import utcnow


# Actions written by the OTP issuer/verifier and the session authority
OTP_ISSUED = "otp_issued"
OTP_VERIFIED = "otp_verified"
OTP_FAILED = "otp_failed"
OTP_EXPIRED = "otp_expired"
OTP_RATE_LIMITED = "otp_rate_limited"
LOGIN_SUCCESS = "login_success"
LOGIN_FAILED = "login_failed"
LOGOUT = "logout"
TOKEN_REJECTED = "token_rejected"
SESSION_REVOKED = "session_revoked"


def record(
    action: str,
    *,
    success: bool,
    role: str | None = None,
    identity_id: int | None = None,
    email: str | None = None,
    service: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    details: dict | None = None,
) -> AuthAuditEntry:
    """
    Stage an audit entry in the current transaction.

    The caller commits, so the entry lands atomically with the state change
    it describes (or together with the failure counter it explains).
    """
    entry = AuthAuditEntry(
        action=action,
        success=success,
        role=role or "unknown",
        identity_id=identity_id,
        email=email,
        service=service,
        reason=reason,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:512] or None,
        details=details or {},
        occurred_at=utcnow(),
    )
    db.session.add(entry)
    return entry


def entries_for(email: str, *, role: str | None = None, action: str | None = None) -> list[AuthAuditEntry]:
    """Audit trail for an email, oldest first."""
    query = db.session.query(AuthAuditEntry).filter(AuthAuditEntry.email == email)
    if role is not None:
        query = query.filter(AuthAuditEntry.role == role)
    if action is not None:
        query = query.filter(AuthAuditEntry.action == action)
    return query.order_by(AuthAuditEntry.occurred_at.asc(), AuthAuditEntry.id.asc()).all()


def count_since(action: str, email: str, role: str, since) -> int:
    return db.session.query(AuthAuditEntry).filter(
        AuthAuditEntry.action == action,
        AuthAuditEntry.email == email,
        AuthAuditEntry.role == role,
        AuthAuditEntry.occurred_at >= since,
    ).count()


def latest_at(action: str, email: str, role: str, *, reason: str | None = None):
    """When the most recent matching entry was written, or None."""
    query = db.session.query(db.func.max(AuthAuditEntry.occurred_at)).filter(
        AuthAuditEntry.action == action,
        AuthAuditEntry.email == email,
        AuthAuditEntry.role == role,
    )
    if reason is not None:
        query = query.filter(AuthAuditEntry.reason == reason)
    return query.scalar()


def purge_older_than(retention_days: int) -> int:
    """Delete entries older than the retention window. Only maintenance calls this."""
    cutoff = utcnow() - timedelta(days=retention_days)
    deleted = db.session.query(AuthAuditEntry).filter(
        AuthAuditEntry.occurred_at < cutoff
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted
