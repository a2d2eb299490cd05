"""
Login Throttling Service

WHY: Prevent brute-force password attacks by limiting failed login attempts.
After too many failures, the (role, email) pair is temporarily locked.

- Tracks failed attempts per (role, email) through auth_audit_entries
- Lockout after MAX_FAILED_ATTEMPTS failures within LOCKOUT_WINDOW
- Lockout lasts LOCKOUT_DURATION from the most recent failure
"""

from datetime import timedelta

from ..extensions import db
from ..models import AuthAuditEntry
from . import audit_service
from giftsity.time_utils import utcnow


# Configuration constants
MAX_FAILED_ATTEMPTS = 10  # Lock after 10 failed attempts
LOCKOUT_WINDOW = timedelta(minutes=15)  # Within 15 minutes
LOCKOUT_DURATION = timedelta(minutes=15)  # Lockout for 15 minutes


def get_recent_failed_attempts(email: str, role: str) -> int:
    """Count LOGIN_FAILED entries for (email, role) within LOCKOUT_WINDOW."""
    cutoff = utcnow() - LOCKOUT_WINDOW
    return audit_service.count_since(audit_service.LOGIN_FAILED, email, role, cutoff)


def is_account_locked(email: str, role: str) -> tuple[bool, int | None]:
    """
    Check if an account is currently locked due to too many failed attempts.

    Returns:
    - (True, seconds_remaining) if locked
    - (False, None) if not locked
    """
    if get_recent_failed_attempts(email, role) < MAX_FAILED_ATTEMPTS:
        return False, None

    most_recent = db.session.query(AuthAuditEntry).filter(
        AuthAuditEntry.action == audit_service.LOGIN_FAILED,
        AuthAuditEntry.email == email,
        AuthAuditEntry.role == role,
    ).order_by(AuthAuditEntry.occurred_at.desc()).first()

    if most_recent:
        lockout_end = most_recent.occurred_at + LOCKOUT_DURATION
        now = utcnow()
        if now < lockout_end:
            return True, int((lockout_end - now).total_seconds())

    return False, None


def record_failed_attempt(
    email: str,
    role: str,
    service: str,
    ip_address: str | None = None,
    user_agent: str | None = None,
    reason: str = "Invalid credentials",
) -> int:
    """
    Record a failed login attempt.

    Returns the total number of recent failed attempts.
    """
    audit_service.record(
        audit_service.LOGIN_FAILED,
        success=False,
        role=role,
        email=email,
        service=service,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.session.commit()

    return get_recent_failed_attempts(email, role)

