# Overview: Service-layer operations for sessions; issuance, validation and revocation of bearer tokens.

"""
Session Authority

WHY: The three gateways run as separate processes and share nothing but
the database. Every session lives in session_tokens, so a revocation made
through one gateway is seen by the others on their next request.

SCOPE: A session is bound to (identity_role, service) at issuance and that
pair never changes. Gateways compare the session's service with their own
name and reject a token that was issued elsewhere.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage
- SESSION_TTL_HOURS absolute timeout (default 7 days)
- SESSION_IDLE_TIMEOUT_HOURS idle timeout (default 24 hours)
- Revocable on logout, password reset or account suspension
"""

from __future__ import annotations

import hashlib
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..errors import (
    Malformed, RateLimited, Revoked, ScopeMismatch, SessionExpired, Unauthorized, Unverified,
)
from ..gateways import role_allowed
from ..models import SessionToken
from ..validation import normalize_email, validate_role
from . import audit_service, auth_service, identity_service, login_throttle_service
from giftsity.time_utils import utcnow


_TOKEN_RE = re.compile(r"^[0-9a-f]{64}$")


@dataclass
class SessionContext:
    """
    Everything a route needs about the caller.

    role and service come from the session row, not from the identity, so
    they cannot drift during the session lifetime.
    """
    identity: object
    role: str
    service: str
    session: SessionToken


def generate_token() -> str:
    """64-character hex string (32 bytes of entropy). Never stored."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    # Tokens are high-entropy; SHA-256 is sufficient
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def is_well_formed(token) -> bool:
    return isinstance(token, str) and bool(_TOKEN_RE.match(token))


def login(
    identity,
    role: str,
    service: str,
    *,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[SessionToken, str]:
    """
    Issue a session for an identity that has already proven itself
    (OTP or password).

    Returns (session_record, plaintext_token). Only the hash is stored.

    Raises:
        ScopeMismatch: role differs from the identity's, or the service
            does not admit the role
        Unverified: email verification never completed
        Unauthorized: account suspended
    """
    role = validate_role(role)
    audit_ctx = dict(
        role=role, identity_id=identity.id, email=identity.email, service=service,
        ip_address=ip_address, user_agent=user_agent,
    )

    if identity.role != role or not role_allowed(service, role):
        audit_service.record(
            audit_service.LOGIN_FAILED, success=False, reason="Role not admitted by service", **audit_ctx,
        )
        db.session.commit()
        raise ScopeMismatch(f"Role '{role}' cannot sign in to the {service} service")

    if not identity.is_verified:
        audit_service.record(
            audit_service.LOGIN_FAILED, success=False, reason="Unverified account", **audit_ctx,
        )
        db.session.commit()
        raise Unverified()

    if not identity.is_active:
        audit_service.record(
            audit_service.LOGIN_FAILED, success=False, reason="Account suspended", **audit_ctx,
        )
        db.session.commit()
        raise Unauthorized("Account is suspended")

    plaintext_token = generate_token()
    now = utcnow()

    session = SessionToken(
        identity_role=role,
        identity_id=identity.id,
        service=service,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + timedelta(hours=current_app.config["SESSION_TTL_HOURS"]),
        is_revoked=False,
        user_agent=(user_agent or "")[:512] or None,
        ip_address=ip_address,
    )
    db.session.add(session)

    identity.last_login_at = now
    audit_service.record(audit_service.LOGIN_SUCCESS, success=True, **audit_ctx)
    db.session.commit()

    return session, plaintext_token


def password_login(
    email: str,
    role: str,
    password: str,
    service: str,
    *,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[SessionToken, str, object]:
    """
    Password sign-in for verified identities that set a password.

    Unknown email, wrong password and OTP-only accounts all raise the same
    Unauthorized. Repeated failures lock the (role, email) pair for a while.
    """
    email = normalize_email(email)
    role = validate_role(role)

    is_locked, seconds_remaining = login_throttle_service.is_account_locked(email, role)
    if is_locked:
        raise RateLimited(
            "Too many failed login attempts. Try again later.",
            retry_after_seconds=seconds_remaining,
        )

    identity = auth_service.authenticate(email, role, password)
    if identity is None:
        login_throttle_service.record_failed_attempt(
            email, role, service, ip_address=ip_address, user_agent=user_agent,
        )
        raise Unauthorized("Invalid credentials")

    session, token = login(identity, role, service, user_agent=user_agent, ip_address=ip_address)
    return session, token, identity


def validate_session(token, *, now: datetime | None = None) -> SessionContext:
    """
    Resolve a bearer token into a SessionContext.

    Raises:
        Malformed: not a 64-char lower-case hex string
        Unauthorized: unknown token, or the identity is gone or suspended
        Revoked: explicitly revoked
        SessionExpired: past absolute expiry or idle too long

    Updates last_used_at on success.
    """
    if not is_well_formed(token):
        raise Malformed()

    now = now or utcnow()
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()

    if session is None:
        raise Unauthorized("Invalid token")

    if session.is_revoked:
        raise Revoked()

    if session.expires_at <= now:
        raise SessionExpired()

    idle_limit = timedelta(hours=current_app.config["SESSION_IDLE_TIMEOUT_HOURS"])
    if now - session.last_used_at > idle_limit:
        _mark_revoked(session, now, "Idle timeout")
        db.session.commit()
        raise SessionExpired("Session expired after inactivity")

    identity = identity_service.get_identity(session.identity_role, session.identity_id)
    if identity is None or not identity.is_active:
        _mark_revoked(session, now, "Account deactivated")
        db.session.commit()
        raise Unauthorized("Account is not active")

    session.last_used_at = now
    db.session.commit()

    return SessionContext(
        identity=identity,
        role=session.identity_role,
        service=session.service,
        session=session,
    )


def reject_for_scope(context: SessionContext, service: str, *, ip_address=None, user_agent=None) -> None:
    """Audit a valid token presented to the wrong gateway and raise ScopeMismatch."""
    audit_service.record(
        audit_service.TOKEN_REJECTED,
        success=False,
        role=context.role,
        identity_id=context.identity.id,
        email=context.identity.email,
        service=service,
        reason=f"Token issued for {context.service}",
        ip_address=ip_address,
        user_agent=user_agent,
        details={"session_id": context.session.id, "session_service": context.service},
    )
    db.session.commit()
    current_app.logger.warning(
        "Rejected %s token for %s %s on %s",
        context.service, context.role, context.identity.id, service,
    )
    raise ScopeMismatch()


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """
    Revoke a session token.

    Idempotent: revoking an already revoked token succeeds without changing
    it. Returns False only for tokens that were never issued.
    """
    if not is_well_formed(token):
        return False

    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if session is None:
        return False

    if not session.is_revoked:
        _mark_revoked(session, utcnow(), reason)
        audit_service.record(
            audit_service.SESSION_REVOKED,
            success=True,
            role=session.identity_role,
            identity_id=session.identity_id,
            service=session.service,
            reason=reason,
            details={"session_id": session.id},
        )
        db.session.commit()

    return True


def logout(context: SessionContext, token: str, *, ip_address=None, user_agent=None) -> None:
    audit_service.record(
        audit_service.LOGOUT,
        success=True,
        role=context.role,
        identity_id=context.identity.id,
        email=context.identity.email,
        service=context.service,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    revoke_session(token, reason="User logout")
    db.session.commit()


def revoke_all_identity_sessions(identity, reason: str = "Revoke all sessions", *, commit: bool = True) -> int:
    """
    Revoke every live session of an identity, on every service.

    Returns count of sessions revoked. With commit=False the caller folds
    the revocation into its own transaction (password reset does).
    """
    now = utcnow()
    result = db.session.execute(
        update(SessionToken)
        .where(
            SessionToken.identity_role == identity.role,
            SessionToken.identity_id == identity.id,
            SessionToken.is_revoked.is_(False),
        )
        .values(is_revoked=True, revoked_at=now, revoked_reason=reason)
        .execution_options(synchronize_session=False)
    )
    count = result.rowcount

    if count:
        audit_service.record(
            audit_service.SESSION_REVOKED,
            success=True,
            role=identity.role,
            identity_id=identity.id,
            email=identity.email,
            reason=reason,
            details={"revoked_count": count},
        )
    if commit:
        db.session.commit()
    return count


def cleanup_expired_sessions(*, older_than_days: int = 30) -> int:
    """
    Delete expired and revoked sessions created more than older_than_days ago.

    Returns count of sessions deleted. Run from `flask maintenance cleanup-sessions`.
    """
    now = utcnow()
    cutoff = now - timedelta(days=older_than_days)

    deleted = db.session.query(SessionToken).filter(
        db.or_(
            SessionToken.expires_at < now,
            SessionToken.is_revoked.is_(True),
        ),
        SessionToken.created_at < cutoff,
    ).delete(synchronize_session=False)

    db.session.commit()
    return deleted


def _mark_revoked(session: SessionToken, now, reason: str) -> None:
    session.is_revoked = True
    session.revoked_at = now
    session.revoked_reason = reason
