# Overview: Service-layer operations for one-time codes; issuance, rate limiting and verification.

"""
OTP Issuer / Verifier

WHY: Proves that the caller controls an email address. This is the only
code path that marks an identity verified.

KEY: (email, role, purpose). The same email may hold several roles (a
customer can also be a seller), so role is part of the key.

RULES:
1. One live code per key; issuing a new one supersedes the old.
2. A new code cannot be issued within OTP_RESEND_COOLDOWN_SECONDS of the last.
3. Expiry is checked before the code, so a late code is Expired, never Mismatch.
4. OTP_MAX_ATTEMPTS wrong codes burn the record (LOCKED) for good.
5. A consumed record answers AlreadyConsumed forever.

CONCURRENCY: every status change is a compare-and-swap on
(id, status=PENDING, version). Of N concurrent correct verifications
exactly one wins; the others re-read and get AlreadyConsumed.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..errors import (
    AlreadyConsumed, Expired, Mismatch, NotFound, RateLimited, ScopeMismatch, TooManyAttempts,
)
from ..gateways import role_allowed
from ..models import OtpCode
from ..validation import normalize_email, validate_code, validate_purpose, validate_role
from . import audit_service, auth_service, identity_service, session_service
from .concurrency import compare_and_swap
from .otp_delivery import deliver_otp
from giftsity.time_utils import utcnow


OTP_STATUS_PENDING = "PENDING"
OTP_STATUS_CONSUMED = "CONSUMED"
OTP_STATUS_EXPIRED = "EXPIRED"
OTP_STATUS_LOCKED = "LOCKED"
OTP_STATUS_SUPERSEDED = "SUPERSEDED"


@dataclass
class IssueResult:
    """
    Outcome of issue_otp.

    otp/code are None when no code was issued for an unknown or suspended
    account on a login/reset flow; callers must answer exactly as if one was.
    """
    otp: OtpCode | None
    code: str | None
    delivered: bool
    identity: object | None


@dataclass
class VerifyResult:
    identity: object
    otp: OtpCode


def hash_code(code: str) -> str:
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


def generate_code(length: int) -> str:
    """Uniform numeric code from the OS CSPRNG, leading zeros allowed."""
    return "".join(secrets.choice("0123456789") for _ in range(length))


# =============================================================================
# ISSUE
# =============================================================================

def issue_otp(
    email: str,
    role: str,
    purpose: str,
    service: str,
    *,
    profile: dict | None = None,
    password: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> IssueResult:
    """
    Issue a code for (email, role, purpose) through the given gateway.

    Registration creates the identity (unverified) on first use. Login and
    reset never create anything: an unknown email is audited and silently
    gets no code.

    Raises:
        ValidationError: malformed email/role/purpose/password
        ScopeMismatch: role is not admitted by this gateway
        RateLimited: a code was issued for this key within the cooldown
    """
    email = normalize_email(email)
    role = validate_role(role)
    purpose = validate_purpose(purpose)
    if not role_allowed(service, role):
        raise ScopeMismatch(f"Role '{role}' cannot authenticate with the {service} service")

    config = current_app.config
    audit_ctx = dict(role=role, email=email, service=service, ip_address=ip_address, user_agent=user_agent)
    now = utcnow()
    cooldown = timedelta(seconds=config["OTP_RESEND_COOLDOWN_SECONDS"])

    identity = identity_service.find_by_email(role, email)
    if purpose == "registration":
        if identity is None:
            password_hash = auth_service.hash_password(password) if password else None
            identity = identity_service.register_identity(role, email, profile, password_hash)
    elif identity is None or not identity.is_active:
        identity_id = identity.id if identity else None
        no_account = f"No active account for {purpose} code request"
        # Same cooldown as a real account, so RateLimited does not reveal which emails exist
        _enforce_cooldown(
            audit_service.latest_at(audit_service.OTP_FAILED, email, role, reason=no_account),
            now, cooldown, identity_id, purpose, audit_ctx,
        )
        audit_service.record(
            audit_service.OTP_FAILED, success=False, identity_id=identity_id,
            reason=no_account, details={"purpose": purpose, "stage": "issue"}, **audit_ctx,
        )
        db.session.commit()
        return IssueResult(otp=None, code=None, delivered=False, identity=None)

    latest = _latest_record(email, role, purpose)
    if latest is not None and latest.status == OTP_STATUS_PENDING and latest.expires_at > now:
        _enforce_cooldown(latest.created_at, now, cooldown, identity.id, purpose, audit_ctx)

    # Only one live code per key
    db.session.execute(
        update(OtpCode)
        .where(
            OtpCode.email == email,
            OtpCode.role == role,
            OtpCode.purpose == purpose,
            OtpCode.status == OTP_STATUS_PENDING,
        )
        .values(status=OTP_STATUS_SUPERSEDED, version=OtpCode.version + 1)
        .execution_options(synchronize_session=False)
    )

    code = generate_code(config["OTP_LENGTH"])
    otp = OtpCode(
        email=email,
        role=role,
        purpose=purpose,
        service=service,
        code_hash=hash_code(code),
        status=OTP_STATUS_PENDING,
        attempts=0,
        version=1,
        created_at=now,
        expires_at=now + timedelta(minutes=config["OTP_TTL_MINUTES"]),
    )
    db.session.add(otp)
    audit_service.record(
        audit_service.OTP_ISSUED, success=True, identity_id=identity.id,
        details={"purpose": purpose}, **audit_ctx,
    )
    db.session.commit()

    # Record is durable before any I/O; delivery failure does not undo it
    delivered = deliver_otp(email, code, purpose)
    return IssueResult(otp=otp, code=code, delivered=delivered, identity=identity)


def _enforce_cooldown(last_issued_at, now, cooldown, identity_id, purpose: str, audit_ctx: dict) -> None:
    if last_issued_at is None or last_issued_at <= now - cooldown:
        return
    retry_after = int((last_issued_at + cooldown - now).total_seconds()) + 1
    audit_service.record(
        audit_service.OTP_RATE_LIMITED, success=False, identity_id=identity_id,
        reason="Resend cooldown active", details={"purpose": purpose}, **audit_ctx,
    )
    db.session.commit()
    raise RateLimited(
        f"A code was sent recently. Try again in {retry_after} seconds.",
        retry_after_seconds=retry_after,
    )


# =============================================================================
# VERIFY
# =============================================================================

def verify_otp(
    email: str,
    role: str,
    purpose: str,
    code,
    service: str,
    *,
    new_password: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    now: datetime | None = None,
) -> VerifyResult:
    """
    Check a code against the live record for (email, role, purpose).

    On success the record is consumed, the identity is marked verified and,
    for a reset, the password is replaced and every session revoked.

    Raises:
        ValidationError, NotFound, ScopeMismatch, AlreadyConsumed,
        TooManyAttempts, Expired, Mismatch
    """
    email = normalize_email(email)
    role = validate_role(role)
    purpose = validate_purpose(purpose)
    config = current_app.config
    code = validate_code(code, config["OTP_LENGTH"])
    if purpose == "reset":
        # Reject a weak password before the code is spent
        auth_service.validate_password_strength(new_password)

    now = now or utcnow()
    audit_ctx = dict(role=role, email=email, service=service, ip_address=ip_address, user_agent=user_agent)

    record = _latest_record(email, role, purpose)
    if record is None:
        audit_service.record(
            audit_service.OTP_FAILED, success=False, reason="No code issued",
            details={"purpose": purpose}, **audit_ctx,
        )
        db.session.commit()
        raise NotFound("No pending code for this email")

    if record.service != service:
        audit_service.record(
            audit_service.OTP_FAILED, success=False, reason="Code issued by another service",
            details={"purpose": purpose, "issued_by": record.service}, **audit_ctx,
        )
        db.session.commit()
        raise ScopeMismatch("This code was requested from a different service")

    _raise_for_settled(record)

    if now >= record.expires_at:
        compare_and_swap(
            OtpCode, record.id,
            expected={"status": OTP_STATUS_PENDING, "version": record.version},
            values={"status": OTP_STATUS_EXPIRED, "version": record.version + 1},
        )
        audit_service.record(
            audit_service.OTP_EXPIRED, success=False, reason="Code expired",
            details={"purpose": purpose, "otp_id": record.id}, **audit_ctx,
        )
        db.session.commit()
        raise Expired("Code expired. Request a new one.")

    if not hmac.compare_digest(hash_code(code), record.code_hash):
        _register_mismatch(record, purpose, audit_ctx)

    won = compare_and_swap(
        OtpCode, record.id,
        expected={"status": OTP_STATUS_PENDING, "version": record.version},
        values={"status": OTP_STATUS_CONSUMED, "consumed_at": now, "version": record.version + 1},
    )
    if not won:
        db.session.rollback()
        _raise_for_settled(_reload(record))
        raise AlreadyConsumed("Code already used")

    identity = identity_service.find_by_email(role, email)
    if identity is None:
        db.session.rollback()
        raise NotFound("No pending code for this email")

    identity_service.mark_verified(identity, now=now)
    if purpose == "reset":
        auth_service.set_password(identity, new_password)
        session_service.revoke_all_identity_sessions(
            identity, reason="Password reset", commit=False,
        )

    audit_service.record(
        audit_service.OTP_VERIFIED, success=True, identity_id=identity.id,
        details={"purpose": purpose, "otp_id": record.id}, **audit_ctx,
    )
    db.session.commit()

    return VerifyResult(identity=identity, otp=_reload(record))


def _register_mismatch(record: OtpCode, purpose: str, audit_ctx: dict) -> None:
    """Count a wrong code; the attempt that reaches the limit burns the record. Always raises."""
    max_attempts = current_app.config["OTP_MAX_ATTEMPTS"]
    attempts = record.attempts + 1
    locked = attempts >= max_attempts

    won = compare_and_swap(
        OtpCode, record.id,
        expected={"status": OTP_STATUS_PENDING, "version": record.version},
        values={
            "attempts": attempts,
            "status": OTP_STATUS_LOCKED if locked else OTP_STATUS_PENDING,
            "version": record.version + 1,
        },
    )
    if not won:
        # Someone else changed the record first; report what it is now
        db.session.rollback()
        fresh = _reload(record)
        _raise_for_settled(fresh)
        return _register_mismatch(fresh, purpose, audit_ctx)

    audit_service.record(
        audit_service.OTP_FAILED, success=False,
        reason="Too many attempts" if locked else "Incorrect code",
        details={"purpose": purpose, "otp_id": record.id, "attempts": attempts}, **audit_ctx,
    )
    db.session.commit()

    if locked:
        raise TooManyAttempts()
    raise Mismatch("Incorrect code", attempts_remaining=max_attempts - attempts)


def _raise_for_settled(record: OtpCode) -> None:
    """Raise the error for a record that can no longer validate; no-op while PENDING."""
    if record.status == OTP_STATUS_CONSUMED:
        raise AlreadyConsumed("Code already used")
    if record.status == OTP_STATUS_LOCKED:
        raise TooManyAttempts()
    if record.status == OTP_STATUS_EXPIRED:
        raise Expired("Code expired. Request a new one.")


def _latest_record(email: str, role: str, purpose: str) -> OtpCode | None:
    return (
        db.session.query(OtpCode)
        .filter(
            OtpCode.email == email,
            OtpCode.role == role,
            OtpCode.purpose == purpose,
            OtpCode.status != OTP_STATUS_SUPERSEDED,
        )
        .order_by(OtpCode.created_at.desc(), OtpCode.id.desc())
        .first()
    )


def _reload(record: OtpCode) -> OtpCode:
    return db.session.get(OtpCode, record.id, populate_existing=True)


# =============================================================================
# MAINTENANCE
# =============================================================================

def cleanup_settled_codes(*, older_than: timedelta = timedelta(days=1)) -> int:
    """Delete non-pending codes (and pending ones long expired) older than the cutoff."""
    cutoff = utcnow() - older_than
    deleted = db.session.query(OtpCode).filter(
        OtpCode.created_at < cutoff,
        db.or_(OtpCode.status != OTP_STATUS_PENDING, OtpCode.expires_at < cutoff),
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted
