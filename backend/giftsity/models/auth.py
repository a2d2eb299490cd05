from __future__ import annotations

from ..extensions import db
from giftsity.time_utils import to_utc_z


class OtpCode(db.Model):
    """
    One-time code issued for (email, role, purpose).

    WHY: Proves control of an email address for a bounded window. The code
    itself is never stored, only its SHA-256.

    CONCURRENCY: status/attempts change only through conditional UPDATEs on
    (id, status, version), so two concurrent verifications of the same code
    cannot both succeed.

    Status values:
    - PENDING:    issued, may still validate
    - CONSUMED:   verified once; never validates again
    - EXPIRED:    seen after expires_at; never validates again
    - LOCKED:     burned by too many wrong codes
    - SUPERSEDED: replaced by a newer code for the same key
    """
    __tablename__ = "otp_codes"
    __table_args__ = (
        db.Index("ix_otp_codes_key", "email", "role", "purpose", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    email = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(16), nullable=False)
    purpose = db.Column(db.String(16), nullable=False)

    # Gateway that started the flow; the resulting session is scoped to it
    service = db.Column(db.String(16), nullable=False)

    code_hash = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    consumed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "role": self.role,
            "purpose": self.purpose,
            "service": self.service,
            "status": self.status,
            "attempts": self.attempts,
            "created_at": to_utc_z(self.created_at),
            "expires_at": to_utc_z(self.expires_at),
            "consumed_at": to_utc_z(self.consumed_at),
        }


class SessionToken(db.Model):
    """
    Bearer session scoped to (role, service).

    WHY: The three gateways share no memory. Keeping every session in one
    table means a revocation is visible to all of them on the next request.

    SECURITY NOTES:
    - Tokens stored hashed in database (SHA-256)
    - Absolute and idle timeouts
    - Revocable on logout, password reset or suspicious activity
    - (identity_role, service) is immutable for the session lifetime
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_identity_active", "identity_role", "identity_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    identity_role = db.Column(db.String(16), nullable=False)
    identity_id = db.Column(db.Integer, nullable=False)
    service = db.Column(db.String(16), nullable=False, index=True)

    # Token hash (never store plaintext tokens!)
    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False, index=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    user_agent = db.Column(db.String(512), nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)  # IPv6 max length

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.identity_role,
            "identity_id": self.identity_id,
            "service": self.service,
            "created_at": to_utc_z(self.created_at),
            "last_used_at": to_utc_z(self.last_used_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_revoked": self.is_revoked,
            "revoked_at": to_utc_z(self.revoked_at),
        }
