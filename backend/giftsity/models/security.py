from __future__ import annotations

from ..extensions import db
from giftsity.time_utils import to_utc_z


class AuthAuditEntry(db.Model):
    """
    Authentication audit trail.

    WHY: Track OTP issuance and verification, logins, token rejections
    and revocations per identity. Also feeds login throttling.

    IMMUTABLE: Never update or delete from request paths. Append-only.
    Retention is governed by AUDIT_RETENTION_DAYS.
    """
    __tablename__ = "auth_audit_entries"
    __table_args__ = (
        db.Index("ix_auth_audit_email_action", "email", "action", "occurred_at"),
        db.Index("ix_auth_audit_identity", "role", "identity_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # otp_issued, otp_verified, otp_failed, otp_expired, otp_rate_limited,
    # login_success, login_failed, logout, token_rejected, session_revoked
    action = db.Column(db.String(32), nullable=False, index=True)

    role = db.Column(db.String(16), nullable=False, default="unknown")
    identity_id = db.Column(db.Integer, nullable=True)  # Nullable for unknown emails
    email = db.Column(db.String(255), nullable=True)
    service = db.Column(db.String(16), nullable=True)

    success = db.Column(db.Boolean, nullable=False)
    reason = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)
    details = db.Column(db.JSON, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action": self.action,
            "role": self.role,
            "identity_id": self.identity_id,
            "email": self.email,
            "service": self.service,
            "success": self.success,
            "reason": self.reason,
            "ip_address": self.ip_address,
            "details": self.details or {},
            "occurred_at": to_utc_z(self.occurred_at),
        }
