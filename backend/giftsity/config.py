# backend/giftsity/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value not in (None, "") else default


def _env_optional_int(name: str) -> int | None:
    value = os.environ.get(name)
    return int(value) if value not in (None, "") else None


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # One database shared by all three gateways (sessions must be central)
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///giftsity.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Which gateway this process is: main | seller | corporate
    GIFTSITY_SERVICE = os.environ.get("GIFTSITY_SERVICE", "main")

    # OTP issuance / verification
    OTP_LENGTH = _env_int("OTP_LENGTH", 6)
    OTP_TTL_MINUTES = _env_int("OTP_TTL_MINUTES", 10)
    OTP_RESEND_COOLDOWN_SECONDS = _env_int("OTP_RESEND_COOLDOWN_SECONDS", 60)
    OTP_MAX_ATTEMPTS = _env_int("OTP_MAX_ATTEMPTS", 5)
    OTP_DELIVERY_BACKEND = os.environ.get("OTP_DELIVERY_BACKEND", "log")
    OTP_DELIVERY_ATTEMPTS = _env_int("OTP_DELIVERY_ATTEMPTS", 3)

    # Used only when OTP_DELIVERY_BACKEND=smtp
    SMTP_HOST = os.environ.get("SMTP_HOST", "localhost")
    SMTP_PORT = _env_int("SMTP_PORT", 587)
    SMTP_SENDER = os.environ.get("SMTP_SENDER", "no-reply@giftsity.local")
    SMTP_USERNAME = os.environ.get("SMTP_USERNAME")
    SMTP_PASSWORD = os.environ.get("SMTP_PASSWORD")
    SMTP_USE_TLS = os.environ.get("SMTP_USE_TLS", "true").lower() in ("1", "true", "yes")

    # Sessions: single long-lived bearer token with an idle cut-off
    SESSION_TTL_HOURS = _env_int("SESSION_TTL_HOURS", 24 * 7)
    SESSION_IDLE_TIMEOUT_HOURS = _env_int("SESSION_IDLE_TIMEOUT_HOURS", 24)

    # bcrypt cost factor for stored passwords
    BCRYPT_ROUNDS = _env_int("BCRYPT_ROUNDS", 12)

    # Order lifecycle
    RETURN_WINDOW_DAYS = _env_int("RETURN_WINDOW_DAYS", 7)
    PAYMENT_PENDING_TIMEOUT_MINUTES = _env_int("PAYMENT_PENDING_TIMEOUT_MINUTES", 30)
    PAYMENT_GATEWAY_BACKEND = os.environ.get("PAYMENT_GATEWAY_BACKEND", "log")
    PAYMENT_GATEWAY_ATTEMPTS = _env_int("PAYMENT_GATEWAY_ATTEMPTS", 3)

    # Platform commission withheld from each seller payout
    PAYOUT_COMMISSION_PERCENT = _env_int("PAYOUT_COMMISSION_PERCENT", 10)

    # Shared secrets for inbound collaborator callbacks
    PAYMENT_WEBHOOK_SECRET = os.environ.get("PAYMENT_WEBHOOK_SECRET", "dev-payment-webhook-secret")
    CARRIER_WEBHOOK_SECRET = os.environ.get("CARRIER_WEBHOOK_SECRET", "dev-carrier-webhook-secret")

    # None keeps auth audit entries forever, including across data wipes
    AUDIT_RETENTION_DAYS = _env_optional_int("AUDIT_RETENTION_DAYS")

    CORS_ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if origin.strip()
    ]
