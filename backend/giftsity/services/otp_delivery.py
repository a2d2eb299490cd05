# Overview: Out-of-band OTP delivery collaborator (email) with retry at the call site.

"""
OTP Delivery

The issuer commits the OTP record first and only then calls deliver_otp.
Delivery is best-effort: failures are retried a bounded number of times,
logged, and never roll back the record (the user can ask for a resend once
the cooldown passes).

Backends are chosen with OTP_DELIVERY_BACKEND:
- "log":  writes the code to the application log (development)
- "smtp": sends a plain-text email through SMTP_HOST
"""

from __future__ import annotations

import smtplib
import time
from email.message import EmailMessage

from flask import current_app


EXTENSION_KEY = "giftsity.otp_delivery"

_SUBJECTS = {
    "registration": "Verify your Giftsity account",
    "login": "Your Giftsity sign-in code",
    "reset": "Reset your Giftsity password",
}


class LogOtpDelivery:
    def send(self, email: str, code: str, purpose: str) -> None:
        current_app.logger.info("OTP for %s (%s): %s", email, purpose, code)


class SmtpOtpDelivery:
    def __init__(self, host: str, port: int, sender: str, username: str | None = None,
                 password: str | None = None, use_tls: bool = True):
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.use_tls = use_tls

    def send(self, email: str, code: str, purpose: str) -> None:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = email
        message["Subject"] = _SUBJECTS.get(purpose, "Your Giftsity code")
        message.set_content(
            f"Your code is {code}. It expires in "
            f"{current_app.config['OTP_TTL_MINUTES']} minutes.\n"
            "If you did not request it, ignore this email."
        )

        with smtplib.SMTP(self.host, self.port, timeout=10) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password or "")
            smtp.send_message(message)


def build_delivery(config) -> object:
    backend = config.get("OTP_DELIVERY_BACKEND", "log")
    if backend == "log":
        return LogOtpDelivery()
    if backend == "smtp":
        return SmtpOtpDelivery(
            host=config["SMTP_HOST"],
            port=int(config.get("SMTP_PORT", 587)),
            sender=config.get("SMTP_SENDER", "no-reply@giftsity.local"),
            username=config.get("SMTP_USERNAME"),
            password=config.get("SMTP_PASSWORD"),
            use_tls=bool(config.get("SMTP_USE_TLS", True)),
        )
    raise ValueError(f"Unknown OTP_DELIVERY_BACKEND '{backend}'")


def deliver_otp(email: str, code: str, purpose: str, *, backoff_base: float = 0.2) -> bool:
    """
    Hand the code to the delivery collaborator.

    Returns True once a send succeeds, False after the last failed attempt.
    Never raises.
    """
    delivery = current_app.extensions[EXTENSION_KEY]
    attempts = max(1, int(current_app.config.get("OTP_DELIVERY_ATTEMPTS", 3)))

    for attempt in range(attempts):
        try:
            delivery.send(email, code, purpose)
            return True
        except Exception:
            current_app.logger.warning(
                "OTP delivery to %s failed (attempt %d/%d)", email, attempt + 1, attempts,
                exc_info=True,
            )
            if attempt < attempts - 1:
                time.sleep(backoff_base * (2 ** attempt))

    current_app.logger.error("Giving up on OTP delivery to %s (%s)", email, purpose)
    return False
