# Overview: Domain error taxonomy shared by services and routes.

"""
Every error raised by the core carries a stable machine-readable ``kind``
and a human-readable message. Routes turn them into

    {"error": <kind>, "message": <message>}

with the class's HTTP status code.
"""

from __future__ import annotations


class GiftsityError(Exception):
    """Base class for recoverable domain errors."""

    kind = "Error"
    status_code = 400
    default_message = "Request failed"

    def __init__(self, message: str | None = None, **details):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        payload = {"error": self.kind, "message": self.message}
        if self.details:
            payload.update(self.details)
        return payload


class ValidationError(GiftsityError):
    """Malformed input, rejected before touching the store."""
    kind = "ValidationError"
    status_code = 400
    default_message = "Invalid input"


class NotFound(GiftsityError):
    kind = "NotFound"
    status_code = 404
    default_message = "Not found"


class Expired(GiftsityError):
    kind = "Expired"
    status_code = 410
    default_message = "Expired"


class AlreadyConsumed(GiftsityError):
    kind = "AlreadyConsumed"
    status_code = 409
    default_message = "Code already used"


class RateLimited(GiftsityError):
    kind = "RateLimited"
    status_code = 429
    default_message = "Too many requests, try again later"


class TooManyAttempts(GiftsityError):
    """Terminal for the OTP record: a fresh issuance cycle is required."""
    kind = "TooManyAttempts"
    status_code = 429
    default_message = "Too many failed attempts. Request a new code."


class Mismatch(GiftsityError):
    kind = "Mismatch"
    status_code = 400
    default_message = "Incorrect code"


class InvalidCode(GiftsityError):
    """Generic OTP failure used where NotFound/Mismatch would leak account existence."""
    kind = "InvalidCode"
    status_code = 400
    default_message = "Invalid or expired code"


class Unverified(GiftsityError):
    kind = "Unverified"
    status_code = 403
    default_message = "Account has not completed email verification"


class ScopeMismatch(GiftsityError):
    kind = "ScopeMismatch"
    status_code = 403
    default_message = "Token is not valid for this service"


class Forbidden(GiftsityError):
    kind = "Forbidden"
    status_code = 403
    default_message = "Access denied"


class IllegalTransition(GiftsityError):
    kind = "IllegalTransition"
    status_code = 409
    default_message = "Transition not allowed from the current state"


class AlreadyInState(GiftsityError):
    kind = "AlreadyInState"
    status_code = 409
    default_message = "Already in the requested state"


class ConcurrentUpdate(GiftsityError):
    """Lost a race to a concurrent writer; nothing was written and the caller may retry."""
    kind = "ConcurrentUpdate"
    status_code = 409
    default_message = "Order changed concurrently, try again"


class Unauthorized(GiftsityError):
    kind = "Unauthorized"
    status_code = 401
    default_message = "Authentication required"


class Revoked(Unauthorized):
    kind = "Revoked"
    default_message = "Session has been revoked"


class Malformed(Unauthorized):
    kind = "Malformed"
    default_message = "Malformed token"


class SessionExpired(Unauthorized):
    kind = "Expired"
    default_message = "Session expired"


class PaymentCollaboratorError(GiftsityError):
    kind = "PaymentCollaboratorError"
    status_code = 502
    default_message = "Payment provider unavailable"
