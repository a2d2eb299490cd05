# Overview: Service-layer operations for password credentials; hashing, strength rules and authentication.

"""
Password Authentication

WHY: Verified identities may sign in with a password instead of a fresh
OTP. Passwords are optional; OTP-only accounts have password_hash NULL
and can never authenticate here.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, upper, lower, digit and special character
- Unknown email, wrong password and passwordless account all fail the same way
- Throttling lives in login_throttle_service
"""

import re

import bcrypt
from flask import current_app

from ..extensions import db
from ..errors import ValidationError
from . import identity_service


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    kind = "PasswordValidationError"


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises PasswordValidationError if requirements not met.
    """
    if not isinstance(password, str):
        raise PasswordValidationError("Password is required")

    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>_\-]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt (cost factor BCRYPT_ROUNDS, default 12).

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_ROUNDS", 12))
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str | None) -> bool:
    """
    Verify password against bcrypt hash.

    bcrypt.checkpw() compares in constant time.
    """
    if not password_hash or not isinstance(password, str):
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Corrupt hash in the store
        return False


def authenticate(email: str, role: str, password: str):
    """
    Return the identity if (role, email, password) match, else None.

    Verification and account status are NOT checked here; the session
    authority does that so the caller gets a precise error.
    """
    identity = identity_service.find_by_email(role, email)
    if identity is None:
        # Burn comparable time so response timing does not reveal the email
        bcrypt.checkpw(b"timing-equalizer", _DUMMY_HASH)
        return None

    if verify_password(password, identity.password_hash):
        return identity

    return None


def set_password(identity, new_password: str) -> None:
    """Replace the password hash (used by the reset OTP flow). Caller commits."""
    identity.password_hash = hash_password(new_password)
    db.session.add(identity)


_DUMMY_HASH = bcrypt.hashpw(b"timing-equalizer", bcrypt.gensalt(rounds=12))
