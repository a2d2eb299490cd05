# Overview: Credential store access; identity lookup, registration and profile updates per role.

"""
Credential Store

One table per role (admins, sellers, customers, corporate_users). The same
email may exist once in each table; every lookup is therefore by
(role, email) or (role, id), never by email alone.

Only otp_service calls mark_verified.
"""

from __future__ import annotations

import re

from ..extensions import db
from ..errors import ValidationError
from ..models import ROLE_TO_MODEL, Seller
from ..validation import normalize_email, validate_role, require_text
from giftsity.time_utils import utcnow


# Profile fields a role may set on itself (security boundary)
PROFILE_FIELDS = {
    "admin": {"name"},
    "seller": {"business_name", "phone", "pickup_pincode"},
    "customer": {"name", "phone"},
    "corporate": {"company_name", "contact_person", "phone"},
}


def model_for(role: str):
    return ROLE_TO_MODEL[validate_role(role)]


def get_identity(role: str, identity_id: int):
    return db.session.get(model_for(role), identity_id)


def find_by_email(role: str, email: str):
    model = model_for(role)
    return db.session.query(model).filter_by(email=normalize_email(email)).first()


def register_identity(role: str, email: str, profile: dict | None = None, password_hash: str | None = None):
    """
    Create an unverified identity, or return the existing one.

    Registration is idempotent so that a user who lost their first code
    can simply request another one.
    """
    model = model_for(role)
    email = normalize_email(email)
    if profile is not None and not isinstance(profile, dict):
        raise ValidationError("profile must be an object")

    existing = db.session.query(model).filter_by(email=email).first()
    if existing is not None:
        return existing

    identity = model(email=email, is_verified=False, status="active", password_hash=password_hash)
    _apply_profile(identity, profile or {})
    db.session.add(identity)
    db.session.flush()
    return identity


def mark_verified(identity, *, now=None) -> None:
    """Flip verification status. Stays verified forever once set."""
    if not identity.is_verified:
        identity.is_verified = True
        identity.verified_at = now or utcnow()


def update_profile(identity, fields: dict):
    """Apply the role's writable profile fields and commit."""
    if not isinstance(fields, dict):
        raise ValidationError("profile must be an object")

    allowed = PROFILE_FIELDS[identity.role]
    unknown = set(fields) - allowed
    if unknown:
        raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

    _apply_profile(identity, fields)
    db.session.commit()
    return identity


def set_status(identity, status: str) -> None:
    if status not in ("active", "suspended"):
        raise ValidationError("status must be 'active' or 'suspended'")
    identity.status = status
    db.session.commit()


def _apply_profile(identity, fields: dict) -> None:
    for field in PROFILE_FIELDS[identity.role]:
        if field in fields:
            setattr(identity, field, require_text(fields[field], field, max_length=128, required=False))

    if isinstance(identity, Seller) and identity.business_name and not identity.slug:
        identity.slug = _unique_slug(identity.business_name)


def _unique_slug(name: str) -> str:
    base = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-") or "seller"
    slug = base
    suffix = 2
    while db.session.query(Seller).filter_by(slug=slug).first() is not None:
        slug = f"{base}-{suffix}"
        suffix += 1
    return slug
