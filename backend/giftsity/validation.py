from __future__ import annotations

import re
from typing import Any

from .errors import ValidationError


ROLES = ("admin", "seller", "customer", "corporate")
OTP_PURPOSES = ("registration", "login", "reset")

# Maximum price: 9,999,999.99 in cents
MAX_PRICE_CENTS = 999_999_999
MAX_LINE_QUANTITY = 1000

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[A-Za-z]{2,}$")


def normalize_email(value: Any) -> str:
    """Lower-case, strip and check the shape of an email address."""
    if not isinstance(value, str):
        raise ValidationError("email is required")
    email = value.strip().lower()
    if not email or len(email) > 255 or not _EMAIL_RE.match(email):
        raise ValidationError("email is not a valid address")
    return email


def validate_role(value: Any) -> str:
    if not isinstance(value, str) or value.strip().lower() not in ROLES:
        raise ValidationError(f"role must be one of: {', '.join(ROLES)}")
    return value.strip().lower()


def validate_purpose(value: Any) -> str:
    if not isinstance(value, str) or value.strip().lower() not in OTP_PURPOSES:
        raise ValidationError(f"purpose must be one of: {', '.join(OTP_PURPOSES)}")
    return value.strip().lower()


def validate_code(value: Any, length: int) -> str:
    """OTP codes are fixed-length digit strings; ints are accepted from JSON."""
    if isinstance(value, int) and not isinstance(value, bool):
        value = str(value).zfill(length)
    if not isinstance(value, str):
        raise ValidationError("code is required")
    code = value.strip()
    if len(code) != length or not code.isdigit():
        raise ValidationError(f"code must be {length} digits")
    return code


def coerce_int(value: Any, field: str, *, minimum: int | None = None, maximum: int | None = None) -> int:
    """
    Strict integer coercion: rejects bools, floats, decimals and
    scientific notation.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped or "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{field} must be a plain integer")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be at least {minimum}")
    if maximum is not None and result > maximum:
        raise ValidationError(f"{field} must be at most {maximum}")
    return result


def require_text(value: Any, field: str, *, max_length: int = 255, required: bool = True) -> str | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    text = value.strip()
    if len(text) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return text


def parse_line_items(items: Any) -> list[tuple[int, int]]:
    """
    Validate checkout line items: a non-empty list of
    {"product_id": int, "quantity": int}. Returns (product_id, quantity)
    pairs with duplicates merged.
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")

    merged: dict[int, int] = {}
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{index}] must be an object")
        product_id = coerce_int(item.get("product_id"), f"items[{index}].product_id", minimum=1)
        quantity = coerce_int(item.get("quantity", 1), f"items[{index}].quantity",
                              minimum=1, maximum=MAX_LINE_QUANTITY)
        merged[product_id] = merged.get(product_id, 0) + quantity

    return list(merged.items())
