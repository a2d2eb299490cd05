# Overview: Request decorators for API routes; bearer authentication, role checks and webhook secrets.

import hmac
from functools import wraps

from flask import current_app, g, jsonify, request

from .errors import Forbidden, GiftsityError, Unauthorized
from .services import session_service


def error_response(exc: GiftsityError):
    return jsonify(exc.to_dict()), exc.status_code


def internal_error():
    return jsonify({"error": "InternalError", "message": "Internal server error"}), 500


def require_auth(f):
    """
    Require a bearer session issued by THIS gateway.

    Sets the following Flask g attributes:
    - g.identity: the authenticated Admin/Seller/Customer/CorporateUser
    - g.role: role from the session record
    - g.token: the plaintext bearer token (for logout)
    - g.session_context: the full SessionContext

    A token that is valid but was issued by another gateway is rejected
    with ScopeMismatch and a token_rejected audit entry.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return error_response(Unauthorized())

        token = auth_header.split(" ", 1)[1].strip()

        try:
            context = session_service.validate_session(token)
            service = current_app.config["GIFTSITY_SERVICE"]
            if context.service != service:
                session_service.reject_for_scope(
                    context, service,
                    ip_address=request.remote_addr,
                    user_agent=request.headers.get("User-Agent"),
                )
        except GiftsityError as e:
            current_app.logger.warning("Rejected bearer token on %s: %s", request.path, e.kind)
            return error_response(e)

        g.identity = context.identity
        g.role = context.role
        g.token = token
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles):
    """Require one of the given roles. Use after @require_auth."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not hasattr(g, "role"):
                return error_response(Unauthorized())
            if g.role not in roles:
                return error_response(Forbidden(f"Requires role: {', '.join(roles)}"))
            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_webhook_secret(config_key: str):
    """Require X-Webhook-Secret to match the configured shared secret."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            expected = current_app.config.get(config_key) or ""
            provided = request.headers.get("X-Webhook-Secret") or ""
            if not expected or not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
                current_app.logger.warning("Webhook %s rejected: bad secret", request.path)
                return error_response(Unauthorized("Invalid webhook secret"))
            return f(*args, **kwargs)

        return decorated_function
    return decorator
