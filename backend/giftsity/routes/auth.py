# Overview: Flask API routes for auth operations; shared by all three gateways.

"""
Authentication API routes

Mounted on every gateway. The gateway's own name (GIFTSITY_SERVICE) is the
service scope of every OTP flow and session started here.

SECURITY FEATURES:
- Passwordless sign-in and registration with one-time codes
- Same response for known and unknown emails on login/reset requests
- NotFound/Mismatch/ScopeMismatch collapsed into InvalidCode on login/reset verification
- Password login throttling with temporary lockout
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, internal_error, require_auth
from ..errors import GiftsityError, InvalidCode, Mismatch, NotFound, ScopeMismatch, ValidationError
from ..services import otp_service, session_service


auth_bp = Blueprint("auth", __name__, url_prefix="/auth")

# Purposes where telling "no such code" from "wrong code" would reveal whether an account exists
_GENERIC_FAILURE_PURPOSES = ("login", "reset")


def _client():
    return {"ip_address": request.remote_addr, "user_agent": request.headers.get("User-Agent")}


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("JSON body required")
    return data


def _session_payload(session, token, identity) -> dict:
    return {
        "token": token,
        "session": session.to_dict(),
        "identity": identity.to_dict(),
    }


@auth_bp.post("/otp/request")
def request_otp_route():
    """
    Request a one-time code.

    Request body:
    {
        "email": "alice@example.com",
        "role": "customer",
        "purpose": "registration" | "login" | "reset",
        "profile": {...},      (optional, registration only)
        "password": "..."      (optional, registration only)
    }

    Returns:
        200: Code sent (or silently not sent for unknown login/reset emails)
        400: Invalid input
        403: Role not served by this gateway
        429: Resend cooldown active
    """
    try:
        data = _json_body()
        purpose = data.get("purpose")

        otp_service.issue_otp(
            data.get("email"),
            data.get("role"),
            purpose,
            current_app.config["GIFTSITY_SERVICE"],
            profile=data.get("profile") if purpose == "registration" else None,
            password=data.get("password") if purpose == "registration" else None,
            **_client(),
        )

        return jsonify({
            "message": "If the account exists, a code has been sent",
            "expires_in_seconds": current_app.config["OTP_TTL_MINUTES"] * 60,
            "resend_after_seconds": current_app.config["OTP_RESEND_COOLDOWN_SECONDS"],
        }), 200

    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to issue OTP")
        return internal_error()


@auth_bp.post("/otp/verify")
def verify_otp_route():
    """
    Verify a one-time code.

    Request body:
    {
        "email": "alice@example.com",
        "role": "customer",
        "purpose": "registration" | "login" | "reset",
        "code": "123456",
        "new_password": "..."   (reset only)
    }

    Registration and login return a session token scoped to this gateway.
    Reset replaces the password, revokes every session and returns no token.
    """
    purpose = None
    try:
        data = _json_body()
        purpose = data.get("purpose")
        role = data.get("role")
        service = current_app.config["GIFTSITY_SERVICE"]

        try:
            result = otp_service.verify_otp(
                data.get("email"),
                role,
                purpose,
                data.get("code"),
                service,
                new_password=data.get("new_password"),
                **_client(),
            )
        except (NotFound, Mismatch, ScopeMismatch):
            # All three depend on whether a pending record exists for the email
            if isinstance(purpose, str) and purpose.strip().lower() in _GENERIC_FAILURE_PURPOSES:
                raise InvalidCode()
            raise

        if result.otp.purpose == "reset":
            return jsonify({"message": "Password updated. Sign in again."}), 200

        session, token = session_service.login(result.identity, result.otp.role, service, **_client())
        return jsonify(_session_payload(session, token, result.identity)), 200

    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to verify OTP")
        return internal_error()


@auth_bp.post("/login")
def login_route():
    """
    Password sign-in for verified identities.

    Request body: {"email": "...", "role": "...", "password": "..."}
    """
    try:
        data = _json_body()
        session, token, identity = session_service.password_login(
            data.get("email"),
            data.get("role"),
            data.get("password"),
            current_app.config["GIFTSITY_SERVICE"],
            **_client(),
        )
        return jsonify(_session_payload(session, token, identity)), 200

    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to login")
        return internal_error()


@auth_bp.post("/logout")
@require_auth
def logout_route():
    try:
        session_service.logout(g.session_context, g.token, **_client())
        return jsonify({"message": "Logged out"}), 200
    except GiftsityError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to logout")
        return internal_error()


@auth_bp.get("/me")
@require_auth
def me_route():
    context = g.session_context
    return jsonify({
        "identity": context.identity.to_dict(),
        "role": context.role,
        "service": context.service,
        "session": context.session.to_dict(),
    }), 200
