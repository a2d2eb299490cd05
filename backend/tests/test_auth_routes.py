# Overview: Pytest coverage for the shared auth blueprint over HTTP.

"""
Auth API tests.

Verifies:
- Registration -> verification -> session on a gateway
- Login/reset requests answer identically for known and unknown emails
- Login/reset verification failures collapse into InvalidCode
- A code burns after OTP_MAX_ATTEMPTS wrong guesses
- Password login, logout and password reset end-to-end
"""

import pytest

from giftsity.services import identity_service

from conftest import TEST_PASSWORD, auth_headers, make_identity


def _request_code(client, email, purpose, role="customer", **extra):
    return client.post("/auth/otp/request", json={"email": email, "role": role, "purpose": purpose, **extra})


def _verify(client, email, purpose, code, role="customer", **extra):
    return client.post(
        "/auth/otp/verify",
        json={"email": email, "role": role, "purpose": purpose, "code": code, **extra},
    )


def _wrong(code):
    return "0" * len(code) if code != "0" * len(code) else "1" * len(code)


class TestRegistrationFlow:
    def test_register_verify_and_use_session(self, client, outbox):
        resp = _request_code(client, "alice@example.com", "registration", profile={"name": "Alice"})
        assert resp.status_code == 200
        assert resp.json["expires_in_seconds"] == 600

        code = outbox.last_code("alice@example.com")
        resp = _verify(client, "alice@example.com", "registration", code)
        assert resp.status_code == 200
        assert resp.json["identity"]["is_verified"] is True
        assert resp.json["identity"]["name"] == "Alice"
        assert resp.json["session"]["service"] == "main"

        me = client.get("/auth/me", headers=auth_headers(resp.json["token"]))
        assert me.status_code == 200
        assert me.json["role"] == "customer"
        assert me.json["service"] == "main"
        assert me.json["identity"]["email"] == "alice@example.com"

    def test_code_cannot_be_replayed(self, client, outbox):
        _request_code(client, "alice@example.com", "registration")
        code = outbox.last_code("alice@example.com")

        assert _verify(client, "alice@example.com", "registration", code).status_code == 200
        replay = _verify(client, "alice@example.com", "registration", code)
        assert replay.status_code == 409
        assert replay.json["error"] == "AlreadyConsumed"

    def test_resend_cooldown(self, client):
        _request_code(client, "alice@example.com", "registration")
        resp = _request_code(client, "alice@example.com", "registration")

        assert resp.status_code == 429
        assert resp.json["error"] == "RateLimited"
        assert resp.json["retry_after_seconds"] > 0

    def test_wrong_registration_code_is_specific(self, client, outbox):
        _request_code(client, "alice@example.com", "registration")
        code = outbox.last_code("alice@example.com")

        resp = _verify(client, "alice@example.com", "registration", _wrong(code))
        assert resp.status_code == 400
        assert resp.json["error"] == "Mismatch"
        assert resp.json["attempts_remaining"] == 4

    def test_code_burns_after_five_wrong_attempts(self, client, outbox):
        _request_code(client, "alice@example.com", "registration")
        code = outbox.last_code("alice@example.com")
        wrong = _wrong(code)

        for _ in range(4):
            assert _verify(client, "alice@example.com", "registration", wrong).status_code == 400

        fifth = _verify(client, "alice@example.com", "registration", wrong)
        assert fifth.status_code == 429
        assert fifth.json["error"] == "TooManyAttempts"

        correct = _verify(client, "alice@example.com", "registration", code)
        assert correct.status_code == 429
        assert correct.json["error"] == "TooManyAttempts"

    def test_role_not_served_by_gateway(self, client, seller_client, outbox):
        resp = _request_code(client, "shop@example.com", "registration", role="seller")
        assert resp.status_code == 403
        assert resp.json["error"] == "ScopeMismatch"

        resp = _request_code(seller_client, "shop@example.com", "registration", role="seller")
        assert resp.status_code == 200
        code = outbox.last_code("shop@example.com")

        verified = _verify(seller_client, "shop@example.com", "registration", code, role="seller")
        assert verified.status_code == 200
        assert verified.json["session"]["service"] == "seller"

    def test_code_from_other_gateway_rejected(self, client, seller_client, outbox):
        _request_code(client, "ops@giftsity.local", "registration", role="admin")
        code = outbox.last_code("ops@giftsity.local")

        resp = _verify(seller_client, "ops@giftsity.local", "registration", code, role="admin")
        assert resp.status_code == 403
        assert resp.json["error"] == "ScopeMismatch"

    def test_missing_body(self, client):
        resp = client.post("/auth/otp/request", data="not json", content_type="text/plain")
        assert resp.status_code == 400
        assert resp.json["error"] == "ValidationError"


class TestLoginFlow:
    def test_unknown_and_known_emails_answer_alike(self, client, customer, outbox):
        known = _request_code(client, "alice@example.com", "login")
        unknown = _request_code(client, "ghost@example.com", "login")

        assert known.status_code == unknown.status_code == 200
        assert known.json == unknown.json
        assert [m["email"] for m in outbox.sent] == ["alice@example.com"]

    def test_otp_login(self, client, customer, outbox):
        _request_code(client, "alice@example.com", "login")
        resp = _verify(client, "alice@example.com", "login", outbox.last_code("alice@example.com"))

        assert resp.status_code == 200
        assert resp.json["identity"]["id"] == customer.id

    @pytest.mark.parametrize("email", ["alice@example.com", "ghost@example.com"])
    def test_login_failures_are_generic(self, client, customer, outbox, email):
        _request_code(client, email, "login")
        resp = _verify(client, email, "login", "000000" if outbox.last_code(email) != "000000" else "111111")

        assert resp.status_code == 400
        assert resp.json["error"] == "InvalidCode"
        assert "attempts_remaining" not in resp.json

    @pytest.mark.parametrize("email", ["alice@example.com", "ghost@example.com"])
    def test_resend_cooldown_is_the_same_for_unknown_emails(self, client, customer, outbox, email):
        assert _request_code(client, email, "login").status_code == 200

        again = _request_code(client, email, "login")
        assert again.status_code == 429
        assert again.json["error"] == "RateLimited"
        assert again.json["retry_after_seconds"] > 0

    @pytest.mark.parametrize("email", ["shop@example.com", "ghost-shop@example.com"])
    def test_code_from_other_gateway_is_generic_on_login(self, client, seller_client, seller, outbox, email):
        _request_code(seller_client, email, "login", role="seller")
        code = outbox.last_code(email) or "123456"

        resp = _verify(client, email, "login", code, role="seller")
        assert resp.status_code == 400
        assert resp.json["error"] == "InvalidCode"

    def test_password_login(self, client, customer):
        resp = client.post("/auth/login", json={
            "email": "alice@example.com", "role": "customer", "password": TEST_PASSWORD,
        })
        assert resp.status_code == 200
        assert client.get("/auth/me", headers=auth_headers(resp.json["token"])).status_code == 200

    def test_password_login_failure(self, client, customer):
        resp = client.post("/auth/login", json={
            "email": "alice@example.com", "role": "customer", "password": "Wrong123!",
        })
        assert resp.status_code == 401
        assert resp.json["error"] == "Unauthorized"

    def test_unverified_account_cannot_sign_in(self, client, outbox):
        resp = _request_code(client, "new@example.com", "registration", password=TEST_PASSWORD)
        assert resp.status_code == 200

        resp = client.post("/auth/login", json={
            "email": "new@example.com", "role": "customer", "password": TEST_PASSWORD,
        })
        assert resp.status_code == 403
        assert resp.json["error"] == "Unverified"

    def test_logout_revokes_token(self, client, customer_headers):
        assert client.post("/auth/logout", headers=customer_headers).status_code == 200

        resp = client.get("/auth/me", headers=customer_headers)
        assert resp.status_code == 401
        assert resp.json["error"] == "Revoked"


class TestPasswordReset:
    def test_reset_flow(self, client, customer, customer_headers, outbox):
        assert _request_code(client, "alice@example.com", "reset").status_code == 200
        code = outbox.last_code("alice@example.com")

        resp = _verify(client, "alice@example.com", "reset", code, new_password="N3w-Passw0rd!")
        assert resp.status_code == 200
        assert "token" not in resp.json

        # Every existing session is gone
        assert client.get("/auth/me", headers=customer_headers).status_code == 401

        old = client.post("/auth/login", json={
            "email": "alice@example.com", "role": "customer", "password": TEST_PASSWORD,
        })
        assert old.status_code == 401

        new = client.post("/auth/login", json={
            "email": "alice@example.com", "role": "customer", "password": "N3w-Passw0rd!",
        })
        assert new.status_code == 200

    def test_weak_password_keeps_code(self, client, customer, outbox):
        _request_code(client, "alice@example.com", "reset")
        code = outbox.last_code("alice@example.com")

        weak = _verify(client, "alice@example.com", "reset", code, new_password="weak")
        assert weak.status_code == 400
        assert weak.json["error"] == "PasswordValidationError"

        ok = _verify(client, "alice@example.com", "reset", code, new_password="N3w-Passw0rd!")
        assert ok.status_code == 200

    def test_reset_for_unknown_email_is_silent(self, client, outbox):
        resp = _request_code(client, "ghost@example.com", "reset")
        assert resp.status_code == 200
        assert outbox.sent == []

    def test_reset_verifies_unverified_account(self, client, outbox):
        make_identity("customer", "late@example.com", verified=False, password=TEST_PASSWORD)
        _request_code(client, "late@example.com", "reset")
        code = outbox.last_code("late@example.com")

        assert _verify(client, "late@example.com", "reset", code, new_password="N3w-Passw0rd!").status_code == 200
        assert identity_service.find_by_email("customer", "late@example.com").is_verified is True
