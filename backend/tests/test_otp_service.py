# Overview: Pytest coverage for one-time code issuance and verification.

"""
OTP Issuer / Verifier Tests

Verifies:
- Registration creates an unverified identity and delivers a code
- A code validates once; the second use is AlreadyConsumed
- Expiry is checked before the code itself
- OTP_MAX_ATTEMPTS wrong codes burn the record for good
- Resend cooldown and supersession of older codes
- Login/reset for unknown emails issue nothing and reveal nothing
- Concurrent correct verifications have exactly one winner
"""

import threading
from datetime import timedelta

import pytest

from giftsity.errors import (
    AlreadyConsumed, Expired, GiftsityError, Mismatch, NotFound, RateLimited,
    ScopeMismatch, TooManyAttempts, ValidationError,
)
from giftsity.extensions import db
from giftsity.models import OtpCode, SessionToken
from giftsity.services import audit_service, auth_service, identity_service, otp_service
from giftsity.services.auth_service import PasswordValidationError
from giftsity.services.concurrency import compare_and_swap

from conftest import TEST_PASSWORD, fresh, make_identity, token_for


EMAIL = "alice@example.com"


def _register(email=EMAIL, role="customer", service="main", **kwargs):
    return otp_service.issue_otp(email, role, "registration", service, **kwargs)


def _wrong(code: str) -> str:
    return "0" * len(code) if code != "0" * len(code) else "1" * len(code)


class TestIssue:
    def test_registration_creates_unverified_identity(self, app, outbox):
        result = _register(profile={"name": "Alice"})

        identity = identity_service.find_by_email("customer", EMAIL)
        assert identity is not None
        assert identity.is_verified is False
        assert identity.name == "Alice"

        assert result.delivered is True
        assert outbox.last_code(EMAIL) == result.code
        assert len(result.code) == app.config["OTP_LENGTH"]
        assert result.code.isdigit()

        otp = fresh(OtpCode, result.otp.id)
        assert otp.status == otp_service.OTP_STATUS_PENDING
        assert otp.attempts == 0
        assert otp.service == "main"
        assert otp.code_hash == otp_service.hash_code(result.code)
        assert otp.expires_at - otp.created_at == timedelta(minutes=app.config["OTP_TTL_MINUTES"])

    def test_issue_is_audited(self, app):
        _register()
        entries = audit_service.entries_for(EMAIL, action=audit_service.OTP_ISSUED)
        assert len(entries) == 1
        assert entries[0].role == "customer"
        assert entries[0].service == "main"
        assert entries[0].details["purpose"] == "registration"

    def test_email_is_normalized(self, app):
        _register(email="  Alice@Example.COM ")
        assert identity_service.find_by_email("customer", EMAIL) is not None

    def test_invalid_inputs_rejected(self, app):
        with pytest.raises(ValidationError):
            otp_service.issue_otp("not-an-email", "customer", "registration", "main")
        with pytest.raises(ValidationError):
            otp_service.issue_otp(EMAIL, "superuser", "registration", "main")
        with pytest.raises(ValidationError):
            otp_service.issue_otp(EMAIL, "customer", "shopping", "main")

    def test_profile_must_be_an_object(self, app):
        with pytest.raises(ValidationError):
            _register(profile=["Alice"])

    def test_role_not_served_by_gateway(self, app):
        with pytest.raises(ScopeMismatch):
            otp_service.issue_otp("shop@example.com", "seller", "registration", "main")
        assert identity_service.find_by_email("seller", "shop@example.com") is None

    def test_resend_cooldown(self, app, outbox):
        _register()
        with pytest.raises(RateLimited) as excinfo:
            _register()

        assert 0 < excinfo.value.details["retry_after_seconds"] <= app.config["OTP_RESEND_COOLDOWN_SECONDS"] + 1
        assert len(outbox.sent) == 1
        assert len(audit_service.entries_for(EMAIL, action=audit_service.OTP_RATE_LIMITED)) == 1

    def test_new_code_supersedes_old(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "OTP_RESEND_COOLDOWN_SECONDS", 0)
        first = _register()
        second = _register()

        assert fresh(OtpCode, first.otp.id).status == otp_service.OTP_STATUS_SUPERSEDED
        assert fresh(OtpCode, second.otp.id).status == otp_service.OTP_STATUS_PENDING

        if first.code != second.code:
            with pytest.raises(Mismatch):
                otp_service.verify_otp(EMAIL, "customer", "registration", first.code, "main")

        otp_service.verify_otp(EMAIL, "customer", "registration", second.code, "main")

    def test_login_for_unknown_email_issues_nothing(self, app, outbox):
        result = otp_service.issue_otp("ghost@example.com", "customer", "login", "main")

        assert result.otp is None
        assert result.code is None
        assert outbox.sent == []
        assert db.session.query(OtpCode).count() == 0
        assert identity_service.find_by_email("customer", "ghost@example.com") is None

        failures = audit_service.entries_for("ghost@example.com", action=audit_service.OTP_FAILED)
        assert len(failures) == 1

    def test_unknown_email_gets_the_same_cooldown(self, app, outbox):
        otp_service.issue_otp("ghost@example.com", "customer", "login", "main")

        with pytest.raises(RateLimited):
            otp_service.issue_otp("ghost@example.com", "customer", "login", "main")

        # The cooldown is per purpose, as it is for real accounts
        otp_service.issue_otp("ghost@example.com", "customer", "reset", "main")
        assert outbox.sent == []
        limited = audit_service.entries_for("ghost@example.com", action=audit_service.OTP_RATE_LIMITED)
        assert len(limited) == 1

    def test_unknown_email_cooldown_expires(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "OTP_RESEND_COOLDOWN_SECONDS", 0)
        otp_service.issue_otp("ghost@example.com", "customer", "login", "main")
        result = otp_service.issue_otp("ghost@example.com", "customer", "login", "main")
        assert result.otp is None

    def test_login_for_suspended_account_issues_nothing(self, app, outbox):
        identity = make_identity("customer", EMAIL)
        identity_service.set_status(identity, "suspended")

        result = otp_service.issue_otp(EMAIL, "customer", "login", "main")
        assert result.otp is None
        assert outbox.sent == []

    def test_delivery_failure_keeps_record(self, app, outbox):
        outbox.fail = True
        result = _register()

        assert result.delivered is False
        assert fresh(OtpCode, result.otp.id).status == otp_service.OTP_STATUS_PENDING

    def test_same_email_different_roles_are_independent(self, app):
        customer_code = _register().code
        seller_code = _register(role="seller", service="seller").code

        otp_service.verify_otp(EMAIL, "seller", "registration", seller_code, "seller")
        otp_service.verify_otp(EMAIL, "customer", "registration", customer_code, "main")

        assert identity_service.find_by_email("seller", EMAIL).is_verified
        assert identity_service.find_by_email("customer", EMAIL).is_verified


class TestVerify:
    def test_registration_verifies_identity(self, app):
        result = _register()
        verified = otp_service.verify_otp(EMAIL, "customer", "registration", result.code, "main")

        assert verified.identity.is_verified is True
        assert verified.identity.verified_at is not None
        assert verified.otp.status == otp_service.OTP_STATUS_CONSUMED
        assert verified.otp.consumed_at is not None
        assert len(audit_service.entries_for(EMAIL, action=audit_service.OTP_VERIFIED)) == 1

    def test_code_validates_once(self, app):
        code = _register().code
        otp_service.verify_otp(EMAIL, "customer", "registration", code, "main")

        with pytest.raises(AlreadyConsumed):
            otp_service.verify_otp(EMAIL, "customer", "registration", code, "main")

    def test_integer_code_accepted(self, app):
        code = _register().code
        otp_service.verify_otp(EMAIL, "customer", "registration", int(code), "main")

    def test_malformed_code_rejected_without_counting(self, app):
        result = _register()
        with pytest.raises(ValidationError):
            otp_service.verify_otp(EMAIL, "customer", "registration", "12ab", "main")
        assert fresh(OtpCode, result.otp.id).attempts == 0

    def test_nothing_issued(self, app):
        with pytest.raises(NotFound):
            otp_service.verify_otp(EMAIL, "customer", "registration", "123456", "main")

    def test_wrong_code_counts_attempts(self, app):
        result = _register()

        with pytest.raises(Mismatch) as excinfo:
            otp_service.verify_otp(EMAIL, "customer", "registration", _wrong(result.code), "main")

        assert excinfo.value.details["attempts_remaining"] == app.config["OTP_MAX_ATTEMPTS"] - 1
        assert fresh(OtpCode, result.otp.id).attempts == 1

    def test_max_attempts_burns_record(self, app):
        result = _register()
        wrong = _wrong(result.code)
        max_attempts = app.config["OTP_MAX_ATTEMPTS"]

        for _ in range(max_attempts - 1):
            with pytest.raises(Mismatch):
                otp_service.verify_otp(EMAIL, "customer", "registration", wrong, "main")

        with pytest.raises(TooManyAttempts):
            otp_service.verify_otp(EMAIL, "customer", "registration", wrong, "main")

        otp = fresh(OtpCode, result.otp.id)
        assert otp.status == otp_service.OTP_STATUS_LOCKED
        assert otp.attempts == max_attempts

        # Even the right code is refused now
        with pytest.raises(TooManyAttempts):
            otp_service.verify_otp(EMAIL, "customer", "registration", result.code, "main")
        assert identity_service.find_by_email("customer", EMAIL).is_verified is False

    def test_expired_code(self, app):
        result = _register()
        late = result.otp.expires_at + timedelta(seconds=1)

        with pytest.raises(Expired):
            otp_service.verify_otp(EMAIL, "customer", "registration", result.code, "main", now=late)

        assert fresh(OtpCode, result.otp.id).status == otp_service.OTP_STATUS_EXPIRED
        with pytest.raises(Expired):
            otp_service.verify_otp(EMAIL, "customer", "registration", result.code, "main")

    def test_expiry_checked_before_code(self, app):
        result = _register()
        late = result.otp.expires_at + timedelta(minutes=5)

        with pytest.raises(Expired):
            otp_service.verify_otp(EMAIL, "customer", "registration", _wrong(result.code), "main", now=late)
        assert fresh(OtpCode, result.otp.id).attempts == 0

    def test_code_bound_to_issuing_service(self, app):
        code = _register(role="admin", email="ops@giftsity.local").code

        with pytest.raises(ScopeMismatch):
            otp_service.verify_otp("ops@giftsity.local", "admin", "registration", code, "seller")

        otp_service.verify_otp("ops@giftsity.local", "admin", "registration", code, "main")

    def test_purpose_is_part_of_key(self, app):
        code = _register().code
        with pytest.raises(NotFound):
            otp_service.verify_otp(EMAIL, "customer", "login", code, "main")


class TestPasswordReset:
    def test_reset_replaces_password_and_revokes_sessions(self, app, outbox):
        identity = make_identity("customer", EMAIL, password=TEST_PASSWORD)
        token_for(identity, "main")
        token_for(identity, "main")

        result = otp_service.issue_otp(EMAIL, "customer", "reset", "main")
        assert result.code is not None

        otp_service.verify_otp(
            EMAIL, "customer", "reset", result.code, "main", new_password="N3w-Passw0rd!",
        )

        identity = identity_service.find_by_email("customer", EMAIL)
        assert auth_service.verify_password("N3w-Passw0rd!", identity.password_hash)
        assert not auth_service.verify_password(TEST_PASSWORD, identity.password_hash)

        live = db.session.query(SessionToken).filter_by(
            identity_role="customer", identity_id=identity.id, is_revoked=False,
        ).count()
        assert live == 0

    def test_weak_password_does_not_spend_code(self, app):
        make_identity("customer", EMAIL, password=TEST_PASSWORD)
        result = otp_service.issue_otp(EMAIL, "customer", "reset", "main")

        with pytest.raises(PasswordValidationError):
            otp_service.verify_otp(EMAIL, "customer", "reset", result.code, "main", new_password="short")

        otp = fresh(OtpCode, result.otp.id)
        assert otp.status == otp_service.OTP_STATUS_PENDING
        assert otp.attempts == 0


class TestConcurrency:
    def test_compare_and_swap_has_one_winner(self, app):
        result = _register()
        otp = fresh(OtpCode, result.otp.id)

        expected = {"status": "PENDING", "version": otp.version}
        first = compare_and_swap(OtpCode, otp.id, expected=expected,
                                 values={"status": "CONSUMED", "version": otp.version + 1})
        second = compare_and_swap(OtpCode, otp.id, expected=expected,
                                  values={"status": "CONSUMED", "version": otp.version + 1})
        db.session.commit()

        assert (first, second) == (True, False)

    def test_concurrent_verifications_single_winner(self, app):
        code = _register().code
        db.session.commit()

        workers = 4
        barrier = threading.Barrier(workers)
        outcomes = []
        lock = threading.Lock()

        def attempt():
            with app.app_context():
                barrier.wait()
                try:
                    otp_service.verify_otp(EMAIL, "customer", "registration", code, "main")
                    outcome = "ok"
                except GiftsityError as e:
                    outcome = e.kind
                with lock:
                    outcomes.append(outcome)

        threads = [threading.Thread(target=attempt) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert len(outcomes) == workers
        assert outcomes.count("ok") == 1
        assert outcomes.count("AlreadyConsumed") == workers - 1
        assert len(audit_service.entries_for(EMAIL, action=audit_service.OTP_VERIFIED)) == 1
