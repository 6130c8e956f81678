"""
tests/test_otp.py -- Expiry and attempt limits, exercised at the service layer.

The HTTP tests cannot move time; these construct AuthService with a Clock so
"exactly at expiry" and "one second past" are exact instants.
"""

from __future__ import annotations

import pytest

from auth.service import OTP_MAX_ATTEMPTS, OTP_TTL
from core.errors import ErrorCode
from terms.service import seed_default_terms

PASSWORD = "correct-horse-9"


def _register(env, email: str = "otp@example.cl") -> str:
    result = env.auth.register(
        email=email,
        password=PASSWORD,
        first_name="Ana",
        last_name="Rojas",
        accept_terms=True,
        gender="FEMALE",
        birth_date="1990-05-17",
    )
    assert result.ok, result.message
    return email


class TestOtpExpiry:
    def test_valid_until_expiry_instant(self, service_env) -> None:
        """now == expires_at is still valid; the code only expires strictly after."""
        email = _register(service_env)
        service_env.auth.send_otp(email, "LOGIN")
        code = service_env.mailer.code_for(email)

        service_env.clock.advance(seconds=OTP_TTL.total_seconds())
        result = service_env.auth.verify_otp(email, code, "LOGIN")
        assert result.ok, result.message

    def test_expired_one_second_after(self, service_env) -> None:
        email = _register(service_env)
        service_env.auth.send_otp(email, "LOGIN")
        code = service_env.mailer.code_for(email)

        service_env.clock.advance(seconds=OTP_TTL.total_seconds() + 1)
        result = service_env.auth.verify_otp(email, code, "LOGIN")
        assert result.error == ErrorCode.OTP_EXPIRED

    def test_new_code_replaces_old(self, service_env) -> None:
        email = _register(service_env)
        service_env.auth.send_otp(email, "LOGIN")
        first = service_env.mailer.code_for(email)
        service_env.auth.send_otp(email, "LOGIN")
        second = service_env.mailer.code_for(email)

        if first != second:
            assert service_env.auth.verify_otp(email, first, "LOGIN").error == ErrorCode.INVALID_OTP
        assert service_env.auth.verify_otp(email, second, "LOGIN").ok

    def test_purposes_are_independent(self, service_env) -> None:
        email = _register(service_env)
        service_env.auth.send_otp(email, "EMAIL_VERIFY")
        code = service_env.mailer.code_for(email)
        assert service_env.auth.verify_otp(email, code, "LOGIN").error == ErrorCode.INVALID_OTP
        assert service_env.auth.verify_otp(email, code, "EMAIL_VERIFY").ok

    def test_unknown_purpose_rejected(self, service_env) -> None:
        email = _register(service_env)
        with pytest.raises(ValueError):
            service_env.auth.send_otp(email, "WIRE_TRANSFER")


class TestOtpAttempts:
    def test_sixth_attempt_blocked_even_with_correct_code(self, service_env) -> None:
        email = _register(service_env)
        service_env.auth.send_otp(email, "LOGIN")
        code = service_env.mailer.code_for(email)
        wrong = "000000" if code != "000000" else "111111"

        for attempt in range(OTP_MAX_ATTEMPTS):
            result = service_env.auth.verify_otp(email, wrong, "LOGIN")
            assert result.error == ErrorCode.INVALID_OTP, f"attempt {attempt + 1} should be INVALID_OTP"

        result = service_env.auth.verify_otp(email, code, "LOGIN")
        assert result.error == ErrorCode.OTP_MAX_ATTEMPTS

    def test_code_hash_only_in_store(self, service_env) -> None:
        email = _register(service_env)
        service_env.auth.send_otp(email, "LOGIN")
        code = service_env.mailer.code_for(email)
        record = service_env.users.get_latest_otp(email, "LOGIN")
        assert record.code_hash != code
        assert len(record.code_hash) == 64


class TestTokenExpiry:
    def test_verification_link_expires_after_24h(self, service_env) -> None:
        email = _register(service_env)
        token = service_env.mailer.token_for(email)
        service_env.clock.advance(hours=24, seconds=1)
        assert service_env.auth.verify_email(token).error == ErrorCode.TOKEN_EXPIRED

    def test_reset_link_expires_after_1h(self, service_env) -> None:
        email = _register(service_env)
        service_env.auth.password_recovery(email)
        token = service_env.mailer.token_for(email)
        service_env.clock.advance(hours=1, seconds=1)
        assert service_env.auth.password_reset(token, "another-pass-1").error == ErrorCode.TOKEN_EXPIRED

    def test_refresh_token_expiry(self, service_env) -> None:
        email = _register(service_env)
        session = service_env.auth.login(email, PASSWORD).data
        service_env.clock.advance(seconds=service_env.settings.refresh_token_expire_seconds, microseconds=1)
        result = service_env.auth.refresh(session["refresh_token"])
        assert result.error == ErrorCode.TOKEN_EXPIRED


class TestTerms:
    def test_accept_active_terms(self, service_env) -> None:
        term = seed_default_terms(service_env.terms)
        email = _register(service_env)
        user = service_env.users.get_active_by_email(email)

        result = service_env.terms_service.accept(user.id)
        assert result.ok
        assert result.data == {"term_id": term.id, "term_version": term.version}
        assert service_env.terms.list_acceptances(user.id)[0].term_version == term.version
        assert any(e.action == "ACCEPT_TERMS" for e in service_env.audit.list_entries(user_id=user.id))

    def test_unknown_version(self, service_env) -> None:
        email = _register(service_env)
        user = service_env.users.get_active_by_email(email)
        result = service_env.terms_service.accept(user.id, version="9.9")
        assert result.error == ErrorCode.TERM_NOT_FOUND

    def test_no_active_terms(self, service_env) -> None:
        assert service_env.terms_service.active().error == ErrorCode.NO_ACTIVE_TERMS

