"""
tests/test_auth_flow.py -- End-to-end account and session flows over HTTP.

Coverage:
  - Register -> verify email -> login -> protected call succeeds; bad token -> 401
  - Duplicate registration -> 409 EMAIL_IN_USE; missing acceptTerms -> 400 TERMS_REQUIRED
  - Verification link single use (TOKEN_ALREADY_USED), GET variant, MISSING_TOKEN
  - Login failures, passwordless login by emailed code
  - Refresh rotation: the old token is revoked (TOKEN_REVOKED); logout always 200
  - Password recovery bodies are byte-identical for known and unknown emails
  - Password reset: single use, new password works, old sessions revoked
  - /auth/me read, update (audited), delete (soft, session dies)
  - Mail outage surfaces as 503 MAIL_DELIVERY_FAILED
"""

from __future__ import annotations

from datetime import timedelta

from auth.store import refresh_tokens
from auth.tokens import create_access_token, hash_token

PASSWORD = "correct-horse-9"


class TestRegistration:
    def test_full_happy_path(self, api) -> None:
        """register -> verify -> login -> /auth/me works; an invalid token gets 401."""
        email = api.unique_email("e2e")
        resp = api.post(
            "/auth/register",
            json={
                "email": email,
                "password": PASSWORD,
                "firstName": "Ana",
                "lastName": "Rojas",
                "gender": "FEMALE",
                "birthDate": "1990-05-17",
                "acceptTerms": True,
            },
        )
        assert resp.status_code == 201, resp.text
        data = resp.json()["data"]
        assert data["email"] == email
        assert data["userId"]

        token = api.mailer.token_for(email)
        verified = api.post("/auth/verify-email", json={"token": token})
        assert verified.status_code == 200, verified.text

        session = api.login(email)
        assert session["accessToken"] and session["refreshToken"]
        assert isinstance(session["expiresIn"], int)
        assert session["user"]["email"] == email

        me = api.get("/auth/me", session["accessToken"])
        assert me.status_code == 200
        assert me.json()["data"]["emailVerifiedAt"] is not None

        bad = api.get("/auth/me", "not-a-jwt")
        assert bad.status_code == 401
        assert bad.json()["error"] == "INVALID_TOKEN"

    def test_expired_access_token_rejected(self, api) -> None:
        user_id, _ = api.session("expired")
        user = api.state.user_store.get_by_id(user_id)
        stale = create_access_token(user.id, user.email, user.role, expires_delta=timedelta(seconds=-5))
        resp = api.get("/auth/me", stale)
        assert resp.status_code == 401, "An expired access token must not authenticate"

    def test_missing_token_is_unauthorized(self, api) -> None:
        resp = api.get("/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"] == "UNAUTHORIZED"

    def test_duplicate_email(self, api) -> None:
        email = api.register()
        resp = api.post(
            "/auth/register",
            json={
                "email": email.upper(),
                "password": PASSWORD,
                "firstName": "Otra",
                "lastName": "Persona",
                "gender": "OTHER",
                "birthDate": "1985-01-01",
                "acceptTerms": True,
            },
        )
        assert resp.status_code == 409
        assert resp.json()["error"] == "EMAIL_IN_USE"

    def test_terms_required(self, api) -> None:
        resp = api.post(
            "/auth/register",
            json={
                "email": api.unique_email(),
                "password": PASSWORD,
                "firstName": "Ana",
                "lastName": "Rojas",
                "gender": "FEMALE",
                "birthDate": "1990-05-17",
            },
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "TERMS_REQUIRED"

    def test_comuna_must_belong_to_region(self, api) -> None:
        regions = api.get("/regions").json()["data"]
        first, second = regions[0], regions[1]
        comuna = api.get("/comunas", params={"regionId": second["id"]}).json()["data"][0]
        resp = api.post(
            "/auth/register",
            json={
                "email": api.unique_email(),
                "password": PASSWORD,
                "firstName": "Ana",
                "lastName": "Rojas",
                "gender": "FEMALE",
                "birthDate": "1990-05-17",
                "regionId": first["id"],
                "comunaId": comuna["id"],
                "acceptTerms": True,
            },
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "VALIDATION_ERROR"


class TestEmailVerification:
    def test_token_is_single_use(self, api) -> None:
        email = api.register()
        token = api.mailer.token_for(email)
        assert api.post("/auth/verify-email", json={"token": token}).status_code == 200
        again = api.post("/auth/verify-email", json={"token": token})
        assert again.status_code == 400
        assert again.json()["error"] == "TOKEN_ALREADY_USED"

    def test_emailed_link_works_with_get(self, api) -> None:
        email = api.register()
        token = api.mailer.token_for(email)
        resp = api.get("/auth/verify-email", params={"token": token})
        assert resp.status_code == 200

    def test_get_without_token(self, api) -> None:
        resp = api.get("/auth/verify-email")
        assert resp.status_code == 400
        assert resp.json()["error"] == "MISSING_TOKEN"

    def test_unknown_token(self, api) -> None:
        resp = api.post("/auth/verify-email", json={"token": "f" * 64})
        assert resp.status_code == 400
        assert resp.json()["error"] == "INVALID_TOKEN"

    def test_raw_token_never_stored(self, api) -> None:
        """The store must only ever see the HMAC digest of the emailed token."""
        email = api.register()
        token = api.mailer.token_for(email)
        assert api.state.user_store.get_verification_token(token) is None


class TestLogin:
    def test_wrong_password(self, api) -> None:
        email = api.register()
        resp = api.post("/auth/login", json={"email": email, "password": "wrong-password"})
        assert resp.status_code == 401
        assert resp.json()["error"] == "INVALID_CREDENTIALS"

    def test_unknown_email_same_error(self, api) -> None:
        resp = api.post("/auth/login", json={"email": api.unique_email("ghost"), "password": PASSWORD})
        assert resp.status_code == 401
        assert resp.json()["error"] == "INVALID_CREDENTIALS"

    def test_session_response_not_cached(self, api) -> None:
        email = api.register()
        resp = api.post("/auth/login", json={"email": email, "password": PASSWORD})
        assert resp.headers.get("cache-control") == "no-store"

    def test_login_writes_audit_entry(self, api) -> None:
        user_id, _ = api.session("audited")
        entries = api.state.audit_store.list_entries(user_id=user_id)
        assert any(e.action == "LOGIN" for e in entries)

    def test_passwordless_login_by_code(self, api) -> None:
        email = api.register()
        sent = api.post("/auth/login", json={"email": email})
        assert sent.status_code == 200, sent.text
        code = api.mailer.code_for(email)

        resp = api.post("/auth/verify-otp", json={"email": email, "code": code})
        assert resp.status_code == 200, resp.text
        assert resp.json()["data"]["accessToken"]

        replay = api.post("/auth/verify-otp", json={"email": email, "code": code})
        assert replay.status_code == 400
        assert replay.json()["error"] == "INVALID_OTP"

    def test_send_otp_unknown_email(self, api) -> None:
        resp = api.post("/auth/send-login-otp", json={"email": api.unique_email("ghost")})
        assert resp.status_code == 404
        assert resp.json()["error"] == "USER_NOT_FOUND"

    def test_email_verify_purpose(self, api) -> None:
        email = api.register()
        assert api.post("/auth/send-otp", json={"email": email, "purpose": "EMAIL_VERIFY"}).status_code == 200
        code = api.mailer.code_for(email)
        resp = api.post("/auth/verify-otp", json={"email": email, "code": code, "purpose": "EMAIL_VERIFY"})
        assert resp.status_code == 200
        assert api.state.user_store.get_active_by_email(email).email_verified_at is not None


class TestRefreshAndLogout:
    def test_rotation_revokes_old_token(self, api) -> None:
        session = api.login(api.register())
        first = api.post("/auth/refresh", json={"refreshToken": session["refreshToken"]})
        assert first.status_code == 200, first.text
        rotated = first.json()["data"]
        assert rotated["refreshToken"] != session["refreshToken"]

        replay = api.post("/auth/refresh", json={"refreshToken": session["refreshToken"]})
        assert replay.status_code == 401
        assert replay.json()["error"] == "TOKEN_REVOKED"

        assert api.post("/auth/refresh", json={"refreshToken": rotated["refreshToken"]}).status_code == 200

    def test_unknown_refresh_token(self, api) -> None:
        resp = api.post("/auth/refresh", json={"refreshToken": "garbage"})
        assert resp.status_code == 401
        assert resp.json()["error"] == "INVALID_REFRESH_TOKEN"

    def test_expired_refresh_token_is_unauthorized(self, api) -> None:
        session = api.login(api.register())
        with api.state.db.engine.connect() as conn:
            conn.execute(
                refresh_tokens.update()
                .where(refresh_tokens.c.token_hash == hash_token(session["refreshToken"]))
                .values(expires_at="2000-01-01T00:00:00.000000+00:00")
            )
            conn.commit()
        resp = api.post("/auth/refresh", json={"refreshToken": session["refreshToken"]})
        assert resp.status_code == 401
        assert resp.json()["error"] == "TOKEN_EXPIRED"

    def test_logout_revokes_and_always_succeeds(self, api) -> None:
        session = api.login(api.register())
        assert api.post("/auth/logout", json={"refreshToken": session["refreshToken"]}).status_code == 200
        assert api.post("/auth/logout", json={"refreshToken": "never-issued"}).status_code == 200
        resp = api.post("/auth/refresh", json={"refreshToken": session["refreshToken"]})
        assert resp.json()["error"] == "TOKEN_REVOKED"


class TestPasswordRecovery:
    def test_bodies_identical_for_known_and_unknown_email(self, api) -> None:
        known = api.post("/auth/password-recovery", json={"email": api.register()})
        unknown = api.post("/auth/password-recovery", json={"email": api.unique_email("ghost")})
        assert known.status_code == unknown.status_code == 200
        assert known.content == unknown.content, "Recovery must not reveal whether an email is registered"

    def test_reset_flow(self, api) -> None:
        email = api.register()
        old_session = api.login(email)
        api.post("/auth/password-recovery", json={"email": email})
        token = api.mailer.token_for(email)

        resp = api.post("/auth/password-reset", json={"token": token, "newPassword": "a-brand-new-pass"})
        assert resp.status_code == 200, resp.text

        again = api.post("/auth/password-reset", json={"token": token, "newPassword": "another-new-pass"})
        assert again.json()["error"] == "TOKEN_ALREADY_USED"

        assert api.post("/auth/login", json={"email": email, "password": PASSWORD}).status_code == 401
        assert api.login(email, "a-brand-new-pass")["accessToken"]

        refreshed = api.post("/auth/refresh", json={"refreshToken": old_session["refreshToken"]})
        assert refreshed.json()["error"] == "TOKEN_REVOKED", "A reset must end existing sessions"


class TestAccount:
    def test_update_profile_is_audited(self, api) -> None:
        user_id, token = api.session("profile")
        resp = api.patch("/auth/me", token, json={"firstName": "Beatriz", "address": "Calle Falsa 123"})
        assert resp.status_code == 200, resp.text
        data = resp.json()["data"]
        assert data["firstName"] == "Beatriz"
        assert data["address"] == "Calle Falsa 123"

        updates = [e for e in api.state.audit_store.list_entries(entity="User", entity_id=user_id) if e.action == "UPDATE"]
        assert updates and updates[0].before["first_name"] == "Ana"
        assert updates[0].after["first_name"] == "Beatriz"

    def test_null_name_leaves_profile_unchanged(self, api) -> None:
        _, token = api.session("nullname")
        resp = api.patch("/auth/me", token, json={"firstName": None, "lastName": None, "address": "Los Leones 55"})
        assert resp.status_code == 200, resp.text
        data = resp.json()["data"]
        assert data["firstName"] == "Ana"
        assert data["lastName"] == "Rojas"
        assert data["address"] == "Los Leones 55"

    def test_delete_account(self, api) -> None:
        email = api.register()
        session = api.login(email)
        resp = api.delete("/auth/me", session["accessToken"])
        assert resp.status_code == 200

        assert api.get("/auth/me", session["accessToken"]).status_code == 401
        refreshed = api.post("/auth/refresh", json={"refreshToken": session["refreshToken"]})
        assert refreshed.status_code == 401
        assert api.post("/auth/login", json={"email": email, "password": PASSWORD}).status_code == 401

    def test_email_reusable_after_delete(self, api) -> None:
        email = api.register()
        token = api.login(email)["accessToken"]
        api.delete("/auth/me", token)
        assert api.register(email) == email


class TestMailOutage:
    def test_registration_mail_failure_is_503(self, api) -> None:
        api.mailer.fail = True
        try:
            resp = api.post(
                "/auth/register",
                json={
                    "email": api.unique_email("outage"),
                    "password": PASSWORD,
                    "firstName": "Ana",
                    "lastName": "Rojas",
                    "gender": "FEMALE",
                    "birthDate": "1990-05-17",
                    "acceptTerms": True,
                },
            )
        finally:
            api.mailer.fail = False
        assert resp.status_code == 503
        assert resp.json()["error"] == "MAIL_DELIVERY_FAILED"
