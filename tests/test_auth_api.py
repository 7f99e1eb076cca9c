# -*- coding: utf-8 -*-
"""
Tests for the JSON auth endpoints and their request schemas.
"""
import pytest
from pydantic import ValidationError

from cfipros.routes.auth import safe_next
from cfipros.schemas.auth import ResetPasswordRequest, SignUpRequest

SESSION_COOKIE = "sb-testref-auth-token"
VERIFIER_COOKIE = "sb-testref-auth-token-code-verifier"


class TestSignUpSchema:
    def test_normalizes_email_and_role(self):
        data = SignUpRequest.model_validate({
            "email": " CFI@Example.com ",
            "password": "Secret123",
            "confirm_password": "Secret123",
            "role": "cfi",
        })
        assert data.email == "cfi@example.com"
        assert data.user_metadata() == {"role": "CFI"}

    def test_school_fields_land_in_metadata(self):
        data = SignUpRequest.model_validate({
            "email": "admin@example.com",
            "password": "Secret123",
            "confirm_password": "Secret123",
            "role": "SCHOOL_ADMIN",
            "full_name": "Ada Admin",
            "school_name": "Skyline Aviation",
            "part_61_or_141_type": "part_141",
        })
        assert data.user_metadata() == {
            "role": "SCHOOL_ADMIN",
            "full_name": "Ada Admin",
            "school_name": "Skyline Aviation",
            "part_61_or_141_type": "PART_141",
        }

    @pytest.mark.parametrize("password", ["short1A", "alllower123", "ALLUPPER123", "NoDigitsHere"])
    def test_weak_passwords(self, password):
        with pytest.raises(ValidationError):
            SignUpRequest.model_validate({
                "email": "a@example.com", "password": password, "confirm_password": password})

    def test_passwords_must_match(self):
        with pytest.raises(ValidationError):
            ResetPasswordRequest.model_validate({"password": "Secret123", "confirm_password": "Secret124"})


class TestSafeNext:
    @pytest.mark.parametrize("value,expected", [
        (None, "/dashboard"),
        ("", "/dashboard"),
        ("/dashboard/school", "/dashboard/school"),
        ("https://evil.example.com", "/dashboard"),
        ("//evil.example.com", "/dashboard"),
        ("/\\evil.example.com", "/dashboard"),
    ])
    def test_safe_next(self, value, expected):
        assert safe_next(value) == expected


class TestSignUp:
    def test_sign_up_requires_confirmation(self, client, fake_auth):
        resp = client.post("/api/auth/sign-up", json={
            "email": "new@example.com",
            "password": "Secret123",
            "confirm_password": "Secret123",
            "role": "CFI",
        })

        assert resp.status_code == 201
        body = resp.get_json()
        assert body["email_confirmation_required"] is True
        assert body["user"]["role"] == "CFI"
        _, _, params, payload = next(c for c in fake_auth.calls if c[1] == "/signup")
        assert params == {"redirect_to": "http://localhost/auth/callback"}
        assert payload["data"] == {"role": "CFI"}
        assert client.get_cookie(VERIFIER_COOKIE) is not None

    def test_duplicate_email(self, client, fake_auth):
        fake_auth.add_user(email="taken@example.com")
        resp = client.post("/api/auth/sign-up", json={
            "email": "taken@example.com", "password": "Secret123", "confirm_password": "Secret123"})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "User already registered"

    def test_invalid_body(self, client):
        resp = client.post("/api/auth/sign-up", json={"email": "not-an-email"})
        assert resp.status_code == 400
        body = resp.get_json()
        assert body["error"] == "validation_error"
        assert {d["field"] for d in body["details"]} >= {"email", "password"}


class TestLogin:
    def test_login_sets_session_cookie(self, client, fake_auth):
        fake_auth.add_user(email="cfi@example.com", password="Secret123", user_metadata={"role": "CFI"})

        resp = client.post("/api/auth/login", json={"email": "cfi@example.com", "password": "Secret123"})

        assert resp.status_code == 200
        assert resp.get_json()["user"]["role"] == "CFI"
        assert client.get_cookie(SESSION_COOKIE) is not None

    def test_bad_credentials(self, client, fake_auth):
        fake_auth.add_user(email="cfi@example.com", password="Secret123")
        resp = client.post("/api/auth/login", json={"email": "cfi@example.com", "password": "wrong"})
        assert resp.status_code == 401
        assert client.get_cookie(SESSION_COOKIE) is None

    def test_logout_clears_session(self, client, login_as, fake_auth):
        login_as()

        resp = client.post("/api/auth/logout")

        assert resp.status_code == 200
        assert client.get_cookie(SESSION_COOKIE) is None
        assert ("POST", "/logout") in fake_auth.paths()


class TestPasswordReset:
    def test_forgot_password_always_succeeds(self, client, fake_auth):
        resp = client.post("/api/auth/forgot-password", json={"email": "nobody@example.com"})
        assert resp.status_code == 200
        assert resp.get_json()["success"] is True
        _, _, params, _ = next(c for c in fake_auth.calls if c[1] == "/recover")
        assert params == {"redirect_to": "http://localhost/auth/callback?next=/auth/reset-password"}

    def test_forgot_password_backend_down(self, client, fake_auth):
        fake_auth.down = True
        resp = client.post("/api/auth/forgot-password", json={"email": "nobody@example.com"})
        assert resp.status_code == 200

    def test_reset_password_requires_session(self, client):
        resp = client.post("/api/auth/reset-password",
                           json={"password": "NewSecret1", "confirm_password": "NewSecret1"})
        assert resp.status_code == 401

    def test_reset_password(self, client, login_as, fake_auth):
        login_as()
        resp = client.post("/api/auth/reset-password",
                           json={"password": "NewSecret1", "confirm_password": "NewSecret1"})
        assert resp.status_code == 200
        assert ("PUT", "/user") in fake_auth.paths()


class TestOAuth:
    def test_google_redirects_to_authorize(self, client):
        resp = client.get("/api/auth/oauth/google?next=/dashboard/cfi")

        assert resp.status_code == 302
        assert resp.headers["Location"].startswith("https://testref.supabase.co/auth/v1/authorize?provider=google")
        assert client.get_cookie(VERIFIER_COOKIE) is not None

    def test_unknown_provider(self, client):
        assert client.get("/api/auth/oauth/myspace").status_code == 404
