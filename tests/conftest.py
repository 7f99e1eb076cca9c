import itertools
import os
import tempfile
import time
import uuid
from unittest.mock import patch

import jwt
import pytest

# Set test environment variables (before any cfipros import)
os.environ["TESTING"] = "true"
os.environ["CFIPROS_LOG_JSON"] = "false"
os.environ["AUTH_COOKIE_SECURE"] = "false"
os.environ["SUPABASE_URL"] = "https://testref.supabase.co"
os.environ["SUPABASE_ANON_KEY"] = "anon-test-key"
os.environ["SITE_URL"] = "http://localhost"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_123"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
os.environ["STRIPE_PRICE_CFI_MONTHLY"] = "price_cfi"
os.environ["STRIPE_PRICE_SCHOOL_MONTHLY"] = "price_school"
os.environ["GEMINI_API_KEY"] = "gemini-test-key"
os.environ.pop("POSTHOG_KEY", None)

SESSION_COOKIE = "sb-testref-auth-token"
VERIFIER_COOKIE = "sb-testref-auth-token-code-verifier"


class FakeResponse:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self._body = body
        self.content = b"" if body is None else b"{}"

    def json(self):
        if self._body is None:
            raise ValueError("no body")
        return self._body


class FakeAuthBackend:
    """In-memory stand-in for the auth backend's REST API.

    Installed in place of ``requests.request`` inside the auth client module,
    so the real client code (cookies, refresh, PKCE) runs against it.
    """

    def __init__(self):
        self.users = {}
        self.passwords = {}
        self.access_tokens = {}
        self.refresh_tokens = {}
        self.codes = {}
        self.otp_hashes = {}
        self.calls = []
        self.down = False
        self._seq = itertools.count(1)

    # -- fixtures helpers -------------------------------------------------

    def add_user(self, email="pilot@example.com", user_metadata=None, password="Passw0rd!", user_id=None):
        user = {
            "id": user_id or str(uuid.uuid4()),
            "email": email,
            "user_metadata": user_metadata or {},
            "app_metadata": {},
        }
        self.users[user["id"]] = user
        self.passwords[email] = (password, user["id"])
        return user

    def issue_session(self, user, expires_in=3600):
        n = next(self._seq)
        exp = int(time.time()) + expires_in
        access = jwt.encode({"sub": user["id"], "exp": exp, "n": n}, "test-secret", algorithm="HS256")
        refresh = f"refresh-{n}"
        self.access_tokens[access] = user["id"]
        self.refresh_tokens[refresh] = user["id"]
        return {
            "access_token": access,
            "refresh_token": refresh,
            "token_type": "bearer",
            "expires_in": expires_in,
            "expires_at": exp,
            "user": dict(self.users[user["id"]]),
        }

    def issue_code(self, user):
        code = f"code-{next(self._seq)}"
        self.codes[code] = user["id"]
        return code

    def paths(self):
        return [(method, path) for method, path, _, _ in self.calls]

    # -- request handling -------------------------------------------------

    def __call__(self, method, url, params=None, json=None, headers=None, timeout=None):
        import requests

        if self.down:
            raise requests.exceptions.ConnectionError("auth backend down")
        path = url.split("/auth/v1", 1)[1]
        params = params or {}
        json = json or {}
        self.calls.append((method, path, params, json))

        if method == "POST" and path == "/token":
            return self._token(params.get("grant_type"), json)
        if method == "GET" and path == "/user":
            user_id = self._bearer_user(headers)
            if user_id is None:
                return FakeResponse(401, {"msg": "invalid JWT", "error_code": "bad_jwt"})
            return FakeResponse(200, self.users[user_id])
        if method == "PUT" and path == "/user":
            user_id = self._bearer_user(headers)
            if user_id is None:
                return FakeResponse(401, {"msg": "invalid JWT"})
            if "data" in json:
                self.users[user_id]["user_metadata"].update(json["data"])
            return FakeResponse(200, self.users[user_id])
        if method == "POST" and path == "/signup":
            if json["email"] in self.passwords:
                return FakeResponse(422, {"msg": "User already registered", "error_code": "user_already_exists"})
            user = self.add_user(json["email"], json.get("data"), json["password"])
            return FakeResponse(200, user)
        if method == "POST" and path == "/verify":
            user_id = self.otp_hashes.pop(json.get("token_hash"), None)
            if user_id is None:
                return FakeResponse(403, {"msg": "Email link is invalid or has expired", "error_code": "otp_expired"})
            return FakeResponse(200, self.issue_session(self.users[user_id]))
        if method == "POST" and path == "/recover":
            return FakeResponse(200, {})
        if method == "POST" and path == "/logout":
            self.access_tokens.pop(self._token_from(headers), None)
            return FakeResponse(204)
        return FakeResponse(404, {"msg": "not found"})

    def _token(self, grant_type, body):
        if grant_type == "refresh_token":
            user_id = self.refresh_tokens.pop(body.get("refresh_token"), None)
            if user_id is None:
                return FakeResponse(400, {"msg": "Invalid Refresh Token: Refresh Token Not Found",
                                          "error_code": "refresh_token_not_found"})
            return FakeResponse(200, self.issue_session(self.users[user_id]))
        if grant_type == "pkce":
            user_id = self.codes.pop(body.get("auth_code"), None)
            if user_id is None or not body.get("code_verifier"):
                return FakeResponse(400, {"msg": "invalid flow state, no valid flow state found",
                                          "error_code": "flow_state_not_found"})
            return FakeResponse(200, self.issue_session(self.users[user_id]))
        if grant_type == "password":
            password, user_id = self.passwords.get(body.get("email"), (None, None))
            if user_id is None or password != body.get("password"):
                return FakeResponse(400, {"msg": "Invalid login credentials",
                                          "error_code": "invalid_credentials"})
            return FakeResponse(200, self.issue_session(self.users[user_id]))
        return FakeResponse(400, {"msg": "unsupported grant type"})

    @staticmethod
    def _token_from(headers):
        auth = (headers or {}).get("Authorization", "")
        return auth[len("Bearer "):] if auth.startswith("Bearer ") else None

    def _bearer_user(self, headers):
        token = self._token_from(headers)
        user_id = self.access_tokens.get(token)
        if user_id is None:
            return None
        claims = jwt.decode(token, options={"verify_signature": False})
        if claims["exp"] < time.time():
            return None
        return user_id


@pytest.fixture
def fake_auth(monkeypatch):
    backend = FakeAuthBackend()
    monkeypatch.setattr("cfipros.services.supabase_auth.requests.request", backend)
    return backend


@pytest.fixture
def app(fake_auth):
    """Create and configure a new app instance for each test."""
    db_fd, db_path = tempfile.mkstemp()
    with patch.dict(os.environ, {
        "DATABASE_URL": f"sqlite:///{db_path}",
    }):
        from cfipros.factory import create_app
        from cfipros.database import db
        app = create_app({"TESTING": True})
        with app.app_context():
            db.create_all()
            yield app
            db.session.remove()
            db.drop_all()
    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()


def set_session_cookie(client, session):
    from cfipros.services.supabase_auth import AuthSession, encode_session_cookie
    client.set_cookie(SESSION_COOKIE, encode_session_cookie(AuthSession.model_validate(session)))


@pytest.fixture
def login_as(client, fake_auth):
    """Put a signed-in session for a new user into the test client's cookies."""
    def _login(email="pilot@example.com", user_metadata=None, expires_in=3600):
        user = fake_auth.add_user(email=email, user_metadata=user_metadata)
        set_session_cookie(client, fake_auth.issue_session(user, expires_in=expires_in))
        return user
    return _login
