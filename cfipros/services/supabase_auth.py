# -*- coding: utf-8 -*-
"""
Auth backend client (Supabase GoTrue REST API).

A client is built per request over a cookie capability and is never shared
between requests. The session lives in the ``sb-<project-ref>-auth-token``
cookie as ``base64-`` + base64url(JSON), split into ``.0``, ``.1`` ... chunks
when it grows past the browser-safe cookie size. PKCE code verifiers live in
``sb-<project-ref>-auth-token-code-verifier``.

Clients built over a ``ReadOnlyCookies`` view can read and refresh in memory
but every cookie write is a no-op.
"""
import base64
import hashlib
import json
import logging
import secrets
import time
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode, urlparse

import jwt
import requests
from flask import current_app
from pydantic import BaseModel, ConfigDict, Field

from cfipros.errors import AuthBackendError
from cfipros.services.cookies import CookieOptions, ReadOnlyCookies

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10
MAX_CHUNK_SIZE = 3180
BASE64_PREFIX = "base64-"
# refresh slightly before the access token actually expires
EXPIRY_MARGIN_SECONDS = 10
COOKIE_MAX_AGE = 400 * 24 * 60 * 60


class AuthUser(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    email: Optional[str] = None
    user_metadata: Dict[str, Any] = Field(default_factory=dict)
    app_metadata: Dict[str, Any] = Field(default_factory=dict)
    email_confirmed_at: Optional[str] = None

    @property
    def full_name(self) -> Optional[str]:
        return self.user_metadata.get("full_name") or None

    @property
    def metadata_role(self) -> Optional[str]:
        return self.user_metadata.get("role") or self.app_metadata.get("role")


class AuthSession(BaseModel):
    model_config = ConfigDict(extra="ignore")

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: Optional[int] = None
    expires_at: Optional[int] = None
    user: Optional[AuthUser] = None


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64url_decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def encode_session_cookie(session: AuthSession) -> str:
    payload = session.model_dump_json(exclude_none=True).encode("utf-8")
    return BASE64_PREFIX + _b64url_encode(payload)


def decode_session_cookie(value: str) -> Optional[AuthSession]:
    try:
        if value.startswith(BASE64_PREFIX):
            value = _b64url_decode(value[len(BASE64_PREFIX):]).decode("utf-8")
        return AuthSession.model_validate(json.loads(value))
    except Exception as e:
        logger.warning(f"Discarding unreadable session cookie: {e}")
        return None


def project_ref(supabase_url: str) -> str:
    host = urlparse(supabase_url).hostname or "local"
    return host.split(".")[0]


def _token_expired(session: AuthSession, now: Optional[float] = None) -> bool:
    now = time.time() if now is None else now
    expires_at = session.expires_at
    if expires_at is None:
        try:
            claims = jwt.decode(session.access_token, options={"verify_signature": False})
            expires_at = claims.get("exp")
        except jwt.PyJWTError:
            return True
    if expires_at is None:
        return True
    return expires_at - now < EXPIRY_MARGIN_SECONDS


def _pkce_pair() -> Tuple[str, str]:
    verifier = secrets.token_urlsafe(56)
    challenge = _b64url_encode(hashlib.sha256(verifier.encode("ascii")).digest())
    return verifier, challenge


class SupabaseAuthClient:
    """Request-scoped client of the auth backend."""

    def __init__(
        self,
        url: str,
        anon_key: str,
        cookies: ReadOnlyCookies,
        cookie_options: Optional[CookieOptions] = None,
        timeout: int = DEFAULT_TIMEOUT,
    ):
        self.url = url.rstrip("/")
        self.auth_url = f"{self.url}/auth/v1"
        self.anon_key = anon_key
        self.cookies = cookies
        self.cookie_options = cookie_options or CookieOptions(max_age=COOKIE_MAX_AGE)
        self.timeout = timeout
        self.storage_key = f"sb-{project_ref(url)}-auth-token"
        self.verifier_key = f"{self.storage_key}-code-verifier"
        self._session: Optional[AuthSession] = None

    # -- HTTP -------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        access_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        headers = {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {access_token or self.anon_key}",
            "Content-Type": "application/json",
        }
        try:
            resp = requests.request(
                method,
                f"{self.auth_url}{path}",
                params=params,
                json=json_body,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise AuthBackendError(f"Auth backend unreachable: {e}") from e

        if resp.status_code >= 400:
            try:
                body = resp.json()
            except ValueError:
                body = {}
            message = (
                body.get("msg")
                or body.get("error_description")
                or body.get("message")
                or body.get("error")
                or f"Auth backend error {resp.status_code}"
            )
            raise AuthBackendError(message, status=resp.status_code, code=body.get("error_code") or body.get("error"))

        if resp.status_code == 204 or not resp.content:
            return {}
        return resp.json()

    # -- cookie storage ---------------------------------------------------

    def _write_cookie(self, name: str, value: str):
        if self.cookies.writable:
            self.cookies.set(name, value, self.cookie_options)

    def _remove_cookie(self, name: str):
        if self.cookies.writable:
            self.cookies.remove(name, self.cookie_options)

    def _stored_chunk_names(self):
        prefix = f"{self.storage_key}."
        return sorted(
            (n for n in self.cookies.names() if n.startswith(prefix) and n[len(prefix):].isdigit()),
            key=lambda n: int(n[len(prefix):]),
        )

    def _load_session(self) -> Optional[AuthSession]:
        if self._session is not None:
            return self._session
        value = self.cookies.get(self.storage_key)
        if value is None:
            chunks = self._stored_chunk_names()
            if not chunks:
                return None
            value = "".join(self.cookies.get(n) or "" for n in chunks)
        self._session = decode_session_cookie(value)
        return self._session

    def _save_session(self, session: AuthSession):
        if session.expires_at is None and session.expires_in is not None:
            session = session.model_copy(update={"expires_at": int(time.time()) + session.expires_in})
        self._session = session
        encoded = encode_session_cookie(session)
        stale = set(self._stored_chunk_names())
        if len(encoded) <= MAX_CHUNK_SIZE:
            self._write_cookie(self.storage_key, encoded)
        else:
            if self.cookies.get(self.storage_key) is not None:
                self._remove_cookie(self.storage_key)
            for i in range(0, len(encoded), MAX_CHUNK_SIZE):
                name = f"{self.storage_key}.{i // MAX_CHUNK_SIZE}"
                self._write_cookie(name, encoded[i:i + MAX_CHUNK_SIZE])
                stale.discard(name)
        for name in stale:
            self._remove_cookie(name)

    def _remove_session(self):
        self._session = None
        if self.cookies.get(self.storage_key) is not None:
            self._remove_cookie(self.storage_key)
        for name in self._stored_chunk_names():
            self._remove_cookie(name)

    def _store_code_verifier(self) -> str:
        verifier, challenge = _pkce_pair()
        self._write_cookie(self.verifier_key, verifier)
        return challenge

    def _session_from_response(self, data: Dict[str, Any]) -> Optional[AuthSession]:
        if not data.get("access_token"):
            return None
        session = AuthSession.model_validate(data)
        self._save_session(session)
        return self._session

    # -- session operations -----------------------------------------------

    def get_session(self) -> Optional[AuthSession]:
        """The stored session, refreshed first when the access token expired."""
        session = self._load_session()
        if session is None:
            return None
        if not _token_expired(session):
            return session
        try:
            data = self._request(
                "POST", "/token",
                params={"grant_type": "refresh_token"},
                json_body={"refresh_token": session.refresh_token},
            )
        except AuthBackendError as e:
            if e.status in (400, 401, 403):
                logger.info(f"Refresh token rejected ({e.message}); clearing session")
                self._remove_session()
                return None
            raise
        return self._session_from_response(data)

    def get_user(self) -> Optional[AuthUser]:
        """Validate the current session against the backend and return its user."""
        session = self.get_session()
        if session is None:
            return None
        try:
            data = self._request("GET", "/user", access_token=session.access_token)
        except AuthBackendError as e:
            if e.status in (401, 403):
                return None
            raise
        return AuthUser.model_validate(data)

    def exchange_code_for_session(self, code: str) -> AuthSession:
        """Trade a single-use auth code for a session and store it."""
        verifier = self.cookies.get(self.verifier_key)
        if not verifier:
            raise AuthBackendError("PKCE code verifier not found in storage", code="pkce_verifier_missing")
        data = self._request(
            "POST", "/token",
            params={"grant_type": "pkce"},
            json_body={"auth_code": code, "code_verifier": verifier},
        )
        self._remove_cookie(self.verifier_key)
        session = self._session_from_response(data)
        if session is None:
            raise AuthBackendError("Code exchange returned no session")
        return session

    def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        data = self._request(
            "POST", "/token",
            params={"grant_type": "password"},
            json_body={"email": email, "password": password},
        )
        session = self._session_from_response(data)
        if session is None:
            raise AuthBackendError("Sign in returned no session")
        return session

    def sign_up(
        self,
        email: str,
        password: str,
        data: Optional[Dict[str, Any]] = None,
        redirect_to: Optional[str] = None,
    ) -> Tuple[Optional[AuthUser], Optional[AuthSession]]:
        """Create an auth user. The session is None until the email is confirmed."""
        challenge = self._store_code_verifier()
        body = self._request(
            "POST", "/signup",
            params={"redirect_to": redirect_to} if redirect_to else None,
            json_body={
                "email": email,
                "password": password,
                "data": data or {},
                "code_challenge": challenge,
                "code_challenge_method": "s256",
            },
        )
        session = self._session_from_response(body)
        if session is not None:
            return session.user, session
        user_data = body.get("user") or (body if body.get("id") else None)
        return (AuthUser.model_validate(user_data) if user_data else None), None

    def verify_otp(self, token_hash: str, otp_type: str) -> Optional[AuthSession]:
        data = self._request("POST", "/verify", json_body={"token_hash": token_hash, "type": otp_type})
        return self._session_from_response(data)

    def reset_password_for_email(self, email: str, redirect_to: Optional[str] = None):
        challenge = self._store_code_verifier()
        self._request(
            "POST", "/recover",
            params={"redirect_to": redirect_to} if redirect_to else None,
            json_body={"email": email, "code_challenge": challenge, "code_challenge_method": "s256"},
        )

    def update_user(self, password: Optional[str] = None, data: Optional[Dict[str, Any]] = None) -> AuthUser:
        session = self.get_session()
        if session is None:
            raise AuthBackendError("Auth session missing", status=401, code="session_missing")
        attrs: Dict[str, Any] = {}
        if password is not None:
            attrs["password"] = password
        if data is not None:
            attrs["data"] = data
        return AuthUser.model_validate(
            self._request("PUT", "/user", json_body=attrs, access_token=session.access_token)
        )

    def sign_out(self):
        """Revoke the session server-side and always clear the local cookies."""
        session = self._load_session()
        try:
            if session is not None:
                self._request("POST", "/logout", params={"scope": "global"}, access_token=session.access_token)
        except AuthBackendError as e:
            logger.warning(f"Server-side sign out failed: {e.message}")
        finally:
            self._remove_session()

    def get_oauth_sign_in_url(self, provider: str, redirect_to: str) -> str:
        challenge = self._store_code_verifier()
        query = urlencode({
            "provider": provider,
            "redirect_to": redirect_to,
            "code_challenge": challenge,
            "code_challenge_method": "s256",
        })
        return f"{self.auth_url}/authorize?{query}"


def create_session_client(cookies: ReadOnlyCookies) -> Optional[SupabaseAuthClient]:
    """Build a request-scoped client, or None (logged) when the backend is not configured."""
    url = current_app.config.get("SUPABASE_URL")
    anon_key = current_app.config.get("SUPABASE_ANON_KEY")
    if not url or not anon_key:
        logger.error("Supabase URL or anon key missing; session handling disabled")
        return None
    options = CookieOptions(
        max_age=COOKIE_MAX_AGE,
        secure=current_app.config.get("AUTH_COOKIE_SECURE", True),
    )
    return SupabaseAuthClient(url, anon_key, cookies, cookie_options=options)
