"""
Cookie capabilities for session handling.

Two capability sets are handed to session clients:

- ``CookieJar``: read + write over the request's cookies. Writes land in an
  overlay (so later readers in the same request see refreshed values) and are
  queued for the outgoing response.
- ``ReadOnlyCookies``: a read-only view. Session clients built on it can
  resolve identity but cannot change response state.

``init_cookie_jar`` opens a fresh jar at the start of every request
(``get_cookie_jar``) and copies its queued writes onto whatever response the
request produced, redirects included.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from flask import Flask, Response, g, request


@dataclass(frozen=True)
class CookieOptions:
    path: str = "/"
    max_age: Optional[int] = None
    domain: Optional[str] = None
    secure: bool = True
    httponly: bool = False
    samesite: Optional[str] = "Lax"


@dataclass
class _PendingCookie:
    name: str
    value: str
    options: CookieOptions = field(default_factory=CookieOptions)
    removed: bool = False


class ReadOnlyCookies:
    """Read-only view over a cookie mapping."""

    writable = False

    def __init__(self, cookies: Mapping[str, str]):
        self._cookies = cookies

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self._cookies.get(name, default)

    def names(self) -> List[str]:
        return list(self._cookies.keys())

    def __contains__(self, name: str) -> bool:
        return name in self._cookies


class CookieJar(ReadOnlyCookies):
    """Mutable cookie jar over the request cookies."""

    writable = True

    def __init__(self, cookies: Mapping[str, str]):
        super().__init__(dict(cookies))
        self._pending: Dict[str, _PendingCookie] = {}

    def set(self, name: str, value: str, options: Optional[CookieOptions] = None):
        self._cookies[name] = value
        self._pending[name] = _PendingCookie(name, value, options or CookieOptions())

    def remove(self, name: str, options: Optional[CookieOptions] = None):
        self._cookies.pop(name, None)
        self._pending[name] = _PendingCookie(name, "", options or CookieOptions(), removed=True)

    def view(self) -> ReadOnlyCookies:
        """A read-only view that tracks this jar's current values."""
        return ReadOnlyCookies(self._cookies)

    @property
    def pending(self) -> List[Tuple[str, str, bool]]:
        return [(p.name, p.value, p.removed) for p in self._pending.values()]

    def apply_to(self, response: Response) -> Response:
        for cookie in self._pending.values():
            opts = cookie.options
            if cookie.removed:
                response.delete_cookie(
                    cookie.name,
                    path=opts.path,
                    domain=opts.domain,
                    secure=opts.secure,
                    httponly=opts.httponly,
                    samesite=opts.samesite,
                )
            else:
                response.set_cookie(
                    cookie.name,
                    cookie.value,
                    max_age=opts.max_age,
                    path=opts.path,
                    domain=opts.domain,
                    secure=opts.secure,
                    httponly=opts.httponly,
                    samesite=opts.samesite,
                )
        return response


def get_cookie_jar() -> CookieJar:
    """The jar opened for the current request."""
    jar = getattr(g, "cookie_jar", None)
    if jar is None:
        jar = CookieJar(request.cookies)
        g.cookie_jar = jar
    return jar


def init_cookie_jar(app: Flask):
    # g outlives the request when an app context is already pushed
    @app.before_request
    def _open_cookie_jar():
        g.cookie_jar = CookieJar(request.cookies)

    @app.after_request
    def _apply_cookie_writes(response):
        jar = g.pop("cookie_jar", None)
        if jar is not None:
            jar.apply_to(response)
        return response

    @app.teardown_request
    def _drop_cookie_jar(exc=None):
        g.pop("cookie_jar", None)
