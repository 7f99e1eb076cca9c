# -*- coding: utf-8 -*-
"""
Session guard middleware.

Runs before every request (except static assets and the auth error page):

1. Session refresh: a session client over the request's mutable cookie jar
   asks the auth backend for the current user, refreshing the token and
   rewriting the session cookies when needed.
2. Identity resolution: a second client over a read-only view of the same
   (possibly refreshed) cookies resolves ``g.auth_user``.
3. Redirect decision: protected routes need a user, auth-only routes must
   not have one.

Backend failures never escape the hook; they are logged and treated as an
anonymous request.
"""
from enum import Enum
from functools import wraps
from typing import Optional

from flask import Flask, g, jsonify, redirect, request

from cfipros.errors import CFIProsError
from cfipros.services.cookies import get_cookie_jar
from cfipros.services.metrics import get_metrics_service
from cfipros.services.request_context import set_user_context
from cfipros.services.structured_logging import get_logger
from cfipros.services import supabase_auth

logger = get_logger('cfipros.session')

EXCLUDED_PREFIXES = (
    '/_next/static',
    '/_next/image',
    '/favicon.ico',
    '/auth/auth-code-error',
    '/static',
)

PROTECTED_PREFIXES = ('/dashboard',)
AUTH_ONLY_PATHS = ('/login', '/sign-up')
AUTH_ONLY_PREFIXES = ('/cfi-sign-up', '/school-sign-up', '/role-selection')

LOGIN_PATH = '/login'
DASHBOARD_PATH = '/dashboard'


class RouteClass(str, Enum):
    PROTECTED = 'protected'
    AUTH_ONLY = 'auth-only'
    PUBLIC = 'public'


def is_excluded(path: str) -> bool:
    return path.startswith(EXCLUDED_PREFIXES)


def classify_route(path: str) -> RouteClass:
    if path.startswith(PROTECTED_PREFIXES):
        return RouteClass.PROTECTED
    if path in AUTH_ONLY_PATHS or path.startswith(AUTH_ONLY_PREFIXES):
        return RouteClass.AUTH_ONLY
    return RouteClass.PUBLIC


def decide_redirect(route_class: RouteClass, user_present: bool) -> Optional[str]:
    """Where to send the request, or None to let it through."""
    if route_class is RouteClass.PROTECTED and not user_present:
        return LOGIN_PATH
    if route_class is RouteClass.AUTH_ONLY and user_present:
        return DASHBOARD_PATH
    return None


def refresh_session(jar) -> str:
    """Validate (and if needed refresh) the session in ``jar``; returns the outcome."""
    client = supabase_auth.create_session_client(jar)
    if client is None:
        outcome = 'unconfigured'
    else:
        try:
            user = client.get_user()
        except (CFIProsError, ValueError) as e:
            logger.warning("Session refresh failed", error=str(e), path=request.path)
            outcome = 'error'
        else:
            outcome = 'user' if user else 'anonymous'
            logger.log_session_event('refreshed', user_present=user is not None)

    metrics_service = get_metrics_service()
    if metrics_service:
        metrics_service.record_session_refresh(outcome)
    return outcome


def resolve_identity(view):
    client = supabase_auth.create_session_client(view)
    if client is None:
        return None
    try:
        return client.get_user()
    except (CFIProsError, ValueError) as e:
        logger.warning("Identity resolution failed", error=str(e), path=request.path)
        return None


def guard_request():
    """before_request hook; returns a redirect response or None."""
    g.auth_user = None
    if is_excluded(request.path):
        return None

    jar = get_cookie_jar()
    refresh_session(jar)
    user = resolve_identity(jar.view())
    g.auth_user = user
    if user is not None:
        set_user_context(user.id)

    route_class = classify_route(request.path)
    location = decide_redirect(route_class, user is not None)
    if location is None:
        return None

    reason = 'unauthenticated' if route_class is RouteClass.PROTECTED else 'already_authenticated'
    metrics_service = get_metrics_service()
    if metrics_service:
        metrics_service.record_guard_redirect(reason)
    logger.log_redirect(reason, location, route_class=route_class.value)
    return redirect(location)


def current_user():
    return getattr(g, 'auth_user', None)


def login_required(f):
    """Decorator for API routes: 401 JSON unless the guard resolved a user."""
    @wraps(f)
    def decorated(*args, **kwargs):
        if current_user() is None:
            return jsonify({'error': 'unauthorized', 'message': 'Authentication required'}), 401
        return f(*args, **kwargs)
    return decorated


def init_session_guard(app: Flask):
    app.before_request(guard_request)
