# -*- coding: utf-8 -*-
"""
Authentication routes.

- /auth/callback: completes OAuth and email-link flows by exchanging the
  single-use code for a session. It only ever redirects.
- /auth/confirm: email verification links (token hash).
- /api/auth/*: JSON endpoints behind the sign-up, login and password forms.
"""
from urllib.parse import urlencode

from flask import Blueprint, current_app, jsonify, redirect, request

from cfipros.errors import AuthBackendError
from cfipros.middleware.session_guard import current_user, login_required
from cfipros.schemas.auth import ForgotPasswordRequest, LoginRequest, ResetPasswordRequest, SignUpRequest
from cfipros.services.analytics import Event, identify_user, track_event
from cfipros.services.cookies import get_cookie_jar
from cfipros.services.structured_logging import get_logger
from cfipros.services.supabase_auth import create_session_client

logger = get_logger('cfipros.auth')

auth_bp = Blueprint('auth', __name__)

DEFAULT_NEXT = '/dashboard'
RESET_PASSWORD_PATH = '/auth/reset-password'
OAUTH_PROVIDERS = ('google',)


def _error_page(message: str):
    return redirect('/auth/auth-code-error?' + urlencode({'error': message}))


def safe_next(next_path) -> str:
    """Only same-site relative paths are followed."""
    if not next_path or not next_path.startswith('/') or next_path.startswith('//') or '\\' in next_path:
        return DEFAULT_NEXT
    return next_path


def _site_url() -> str:
    return (current_app.config.get('SITE_URL') or request.host_url).rstrip('/')


def _user_json(user):
    if user is None:
        return None
    return {'id': user.id, 'email': user.email, 'role': user.metadata_role}


@auth_bp.route('/auth/callback', methods=['GET'])
def auth_callback():
    code = request.args.get('code')
    next_path = request.args.get('next')

    if not code:
        logger.log_auth_event('code_exchange', False, reason='missing_code')
        return redirect('/login?error=Invalid+callback')

    client = create_session_client(get_cookie_jar())
    if client is None:
        logger.log_auth_event('code_exchange', False, reason='config_missing')
        return _error_page('Auth config missing')

    try:
        client.exchange_code_for_session(code)
        session = client.get_session()
    except AuthBackendError as e:
        logger.log_auth_event('code_exchange', False, reason=e.code, error=e.message)
        return _error_page(e.message)
    except Exception as e:
        logger.exception("Unexpected error during code exchange")
        return _error_page(str(e) or 'Authentication failed')

    if session is None:
        logger.log_auth_event('code_exchange', False, reason='session_missing')
        return redirect('/login?error=Session+not+found')

    logger.log_auth_event('code_exchange', True, user_id=session.user.id if session.user else None)
    if next_path and RESET_PASSWORD_PATH in next_path:
        return redirect(RESET_PASSWORD_PATH)
    return redirect(safe_next(next_path))


@auth_bp.route('/auth/auth-code-error', methods=['GET'])
def auth_code_error():
    return jsonify({
        'error': request.args.get('error') or 'Authentication failed',
        'message': 'There was a problem signing you in. Please try again.',
    }), 200


@auth_bp.route('/auth/confirm', methods=['GET'])
def confirm_email():
    token_hash = request.args.get('token_hash')
    otp_type = request.args.get('type')

    if not token_hash or otp_type != 'signup':
        return _error_page('Invalid verification link')

    client = create_session_client(get_cookie_jar())
    if client is None:
        return _error_page('Auth config missing')

    try:
        session = client.verify_otp(token_hash, otp_type)
    except AuthBackendError as e:
        logger.log_auth_event('email_verification', False, error=e.message)
        return _error_page(e.message)

    user_id = session.user.id if session and session.user else None
    logger.log_auth_event('email_verification', True, user_id=user_id)
    if user_id:
        track_event(Event.EMAIL_VERIFIED, user_id)
    return redirect('/login?verified=true')


def _client_or_503():
    client = create_session_client(get_cookie_jar())
    if client is None:
        return None, (jsonify({'error': 'Authentication is not configured'}), 503)
    return client, None


@auth_bp.route('/api/auth/sign-up', methods=['POST'])
def sign_up():
    data = SignUpRequest.model_validate(request.get_json(silent=True) or {})
    client, error = _client_or_503()
    if error:
        return error

    track_event(Event.SIGNUP_STARTED, properties={'method': 'email', 'role': data.role.value})
    try:
        user, session = client.sign_up(
            data.email,
            data.password,
            data=data.user_metadata(),
            redirect_to=f"{_site_url()}/auth/callback",
        )
    except AuthBackendError as e:
        logger.log_auth_event('sign_up', False, error=e.message)
        return jsonify({'error': e.message}), 400

    logger.log_auth_event('sign_up', True, user_id=user.id if user else None, role=data.role.value)
    if user is not None:
        track_event(Event.SIGNUP_COMPLETED, user.id, {'method': 'email', 'role': data.role.value})
        track_event(Event.EMAIL_VERIFICATION_SENT, user.id)
    return jsonify({
        'user': _user_json(user),
        'email_confirmation_required': session is None,
    }), 201


@auth_bp.route('/api/auth/login', methods=['POST'])
def login():
    data = LoginRequest.model_validate(request.get_json(silent=True) or {})
    client, error = _client_or_503()
    if error:
        return error

    try:
        session = client.sign_in_with_password(data.email, data.password)
    except AuthBackendError as e:
        logger.log_auth_event('login', False, error=e.message)
        return jsonify({'error': e.message}), 401

    user = session.user
    logger.log_auth_event('login', True, user_id=user.id if user else None)
    if user is not None:
        identify_user(user.id, {'email': user.email, 'role': user.metadata_role})
        track_event(Event.LOGIN, user.id)
    return jsonify({'user': _user_json(user), 'redirect': DEFAULT_NEXT}), 200


@auth_bp.route('/api/auth/logout', methods=['POST'])
def logout():
    client, error = _client_or_503()
    if error:
        return error
    user = current_user()
    client.sign_out()
    logger.log_auth_event('logout', True, user_id=user.id if user else None)
    if user is not None:
        track_event(Event.LOGOUT, user.id)
    return jsonify({'success': True, 'redirect': '/login'}), 200


@auth_bp.route('/api/auth/forgot-password', methods=['POST'])
def forgot_password():
    """Always reports success so the endpoint does not reveal which emails exist."""
    data = ForgotPasswordRequest.model_validate(request.get_json(silent=True) or {})
    client = create_session_client(get_cookie_jar())
    if client is not None:
        try:
            client.reset_password_for_email(
                data.email,
                redirect_to=f"{_site_url()}/auth/callback?next={RESET_PASSWORD_PATH}",
            )
            track_event(Event.PASSWORD_RESET_REQUESTED)
        except AuthBackendError as e:
            logger.warning("Password reset request failed", error=e.message)
    return jsonify({
        'success': True,
        'message': 'If an account exists with that email, you will receive a password reset link.',
    }), 200


@auth_bp.route('/api/auth/reset-password', methods=['POST'])
@login_required
def reset_password():
    data = ResetPasswordRequest.model_validate(request.get_json(silent=True) or {})
    client, error = _client_or_503()
    if error:
        return error
    try:
        user = client.update_user(password=data.password)
    except AuthBackendError as e:
        logger.log_auth_event('password_reset', False, error=e.message)
        return jsonify({'error': e.message}), 400

    logger.log_auth_event('password_reset', True, user_id=user.id)
    track_event(Event.PASSWORD_RESET_COMPLETED, user.id)
    return jsonify({'success': True, 'redirect': DEFAULT_NEXT}), 200


@auth_bp.route('/api/auth/oauth/<provider>', methods=['GET'])
def oauth_sign_in(provider: str):
    if provider not in OAUTH_PROVIDERS:
        return jsonify({'error': f"Unsupported provider: {provider}"}), 404
    client, error = _client_or_503()
    if error:
        return error
    next_path = request.args.get('next')
    redirect_to = f"{_site_url()}/auth/callback"
    if next_path:
        redirect_to += '?' + urlencode({'next': safe_next(next_path)})
    return redirect(client.get_oauth_sign_in_url(provider, redirect_to))
