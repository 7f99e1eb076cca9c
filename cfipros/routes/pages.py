"""
Auth and onboarding pages.

The browser UI renders these; the server only supplies the data each page
needs. Auth-only pages are kept away from signed-in users by the session guard.
"""
from flask import Blueprint, jsonify, redirect, request

from cfipros.middleware.session_guard import current_user
from cfipros.models import UserRole
from cfipros.utils.feature_flags import FeatureFlag, is_enabled

pages_bp = Blueprint('pages', __name__)


def _page(name, **data):
    return jsonify(dict(page=name, **data)), 200


@pages_bp.route('/login', methods=['GET'])
def login_page():
    return _page(
        'login',
        error=request.args.get('error'),
        verified=request.args.get('verified') == 'true',
    )


@pages_bp.route('/sign-up', methods=['GET'])
def sign_up_page():
    return _page(
        'sign-up',
        unified=is_enabled(FeatureFlag.UNIFIED_SIGNUP_FLOW),
        role=UserRole.STUDENT.value,
    )


@pages_bp.route('/cfi-sign-up', methods=['GET'])
def cfi_sign_up_page():
    return _page('cfi-sign-up', role=UserRole.CFI.value)


@pages_bp.route('/school-sign-up', methods=['GET'])
def school_sign_up_page():
    return _page('school-sign-up', role=UserRole.SCHOOL_ADMIN.value)


@pages_bp.route('/role-selection', methods=['GET'])
def role_selection_page():
    return _page('role-selection', roles=[r.value for r in UserRole])


@pages_bp.route('/verify-email', methods=['GET'])
def verify_email_page():
    return _page('verify-email')


@pages_bp.route('/profile-setup', methods=['GET'])
def profile_setup_page():
    user = current_user()
    if user is None:
        return redirect('/login')
    return _page('profile-setup', email=user.email, role=user.metadata_role)


@pages_bp.route('/auth/reset-password', methods=['GET'])
def reset_password_page():
    user = current_user()
    if user is None:
        return redirect('/login?error=Session+expired')
    return _page('reset-password', email=user.email)
