# -*- coding: utf-8 -*-
"""
Role-based dashboards.

/dashboard routes each user to the dashboard for their role. The CFI and
school dashboards provision the profile on first visit and send users whose
role does not match back to /dashboard.
"""
from flask import Blueprint, jsonify, redirect
from sqlalchemy.exc import SQLAlchemyError

from cfipros.errors import ProfileProvisioningError
from cfipros.middleware.session_guard import current_user
from cfipros.models import UserRole
from cfipros.services import profile_service, subscription_service
from cfipros.services.profile_service import DEFAULT_SCHOOL_NAME
from cfipros.services.structured_logging import get_logger

logger = get_logger('cfipros.profiles')

dashboard_bp = Blueprint('dashboard', __name__)

ROLE_DASHBOARDS = {
    UserRole.CFI: '/dashboard/cfi',
    UserRole.SCHOOL_ADMIN: '/dashboard/school',
}


def display_name(user, profile) -> str:
    return (profile.full_name if profile else None) or user.email or ''


def _subscription_summary(user_id=None, school_id=None):
    try:
        if school_id:
            sub = subscription_service.get_subscription_by_school_id(school_id)
        else:
            sub = subscription_service.get_subscription_by_user_id(user_id)
    except SQLAlchemyError as e:
        logger.warning("Subscription lookup failed", error=str(e))
        return None
    return {'status': sub.status, 'active': sub.is_active} if sub else None


@dashboard_bp.route('/dashboard', methods=['GET'])
def dashboard_router():
    user = current_user()
    try:
        profile = profile_service.get_profile(user.id)
    except SQLAlchemyError as e:
        logger.warning("Profile lookup failed", user_id=user.id, error=str(e))
        profile = None

    if profile is None:
        return redirect('/profile-setup')

    role = profile.user_role or UserRole.STUDENT
    if role in ROLE_DASHBOARDS:
        return redirect(ROLE_DASHBOARDS[role])

    return jsonify({
        'dashboard': 'student',
        'display_name': display_name(user, profile),
        'profile': profile.to_dict(),
        'subscription': _subscription_summary(user_id=user.id),
    }), 200


def _provisioned_profile(user, expected_role):
    try:
        return profile_service.ensure_profile(user, expected_role)
    except ProfileProvisioningError:
        # render with placeholder identity instead of an error page
        return None


def _known_role(user):
    """Role from the stored profile or session metadata, or None when neither has one."""
    try:
        profile = profile_service.get_profile(user.id)
    except SQLAlchemyError as e:
        logger.warning("Profile lookup failed", user_id=user.id, error=str(e))
        profile = None
    return profile_service.resolve_role(user, profile)


def _role_dashboard(user, expected_role):
    """(profile, None) for a matching user, (None, redirect) otherwise.

    Provisioning uses ``expected_role`` only for users with no known role.
    """
    known = _known_role(user)
    if known is not None and known is not expected_role:
        logger.log_redirect('role_mismatch', '/dashboard', role=known.value)
        return None, redirect('/dashboard')

    profile = _provisioned_profile(user, expected_role)
    role = profile_service.resolve_role(user, profile, expected_role)
    if role is not expected_role:
        logger.log_redirect('role_mismatch', '/dashboard', role=role.value if role else None)
        return None, redirect('/dashboard')
    return profile, None


@dashboard_bp.route('/dashboard/cfi', methods=['GET'])
def cfi_dashboard():
    user = current_user()
    profile, mismatch = _role_dashboard(user, UserRole.CFI)
    if mismatch is not None:
        return mismatch

    return jsonify({
        'dashboard': 'cfi',
        'display_name': display_name(user, profile),
        'profile': profile.to_dict() if profile else None,
        'subscription': _subscription_summary(user_id=user.id),
    }), 200


@dashboard_bp.route('/dashboard/school', methods=['GET'])
def school_dashboard():
    user = current_user()
    profile, mismatch = _role_dashboard(user, UserRole.SCHOOL_ADMIN)
    if mismatch is not None:
        return mismatch

    school = None
    if profile is not None:
        try:
            school = profile_service.get_school_for_admin(user.id)
        except SQLAlchemyError as e:
            logger.warning("School lookup failed", user_id=user.id, error=str(e))

    school_name = (
        (school.name if school else None)
        or user.user_metadata.get('school_name')
        or DEFAULT_SCHOOL_NAME
    )
    return jsonify({
        'dashboard': 'school',
        'display_name': display_name(user, profile),
        'school_name': school_name,
        'profile': profile.to_dict() if profile else None,
        'school': school.to_dict() if school else None,
        'subscription': _subscription_summary(school_id=school.id) if school else None,
    }), 200
