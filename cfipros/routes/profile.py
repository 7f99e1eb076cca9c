"""
Profile setup and self-service profile API.
"""
from flask import Blueprint, jsonify, request

from cfipros.errors import ProfileProvisioningError
from cfipros.middleware.session_guard import current_user, login_required
from cfipros.routes.dashboard import ROLE_DASHBOARDS
from cfipros.schemas.profile import ProfileSetupRequest, ProfileUpdateRequest
from cfipros.services import profile_service
from cfipros.services.analytics import Event, track_event

profile_bp = Blueprint('profile', __name__)


@profile_bp.route('/profile-setup', methods=['POST'])
@login_required
def complete_profile_setup():
    user = current_user()
    data = ProfileSetupRequest.model_validate(request.get_json(silent=True) or {})
    try:
        profile = profile_service.create_profile_for_role(
            user,
            data.role,
            full_name=data.full_name,
            part_61_or_141_type=data.part_61_or_141_type,
            school_name=data.school_name,
        )
    except ProfileProvisioningError as e:
        return jsonify({'error': str(e)}), 500

    track_event(Event.ROLE_SELECTED, user.id, {'role': data.role.value})
    track_event(Event.PROFILE_COMPLETED, user.id, {'role': data.role.value})
    return jsonify({
        'profile': profile.to_dict(),
        'redirect': ROLE_DASHBOARDS.get(data.role, '/dashboard'),
    }), 200


@profile_bp.route('/api/profile', methods=['GET'])
@login_required
def get_my_profile():
    profile = profile_service.get_profile(current_user().id)
    if profile is None:
        return jsonify({'error': 'Profile not found'}), 404
    body = {'profile': profile.to_dict()}
    school = profile_service.get_school_for_admin(profile.id)
    if school is not None:
        body['school'] = school.to_dict()
    return jsonify(body), 200


@profile_bp.route('/api/profile', methods=['PATCH'])
@login_required
def update_my_profile():
    data = ProfileUpdateRequest.model_validate(request.get_json(silent=True) or {})
    changes = data.model_dump(mode='json', exclude_unset=True)
    profile = profile_service.update_profile(current_user().id, changes)
    if profile is None:
        return jsonify({'error': 'Profile not found'}), 404
    return jsonify({'profile': profile.to_dict()}), 200
