"""
Feature Flags API Routes

Read-only endpoints reporting flag values for the current visitor.
"""

from flask import Blueprint, jsonify
from cfipros.utils.feature_flags import FeatureFlag, get_all_flags, is_enabled
from cfipros.services.structured_logging import get_logger

logger = get_logger('cfipros.flags')

feature_flags_bp = Blueprint("feature_flags", __name__, url_prefix="/api/feature-flags")


@feature_flags_bp.route("", methods=["GET"])
def list_feature_flags():
    """All feature flags and their values for this visitor."""
    try:
        flags = get_all_flags()
        return jsonify({
            "success": True,
            "flags": flags,
            "count": len(flags)
        }), 200
    except Exception as e:
        logger.error(f"Failed to get feature flags: {e}")
        return jsonify({
            "success": False,
            "error": "Failed to retrieve feature flags"
        }), 500


@feature_flags_bp.route("/<flag_name>", methods=["GET"])
def get_feature_flag(flag_name: str):
    try:
        flag = FeatureFlag(flag_name)
    except ValueError:
        return jsonify({
            "success": False,
            "error": f"Unknown feature flag: {flag_name}"
        }), 404

    return jsonify({
        "success": True,
        "flag": flag_name,
        "enabled": is_enabled(flag)
    }), 200
