"""
JSON error handlers for database and request validation failures.
"""
from flask import jsonify
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, OperationalError

from cfipros.services.structured_logging import get_logger

logger = get_logger(__name__)


def register_error_handlers(app):
    """Register JSON error handlers on the app."""

    @app.errorhandler(OperationalError)
    def handle_operational_error(e):
        error_msg = str(e.orig) if hasattr(e, 'orig') else str(e)

        if 'does not exist' in error_msg or 'no such table' in error_msg:
            logger.error(f"Database table not found: {error_msg}")
            return jsonify({
                'error': 'feature_not_ready',
                'message': 'This feature requires database migration.',
            }), 503

        logger.error(f"Database operational error: {error_msg}")
        return jsonify({
            'error': 'database_error',
            'message': 'Database operation failed. Please try again later.'
        }), 503

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(e):
        error_msg = str(e.orig) if hasattr(e, 'orig') else str(e)
        logger.error(f"Database integrity error: {error_msg}")

        if 'foreign key' in error_msg.lower():
            return jsonify({
                'error': 'invalid_reference',
                'message': 'Referenced entity does not exist'
            }), 400

        if 'unique' in error_msg.lower() or 'duplicate' in error_msg.lower():
            return jsonify({
                'error': 'duplicate_entry',
                'message': 'This entry already exists'
            }), 409

        return jsonify({
            'error': 'integrity_error',
            'message': 'Data integrity constraint violated'
        }), 400

    @app.errorhandler(ValidationError)
    def handle_validation_error(e):
        return jsonify({
            'error': 'validation_error',
            'message': 'Invalid request body',
            'details': [
                {'field': '.'.join(str(p) for p in err['loc']), 'message': err['msg']}
                for err in e.errors()
            ],
        }), 400
