"""
Product analytics events, sent only while the ``analytics_enabled`` flag is on.
"""
from enum import Enum
from typing import Any, Dict, Optional

from flask import current_app, has_app_context

from cfipros.utils.feature_flags import FeatureFlag, distinct_id_from_request, is_enabled


class Event(str, Enum):
    # signup flow
    SIGNUP_STARTED = 'signup_started'
    SIGNUP_COMPLETED = 'signup_completed'
    EMAIL_VERIFICATION_SENT = 'email_verification_sent'
    EMAIL_VERIFIED = 'email_verified'
    ROLE_SELECTED = 'role_selected'
    PROFILE_COMPLETED = 'profile_completed'

    # authentication
    LOGIN = 'login'
    LOGOUT = 'logout'
    PASSWORD_RESET_REQUESTED = 'password_reset_requested'
    PASSWORD_RESET_COMPLETED = 'password_reset_completed'

    # subscriptions
    SUBSCRIPTION_PAGE_VIEWED = 'subscription_page_viewed'
    SUBSCRIPTION_STARTED = 'subscription_started'
    SUBSCRIPTION_COMPLETED = 'subscription_completed'


def _client():
    if not has_app_context():
        return None
    return current_app.extensions.get('posthog')


def track_event(event: Event, distinct_id: Optional[str] = None, properties: Optional[Dict[str, Any]] = None):
    """Capture ``event`` in the background; a no-op when analytics is off."""
    client = _client()
    distinct_id = distinct_id or distinct_id_from_request()
    if client is None or not distinct_id or not is_enabled(FeatureFlag.ANALYTICS_ENABLED, distinct_id):
        return None
    return client.capture(Event(event).value, distinct_id, properties)


def identify_user(user_id: str, traits: Optional[Dict[str, Any]] = None):
    client = _client()
    if client is None or not is_enabled(FeatureFlag.ANALYTICS_ENABLED, user_id):
        return None
    return client.identify(user_id, traits)
