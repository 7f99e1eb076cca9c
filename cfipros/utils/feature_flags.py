"""
Feature Flags System

Server-side feature flags for gating sections of the product.

Usage:
    from cfipros.utils.feature_flags import is_enabled, FeatureFlag

    if is_enabled(FeatureFlag.UNIFIED_SIGNUP_FLOW, distinct_id):
        ...

Environment Variables:
    FEATURE_FLAG_<NAME>=true|false  - Override flag value
    POSTHOG_KEY / POSTHOG_HOST      - Evaluate flags per visitor in PostHog
"""

import os
from enum import Enum
from typing import Dict, Optional
import logging

from flask import has_request_context, request

from cfipros.services.posthog_client import DISTINCT_ID_COOKIE, PostHogClient

logger = logging.getLogger('cfipros.flags')


class FeatureFlag(str, Enum):
    """Centralized feature flag definitions."""
    UNIFIED_SIGNUP_FLOW = "unified_signup_flow"
    ANALYTICS_ENABLED = "analytics_enabled"
    ENHANCED_NAV_ENABLED = "enhanced_nav_enabled"
    COMPANY_LINK_ENABLED = "company_link_enabled"


DEFAULT_FLAGS = {
    FeatureFlag.UNIFIED_SIGNUP_FLOW: False,
    FeatureFlag.ANALYTICS_ENABLED: False,
    FeatureFlag.ENHANCED_NAV_ENABLED: True,
    FeatureFlag.COMPANY_LINK_ENABLED: True,
}


def _env_override(flag: FeatureFlag) -> Optional[bool]:
    env_value = os.getenv(f"FEATURE_FLAG_{flag.value.upper()}")
    if env_value is None:
        return None
    return env_value.lower() in ("true", "1", "yes", "on")


def distinct_id_from_request() -> Optional[str]:
    """The visitor's analytics id from the ``ph_distinct_id`` cookie."""
    if not has_request_context():
        return None
    return request.cookies.get(DISTINCT_ID_COOKIE) or None


class FeatureFlagManager:
    """
    Resolves feature flags.

    Priority order:
    1. Environment variable (FEATURE_FLAG_<NAME>=true|false)
    2. PostHog evaluation for the visitor (when configured and a distinct id is known)
    3. Default value
    """

    def __init__(self, backend: Optional[PostHogClient] = None):
        self.backend = backend if backend is not None and backend.configured else None

        if self.backend:
            logger.info("Feature flags initialized with PostHog backend")
        else:
            logger.info("Feature flags initialized with environment variables only")

    def is_enabled(self, flag: FeatureFlag, distinct_id: Optional[str] = None) -> bool:
        override = _env_override(flag)
        if override is not None:
            logger.debug(f"Feature flag {flag.value} from env: {override}")
            return override

        default = DEFAULT_FLAGS.get(flag, False)
        if self.backend and distinct_id:
            return self.backend.is_feature_enabled(flag.value, distinct_id, default)

        logger.debug(f"Feature flag {flag.value} from default: {default}")
        return default

    def get_all_flags(self, distinct_id: Optional[str] = None) -> Dict[str, bool]:
        remote = None
        if self.backend and distinct_id:
            remote = self.backend.get_feature_flags(distinct_id)

        flags = {}
        for flag in FeatureFlag:
            override = _env_override(flag)
            if override is not None:
                flags[flag.value] = override
            elif remote is not None and flag.value in remote:
                flags[flag.value] = bool(remote[flag.value])
            else:
                flags[flag.value] = DEFAULT_FLAGS.get(flag, False)
        return flags


# Global instance (initialized by application factory)
_manager: Optional[FeatureFlagManager] = None


def init_feature_flags(backend: Optional[PostHogClient] = None):
    """Initialize the global feature flag manager. Called once at startup."""
    global _manager
    _manager = FeatureFlagManager(backend)
    logger.info("Feature flags system initialized")


def get_manager() -> FeatureFlagManager:
    if _manager is None:
        init_feature_flags()
    return _manager


def is_enabled(flag: FeatureFlag, distinct_id: Optional[str] = None) -> bool:
    """Check a flag; inside a request the visitor's cookie supplies the distinct id."""
    return get_manager().is_enabled(flag, distinct_id or distinct_id_from_request())


def get_all_flags(distinct_id: Optional[str] = None) -> Dict[str, bool]:
    return get_manager().get_all_flags(distinct_id or distinct_id_from_request())
