# -*- coding: utf-8 -*-
"""
PostHog client for server-side flag evaluation and event capture.

Flag lookups never raise: a missing key, a missing distinct id or any
backend failure yields the caller's default. Event capture is
fire-and-forget on a daemon thread.
"""
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

DISTINCT_ID_COOKIE = 'ph_distinct_id'
DEFAULT_HOST = 'https://us.posthog.com'
TIMEOUT = 5


class PostHogClient:
    def __init__(self, api_key: Optional[str], host: Optional[str] = None, timeout: int = TIMEOUT):
        self.api_key = api_key
        self.host = (host or DEFAULT_HOST).rstrip('/')
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def get_feature_flags(self, distinct_id: str) -> Optional[Dict[str, Any]]:
        """All flag values for ``distinct_id``, or None when unavailable."""
        if not self.configured or not distinct_id:
            return None
        try:
            resp = requests.post(
                f"{self.host}/decide/?v=3",
                json={'api_key': self.api_key, 'distinct_id': distinct_id},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            return resp.json().get('featureFlags') or {}
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning(f"PostHog flag evaluation failed: {e}")
            return None

    def is_feature_enabled(self, key: str, distinct_id: Optional[str], default: bool = False) -> bool:
        flags = self.get_feature_flags(distinct_id)
        if flags is None or key not in flags:
            return default
        # multivariate flags report the variant name
        return bool(flags[key])

    def _send(self, payload: Dict[str, Any]):
        try:
            resp = requests.post(f"{self.host}/capture/", json=payload, timeout=self.timeout)
            resp.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.warning(f"PostHog capture failed for {payload.get('event')}: {e}")

    def capture(self, event: str, distinct_id: str, properties: Optional[Dict[str, Any]] = None, blocking: bool = False):
        if not self.configured or not distinct_id:
            return None
        payload = {
            'api_key': self.api_key,
            'event': event,
            'distinct_id': distinct_id,
            'properties': properties or {},
            'timestamp': datetime.now(timezone.utc).isoformat(),
        }
        if blocking:
            self._send(payload)
            return None
        t = threading.Thread(target=self._send, args=(payload,), daemon=True)
        t.start()
        return t

    def identify(self, distinct_id: str, properties: Optional[Dict[str, Any]] = None, blocking: bool = False):
        return self.capture('$identify', distinct_id, {'$set': properties or {}}, blocking=blocking)


def client_from_config(config) -> PostHogClient:
    return PostHogClient(config.get('POSTHOG_KEY'), config.get('POSTHOG_HOST'))
