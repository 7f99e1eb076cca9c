# -*- coding: utf-8 -*-
"""
Service for managing Prometheus metrics.

Provides a centralized service for creating, registering, and collecting metrics,
middleware for recording HTTP request metrics, and the /metrics, /healthz and
/readyz endpoints.
"""

import os
import time
import uuid
from typing import Optional
from flask import Flask, request, g, current_app, has_app_context, jsonify
from prometheus_client import CollectorRegistry, Counter, Histogram
from prometheus_client.exposition import generate_latest
from sqlalchemy import text

from cfipros.database import db


def init_metrics(app: Flask) -> None:
    """Initialize metrics service and endpoints."""
    service = MetricsService()
    app.extensions['metrics'] = service

    @app.route("/healthz", methods=["GET", "HEAD"])
    def healthz():
        return jsonify({"ok": True}), 200

    @app.route("/readyz", methods=["GET"])
    def readyz():
        try:
            db.session.execute(text("SELECT 1"))
            return jsonify({"ok": True, "database": "up"}), 200
        except Exception as e:
            current_app.logger.warning(f"Readiness check failed: {e}")
            return jsonify({"ok": False, "database": "down"}), 503

    if service.enabled:
        @app.before_request
        def before_request():
            g.metrics_start_time = time.time()

        @app.after_request
        def after_request(response):
            started = getattr(g, 'metrics_start_time', None)
            if started is not None:
                service.record_http_request(
                    route=request.path,
                    method=request.method,
                    status_code=response.status_code,
                    duration_seconds=time.time() - started
                )
            return response

        @app.route("/metrics")
        def metrics():
            return service.get_metrics(), 200, {
                'Content-Type': 'text/plain; version=0.0.4; charset=utf-8'}


def get_metrics_service() -> Optional['MetricsService']:
    """Get the metrics service instance from the current app context."""
    if has_app_context():
        return current_app.extensions.get('metrics')
    return None


class MetricsService:
    """Service for managing Prometheus metrics."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.enabled = os.environ.get(
            "CFIPROS_METRICS_ENABLED",
            "true").lower() == "true"
        # one registry per app so several apps can live in one process (tests)
        self.registry = registry if registry is not None else CollectorRegistry()

        if self.enabled:
            self.http_requests_total = Counter(
                "cfipros_http_requests_total",
                "Total number of HTTP requests.",
                ["route", "method", "status"],
                registry=self.registry
            )
            self.http_request_duration_seconds = Histogram(
                "cfipros_http_request_duration_seconds",
                "Duration of HTTP requests in seconds.",
                ["route", "method"],
                registry=self.registry
            )
            self.session_refresh_total = Counter(
                "cfipros_session_refresh_total",
                "Session refresh attempts by outcome.",
                ["outcome"],
                registry=self.registry
            )
            self.guard_redirects_total = Counter(
                "cfipros_guard_redirects_total",
                "Redirects issued by the session guard.",
                ["reason"],
                registry=self.registry
            )
            self.webhook_events_total = Counter(
                "cfipros_webhook_events_total",
                "Payments webhook events by type and outcome.",
                ["event_type", "outcome"],
                registry=self.registry
            )
            self.profile_provisioning_total = Counter(
                "cfipros_profile_provisioning_total",
                "Profile provisioning calls by outcome.",
                ["outcome"],
                registry=self.registry
            )

    def record_http_request(
            self,
            route: str,
            method: str,
            status_code: int,
            duration_seconds: float):
        if self.enabled:
            normalized_route = self._normalize_route(route)
            self.http_requests_total.labels(
                route=normalized_route,
                method=method,
                status=status_code).inc()
            self.http_request_duration_seconds.labels(
                route=normalized_route, method=method).observe(duration_seconds)

    def record_session_refresh(self, outcome: str):
        if self.enabled:
            self.session_refresh_total.labels(outcome=outcome).inc()

    def record_guard_redirect(self, reason: str):
        if self.enabled:
            self.guard_redirects_total.labels(reason=reason).inc()

    def record_webhook_event(self, event_type: str, outcome: str):
        if self.enabled:
            self.webhook_events_total.labels(event_type=event_type, outcome=outcome).inc()

    def record_profile_provisioning(self, outcome: str):
        if self.enabled:
            self.profile_provisioning_total.labels(outcome=outcome).inc()

    def get_metrics(self) -> str:
        if self.enabled:
            return generate_latest(self.registry).decode('utf-8')
        return ""

    def _normalize_route(self, route: str) -> str:
        parts = route.split('/')
        for i, part in enumerate(parts):
            if part.isdigit():
                parts[i] = '{id}'
                continue
            try:
                uuid.UUID(part)
                parts[i] = '{uuid}'
            except (ValueError, AttributeError):
                pass
        return '/'.join(parts)
