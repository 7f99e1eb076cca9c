"""
Test suite for Prometheus metrics, health endpoints and request context.
"""

import uuid

from flask import Flask

from cfipros.services.metrics import MetricsService, get_metrics_service, init_metrics


class TestMetricsService:
    """Test MetricsService functionality."""

    def test_metrics_service_initialization(self):
        app = Flask(__name__)
        init_metrics(app)
        with app.app_context():
            service = get_metrics_service()
            assert service.enabled is True
            assert hasattr(service, "http_requests_total")
            assert hasattr(service, "session_refresh_total")
            assert hasattr(service, "guard_redirects_total")
            assert hasattr(service, "webhook_events_total")
            assert hasattr(service, "profile_provisioning_total")

    def test_registries_are_per_app(self):
        first, second = MetricsService(), MetricsService()
        first.record_guard_redirect("unauthenticated")
        assert first.registry.get_sample_value(
            "cfipros_guard_redirects_total", {"reason": "unauthenticated"}) == 1.0
        assert second.registry.get_sample_value(
            "cfipros_guard_redirects_total", {"reason": "unauthenticated"}) is None

    def test_disabled_metrics(self, monkeypatch):
        monkeypatch.setenv("CFIPROS_METRICS_ENABLED", "false")
        service = MetricsService()
        service.record_session_refresh("user")
        assert service.get_metrics() == ""

    def test_route_normalization(self):
        service = MetricsService()
        assert service._normalize_route("/api/items/42") == "/api/items/{id}"
        assert service._normalize_route(f"/api/items/{uuid.uuid4()}") == "/api/items/{uuid}"


class TestHealthEndpoints:
    def test_healthz(self, client):
        resp = client.get("/healthz")
        assert resp.status_code == 200
        assert resp.get_json() == {"ok": True}

    def test_readyz(self, client):
        resp = client.get("/readyz")
        assert resp.status_code == 200
        assert resp.get_json()["database"] == "up"

    def test_metrics_endpoint(self, client):
        client.get("/healthz")
        resp = client.get("/metrics")
        assert resp.status_code == 200
        assert b"cfipros_http_requests_total" in resp.data


class TestSessionMetrics:
    def test_guard_redirect_counted(self, app, client):
        client.get("/dashboard")
        registry = app.extensions["metrics"].registry
        assert registry.get_sample_value(
            "cfipros_guard_redirects_total", {"reason": "unauthenticated"}) == 1.0
        assert registry.get_sample_value(
            "cfipros_session_refresh_total", {"outcome": "anonymous"}) == 1.0

    def test_signed_in_refresh_counted(self, app, client, login_as):
        login_as()
        client.get("/api/feature-flags")
        registry = app.extensions["metrics"].registry
        assert registry.get_sample_value("cfipros_session_refresh_total", {"outcome": "user"}) == 1.0

    def test_profile_provisioning_counted(self, app, client, login_as):
        login_as()
        client.get("/dashboard/cfi")
        client.get("/dashboard/cfi")
        registry = app.extensions["metrics"].registry
        assert registry.get_sample_value("cfipros_profile_provisioning_total", {"outcome": "created"}) == 1.0
        assert registry.get_sample_value("cfipros_profile_provisioning_total", {"outcome": "existing"}) == 1.0


class TestRequestContext:
    def test_request_id_generated(self, client):
        resp = client.get("/healthz")
        uuid.UUID(resp.headers["X-Request-ID"])
        assert resp.headers["X-Response-Time"].endswith("ms")

    def test_valid_request_id_propagated(self, client):
        request_id = str(uuid.uuid4())
        resp = client.get("/healthz", headers={"X-Request-ID": request_id})
        assert resp.headers["X-Request-ID"] == request_id

    def test_invalid_request_id_replaced(self, client):
        resp = client.get("/healthz", headers={"X-Request-ID": "not-a-uuid"})
        assert resp.headers["X-Request-ID"] != "not-a-uuid"
