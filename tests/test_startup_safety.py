"""Startup safety tests to ensure app boots with various configurations."""
import sys

import pytest

import cfipros.routes
import cfipros.services
from cfipros.errors import ConfigurationError
from cfipros.factory import create_app

PAYMENT_MODULES = (
    ("cfipros.services", "stripe_client"),
    ("cfipros.routes", "stripe_webhooks"),
    ("cfipros.routes", "billing"),
)
OCR_MODULES = (
    ("cfipros.services", "ocr_config"),
    ("cfipros.services", "ocr_service"),
    ("cfipros.routes", "test_upload"),
)


def forget_modules(monkeypatch, modules):
    """Make the next import of ``modules`` run their module code again."""
    packages = {"cfipros.services": cfipros.services, "cfipros.routes": cfipros.routes}
    for package, name in modules:
        monkeypatch.delitem(sys.modules, f"{package}.{name}", raising=False)
        monkeypatch.delattr(packages[package], name, raising=False)


@pytest.fixture(autouse=True)
def memory_db(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite://")
    monkeypatch.setenv("TESTING", "true")


def test_app_boots_with_full_config():
    """Test that app boots and mounts every blueprint when fully configured."""
    app = create_app()
    assert app.extensions["payments_enabled"] is True
    assert app.extensions["ocr_enabled"] is True
    assert "stripe_webhooks" in app.blueprints
    assert "test_upload" in app.blueprints


def test_app_boots_without_stripe_key(monkeypatch):
    """Payments routes are skipped, everything else still serves."""
    monkeypatch.delenv("STRIPE_SECRET_KEY", raising=False)
    forget_modules(monkeypatch, PAYMENT_MODULES)

    app = create_app()

    assert app.extensions["payments_enabled"] is False
    assert "billing" not in app.blueprints
    client = app.test_client()
    assert client.post("/api/subscriptions/stripe-webhook").status_code == 404
    assert client.get("/healthz").status_code == 200


def test_stripe_client_import_fails_fast(monkeypatch):
    monkeypatch.delenv("STRIPE_SECRET_KEY", raising=False)
    forget_modules(monkeypatch, PAYMENT_MODULES)

    with pytest.raises(ConfigurationError):
        import cfipros.services.stripe_client  # noqa: F401


def test_app_boots_without_gemini_key(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    forget_modules(monkeypatch, OCR_MODULES)

    app = create_app()

    assert app.extensions["ocr_enabled"] is False
    assert "test_upload" not in app.blueprints


def test_ocr_config_import_fails_fast(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    forget_modules(monkeypatch, OCR_MODULES)

    with pytest.raises(ConfigurationError, match="GEMINI_API_KEY"):
        import cfipros.services.ocr_config  # noqa: F401


def test_app_boots_without_auth_config(monkeypatch):
    """Session handling degrades to anonymous instead of failing."""
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_ANON_KEY", raising=False)
    app = create_app()

    client = app.test_client()
    assert client.get("/login").status_code == 200
    assert client.get("/dashboard").status_code == 302


def test_public_env_names_are_accepted(monkeypatch):
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.setenv("NEXT_PUBLIC_SUPABASE_URL", "https://other.supabase.co")
    app = create_app()
    assert app.config["SUPABASE_URL"] == "https://other.supabase.co"


def test_app_boots_with_migrations_enabled_in_test_mode(monkeypatch):
    """Test that migrations are skipped in test mode even when enabled."""
    monkeypatch.setenv("CFIPROS_DB_MIGRATE_ON_START", "true")
    app = create_app()
    assert app is not None


def test_postgres_url_is_normalized(monkeypatch):
    from cfipros.factory import _normalize_db_url
    assert _normalize_db_url("postgres://u:p@h/db") == "postgresql+psycopg://u:p@h/db"
    assert _normalize_db_url("postgresql://u:p@h/db") == "postgresql+psycopg://u:p@h/db"
    assert _normalize_db_url("sqlite:///x.db") == "sqlite:///x.db"
