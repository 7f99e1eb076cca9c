# -*- coding: utf-8 -*-
import os
from typing import Optional

from flask import Flask
from flask_cors import CORS

from cfipros.config import Config, env_flag
from cfipros.database import db
from cfipros.errors import ConfigurationError

# Observability imports
from cfipros.services.metrics import init_metrics
from cfipros.services.request_context import init_request_context
from cfipros.services.structured_logging import init_logging

# Session handling
from cfipros.services.cookies import init_cookie_jar
from cfipros.middleware.session_guard import init_session_guard


def _normalize_db_url(url: str) -> str:
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://") and "+psycopg://" not in url:
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def _migrate_db(app):
    """Run Alembic migrations to head using the app's DB URL."""
    from pathlib import Path
    from alembic import command
    from alembic.config import Config as AlembicConfig

    BASE_DIR = Path(__file__).resolve().parent.parent
    cfg = AlembicConfig()  # in-memory config, avoid alembic.ini dependency
    cfg.set_main_option("script_location", str(BASE_DIR / "migrations"))
    cfg.set_main_option("sqlalchemy.url", app.config["SQLALCHEMY_DATABASE_URI"])

    try:
        command.upgrade(cfg, "head")
        app.logger.info("Database migrations applied successfully")
    except Exception as e:
        app.logger.error(f"Migration failed: {e}")
        raise


def _register_payments(app):
    """Payments routes need STRIPE_SECRET_KEY at import time."""
    try:
        from cfipros.routes import stripe_webhooks, billing
    except ConfigurationError as e:
        app.logger.error(f"Payments routes disabled: {e}")
        return False
    app.register_blueprint(stripe_webhooks.stripe_webhooks_bp)
    app.register_blueprint(billing.billing_bp)
    return True


def _register_ocr(app):
    """Upload/OCR routes need GEMINI_API_KEY at import time."""
    try:
        from cfipros.routes import test_upload
    except ConfigurationError as e:
        app.logger.error(f"Upload routes disabled: {e}")
        return False
    app.register_blueprint(test_upload.test_upload_bp)
    return True


def create_app(config_overrides: Optional[dict] = None) -> Flask:
    app = Flask(__name__)
    app.url_map.strict_slashes = False

    # --- Core config ---
    app.config.update(Config.from_env())

    # --- DB config ---
    db_url = os.environ.get("DATABASE_URL")
    if not db_url:
        db_path = os.path.join(
            os.path.dirname(__file__),
            "..",
            "instance",
            "app.db")
        os.makedirs(os.path.dirname(db_path), exist_ok=True)
        db_url = f"sqlite:///{db_path}"
    else:
        db_url = _normalize_db_url(db_url)
    app.config["SQLALCHEMY_DATABASE_URI"] = db_url

    if config_overrides:
        app.config.update(config_overrides)
    db.init_app(app)

    # --- CORS ---
    cors_origins_str = os.environ.get("CORS_ALLOWED_ORIGINS", app.config["SITE_URL"])
    cors_origins = [origin.strip() for origin in cors_origins_str.split(",") if origin.strip()]

    CORS(app, resources={
        r"/api/*": {
            "origins": cors_origins,
            "methods": ["GET", "POST", "PATCH", "OPTIONS"],
            "allow_headers": ["Content-Type", "Authorization"],
            "supports_credentials": True,
            "max_age": 600,
        }}
    )

    # --- Initialize observability ---
    init_logging(app)
    init_request_context(app)
    init_metrics(app)

    # --- Session refresh and route guard (after request context) ---
    init_cookie_jar(app)
    init_session_guard(app)

    from cfipros.middleware.error_handlers import register_error_handlers
    register_error_handlers(app)

    # --- Feature flags / analytics ---
    from cfipros.services.posthog_client import client_from_config
    from cfipros.utils.feature_flags import init_feature_flags
    posthog = client_from_config(app.config)
    app.extensions["posthog"] = posthog
    init_feature_flags(posthog)

    # --- Mount blueprints ---
    with app.app_context():
        from cfipros.routes import auth, pages, dashboard, profile, feature_flags
        app.register_blueprint(auth.auth_bp)
        app.register_blueprint(pages.pages_bp)
        app.register_blueprint(dashboard.dashboard_bp)
        app.register_blueprint(profile.profile_bp)
        app.register_blueprint(feature_flags.feature_flags_bp)

        # fail fast: these raise ConfigurationError at import when unconfigured
        app.extensions["payments_enabled"] = _register_payments(app)
        app.extensions["ocr_enabled"] = _register_ocr(app)

    # --- DB init ---
    with app.app_context():
        # Only auto-create tables in testing or if explicitly enabled
        is_testing = app.config.get("TESTING") or env_flag("TESTING")
        if is_testing or env_flag("CFIPROS_DB_AUTOCREATE"):
            db.create_all()

        # Skip migrations in test mode since db.create_all() already creates the schema
        if not is_testing and env_flag("CFIPROS_DB_MIGRATE_ON_START", "true"):
            _migrate_db(app)

    return app
