"""
Worksite — renovation project tracking and resource compilation.
Flask Application Factory.

Usage:
    from worksite import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from worksite.config import config
from worksite.models import db
from worksite.middleware.logging_config import configure_logging
from worksite.middleware.rate_limiter import init_rate_limits
from worksite.middleware.timing import init_request_timing

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit; applied per blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),  # Redis in production, memory for dev
)


def _init_settings(app):
    """Attach the settings service with its own TTL cache to the app."""
    from worksite.services.cache_service import TTLCache
    from worksite.services.settings_service import SettingsService

    cache = TTLCache.from_url(
        app.config.get("REDIS_URL"),
        ttl_seconds=app.config.get("SETTINGS_CACHE_TTL", 300),
        namespace="settings",
    )
    app.extensions["settings_service"] = SettingsService(cache)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name])

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    init_request_timing(app)
    _init_settings(app)

    from worksite.models import resource_pool as _resource_pool_models  # noqa: F401
    from worksite.models import settings as _settings_models            # noqa: F401
    from worksite.models import worksite as _worksite_models            # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///") and ":memory:" not in app.config["SQLALCHEMY_DATABASE_URI"]:
        os.makedirs(app.instance_path, exist_ok=True)
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from worksite.blueprints.resource_bp import resource_bp
    from worksite.blueprints.worksite_bp import worksite_bp

    app.register_blueprint(worksite_bp)
    app.register_blueprint(resource_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-settings")
    def seed_settings_cmd():
        """Write the default resource settings into app_settings."""
        from worksite.models.resource_pool import DEFAULT_SPECIALTY
        from worksite.services.settings_service import DEFAULT_SPECIALTY_KEY, REQUIRED_CATEGORIES_KEY

        service = app.extensions["settings_service"]
        service.set(
            REQUIRED_CATEGORIES_KEY, list(app.config["RESOURCE_CATEGORIES"]),
            category="resource", description="Ordered resource categories compiled per work package",
        )
        service.set(
            DEFAULT_SPECIALTY_KEY, DEFAULT_SPECIALTY,
            category="resource", description="Specialty used when a work package has none",
        )
        logger.info("Seeded default resource settings.")

    # ── Health check ─────────────────────────────────────────────────────
    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "worksite"}

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        from flask import request
        return {"error": "Not found", "code": "ERR_NOT_FOUND", "path": request.path}, 404

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "code": "ERR_INTERNAL"}, 500

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
