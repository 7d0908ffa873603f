"""
Railway Coach Inspection Service
Flask Application Factory.

Usage:
    from railinspect import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config

Collaborators can be swapped at construction time:
    app = create_app("testing", roster=MyRoster(), module_sources=[...])
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from railinspect.auth import init_auth
from railinspect.config import config
from railinspect.middleware.logging_config import configure_logging
from railinspect.middleware.rate_limiter import init_rate_limits
from railinspect.middleware.timing import init_request_timing
from railinspect.models import db
from railinspect.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
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
    default_limits=[],                     # per-blueprint limits only
    storage_uri=os.getenv("REDIS_URL", "memory://"),  # Redis in production, memory for dev
)


def create_app(config_name=None, *, roster=None, module_sources=None, config_overrides=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.
        roster: RosterProvider to use instead of the SQL-backed roster.
        module_sources: ModuleSource instances overriding the default
                        per-module monitoring sources.
        config_overrides: Extra config keys applied after the config class
                          (e.g. a file-backed SQLALCHEMY_DATABASE_URI).

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())
    if config_overrides:
        app.config.update(config_overrides)

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

    # ── Authentication ───────────────────────────────────────────────────
    init_auth(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Request guards (input length + Content-Type) ─────────────────────
    app.config.setdefault("MAX_CONTENT_LENGTH", 1 * 1024 * 1024)  # 1 MB

    @app.before_request
    def _guard_request():
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.data and "json" not in ct:
                return api_error(E.VALIDATION_INVALID, "Content-Type must be application/json",
                                 status=415)
        return None

    # ── Import all models so Alembic can detect them ─────────────────────
    from railinspect.models import audit as _audit_models          # noqa: F401
    from railinspect.models import checklist as _checklist_models  # noqa: F401
    from railinspect.models import inspection as _inspection_models  # noqa: F401
    from railinspect.models import roster as _roster_models        # noqa: F401

    # ── Collaborators (roster, monitoring sources) ───────────────────────
    from railinspect.services.monitoring import init_module_sources
    from railinspect.services.roster import init_roster

    init_roster(app, roster)
    init_module_sources(app, module_sources)

    # ── Auto-create tables outside production (production runs migrations) ──
    if config_name != "production":
        with app.app_context():
            try:
                db.create_all()
                app.logger.info("db.create_all() completed successfully")
            except Exception as e:
                app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from railinspect.blueprints.checklist_bp import checklist_bp
    from railinspect.blueprints.defect_bp import defect_bp
    from railinspect.blueprints.health_bp import health_bp
    from railinspect.blueprints.monitoring_bp import monitoring_bp
    from railinspect.blueprints.session_bp import session_bp

    app.register_blueprint(session_bp)
    app.register_blueprint(defect_bp)
    app.register_blueprint(checklist_bp)
    app.register_blueprint(monitoring_bp)
    app.register_blueprint(health_bp)

    # ── Error handlers ───────────────────────────────────────────────────
    register_error_handlers(app)

    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, "Method not allowed", status=405)

    @app.errorhandler(429)
    def rate_limited(e):
        return api_error(E.VALIDATION_INVALID, "Too many requests", status=429,
                         details={"retry_after": e.description})

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
