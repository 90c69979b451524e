"""
Form Capture Platform
Flask Application Factory.

Usage:
    from formcapture import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy.exc import SQLAlchemyError

from formcapture.config import config
from formcapture.models import db
from formcapture.auth import init_auth
from formcapture.middleware.logging_config import configure_logging
from formcapture.middleware.timing import init_request_timing
from formcapture.middleware.security_headers import init_security_headers
from formcapture.middleware.rate_limiter import init_rate_limits
from formcapture.middleware.jwt_auth import init_jwt_middleware

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
    default_limits=[],                     # no global limit — apply per-blueprint
    storage_uri=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
)


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
    # Instantiated so ProductionConfig can refuse to start without its env vars
    app.config.from_object(config[config_name]())

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
    init_jwt_middleware(app)

    # ── Security headers and request timing ──────────────────────────────
    init_security_headers(app)
    init_request_timing(app)

    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    @app.before_request
    def _guard_request():
        from flask import abort
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Import all models so Alembic can detect them ─────────────────────
    from formcapture.models import auth as _auth_models      # noqa: F401
    from formcapture.models import form as _form_models      # noqa: F401
    from formcapture.models import audit as _audit_models    # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except SQLAlchemyError as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from formcapture.blueprints.health_bp import health_bp
    from formcapture.blueprints.auth_bp import auth_bp
    from formcapture.blueprints.user_bp import user_bp
    from formcapture.blueprints.template_bp import template_bp
    from formcapture.blueprints.entry_bp import entry_bp
    from formcapture.blueprints.export_bp import export_bp
    from formcapture.blueprints.activity_bp import activity_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(user_bp)
    app.register_blueprint(template_bp)
    app.register_blueprint(entry_bp)
    app.register_blueprint(export_bp)
    app.register_blueprint(activity_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("create-superadmin")
    @click.argument("username")
    @click.argument("password")
    @click.option("--name", default="Super Administrador")
    def create_superadmin_cmd(username, password, name):
        """Create the first superadmin account."""
        from formcapture.services.user_service import create_user
        user = create_user(username, password, name, "superadmin")
        logger.info("Created superadmin %s (id=%s).", user.username, user.id)

    # ── Health check (summary; detailed version at /health/live) ─────────
    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "Form Capture Platform"}

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "code": "NOT_FOUND", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def too_large(e):
        return {"error": "Request body too large"}, 413

    @app.errorhandler(415)
    def unsupported_media(e):
        return {"error": e.description}, 415

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "code": "INTERNAL"}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
