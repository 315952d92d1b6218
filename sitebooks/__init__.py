"""
SiteBooks — construction finance back office.
Flask Application Factory.

Usage:
    from sitebooks import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine, event as _sa_event
from werkzeug.exceptions import HTTPException

from sitebooks.config import config
from sitebooks.core.exceptions import (
    ConflictError,
    InvalidStateTransition,
    NotFoundError,
    StoreFailure,
    ValidationError,
)
from sitebooks.middleware.logging_config import configure_logging
from sitebooks.middleware.rate_limiter import SlidingWindowRateLimiter, init_rate_limits
from sitebooks.middleware.timing import init_request_timing
from sitebooks.models import db
from sitebooks.utils.errors import E, api_error

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
    default_limits=[],                     # no global limit; applied per blueprint
    storage_uri=os.getenv("REDIS_URL") or "memory://",
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
    app.config.from_object(config[config_name]())
    os.makedirs(app.instance_path, exist_ok=True)  # dev SQLite lives here

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

    # One sliding window per app instance for the OCR webhook
    app.extensions["ocr_rate_limiter"] = SlidingWindowRateLimiter(
        max_requests=app.config["OCR_RATE_LIMIT_MAX_REQUESTS"],
        window_ms=app.config["OCR_RATE_LIMIT_WINDOW_MS"],
    )

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Request guards (Content-Type) ────────────────────────────────────
    @app.before_request
    def _guard_request():
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.get_data(cache=True) and "json" not in ct:
                return jsonify({
                    "success": False,
                    "error": "Content-Type must be application/json",
                    "code": E.UNSUPPORTED_MEDIA_TYPE,
                }), 415
        return None

    # ── Import all models so Alembic can detect them ─────────────────────
    from sitebooks.models import audit as _audit_models                 # noqa: F401
    from sitebooks.models import cost_code as _cost_code_models         # noqa: F401
    from sitebooks.models import expense as _expense_models             # noqa: F401
    from sitebooks.models import holdback as _holdback_models           # noqa: F401
    from sitebooks.models import income as _income_models               # noqa: F401
    from sitebooks.models import progress_certificate as _cert_models   # noqa: F401
    from sitebooks.models import subcontract as _subcontract_models     # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from sitebooks.blueprints.audit_bp import audit_bp
    from sitebooks.blueprints.certificate_bp import certificate_bp
    from sitebooks.blueprints.cost_code_bp import cost_code_bp
    from sitebooks.blueprints.expense_bp import expense_bp
    from sitebooks.blueprints.health_bp import health_bp
    from sitebooks.blueprints.holdback_bp import holdback_bp
    from sitebooks.blueprints.income_bp import income_bp
    from sitebooks.blueprints.ocr_bp import ocr_bp
    from sitebooks.blueprints.project_bp import project_bp
    from sitebooks.blueprints.subcontract_bp import subcontract_bp

    app.register_blueprint(ocr_bp)
    app.register_blueprint(expense_bp)
    app.register_blueprint(certificate_bp)
    app.register_blueprint(subcontract_bp)
    app.register_blueprint(cost_code_bp)
    app.register_blueprint(project_bp)
    app.register_blueprint(holdback_bp)
    app.register_blueprint(income_bp)
    app.register_blueprint(audit_bp)
    app.register_blueprint(health_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-cost-codes")
    def seed_cost_codes_cmd():
        """Seed the default cost code catalog."""
        from sitebooks.services.cost_code_service import seed_default_cost_codes
        count = seed_default_cost_codes()
        db.session.commit()
        logger.info("Seeded %s new cost codes.", count)

    _register_error_handlers(app)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app


def _register_error_handlers(app):
    """Map service exceptions to the standard JSON error body."""

    @app.errorhandler(ValidationError)
    def _validation_error(e):
        details = {"errors": e.errors} if e.errors else None
        if e.details:
            details = {**(details or {}), **e.details}
        return api_error(E.VALIDATION_ERROR, str(e), details=details)

    @app.errorhandler(NotFoundError)
    def _not_found_error(e):
        return api_error(E.NOT_FOUND, str(e))

    @app.errorhandler(ConflictError)
    def _conflict_error(e):
        return api_error(E.CONFLICT_DUPLICATE, str(e), details={"field": e.field, "value": e.value})

    @app.errorhandler(InvalidStateTransition)
    def _invalid_transition(e):
        return api_error(
            E.INVALID_STATE_TRANSITION, str(e),
            details={"entity_type": e.entity_type, "current": e.current, "target": e.target},
        )

    @app.errorhandler(StoreFailure)
    def _store_failure(e):
        db.session.rollback()
        logger.error("Store failure on %s %s: %s", request.method, request.path, e)
        return api_error(E.STORE_FAILURE, str(e))

    @app.errorhandler(HTTPException)
    def _http_error(e):
        if not request.path.startswith("/api/"):
            return e
        code = {400: E.BAD_REQUEST, 404: E.NOT_FOUND, 415: E.UNSUPPORTED_MEDIA_TYPE,
                429: E.RATE_LIMIT_EXCEEDED}.get(e.code, e.name.upper().replace(" ", "_"))
        return api_error(code, e.description or e.name, status=e.code)

    @app.errorhandler(Exception)
    def _unexpected_error(e):
        db.session.rollback()
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return api_error(E.INTERNAL_ERROR, "Internal server error",
                         details={"error_type": type(e).__name__})
