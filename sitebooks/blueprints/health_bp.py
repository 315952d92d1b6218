"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — simple 200 for load balancers
    GET /api/v1/health/live   — dependency status (database, rate limit storage)
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from sitebooks.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Readiness probe: 200 whenever the app is serving."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        checks["database"] = {"status": "ok", "latency_ms": round((time.perf_counter() - t0) * 1000, 1)}
    except Exception as exc:
        db.session.rollback()
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    # ── Rate limit storage ───────────────────────────────────────────
    redis_url = current_app.config.get("REDIS_URL", "")
    if redis_url:
        try:
            import redis

            t0 = time.perf_counter()
            redis.from_url(redis_url, socket_connect_timeout=2).ping()
            checks["redis"] = {"status": "ok", "latency_ms": round((time.perf_counter() - t0) * 1000, 1)}
        except Exception as exc:
            checks["redis"] = {"status": "error", "detail": str(exc)}
            overall = False
            logger.error("Health check — redis failed: %s", exc)
    else:
        checks["redis"] = {"status": "not_configured"}

    limiter = current_app.extensions.get("ocr_rate_limiter")
    checks["ocr_rate_limiter"] = {
        "status": "ok" if limiter else "missing",
        "max_requests": getattr(limiter, "max_requests", None),
        "window_ms": getattr(limiter, "window_ms", None),
    }

    status = "ok" if overall else "degraded"
    return jsonify({"status": status, "checks": checks}), 200 if overall else 503
