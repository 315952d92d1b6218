"""
OCR expense ingestion blueprint.

Endpoints:
    POST /api/expenses/auto-create  — create an expense from OCR-processed data

Checks run in this order: content type (415), caller rate limit (429),
webhook signature when ``OCR_WEBHOOK_SECRET`` is set (401), then request
validation (400).  Responses keep the automation-facing wire contract
``{success, ...}`` rather than the REST API error envelope.
"""

import logging
from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify, request

from sitebooks.core import results
from sitebooks.core.exceptions import RateLimitExceeded
from sitebooks.services import ocr_ingestion_service
from sitebooks.utils.errors import E

logger = logging.getLogger(__name__)

ocr_bp = Blueprint("ocr", __name__, url_prefix="/api/expenses")


def _failure(status: int, error: str, code: str, **extra):
    body = {"success": False, "error": error, "code": code}
    body.update(extra)
    return jsonify(body), status


def _caller_identifier() -> str:
    return request.headers.get("X-Webhook-Source") or request.remote_addr or "unknown"


@ocr_bp.errorhandler(RateLimitExceeded)
def _rate_limited(e):
    logger.warning("OCR rate limit exceeded for %s", e.identifier)
    return _failure(
        429,
        f"Rate limit of {e.limit} requests per {e.window_ms}ms exceeded",
        E.RATE_LIMIT_EXCEEDED,
    )


@ocr_bp.route("/auto-create", methods=["POST"])
def auto_create_expense():
    if request.mimetype != "application/json":
        return _failure(415, "Content-Type must be application/json", E.UNSUPPORTED_MEDIA_TYPE)

    caller = _caller_identifier()
    current_app.extensions["ocr_rate_limiter"].check(caller)

    secret = current_app.config.get("OCR_WEBHOOK_SECRET")
    if secret and not ocr_ingestion_service.verify_webhook_signature(
        request.get_data(cache=True), request.headers.get("X-Webhook-Signature"), secret,
    ):
        logger.warning("OCR webhook signature rejected for %s", caller)
        return _failure(401, "Invalid webhook signature", E.INVALID_SIGNATURE)

    payload = request.get_json(silent=True)
    if payload is None:
        return _failure(
            400, "Validation failed", E.VALIDATION_ERROR,
            validationErrors=[{"field": "body", "message": "Request body must be valid JSON"}],
        )

    outcome = ocr_ingestion_service.ingest_ocr_expense(payload)

    if isinstance(outcome, results.Ok):
        return jsonify(outcome.value.to_response()), 201

    if isinstance(outcome, results.ValidationFailure):
        return _failure(400, outcome.message, E.VALIDATION_ERROR, validationErrors=outcome.to_list())

    return _failure(
        500,
        outcome.message or "Failed to create expense",
        E.INTERNAL_ERROR,
        details={
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "errorType": outcome.error_type,
        },
    )
