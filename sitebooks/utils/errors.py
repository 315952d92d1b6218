"""Standardised API error responses.

Usage
-----
    from sitebooks.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Expense not found")
    return api_error(E.VALIDATION_ERROR, "Validation failed", details={"errors": [...]})
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    The OCR ingestion contract publishes ``VALIDATION_ERROR``,
    ``UNSUPPORTED_MEDIA_TYPE`` and ``INTERNAL_ERROR``; the REST API reuses
    the same vocabulary.
    """

    # Validation – HTTP 400 / 422
    BAD_REQUEST = "BAD_REQUEST"
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Transport
    UNSUPPORTED_MEDIA_TYPE = "UNSUPPORTED_MEDIA_TYPE"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"

    # Not-found – HTTP 404
    NOT_FOUND = "NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_DUPLICATE = "CONFLICT_DUPLICATE"
    INVALID_STATE_TRANSITION = "INVALID_STATE_TRANSITION"

    # Server – HTTP 500
    STORE_FAILURE = "STORE_FAILURE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.BAD_REQUEST: 400,
    E.VALIDATION_ERROR: 422,
    E.UNSUPPORTED_MEDIA_TYPE: 415,
    E.INVALID_SIGNATURE: 401,
    E.RATE_LIMIT_EXCEEDED: 429,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.INVALID_STATE_TRANSITION: 409,
    E.STORE_FAILURE: 500,
    E.INTERNAL_ERROR: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (field errors, current status, ...).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status
