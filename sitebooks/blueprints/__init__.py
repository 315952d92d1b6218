"""
SiteBooks blueprint registry.

Request helpers shared by the blueprints.  Blueprints never catch service
exceptions; the handlers registered in ``create_app`` turn them into JSON.
"""

from flask import request
from werkzeug.exceptions import BadRequest


def current_user() -> str:
    """Acting user from the ``X-User`` header (no auth enforcement)."""
    return (
        request.headers.get("X-User", "").strip()
        or request.headers.get("X-Forwarded-User", "").strip()
        or "anonymous"
    )


def json_body() -> dict:
    """Return the JSON object body, ``{}`` when empty.  Malformed JSON → 400."""
    if not request.get_data(cache=True):
        return {}
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise BadRequest("Request body must be a JSON object")
    return data


def page_args() -> tuple[int, int]:
    return (
        request.args.get("page", 1, type=int),
        request.args.get("per_page", 50, type=int),
    )


def bool_arg(name: str):
    """``?name=true|false`` → True/False; absent or anything else → None."""
    value = request.args.get(name)
    if value is None:
        return None
    value = value.strip().lower()
    if value in ("1", "true", "yes"):
        return True
    if value in ("0", "false", "no"):
        return False
    return None
