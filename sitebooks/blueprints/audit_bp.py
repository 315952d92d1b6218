"""
Audit ledger blueprint (read-only).

Endpoints:
    GET  /api/v1/audit-logs                               — list / filter audit logs
    GET  /api/v1/audit-logs/stats                         — aggregate statistics
    GET  /api/v1/audit-logs/recent                        — latest entries
    GET  /api/v1/audit-logs/critical                      — latest critical entries
    GET  /api/v1/audit-logs/actions                       — known action names
    GET  /api/v1/audit-logs/export?format=json|csv|xlsx   — download
    GET  /api/v1/audit-logs/entity/<type>/<id>            — history of one entity
    GET  /api/v1/audit-logs/<int:log_id>                  — single audit entry

Filter query params (list, stats, export):
    start_date, end_date, entity_type, entity_id, project_id, user_id,
    severity, search, action (repeatable or comma-separated), tag (same)
"""

from flask import Blueprint, Response, jsonify, request

from sitebooks.blueprints import page_args
from sitebooks.services import audit_service

audit_bp = Blueprint("audit", __name__, url_prefix="/api/v1/audit-logs")


def _multi(name: str) -> list[str]:
    values = []
    for raw in request.args.getlist(name):
        values.extend(v.strip() for v in raw.split(",") if v.strip())
    return values


def _filters() -> dict:
    filters = {k: request.args.get(k) for k in (
        "start_date", "end_date", "entity_type", "entity_id", "project_id", "user_id", "severity", "search",
    )}
    filters["actions"] = _multi("action")
    filters["tags"] = _multi("tag")
    return filters


@audit_bp.route("", methods=["GET"])
def list_audit_logs():
    page, per_page = page_args()
    return jsonify(audit_service.query_audit_logs(_filters(), page, per_page))


@audit_bp.route("/stats", methods=["GET"])
def audit_stats():
    return jsonify(audit_service.get_audit_stats(_filters()))


@audit_bp.route("/recent", methods=["GET"])
def recent_activity():
    limit = min(100, max(1, request.args.get("limit", 10, type=int)))
    return jsonify(audit_service.get_recent_activity(limit, request.args.get("project_id")))


@audit_bp.route("/critical", methods=["GET"])
def critical_events():
    limit = min(100, max(1, request.args.get("limit", 10, type=int)))
    return jsonify(audit_service.get_critical_events(limit, request.args.get("project_id")))


@audit_bp.route("/actions", methods=["GET"])
def actions():
    return jsonify(audit_service.known_actions())


@audit_bp.route("/export", methods=["GET"])
def export_audit_logs():
    payload, mimetype, filename = audit_service.export_audit_logs(
        _filters(), request.args.get("format", "json").lower(),
    )
    return Response(
        payload,
        mimetype=mimetype,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@audit_bp.route("/entity/<entity_type>/<entity_id>", methods=["GET"])
def entity_history(entity_type, entity_id):
    return jsonify(audit_service.get_entity_history(entity_type, entity_id))


@audit_bp.route("/<int:log_id>", methods=["GET"])
def get_audit_log(log_id):
    return jsonify(audit_service.get_audit_log(log_id).to_dict())
