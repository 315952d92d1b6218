"""
Retention holdback blueprint.

Endpoints:
    GET  /api/v1/holdbacks                                   — list (project_id, subcontract_id, status)
    GET  /api/v1/holdbacks/aging                             — outstanding balance by age bucket
    GET  /api/v1/holdbacks/stats
    GET  /api/v1/holdbacks/<id>
    POST /api/v1/holdbacks/<id>/releases                     — request a release
    POST /api/v1/holdbacks/<id>/releases/<rid>/approve
    POST /api/v1/holdbacks/<id>/releases/<rid>/reject
"""

from flask import Blueprint, jsonify, request

from sitebooks.blueprints import current_user, json_body
from sitebooks.services import holdback_service as svc

holdback_bp = Blueprint("holdbacks", __name__, url_prefix="/api/v1/holdbacks")


@holdback_bp.route("", methods=["GET"])
def list_holdbacks():
    filters = {k: request.args.get(k) for k in ("project_id", "subcontract_id", "status")}
    holdbacks = svc.list_holdbacks(filters)
    return jsonify({"holdbacks": [h.to_dict() for h in holdbacks], "total": len(holdbacks)})


@holdback_bp.route("/aging", methods=["GET"])
def aging():
    return jsonify(svc.get_holdback_aging(request.args.get("project_id")))


@holdback_bp.route("/stats", methods=["GET"])
def stats():
    return jsonify(svc.get_holdback_stats(request.args.get("project_id")))


@holdback_bp.route("/<holdback_id>", methods=["GET"])
def get_holdback(holdback_id):
    return jsonify(svc.get_holdback(holdback_id).to_dict())


@holdback_bp.route("/<holdback_id>/releases", methods=["POST"])
def request_release(holdback_id):
    release = svc.request_release(holdback_id, json_body(), current_user())
    return jsonify(release.to_dict()), 201


@holdback_bp.route("/<holdback_id>/releases/<release_id>/approve", methods=["POST"])
def approve_release(holdback_id, release_id):
    data = json_body()
    holdback = svc.approve_release(
        holdback_id, release_id, current_user(),
        payment_reference=data.get("payment_reference"), notes=data.get("notes"),
    )
    return jsonify(holdback.to_dict())


@holdback_bp.route("/<holdback_id>/releases/<release_id>/reject", methods=["POST"])
def reject_release(holdback_id, release_id):
    data = json_body()
    release = svc.reject_release(holdback_id, release_id, current_user(), data.get("reason"))
    return jsonify(release.to_dict())
