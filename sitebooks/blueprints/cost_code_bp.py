"""
Cost code catalog blueprint.

Endpoints:
    GET    /api/v1/cost-codes              — list (division, category, type, is_active, search)
    POST   /api/v1/cost-codes              — create
    GET    /api/v1/cost-codes/hierarchy    — division → category → codes
    GET    /api/v1/cost-codes/suggest      — ?description=...&limit=5
    GET    /api/v1/cost-codes/stats
    POST   /api/v1/cost-codes/seed         — insert the default catalog
    GET    /api/v1/cost-codes/<id>
    PUT    /api/v1/cost-codes/<id>
    DELETE /api/v1/cost-codes/<id>
"""

from flask import Blueprint, jsonify, request

from sitebooks.blueprints import bool_arg, current_user, json_body
from sitebooks.services import cost_code_service as svc
from sitebooks.utils.helpers import commit_or_raise

cost_code_bp = Blueprint("cost_codes", __name__, url_prefix="/api/v1/cost-codes")


@cost_code_bp.route("", methods=["GET"])
def list_cost_codes():
    filters = {k: request.args.get(k) for k in ("division", "category", "type", "search")}
    filters["is_active"] = bool_arg("is_active")
    codes = svc.list_cost_codes(filters)
    return jsonify({"cost_codes": [c.to_dict() for c in codes], "total": len(codes)})


@cost_code_bp.route("", methods=["POST"])
def create_cost_code():
    return jsonify(svc.create_cost_code(json_body(), current_user()).to_dict()), 201


@cost_code_bp.route("/hierarchy", methods=["GET"])
def hierarchy():
    return jsonify(svc.get_cost_code_hierarchy())


@cost_code_bp.route("/suggest", methods=["GET"])
def suggest():
    limit = min(20, max(1, request.args.get("limit", 5, type=int)))
    codes = svc.suggest_cost_codes(request.args.get("description", ""), limit)
    return jsonify({"suggestions": [c.to_dict() for c in codes]})


@cost_code_bp.route("/stats", methods=["GET"])
def stats():
    return jsonify(svc.get_cost_code_stats())


@cost_code_bp.route("/seed", methods=["POST"])
def seed():
    created = svc.seed_default_cost_codes(current_user())
    commit_or_raise()
    return jsonify({"created": created}), 201 if created else 200


@cost_code_bp.route("/<cost_code_id>", methods=["GET"])
def get_cost_code(cost_code_id):
    return jsonify(svc.get_cost_code(cost_code_id).to_dict())


@cost_code_bp.route("/<cost_code_id>", methods=["PUT"])
def update_cost_code(cost_code_id):
    return jsonify(svc.update_cost_code(cost_code_id, json_body(), current_user()).to_dict())


@cost_code_bp.route("/<cost_code_id>", methods=["DELETE"])
def delete_cost_code(cost_code_id):
    svc.delete_cost_code(cost_code_id, current_user())
    return jsonify({"message": "Cost code deleted", "id": cost_code_id})
