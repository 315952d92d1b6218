"""
Project income blueprint.

Endpoints:
    GET    /api/v1/incomes               — list (project_id, status)
    POST   /api/v1/incomes               — record income
    GET    /api/v1/incomes/stats         — totals by project / month / category
    GET    /api/v1/incomes/<id>
    PUT    /api/v1/incomes/<id>
    POST   /api/v1/incomes/<id>/cancel
    DELETE /api/v1/incomes/<id>          — pending or cancelled only
"""

from flask import Blueprint, jsonify, request

from sitebooks.blueprints import current_user, json_body
from sitebooks.services import income_service as svc

income_bp = Blueprint("incomes", __name__, url_prefix="/api/v1/incomes")


@income_bp.route("", methods=["GET"])
def list_incomes():
    incomes = svc.list_incomes(request.args.get("project_id"), request.args.get("status"))
    return jsonify({"incomes": [i.to_dict() for i in incomes], "total": len(incomes)})


@income_bp.route("", methods=["POST"])
def create_income():
    return jsonify(svc.create_income(json_body(), current_user()).to_dict()), 201


@income_bp.route("/stats", methods=["GET"])
def income_stats():
    return jsonify(svc.get_income_stats(request.args.get("project_id")))


@income_bp.route("/<income_id>", methods=["GET"])
def get_income(income_id):
    return jsonify(svc.get_income(income_id).to_dict())


@income_bp.route("/<income_id>", methods=["PUT"])
def update_income(income_id):
    return jsonify(svc.update_income(income_id, json_body(), current_user()).to_dict())


@income_bp.route("/<income_id>/cancel", methods=["POST"])
def cancel_income(income_id):
    data = json_body()
    return jsonify(svc.cancel_income(income_id, current_user(), data.get("reason")).to_dict())


@income_bp.route("/<income_id>", methods=["DELETE"])
def delete_income(income_id):
    svc.delete_income(income_id, current_user())
    return jsonify({"message": "Income deleted", "id": income_id})
