"""
Subcontract blueprint.

Endpoints:
    GET    /api/v1/subcontracts                      — filtered, paginated list
    POST   /api/v1/subcontracts                      — create draft (with payment schedule)
    GET    /api/v1/subcontracts/stats
    GET    /api/v1/subcontracts/<id>                 — with schedule items
    PUT    /api/v1/subcontracts/<id>
    DELETE /api/v1/subcontracts/<id>
    POST   /api/v1/subcontracts/<id>/approve         — draft → active
    POST   /api/v1/subcontracts/<id>/complete        — active → completed
    POST   /api/v1/subcontracts/<id>/cancel
    GET    /api/v1/subcontracts/<id>/certificates
    GET    /api/v1/subcontracts/<id>/retention
"""

from flask import Blueprint, jsonify, request

from sitebooks.blueprints import current_user, json_body, page_args
from sitebooks.services import progress_certificate_service, subcontract_service as svc

subcontract_bp = Blueprint("subcontracts", __name__, url_prefix="/api/v1/subcontracts")


@subcontract_bp.route("", methods=["GET"])
def list_subcontracts():
    filters = {k: request.args.get(k) for k in ("project_id", "subcontractor_id", "status", "search")}
    page, per_page = page_args()
    return jsonify(svc.query_subcontracts(filters, page, per_page))


@subcontract_bp.route("", methods=["POST"])
def create_subcontract():
    sc = svc.create_subcontract(json_body(), current_user())
    return jsonify(sc.to_dict(include_schedule=True)), 201


@subcontract_bp.route("/stats", methods=["GET"])
def subcontract_stats():
    return jsonify(svc.get_subcontract_stats(request.args.get("project_id")))


@subcontract_bp.route("/<subcontract_id>", methods=["GET"])
def get_subcontract(subcontract_id):
    return jsonify(svc.get_subcontract(subcontract_id).to_dict(include_schedule=True))


@subcontract_bp.route("/<subcontract_id>", methods=["PUT"])
def update_subcontract(subcontract_id):
    return jsonify(svc.update_subcontract(subcontract_id, json_body(), current_user()).to_dict())


@subcontract_bp.route("/<subcontract_id>", methods=["DELETE"])
def delete_subcontract(subcontract_id):
    svc.delete_subcontract(subcontract_id, current_user())
    return jsonify({"message": "Subcontract deleted", "id": subcontract_id})


@subcontract_bp.route("/<subcontract_id>/approve", methods=["POST"])
def approve_subcontract(subcontract_id):
    return jsonify(svc.approve_subcontract(subcontract_id, current_user()).to_dict())


@subcontract_bp.route("/<subcontract_id>/complete", methods=["POST"])
def complete_subcontract(subcontract_id):
    return jsonify(svc.complete_subcontract(subcontract_id, current_user()).to_dict())


@subcontract_bp.route("/<subcontract_id>/cancel", methods=["POST"])
def cancel_subcontract(subcontract_id):
    data = json_body()
    return jsonify(svc.cancel_subcontract(subcontract_id, current_user(), data.get("reason")).to_dict())


@subcontract_bp.route("/<subcontract_id>/certificates", methods=["GET"])
def subcontract_certificates(subcontract_id):
    svc.get_subcontract(subcontract_id)
    certs = progress_certificate_service.get_certificates_by_subcontract(subcontract_id)
    return jsonify({"certificates": [c.to_dict() for c in certs], "total": len(certs)})


@subcontract_bp.route("/<subcontract_id>/retention", methods=["GET"])
def retention_balance(subcontract_id):
    return jsonify(svc.get_retention_balance(subcontract_id))
