"""
Progress certificate blueprint.

Endpoints:
    GET    /api/v1/progress-certificates                — filtered, paginated list
    POST   /api/v1/progress-certificates                — create draft
    GET    /api/v1/progress-certificates/pending        — awaiting approval
    GET    /api/v1/progress-certificates/stats          — totals + average approval time
    GET    /api/v1/progress-certificates/<id>
    PUT    /api/v1/progress-certificates/<id>           — edit draft
    DELETE /api/v1/progress-certificates/<id>           — delete draft
    POST   /api/v1/progress-certificates/<id>/submit
    POST   /api/v1/progress-certificates/<id>/approve
    POST   /api/v1/progress-certificates/<id>/reject
    POST   /api/v1/progress-certificates/<id>/mark-paid
    GET    /api/v1/progress-certificates/<id>/payment   — payment instruction
    POST   /api/v1/progress-certificates/calculate      — preview net payable
"""

from flask import Blueprint, jsonify, request

from sitebooks.blueprints import current_user, json_body, page_args
from sitebooks.core.exceptions import ValidationError
from sitebooks.services import progress_certificate_service as svc
from sitebooks.services import subcontract_service
from sitebooks.utils.sanitize import sanitize_number

certificate_bp = Blueprint("certificates", __name__, url_prefix="/api/v1/progress-certificates")


@certificate_bp.route("", methods=["GET"])
def list_certificates():
    filters = {k: request.args.get(k) for k in ("project_id", "subcontract_id", "status", "start_date", "end_date")}
    page, per_page = page_args()
    return jsonify(svc.query_certificates(filters, page, per_page))


@certificate_bp.route("", methods=["POST"])
def create_certificate():
    cert = svc.create_certificate(json_body(), current_user())
    return jsonify(cert.to_dict()), 201


@certificate_bp.route("/pending", methods=["GET"])
def pending_certificates():
    certs = svc.get_pending_certificates(request.args.get("project_id"))
    return jsonify({"certificates": [c.to_dict() for c in certs], "total": len(certs)})


@certificate_bp.route("/stats", methods=["GET"])
def certificate_stats():
    return jsonify(svc.get_certificate_stats(request.args.get("project_id"), request.args.get("subcontract_id")))


@certificate_bp.route("/calculate", methods=["POST"])
def calculate():
    data = json_body()
    sc = subcontract_service.get_subcontract(data.get("subcontract_id"))
    amount = sanitize_number(data.get("amount_certified"), 0)
    if amount is None:
        raise ValidationError.for_field("amount_certified", "amount_certified must be a number >= 0")
    return jsonify(svc.calculate_net_payable(sc, amount))


@certificate_bp.route("/<certificate_id>", methods=["GET"])
def get_certificate(certificate_id):
    return jsonify(svc.get_certificate(certificate_id).to_dict())


@certificate_bp.route("/<certificate_id>", methods=["PUT"])
def update_certificate(certificate_id):
    return jsonify(svc.update_certificate(certificate_id, json_body(), current_user()).to_dict())


@certificate_bp.route("/<certificate_id>", methods=["DELETE"])
def delete_certificate(certificate_id):
    svc.delete_certificate(certificate_id, current_user())
    return jsonify({"message": "Certificate deleted", "id": certificate_id})


@certificate_bp.route("/<certificate_id>/submit", methods=["POST"])
def submit_certificate(certificate_id):
    return jsonify(svc.submit_certificate(certificate_id, current_user()).to_dict())


@certificate_bp.route("/<certificate_id>/approve", methods=["POST"])
def approve_certificate(certificate_id):
    data = json_body()
    return jsonify(svc.approve_certificate(certificate_id, current_user(), data.get("notes")).to_dict())


@certificate_bp.route("/<certificate_id>/reject", methods=["POST"])
def reject_certificate(certificate_id):
    data = json_body()
    return jsonify(svc.reject_certificate(certificate_id, current_user(), data.get("reason")).to_dict())


@certificate_bp.route("/<certificate_id>/mark-paid", methods=["POST"])
def mark_paid(certificate_id):
    data = json_body()
    return jsonify(svc.mark_as_paid(certificate_id, data.get("payment_id"), current_user()).to_dict())


@certificate_bp.route("/<certificate_id>/payment", methods=["GET"])
def payment_instruction(certificate_id):
    return jsonify(svc.create_payment_from_certificate(certificate_id))
