"""
Expense blueprint.

Endpoints:
    GET    /api/v1/expenses                         — filtered, paginated list
    POST   /api/v1/expenses                         — manual entry (draft)
    GET    /api/v1/expenses/stats                   — totals by status
    GET    /api/v1/expenses/<id>                    — single expense (with OCR data)
    PUT    /api/v1/expenses/<id>                    — edit draft / pending
    DELETE /api/v1/expenses/<id>                    — soft-delete a draft
    POST   /api/v1/expenses/<id>/classify           — set project / cost code, clear review flag
    POST   /api/v1/expenses/<id>/review             — confirm OCR data, clear review flag
    POST   /api/v1/expenses/<id>/submit             — draft → pending_approval
    POST   /api/v1/expenses/<id>/approve            — pending_approval → approved
    POST   /api/v1/expenses/<id>/reject             — pending_approval → rejected
    POST   /api/v1/expenses/<id>/payments           — record a payment
    GET    /api/v1/expenses/approvals               — pending + needs-review queue
    POST   /api/v1/expenses/approvals/bulk-approve  — approve many, partial success
    POST   /api/v1/expenses/approvals/bulk-reject   — reject many, partial success
"""

from flask import Blueprint, jsonify, request

from sitebooks.blueprints import bool_arg, current_user, json_body, page_args
from sitebooks.core.exceptions import ValidationError
from sitebooks.services import expense_service
from sitebooks.services.approval_queue import ExpenseApprovalQueue

expense_bp = Blueprint("expenses", __name__, url_prefix="/api/v1/expenses")

_FILTER_KEYS = ("project_id", "cost_code_id", "supplier_id", "status", "start_date",
                "end_date", "min_amount", "max_amount", "search")


@expense_bp.route("", methods=["GET"])
def list_expenses():
    filters = {k: request.args.get(k) for k in _FILTER_KEYS if request.args.get(k)}
    filters["needs_review"] = bool_arg("needs_review")
    filters["is_auto_created"] = bool_arg("is_auto_created")
    page, per_page = page_args()
    return jsonify(expense_service.query_expenses(filters, page, per_page))


@expense_bp.route("", methods=["POST"])
def create_expense():
    expense, warnings = expense_service.create_expense(json_body(), current_user())
    return jsonify({"expense": expense.to_dict(), "warnings": warnings}), 201


@expense_bp.route("/stats", methods=["GET"])
def expense_stats():
    return jsonify(expense_service.get_expense_stats(request.args.get("project_id")))


@expense_bp.route("/<expense_id>", methods=["GET"])
def get_expense(expense_id):
    return jsonify(expense_service.get_expense(expense_id).to_dict(include_ocr=True))


@expense_bp.route("/<expense_id>", methods=["PUT"])
def update_expense(expense_id):
    expense = expense_service.update_expense(expense_id, json_body(), current_user())
    return jsonify(expense.to_dict())


@expense_bp.route("/<expense_id>", methods=["DELETE"])
def delete_expense(expense_id):
    expense_service.delete_expense(expense_id, current_user())
    return jsonify({"message": "Expense deleted", "id": expense_id})


@expense_bp.route("/<expense_id>/classify", methods=["POST"])
def classify_expense(expense_id):
    expense = expense_service.classify_expense(expense_id, json_body(), current_user())
    return jsonify(expense.to_dict())


@expense_bp.route("/<expense_id>/review", methods=["POST"])
def confirm_review(expense_id):
    data = json_body()
    expense = expense_service.confirm_review(expense_id, current_user(), data.get("notes"))
    return jsonify(expense.to_dict())


@expense_bp.route("/<expense_id>/submit", methods=["POST"])
def submit_expense(expense_id):
    return jsonify(expense_service.submit_for_approval(expense_id, current_user()).to_dict())


@expense_bp.route("/<expense_id>/approve", methods=["POST"])
def approve_expense(expense_id):
    data = json_body()
    expense = expense_service.approve_expense(expense_id, current_user(), data.get("notes"))
    return jsonify(expense.to_dict())


@expense_bp.route("/<expense_id>/reject", methods=["POST"])
def reject_expense(expense_id):
    data = json_body()
    expense = expense_service.reject_expense(expense_id, current_user(), data.get("reason"))
    return jsonify(expense.to_dict())


@expense_bp.route("/<expense_id>/payments", methods=["POST"])
def record_payment(expense_id):
    expense = expense_service.record_payment(expense_id, json_body(), current_user())
    return jsonify(expense.to_dict()), 201


# ── Approval queue ───────────────────────────────────────────────────────────

def _queue() -> ExpenseApprovalQueue:
    return ExpenseApprovalQueue(
        project_id=request.args.get("project_id"),
        include_needs_review=bool_arg("include_needs_review") is not False,
    )


def _ids(data: dict) -> list[str]:
    ids = data.get("ids") or data.get("expense_ids")
    if not isinstance(ids, list) or not ids or not all(isinstance(i, str) for i in ids):
        raise ValidationError.for_field("ids", "ids must be a non-empty list of expense ids")
    return ids


@expense_bp.route("/approvals", methods=["GET"])
def approval_queue():
    queue = _queue().refresh()
    body = queue.to_dict()
    body["counts"] = {"pending": len(queue.pending), "needs_review": len(queue.needs_review)}
    return jsonify(body)


@expense_bp.route("/approvals/bulk-approve", methods=["POST"])
def bulk_approve():
    data = json_body()
    queue = _queue().refresh()
    outcome = queue.bulk_approve(_ids(data), current_user(), data.get("notes"))
    return jsonify({
        "approved": [e.to_dict() for e in outcome.succeeded],
        "failed": outcome.failed,
        "queue": queue.to_dict(),
    })


@expense_bp.route("/approvals/bulk-reject", methods=["POST"])
def bulk_reject():
    data = json_body()
    queue = _queue().refresh()
    outcome = queue.bulk_reject(_ids(data), current_user(), data.get("reason") or "")
    return jsonify({
        "rejected": [e.to_dict() for e in outcome.succeeded],
        "failed": outcome.failed,
        "queue": queue.to_dict(),
    })
