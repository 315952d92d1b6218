"""
Expense approval workflow.

Covers:
  - manual create (draft) + warnings, validation errors
  - submit / approve / reject transitions and their audit entries
  - double approval refused with a single audit entry
  - needs_review blocks approval until classified / reviewed
  - budget actuals updated on approval
  - payments (partial → full)
  - soft delete of drafts only
  - REST endpoints for the same flow
"""

import pytest

from conftest import PROJECT_ID, make_cost_code, make_expense, ocr_payload
from sitebooks.core.exceptions import InvalidStateTransition, NotFoundError, ValidationError
from sitebooks.models import db
from sitebooks.models.audit import AuditLog
from sitebooks.models.cost_code import CostCodeBudget
from sitebooks.models.expense import Expense
from sitebooks.services import expense_service
from sitebooks.services.ocr_ingestion_service import build_ocr_input


def _actions(expense_id):
    return [
        log.action
        for log in AuditLog.query.filter_by(entity_id=expense_id).order_by(AuditLog.id)
    ]


def _ocr_expense(**overrides):
    return expense_service.create_expense_from_ocr(build_ocr_input(ocr_payload(**overrides)))


# ═════════════════════════════════════════════════════════════════════════
# CREATE
# ═════════════════════════════════════════════════════════════════════════

class TestCreate:
    def test_manual_expense_starts_as_draft(self, cost_code):
        expense = make_expense(cost_code, submit=False, tax_amount=210)
        assert expense.status == "draft"
        assert expense.total_amount == 1210.0
        assert expense.expense_number == "EXP-00001"
        assert expense.needs_review is False
        assert _actions(expense.id) == ["expense_created"]

    def test_validation_errors_are_collected(self, cost_code):
        with pytest.raises(ValidationError) as exc:
            expense_service.create_expense({"amount": -1, "description": "x"}, "clerk")
        fields = {e["field"] for e in exc.value.errors}
        assert {"project_id", "cost_code_id", "supplier_id", "supplier_name",
                "amount", "description", "invoice_date"} <= fields

    def test_unknown_cost_code(self, cost_code):
        with pytest.raises(ValidationError) as exc:
            make_expense(cost_code, cost_code_id="missing")
        assert exc.value.errors[0]["field"] == "cost_code_id"

    def test_large_amount_warns(self, cost_code):
        _, warnings = expense_service.create_expense({
            "project_id": PROJECT_ID, "cost_code_id": cost_code.id, "supplier_id": "s1",
            "supplier_name": "Acme", "amount": 50000, "description": "Tower crane rental",
            "invoice_date": "2026-03-01",
        }, "clerk")
        assert any("large-expense" in w for w in warnings)
        assert "No invoice number provided" in warnings


# ═════════════════════════════════════════════════════════════════════════
# APPROVAL
# ═════════════════════════════════════════════════════════════════════════

class TestApproval:
    def test_submit_and_approve(self, pending_expense):
        expense = expense_service.approve_expense(pending_expense.id, "director", "ok")
        assert expense.status == "approved"
        assert expense.approved_by == "director"
        assert _actions(expense.id) == ["expense_created", "expense_submitted", "expense_approved"]

        log = AuditLog.query.filter_by(entity_id=expense.id, action="expense_approved").one()
        assert log.financial_impact["amount"] == 1000.0
        assert log.severity == "critical"
        assert log.changes == {"status": {"old": "pending_approval", "new": "approved"}}

    def test_double_approve_is_refused(self, pending_expense):
        expense_service.approve_expense(pending_expense.id, "director")
        with pytest.raises(InvalidStateTransition):
            expense_service.approve_expense(pending_expense.id, "director")
        approvals = AuditLog.query.filter_by(entity_id=pending_expense.id, action="expense_approved").count()
        assert approvals == 1

    def test_draft_cannot_be_approved(self, cost_code):
        draft = make_expense(cost_code, submit=False)
        with pytest.raises(InvalidStateTransition):
            expense_service.approve_expense(draft.id, "director")
        assert db.session.get(Expense, draft.id).status == "draft"

    def test_reject_requires_reason(self, pending_expense):
        with pytest.raises(ValidationError):
            expense_service.reject_expense(pending_expense.id, "director", "   ")
        expense = expense_service.reject_expense(pending_expense.id, "director", "Duplicate invoice")
        assert expense.status == "rejected"
        assert expense.rejection_reason == "Duplicate invoice"

    def test_rejected_is_terminal(self, pending_expense):
        expense_service.reject_expense(pending_expense.id, "director", "Wrong project")
        with pytest.raises(InvalidStateTransition):
            expense_service.approve_expense(pending_expense.id, "director")

    def test_missing_expense(self):
        with pytest.raises(NotFoundError):
            expense_service.approve_expense("nope", "director")

    def test_approval_feeds_budget_actuals(self, budget, pending_expense):
        expense_service.approve_expense(pending_expense.id, "director")
        line = db.session.get(CostCodeBudget, budget.id)
        assert line.actual_amount == 1000.0
        assert line.variance == 9000.0
        assert line.status == "under_budget"


# ═════════════════════════════════════════════════════════════════════════
# REVIEW FLAG
# ═════════════════════════════════════════════════════════════════════════

class TestReview:
    def test_review_blocks_approval(self):
        expense = _ocr_expense(ocrData={"confidence": 0.5})
        assert expense.needs_review is True
        with pytest.raises(InvalidStateTransition) as exc:
            expense_service.approve_expense(expense.id, "director")
        assert "review" in str(exc.value)
        assert "expense_approved" not in _actions(expense.id)

    def test_flagged_expense_can_be_rejected(self):
        expense = _ocr_expense(ocrData={"confidence": 0.5})
        assert expense_service.reject_expense(expense.id, "director", "Illegible").status == "rejected"

    def test_classify_clears_flag_then_approve(self):
        expense = _ocr_expense(ocrData={"confidence": 0.9})
        assert expense.review_reasons == ["missing_cost_code"]
        cc = make_cost_code("07.02.01", "Painting", description="Application of paint", tags=["paint"])

        expense = expense_service.classify_expense(expense.id, {"cost_code_id": cc.id}, "reviewer")
        assert expense.needs_review is False
        assert expense.review_reasons == []
        assert expense_service.approve_expense(expense.id, "director").status == "approved"
        assert _actions(expense.id) == ["expense_created", "expense_classified", "expense_approved"]

    def test_classify_needs_valid_cost_code(self):
        expense = _ocr_expense(ocrData={"confidence": 0.9})
        with pytest.raises(ValidationError):
            expense_service.classify_expense(expense.id, {"cost_code_id": "bogus"}, "reviewer")
        assert db.session.get(Expense, expense.id).needs_review is True

    def test_confirm_review_for_low_confidence(self):
        cc = make_cost_code()
        expense = _ocr_expense(ocrData={"confidence": 0.5}, projectId=PROJECT_ID, costCodeId=cc.id)
        assert expense.review_reasons == ["low_confidence"]
        expense = expense_service.confirm_review(expense.id, "reviewer", notes="Checked against paper copy")
        assert expense.needs_review is False
        assert expense.reviewed_by == "reviewer"

    def test_needing_review_query(self):
        flagged = _ocr_expense(ocrData={"confidence": 0.5})
        ids = [e.id for e in expense_service.get_expenses_needing_review()]
        assert ids == [flagged.id]


# ═════════════════════════════════════════════════════════════════════════
# PAYMENT / DELETE
# ═════════════════════════════════════════════════════════════════════════

class TestPaymentAndDelete:
    def test_partial_then_full_payment(self, pending_expense):
        expense_service.approve_expense(pending_expense.id, "director")
        expense = expense_service.record_payment(pending_expense.id, {"amount": 400, "payment_method": "transfer"}, "ap")
        assert expense.status == "approved"
        assert expense.payment_status == "partial"
        assert expense.outstanding_amount == 600.0

        expense = expense_service.record_payment(pending_expense.id, {"amount": 600}, "ap")
        assert expense.status == "paid"
        assert expense.payment_status == "paid"
        assert _actions(expense.id)[-2:] == ["payment_recorded", "expense_paid"]

    def test_overpayment_refused(self, pending_expense):
        expense_service.approve_expense(pending_expense.id, "director")
        with pytest.raises(ValidationError):
            expense_service.record_payment(pending_expense.id, {"amount": 1000.5}, "ap")

    def test_pending_cannot_be_paid(self, pending_expense):
        with pytest.raises(InvalidStateTransition):
            expense_service.record_payment(pending_expense.id, {"amount": 10}, "ap")

    def test_delete_draft_is_soft(self, cost_code):
        draft = make_expense(cost_code, submit=False)
        expense_service.delete_expense(draft.id, "clerk")
        assert db.session.get(Expense, draft.id).is_deleted
        with pytest.raises(NotFoundError):
            expense_service.get_expense(draft.id)
        assert "expense_deleted" in _actions(draft.id)

    def test_pending_cannot_be_deleted(self, pending_expense):
        with pytest.raises(InvalidStateTransition):
            expense_service.delete_expense(pending_expense.id, "clerk")


# ═════════════════════════════════════════════════════════════════════════
# REST API
# ═════════════════════════════════════════════════════════════════════════

class TestExpenseAPI:
    def test_create_submit_approve(self, client, cost_code):
        res = client.post("/api/v1/expenses", json={
            "project_id": PROJECT_ID, "cost_code_id": cost_code.id, "supplier_id": "s1",
            "supplier_name": "Acme Steel", "amount": 250, "description": "Anchor bolts",
            "invoice_date": "2026-03-02", "invoice_number": "INV-7",
        }, headers={"X-User": "clerk"})
        assert res.status_code == 201
        expense_id = res.get_json()["expense"]["id"]

        res = client.post(f"/api/v1/expenses/{expense_id}/submit", headers={"X-User": "clerk"})
        assert res.status_code == 200
        assert res.get_json()["status"] == "pending_approval"

        res = client.post(f"/api/v1/expenses/{expense_id}/approve", json={"notes": "ok"},
                          headers={"X-User": "director"})
        assert res.status_code == 200
        assert res.get_json()["approved_by"] == "director"

        res = client.post(f"/api/v1/expenses/{expense_id}/approve", headers={"X-User": "director"})
        assert res.status_code == 409
        assert res.get_json()["code"] == "INVALID_STATE_TRANSITION"

    def test_validation_error_is_422(self, client):
        res = client.post("/api/v1/expenses", json={"amount": 5})
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "VALIDATION_ERROR"
        assert body["details"]["errors"]

    def test_oversized_amount_is_field_error(self, client, cost_code):
        res = client.post("/api/v1/expenses", json={
            "project_id": PROJECT_ID, "cost_code_id": cost_code.id, "supplier_id": "s1",
            "supplier_name": "Acme Steel", "amount": 10**400, "description": "Anchor bolts",
            "invoice_date": "2026-03-02",
        })
        assert res.status_code == 422
        fields = {e["field"] for e in res.get_json()["details"]["errors"]}
        assert fields == {"amount"}

    def test_not_found_is_404(self, client):
        res = client.get("/api/v1/expenses/missing")
        assert res.status_code == 404
        assert res.get_json()["code"] == "NOT_FOUND"

    def test_list_filters_needs_review(self, client, pending_expense):
        _ocr_expense(ocrData={"confidence": 0.5})
        res = client.get("/api/v1/expenses?needs_review=true")
        body = res.get_json()
        assert res.status_code == 200
        assert body["total"] == 1
        assert body["expenses"][0]["needs_review"] is True

    def test_stats(self, client, pending_expense):
        res = client.get(f"/api/v1/expenses/stats?project_id={PROJECT_ID}")
        body = res.get_json()
        assert body["total"] == 1
        assert body["pending_amount"] == 1000.0
