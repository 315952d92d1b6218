"""
Expense approval queue and bulk operations.

Covers:
  - refresh loads pending + needs-review views
  - approve / reject remove the id from both views
  - bulk approve with partial failure: only successes leave the views,
    exactly one audit entry per approved expense
  - cancellation token leaves views untouched
  - store errors recorded on ``error`` and re-raised, ``loading`` reset
  - REST bulk endpoints
"""

import pytest

from conftest import make_expense, ocr_payload
from sitebooks.core.exceptions import InvalidStateTransition
from sitebooks.models import db
from sitebooks.models.audit import AuditLog
from sitebooks.models.expense import Expense
from sitebooks.services import expense_service
from sitebooks.services.approval_queue import CancellationToken, ExpenseApprovalQueue
from sitebooks.services.ocr_ingestion_service import build_ocr_input


@pytest.fixture()
def valid_a(cost_code):
    return make_expense(cost_code, invoice_number="INV-A")


@pytest.fixture()
def valid_b(cost_code):
    return make_expense(cost_code, invoice_number="INV-B")


@pytest.fixture()
def flagged(cost_code):
    """Pending OCR expense that still needs review (cannot be approved)."""
    return expense_service.create_expense_from_ocr(
        build_ocr_input(ocr_payload(ocrData={"confidence": 0.5}))
    )


def _ids(view):
    return {e["id"] for e in view}


class TestQueueViews:
    def test_refresh_loads_both_views(self, valid_a, flagged):
        queue = ExpenseApprovalQueue().refresh()
        assert _ids(queue.pending) == {valid_a.id, flagged.id}
        assert _ids(queue.needs_review) == {flagged.id}
        assert queue.loading is False
        assert queue.error is None

    def test_needs_review_view_optional(self, valid_a, flagged):
        queue = ExpenseApprovalQueue(include_needs_review=False).refresh()
        assert queue.needs_review == []

    def test_approve_removes_from_views(self, valid_a, valid_b):
        queue = ExpenseApprovalQueue().refresh()
        queue.approve(valid_a.id, "director")
        assert _ids(queue.pending) == {valid_b.id}
        assert queue.get_expense(valid_a.id) is None

    def test_reject_removes_from_both_views(self, flagged):
        queue = ExpenseApprovalQueue().refresh()
        queue.reject(flagged.id, "director", "Unreadable scan")
        assert queue.pending == []
        assert queue.needs_review == []


class TestBulk:
    def test_partial_success(self, valid_a, flagged, valid_b):
        queue = ExpenseApprovalQueue().refresh()
        outcome = queue.bulk_approve([valid_a.id, flagged.id, valid_b.id], "director")

        assert set(outcome.succeeded_ids) == {valid_a.id, valid_b.id}
        assert [f["id"] for f in outcome.failed] == [flagged.id]
        assert _ids(queue.pending) == {flagged.id}
        assert _ids(queue.needs_review) == {flagged.id}

        assert AuditLog.query.filter_by(action="expense_approved").count() == 2
        assert db.session.get(Expense, flagged.id).status == "pending_approval"

    def test_unknown_and_duplicate_ids(self, valid_a):
        outcome = expense_service.bulk_approve_expenses([valid_a.id, "ghost", valid_a.id], "director")
        assert outcome.succeeded_ids == [valid_a.id]
        assert outcome.failed == [{"id": "ghost", "error": "Expense id=ghost not found"}]
        assert AuditLog.query.filter_by(action="expense_approved").count() == 1

    def test_bulk_reject_without_reason_fails_each(self, valid_a, valid_b):
        outcome = expense_service.bulk_reject_expenses([valid_a.id, valid_b.id], "director", "")
        assert outcome.succeeded == []
        assert len(outcome.failed) == 2
        assert db.session.get(Expense, valid_a.id).status == "pending_approval"

    def test_bulk_reject(self, valid_a, valid_b):
        queue = ExpenseApprovalQueue().refresh()
        outcome = queue.bulk_reject([valid_a.id, valid_b.id], "director", "Duplicate batch")
        assert len(outcome.succeeded) == 2
        assert queue.pending == []


class TestCancellationAndErrors:
    def test_cancelled_call_leaves_views(self, valid_a):
        queue = ExpenseApprovalQueue().refresh()
        token = CancellationToken()
        token.cancel()
        queue.approve(valid_a.id, "director", token=token)

        assert db.session.get(Expense, valid_a.id).status == "approved"
        assert queue.get_expense(valid_a.id) is not None

    def test_cancelled_refresh_keeps_old_views(self, valid_a):
        queue = ExpenseApprovalQueue()
        token = CancellationToken()
        token.cancel()
        queue.refresh(token)
        assert queue.pending == []

    def test_error_recorded_and_reraised(self, valid_a):
        queue = ExpenseApprovalQueue().refresh()
        queue.approve(valid_a.id, "director")
        with pytest.raises(InvalidStateTransition):
            queue.approve(valid_a.id, "director")
        assert "approved" in queue.error
        assert queue.loading is False

    def test_error_cleared_on_next_call(self, valid_a, valid_b):
        queue = ExpenseApprovalQueue().refresh()
        queue.reject(valid_a.id, "director", "Wrong project")
        with pytest.raises(InvalidStateTransition):
            queue.reject(valid_a.id, "director", "Again")
        assert queue.error is not None
        queue.approve(valid_b.id, "director")
        assert queue.error is None


class TestQueueAPI:
    def test_get_queue(self, client, valid_a, flagged):
        res = client.get("/api/v1/expenses/approvals")
        assert res.status_code == 200
        body = res.get_json()
        assert body["counts"] == {"pending": 2, "needs_review": 1}

    def test_bulk_approve_endpoint(self, client, valid_a, flagged, valid_b):
        res = client.post("/api/v1/expenses/approvals/bulk-approve",
                          json={"ids": [valid_a.id, flagged.id, valid_b.id]},
                          headers={"X-User": "director"})
        assert res.status_code == 200
        body = res.get_json()
        assert {e["id"] for e in body["approved"]} == {valid_a.id, valid_b.id}
        assert [f["id"] for f in body["failed"]] == [flagged.id]
        assert [e["id"] for e in body["queue"]["pending"]] == [flagged.id]

    def test_bulk_requires_ids(self, client):
        res = client.post("/api/v1/expenses/approvals/bulk-approve", json={"ids": []})
        assert res.status_code == 422

    def test_bulk_reject_endpoint(self, client, valid_a):
        res = client.post("/api/v1/expenses/approvals/bulk-reject",
                          json={"ids": [valid_a.id], "reason": "Not ours"})
        assert res.status_code == 200
        assert len(res.get_json()["rejected"]) == 1
