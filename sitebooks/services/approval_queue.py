"""
Expense approval queue.

Holds two views of the expense store, the ``pending`` approvals and the
expenses flagged ``needs_review``, and keeps them consistent with the
workflow transitions it drives.  Views hold ``Expense.to_dict()`` snapshots.

Every approve/reject removes the affected ids from both views in a single
``_discard`` call.  Bulk calls remove only the ids the store actually
transitioned; ids that failed stay where they were.

Store errors are recorded on ``error`` and re-raised.  ``loading`` is true
while a store call is in flight.
"""

import logging

from sitebooks.services import expense_service

logger = logging.getLogger(__name__)


class CancellationToken:
    """Signals that the caller no longer wants the result applied to the views."""

    def __init__(self):
        self._cancelled = False

    def cancel(self):
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class ExpenseApprovalQueue:
    def __init__(self, project_id: str | None = None, include_needs_review: bool = True):
        self.project_id = project_id
        self.include_needs_review = include_needs_review
        self.pending: list[dict] = []
        self.needs_review: list[dict] = []
        self.loading = False
        self.error: str | None = None

    # ── internals ────────────────────────────────────────────────────────

    def _run(self, label, call, token=None, apply=None):
        """Run a store call with loading/error bookkeeping.

        ``apply`` receives the store result and mutates the views; it is
        skipped when ``token`` was cancelled while the call was in flight.
        """
        self.loading = True
        self.error = None
        try:
            result = call()
        except Exception as exc:
            self.error = str(exc)
            logger.warning("Approval queue %s failed: %s", label, exc)
            raise
        finally:
            self.loading = False

        if token is not None and token.cancelled:
            logger.debug("Approval queue %s cancelled; views left untouched", label)
            return result
        if apply is not None:
            apply(result)
        return result

    def _discard(self, ids):
        ids = set(ids)
        self.pending = [e for e in self.pending if e["id"] not in ids]
        self.needs_review = [e for e in self.needs_review if e["id"] not in ids]

    # ── public API ───────────────────────────────────────────────────────

    def refresh(self, token: CancellationToken | None = None):
        def load():
            pending = expense_service.get_pending_approvals(self.project_id)
            review = (expense_service.get_expenses_needing_review(self.project_id)
                      if self.include_needs_review else [])
            return [e.to_dict() for e in pending], [e.to_dict() for e in review]

        def apply(views):
            self.pending, self.needs_review = views

        self._run("refresh", load, token, apply)
        return self

    def approve(self, expense_id: str, approver_id: str, notes: str | None = None,
                token: CancellationToken | None = None):
        return self._run(
            "approve",
            lambda: expense_service.approve_expense(expense_id, approver_id, notes),
            token,
            lambda expense: self._discard([expense.id]),
        )

    def reject(self, expense_id: str, rejector_id: str, reason: str,
               token: CancellationToken | None = None):
        return self._run(
            "reject",
            lambda: expense_service.reject_expense(expense_id, rejector_id, reason),
            token,
            lambda expense: self._discard([expense.id]),
        )

    def bulk_approve(self, expense_ids, approver_id: str, notes: str | None = None,
                     token: CancellationToken | None = None):
        return self._run(
            "bulk_approve",
            lambda: expense_service.bulk_approve_expenses(expense_ids, approver_id, notes),
            token,
            lambda outcome: self._discard(outcome.succeeded_ids),
        )

    def bulk_reject(self, expense_ids, rejector_id: str, reason: str,
                    token: CancellationToken | None = None):
        return self._run(
            "bulk_reject",
            lambda: expense_service.bulk_reject_expenses(expense_ids, rejector_id, reason),
            token,
            lambda outcome: self._discard(outcome.succeeded_ids),
        )

    def get_expense(self, expense_id: str) -> dict | None:
        for view in (self.pending, self.needs_review):
            for expense in view:
                if expense["id"] == expense_id:
                    return expense
        return None

    def to_dict(self) -> dict:
        return {
            "pending": self.pending,
            "needs_review": self.needs_review,
            "loading": self.loading,
            "error": self.error,
        }
