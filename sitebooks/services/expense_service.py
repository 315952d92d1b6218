"""
Expense service — the expense approval workflow.

Transition flow (each step writes one audit entry):
    create (manual)  → draft
    create (OCR)     → pending_approval, needs_review raised when confidence
                       is low or classification could not be resolved
    submit           : draft            → pending_approval
    classify/review  : clears needs_review
    approve          : pending_approval → approved   (refused while needs_review)
    reject           : pending_approval → rejected
    record_payment   : approved         → paid        (partial payments stay approved)

Bulk approve/reject run each id in its own transaction.  Ids that fail are
logged and skipped; the successfully transitioned expenses are returned.
"""

import base64
import binascii
import hashlib
import logging
from collections import Counter
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from sitebooks.core.exceptions import InvalidStateTransition, NotFoundError, StoreFailure, ValidationError
from sitebooks.models import _utcnow, db
from sitebooks.models.audit import record_audit
from sitebooks.models.cost_code import CostCode
from sitebooks.models.expense import (
    PAYMENT_METHODS,
    Expense,
    ExpenseAttachment,
    validate_expense_transition,
)
from sitebooks.services import cost_code_service
from sitebooks.services.code_generator import generate_expense_number
from sitebooks.utils.helpers import commit_or_raise, money, paginated, parse_date
from sitebooks.utils.sanitize import sanitize_number, sanitize_text

logger = logging.getLogger(__name__)

OCR_SUBMITTER = "system-ocr"

_EDITABLE_STATUSES = ("draft", "pending_approval")


@dataclass
class OCRExpenseInput:
    """Normalized OCR intake record handed from the ingestion endpoint to the store."""

    amount: float
    date: str
    supplier: str
    description: str
    confidence: float
    file_name: str
    file_data: str
    file_mime_type: str | None = None
    tax_amount: float = 0.0
    invoice_number: str | None = None
    raw_text: str | None = None
    extracted_fields: dict = field(default_factory=dict)
    processing_time: float | None = None
    provider: str | None = None
    project_id: str | None = None
    cost_code_id: str | None = None
    supplier_id: str | None = None
    source: str = "ocr"
    source_id: str | None = None


@dataclass
class BulkOutcome:
    succeeded: list = field(default_factory=list)
    failed: list = field(default_factory=list)

    @property
    def succeeded_ids(self) -> list[str]:
        return [e.id for e in self.succeeded]


# ── Validation ───────────────────────────────────────────────────────────────

def validate_expense(data: dict) -> tuple[list[dict], list[str]]:
    """
    Check a manual expense payload.

    Returns:
        (errors, warnings) — errors block creation; warnings are advisory.
    """
    errors, warnings = [], []
    for key in ("project_id", "cost_code_id", "supplier_id"):
        if not sanitize_text(data.get(key)):
            errors.append({"field": key, "message": f"{key} is required"})
    if len(sanitize_text(data.get("supplier_name"))) < 2:
        errors.append({"field": "supplier_name", "message": "supplier_name must be at least 2 characters"})

    amount = sanitize_number(data.get("amount"), 0)
    if amount is None or amount <= 0:
        errors.append({"field": "amount", "message": "amount must be greater than 0"})
    if "tax_amount" in data and sanitize_number(data.get("tax_amount"), 0) is None:
        errors.append({"field": "tax_amount", "message": "tax_amount must be a number >= 0"})
    if len(sanitize_text(data.get("description"))) < 5:
        errors.append({"field": "description", "message": "description must be at least 5 characters"})
    if parse_date(data.get("invoice_date")) is None:
        errors.append({"field": "invoice_date", "message": "invoice_date is required (YYYY-MM-DD)"})

    if amount is not None and amount > current_app.config["LARGE_EXPENSE_AMOUNT"]:
        warnings.append("Amount exceeds the large-expense threshold - double-check the invoice")
    if not sanitize_text(data.get("invoice_number")):
        warnings.append("No invoice number provided")
    return errors, warnings


def _classification_snapshot(expense: Expense) -> dict:
    return {
        "project_id": expense.project_id,
        "cost_code_id": expense.cost_code_id,
        "supplier_id": expense.supplier_id,
        "needs_review": expense.needs_review,
    }


def _resolve_cost_code(cost_code_id: str | None) -> CostCode | None:
    if not cost_code_id:
        return None
    return db.session.get(CostCode, cost_code_id)


# ── Create ───────────────────────────────────────────────────────────────────

def create_expense(data: dict, user_id: str) -> tuple[Expense, list[str]]:
    """Create a manual expense in ``draft``.  Returns ``(expense, warnings)``."""
    errors, warnings = validate_expense(data)
    if not errors and _resolve_cost_code(data.get("cost_code_id")) is None:
        errors.append({"field": "cost_code_id", "message": "Unknown cost code"})
    if errors:
        raise ValidationError("Validation failed", errors=errors)

    amount = float(sanitize_number(data["amount"], 0))
    tax = float(sanitize_number(data.get("tax_amount", 0), 0) or 0)
    payment_method = data.get("payment_method")
    expense = Expense(
        expense_number=generate_expense_number(),
        project_id=sanitize_text(data["project_id"], 64),
        cost_code_id=data["cost_code_id"],
        supplier_id=sanitize_text(data["supplier_id"], 64),
        supplier_name=sanitize_text(data["supplier_name"], 255),
        amount=money(amount),
        tax_amount=money(tax),
        total_amount=money(amount + tax),
        currency=data.get("currency") or current_app.config["DEFAULT_CURRENCY"],
        description=sanitize_text(data["description"]),
        invoice_number=sanitize_text(data.get("invoice_number"), 100) or None,
        invoice_date=parse_date(data["invoice_date"]),
        due_date=parse_date(data.get("due_date")),
        payment_method=payment_method if payment_method in PAYMENT_METHODS else None,
        notes=sanitize_text(data.get("notes")) or None,
        tags=[sanitize_text(t, 50) for t in data.get("tags") or [] if isinstance(t, str)],
        status="draft",
        source="manual",
        created_by=user_id,
    )
    db.session.add(expense)
    db.session.flush()

    record_audit(
        action="expense_created",
        entity_type="expense",
        entity_id=expense.id,
        entity_name=expense.expense_number,
        user_id=user_id,
        project_id=expense.project_id,
        new_state={"status": expense.status, "total_amount": expense.total_amount},
        metadata={"source": "manual", "warnings": warnings},
    )
    commit_or_raise()
    return expense, warnings


def _decode_attachment(data: str) -> bytes:
    payload = data.split(",", 1)[1] if data.startswith("data:") and "," in data else data
    try:
        return base64.b64decode("".join(payload.split()), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError.for_field("file.data", "File data must be base64 encoded") from exc


def create_expense_from_ocr(data: OCRExpenseInput, user_id: str = OCR_SUBMITTER) -> Expense:
    """
    Create an expense from OCR intake, straight into ``pending_approval``.

    The store owns the review decision: ``needs_review`` is raised when the
    confidence is below ``OCR_REVIEW_CONFIDENCE_THRESHOLD`` or when project or
    cost code could not be resolved.  Confidence below ``OCR_MIN_CONFIDENCE``
    is rejected outright.
    """
    cfg = current_app.config
    if data.confidence < cfg["OCR_MIN_CONFIDENCE"]:
        raise ValidationError.for_field(
            "ocrData.confidence",
            f"OCR confidence {data.confidence:.2f} is below the minimum of {cfg['OCR_MIN_CONFIDENCE']:.2f}; "
            "enter this expense manually",
        )

    content = _decode_attachment(data.file_data)
    review_reasons = []
    if data.confidence < cfg["OCR_REVIEW_CONFIDENCE_THRESHOLD"]:
        review_reasons.append("low_confidence")

    project_id = data.project_id or cfg.get("DEFAULT_PROJECT_ID") or None
    if not project_id:
        review_reasons.append("missing_project")

    cost_code = _resolve_cost_code(data.cost_code_id)
    if cost_code is None and not data.cost_code_id:
        suggestions = cost_code_service.suggest_cost_codes(data.description, 1)
        cost_code = suggestions[0] if suggestions else None
    if cost_code is None:
        review_reasons.append("missing_cost_code")

    now = _utcnow()
    tax = data.tax_amount or 0.0
    expense = Expense(
        expense_number=generate_expense_number(auto=True),
        project_id=project_id,
        cost_code_id=cost_code.id if cost_code else None,
        supplier_id=data.supplier_id or cfg.get("UNKNOWN_SUPPLIER_ID"),
        supplier_name=data.supplier,
        amount=money(data.amount),
        tax_amount=money(tax),
        total_amount=money(data.amount + tax),
        currency=cfg["DEFAULT_CURRENCY"],
        description=data.description,
        invoice_number=data.invoice_number,
        invoice_date=parse_date(data.date),
        status="pending_approval",
        needs_review=bool(review_reasons),
        review_reasons=review_reasons,
        submitted_by=user_id,
        submitted_at=now,
        is_auto_created=True,
        source=data.source or "ocr",
        source_id=data.source_id,
        ocr_confidence=data.confidence,
        ocr_data={
            "raw_text": data.raw_text,
            "extracted_fields": data.extracted_fields,
            "confidence": data.confidence,
            "processing_time": data.processing_time,
            "provider": data.provider,
            "processed_at": now.isoformat(),
        },
        created_by=user_id,
    )
    expense.attachments.append(ExpenseAttachment(
        name=data.file_name or "document",
        mime_type=data.file_mime_type,
        size=len(content),
        sha256=hashlib.sha256(content).hexdigest(),
        uploaded_by=user_id,
    ))
    db.session.add(expense)
    db.session.flush()

    record_audit(
        action="expense_created",
        entity_type="expense",
        entity_id=expense.id,
        entity_name=expense.expense_number,
        user_id=user_id,
        project_id=expense.project_id,
        new_state={"status": expense.status, "needs_review": expense.needs_review,
                   "total_amount": expense.total_amount},
        metadata={"source": expense.source, "ocr_confidence": data.confidence,
                  "review_reasons": review_reasons, "auto_created": True},
        tags=["ocr"],
    )
    commit_or_raise()
    logger.info(
        "OCR expense %s created (confidence=%.2f, needs_review=%s)",
        expense.expense_number, data.confidence, expense.needs_review,
        extra={"expense_id": expense.id, "project_id": expense.project_id},
    )
    return expense


# ── Read ─────────────────────────────────────────────────────────────────────

def get_expense(expense_id: str) -> Expense:
    expense = Expense.query_active().filter(Expense.id == expense_id).first()
    if expense is None:
        raise NotFoundError(resource="Expense", resource_id=expense_id)
    return expense


def get_pending_approvals(project_id: str | None = None) -> list[Expense]:
    q = Expense.query_active().filter(Expense.status == "pending_approval")
    if project_id:
        q = q.filter(Expense.project_id == project_id)
    return q.order_by(Expense.submitted_at, Expense.created_at).all()


def get_expenses_needing_review(project_id: str | None = None) -> list[Expense]:
    q = Expense.query_active().filter(
        Expense.needs_review.is_(True),
        Expense.status.in_(_EDITABLE_STATUSES),
    )
    if project_id:
        q = q.filter(Expense.project_id == project_id)
    return q.order_by(Expense.created_at).all()


def query_expenses(filters: dict | None = None, page: int = 1, per_page: int = 50) -> dict:
    """
    Filtered, newest-first expense list.

    Filters: project_id, cost_code_id, supplier_id, status, needs_review,
    is_auto_created, start_date / end_date (invoice date), min_amount /
    max_amount (total), search (description, supplier, invoice number).
    """
    filters = filters or {}
    q = Expense.query_active()
    for key in ("project_id", "cost_code_id", "supplier_id", "status"):
        if filters.get(key):
            q = q.filter(getattr(Expense, key) == filters[key])
    for key in ("needs_review", "is_auto_created"):
        if filters.get(key) is not None:
            q = q.filter(getattr(Expense, key).is_(bool(filters[key])))

    start = parse_date(filters.get("start_date"))
    if start:
        q = q.filter(Expense.invoice_date >= start)
    end = parse_date(filters.get("end_date"))
    if end:
        q = q.filter(Expense.invoice_date <= end)
    low = sanitize_number(filters.get("min_amount"), 0)
    if low is not None:
        q = q.filter(Expense.total_amount >= low)
    high = sanitize_number(filters.get("max_amount"), 0)
    if high is not None:
        q = q.filter(Expense.total_amount <= high)

    search = (filters.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(db.or_(Expense.description.ilike(like),
                            Expense.supplier_name.ilike(like),
                            Expense.invoice_number.ilike(like)))
    q = q.order_by(Expense.created_at.desc())
    return paginated(q, page, per_page, key="expenses")


def get_expense_stats(project_id: str | None = None) -> dict:
    q = Expense.query_active()
    if project_id:
        q = q.filter(Expense.project_id == project_id)
    expenses = q.all()

    amount_by_status: dict[str, float] = {}
    for e in expenses:
        amount_by_status[e.status] = money(amount_by_status.get(e.status, 0.0) + e.total_amount)
    confidences = [e.ocr_confidence for e in expenses if e.ocr_confidence is not None]
    return {
        "total": len(expenses),
        "total_amount": money(sum(e.total_amount for e in expenses)),
        "by_status": dict(Counter(e.status for e in expenses)),
        "amount_by_status": amount_by_status,
        "pending_amount": amount_by_status.get("pending_approval", 0.0),
        "approved_amount": amount_by_status.get("approved", 0.0),
        "paid_amount": money(sum(e.paid_amount for e in expenses)),
        "needs_review": sum(1 for e in expenses if e.needs_review),
        "auto_created": sum(1 for e in expenses if e.is_auto_created),
        "average_ocr_confidence": round(sum(confidences) / len(confidences), 3) if confidences else None,
    }


# ── Update / classify ────────────────────────────────────────────────────────

def update_expense(expense_id: str, data: dict, user_id: str) -> Expense:
    expense = get_expense(expense_id)
    if expense.status not in _EDITABLE_STATUSES:
        raise InvalidStateTransition("expense", expense.id, expense.status, "updated",
                                     reason="only draft or pending expenses can be edited")

    errors = []
    amount = expense.amount
    tax = expense.tax_amount
    if "amount" in data:
        amount = sanitize_number(data["amount"], 0)
        if amount is None or amount <= 0:
            errors.append({"field": "amount", "message": "amount must be greater than 0"})
    if "tax_amount" in data:
        tax = sanitize_number(data["tax_amount"], 0)
        if tax is None:
            errors.append({"field": "tax_amount", "message": "tax_amount must be a number >= 0"})
    if "description" in data and len(sanitize_text(data["description"])) < 5:
        errors.append({"field": "description", "message": "description must be at least 5 characters"})
    if "invoice_date" in data and parse_date(data["invoice_date"]) is None:
        errors.append({"field": "invoice_date", "message": "invoice_date must be YYYY-MM-DD"})
    if errors:
        raise ValidationError("Validation failed", errors=errors)

    before = {"amount": expense.amount, "tax_amount": expense.tax_amount,
              "description": expense.description, "invoice_number": expense.invoice_number}
    expense.amount = money(amount)
    expense.tax_amount = money(tax)
    expense.total_amount = money(expense.amount + expense.tax_amount)
    if "description" in data:
        expense.description = sanitize_text(data["description"])
    if "invoice_number" in data:
        expense.invoice_number = sanitize_text(data["invoice_number"], 100) or None
    if "invoice_date" in data:
        expense.invoice_date = parse_date(data["invoice_date"])
    if "due_date" in data:
        expense.due_date = parse_date(data["due_date"])
    if "supplier_name" in data and len(sanitize_text(data["supplier_name"])) >= 2:
        expense.supplier_name = sanitize_text(data["supplier_name"], 255)
    if "notes" in data:
        expense.notes = sanitize_text(data["notes"]) or None

    record_audit(
        action="expense_updated",
        entity_type="expense",
        entity_id=expense.id,
        entity_name=expense.expense_number,
        user_id=user_id,
        project_id=expense.project_id,
        previous_state=before,
        new_state={"amount": expense.amount, "tax_amount": expense.tax_amount,
                   "description": expense.description, "invoice_number": expense.invoice_number},
    )
    commit_or_raise()
    return expense


def classify_expense(expense_id: str, data: dict, user_id: str) -> Expense:
    """Set project / cost code / supplier and clear the review flag."""
    expense = get_expense(expense_id)
    if expense.status not in _EDITABLE_STATUSES:
        raise InvalidStateTransition("expense", expense.id, expense.status, "classified")

    project_id = sanitize_text(data.get("project_id"), 64) or expense.project_id
    cost_code_id = data.get("cost_code_id") or expense.cost_code_id
    errors = []
    if not project_id:
        errors.append({"field": "project_id", "message": "project_id is required"})
    if not cost_code_id or _resolve_cost_code(cost_code_id) is None:
        errors.append({"field": "cost_code_id", "message": "A valid cost code is required"})
    if errors:
        raise ValidationError("Classification incomplete", errors=errors)

    before = _classification_snapshot(expense)
    expense.project_id = project_id
    expense.cost_code_id = cost_code_id
    if data.get("supplier_id"):
        expense.supplier_id = sanitize_text(data["supplier_id"], 64)
    expense.needs_review = False
    expense.review_reasons = []
    expense.reviewed_by = user_id
    expense.reviewed_at = _utcnow()

    record_audit(
        action="expense_classified",
        entity_type="expense",
        entity_id=expense.id,
        entity_name=expense.expense_number,
        user_id=user_id,
        project_id=expense.project_id,
        previous_state=before,
        new_state=_classification_snapshot(expense),
    )
    commit_or_raise()
    return expense


def confirm_review(expense_id: str, user_id: str, notes: str | None = None) -> Expense:
    """Clear ``needs_review`` after a human checked the extracted data."""
    expense = get_expense(expense_id)
    if not expense.needs_review:
        raise ValidationError.for_field("needs_review", "Expense is not flagged for review")
    if not expense.project_id or not expense.cost_code_id:
        raise ValidationError.for_field("cost_code_id", "Classify the expense before confirming the review")

    before = _classification_snapshot(expense)
    expense.needs_review = False
    expense.review_reasons = []
    expense.reviewed_by = user_id
    expense.reviewed_at = _utcnow()
    if notes:
        expense.notes = sanitize_text(notes)

    record_audit(
        action="expense_reviewed",
        entity_type="expense",
        entity_id=expense.id,
        entity_name=expense.expense_number,
        user_id=user_id,
        project_id=expense.project_id,
        previous_state=before,
        new_state=_classification_snapshot(expense),
    )
    commit_or_raise()
    return expense


# ── Workflow ─────────────────────────────────────────────────────────────────

def _require_transition(expense: Expense, target: str) -> str:
    if not validate_expense_transition(expense.status, target):
        raise InvalidStateTransition("expense", expense.id, expense.status, target)
    return expense.status


def submit_for_approval(expense_id: str, user_id: str) -> Expense:
    expense = get_expense(expense_id)
    previous = _require_transition(expense, "pending_approval")
    expense.status = "pending_approval"
    expense.submitted_by = user_id
    expense.submitted_at = _utcnow()

    record_audit(
        action="expense_submitted",
        entity_type="expense",
        entity_id=expense.id,
        entity_name=expense.expense_number,
        user_id=user_id,
        project_id=expense.project_id,
        previous_state={"status": previous},
        new_state={"status": expense.status},
    )
    commit_or_raise()
    return expense


def _approve(expense: Expense, approver_id: str, notes: str | None) -> Expense:
    previous = _require_transition(expense, "approved")
    if expense.needs_review:
        raise InvalidStateTransition("expense", expense.id, expense.status, "approved",
                                     reason="expense is flagged for review")

    expense.status = "approved"
    expense.approved_by = approver_id
    expense.approved_at = _utcnow()
    expense.approval_notes = sanitize_text(notes) or None
    budget = cost_code_service.update_budget_actuals(expense.project_id, expense.cost_code_id,
                                                     expense.total_amount)

    record_audit(
        action="expense_approved",
        entity_type="expense",
        entity_id=expense.id,
        entity_name=expense.expense_number,
        user_id=approver_id,
        project_id=expense.project_id,
        previous_state={"status": previous},
        new_state={"status": expense.status},
        financial_impact={
            "amount": expense.total_amount,
            "currency": expense.currency,
            "budget_impact": "actual" if budget is not None else "none",
            "description": f"Expense from {expense.supplier_name}",
        },
        metadata={"budget_status": budget.status if budget is not None else None},
    )
    return expense


def _reject(expense: Expense, rejector_id: str, reason: str) -> Expense:
    reason = sanitize_text(reason)
    if not reason:
        raise ValidationError.for_field("reason", "A rejection reason is required")
    previous = _require_transition(expense, "rejected")

    expense.status = "rejected"
    expense.rejected_by = rejector_id
    expense.rejected_at = _utcnow()
    expense.rejection_reason = reason

    record_audit(
        action="expense_rejected",
        entity_type="expense",
        entity_id=expense.id,
        entity_name=expense.expense_number,
        user_id=rejector_id,
        project_id=expense.project_id,
        previous_state={"status": previous},
        new_state={"status": expense.status},
        metadata={"reason": reason},
    )
    return expense


def approve_expense(expense_id: str, approver_id: str, notes: str | None = None) -> Expense:
    """pending_approval → approved.  Raises InvalidStateTransition from any other state."""
    expense = _approve(get_expense(expense_id), approver_id, notes)
    commit_or_raise()
    logger.info("Expense %s approved", expense.expense_number,
                extra={"expense_id": expense.id, "user_id": approver_id})
    return expense


def reject_expense(expense_id: str, rejector_id: str, reason: str) -> Expense:
    expense = _reject(get_expense(expense_id), rejector_id, reason)
    commit_or_raise()
    return expense


def _bulk(expense_ids, operation, label: str) -> BulkOutcome:
    outcome = BulkOutcome()
    for expense_id in dict.fromkeys(expense_ids):
        try:
            expense = operation(get_expense(expense_id))
            commit_or_raise()
        except (NotFoundError, InvalidStateTransition, ValidationError, StoreFailure, SQLAlchemyError) as exc:
            db.session.rollback()
            logger.warning("Bulk %s skipped expense %s: %s", label, expense_id, exc,
                           extra={"expense_id": expense_id})
            outcome.failed.append({"id": expense_id, "error": str(exc)})
            continue
        outcome.succeeded.append(expense)
    logger.info("Bulk %s: %d succeeded, %d failed", label, len(outcome.succeeded), len(outcome.failed))
    return outcome


def bulk_approve_expenses(expense_ids: list[str], approver_id: str, notes: str | None = None) -> BulkOutcome:
    return _bulk(expense_ids, lambda e: _approve(e, approver_id, notes), "approve")


def bulk_reject_expenses(expense_ids: list[str], rejector_id: str, reason: str) -> BulkOutcome:
    return _bulk(expense_ids, lambda e: _reject(e, rejector_id, reason), "reject")


def record_payment(expense_id: str, data: dict, user_id: str) -> Expense:
    """Record a (possibly partial) payment on an approved expense."""
    expense = get_expense(expense_id)
    if expense.status != "approved":
        raise InvalidStateTransition("expense", expense.id, expense.status, "paid",
                                     reason="only approved expenses can be paid")

    amount = sanitize_number(data.get("amount"), 0)
    if amount is None or amount <= 0:
        raise ValidationError.for_field("amount", "amount must be greater than 0")
    if expense.paid_amount + amount > expense.total_amount + 0.005:
        raise ValidationError.for_field(
            "amount", f"Payment exceeds the outstanding amount of {expense.outstanding_amount:.2f}",
        )
    method = data.get("payment_method")
    if method is not None and method not in PAYMENT_METHODS:
        raise ValidationError.for_field("payment_method", f"payment_method must be one of {', '.join(sorted(PAYMENT_METHODS))}")

    previous = {"status": expense.status, "payment_status": expense.payment_status,
                "paid_amount": expense.paid_amount}
    expense.paid_amount = money(expense.paid_amount + amount)
    expense.paid_date = parse_date(data.get("paid_date")) or _utcnow().date()
    expense.payment_method = method or expense.payment_method
    expense.payment_reference = sanitize_text(data.get("payment_reference"), 100) or expense.payment_reference

    if expense.outstanding_amount <= 0.005:
        expense.status = "paid"
        expense.payment_status = "paid"
        action = "expense_paid"
    else:
        expense.payment_status = "partial"
        action = "payment_recorded"

    record_audit(
        action=action,
        entity_type="expense",
        entity_id=expense.id,
        entity_name=expense.expense_number,
        user_id=user_id,
        project_id=expense.project_id,
        previous_state=previous,
        new_state={"status": expense.status, "payment_status": expense.payment_status,
                   "paid_amount": expense.paid_amount},
        financial_impact={"amount": amount, "currency": expense.currency,
                          "budget_impact": "paid", "description": expense.payment_reference or "Payment"},
    )
    commit_or_raise()
    return expense


def delete_expense(expense_id: str, user_id: str) -> None:
    """Soft-delete a draft.  Anything past draft stays on the books."""
    expense = get_expense(expense_id)
    if expense.status != "draft":
        raise InvalidStateTransition("expense", expense.id, expense.status, "deleted",
                                     reason="only draft expenses can be deleted")
    expense.soft_delete()
    record_audit(
        action="expense_deleted",
        entity_type="expense",
        entity_id=expense.id,
        entity_name=expense.expense_number,
        user_id=user_id,
        project_id=expense.project_id,
        previous_state={"status": expense.status, "deleted": False},
        new_state={"status": expense.status, "deleted": True},
    )
    commit_or_raise()
