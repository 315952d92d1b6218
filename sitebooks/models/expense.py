"""
Expense domain model.

Models:
    - Expense: a supplier invoice or receipt moving through the approval workflow.
    - ExpenseAttachment: metadata of the document an expense was built from.

Workflow:
    draft → pending_approval → approved | rejected
    approved → paid

``needs_review`` is orthogonal to ``status``: an OCR-ingested expense sits
in ``pending_approval`` with the flag raised until a reviewer clears it,
and approval is refused while it is raised.
"""

from sitebooks.models import _iso, _utcnow, _uuid, db
from sitebooks.models.soft_delete import SoftDeleteMixin

EXPENSE_STATUSES = {"draft", "pending_approval", "needs_review", "approved", "rejected", "paid"}

EXPENSE_TRANSITIONS = {
    "draft":            ["pending_approval"],
    "pending_approval": ["approved", "rejected"],
    "approved":         ["paid"],
    "rejected":         [],
    "paid":             [],
}

PAYMENT_STATUSES = {"unpaid", "partial", "paid"}

PAYMENT_METHODS = {"transfer", "check", "cash", "card", "other"}

# Why an expense was flagged for manual review
REVIEW_REASONS = {"low_confidence", "missing_project", "missing_cost_code"}

EXPENSE_SOURCES = {"manual", "ocr", "email", "api", "webhook"}


def validate_expense_transition(old_status, new_status):
    """Return True if Expense status transition is valid."""
    return new_status in EXPENSE_TRANSITIONS.get(old_status, [])


class Expense(SoftDeleteMixin, db.Model):
    __tablename__ = "expenses"
    __table_args__ = (
        db.Index("idx_expense_project_status", "project_id", "status"),
        db.Index("idx_expense_review", "needs_review", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    expense_number = db.Column(db.String(30), nullable=False, unique=True)

    # Classification (any of these may be unresolved on OCR intake)
    project_id = db.Column(db.String(64), nullable=True, index=True)
    cost_code_id = db.Column(
        db.String(36), db.ForeignKey("cost_codes.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    supplier_id = db.Column(db.String(64), nullable=True, index=True)
    supplier_name = db.Column(db.String(255), nullable=False)

    # Money
    amount = db.Column(db.Float, nullable=False)
    tax_amount = db.Column(db.Float, nullable=False, default=0.0)
    total_amount = db.Column(db.Float, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="USD")

    description = db.Column(db.Text, nullable=False)
    invoice_number = db.Column(db.String(100), nullable=True)
    invoice_date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=True)

    # Workflow
    status = db.Column(db.String(20), nullable=False, default="draft")
    needs_review = db.Column(db.Boolean, nullable=False, default=False)
    review_reasons = db.Column(db.JSON, nullable=False, default=list)
    reviewed_by = db.Column(db.String(150), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    submitted_by = db.Column(db.String(150), nullable=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_by = db.Column(db.String(150), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approval_notes = db.Column(db.Text, nullable=True)
    rejected_by = db.Column(db.String(150), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    # Payment
    payment_status = db.Column(db.String(10), nullable=False, default="unpaid")
    paid_amount = db.Column(db.Float, nullable=False, default=0.0)
    paid_date = db.Column(db.Date, nullable=True)
    payment_method = db.Column(db.String(20), nullable=True)
    payment_reference = db.Column(db.String(100), nullable=True)

    # OCR provenance
    is_auto_created = db.Column(db.Boolean, nullable=False, default=False)
    source = db.Column(db.String(20), nullable=False, default="manual")
    source_id = db.Column(db.String(100), nullable=True)
    ocr_confidence = db.Column(db.Float, nullable=True)
    ocr_data = db.Column(
        db.JSON, nullable=True,
        comment="{raw_text, extracted_fields, confidence, processing_time, provider, processed_at}",
    )

    notes = db.Column(db.Text, nullable=True)
    tags = db.Column(db.JSON, nullable=False, default=list)
    created_by = db.Column(db.String(150), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    cost_code = db.relationship("CostCode")
    attachments = db.relationship(
        "ExpenseAttachment", back_populates="expense", cascade="all, delete-orphan", lazy="select",
    )

    @property
    def outstanding_amount(self) -> float:
        return round((self.total_amount or 0) - (self.paid_amount or 0), 2)

    def to_dict(self, include_ocr=False):
        d = {
            "id": self.id,
            "expense_number": self.expense_number,
            "project_id": self.project_id,
            "cost_code_id": self.cost_code_id,
            "cost_code": self.cost_code.code if self.cost_code else None,
            "supplier_id": self.supplier_id,
            "supplier_name": self.supplier_name,
            "amount": self.amount,
            "tax_amount": self.tax_amount,
            "total_amount": self.total_amount,
            "currency": self.currency,
            "description": self.description,
            "invoice_number": self.invoice_number,
            "invoice_date": _iso(self.invoice_date),
            "due_date": _iso(self.due_date),
            "status": self.status,
            "needs_review": self.needs_review,
            "review_reasons": self.review_reasons or [],
            "reviewed_by": self.reviewed_by,
            "reviewed_at": _iso(self.reviewed_at),
            "submitted_by": self.submitted_by,
            "submitted_at": _iso(self.submitted_at),
            "approved_by": self.approved_by,
            "approved_at": _iso(self.approved_at),
            "rejected_by": self.rejected_by,
            "rejected_at": _iso(self.rejected_at),
            "rejection_reason": self.rejection_reason,
            "payment_status": self.payment_status,
            "paid_amount": self.paid_amount,
            "paid_date": _iso(self.paid_date),
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "is_auto_created": self.is_auto_created,
            "source": self.source,
            "source_id": self.source_id,
            "ocr_confidence": self.ocr_confidence,
            "notes": self.notes,
            "tags": self.tags or [],
            "attachments": [a.to_dict() for a in self.attachments],
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_ocr:
            d["ocr_data"] = self.ocr_data
        return d

    def __repr__(self):
        return f"<Expense {self.expense_number} {self.status} {self.total_amount}>"


class ExpenseAttachment(db.Model):
    """Document metadata.  File bytes are hashed and sized, not stored."""

    __tablename__ = "expense_attachments"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    expense_id = db.Column(
        db.String(36), db.ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(255), nullable=False)
    mime_type = db.Column(db.String(100), nullable=True)
    size = db.Column(db.Integer, nullable=False, default=0)
    sha256 = db.Column(db.String(64), nullable=True)
    url = db.Column(db.String(500), nullable=True)
    uploaded_by = db.Column(db.String(150), nullable=True)
    uploaded_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    expense = db.relationship("Expense", back_populates="attachments")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "mime_type": self.mime_type,
            "size": self.size,
            "sha256": self.sha256,
            "url": self.url,
            "uploaded_by": self.uploaded_by,
            "uploaded_at": _iso(self.uploaded_at),
        }
