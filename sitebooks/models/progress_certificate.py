"""
Progress certificate domain model.

A certificate bills one period of work against a subcontract.

Workflow:
    draft → pending_approval → approved | rejected
    approved → paid

``rejected`` and ``paid`` are terminal; a rejected period is re-billed
with a new draft.
"""

from sitebooks.models import _iso, _utcnow, _uuid, db

CERTIFICATE_STATUSES = {"draft", "pending_approval", "approved", "rejected", "paid"}

CERTIFICATE_TRANSITIONS = {
    "draft":            ["pending_approval"],
    "pending_approval": ["approved", "rejected"],
    "approved":         ["paid"],
    "rejected":         [],
    "paid":             [],
}

# Statuses whose amounts count toward the subcontract's certified total
CERTIFIED_STATUSES = ("approved", "paid")


def validate_certificate_transition(old_status, new_status):
    """Return True if ProgressCertificate status transition is valid."""
    return new_status in CERTIFICATE_TRANSITIONS.get(old_status, [])


class ProgressCertificate(db.Model):
    __tablename__ = "progress_certificates"
    __table_args__ = (
        db.Index("idx_certificate_subcontract_status", "subcontract_id", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    certificate_number = db.Column(db.String(50), nullable=False, unique=True)
    subcontract_id = db.Column(
        db.String(36), db.ForeignKey("subcontracts.id", ondelete="RESTRICT"), nullable=False,
    )
    project_id = db.Column(db.String(64), nullable=False, index=True)

    period_start = db.Column(db.Date, nullable=False)
    period_end = db.Column(db.Date, nullable=False)

    amount_certified = db.Column(db.Float, nullable=False)
    retention_amount = db.Column(db.Float, nullable=False, default=0.0)
    net_payable = db.Column(db.Float, nullable=False)
    previous_certified = db.Column(db.Float, nullable=False, default=0.0)
    cumulative_certified = db.Column(db.Float, nullable=False)
    percentage_complete = db.Column(db.Float, nullable=False, default=0.0)

    status = db.Column(db.String(20), nullable=False, default="draft")
    submitted_by = db.Column(db.String(150), nullable=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_by = db.Column(db.String(150), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approval_notes = db.Column(db.Text, nullable=True)
    rejected_by = db.Column(db.String(150), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    payment_id = db.Column(db.String(100), nullable=True)
    paid_by = db.Column(db.String(150), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    description = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.String(150), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    subcontract = db.relationship("Subcontract", back_populates="certificates")

    def to_dict(self):
        return {
            "id": self.id,
            "certificate_number": self.certificate_number,
            "subcontract_id": self.subcontract_id,
            "project_id": self.project_id,
            "period_start": _iso(self.period_start),
            "period_end": _iso(self.period_end),
            "amount_certified": self.amount_certified,
            "retention_amount": self.retention_amount,
            "net_payable": self.net_payable,
            "previous_certified": self.previous_certified,
            "cumulative_certified": self.cumulative_certified,
            "percentage_complete": self.percentage_complete,
            "status": self.status,
            "submitted_by": self.submitted_by,
            "submitted_at": _iso(self.submitted_at),
            "approved_by": self.approved_by,
            "approved_at": _iso(self.approved_at),
            "approval_notes": self.approval_notes,
            "rejected_by": self.rejected_by,
            "rejected_at": _iso(self.rejected_at),
            "rejection_reason": self.rejection_reason,
            "payment_id": self.payment_id,
            "paid_by": self.paid_by,
            "paid_at": _iso(self.paid_at),
            "description": self.description,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<ProgressCertificate {self.certificate_number} {self.status}>"
