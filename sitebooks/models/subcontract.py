"""
Subcontract domain model.

Models:
    - Subcontract: aggregate root for progress certificates and holdbacks.
    - PaymentScheduleItem: contractual payment milestone (percentage of total).

The derived totals (``total_certified``, ``total_paid``, ``total_retained``,
``remaining_balance``) are recomputed from certificates by the subcontract
service; ``remaining_balance == total_amount - total_certified`` always holds.
"""

from sitebooks.models import _iso, _utcnow, _uuid, db

SUBCONTRACT_STATUSES = {"draft", "active", "completed", "cancelled"}

SUBCONTRACT_TRANSITIONS = {
    "draft":     ["active", "cancelled"],
    "active":    ["completed", "cancelled"],
    "completed": [],
    "cancelled": [],
}

SCHEDULE_ITEM_STATUSES = {"pending", "certified", "paid"}


def validate_subcontract_transition(old_status, new_status):
    """Return True if Subcontract status transition is valid."""
    return new_status in SUBCONTRACT_TRANSITIONS.get(old_status, [])


class Subcontract(db.Model):
    __tablename__ = "subcontracts"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    contract_number = db.Column(db.String(50), nullable=False, unique=True)
    project_id = db.Column(db.String(64), nullable=False, index=True)
    subcontractor_id = db.Column(db.String(64), nullable=False, index=True)
    subcontractor_name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False)
    scope_of_work = db.Column(db.Text, nullable=True)

    total_amount = db.Column(db.Float, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="USD")
    retention_percentage = db.Column(db.Float, nullable=False, default=0.0)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    cost_code_ids = db.Column(db.JSON, nullable=False, default=list)

    status = db.Column(db.String(20), nullable=False, default="draft")
    approved_by = db.Column(db.String(150), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    # Derived, see services/subcontract_service.recalculate_financials
    total_certified = db.Column(db.Float, nullable=False, default=0.0)
    total_paid = db.Column(db.Float, nullable=False, default=0.0)
    total_retained = db.Column(db.Float, nullable=False, default=0.0)
    remaining_balance = db.Column(db.Float, nullable=False, default=0.0)

    notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.String(150), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    schedule_items = db.relationship(
        "PaymentScheduleItem",
        back_populates="subcontract",
        cascade="all, delete-orphan",
        order_by="PaymentScheduleItem.sequence",
    )
    certificates = db.relationship(
        "ProgressCertificate", back_populates="subcontract", lazy="dynamic",
    )

    def to_dict(self, include_schedule=True):
        d = {
            "id": self.id,
            "contract_number": self.contract_number,
            "project_id": self.project_id,
            "subcontractor_id": self.subcontractor_id,
            "subcontractor_name": self.subcontractor_name,
            "description": self.description,
            "scope_of_work": self.scope_of_work,
            "total_amount": self.total_amount,
            "currency": self.currency,
            "retention_percentage": self.retention_percentage,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "cost_code_ids": self.cost_code_ids or [],
            "status": self.status,
            "approved_by": self.approved_by,
            "approved_at": _iso(self.approved_at),
            "completed_at": _iso(self.completed_at),
            "cancelled_at": _iso(self.cancelled_at),
            "cancellation_reason": self.cancellation_reason,
            "total_certified": self.total_certified,
            "total_paid": self.total_paid,
            "total_retained": self.total_retained,
            "remaining_balance": self.remaining_balance,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_schedule:
            d["payment_schedule"] = [item.to_dict() for item in self.schedule_items]
        return d

    def __repr__(self):
        return f"<Subcontract {self.contract_number} {self.status}>"


class PaymentScheduleItem(db.Model):
    __tablename__ = "payment_schedule_items"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    subcontract_id = db.Column(
        db.String(36), db.ForeignKey("subcontracts.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    sequence = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=False)
    percentage = db.Column(db.Float, nullable=False)
    amount = db.Column(db.Float, nullable=False)
    due_date = db.Column(db.Date, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="pending")

    subcontract = db.relationship("Subcontract", back_populates="schedule_items")

    def to_dict(self):
        return {
            "id": self.id,
            "sequence": self.sequence,
            "description": self.description,
            "percentage": self.percentage,
            "amount": self.amount,
            "due_date": _iso(self.due_date),
            "status": self.status,
        }
