"""Project income (client receipts)."""

from sitebooks.models import _iso, _utcnow, _uuid, db

INCOME_STATUSES = {"pending", "confirmed", "cancelled"}

INCOME_CATEGORIES = {"progress_billing", "advance", "retention_release", "change_order", "other"}


class Income(db.Model):
    __tablename__ = "incomes"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    project_id = db.Column(db.String(64), nullable=False, index=True)
    amount = db.Column(db.Float, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="USD")
    date = db.Column(db.Date, nullable=False)
    description = db.Column(db.Text, nullable=False)
    category = db.Column(db.String(30), nullable=False, default="other")
    payment_method = db.Column(db.String(20), nullable=True)
    reference = db.Column(db.String(100), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="confirmed")
    notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.String(150), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "amount": self.amount,
            "currency": self.currency,
            "date": _iso(self.date),
            "description": self.description,
            "category": self.category,
            "payment_method": self.payment_method,
            "reference": self.reference,
            "status": self.status,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
