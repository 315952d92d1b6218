"""
Retention holdback domain model.

Models:
    - Holdback: retention withheld on one approved progress certificate.
    - HoldbackRelease: a request to pay out part or all of a holdback.

Invariant: ``original_amount == current_amount + released_amount``.
"""

from sitebooks.models import _iso, _utcnow, _uuid, db

HOLDBACK_STATUSES = {"active", "partial", "released", "expired"}

RELEASE_REASONS = {
    "work_completed",
    "warranty_expired",
    "defects_corrected",
    "contractual_agreement",
    "other",
}

RELEASE_STATUSES = {"pending", "approved", "rejected"}


class Holdback(db.Model):
    __tablename__ = "holdbacks"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    holdback_number = db.Column(db.String(30), nullable=False, unique=True)
    project_id = db.Column(db.String(64), nullable=False, index=True)
    subcontract_id = db.Column(
        db.String(36), db.ForeignKey("subcontracts.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    certificate_id = db.Column(
        db.String(36), db.ForeignKey("progress_certificates.id", ondelete="RESTRICT"),
        nullable=False, unique=True,
    )
    subcontractor_name = db.Column(db.String(255), nullable=True)

    original_amount = db.Column(db.Float, nullable=False)
    current_amount = db.Column(db.Float, nullable=False)
    released_amount = db.Column(db.Float, nullable=False, default=0.0)
    retention_percentage = db.Column(db.Float, nullable=False)
    status = db.Column(db.String(20), nullable=False, default="active")
    expected_release_date = db.Column(db.Date, nullable=True)

    created_by = db.Column(db.String(150), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    releases = db.relationship(
        "HoldbackRelease", back_populates="holdback",
        cascade="all, delete-orphan", order_by="HoldbackRelease.requested_at",
    )

    def to_dict(self, include_releases=True):
        d = {
            "id": self.id,
            "holdback_number": self.holdback_number,
            "project_id": self.project_id,
            "subcontract_id": self.subcontract_id,
            "certificate_id": self.certificate_id,
            "subcontractor_name": self.subcontractor_name,
            "original_amount": self.original_amount,
            "current_amount": self.current_amount,
            "released_amount": self.released_amount,
            "retention_percentage": self.retention_percentage,
            "status": self.status,
            "expected_release_date": _iso(self.expected_release_date),
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_releases:
            d["releases"] = [r.to_dict() for r in self.releases]
        return d


class HoldbackRelease(db.Model):
    __tablename__ = "holdback_releases"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    holdback_id = db.Column(
        db.String(36), db.ForeignKey("holdbacks.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    amount = db.Column(db.Float, nullable=False)
    reason = db.Column(db.String(30), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(10), nullable=False, default="pending")
    requested_by = db.Column(db.String(150), nullable=False)
    requested_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    decided_by = db.Column(db.String(150), nullable=True)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    decision_notes = db.Column(db.Text, nullable=True)
    payment_reference = db.Column(db.String(100), nullable=True)

    holdback = db.relationship("Holdback", back_populates="releases")

    def to_dict(self):
        return {
            "id": self.id,
            "holdback_id": self.holdback_id,
            "amount": self.amount,
            "reason": self.reason,
            "notes": self.notes,
            "status": self.status,
            "requested_by": self.requested_by,
            "requested_at": _iso(self.requested_at),
            "decided_by": self.decided_by,
            "decided_at": _iso(self.decided_at),
            "decision_notes": self.decision_notes,
            "payment_reference": self.payment_reference,
        }
