"""
Retention holdback service.

A holdback is opened for the retention of every approved progress
certificate.  Money leaves a holdback only through an approved release
request, which writes a ``retention_released`` audit entry carrying the
amount.
"""

import logging
from collections import Counter
from datetime import timedelta

from sitebooks.core.exceptions import InvalidStateTransition, NotFoundError, ValidationError
from sitebooks.models import _utcnow, db
from sitebooks.models.audit import record_audit
from sitebooks.models.holdback import RELEASE_REASONS, Holdback, HoldbackRelease
from sitebooks.services.code_generator import generate_holdback_number
from sitebooks.utils.helpers import commit_or_raise, ensure_aware, money
from sitebooks.utils.sanitize import sanitize_number, sanitize_text

logger = logging.getLogger(__name__)

AGING_BUCKETS = (("0-30", 0, 30), ("31-60", 31, 60), ("61-90", 61, 90), ("90+", 91, None))


def create_holdback_for_certificate(certificate, user_id: str):
    """Open a holdback for the certificate's retention.  Does not commit.

    Returns None when the certificate retains nothing.
    """
    if not certificate.retention_amount or certificate.retention_amount <= 0:
        return None
    sc = certificate.subcontract
    holdback = Holdback(
        holdback_number=generate_holdback_number(),
        project_id=certificate.project_id,
        subcontract_id=sc.id,
        certificate_id=certificate.id,
        subcontractor_name=sc.subcontractor_name,
        original_amount=certificate.retention_amount,
        current_amount=certificate.retention_amount,
        released_amount=0.0,
        retention_percentage=sc.retention_percentage,
        expected_release_date=sc.end_date,
        status="active",
        created_by=user_id,
    )
    db.session.add(holdback)
    db.session.flush()
    record_audit(
        action="retention_held",
        entity_type="holdback",
        entity_id=holdback.id,
        entity_name=holdback.holdback_number,
        user_id=user_id,
        project_id=holdback.project_id,
        new_state={"status": holdback.status, "current_amount": holdback.current_amount},
        financial_impact={"amount": holdback.original_amount, "currency": sc.currency,
                          "budget_impact": "retained", "description": f"Retention on {certificate.certificate_number}"},
        metadata={"certificate_id": certificate.id, "subcontract_id": sc.id},
    )
    return holdback


def get_holdback(holdback_id: str) -> Holdback:
    holdback = db.session.get(Holdback, holdback_id)
    if holdback is None:
        raise NotFoundError(resource="Holdback", resource_id=holdback_id)
    return holdback


def _get_release(holdback: Holdback, release_id: str) -> HoldbackRelease:
    release = db.session.get(HoldbackRelease, release_id)
    if release is None or release.holdback_id != holdback.id:
        raise NotFoundError(resource="HoldbackRelease", resource_id=release_id)
    return release


def _pending_total(holdback: Holdback) -> float:
    return money(sum(r.amount for r in holdback.releases if r.status == "pending"))


def request_release(holdback_id: str, data: dict, user_id: str) -> HoldbackRelease:
    holdback = get_holdback(holdback_id)
    if holdback.status in ("released", "expired"):
        raise InvalidStateTransition("holdback", holdback.id, holdback.status, "release_requested")

    errors = []
    amount = sanitize_number(data.get("amount"), 0)
    if amount is None or amount <= 0:
        errors.append({"field": "amount", "message": "amount must be greater than 0"})
    elif amount > holdback.current_amount - _pending_total(holdback) + 0.005:
        errors.append({"field": "amount", "message": "amount exceeds the unreleased, unrequested balance"})
    reason = data.get("reason")
    if reason not in RELEASE_REASONS:
        errors.append({"field": "reason", "message": f"reason must be one of {', '.join(sorted(RELEASE_REASONS))}"})
    if errors:
        raise ValidationError("Invalid release request", errors=errors)

    release = HoldbackRelease(
        holdback_id=holdback.id,
        amount=money(amount),
        reason=reason,
        notes=sanitize_text(data.get("notes")) or None,
        status="pending",
        requested_by=user_id,
    )
    db.session.add(release)
    db.session.flush()
    record_audit(
        action="retention_release_requested",
        entity_type="holdback",
        entity_id=holdback.id,
        entity_name=holdback.holdback_number,
        user_id=user_id,
        project_id=holdback.project_id,
        new_state={"release_id": release.id, "amount": release.amount, "reason": reason},
    )
    commit_or_raise()
    return release


def approve_release(holdback_id: str, release_id: str, user_id: str,
                    payment_reference: str | None = None, notes: str | None = None) -> Holdback:
    holdback = get_holdback(holdback_id)
    release = _get_release(holdback, release_id)
    if release.status != "pending":
        raise InvalidStateTransition("holdback_release", release.id, release.status, "approved")
    if release.amount > holdback.current_amount + 0.005:
        raise ValidationError.for_field("amount", "Release exceeds the remaining holdback")

    before = {"status": holdback.status, "current_amount": holdback.current_amount,
              "released_amount": holdback.released_amount}
    release.status = "approved"
    release.decided_by = user_id
    release.decided_at = _utcnow()
    release.decision_notes = sanitize_text(notes) or None
    release.payment_reference = sanitize_text(payment_reference, 100) or None

    holdback.current_amount = money(holdback.current_amount - release.amount)
    holdback.released_amount = money(holdback.released_amount + release.amount)
    holdback.status = "released" if holdback.current_amount <= 0.005 else "partial"

    record_audit(
        action="retention_released",
        entity_type="holdback",
        entity_id=holdback.id,
        entity_name=holdback.holdback_number,
        user_id=user_id,
        project_id=holdback.project_id,
        previous_state=before,
        new_state={"status": holdback.status, "current_amount": holdback.current_amount,
                   "released_amount": holdback.released_amount},
        financial_impact={"amount": release.amount, "budget_impact": "paid",
                          "description": f"Retention release ({release.reason})"},
        metadata={"release_id": release.id, "subcontract_id": holdback.subcontract_id},
    )
    commit_or_raise()
    return holdback


def reject_release(holdback_id: str, release_id: str, user_id: str, reason: str) -> HoldbackRelease:
    holdback = get_holdback(holdback_id)
    release = _get_release(holdback, release_id)
    if release.status != "pending":
        raise InvalidStateTransition("holdback_release", release.id, release.status, "rejected")
    reason = sanitize_text(reason)
    if not reason:
        raise ValidationError.for_field("reason", "A rejection reason is required")

    release.status = "rejected"
    release.decided_by = user_id
    release.decided_at = _utcnow()
    release.decision_notes = reason
    record_audit(
        action="retention_release_rejected",
        entity_type="holdback",
        entity_id=holdback.id,
        entity_name=holdback.holdback_number,
        user_id=user_id,
        project_id=holdback.project_id,
        previous_state={"release_status": "pending"},
        new_state={"release_status": "rejected"},
        metadata={"release_id": release.id, "reason": reason},
    )
    commit_or_raise()
    return release


def list_holdbacks(filters: dict | None = None) -> list[Holdback]:
    filters = filters or {}
    q = Holdback.query
    for field in ("project_id", "subcontract_id", "status"):
        if filters.get(field):
            q = q.filter(getattr(Holdback, field) == filters[field])
    return q.order_by(Holdback.created_at.desc()).all()


def get_holdback_aging(project_id: str | None = None, now=None) -> dict:
    """Outstanding holdback balance grouped by age in days."""
    now = now or _utcnow()
    buckets = {label: {"count": 0, "amount": 0.0} for label, _, _ in AGING_BUCKETS}
    for holdback in list_holdbacks({"project_id": project_id}):
        if holdback.current_amount <= 0:
            continue
        age = (now - ensure_aware(holdback.created_at)) // timedelta(days=1)
        for label, low, high in AGING_BUCKETS:
            if age >= low and (high is None or age <= high):
                buckets[label]["count"] += 1
                buckets[label]["amount"] = money(buckets[label]["amount"] + holdback.current_amount)
                break
    return buckets


def get_holdback_stats(project_id: str | None = None) -> dict:
    holdbacks = list_holdbacks({"project_id": project_id})
    pending = [r for h in holdbacks for r in h.releases if r.status == "pending"]
    return {
        "total": len(holdbacks),
        "by_status": dict(Counter(h.status for h in holdbacks)),
        "total_retained": money(sum(h.original_amount for h in holdbacks)),
        "total_outstanding": money(sum(h.current_amount for h in holdbacks)),
        "total_released": money(sum(h.released_amount for h in holdbacks)),
        "pending_releases": len(pending),
        "pending_release_amount": money(sum(r.amount for r in pending)),
    }
