"""
Progress certificate service — the certificate approval workflow.

Transition flow (each step writes one audit entry):
    create  → draft
    submit  : draft            → pending_approval
    approve : pending_approval → approved   (subcontract totals + holdback)
    reject  : pending_approval → rejected   (terminal; bill again with a new draft)
    mark_as_paid : approved    → paid       (terminal; needs a payment reference)

Invariant maintained at approval: total_paid ≤ total_certified ≤ subcontract.total_amount.
"""

import logging
from collections import Counter

from sitebooks.core.exceptions import InvalidStateTransition, NotFoundError, ValidationError
from sitebooks.models import _utcnow, db
from sitebooks.models.audit import record_audit
from sitebooks.models.progress_certificate import (
    CERTIFIED_STATUSES,
    ProgressCertificate,
    validate_certificate_transition,
)
from sitebooks.services import holdback_service, subcontract_service
from sitebooks.services.code_generator import generate_certificate_number
from sitebooks.utils.helpers import commit_or_raise, ensure_aware, money, paginated, parse_date
from sitebooks.utils.sanitize import sanitize_number, sanitize_text

logger = logging.getLogger(__name__)

AMOUNT_TOLERANCE = 0.01


def calculate_net_payable(subcontract, amount_certified: float, previous_certified: float | None = None) -> dict:
    """
    Work out the money of one certificate against its subcontract.

    retention   = amount × retention% / 100
    net_payable = amount − retention
    cumulative  = previous + amount
    remaining   = total − cumulative
    % complete  = cumulative / total × 100
    """
    if previous_certified is None:
        previous_certified = subcontract.total_certified or 0.0
    amount = money(amount_certified)
    retention = money(amount * (subcontract.retention_percentage or 0) / 100)
    cumulative = money(previous_certified + amount)
    total = subcontract.total_amount or 0.0
    return {
        "amount_certified": amount,
        "retention_amount": retention,
        "net_payable": money(amount - retention),
        "previous_certified": money(previous_certified),
        "cumulative_certified": cumulative,
        "remaining_balance": money(total - cumulative),
        "percentage_complete": round(cumulative / total * 100, 2) if total else 0.0,
    }


def _apply_calculation(cert: ProgressCertificate, calc: dict) -> None:
    for field in ("amount_certified", "retention_amount", "net_payable",
                  "previous_certified", "cumulative_certified", "percentage_complete"):
        setattr(cert, field, calc[field])


def _status_change(cert: ProgressCertificate, target: str, action: str) -> str:
    if not validate_certificate_transition(cert.status, target):
        raise InvalidStateTransition("certificate", cert.id, cert.status, target,
                                     reason=f"{action} requires a different status")
    previous = cert.status
    cert.status = target
    return previous


def _parse_amount(value) -> float:
    amount = sanitize_number(value, 0)
    if amount is None or amount <= 0:
        raise ValidationError.for_field("amount_certified", "amount_certified must be greater than 0")
    return float(amount)


def _parse_period(data: dict, cert: ProgressCertificate | None = None):
    start = parse_date(data.get("period_start")) if "period_start" in data or cert is None else cert.period_start
    end = parse_date(data.get("period_end")) if "period_end" in data or cert is None else cert.period_end
    errors = []
    if start is None:
        errors.append({"field": "period_start", "message": "period_start is required (YYYY-MM-DD)"})
    if end is None:
        errors.append({"field": "period_end", "message": "period_end is required (YYYY-MM-DD)"})
    if start and end and start > end:
        errors.append({"field": "period_end", "message": "period_end must not be before period_start"})
    if errors:
        raise ValidationError("Invalid certificate period", errors=errors)
    return start, end


def _check_headroom(subcontract, amount: float) -> None:
    if amount > subcontract.remaining_balance + AMOUNT_TOLERANCE:
        raise ValidationError.for_field(
            "amount_certified",
            f"Certified amount {amount:.2f} exceeds remaining balance {subcontract.remaining_balance:.2f}",
        )


# ── CRUD ─────────────────────────────────────────────────────────────────────

def get_certificate(certificate_id: str) -> ProgressCertificate:
    cert = db.session.get(ProgressCertificate, certificate_id)
    if cert is None:
        raise NotFoundError(resource="ProgressCertificate", resource_id=certificate_id)
    return cert


def create_certificate(data: dict, user_id: str) -> ProgressCertificate:
    sc = subcontract_service.get_subcontract(data.get("subcontract_id"))
    if sc.status != "active":
        raise ValidationError.for_field("subcontract_id", f"Subcontract is {sc.status}; certificates need an active one")

    amount = _parse_amount(data.get("amount_certified"))
    start, end = _parse_period(data)
    _check_headroom(sc, amount)

    cert = ProgressCertificate(
        certificate_number=generate_certificate_number(sc),
        subcontract_id=sc.id,
        project_id=sc.project_id,
        period_start=start,
        period_end=end,
        description=sanitize_text(data.get("description")) or None,
        notes=sanitize_text(data.get("notes")) or None,
        status="draft",
        created_by=user_id,
    )
    _apply_calculation(cert, calculate_net_payable(sc, amount))
    db.session.add(cert)
    db.session.flush()

    record_audit(
        action="certificate_created",
        entity_type="certificate",
        entity_id=cert.id,
        entity_name=cert.certificate_number,
        user_id=user_id,
        project_id=cert.project_id,
        new_state={"status": cert.status, "amount_certified": cert.amount_certified},
        metadata={"subcontract_id": sc.id},
    )
    commit_or_raise()
    logger.info("Certificate %s drafted for %.2f", cert.certificate_number, amount,
                extra={"certificate_id": cert.id, "subcontract_id": sc.id})
    return cert


def update_certificate(certificate_id: str, data: dict, user_id: str) -> ProgressCertificate:
    cert = get_certificate(certificate_id)
    if cert.status != "draft":
        raise InvalidStateTransition("certificate", cert.id, cert.status, "updated",
                                     reason="only draft certificates can be edited")
    sc = cert.subcontract
    before = {"amount_certified": cert.amount_certified, "period_start": str(cert.period_start),
              "period_end": str(cert.period_end)}

    start, end = _parse_period(data, cert)
    if "amount_certified" in data:
        amount = _parse_amount(data["amount_certified"])
        _check_headroom(sc, amount)
        _apply_calculation(cert, calculate_net_payable(sc, amount))
    cert.period_start, cert.period_end = start, end
    for field in ("description", "notes"):
        if field in data:
            setattr(cert, field, sanitize_text(data[field]) or None)

    record_audit(
        action="certificate_updated",
        entity_type="certificate",
        entity_id=cert.id,
        entity_name=cert.certificate_number,
        user_id=user_id,
        project_id=cert.project_id,
        previous_state=before,
        new_state={"amount_certified": cert.amount_certified, "period_start": str(cert.period_start),
                   "period_end": str(cert.period_end)},
    )
    commit_or_raise()
    return cert


def delete_certificate(certificate_id: str, user_id: str) -> None:
    cert = get_certificate(certificate_id)
    if cert.status != "draft":
        raise InvalidStateTransition("certificate", cert.id, cert.status, "deleted",
                                     reason="only draft certificates can be deleted")
    record_audit(
        action="certificate_deleted",
        entity_type="certificate",
        entity_id=cert.id,
        entity_name=cert.certificate_number,
        user_id=user_id,
        project_id=cert.project_id,
        previous_state={"status": cert.status, "amount_certified": cert.amount_certified},
    )
    db.session.delete(cert)
    commit_or_raise()


# ── Workflow ─────────────────────────────────────────────────────────────────

def submit_certificate(certificate_id: str, user_id: str) -> ProgressCertificate:
    cert = get_certificate(certificate_id)
    previous = _status_change(cert, "pending_approval", "submit")
    cert.submitted_by = user_id
    cert.submitted_at = _utcnow()

    record_audit(
        action="certificate_submitted",
        entity_type="certificate",
        entity_id=cert.id,
        entity_name=cert.certificate_number,
        user_id=user_id,
        project_id=cert.project_id,
        previous_state={"status": previous},
        new_state={"status": cert.status},
    )
    commit_or_raise()
    return cert


def approve_certificate(certificate_id: str, approver_id: str, notes: str | None = None) -> ProgressCertificate:
    """
    pending_approval → approved.

    Re-prices the certificate against the subcontract's certified total at
    approval time, refreshes subcontract totals and opens a holdback for
    the retention.
    """
    cert = get_certificate(certificate_id)
    sc = cert.subcontract
    if not validate_certificate_transition(cert.status, "approved"):
        raise InvalidStateTransition("certificate", cert.id, cert.status, "approved")

    if sc.total_certified + cert.amount_certified > sc.total_amount + AMOUNT_TOLERANCE:
        raise ValidationError.for_field(
            "amount_certified",
            "Approving would certify more than the subcontract total",
        )

    _apply_calculation(cert, calculate_net_payable(sc, cert.amount_certified))
    previous = _status_change(cert, "approved", "approve")
    cert.approved_by = approver_id
    cert.approved_at = _utcnow()
    cert.approval_notes = sanitize_text(notes) or None

    subcontract_service.recalculate_financials(sc)
    holdback_service.create_holdback_for_certificate(cert, approver_id)

    record_audit(
        action="certificate_approved",
        entity_type="certificate",
        entity_id=cert.id,
        entity_name=cert.certificate_number,
        user_id=approver_id,
        project_id=cert.project_id,
        previous_state={"status": previous},
        new_state={"status": cert.status},
        financial_impact={
            "amount": cert.amount_certified,
            "currency": sc.currency,
            "budget_impact": "certified",
            "description": f"Certified {cert.percentage_complete:.2f}% of {sc.contract_number}",
        },
        metadata={"subcontract_id": sc.id, "retention_amount": cert.retention_amount},
    )
    commit_or_raise()
    logger.info("Certificate %s approved", cert.certificate_number,
                extra={"certificate_id": cert.id, "user_id": approver_id})
    return cert


def reject_certificate(certificate_id: str, rejector_id: str, reason: str) -> ProgressCertificate:
    cert = get_certificate(certificate_id)
    reason = sanitize_text(reason)
    if not reason:
        raise ValidationError.for_field("reason", "A rejection reason is required")
    previous = _status_change(cert, "rejected", "reject")
    cert.rejected_by = rejector_id
    cert.rejected_at = _utcnow()
    cert.rejection_reason = reason

    record_audit(
        action="certificate_rejected",
        entity_type="certificate",
        entity_id=cert.id,
        entity_name=cert.certificate_number,
        user_id=rejector_id,
        project_id=cert.project_id,
        previous_state={"status": previous},
        new_state={"status": cert.status},
        metadata={"reason": reason},
    )
    commit_or_raise()
    return cert


def mark_as_paid(certificate_id: str, payment_id: str, user_id: str) -> ProgressCertificate:
    """approved → paid.  ``payment_id`` is the treasury reference of the transfer."""
    cert = get_certificate(certificate_id)
    payment_id = sanitize_text(payment_id, 100)
    if not payment_id:
        raise ValidationError.for_field("payment_id", "A payment reference is required")
    previous = _status_change(cert, "paid", "mark_as_paid")
    cert.payment_id = payment_id
    cert.paid_by = user_id
    cert.paid_at = _utcnow()

    sc = cert.subcontract
    subcontract_service.recalculate_financials(sc)

    record_audit(
        action="certificate_paid",
        entity_type="certificate",
        entity_id=cert.id,
        entity_name=cert.certificate_number,
        user_id=user_id,
        project_id=cert.project_id,
        previous_state={"status": previous},
        new_state={"status": cert.status, "payment_id": payment_id},
        financial_impact={
            "amount": cert.net_payable,
            "currency": sc.currency,
            "budget_impact": "paid",
            "description": f"Payment {payment_id}",
        },
        metadata={"subcontract_id": sc.id},
    )
    commit_or_raise()
    return cert


def create_payment_from_certificate(certificate_id: str) -> dict:
    """Build the payment instruction for an approved certificate (no state change)."""
    cert = get_certificate(certificate_id)
    if cert.status != "approved":
        raise InvalidStateTransition("certificate", cert.id, cert.status, "payment",
                                     reason="only approved certificates can be paid")
    sc = cert.subcontract
    return {
        "reference": f"PAY-{cert.certificate_number}",
        "certificate_id": cert.id,
        "subcontract_id": sc.id,
        "project_id": cert.project_id,
        "payee_id": sc.subcontractor_id,
        "payee_name": sc.subcontractor_name,
        "gross_amount": cert.amount_certified,
        "retention_amount": cert.retention_amount,
        "amount": cert.net_payable,
        "currency": sc.currency,
        "description": f"Progress certificate {cert.certificate_number}",
    }


# ── Queries ──────────────────────────────────────────────────────────────────

def get_certificates_by_subcontract(subcontract_id: str) -> list[ProgressCertificate]:
    return (ProgressCertificate.query.filter_by(subcontract_id=subcontract_id)
            .order_by(ProgressCertificate.period_start, ProgressCertificate.created_at).all())


def get_certificates_by_project(project_id: str) -> list[ProgressCertificate]:
    return (ProgressCertificate.query.filter_by(project_id=project_id)
            .order_by(ProgressCertificate.created_at.desc()).all())


def get_pending_certificates(project_id: str | None = None) -> list[ProgressCertificate]:
    q = ProgressCertificate.query.filter_by(status="pending_approval")
    if project_id:
        q = q.filter_by(project_id=project_id)
    return q.order_by(ProgressCertificate.submitted_at).all()


def query_certificates(filters: dict | None = None, page: int = 1, per_page: int = 50) -> dict:
    filters = filters or {}
    q = ProgressCertificate.query
    for field in ("project_id", "subcontract_id", "status"):
        if filters.get(field):
            q = q.filter(getattr(ProgressCertificate, field) == filters[field])
    start = parse_date(filters.get("start_date"))
    if start:
        q = q.filter(ProgressCertificate.period_end >= start)
    end = parse_date(filters.get("end_date"))
    if end:
        q = q.filter(ProgressCertificate.period_start <= end)
    q = q.order_by(ProgressCertificate.created_at.desc())
    return paginated(q, page, per_page, key="certificates")


def get_certificate_stats(project_id: str | None = None, subcontract_id: str | None = None) -> dict:
    q = ProgressCertificate.query
    if project_id:
        q = q.filter_by(project_id=project_id)
    if subcontract_id:
        q = q.filter_by(subcontract_id=subcontract_id)
    certs = q.all()

    certified = [c for c in certs if c.status in CERTIFIED_STATUSES]
    durations = [
        (ensure_aware(c.approved_at) - ensure_aware(c.submitted_at)).total_seconds() / 3600
        for c in certified
        if c.approved_at and c.submitted_at
    ]
    return {
        "total": len(certs),
        "by_status": dict(Counter(c.status for c in certs)),
        "total_certified": money(sum(c.amount_certified for c in certified)),
        "total_retention": money(sum(c.retention_amount for c in certified)),
        "total_net_payable": money(sum(c.net_payable for c in certified)),
        "total_paid": money(sum(c.net_payable for c in certs if c.status == "paid")),
        "pending_amount": money(sum(c.amount_certified for c in certs if c.status == "pending_approval")),
        "average_approval_time_hours": round(sum(durations) / len(durations), 2) if durations else 0.0,
    }
