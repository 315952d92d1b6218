"""
Subcontract service.

Owns ``subcontracts`` and ``payment_schedule_items`` and keeps the derived
totals in step with the certificates:

    total_certified   = Σ amount_certified   (approved + paid certificates)
    total_retained    = Σ retention_amount   (approved + paid certificates)
    total_paid        = Σ net_payable        (paid certificates)
    remaining_balance = total_amount − total_certified

Lifecycle:
    draft → active → completed
    draft | active → cancelled   (refused once anything was paid)
"""

import logging
from collections import Counter

from sitebooks.core.exceptions import ConflictError, InvalidStateTransition, NotFoundError, ValidationError
from sitebooks.models import _utcnow, db
from sitebooks.models.audit import record_audit
from sitebooks.models.progress_certificate import CERTIFIED_STATUSES, ProgressCertificate
from sitebooks.models.subcontract import (
    PaymentScheduleItem,
    Subcontract,
    validate_subcontract_transition,
)
from sitebooks.services import cost_code_service
from sitebooks.utils.helpers import commit_or_raise, money, paginated, parse_date
from sitebooks.utils.sanitize import sanitize_number, sanitize_text

logger = logging.getLogger(__name__)

SCHEDULE_TOLERANCE = 0.01

_EDITABLE_FIELDS = ("description", "scope_of_work", "notes", "end_date", "retention_percentage", "cost_code_ids")


def _snapshot(sc: Subcontract) -> dict:
    return {
        "status": sc.status,
        "total_amount": sc.total_amount,
        "retention_percentage": sc.retention_percentage,
        "total_certified": sc.total_certified,
        "total_paid": sc.total_paid,
        "remaining_balance": sc.remaining_balance,
    }


def validate_subcontract(data: dict) -> list[dict]:
    """Return field-level errors for a create payload (empty when valid)."""
    errors = []
    for field in ("contract_number", "project_id", "subcontractor_id", "subcontractor_name", "description"):
        if not sanitize_text(data.get(field)):
            errors.append({"field": field, "message": f"{field} is required"})

    total = sanitize_number(data.get("total_amount"), 0)
    if total is None or total <= 0:
        errors.append({"field": "total_amount", "message": "total_amount must be greater than 0"})

    retention = sanitize_number(data.get("retention_percentage", 0), 0, 100)
    if retention is None:
        errors.append({"field": "retention_percentage", "message": "retention_percentage must be between 0 and 100"})

    start, end = parse_date(data.get("start_date")), parse_date(data.get("end_date"))
    if start is None:
        errors.append({"field": "start_date", "message": "start_date is required (YYYY-MM-DD)"})
    if end is None:
        errors.append({"field": "end_date", "message": "end_date is required (YYYY-MM-DD)"})
    if start and end and start > end:
        errors.append({"field": "end_date", "message": "end_date must not be before start_date"})

    schedule = data.get("payment_schedule") or []
    if schedule:
        pcts = [sanitize_number(item.get("percentage"), 0, 100) for item in schedule]
        if any(p is None for p in pcts):
            errors.append({"field": "payment_schedule", "message": "each item needs a percentage between 0 and 100"})
        elif abs(sum(pcts) - 100) > SCHEDULE_TOLERANCE:
            errors.append({"field": "payment_schedule", "message": "payment schedule percentages must sum to 100"})
    return errors


def get_subcontract(subcontract_id: str) -> Subcontract:
    sc = db.session.get(Subcontract, subcontract_id)
    if sc is None:
        raise NotFoundError(resource="Subcontract", resource_id=subcontract_id)
    return sc


def create_subcontract(data: dict, user_id: str) -> Subcontract:
    errors = validate_subcontract(data)
    if errors:
        raise ValidationError("Invalid subcontract", errors=errors)

    contract_number = sanitize_text(data["contract_number"], 50)
    if Subcontract.query.filter_by(contract_number=contract_number).first():
        raise ConflictError(resource="Subcontract", field="contract_number", value=contract_number)

    total = money(sanitize_number(data["total_amount"], 0))
    sc = Subcontract(
        contract_number=contract_number,
        project_id=sanitize_text(data["project_id"], 64),
        subcontractor_id=sanitize_text(data["subcontractor_id"], 64),
        subcontractor_name=sanitize_text(data["subcontractor_name"], 255),
        description=sanitize_text(data["description"]),
        scope_of_work=sanitize_text(data.get("scope_of_work"), 5000) or None,
        total_amount=total,
        currency=data.get("currency") or "USD",
        retention_percentage=float(sanitize_number(data.get("retention_percentage", 0), 0, 100)),
        start_date=parse_date(data["start_date"]),
        end_date=parse_date(data["end_date"]),
        cost_code_ids=list(data.get("cost_code_ids") or []),
        notes=sanitize_text(data.get("notes")) or None,
        status="draft",
        remaining_balance=total,
        created_by=user_id,
    )
    for seq, item in enumerate(data.get("payment_schedule") or [], 1):
        pct = float(sanitize_number(item["percentage"], 0, 100))
        sc.schedule_items.append(PaymentScheduleItem(
            sequence=seq,
            description=sanitize_text(item.get("description"), 255) or f"Milestone {seq}",
            percentage=pct,
            amount=money(total * pct / 100),
            due_date=parse_date(item.get("due_date")),
        ))
    db.session.add(sc)
    db.session.flush()

    record_audit(
        action="subcontract_created",
        entity_type="subcontract",
        entity_id=sc.id,
        entity_name=sc.contract_number,
        user_id=user_id,
        project_id=sc.project_id,
        new_state=_snapshot(sc),
        financial_impact={"amount": sc.total_amount, "currency": sc.currency,
                          "budget_impact": "none", "description": "Subcontract drafted"},
    )
    commit_or_raise()
    logger.info("Subcontract %s created", sc.contract_number, extra={"subcontract_id": sc.id})
    return sc


def update_subcontract(subcontract_id: str, data: dict, user_id: str) -> Subcontract:
    sc = get_subcontract(subcontract_id)
    if sc.status not in ("draft", "active"):
        raise InvalidStateTransition("subcontract", sc.id, sc.status, "updated",
                                     reason="only draft or active subcontracts can be edited")

    before = {f: getattr(sc, f) for f in _EDITABLE_FIELDS}
    errors = []
    retention = end = None
    if "retention_percentage" in data:
        retention = sanitize_number(data["retention_percentage"], 0, 100)
        if retention is None:
            errors.append({"field": "retention_percentage", "message": "retention_percentage must be between 0 and 100"})
        elif sc.status != "draft":
            errors.append({"field": "retention_percentage", "message": "retention is fixed once the subcontract is active"})
    if "end_date" in data:
        end = parse_date(data["end_date"])
        if end is None or end < sc.start_date:
            errors.append({"field": "end_date", "message": "end_date must be a date not before start_date"})
    if errors:
        raise ValidationError("Invalid subcontract update", errors=errors)

    if retention is not None:
        sc.retention_percentage = float(retention)
    if end is not None:
        sc.end_date = end
    for field in ("description", "scope_of_work", "notes"):
        if field in data:
            setattr(sc, field, sanitize_text(data[field], 5000) or None)
    if "cost_code_ids" in data:
        sc.cost_code_ids = list(data["cost_code_ids"] or [])

    after = {f: getattr(sc, f) for f in _EDITABLE_FIELDS}
    record_audit(
        action="subcontract_updated",
        entity_type="subcontract",
        entity_id=sc.id,
        entity_name=sc.contract_number,
        user_id=user_id,
        project_id=sc.project_id,
        previous_state={k: str(v) if v is not None else None for k, v in before.items()},
        new_state={k: str(v) if v is not None else None for k, v in after.items()},
    )
    commit_or_raise()
    return sc


def _transition(sc: Subcontract, target: str) -> str:
    if not validate_subcontract_transition(sc.status, target):
        raise InvalidStateTransition("subcontract", sc.id, sc.status, target)
    previous = sc.status
    sc.status = target
    return previous


def _committed_shares(sc: Subcontract, amount: float) -> None:
    """Spread ``amount`` evenly over the subcontract's cost-code budget lines."""
    codes = sc.cost_code_ids or []
    if not codes:
        return
    share = money(amount / len(codes))
    for cost_code_id in codes:
        cost_code_service.update_budget_committed(sc.project_id, cost_code_id, share)


def approve_subcontract(subcontract_id: str, user_id: str) -> Subcontract:
    """draft → active.  Commits the contract value against the project budget."""
    sc = get_subcontract(subcontract_id)
    previous = _transition(sc, "active")
    sc.approved_by = user_id
    sc.approved_at = _utcnow()
    _committed_shares(sc, sc.total_amount)

    record_audit(
        action="subcontract_approved",
        entity_type="subcontract",
        entity_id=sc.id,
        entity_name=sc.contract_number,
        user_id=user_id,
        project_id=sc.project_id,
        previous_state={"status": previous},
        new_state={"status": sc.status},
        financial_impact={"amount": sc.total_amount, "currency": sc.currency,
                          "budget_impact": "committed", "description": "Subcontract committed"},
    )
    commit_or_raise()
    return sc


def complete_subcontract(subcontract_id: str, user_id: str) -> Subcontract:
    sc = get_subcontract(subcontract_id)
    previous = _transition(sc, "completed")
    sc.completed_at = _utcnow()
    record_audit(
        action="subcontract_completed",
        entity_type="subcontract",
        entity_id=sc.id,
        entity_name=sc.contract_number,
        user_id=user_id,
        project_id=sc.project_id,
        previous_state={"status": previous},
        new_state={"status": sc.status},
    )
    commit_or_raise()
    return sc


def cancel_subcontract(subcontract_id: str, user_id: str, reason: str | None = None) -> Subcontract:
    sc = get_subcontract(subcontract_id)
    if sc.total_paid > 0:
        raise InvalidStateTransition("subcontract", sc.id, sc.status, "cancelled",
                                     reason="payments have already been made")
    previous = _transition(sc, "cancelled")
    sc.cancelled_at = _utcnow()
    sc.cancellation_reason = sanitize_text(reason) or None
    if previous == "active":
        _committed_shares(sc, -(sc.total_amount - sc.total_certified))

    record_audit(
        action="subcontract_cancelled",
        entity_type="subcontract",
        entity_id=sc.id,
        entity_name=sc.contract_number,
        user_id=user_id,
        project_id=sc.project_id,
        previous_state={"status": previous},
        new_state={"status": sc.status},
        metadata={"reason": sc.cancellation_reason},
    )
    commit_or_raise()
    return sc


def delete_subcontract(subcontract_id: str, user_id: str) -> None:
    """Delete a subcontract that has no payments and no certificates past draft."""
    sc = get_subcontract(subcontract_id)
    if sc.total_paid > 0:
        raise ValidationError.for_field("subcontract_id", "Cannot delete a subcontract with payments")
    if sc.certificates.filter(ProgressCertificate.status != "draft").count():
        raise ValidationError.for_field("subcontract_id", "Cannot delete a subcontract with submitted certificates")
    if sc.status == "active":
        _committed_shares(sc, -(sc.total_amount - sc.total_certified))

    for cert in sc.certificates:
        record_audit(
            action="certificate_deleted",
            entity_type="certificate",
            entity_id=cert.id,
            entity_name=cert.certificate_number,
            user_id=user_id,
            project_id=cert.project_id,
            previous_state={"status": cert.status, "amount_certified": cert.amount_certified},
            metadata={"cascade": "subcontract_deleted", "subcontract_id": sc.id},
        )
        db.session.delete(cert)

    record_audit(
        action="subcontract_deleted",
        entity_type="subcontract",
        entity_id=sc.id,
        entity_name=sc.contract_number,
        user_id=user_id,
        project_id=sc.project_id,
        previous_state=_snapshot(sc),
        financial_impact={"amount": sc.total_amount, "currency": sc.currency,
                          "budget_impact": "released" if sc.status == "active" else "none",
                          "description": "Subcontract deleted"},
    )
    db.session.delete(sc)
    commit_or_raise()


# ── Derived totals ───────────────────────────────────────────────────────────

def recalculate_financials(sc: Subcontract) -> Subcontract:
    """Recompute derived totals and schedule item status from certificates.

    Does not commit.
    """
    db.session.flush()
    certified = sc.certificates.filter(ProgressCertificate.status.in_(CERTIFIED_STATUSES)).all()
    paid = [c for c in certified if c.status == "paid"]

    sc.total_certified = money(sum(c.amount_certified for c in certified))
    sc.total_retained = money(sum(c.retention_amount for c in certified))
    sc.total_paid = money(sum(c.net_payable for c in paid))
    sc.remaining_balance = money(sc.total_amount - sc.total_certified)

    paid_certified = sum(c.amount_certified for c in paid)
    running = 0.0
    for item in sc.schedule_items:
        running += item.amount
        if running <= paid_certified + SCHEDULE_TOLERANCE:
            item.status = "paid"
        elif running <= sc.total_certified + SCHEDULE_TOLERANCE:
            item.status = "certified"
        else:
            item.status = "pending"
    return sc


# ── Queries ──────────────────────────────────────────────────────────────────

def query_subcontracts(filters: dict | None = None, page: int = 1, per_page: int = 50) -> dict:
    filters = filters or {}
    q = Subcontract.query
    for field in ("project_id", "subcontractor_id", "status"):
        if filters.get(field):
            q = q.filter(getattr(Subcontract, field) == filters[field])
    search = (filters.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(db.or_(Subcontract.contract_number.ilike(like),
                            Subcontract.subcontractor_name.ilike(like),
                            Subcontract.description.ilike(like)))
    q = q.order_by(Subcontract.created_at.desc())
    return paginated(q, page, per_page, key="subcontracts")


def get_subcontracts_by_project(project_id: str) -> list[Subcontract]:
    return Subcontract.query.filter_by(project_id=project_id).order_by(Subcontract.contract_number).all()


def get_committed_cost(project_id: str) -> float:
    """Contract value of the project's active subcontracts."""
    active = Subcontract.query.filter_by(project_id=project_id, status="active").all()
    return money(sum(sc.total_amount for sc in active))


def get_retention_balance(subcontract_id: str) -> dict:
    from sitebooks.models.holdback import Holdback

    sc = get_subcontract(subcontract_id)
    holdbacks = Holdback.query.filter_by(subcontract_id=sc.id).all()
    released = money(sum(h.released_amount for h in holdbacks))
    return {
        "subcontract_id": sc.id,
        "retention_percentage": sc.retention_percentage,
        "total_retained": sc.total_retained,
        "released": released,
        "balance": money(sc.total_retained - released),
    }


def get_subcontract_stats(project_id: str | None = None) -> dict:
    q = Subcontract.query
    if project_id:
        q = q.filter_by(project_id=project_id)
    subcontracts = q.all()
    return {
        "total": len(subcontracts),
        "by_status": dict(Counter(sc.status for sc in subcontracts)),
        "total_contract_value": money(sum(sc.total_amount for sc in subcontracts)),
        "total_certified": money(sum(sc.total_certified for sc in subcontracts)),
        "total_paid": money(sum(sc.total_paid for sc in subcontracts)),
        "total_retained": money(sum(sc.total_retained for sc in subcontracts)),
        "remaining_balance": money(sum(sc.remaining_balance for sc in subcontracts)),
    }
