"""
Project income service.

Income is recorded ``confirmed`` by default.  Confirmed income can be
cancelled but not deleted; only pending or cancelled rows may be removed.
"""

import logging
from datetime import timedelta

from flask import current_app

from sitebooks.core.exceptions import InvalidStateTransition, NotFoundError, ValidationError
from sitebooks.models import _utcnow, db
from sitebooks.models.audit import record_audit
from sitebooks.models.expense import PAYMENT_METHODS
from sitebooks.models.income import INCOME_CATEGORIES, INCOME_STATUSES, Income
from sitebooks.utils.helpers import commit_or_raise, money, parse_date
from sitebooks.utils.sanitize import sanitize_number, sanitize_text

logger = logging.getLogger(__name__)


def _snapshot(income: Income) -> dict:
    return {
        "amount": income.amount,
        "date": income.date.isoformat() if income.date else None,
        "description": income.description,
        "category": income.category,
        "status": income.status,
    }


def _validate(data: dict, partial: bool = False) -> list[dict]:
    errors = []
    if not partial or "project_id" in data:
        if not sanitize_text(data.get("project_id")):
            errors.append({"field": "project_id", "message": "project_id is required"})
    if not partial or "amount" in data:
        amount = sanitize_number(data.get("amount"), 0)
        if amount is None or amount <= 0:
            errors.append({"field": "amount", "message": "amount must be greater than 0"})
    if not partial or "description" in data:
        if len(sanitize_text(data.get("description"))) < 5:
            errors.append({"field": "description", "message": "description must be at least 5 characters"})
    if not partial or "date" in data:
        when = parse_date(data.get("date"))
        if when is None:
            errors.append({"field": "date", "message": "date is required (YYYY-MM-DD)"})
        elif when > (_utcnow() + timedelta(days=1)).date():
            errors.append({"field": "date", "message": "date cannot be more than one day in the future"})
    if data.get("category") is not None and data["category"] not in INCOME_CATEGORIES:
        errors.append({"field": "category", "message": f"category must be one of {', '.join(sorted(INCOME_CATEGORIES))}"})
    if data.get("payment_method") is not None and data["payment_method"] not in PAYMENT_METHODS:
        errors.append({"field": "payment_method", "message": "Unknown payment method"})
    if data.get("status") is not None and data["status"] not in INCOME_STATUSES - {"cancelled"}:
        errors.append({"field": "status", "message": "status must be pending or confirmed"})
    return errors


def get_income(income_id: str) -> Income:
    income = db.session.get(Income, income_id)
    if income is None:
        raise NotFoundError(resource="Income", resource_id=income_id)
    return income


def create_income(data: dict, user_id: str) -> Income:
    errors = _validate(data)
    if errors:
        raise ValidationError("Validation failed", errors=errors)

    income = Income(
        project_id=sanitize_text(data["project_id"], 64),
        amount=money(sanitize_number(data["amount"], 0)),
        currency=data.get("currency") or current_app.config["DEFAULT_CURRENCY"],
        date=parse_date(data["date"]),
        description=sanitize_text(data["description"]),
        category=data.get("category") or "other",
        payment_method=data.get("payment_method"),
        reference=sanitize_text(data.get("reference"), 100) or None,
        status=data.get("status") or "confirmed",
        notes=sanitize_text(data.get("notes")) or None,
        created_by=user_id,
    )
    db.session.add(income)
    db.session.flush()
    record_audit(
        action="income_created",
        entity_type="income",
        entity_id=income.id,
        entity_name=income.reference or income.description[:50],
        user_id=user_id,
        project_id=income.project_id,
        new_state=_snapshot(income),
        financial_impact={"amount": income.amount, "currency": income.currency,
                          "budget_impact": "income", "description": income.description},
    )
    commit_or_raise()
    return income


def update_income(income_id: str, data: dict, user_id: str) -> Income:
    income = get_income(income_id)
    if income.status == "cancelled":
        raise InvalidStateTransition("income", income.id, income.status, "updated")
    errors = _validate(data, partial=True)
    if errors:
        raise ValidationError("Validation failed", errors=errors)

    before = _snapshot(income)
    if "amount" in data:
        income.amount = money(sanitize_number(data["amount"], 0))
    if "date" in data:
        income.date = parse_date(data["date"])
    if "description" in data:
        income.description = sanitize_text(data["description"])
    for key in ("category", "payment_method", "status"):
        if data.get(key) is not None:
            setattr(income, key, data[key])
    if "reference" in data:
        income.reference = sanitize_text(data["reference"], 100) or None
    if "notes" in data:
        income.notes = sanitize_text(data["notes"]) or None

    record_audit(
        action="income_updated",
        entity_type="income",
        entity_id=income.id,
        user_id=user_id,
        project_id=income.project_id,
        previous_state=before,
        new_state=_snapshot(income),
    )
    commit_or_raise()
    return income


def cancel_income(income_id: str, user_id: str, reason: str | None = None) -> Income:
    income = get_income(income_id)
    if income.status == "cancelled":
        raise InvalidStateTransition("income", income.id, income.status, "cancelled")
    previous = income.status
    income.status = "cancelled"
    record_audit(
        action="income_cancelled",
        entity_type="income",
        entity_id=income.id,
        user_id=user_id,
        project_id=income.project_id,
        previous_state={"status": previous},
        new_state={"status": income.status},
        financial_impact={"amount": -income.amount, "currency": income.currency,
                          "budget_impact": "income", "description": "Income cancelled"},
        metadata={"reason": sanitize_text(reason) or None},
    )
    commit_or_raise()
    return income


def delete_income(income_id: str, user_id: str) -> None:
    income = get_income(income_id)
    if income.status == "confirmed":
        raise InvalidStateTransition("income", income.id, income.status, "deleted",
                                     reason="cancel confirmed income instead of deleting it")
    record_audit(
        action="income_deleted",
        entity_type="income",
        entity_id=income.id,
        user_id=user_id,
        project_id=income.project_id,
        previous_state=_snapshot(income),
    )
    db.session.delete(income)
    commit_or_raise()


def list_incomes(project_id: str | None = None, status: str | None = None) -> list[Income]:
    q = Income.query
    if project_id:
        q = q.filter(Income.project_id == project_id)
    if status:
        q = q.filter(Income.status == status)
    return q.order_by(Income.date.desc(), Income.created_at.desc()).all()


def get_income_stats(project_id: str | None = None) -> dict:
    """Confirmed income totals, by project and by month (``YYYY-MM``)."""
    incomes = [i for i in list_incomes(project_id) if i.status == "confirmed"]
    by_project: dict[str, float] = {}
    by_month: dict[str, float] = {}
    by_category: dict[str, float] = {}
    for income in incomes:
        by_project[income.project_id] = money(by_project.get(income.project_id, 0) + income.amount)
        month = income.date.strftime("%Y-%m")
        by_month[month] = money(by_month.get(month, 0) + income.amount)
        by_category[income.category] = money(by_category.get(income.category, 0) + income.amount)
    return {
        "count": len(incomes),
        "total": money(sum(i.amount for i in incomes)),
        "by_project": by_project,
        "by_month": dict(sorted(by_month.items())),
        "by_category": by_category,
    }
