"""
Project financials — read-side composition for the project dashboard.

Combines:
  - Budget lines (budgeted / committed / actual per cost code)
  - Expenses (approved and paid count as actual cost)
  - Subcontracts (certified, retained, paid)
  - Outstanding retention holdbacks
  - Confirmed income
"""

import logging

from sqlalchemy import func

from sitebooks.models import db
from sitebooks.models.expense import Expense
from sitebooks.models.holdback import Holdback
from sitebooks.models.income import Income
from sitebooks.services import cost_code_service, subcontract_service
from sitebooks.utils.helpers import money

logger = logging.getLogger(__name__)

ACTUAL_EXPENSE_STATUSES = ("approved", "paid")


def _expense_totals(project_id: str) -> dict:
    rows = (
        db.session.query(Expense.status, func.count(Expense.id), func.coalesce(func.sum(Expense.total_amount), 0))
        .filter(Expense.project_id == project_id, Expense.deleted_at.is_(None))
        .group_by(Expense.status)
        .all()
    )
    by_status = {status: {"count": count, "amount": money(amount)} for status, count, amount in rows}
    review = (
        Expense.query_active()
        .filter(Expense.project_id == project_id, Expense.needs_review.is_(True))
        .count()
    )
    return {
        "by_status": by_status,
        "actual": money(sum(by_status.get(s, {}).get("amount", 0) for s in ACTUAL_EXPENSE_STATUSES)),
        "pending": by_status.get("pending_approval", {}).get("amount", 0.0),
        "needs_review": review,
    }


def get_project_financials(project_id: str) -> dict:
    budget = cost_code_service.get_project_budget_summary(project_id)
    expenses = _expense_totals(project_id)
    subcontracts = subcontract_service.get_subcontracts_by_project(project_id)
    committed = subcontract_service.get_committed_cost(project_id)

    retention_outstanding = money(
        db.session.query(func.coalesce(func.sum(Holdback.current_amount), 0))
        .filter(Holdback.project_id == project_id)
        .scalar()
    )
    income = money(
        db.session.query(func.coalesce(func.sum(Income.amount), 0))
        .filter(Income.project_id == project_id, Income.status == "confirmed")
        .scalar()
    )

    subcontract_paid = money(sum(sc.total_paid for sc in subcontracts))
    total_cost = money(expenses["actual"] + subcontract_paid)
    margin = money(income - total_cost)

    return {
        "project_id": project_id,
        "budget": {
            "total_budgeted": budget["total_budgeted"],
            "total_committed": budget["total_committed"],
            "total_actual": budget["total_actual"],
            "variance": budget["total_variance"],
            "percentage_complete": budget["percentage_complete"],
            "by_status": budget["by_status"],
        },
        "expenses": expenses,
        "subcontracts": {
            "count": len(subcontracts),
            "committed": committed,
            "certified": money(sum(sc.total_certified for sc in subcontracts)),
            "retained": money(sum(sc.total_retained for sc in subcontracts)),
            "paid": subcontract_paid,
            "retention_outstanding": retention_outstanding,
            "items": [
                {
                    "id": sc.id,
                    "contract_number": sc.contract_number,
                    "subcontractor_name": sc.subcontractor_name,
                    "status": sc.status,
                    "total_amount": sc.total_amount,
                    "total_certified": sc.total_certified,
                    "total_paid": sc.total_paid,
                    "total_retained": sc.total_retained,
                    "remaining_balance": sc.remaining_balance,
                }
                for sc in subcontracts
            ],
        },
        "income": income,
        "total_cost": total_cost,
        "margin": margin,
        "margin_percentage": round(margin / income * 100, 2) if income else None,
        "budget_variance": money(budget["total_budgeted"] - total_cost),
    }
