"""
Cost code catalog and project budget service.

Owns ``cost_codes`` and ``cost_code_budgets``.  Budget actual/committed
amounts are fed by the expense and subcontract services; those feeds are
derived aggregations and are audited through the triggering action rather
than with their own entry.
"""

import logging
import re
from collections import Counter

from sitebooks.core.exceptions import ConflictError, NotFoundError, ValidationError
from sitebooks.models import db
from sitebooks.models.audit import record_audit
from sitebooks.models.cost_code import COST_CODE_TYPES, CostCode, CostCodeBudget
from sitebooks.models.expense import Expense
from sitebooks.utils.helpers import commit_or_raise, money
from sitebooks.utils.sanitize import sanitize_number, sanitize_text

logger = logging.getLogger(__name__)

CODE_PATTERN = re.compile(r"^\d{2}\.\d{2}\.\d{2}$")

# (code, name, description, category, type, unit, tags)
DEFAULT_COST_CODES = [
    ("01.01.01", "Excavation", "Site excavation for foundations", "Earthwork", "equipment", "m3",
     ["excavation", "earthwork", "digging"]),
    ("01.01.02", "Backfill", "Backfill and soil compaction", "Earthwork", "material", "m3",
     ["backfill", "compaction", "fill"]),
    ("01.02.01", "Demolition", "Demolition of existing structures", "Demolition", "labor", "m2",
     ["demolition", "removal"]),
    ("02.01.01", "Footings", "Construction of foundation footings", "Shallow Foundations", "material", "m3",
     ["footing", "foundation"]),
    ("02.01.02", "Grade Beams", "Construction of foundation grade beams", "Shallow Foundations", "material", "m3",
     ["grade beam", "foundation"]),
    ("03.01.01", "Columns", "Construction of reinforced concrete columns", "Reinforced Concrete", "material", "m3",
     ["column", "concrete", "rebar"]),
    ("03.01.02", "Beams", "Construction of reinforced concrete beams", "Reinforced Concrete", "material", "m3",
     ["beam", "concrete", "rebar"]),
    ("03.01.03", "Slabs", "Construction of reinforced concrete slabs", "Reinforced Concrete", "material", "m2",
     ["slab", "concrete", "formwork"]),
    ("04.01.01", "Brick Walls", "Construction of brick masonry walls", "Walls", "material", "m2",
     ["brick", "masonry", "wall"]),
    ("04.02.01", "Partitions", "Construction of interior partition walls", "Partitions", "material", "m2",
     ["partition", "drywall"]),
    ("05.01.01", "Electrical Wiring", "Installation of electrical wiring", "Wiring", "subcontract", "m",
     ["electrical", "wiring", "cable"]),
    ("05.02.01", "Electrical Panels", "Installation of electrical panels", "Panels", "material", "ea",
     ["panel", "breaker", "electrical"]),
    ("06.01.01", "Water Supply", "Installation of potable water network", "Water Supply", "subcontract", "m",
     ["plumbing", "water", "pipe"]),
    ("06.02.01", "Drainage", "Installation of drainage network", "Drainage", "subcontract", "m",
     ["drainage", "sewer", "pipe"]),
    ("07.01.01", "Flooring", "Installation of floor finishes", "Floors", "material", "m2",
     ["floor", "tile", "flooring"]),
    ("07.02.01", "Painting", "Application of paint", "Painting", "labor", "m2",
     ["paint", "painting", "coating"]),
    ("07.03.01", "Carpentry", "Carpentry and millwork", "Carpentry", "subcontract", "lot",
     ["carpentry", "wood", "doors"]),
]

_EDITABLE_FIELDS = ("name", "description", "category", "subcategory", "type", "unit", "is_active", "tags", "notes")


def _snapshot(cost_code: CostCode) -> dict:
    return {f: getattr(cost_code, f) for f in ("code", *_EDITABLE_FIELDS)}


def _validate_cost_code(data: dict, partial: bool = False) -> list[dict]:
    errors = []
    if not partial or "code" in data:
        if not CODE_PATTERN.match(str(data.get("code") or "")):
            errors.append({"field": "code", "message": "code must follow the XX.YY.ZZ pattern"})
    if not partial or "name" in data:
        if len(sanitize_text(data.get("name"))) < 2:
            errors.append({"field": "name", "message": "name must be at least 2 characters"})
    if not partial or "category" in data:
        if not sanitize_text(data.get("category")):
            errors.append({"field": "category", "message": "category is required"})
    if "type" in data and data["type"] not in COST_CODE_TYPES:
        errors.append({"field": "type", "message": f"type must be one of {', '.join(sorted(COST_CODE_TYPES))}"})
    return errors


# ── Catalog ──────────────────────────────────────────────────────────────────

def seed_default_cost_codes(user_id: str = "system") -> int:
    """Insert the default catalog entries that are not present yet.

    Does not commit; callers own the transaction.  Returns the number created.
    """
    existing = {code for (code,) in db.session.query(CostCode.code)}
    created = 0
    for code, name, description, category, cc_type, unit, tags in DEFAULT_COST_CODES:
        if code in existing:
            continue
        cost_code = CostCode(
            code=code,
            name=name,
            description=description,
            division=code[:2],
            category=category,
            type=cc_type,
            unit=unit,
            tags=tags,
            is_default=True,
            created_by=user_id,
        )
        db.session.add(cost_code)
        db.session.flush()
        record_audit(
            action="cost_code_created",
            entity_type="cost_code",
            entity_id=cost_code.id,
            entity_name=f"{code} {name}",
            user_id=user_id,
            new_state=_snapshot(cost_code),
            metadata={"seeded": True},
        )
        created += 1
    logger.info("Seeded %d default cost codes", created)
    return created


def create_cost_code(data: dict, user_id: str) -> CostCode:
    errors = _validate_cost_code(data)
    if errors:
        raise ValidationError("Invalid cost code", errors=errors)

    code = data["code"].strip()
    if CostCode.query.filter_by(code=code).first():
        raise ConflictError(resource="CostCode", field="code", value=code)

    cost_code = CostCode(
        code=code,
        name=sanitize_text(data["name"], 200),
        description=sanitize_text(data.get("description")) or None,
        division=code[:2],
        category=sanitize_text(data["category"], 100),
        subcategory=sanitize_text(data.get("subcategory"), 100) or None,
        type=data.get("type", "other"),
        unit=sanitize_text(data.get("unit"), 20) or None,
        is_active=bool(data.get("is_active", True)),
        tags=[sanitize_text(t, 50) for t in data.get("tags") or [] if isinstance(t, str)],
        notes=sanitize_text(data.get("notes")) or None,
        created_by=user_id,
    )
    db.session.add(cost_code)
    db.session.flush()
    record_audit(
        action="cost_code_created",
        entity_type="cost_code",
        entity_id=cost_code.id,
        entity_name=f"{cost_code.code} {cost_code.name}",
        user_id=user_id,
        new_state=_snapshot(cost_code),
    )
    commit_or_raise()
    return cost_code


def get_cost_code(cost_code_id: str) -> CostCode:
    cost_code = db.session.get(CostCode, cost_code_id)
    if cost_code is None:
        raise NotFoundError(resource="CostCode", resource_id=cost_code_id)
    return cost_code


def get_cost_code_by_code(code: str) -> CostCode:
    cost_code = CostCode.query.filter_by(code=code).first()
    if cost_code is None:
        raise NotFoundError(resource="CostCode", resource_id=code)
    return cost_code


def update_cost_code(cost_code_id: str, data: dict, user_id: str) -> CostCode:
    cost_code = get_cost_code(cost_code_id)
    errors = _validate_cost_code(data, partial=True)
    if errors:
        raise ValidationError("Invalid cost code", errors=errors)

    before = _snapshot(cost_code)
    if "code" in data and data["code"] != cost_code.code:
        if CostCode.query.filter(CostCode.code == data["code"], CostCode.id != cost_code.id).first():
            raise ConflictError(resource="CostCode", field="code", value=data["code"])
        cost_code.code = data["code"]
        cost_code.division = data["code"][:2]
    for field in _EDITABLE_FIELDS:
        if field in data:
            setattr(cost_code, field, data[field])

    after = _snapshot(cost_code)
    record_audit(
        action="cost_code_updated",
        entity_type="cost_code",
        entity_id=cost_code.id,
        entity_name=f"{cost_code.code} {cost_code.name}",
        user_id=user_id,
        previous_state=before,
        new_state=after,
    )
    commit_or_raise()
    return cost_code


def delete_cost_code(cost_code_id: str, user_id: str) -> None:
    """Delete a cost code that no budget line or expense references."""
    cost_code = get_cost_code(cost_code_id)
    if cost_code.budgets.count():
        raise ValidationError.for_field("cost_code_id", "Cost code is used in project budgets")
    if Expense.query.filter_by(cost_code_id=cost_code.id).first():
        raise ValidationError.for_field("cost_code_id", "Cost code is assigned to expenses")

    record_audit(
        action="cost_code_deleted",
        entity_type="cost_code",
        entity_id=cost_code.id,
        entity_name=f"{cost_code.code} {cost_code.name}",
        user_id=user_id,
        previous_state=_snapshot(cost_code),
    )
    db.session.delete(cost_code)
    commit_or_raise()


def list_cost_codes(filters: dict | None = None) -> list[CostCode]:
    filters = filters or {}
    q = CostCode.query
    for field in ("division", "category", "type"):
        if filters.get(field):
            q = q.filter(getattr(CostCode, field) == filters[field])
    if filters.get("is_active") is not None:
        q = q.filter(CostCode.is_active.is_(bool(filters["is_active"])))
    search = (filters.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(db.or_(CostCode.code.ilike(like), CostCode.name.ilike(like), CostCode.description.ilike(like)))
    return q.order_by(CostCode.code).all()


def get_cost_code_hierarchy() -> list[dict]:
    """Active codes grouped as division → category → codes."""
    divisions: dict[str, dict[str, list]] = {}
    for cc in list_cost_codes({"is_active": True}):
        divisions.setdefault(cc.division, {}).setdefault(cc.category, []).append(cc.to_dict())
    return [
        {
            "division": division,
            "categories": [{"category": cat, "cost_codes": codes} for cat, codes in categories.items()],
        }
        for division, categories in sorted(divisions.items())
    ]


def suggest_cost_codes(description: str, limit: int = 5) -> list[CostCode]:
    """
    Rank active cost codes by keyword overlap with ``description``.

    Scoring:
        +10  the code's name appears in the description
        +2   per word (> 3 chars) of the code's description found in it
        +5   per tag found in it
    Only positive scores are returned, best first.
    """
    text = (description or "").lower()
    if not text.strip():
        return []

    scored = []
    for cc in CostCode.query.filter(CostCode.is_active.is_(True)).order_by(CostCode.code):
        score = 0
        if cc.name.lower() in text:
            score += 10
        for word in (cc.description or "").lower().split(" "):
            if len(word) > 3 and word in text:
                score += 2
        for tag in cc.tags or []:
            if tag.lower() in text:
                score += 5
        if score > 0:
            scored.append((score, cc))

    scored.sort(key=lambda item: item[0], reverse=True)
    return [cc for _, cc in scored[:limit]]


def get_cost_code_stats() -> dict:
    codes = CostCode.query.all()
    return {
        "total": len(codes),
        "active": sum(1 for cc in codes if cc.is_active),
        "by_type": dict(Counter(cc.type for cc in codes)),
        "by_division": dict(Counter(cc.division for cc in codes)),
    }


# ── Budgets ──────────────────────────────────────────────────────────────────

def _budget_snapshot(budget: CostCodeBudget) -> dict:
    return {
        "budgeted_quantity": budget.budgeted_quantity,
        "budgeted_unit_price": budget.budgeted_unit_price,
        "budgeted_amount": budget.budgeted_amount,
        "status": budget.status,
    }


def _parse_budget_numbers(data: dict, partial: bool) -> tuple[dict, list[dict]]:
    values, errors = {}, []
    for field in ("budgeted_quantity", "budgeted_unit_price"):
        if partial and field not in data:
            continue
        value = sanitize_number(data.get(field), 0)
        if value is None:
            errors.append({"field": field, "message": f"{field} must be a number >= 0"})
        else:
            values[field] = float(value)
    return values, errors


def create_budget(project_id: str, data: dict, user_id: str) -> CostCodeBudget:
    cost_code = get_cost_code(data.get("cost_code_id"))
    values, errors = _parse_budget_numbers(data, partial=False)
    if errors:
        raise ValidationError("Invalid budget line", errors=errors)
    if CostCodeBudget.query.filter_by(project_id=project_id, cost_code_id=cost_code.id).first():
        raise ConflictError(resource="CostCodeBudget", field="cost_code_id", value=cost_code.code)

    budget = CostCodeBudget(
        project_id=project_id,
        cost_code_id=cost_code.id,
        notes=sanitize_text(data.get("notes")) or None,
        **values,
    )
    budget.recalculate()
    db.session.add(budget)
    db.session.flush()
    record_audit(
        action="budget_created",
        entity_type="project",
        entity_id=project_id,
        entity_name=f"Budget {cost_code.code}",
        user_id=user_id,
        project_id=project_id,
        new_state=_budget_snapshot(budget),
        financial_impact={"amount": budget.budgeted_amount, "budget_impact": "budgeted",
                          "description": f"Budget line {cost_code.code}"},
        metadata={"budget_id": budget.id, "cost_code_id": cost_code.id},
    )
    commit_or_raise()
    return budget


def get_budget(budget_id: str) -> CostCodeBudget:
    budget = db.session.get(CostCodeBudget, budget_id)
    if budget is None:
        raise NotFoundError(resource="CostCodeBudget", resource_id=budget_id)
    return budget


def update_budget(budget_id: str, data: dict, user_id: str) -> CostCodeBudget:
    budget = get_budget(budget_id)
    values, errors = _parse_budget_numbers(data, partial=True)
    if errors:
        raise ValidationError("Invalid budget line", errors=errors)

    before = _budget_snapshot(budget)
    for field, value in values.items():
        setattr(budget, field, value)
    if "notes" in data:
        budget.notes = sanitize_text(data.get("notes")) or None
    budget.recalculate()

    record_audit(
        action="budget_updated",
        entity_type="project",
        entity_id=budget.project_id,
        entity_name=f"Budget {budget.cost_code.code}",
        user_id=user_id,
        project_id=budget.project_id,
        previous_state=before,
        new_state=_budget_snapshot(budget),
        financial_impact={
            "amount": money(budget.budgeted_amount - before["budgeted_amount"]),
            "budget_impact": "budgeted",
            "description": f"Budget line {budget.cost_code.code} revised",
        },
        metadata={"budget_id": budget.id},
    )
    commit_or_raise()
    return budget


def _find_budget(project_id: str | None, cost_code_id: str | None):
    if not project_id or not cost_code_id:
        return None
    return CostCodeBudget.query.filter_by(project_id=project_id, cost_code_id=cost_code_id).first()


def update_budget_actuals(project_id: str | None, cost_code_id: str | None, amount: float):
    """Add ``amount`` to the budget line's actual cost.

    Returns the budget line, or None when the project has no line for that
    cost code.  Does not commit.
    """
    budget = _find_budget(project_id, cost_code_id)
    if budget is None:
        return None
    budget.actual_amount = money(budget.actual_amount + amount)
    budget.recalculate()
    if budget.status in ("critical", "over_budget"):
        logger.warning(
            "Budget line %s on project %s is %s (%.2f%%)",
            budget.cost_code_id, project_id, budget.status, budget.percentage_complete,
            extra={"project_id": project_id},
        )
    return budget


def update_budget_committed(project_id: str | None, cost_code_id: str | None, amount: float):
    """Add ``amount`` (may be negative) to the committed cost.  Does not commit."""
    budget = _find_budget(project_id, cost_code_id)
    if budget is None:
        return None
    budget.committed_amount = money(max(0.0, budget.committed_amount + amount))
    budget.recalculate()
    return budget


def get_project_budgets(project_id: str) -> list[CostCodeBudget]:
    return (
        CostCodeBudget.query.join(CostCode)
        .filter(CostCodeBudget.project_id == project_id)
        .order_by(CostCode.code)
        .all()
    )


def get_project_budget_summary(project_id: str) -> dict:
    budgets = get_project_budgets(project_id)
    total_budgeted = money(sum(b.budgeted_amount for b in budgets))
    total_actual = money(sum(b.actual_amount for b in budgets))
    return {
        "project_id": project_id,
        "lines": len(budgets),
        "total_budgeted": total_budgeted,
        "total_committed": money(sum(b.committed_amount for b in budgets)),
        "total_actual": total_actual,
        "total_variance": money(total_budgeted - total_actual),
        "percentage_complete": round(total_actual / total_budgeted * 100, 2) if total_budgeted else 0.0,
        "by_status": dict(Counter(b.status for b in budgets)),
    }
