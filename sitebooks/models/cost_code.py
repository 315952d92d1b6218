"""
Cost code catalog and per-project budget lines.

Models:
    - CostCode: hierarchical cost catalog entry (``XX.YY.ZZ``).
    - CostCodeBudget: budgeted / committed / actual amounts of one cost code
      on one project.
"""

from sitebooks.models import _iso, _utcnow, _uuid, db

COST_CODE_TYPES = {"labor", "material", "equipment", "subcontract", "other"}

BUDGET_STATUSES = {"under_budget", "on_budget", "critical", "over_budget"}

# Share of the budget consumed at which a line changes status
BUDGET_ON_TRACK_PCT = 85.0
BUDGET_CRITICAL_PCT = 95.0


class CostCode(db.Model):
    __tablename__ = "cost_codes"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    code = db.Column(db.String(20), nullable=False, unique=True, index=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    division = db.Column(db.String(10), nullable=False, index=True, comment="First segment of the code")
    category = db.Column(db.String(100), nullable=False)
    subcategory = db.Column(db.String(100), nullable=True)
    type = db.Column(db.String(20), nullable=False, default="other")
    unit = db.Column(db.String(20), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    tags = db.Column(db.JSON, nullable=False, default=list)
    notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.String(150), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    budgets = db.relationship("CostCodeBudget", back_populates="cost_code", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "division": self.division,
            "category": self.category,
            "subcategory": self.subcategory,
            "type": self.type,
            "unit": self.unit,
            "is_active": self.is_active,
            "is_default": self.is_default,
            "tags": self.tags or [],
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<CostCode {self.code} {self.name}>"


class CostCodeBudget(db.Model):
    """Budget line for one cost code on one project.

    ``variance`` is budgeted minus actual (positive means money left).
    """

    __tablename__ = "cost_code_budgets"
    __table_args__ = (
        db.UniqueConstraint("project_id", "cost_code_id", name="uq_budget_project_cost_code"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    project_id = db.Column(db.String(64), nullable=False, index=True)
    cost_code_id = db.Column(
        db.String(36), db.ForeignKey("cost_codes.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    budgeted_quantity = db.Column(db.Float, nullable=False, default=0.0)
    budgeted_unit_price = db.Column(db.Float, nullable=False, default=0.0)
    budgeted_amount = db.Column(db.Float, nullable=False, default=0.0)
    committed_amount = db.Column(db.Float, nullable=False, default=0.0)
    actual_amount = db.Column(db.Float, nullable=False, default=0.0)
    variance = db.Column(db.Float, nullable=False, default=0.0)
    variance_percentage = db.Column(db.Float, nullable=False, default=0.0)
    percentage_complete = db.Column(db.Float, nullable=False, default=0.0)
    status = db.Column(db.String(20), nullable=False, default="under_budget")
    notes = db.Column(db.Text, nullable=True)
    last_calculated_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    cost_code = db.relationship("CostCode", back_populates="budgets")

    def recalculate(self):
        """Refresh the derived variance, completion and status fields."""
        self.budgeted_amount = round((self.budgeted_quantity or 0) * (self.budgeted_unit_price or 0), 2)
        budgeted = self.budgeted_amount
        actual = self.actual_amount or 0.0

        self.variance = round(budgeted - actual, 2)
        self.variance_percentage = round(self.variance / budgeted * 100, 2) if budgeted > 0 else 0.0
        self.percentage_complete = round(actual / budgeted * 100, 2) if budgeted > 0 else 0.0

        if actual > budgeted:
            self.status = "over_budget"
        elif self.percentage_complete >= BUDGET_CRITICAL_PCT:
            self.status = "critical"
        elif self.percentage_complete >= BUDGET_ON_TRACK_PCT:
            self.status = "on_budget"
        else:
            self.status = "under_budget"
        self.last_calculated_at = _utcnow()

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "cost_code_id": self.cost_code_id,
            "cost_code": self.cost_code.code if self.cost_code else None,
            "cost_code_name": self.cost_code.name if self.cost_code else None,
            "budgeted_quantity": self.budgeted_quantity,
            "budgeted_unit_price": self.budgeted_unit_price,
            "budgeted_amount": self.budgeted_amount,
            "committed_amount": self.committed_amount,
            "actual_amount": self.actual_amount,
            "variance": self.variance,
            "variance_percentage": self.variance_percentage,
            "percentage_complete": self.percentage_complete,
            "status": self.status,
            "notes": self.notes,
            "last_calculated_at": _iso(self.last_calculated_at),
        }
