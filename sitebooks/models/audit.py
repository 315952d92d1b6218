"""
Audit domain model.

Models:
    - AuditLog: immutable, append-only ledger of every state-changing action.

``record_audit`` is the only writer.  ORM listeners refuse any UPDATE or
DELETE that targets the ledger, row-level or bulk.
"""

import logging

from sqlalchemy import event
from sqlalchemy.orm import Session

from sitebooks.core.exceptions import AuditLogImmutableError
from sitebooks.models import _iso, _utcnow, db
from sitebooks.utils.sanitize import escape_html

audit_logger = logging.getLogger("sitebooks.audit")

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_TYPES = {
    "subcontract", "certificate", "expense", "cost_code",
    "project", "payment", "holdback", "income", "user", "system",
}

AUDIT_ACTIONS = {
    # Subcontracts
    "subcontract_created",
    "subcontract_updated",
    "subcontract_approved",
    "subcontract_completed",
    "subcontract_cancelled",
    "subcontract_deleted",
    # Progress certificates
    "certificate_created",
    "certificate_updated",
    "certificate_submitted",
    "certificate_approved",
    "certificate_rejected",
    "certificate_paid",
    "certificate_deleted",
    # Expenses
    "expense_created",
    "expense_updated",
    "expense_classified",
    "expense_reviewed",
    "expense_submitted",
    "expense_approved",
    "expense_rejected",
    "expense_paid",
    "expense_deleted",
    # Cost codes and budgets
    "cost_code_created",
    "cost_code_updated",
    "cost_code_deleted",
    "budget_created",
    "budget_updated",
    # Money movements
    "payment_recorded",
    "retention_held",
    "retention_release_requested",
    "retention_release_rejected",
    "retention_released",
    # Income
    "income_created",
    "income_updated",
    "income_cancelled",
    "income_deleted",
    # System
    "user_login",
    "user_logout",
    "settings_changed",
}

SEVERITIES = ("info", "warning", "critical")

CRITICAL_ACTIONS = frozenset({
    "subcontract_deleted",
    "certificate_approved",
    "certificate_paid",
    "expense_approved",
    "expense_paid",
    "payment_recorded",
    "budget_updated",
    "retention_released",
})

WARNING_ACTIONS = frozenset({
    "subcontract_cancelled",
    "certificate_rejected",
    "expense_rejected",
    "cost_code_deleted",
    "income_cancelled",
    "retention_release_rejected",
})


def severity_for(action: str) -> str:
    """Map an audit action to its severity."""
    if action in CRITICAL_ACTIONS:
        return "critical"
    if action in WARNING_ACTIONS:
        return "warning"
    return "info"


def _pack_tags(tags) -> str:
    cleaned = sorted({t.strip().lower() for t in (tags or []) if t and t.strip()})
    return f",{','.join(cleaned)}," if cleaned else ""


class AuditLog(db.Model):
    """
    Immutable audit trail entry.

    One row per action.  ``previous_state`` / ``new_state`` carry snapshots
    of the fields the action touched; ``changes`` holds the field-level
    ``{field: {old, new}}`` diff derived from them.  ``financial_impact``
    is present whenever money moved.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_project", "project_id"),
        db.Index("idx_audit_user", "user_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_severity", "severity"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    action = db.Column(db.String(60), nullable=False)
    entity_type = db.Column(db.String(30), nullable=False)
    entity_id = db.Column(db.String(64), nullable=False)
    entity_name = db.Column(db.String(255), nullable=True)

    user_id = db.Column(db.String(150), nullable=False, default="system")
    user_name = db.Column(db.String(150), nullable=True)
    project_id = db.Column(db.String(64), nullable=True)

    changes = db.Column(db.JSON, nullable=True, comment="{field: {old, new}}")
    previous_state = db.Column(db.JSON, nullable=True)
    new_state = db.Column(db.JSON, nullable=True)
    financial_impact = db.Column(
        db.JSON, nullable=True,
        comment="{amount, currency, budget_impact, description}",
    )

    severity = db.Column(db.String(10), nullable=False, default="info")
    description = db.Column(db.Text, nullable=False, default="")
    meta = db.Column("metadata", db.JSON, nullable=True)
    tags = db.Column(db.String(500), nullable=False, default="", comment=",tag1,tag2,")

    @property
    def tag_list(self) -> list[str]:
        return [t for t in (self.tags or "").split(",") if t]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": _iso(self.timestamp),
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "entity_name": self.entity_name,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "project_id": self.project_id,
            "changes": self.changes or {},
            "previous_state": self.previous_state,
            "new_state": self.new_state,
            "financial_impact": self.financial_impact,
            "severity": self.severity,
            "description": self.description,
            "metadata": self.meta or {},
            "tags": self.tag_list,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Immutability guards ──────────────────────────────────────────────────────

@event.listens_for(AuditLog, "before_update")
def _refuse_update(mapper, connection, target):
    raise AuditLogImmutableError(f"Audit log entry {target.id} cannot be modified")


@event.listens_for(AuditLog, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise AuditLogImmutableError(f"Audit log entry {target.id} cannot be deleted")


@event.listens_for(Session, "do_orm_execute")
def _refuse_bulk_mutation(orm_execute_state):
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return
    mapper = orm_execute_state.bind_mapper
    if mapper is not None and mapper.class_ is AuditLog:
        raise AuditLogImmutableError("Audit log entries cannot be updated or deleted")


# ── Convenience writer ───────────────────────────────────────────────────────

def _diff(previous: dict | None, new: dict | None) -> dict:
    previous = previous or {}
    new = new or {}
    changes = {}
    for key in sorted(set(previous) | set(new)):
        old_val, new_val = previous.get(key), new.get(key)
        if old_val != new_val:
            changes[key] = {"old": old_val, "new": new_val}
    return changes


def record_audit(
    *,
    action: str,
    entity_type: str,
    entity_id: str,
    user_id: str | None = "system",
    user_name: str | None = None,
    entity_name: str | None = None,
    project_id: str | None = None,
    previous_state: dict | None = None,
    new_state: dict | None = None,
    changes: dict | None = None,
    financial_impact: dict | None = None,
    description: str | None = None,
    metadata: dict | None = None,
    tags: list[str] | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control: the entry commits or rolls back together with
    the state change it describes.

    Returns the (flushed) AuditLog instance.
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")
    if entity_type not in AUDIT_ENTITY_TYPES:
        raise ValueError(f"Unknown audit entity type: {entity_type}")

    if financial_impact is not None:
        financial_impact = dict(financial_impact)
        financial_impact["amount"] = round(float(financial_impact.get("amount") or 0), 2)

    if description is None:
        label = escape_html(entity_name) if entity_name else str(entity_id)
        description = f"{entity_type.replace('_', ' ').title()} {action.split('_')[-1]}: {label}"

    log = AuditLog(
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        entity_name=entity_name,
        user_id=user_id or "system",
        user_name=user_name,
        project_id=project_id,
        changes=changes if changes is not None else _diff(previous_state, new_state),
        previous_state=previous_state,
        new_state=new_state,
        financial_impact=financial_impact,
        severity=severity_for(action),
        description=description,
        meta=metadata or {},
        tags=_pack_tags([entity_type, *(tags or [])]),
    )
    db.session.add(log)
    db.session.flush()

    audit_logger.info(
        "%s %s/%s by %s", action, entity_type, entity_id, log.user_id,
        extra={
            "action": action,
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "user_id": log.user_id,
            "severity": log.severity,
            "project_id": project_id,
        },
    )
    return log
