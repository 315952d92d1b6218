"""
Audit ledger read side.

Query, statistics and export over ``audit_logs``.  Nothing in this module
writes: entries are appended by ``sitebooks.models.audit.record_audit``
from inside the mutating services.
"""

import csv
import io
import json
import logging
from collections import Counter
from datetime import datetime, timezone

from openpyxl import Workbook
from openpyxl.styles import Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from sqlalchemy import or_

from sitebooks.core.exceptions import NotFoundError, ValidationError
from sitebooks.models import db
from sitebooks.models.audit import AUDIT_ACTIONS, AUDIT_ENTITY_TYPES, SEVERITIES, AuditLog
from sitebooks.utils.helpers import paginated, parse_datetime

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("json", "csv", "xlsx")

EXPORT_COLUMNS = [
    "id", "timestamp", "action", "severity", "entity_type", "entity_id",
    "entity_name", "user_id", "user_name", "project_id", "description",
    "financial_amount", "currency",
]

HEADER_FILL = PatternFill(start_color="354A5F", end_color="354A5F", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True, size=11)
CRITICAL_FONT = Font(color="C0392B", bold=True)
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)


# ── Query ────────────────────────────────────────────────────────────────────

def _filtered_query(filters: dict | None):
    """
    Build the filtered, newest-first audit query.

    Filters:
        start_date / end_date — inclusive timestamp range (ISO date or datetime)
        entity_type, entity_id, project_id, user_id, severity — exact match
        actions — list of action names (any of)
        search  — substring of description / entity name / user name
        tags    — list of tags (any of)
    """
    filters = filters or {}
    q = AuditLog.query

    start = parse_datetime(filters.get("start_date"))
    if start is not None:
        q = q.filter(AuditLog.timestamp >= start)
    end = parse_datetime(filters.get("end_date"))
    if end is not None:
        if isinstance(filters.get("end_date"), str) and len(filters["end_date"]) == 10:
            end = end.replace(hour=23, minute=59, second=59, microsecond=999999)
        q = q.filter(AuditLog.timestamp <= end)

    for field in ("entity_type", "entity_id", "project_id", "user_id"):
        value = filters.get(field)
        if value:
            q = q.filter(getattr(AuditLog, field) == str(value))

    severity = filters.get("severity")
    if severity:
        if severity not in SEVERITIES:
            raise ValidationError.for_field("severity", f"severity must be one of {', '.join(SEVERITIES)}")
        q = q.filter(AuditLog.severity == severity)

    actions = filters.get("actions")
    if actions:
        q = q.filter(AuditLog.action.in_(list(actions)))

    search = (filters.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(or_(
            AuditLog.description.ilike(like),
            AuditLog.entity_name.ilike(like),
            AuditLog.user_name.ilike(like),
        ))

    tags = [t.strip().lower() for t in (filters.get("tags") or []) if t and t.strip()]
    if tags:
        q = q.filter(or_(*[AuditLog.tags.like(f"%,{t},%") for t in tags]))

    return q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())


def query_audit_logs(filters: dict | None = None, page: int = 1, per_page: int = 50) -> dict:
    """Return one page of audit entries matching ``filters``."""
    return paginated(_filtered_query(filters), page, per_page, key="audit_logs")


def get_audit_log(log_id: int) -> AuditLog:
    log = db.session.get(AuditLog, log_id)
    if log is None:
        raise NotFoundError(resource="AuditLog", resource_id=log_id)
    return log


def get_entity_history(entity_type: str, entity_id: str) -> list[dict]:
    """Every entry for one entity, newest first."""
    if entity_type not in AUDIT_ENTITY_TYPES:
        raise ValidationError.for_field("entity_type", f"Unknown entity type: {entity_type}")
    return [log.to_dict() for log in _filtered_query({"entity_type": entity_type, "entity_id": entity_id})]


def get_recent_activity(limit: int = 10, project_id: str | None = None) -> list[dict]:
    q = _filtered_query({"project_id": project_id})
    return [log.to_dict() for log in q.limit(limit)]


def get_critical_events(limit: int = 10, project_id: str | None = None) -> list[dict]:
    q = _filtered_query({"project_id": project_id, "severity": "critical"})
    return [log.to_dict() for log in q.limit(limit)]


# ── Statistics ───────────────────────────────────────────────────────────────

def get_audit_stats(filters: dict | None = None) -> dict:
    """
    Aggregate counts over the filtered ledger.

    Returns:
        total_entries, by_action, by_entity_type, by_severity, by_user,
        recent_activity (10), critical_events (10),
        financial_transactions {total, total_amount, by_type}
    """
    logs = _filtered_query(filters).all()

    by_action = Counter(log.action for log in logs)
    by_entity_type = Counter(log.entity_type for log in logs)
    by_severity = Counter({s: 0 for s in SEVERITIES})
    by_severity.update(log.severity for log in logs)
    by_user = Counter(log.user_id for log in logs)

    financial = [log for log in logs if log.financial_impact]
    by_type: dict[str, float] = {}
    for log in financial:
        amount = float(log.financial_impact.get("amount") or 0)
        by_type[log.entity_type] = round(by_type.get(log.entity_type, 0.0) + amount, 2)

    return {
        "total_entries": len(logs),
        "by_action": dict(by_action),
        "by_entity_type": dict(by_entity_type),
        "by_severity": dict(by_severity),
        "by_user": dict(by_user),
        "recent_activity": [log.to_dict() for log in logs[:10]],
        "critical_events": [log.to_dict() for log in logs if log.severity == "critical"][:10],
        "financial_transactions": {
            "total": len(financial),
            "total_amount": round(sum(by_type.values()), 2),
            "by_type": by_type,
        },
    }


# ── Export ───────────────────────────────────────────────────────────────────

def _export_row(log: AuditLog) -> list:
    impact = log.financial_impact or {}
    return [
        log.id,
        log.timestamp.isoformat() if log.timestamp else "",
        log.action,
        log.severity,
        log.entity_type,
        log.entity_id,
        log.entity_name or "",
        log.user_id,
        log.user_name or "",
        log.project_id or "",
        log.description,
        impact.get("amount", ""),
        impact.get("currency", ""),
    ]


def _export_csv(logs) -> bytes:
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(EXPORT_COLUMNS)
    for log in logs:
        writer.writerow(_export_row(log))
    return buf.getvalue().encode("utf-8")


def _export_xlsx(logs) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Audit Log"

    for col, header in enumerate(EXPORT_COLUMNS, 1):
        cell = ws.cell(row=1, column=col, value=header)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.border = THIN_BORDER

    for row_idx, log in enumerate(logs, 2):
        for col, value in enumerate(_export_row(log), 1):
            cell = ws.cell(row=row_idx, column=col, value=value)
            cell.border = THIN_BORDER
            if log.severity == "critical" and col == 4:
                cell.font = CRITICAL_FONT

    for col in range(1, len(EXPORT_COLUMNS) + 1):
        ws.column_dimensions[get_column_letter(col)].width = 18
    ws.freeze_panes = "A2"

    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def export_audit_logs(filters: dict | None = None, fmt: str = "json") -> tuple[bytes, str, str]:
    """
    Export the filtered ledger.

    Returns:
        (payload bytes, mimetype, filename)
    """
    if fmt not in EXPORT_FORMATS:
        raise ValidationError.for_field("format", f"format must be one of {', '.join(EXPORT_FORMATS)}")

    logs = _filtered_query(filters).all()
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    logger.info("Exporting %d audit entries as %s", len(logs), fmt)

    if fmt == "csv":
        return _export_csv(logs), "text/csv", f"audit-log-{stamp}.csv"
    if fmt == "xlsx":
        return (
            _export_xlsx(logs),
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            f"audit-log-{stamp}.xlsx",
        )
    payload = json.dumps([log.to_dict() for log in logs], indent=2, default=str)
    return payload.encode("utf-8"), "application/json", f"audit-log-{stamp}.json"


def known_actions() -> list[str]:
    return sorted(AUDIT_ACTIONS)
