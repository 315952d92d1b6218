"""initial schema: cost codes, expenses, subcontracts, certificates, holdbacks, incomes, audit

Revision ID: 0001
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    bind = op.get_bind()
    existing = set(sa_inspect(bind).get_table_names())

    if "cost_codes" not in existing:
        op.create_table(
            "cost_codes",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("code", sa.String(20), nullable=False),
            sa.Column("name", sa.String(200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("division", sa.String(10), nullable=False),
            sa.Column("category", sa.String(100), nullable=False),
            sa.Column("subcategory", sa.String(100), nullable=True),
            sa.Column("type", sa.String(20), nullable=False),
            sa.Column("unit", sa.String(20), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False),
            sa.Column("is_default", sa.Boolean(), nullable=False),
            sa.Column("tags", sa.JSON(), nullable=False),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("created_by", sa.String(150), nullable=True),
            *_timestamps(),
        )
        op.create_index("ix_cost_codes_code", "cost_codes", ["code"], unique=True)
        op.create_index("ix_cost_codes_division", "cost_codes", ["division"])

    if "cost_code_budgets" not in existing:
        op.create_table(
            "cost_code_budgets",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("project_id", sa.String(64), nullable=False),
            sa.Column(
                "cost_code_id", sa.String(36),
                sa.ForeignKey("cost_codes.id", ondelete="RESTRICT"), nullable=False,
            ),
            sa.Column("budgeted_quantity", sa.Float(), nullable=False),
            sa.Column("budgeted_unit_price", sa.Float(), nullable=False),
            sa.Column("budgeted_amount", sa.Float(), nullable=False),
            sa.Column("committed_amount", sa.Float(), nullable=False),
            sa.Column("actual_amount", sa.Float(), nullable=False),
            sa.Column("variance", sa.Float(), nullable=False),
            sa.Column("variance_percentage", sa.Float(), nullable=False),
            sa.Column("percentage_complete", sa.Float(), nullable=False),
            sa.Column("status", sa.String(20), nullable=False),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("last_calculated_at", sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
            sa.UniqueConstraint("project_id", "cost_code_id", name="uq_budget_project_cost_code"),
        )
        op.create_index("ix_cost_code_budgets_project_id", "cost_code_budgets", ["project_id"])
        op.create_index("ix_cost_code_budgets_cost_code_id", "cost_code_budgets", ["cost_code_id"])

    if "expenses" not in existing:
        op.create_table(
            "expenses",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("expense_number", sa.String(30), nullable=False, unique=True),
            sa.Column("project_id", sa.String(64), nullable=True),
            sa.Column(
                "cost_code_id", sa.String(36),
                sa.ForeignKey("cost_codes.id", ondelete="SET NULL"), nullable=True,
            ),
            sa.Column("supplier_id", sa.String(64), nullable=True),
            sa.Column("supplier_name", sa.String(255), nullable=False),
            sa.Column("amount", sa.Float(), nullable=False),
            sa.Column("tax_amount", sa.Float(), nullable=False),
            sa.Column("total_amount", sa.Float(), nullable=False),
            sa.Column("currency", sa.String(3), nullable=False),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("invoice_number", sa.String(100), nullable=True),
            sa.Column("invoice_date", sa.Date(), nullable=False),
            sa.Column("due_date", sa.Date(), nullable=True),
            sa.Column("status", sa.String(20), nullable=False),
            sa.Column("needs_review", sa.Boolean(), nullable=False),
            sa.Column("review_reasons", sa.JSON(), nullable=False),
            sa.Column("reviewed_by", sa.String(150), nullable=True),
            sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("submitted_by", sa.String(150), nullable=True),
            sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("approved_by", sa.String(150), nullable=True),
            sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("approval_notes", sa.Text(), nullable=True),
            sa.Column("rejected_by", sa.String(150), nullable=True),
            sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("rejection_reason", sa.Text(), nullable=True),
            sa.Column("payment_status", sa.String(10), nullable=False),
            sa.Column("paid_amount", sa.Float(), nullable=False),
            sa.Column("paid_date", sa.Date(), nullable=True),
            sa.Column("payment_method", sa.String(20), nullable=True),
            sa.Column("payment_reference", sa.String(100), nullable=True),
            sa.Column("is_auto_created", sa.Boolean(), nullable=False),
            sa.Column("source", sa.String(20), nullable=False),
            sa.Column("source_id", sa.String(100), nullable=True),
            sa.Column("ocr_confidence", sa.Float(), nullable=True),
            sa.Column("ocr_data", sa.JSON(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("tags", sa.JSON(), nullable=False),
            sa.Column("created_by", sa.String(150), nullable=True),
            *_timestamps(),
            sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index("ix_expenses_project_id", "expenses", ["project_id"])
        op.create_index("ix_expenses_cost_code_id", "expenses", ["cost_code_id"])
        op.create_index("ix_expenses_supplier_id", "expenses", ["supplier_id"])
        op.create_index("ix_expenses_deleted_at", "expenses", ["deleted_at"])
        op.create_index("idx_expense_project_status", "expenses", ["project_id", "status"])
        op.create_index("idx_expense_review", "expenses", ["needs_review", "status"])

    if "expense_attachments" not in existing:
        op.create_table(
            "expense_attachments",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column(
                "expense_id", sa.String(36),
                sa.ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False,
            ),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("mime_type", sa.String(100), nullable=True),
            sa.Column("size", sa.Integer(), nullable=False),
            sa.Column("sha256", sa.String(64), nullable=True),
            sa.Column("url", sa.String(500), nullable=True),
            sa.Column("uploaded_by", sa.String(150), nullable=True),
            sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index("ix_expense_attachments_expense_id", "expense_attachments", ["expense_id"])

    if "subcontracts" not in existing:
        op.create_table(
            "subcontracts",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("contract_number", sa.String(50), nullable=False, unique=True),
            sa.Column("project_id", sa.String(64), nullable=False),
            sa.Column("subcontractor_id", sa.String(64), nullable=False),
            sa.Column("subcontractor_name", sa.String(255), nullable=False),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("scope_of_work", sa.Text(), nullable=True),
            sa.Column("total_amount", sa.Float(), nullable=False),
            sa.Column("currency", sa.String(3), nullable=False),
            sa.Column("retention_percentage", sa.Float(), nullable=False),
            sa.Column("start_date", sa.Date(), nullable=False),
            sa.Column("end_date", sa.Date(), nullable=False),
            sa.Column("cost_code_ids", sa.JSON(), nullable=False),
            sa.Column("status", sa.String(20), nullable=False),
            sa.Column("approved_by", sa.String(150), nullable=True),
            sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("cancellation_reason", sa.Text(), nullable=True),
            sa.Column("total_certified", sa.Float(), nullable=False),
            sa.Column("total_paid", sa.Float(), nullable=False),
            sa.Column("total_retained", sa.Float(), nullable=False),
            sa.Column("remaining_balance", sa.Float(), nullable=False),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("created_by", sa.String(150), nullable=True),
            *_timestamps(),
        )
        op.create_index("ix_subcontracts_project_id", "subcontracts", ["project_id"])
        op.create_index("ix_subcontracts_subcontractor_id", "subcontracts", ["subcontractor_id"])

    if "payment_schedule_items" not in existing:
        op.create_table(
            "payment_schedule_items",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column(
                "subcontract_id", sa.String(36),
                sa.ForeignKey("subcontracts.id", ondelete="CASCADE"), nullable=False,
            ),
            sa.Column("sequence", sa.Integer(), nullable=False),
            sa.Column("description", sa.String(255), nullable=False),
            sa.Column("percentage", sa.Float(), nullable=False),
            sa.Column("amount", sa.Float(), nullable=False),
            sa.Column("due_date", sa.Date(), nullable=True),
            sa.Column("status", sa.String(20), nullable=False),
        )
        op.create_index(
            "ix_payment_schedule_items_subcontract_id", "payment_schedule_items", ["subcontract_id"],
        )

    if "progress_certificates" not in existing:
        op.create_table(
            "progress_certificates",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("certificate_number", sa.String(50), nullable=False, unique=True),
            sa.Column(
                "subcontract_id", sa.String(36),
                sa.ForeignKey("subcontracts.id", ondelete="RESTRICT"), nullable=False,
            ),
            sa.Column("project_id", sa.String(64), nullable=False),
            sa.Column("period_start", sa.Date(), nullable=False),
            sa.Column("period_end", sa.Date(), nullable=False),
            sa.Column("amount_certified", sa.Float(), nullable=False),
            sa.Column("retention_amount", sa.Float(), nullable=False),
            sa.Column("net_payable", sa.Float(), nullable=False),
            sa.Column("previous_certified", sa.Float(), nullable=False),
            sa.Column("cumulative_certified", sa.Float(), nullable=False),
            sa.Column("percentage_complete", sa.Float(), nullable=False),
            sa.Column("status", sa.String(20), nullable=False),
            sa.Column("submitted_by", sa.String(150), nullable=True),
            sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("approved_by", sa.String(150), nullable=True),
            sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("approval_notes", sa.Text(), nullable=True),
            sa.Column("rejected_by", sa.String(150), nullable=True),
            sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("rejection_reason", sa.Text(), nullable=True),
            sa.Column("payment_id", sa.String(100), nullable=True),
            sa.Column("paid_by", sa.String(150), nullable=True),
            sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("created_by", sa.String(150), nullable=True),
            *_timestamps(),
        )
        op.create_index("ix_progress_certificates_project_id", "progress_certificates", ["project_id"])
        op.create_index(
            "idx_certificate_subcontract_status", "progress_certificates", ["subcontract_id", "status"],
        )

    if "holdbacks" not in existing:
        op.create_table(
            "holdbacks",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("holdback_number", sa.String(30), nullable=False, unique=True),
            sa.Column("project_id", sa.String(64), nullable=False),
            sa.Column(
                "subcontract_id", sa.String(36),
                sa.ForeignKey("subcontracts.id", ondelete="RESTRICT"), nullable=False,
            ),
            sa.Column(
                "certificate_id", sa.String(36),
                sa.ForeignKey("progress_certificates.id", ondelete="RESTRICT"),
                nullable=False, unique=True,
            ),
            sa.Column("subcontractor_name", sa.String(255), nullable=True),
            sa.Column("original_amount", sa.Float(), nullable=False),
            sa.Column("current_amount", sa.Float(), nullable=False),
            sa.Column("released_amount", sa.Float(), nullable=False),
            sa.Column("retention_percentage", sa.Float(), nullable=False),
            sa.Column("status", sa.String(20), nullable=False),
            sa.Column("expected_release_date", sa.Date(), nullable=True),
            sa.Column("created_by", sa.String(150), nullable=True),
            *_timestamps(),
        )
        op.create_index("ix_holdbacks_project_id", "holdbacks", ["project_id"])
        op.create_index("ix_holdbacks_subcontract_id", "holdbacks", ["subcontract_id"])

    if "holdback_releases" not in existing:
        op.create_table(
            "holdback_releases",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column(
                "holdback_id", sa.String(36),
                sa.ForeignKey("holdbacks.id", ondelete="CASCADE"), nullable=False,
            ),
            sa.Column("amount", sa.Float(), nullable=False),
            sa.Column("reason", sa.String(30), nullable=False),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("status", sa.String(10), nullable=False),
            sa.Column("requested_by", sa.String(150), nullable=False),
            sa.Column("requested_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("decided_by", sa.String(150), nullable=True),
            sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("decision_notes", sa.Text(), nullable=True),
            sa.Column("payment_reference", sa.String(100), nullable=True),
        )
        op.create_index("ix_holdback_releases_holdback_id", "holdback_releases", ["holdback_id"])

    if "incomes" not in existing:
        op.create_table(
            "incomes",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("project_id", sa.String(64), nullable=False),
            sa.Column("amount", sa.Float(), nullable=False),
            sa.Column("currency", sa.String(3), nullable=False),
            sa.Column("date", sa.Date(), nullable=False),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("category", sa.String(30), nullable=False),
            sa.Column("payment_method", sa.String(20), nullable=True),
            sa.Column("reference", sa.String(100), nullable=True),
            sa.Column("status", sa.String(20), nullable=False),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("created_by", sa.String(150), nullable=True),
            *_timestamps(),
        )
        op.create_index("ix_incomes_project_id", "incomes", ["project_id"])

    if "audit_logs" not in existing:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.Column("action", sa.String(60), nullable=False),
            sa.Column("entity_type", sa.String(30), nullable=False),
            sa.Column("entity_id", sa.String(64), nullable=False),
            sa.Column("entity_name", sa.String(255), nullable=True),
            sa.Column("user_id", sa.String(150), nullable=False),
            sa.Column("user_name", sa.String(150), nullable=True),
            sa.Column("project_id", sa.String(64), nullable=True),
            sa.Column("changes", sa.JSON(), nullable=True),
            sa.Column("previous_state", sa.JSON(), nullable=True),
            sa.Column("new_state", sa.JSON(), nullable=True),
            sa.Column("financial_impact", sa.JSON(), nullable=True),
            sa.Column("severity", sa.String(10), nullable=False),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("metadata", sa.JSON(), nullable=True),
            sa.Column("tags", sa.String(500), nullable=False),
        )
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_project", "audit_logs", ["project_id"])
        op.create_index("idx_audit_user", "audit_logs", ["user_id"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])
        op.create_index("idx_audit_severity", "audit_logs", ["severity"])
        op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])


def downgrade():
    bind = op.get_bind()
    existing = set(sa_inspect(bind).get_table_names())
    for table in (
        "audit_logs",
        "incomes",
        "holdback_releases",
        "holdbacks",
        "progress_certificates",
        "payment_schedule_items",
        "subcontracts",
        "expense_attachments",
        "expenses",
        "cost_code_budgets",
        "cost_codes",
    ):
        if table in existing:
            op.drop_table(table)
