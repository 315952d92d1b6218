"""
Soft delete support.

Adds a ``deleted_at`` timestamp column and query helpers.  Models that
include this mixin are marked deleted rather than physically removed, so
audit entries keep pointing at a real row.

Usage:
    class Expense(SoftDeleteMixin, db.Model):
        ...

    expense.soft_delete()
    Expense.query_active().all()
"""

from sitebooks.models import _utcnow, db


class SoftDeleteMixin:
    """Mixin that adds soft delete support to any SQLAlchemy model."""

    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, default=None, index=True)

    def soft_delete(self):
        """Mark this record as deleted."""
        self.deleted_at = _utcnow()

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    @classmethod
    def query_active(cls):
        """Return a query that excludes soft-deleted records."""
        return cls.query.filter(cls.deleted_at.is_(None))
