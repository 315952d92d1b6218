"""Shared utility functions for services and blueprints.

parse_date:       returns None on bad input
ensure_aware:     normalises naive datetimes read back from SQLite to UTC
money:            rounds currency amounts to cents
commit_or_raise:  commits the session, converting database errors to StoreFailure
"""
import logging
from datetime import date, datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from sitebooks.core.exceptions import StoreFailure
from sitebooks.models import db

logger = logging.getLogger(__name__)


def parse_date(value):
    """Parse a date string (ISO date or ISO datetime) to a date object.

    Returns None for empty/invalid input.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()
    except (ValueError, TypeError):
        return None


def parse_datetime(value):
    """Parse an ISO datetime (or date) string to an aware UTC datetime."""
    if not value:
        return None
    if isinstance(value, datetime):
        return ensure_aware(value)
    try:
        return ensure_aware(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except (ValueError, TypeError):
        parsed = parse_date(value)
        if parsed is None:
            return None
        return datetime(parsed.year, parsed.month, parsed.day, tzinfo=timezone.utc)


def ensure_aware(value):
    """SQLite drops tzinfo on read; all stored timestamps are UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def money(value) -> float:
    return round(float(value or 0), 2)


def paginated(query, page=1, per_page=50, *, key="items", max_per_page=200, serialize=None):
    """Run a Flask-SQLAlchemy ``paginate`` and return the standard list envelope."""
    try:
        page = max(1, int(page or 1))
    except (TypeError, ValueError):
        page = 1
    try:
        per_page = min(max_per_page, max(1, int(per_page or 50)))
    except (TypeError, ValueError):
        per_page = 50
    serialize = serialize or (lambda obj: obj.to_dict())

    result = query.paginate(page=page, per_page=per_page, error_out=False)
    return {
        key: [serialize(obj) for obj in result.items],
        "total": result.total,
        "page": result.page,
        "per_page": result.per_page,
        "pages": result.pages,
    }


def commit_or_raise():
    """Commit the current session or roll back and raise ``StoreFailure``."""
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Database error on commit")
        raise StoreFailure(f"Database rejected the write: {exc.__class__.__name__}") from exc
