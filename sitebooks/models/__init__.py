"""
SQLAlchemy models.

``db`` is the single Flask-SQLAlchemy handle; every model module imports it
from here and ``create_app`` binds it to the application.
"""

import uuid
from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value):
    """Serialize a date/datetime column value, passing None through."""
    return value.isoformat() if value is not None else None
