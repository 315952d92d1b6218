"""
Project income.

Covers:
  - create defaults (confirmed, configured currency)
  - validation (amount, description, future date, category)
  - cancel writes a negative financial impact
  - delete refused for confirmed income
  - stats count confirmed income only
"""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import PROJECT_ID
from sitebooks.core.exceptions import InvalidStateTransition, ValidationError
from sitebooks.models import db
from sitebooks.models.audit import AuditLog
from sitebooks.models.income import Income
from sitebooks.services import income_service as svc


def _income(**kw):
    data = {"project_id": PROJECT_ID, "amount": 50000, "date": "2026-03-15",
            "description": "Progress billing #3", "category": "progress_billing"}
    data.update(kw)
    return svc.create_income(data, "accountant")


class TestCreate:
    def test_defaults(self):
        income = _income()
        assert income.status == "confirmed"
        assert income.currency == "USD"
        log = AuditLog.query.filter_by(entity_id=income.id).one()
        assert log.action == "income_created"
        assert log.financial_impact["amount"] == 50000.0

    def test_validation(self):
        with pytest.raises(ValidationError) as exc:
            svc.create_income({"amount": -1, "description": "abc", "category": "gift"}, "accountant")
        assert {e["field"] for e in exc.value.errors} == {"project_id", "amount", "description", "date", "category"}

    def test_tomorrow_allowed_later_refused(self):
        today = datetime.now(timezone.utc).date()
        _income(date=(today + timedelta(days=1)).isoformat())
        with pytest.raises(ValidationError) as exc:
            _income(date=(today + timedelta(days=3)).isoformat())
        assert exc.value.errors[0]["field"] == "date"


class TestCancelAndDelete:
    def test_cancel(self):
        income = _income()
        income = svc.cancel_income(income.id, "accountant", "Invoice reissued")
        assert income.status == "cancelled"
        log = AuditLog.query.filter_by(entity_id=income.id, action="income_cancelled").one()
        assert log.severity == "warning"
        assert log.financial_impact["amount"] == -50000.0
        with pytest.raises(InvalidStateTransition):
            svc.cancel_income(income.id, "accountant")

    def test_confirmed_cannot_be_deleted(self):
        income = _income()
        with pytest.raises(InvalidStateTransition):
            svc.delete_income(income.id, "accountant")

    def test_pending_can_be_deleted(self):
        income = _income(status="pending")
        svc.delete_income(income.id, "accountant")
        assert db.session.get(Income, income.id) is None

    def test_cancelled_cannot_be_updated(self):
        income = _income()
        svc.cancel_income(income.id, "accountant")
        with pytest.raises(InvalidStateTransition):
            svc.update_income(income.id, {"amount": 10}, "accountant")


class TestStats:
    def test_confirmed_only(self):
        _income()
        _income(amount=20000, date="2026-04-02", category="advance")
        _income(amount=999, status="pending")
        cancelled = _income(amount=5000)
        svc.cancel_income(cancelled.id, "accountant")

        stats = svc.get_income_stats(PROJECT_ID)
        assert stats["count"] == 2
        assert stats["total"] == 70000.0
        assert stats["by_month"] == {"2026-03": 50000.0, "2026-04": 20000.0}
        assert stats["by_category"] == {"progress_billing": 50000.0, "advance": 20000.0}


class TestIncomeAPI:
    def test_create_and_list(self, client):
        res = client.post("/api/v1/incomes", json={
            "project_id": PROJECT_ID, "amount": 1200, "date": "2026-03-01",
            "description": "Change order 12",
        })
        assert res.status_code == 201
        assert res.get_json()["category"] == "other"

        res = client.get(f"/api/v1/incomes?project_id={PROJECT_ID}")
        assert res.status_code == 200

    def test_delete_confirmed_is_409(self, client):
        income = _income()
        res = client.delete(f"/api/v1/incomes/{income.id}")
        assert res.status_code == 409
