"""
Subcontract lifecycle and derived totals.

Covers:
  - create validation (required fields, amounts, dates, schedule sum)
  - duplicate contract number → ConflictError / 409
  - draft → active → completed, cancellation rules
  - committed budget share on approval, released again on delete
  - schedule item status follows certified / paid totals
  - retention balance and stats
"""

import pytest

from conftest import PROJECT_ID, make_cost_code, make_subcontract
from sitebooks.core.exceptions import ConflictError, InvalidStateTransition, ValidationError
from sitebooks.models import db
from sitebooks.models.audit import AuditLog
from sitebooks.models.subcontract import Subcontract
from sitebooks.services import cost_code_service, holdback_service, subcontract_service
from sitebooks.services import progress_certificate_service as certs

SCHEDULE = [
    {"description": "Rough-in", "percentage": 40},
    {"description": "Second fix", "percentage": 40},
    {"description": "Commissioning", "percentage": 20},
]


def _certify(sc, amount, paid=False):
    cert = certs.create_certificate(
        {"subcontract_id": sc.id, "amount_certified": amount,
         "period_start": "2026-02-01", "period_end": "2026-02-28"},
        "site-engineer",
    )
    certs.submit_certificate(cert.id, "site-engineer")
    cert = certs.approve_certificate(cert.id, "director")
    if paid:
        cert = certs.mark_as_paid(cert.id, f"TRX-{cert.certificate_number}", "treasury")
    return cert


class TestCreate:
    def test_create_draft(self):
        sc = make_subcontract(activate=False)
        assert sc.status == "draft"
        assert sc.remaining_balance == 100000.0
        assert sc.total_certified == 0.0

    def test_required_fields(self):
        with pytest.raises(ValidationError) as exc:
            subcontract_service.create_subcontract({"total_amount": 0, "retention_percentage": 150}, "pm")
        fields = {e["field"] for e in exc.value.errors}
        assert {"contract_number", "project_id", "subcontractor_id", "subcontractor_name",
                "description", "total_amount", "retention_percentage",
                "start_date", "end_date"} <= fields

    def test_end_before_start(self):
        with pytest.raises(ValidationError) as exc:
            make_subcontract(start_date="2026-06-01", end_date="2026-01-01")
        assert exc.value.errors[0]["field"] == "end_date"

    def test_duplicate_contract_number(self):
        make_subcontract(activate=False)
        with pytest.raises(ConflictError):
            make_subcontract(activate=False)

    def test_schedule_must_sum_to_100(self):
        with pytest.raises(ValidationError):
            make_subcontract(payment_schedule=[{"percentage": 50}, {"percentage": 30}])

    def test_schedule_amounts(self):
        sc = make_subcontract(activate=False, payment_schedule=SCHEDULE)
        assert [i.amount for i in sc.schedule_items] == [40000.0, 40000.0, 20000.0]
        assert [i.sequence for i in sc.schedule_items] == [1, 2, 3]


class TestLifecycle:
    def test_approve_then_complete(self):
        sc = make_subcontract()
        assert sc.status == "active"
        assert sc.approved_by == "director"
        sc = subcontract_service.complete_subcontract(sc.id, "pm")
        assert sc.status == "completed"
        with pytest.raises(InvalidStateTransition):
            subcontract_service.cancel_subcontract(sc.id, "pm")

    def test_draft_cannot_complete(self):
        sc = make_subcontract(activate=False)
        with pytest.raises(InvalidStateTransition):
            subcontract_service.complete_subcontract(sc.id, "pm")

    def test_cancel_active_without_payments(self):
        sc = make_subcontract()
        sc = subcontract_service.cancel_subcontract(sc.id, "pm", "Scope removed")
        assert sc.status == "cancelled"
        assert sc.cancellation_reason == "Scope removed"

    def test_cancel_refused_after_payment(self, active_subcontract):
        _certify(active_subcontract, 10000, paid=True)
        with pytest.raises(InvalidStateTransition):
            subcontract_service.cancel_subcontract(active_subcontract.id, "pm")
        assert db.session.get(Subcontract, active_subcontract.id).status == "active"

    def test_approval_commits_budget(self):
        cc = make_cost_code()
        cost_code_service.create_budget(
            PROJECT_ID, {"cost_code_id": cc.id, "budgeted_quantity": 1, "budgeted_unit_price": 150000}, "pm",
        )
        make_subcontract(cost_code_ids=[cc.id])
        line = cost_code_service.get_project_budgets(PROJECT_ID)[0]
        assert line.committed_amount == 100000.0

    def test_retention_fixed_once_active(self, active_subcontract):
        with pytest.raises(ValidationError):
            subcontract_service.update_subcontract(active_subcontract.id, {"retention_percentage": 5}, "pm")

    def test_delete_draft(self):
        sc = make_subcontract(activate=False)
        subcontract_service.delete_subcontract(sc.id, "pm")
        assert db.session.get(Subcontract, sc.id) is None

    def test_delete_active_releases_committed_budget(self):
        cc = make_cost_code()
        cost_code_service.create_budget(
            PROJECT_ID, {"cost_code_id": cc.id, "budgeted_quantity": 1, "budgeted_unit_price": 150000}, "pm",
        )
        sc = make_subcontract(cost_code_ids=[cc.id])
        subcontract_service.delete_subcontract(sc.id, "pm")
        line = cost_code_service.get_project_budgets(PROJECT_ID)[0]
        assert line.committed_amount == 0.0

    def test_delete_audits_each_draft_certificate(self, active_subcontract):
        draft = certs.create_certificate(
            {"subcontract_id": active_subcontract.id, "amount_certified": 5000,
             "period_start": "2026-02-01", "period_end": "2026-02-28"},
            "site-engineer",
        )
        subcontract_service.delete_subcontract(active_subcontract.id, "pm")
        entry = AuditLog.query.filter_by(entity_id=draft.id, action="certificate_deleted").one()
        assert entry.user_id == "pm"
        assert entry.meta["cascade"] == "subcontract_deleted"
        assert AuditLog.query.filter_by(entity_id=active_subcontract.id, action="subcontract_deleted").count() == 1


class TestDerivedTotals:
    def test_schedule_status_follows_certificates(self):
        sc = make_subcontract(payment_schedule=SCHEDULE)
        _certify(sc, 40000, paid=True)
        _certify(sc, 40000)
        statuses = [i.status for i in db.session.get(Subcontract, sc.id).schedule_items]
        assert statuses == ["paid", "certified", "pending"]

    def test_retention_balance(self, active_subcontract):
        cert = _certify(active_subcontract, 20000)
        holdback = holdback_service.list_holdbacks({"subcontract_id": active_subcontract.id})[0]
        release = holdback_service.request_release(holdback.id, {"amount": 500, "reason": "work_completed"}, "pm")
        holdback_service.approve_release(holdback.id, release.id, "director")

        balance = subcontract_service.get_retention_balance(active_subcontract.id)
        assert cert.retention_amount == 2000.0
        assert balance["total_retained"] == 2000.0
        assert balance["released"] == 500.0
        assert balance["balance"] == 1500.0

    def test_stats(self, active_subcontract):
        make_subcontract(activate=False, contract_number="SC-2026-002", total=50000)
        _certify(active_subcontract, 10000, paid=True)
        stats = subcontract_service.get_subcontract_stats(PROJECT_ID)
        assert stats["total"] == 2
        assert stats["by_status"] == {"active": 1, "draft": 1}
        assert stats["total_contract_value"] == 150000.0
        assert stats["total_paid"] == 9000.0
        assert stats["remaining_balance"] == 140000.0


class TestSubcontractAPI:
    def test_create_and_conflict(self, client):
        payload = {
            "contract_number": "SC-API-1", "project_id": PROJECT_ID, "subcontractor_id": "sub-1",
            "subcontractor_name": "Pour Co", "description": "Slab pours", "total_amount": 20000,
            "retention_percentage": 5, "start_date": "2026-01-01", "end_date": "2026-06-30",
            "payment_schedule": SCHEDULE,
        }
        res = client.post("/api/v1/subcontracts", json=payload)
        assert res.status_code == 201
        assert len(res.get_json()["payment_schedule"]) == 3

        res = client.post("/api/v1/subcontracts", json=payload)
        assert res.status_code == 409

    def test_approve_and_retention(self, client):
        sc = make_subcontract(activate=False)
        res = client.post(f"/api/v1/subcontracts/{sc.id}/approve", headers={"X-User": "director"})
        assert res.status_code == 200
        assert res.get_json()["status"] == "active"

        res = client.get(f"/api/v1/subcontracts/{sc.id}/retention")
        assert res.get_json()["balance"] == 0.0

    def test_list_filters(self, client, active_subcontract):
        res = client.get("/api/v1/subcontracts?status=active")
        body = res.get_json()
        assert body["total"] == 1
        assert body["subcontracts"][0]["id"] == active_subcontract.id
