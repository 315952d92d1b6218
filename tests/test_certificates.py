"""
Progress certificate workflow.

Covers:
  - net payable calculation (retention, cumulative, % complete)
  - draft → pending_approval → approved → paid
  - mark_as_paid refused unless approved
  - subcontract totals after approval / payment (remaining = total − certified)
  - retention holdback opened on approval
  - over-certification guarded at create and approval time
  - REST endpoints
"""

import pytest

from conftest import make_subcontract
from sitebooks.core.exceptions import InvalidStateTransition, ValidationError
from sitebooks.models import db
from sitebooks.models.audit import AuditLog
from sitebooks.models.holdback import Holdback
from sitebooks.models.subcontract import Subcontract
from sitebooks.services import progress_certificate_service as svc


def _draft(sc, amount=30000, start="2026-02-01", end="2026-02-28"):
    return svc.create_certificate(
        {"subcontract_id": sc.id, "amount_certified": amount, "period_start": start, "period_end": end},
        "site-engineer",
    )


def _approved(sc, amount=30000):
    cert = _draft(sc, amount)
    svc.submit_certificate(cert.id, "site-engineer")
    return svc.approve_certificate(cert.id, "director")


class TestCalculation:
    def test_calculate_net_payable(self, active_subcontract):
        calc = svc.calculate_net_payable(active_subcontract, 30000)
        assert calc == {
            "amount_certified": 30000.0,
            "retention_amount": 3000.0,
            "net_payable": 27000.0,
            "previous_certified": 0.0,
            "cumulative_certified": 30000.0,
            "remaining_balance": 70000.0,
            "percentage_complete": 30.0,
        }

    def test_draft_carries_calculation(self, active_subcontract):
        cert = _draft(active_subcontract)
        assert cert.status == "draft"
        assert cert.certificate_number == "SC-2026-001-PC-01"
        assert cert.net_payable == 27000.0
        assert cert.project_id == active_subcontract.project_id


class TestWorkflow:
    def test_mark_as_paid_on_pending_fails(self, active_subcontract):
        cert = _draft(active_subcontract)
        svc.submit_certificate(cert.id, "site-engineer")
        with pytest.raises(InvalidStateTransition):
            svc.mark_as_paid(cert.id, "TRX-1", "treasury")
        assert cert.status == "pending_approval"

    def test_mark_as_paid_on_draft_fails(self, active_subcontract):
        cert = _draft(active_subcontract)
        with pytest.raises(InvalidStateTransition):
            svc.mark_as_paid(cert.id, "TRX-1", "treasury")

    def test_approved_then_paid(self, active_subcontract):
        cert = _approved(active_subcontract)
        sc = db.session.get(Subcontract, active_subcontract.id)
        assert cert.status == "approved"
        assert sc.total_certified == 30000.0
        assert sc.total_retained == 3000.0
        assert sc.total_paid == 0.0
        assert sc.remaining_balance == sc.total_amount - sc.total_certified

        cert = svc.mark_as_paid(cert.id, "TRX-1", "treasury")
        assert cert.status == "paid"
        assert cert.payment_id == "TRX-1"
        assert sc.total_paid == 27000.0
        assert sc.total_paid <= sc.total_certified <= sc.total_amount

    def test_payment_reference_required(self, active_subcontract):
        cert = _approved(active_subcontract)
        with pytest.raises(ValidationError):
            svc.mark_as_paid(cert.id, "  ", "treasury")

    def test_approval_opens_holdback(self, active_subcontract):
        cert = _approved(active_subcontract)
        holdback = Holdback.query.filter_by(certificate_id=cert.id).one()
        assert holdback.original_amount == 3000.0
        assert holdback.current_amount == 3000.0
        assert holdback.status == "active"

    def test_no_holdback_without_retention(self):
        sc = make_subcontract(retention=0, contract_number="SC-NORET")
        _approved(sc)
        assert Holdback.query.count() == 0

    def test_second_certificate_uses_previous_certified(self, active_subcontract):
        _approved(active_subcontract, 30000)
        cert = _draft(active_subcontract, 20000, "2026-03-01", "2026-03-31")
        assert cert.previous_certified == 30000.0
        assert cert.cumulative_certified == 50000.0
        assert cert.percentage_complete == 50.0

    def test_reject_is_terminal(self, active_subcontract):
        cert = _draft(active_subcontract)
        svc.submit_certificate(cert.id, "site-engineer")
        with pytest.raises(ValidationError):
            svc.reject_certificate(cert.id, "director", "")
        cert = svc.reject_certificate(cert.id, "director", "Quantities not measured")
        assert cert.status == "rejected"
        with pytest.raises(InvalidStateTransition):
            svc.submit_certificate(cert.id, "site-engineer")

    def test_audit_trail(self, active_subcontract):
        cert = _approved(active_subcontract)
        svc.mark_as_paid(cert.id, "TRX-9", "treasury")
        actions = [log.action for log in AuditLog.query.filter_by(entity_id=cert.id).order_by(AuditLog.id)]
        assert actions == ["certificate_created", "certificate_submitted", "certificate_approved", "certificate_paid"]


class TestGuards:
    def test_amount_beyond_remaining_balance(self, active_subcontract):
        with pytest.raises(ValidationError):
            _draft(active_subcontract, 120000)

    def test_period_order(self, active_subcontract):
        with pytest.raises(ValidationError):
            _draft(active_subcontract, 1000, "2026-03-31", "2026-03-01")

    def test_draft_subcontract_cannot_certify(self):
        sc = make_subcontract(activate=False, contract_number="SC-DRAFT")
        with pytest.raises(ValidationError):
            _draft(sc)

    def test_approval_cannot_exceed_contract(self, active_subcontract):
        first = _draft(active_subcontract, 60000)
        second = _draft(active_subcontract, 60000, "2026-03-01", "2026-03-31")
        for cert in (first, second):
            svc.submit_certificate(cert.id, "site-engineer")
        svc.approve_certificate(first.id, "director")
        with pytest.raises(ValidationError):
            svc.approve_certificate(second.id, "director")

    def test_only_drafts_editable(self, active_subcontract):
        cert = _draft(active_subcontract)
        svc.update_certificate(cert.id, {"amount_certified": 10000}, "site-engineer")
        assert cert.retention_amount == 1000.0
        svc.submit_certificate(cert.id, "site-engineer")
        with pytest.raises(InvalidStateTransition):
            svc.update_certificate(cert.id, {"amount_certified": 5000}, "site-engineer")


class TestCertificateAPI:
    def test_full_flow(self, client, active_subcontract):
        res = client.post("/api/v1/progress-certificates", json={
            "subcontract_id": active_subcontract.id, "amount_certified": 25000,
            "period_start": "2026-02-01", "period_end": "2026-02-28",
        })
        assert res.status_code == 201
        cert_id = res.get_json()["id"]

        res = client.post(f"/api/v1/progress-certificates/{cert_id}/mark-paid", json={"payment_id": "T1"})
        assert res.status_code == 409

        assert client.post(f"/api/v1/progress-certificates/{cert_id}/submit").status_code == 200
        assert client.post(f"/api/v1/progress-certificates/{cert_id}/approve").status_code == 200

        res = client.get(f"/api/v1/progress-certificates/{cert_id}/payment")
        assert res.status_code == 200
        assert res.get_json()["amount"] == 22500.0

        res = client.post(f"/api/v1/progress-certificates/{cert_id}/mark-paid", json={"payment_id": "T1"})
        assert res.status_code == 200
        assert res.get_json()["status"] == "paid"

    def test_calculate_preview(self, client, active_subcontract):
        res = client.post("/api/v1/progress-certificates/calculate",
                          json={"subcontract_id": active_subcontract.id, "amount_certified": 10000})
        assert res.status_code == 200
        assert res.get_json()["net_payable"] == 9000.0

    def test_stats(self, client, active_subcontract):
        _approved(active_subcontract)
        res = client.get(f"/api/v1/progress-certificates/stats?subcontract_id={active_subcontract.id}")
        body = res.get_json()
        assert body["total_certified"] == 30000.0
        assert body["by_status"] == {"approved": 1}
