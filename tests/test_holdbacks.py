"""
Retention holdbacks.

Covers:
  - holdback opened with the certificate's retention
  - release request / approve / reject
  - over-request guarded (incl. pending requests)
  - aging buckets and stats
  - REST endpoints
"""

from datetime import timedelta

import pytest

from sitebooks.core.exceptions import InvalidStateTransition, ValidationError
from sitebooks.models import _utcnow
from sitebooks.models.audit import AuditLog
from sitebooks.services import holdback_service as svc
from sitebooks.services import progress_certificate_service as certs


@pytest.fixture()
def holdback(active_subcontract):
    cert = certs.create_certificate(
        {"subcontract_id": active_subcontract.id, "amount_certified": 40000,
         "period_start": "2026-02-01", "period_end": "2026-02-28"},
        "site-engineer",
    )
    certs.submit_certificate(cert.id, "site-engineer")
    certs.approve_certificate(cert.id, "director")
    return svc.list_holdbacks({"subcontract_id": active_subcontract.id})[0]


class TestReleases:
    def test_holdback_opened(self, holdback):
        assert holdback.holdback_number == "HB-0001"
        assert holdback.original_amount == 4000.0
        assert holdback.retention_percentage == 10.0

    def test_partial_then_full_release(self, holdback):
        release = svc.request_release(holdback.id, {"amount": 1500, "reason": "work_completed"}, "pm")
        assert release.status == "pending"
        hb = svc.approve_release(holdback.id, release.id, "director", payment_reference="TRX-55")
        assert hb.status == "partial"
        assert hb.current_amount == 2500.0
        assert hb.released_amount == 1500.0
        assert hb.original_amount == hb.current_amount + hb.released_amount

        release = svc.request_release(holdback.id, {"amount": 2500, "reason": "warranty_expired"}, "pm")
        hb = svc.approve_release(holdback.id, release.id, "director")
        assert hb.status == "released"
        assert hb.current_amount == 0.0

        log = AuditLog.query.filter_by(action="retention_released").first()
        assert log.severity == "critical"
        assert log.financial_impact["amount"] == 1500.0

    def test_request_validation(self, holdback):
        with pytest.raises(ValidationError) as exc:
            svc.request_release(holdback.id, {"amount": 0, "reason": "because"}, "pm")
        assert {e["field"] for e in exc.value.errors} == {"amount", "reason"}

    def test_pending_requests_count_against_balance(self, holdback):
        svc.request_release(holdback.id, {"amount": 3000, "reason": "work_completed"}, "pm")
        with pytest.raises(ValidationError):
            svc.request_release(holdback.id, {"amount": 1500, "reason": "work_completed"}, "pm")

    def test_reject_release(self, holdback):
        release = svc.request_release(holdback.id, {"amount": 1000, "reason": "other"}, "pm")
        with pytest.raises(ValidationError):
            svc.reject_release(holdback.id, release.id, "director", "")
        release = svc.reject_release(holdback.id, release.id, "director", "Defects open")
        assert release.status == "rejected"
        assert svc.get_holdback(holdback.id).current_amount == 4000.0
        with pytest.raises(InvalidStateTransition):
            svc.approve_release(holdback.id, release.id, "director")

    def test_released_holdback_is_closed(self, holdback):
        release = svc.request_release(holdback.id, {"amount": 4000, "reason": "work_completed"}, "pm")
        svc.approve_release(holdback.id, release.id, "director")
        with pytest.raises(InvalidStateTransition):
            svc.request_release(holdback.id, {"amount": 1, "reason": "other"}, "pm")


class TestReporting:
    def test_aging_buckets(self, holdback):
        aging = svc.get_holdback_aging(now=_utcnow() + timedelta(days=45))
        assert aging["31-60"] == {"count": 1, "amount": 4000.0}
        assert aging["0-30"]["count"] == 0
        assert set(aging) == {"0-30", "31-60", "61-90", "90+"}

    def test_aging_skips_released(self, holdback):
        release = svc.request_release(holdback.id, {"amount": 4000, "reason": "work_completed"}, "pm")
        svc.approve_release(holdback.id, release.id, "director")
        aging = svc.get_holdback_aging()
        assert all(bucket["count"] == 0 for bucket in aging.values())

    def test_stats(self, holdback):
        svc.request_release(holdback.id, {"amount": 1000, "reason": "other"}, "pm")
        stats = svc.get_holdback_stats()
        assert stats["total"] == 1
        assert stats["total_outstanding"] == 4000.0
        assert stats["pending_releases"] == 1
        assert stats["pending_release_amount"] == 1000.0


class TestHoldbackAPI:
    def test_release_flow(self, client, holdback):
        res = client.post(f"/api/v1/holdbacks/{holdback.id}/releases",
                          json={"amount": 500, "reason": "defects_corrected"})
        assert res.status_code == 201
        release_id = res.get_json()["id"]

        res = client.post(f"/api/v1/holdbacks/{holdback.id}/releases/{release_id}/approve",
                          json={"payment_reference": "TRX-1"}, headers={"X-User": "director"})
        assert res.status_code == 200
        body = res.get_json()
        assert body["current_amount"] == 3500.0
        assert body["releases"][0]["payment_reference"] == "TRX-1"

    def test_unknown_release(self, client, holdback):
        res = client.post(f"/api/v1/holdbacks/{holdback.id}/releases/nope/approve")
        assert res.status_code == 404

    def test_aging_endpoint(self, client, holdback):
        res = client.get("/api/v1/holdbacks/aging")
        assert res.get_json()["0-30"]["amount"] == 4000.0
