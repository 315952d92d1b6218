"""
OCR expense ingestion — POST /api/expenses/auto-create.

Covers:
  - 415 on non-JSON content type
  - 400 with field-level validationErrors (amount, confidence, file, body)
  - high-confidence, fully classified intake → no review, no warnings
  - low-confidence intake → needs_review + warning
  - confidence below the minimum rejected by the store
  - 429 once the caller's sliding window is exhausted
  - 401 on a bad webhook signature when a secret is configured
  - 500 INTERNAL_ERROR when the store raises
  - verify_webhook_signature
"""

import hashlib
import hmac
import json

import pytest

from conftest import PROJECT_ID, make_cost_code, ocr_payload
from sitebooks.middleware.rate_limiter import SlidingWindowRateLimiter
from sitebooks.models import db
from sitebooks.models.audit import AuditLog
from sitebooks.models.expense import Expense
from sitebooks.services import expense_service
from sitebooks.services.ocr_ingestion_service import (
    WARN_COST_CODE_AUTO_SUGGESTED,
    WARN_LOW_CONFIDENCE,
    validate_ocr_request,
    verify_webhook_signature,
)

URL = "/api/expenses/auto-create"


def _post(client, payload, **headers):
    return client.post(URL, json=payload, headers=headers)


def _fields(res):
    return {e["field"] for e in res.get_json()["validationErrors"]}


# ═════════════════════════════════════════════════════════════════════════
# TRANSPORT
# ═════════════════════════════════════════════════════════════════════════

class TestTransport:
    def test_non_json_content_type_is_415(self, client):
        res = client.post(URL, data="amount=10", content_type="text/plain")
        assert res.status_code == 415
        body = res.get_json()
        assert body["success"] is False
        assert body["code"] == "UNSUPPORTED_MEDIA_TYPE"

    def test_malformed_json_is_400(self, client):
        res = client.post(URL, data="{not json", content_type="application/json")
        assert res.status_code == 400
        assert _fields(res) == {"body"}

    def test_non_object_body_is_400(self, client):
        res = _post(client, [1, 2, 3])
        assert res.status_code == 400
        assert _fields(res) == {"body"}

    def test_rate_limit_returns_429(self, app, client):
        app.extensions["ocr_rate_limiter"] = SlidingWindowRateLimiter(max_requests=1, window_ms=60_000)
        first = _post(client, ocr_payload(), **{"X-Webhook-Source": "scanner-1"})
        second = _post(client, ocr_payload(), **{"X-Webhook-Source": "scanner-1"})
        assert first.status_code == 201
        assert second.status_code == 429
        body = second.get_json()
        assert body["success"] is False
        assert body["code"] == "RATE_LIMIT_EXCEEDED"
        assert body["error"] == "Rate limit of 1 requests per 60000ms exceeded"

    def test_rate_limit_is_per_caller(self, app, client):
        app.extensions["ocr_rate_limiter"] = SlidingWindowRateLimiter(max_requests=1, window_ms=60_000)
        assert _post(client, ocr_payload(), **{"X-Webhook-Source": "scanner-1"}).status_code == 201
        assert _post(client, ocr_payload(), **{"X-Webhook-Source": "scanner-2"}).status_code == 201


# ═════════════════════════════════════════════════════════════════════════
# VALIDATION
# ═════════════════════════════════════════════════════════════════════════

class TestValidation:
    @pytest.mark.parametrize("amount", [0, -5, "100", None])
    def test_amount_must_be_positive_number(self, client, amount):
        res = _post(client, ocr_payload(amount=amount))
        assert res.status_code == 400
        body = res.get_json()
        assert body["success"] is False
        assert body["code"] == "VALIDATION_ERROR"
        assert "amount" in _fields(res)

    @pytest.mark.parametrize("confidence", [-0.1, 1.5])
    def test_confidence_out_of_range(self, client, confidence):
        res = _post(client, ocr_payload(ocrData={"confidence": confidence}))
        assert res.status_code == 400
        assert "ocrData.confidence" in _fields(res)

    @pytest.mark.parametrize("literal", ["NaN", "Infinity", "-Infinity"])
    def test_non_finite_confidence_rejected(self, client, literal):
        raw = json.dumps(ocr_payload()).replace(
            '"confidence": 0.95', f'"confidence": {literal}',
        )
        assert literal in raw
        res = client.post(URL, data=raw, content_type="application/json")
        assert res.status_code == 400
        assert _fields(res) == {"ocrData.confidence"}
        assert Expense.query.count() == 0

    @pytest.mark.parametrize("literal", ["NaN", "Infinity"])
    def test_non_finite_amount_rejected(self, client, literal):
        payload = ocr_payload()
        payload["amount"] = "__AMOUNT__"
        raw = json.dumps(payload).replace('"__AMOUNT__"', literal)
        res = client.post(URL, data=raw, content_type="application/json")
        assert res.status_code == 400
        assert _fields(res) == {"amount"}

    def test_oversized_amount_rejected(self, client):
        res = _post(client, ocr_payload(amount=10**400))
        assert res.status_code == 400
        assert _fields(res) == {"amount"}

    def test_missing_confidence(self, client):
        res = _post(client, ocr_payload(ocrData={"rawText": "x"}))
        assert res.status_code == 400
        assert "ocrData" in _fields(res)

    def test_all_errors_reported_together(self):
        errors = validate_ocr_request({"amount": 0, "date": "10/03/2026", "supplier": "A", "description": "x"})
        assert {e.field for e in errors} == {
            "amount", "date", "supplier", "description", "file.data", "ocrData",
        }

    def test_boolean_is_not_a_number(self):
        errors = validate_ocr_request(ocr_payload(amount=True))
        assert [e.field for e in errors] == ["amount"]

    def test_file_data_must_be_base64(self, client):
        res = _post(client, ocr_payload(file={"name": "r.pdf", "data": "@@@not-base64@@@"}))
        assert res.status_code == 400
        assert _fields(res) == {"file.data"}
        assert Expense.query.count() == 0

    def test_confidence_below_minimum_rejected_by_store(self, client):
        res = _post(client, ocr_payload(ocrData={"confidence": 0.2}))
        assert res.status_code == 400
        assert _fields(res) == {"ocrData.confidence"}
        assert Expense.query.count() == 0


# ═════════════════════════════════════════════════════════════════════════
# INTAKE
# ═════════════════════════════════════════════════════════════════════════

class TestIntake:
    def test_high_confidence_fully_classified(self, client):
        cc = make_cost_code()
        res = _post(client, ocr_payload(projectId=PROJECT_ID, costCodeId=cc.id))
        assert res.status_code == 201
        body = res.get_json()
        assert body["success"] is True
        assert body["expense"]["needsReview"] is False
        assert body["expense"]["status"] == "pending_approval"
        assert body["expense"]["ocrConfidence"] == 0.95
        assert body["warnings"] == []

        expense = db.session.get(Expense, body["expenseId"])
        assert expense.is_auto_created is True
        assert expense.expense_number.startswith("AUTO-")
        assert expense.cost_code_id == cc.id
        assert expense.ocr_data["extracted_fields"] == {"total": "1250.50"}
        assert len(expense.attachments) == 1
        assert len(expense.attachments[0].sha256) == 64

    def test_low_confidence_flags_review(self, client):
        res = _post(client, ocr_payload(ocrData={"confidence": 0.4}))
        assert res.status_code == 201
        body = res.get_json()
        assert body["expense"]["needsReview"] is True
        assert WARN_LOW_CONFIDENCE in body["warnings"]
        assert "manual review" in body["message"]

        expense = db.session.get(Expense, body["expenseId"])
        assert "low_confidence" in expense.review_reasons

    def test_cost_code_suggested_from_description(self, client):
        cc = make_cost_code()
        res = _post(client, ocr_payload(projectId=PROJECT_ID))
        body = res.get_json()
        assert res.status_code == 201
        assert WARN_COST_CODE_AUTO_SUGGESTED in body["warnings"]
        assert body["expense"]["needsReview"] is False
        assert db.session.get(Expense, body["expenseId"]).cost_code_id == cc.id

    def test_unknown_cost_code_needs_review(self, client):
        res = _post(client, ocr_payload(projectId=PROJECT_ID, costCodeId="no-such-code"))
        body = res.get_json()
        assert res.status_code == 201
        assert body["expense"]["needsReview"] is True
        assert db.session.get(Expense, body["expenseId"]).review_reasons == ["missing_cost_code"]

    def test_creation_is_audited(self, client):
        res = _post(client, ocr_payload())
        expense_id = res.get_json()["expenseId"]
        logs = AuditLog.query.filter_by(entity_id=expense_id).all()
        assert [log.action for log in logs] == ["expense_created"]
        assert "ocr" in logs[0].tag_list
        assert logs[0].user_id == "system-ocr"

    def test_store_failure_is_500(self, client, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(expense_service, "create_expense_from_ocr", boom)
        res = _post(client, ocr_payload())
        assert res.status_code == 500
        body = res.get_json()
        assert body["success"] is False
        assert body["code"] == "INTERNAL_ERROR"
        assert body["details"]["errorType"] == "RuntimeError"
        assert "timestamp" in body["details"]


# ═════════════════════════════════════════════════════════════════════════
# WEBHOOK SIGNATURE
# ═════════════════════════════════════════════════════════════════════════

def _sign(secret, raw):
    return hmac.new(secret.encode(), raw, hashlib.sha256).hexdigest()


class TestSignature:
    def test_verify_accepts_plain_and_prefixed(self):
        raw = b'{"amount": 1}'
        sig = _sign("s3cret", raw)
        assert verify_webhook_signature(raw, sig, "s3cret")
        assert verify_webhook_signature(raw, f"sha256={sig}", "s3cret")
        assert verify_webhook_signature(raw.decode(), sig, "s3cret")

    def test_verify_rejects(self):
        raw = b'{"amount": 1}'
        assert not verify_webhook_signature(raw, _sign("other", raw), "s3cret")
        assert not verify_webhook_signature(raw, None, "s3cret")
        assert not verify_webhook_signature(raw, _sign("s3cret", raw), "")

    def test_endpoint_requires_signature_when_secret_set(self, app, client, monkeypatch):
        monkeypatch.setitem(app.config, "OCR_WEBHOOK_SECRET", "s3cret")
        raw = json.dumps(ocr_payload()).encode()

        res = client.post(URL, data=raw, content_type="application/json",
                          headers={"X-Webhook-Signature": "deadbeef"})
        assert res.status_code == 401
        assert res.get_json()["code"] == "INVALID_SIGNATURE"

        res = client.post(URL, data=raw, content_type="application/json",
                          headers={"X-Webhook-Signature": _sign("s3cret", raw)})
        assert res.status_code == 201
