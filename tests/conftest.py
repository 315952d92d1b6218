"""
Shared pytest fixtures for the SiteBooks test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - cost_code / budget / pending_expense / active_subcontract: seeded entities
"""

import base64

import pytest

from sitebooks import create_app
from sitebooks.middleware.rate_limiter import SlidingWindowRateLimiter
from sitebooks.models import db as _db

PROJECT_ID = "proj-tower-a"
RECEIPT_B64 = base64.b64encode(b"%PDF-1.4 receipt for rebar delivery").decode("ascii")


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, fresh OCR limiter, rollback + recreate tables after."""
    app.extensions["ocr_rate_limiter"] = SlidingWindowRateLimiter(
        max_requests=app.config["OCR_RATE_LIMIT_MAX_REQUESTS"],
        window_ms=app.config["OCR_RATE_LIMIT_WINDOW_MS"],
    )
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Factories ────────────────────────────────────────────────────────────


def make_cost_code(code="03.01.01", name="Columns", **kw):
    from sitebooks.services import cost_code_service

    data = {
        "code": code,
        "name": name,
        "category": kw.pop("category", "Reinforced Concrete"),
        "type": kw.pop("type", "material"),
        "description": kw.pop("description", "Construction of reinforced concrete columns"),
        "tags": kw.pop("tags", ["column", "concrete", "rebar"]),
    }
    data.update(kw)
    return cost_code_service.create_cost_code(data, "tester")


def make_expense(cost_code, project_id=PROJECT_ID, amount=1000.0, submit=True, **kw):
    from sitebooks.services import expense_service

    data = {
        "project_id": project_id,
        "cost_code_id": cost_code.id,
        "supplier_id": "sup-acme",
        "supplier_name": "Acme Steel",
        "amount": amount,
        "tax_amount": kw.pop("tax_amount", 0),
        "description": kw.pop("description", "Rebar delivery for level 3"),
        "invoice_number": kw.pop("invoice_number", "INV-1001"),
        "invoice_date": kw.pop("invoice_date", "2026-03-10"),
    }
    data.update(kw)
    expense, _ = expense_service.create_expense(data, "clerk")
    if submit:
        expense = expense_service.submit_for_approval(expense.id, "clerk")
    return expense


def make_subcontract(project_id=PROJECT_ID, total=100000.0, retention=10.0, activate=True, **kw):
    from sitebooks.services import subcontract_service

    data = {
        "contract_number": kw.pop("contract_number", "SC-2026-001"),
        "project_id": project_id,
        "subcontractor_id": "sub-volt",
        "subcontractor_name": "Volt Electrical",
        "description": "Electrical rough-in, towers A and B",
        "total_amount": total,
        "retention_percentage": retention,
        "start_date": "2026-01-01",
        "end_date": "2026-12-31",
    }
    data.update(kw)
    sc = subcontract_service.create_subcontract(data, "pm")
    if activate:
        sc = subcontract_service.approve_subcontract(sc.id, "director")
    return sc


def ocr_payload(**overrides):
    payload = {
        "amount": 1250.5,
        "taxAmount": 0,
        "date": "2026-03-10",
        "supplier": "Acme Steel",
        "description": "Concrete columns rebar",
        "invoiceNumber": "A-778",
        "file": {"name": "receipt.pdf", "mimeType": "application/pdf", "data": RECEIPT_B64},
        "ocrData": {
            "confidence": 0.95,
            "rawText": "ACME STEEL ... TOTAL 1250.50",
            "extractedFields": {"total": " 1250.50 "},
            "provider": "textract",
        },
    }
    payload.update(overrides)
    return payload


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def cost_code():
    return make_cost_code()


@pytest.fixture()
def budget(cost_code):
    from sitebooks.services import cost_code_service

    return cost_code_service.create_budget(
        PROJECT_ID,
        {"cost_code_id": cost_code.id, "budgeted_quantity": 100, "budgeted_unit_price": 100},
        "pm",
    )


@pytest.fixture()
def pending_expense(cost_code):
    return make_expense(cost_code)


@pytest.fixture()
def active_subcontract():
    return make_subcontract()
