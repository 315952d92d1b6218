"""
OCR expense ingestion.

Turns an automation-sourced request (camelCase wire contract) into an
``OCRExpenseInput`` and hands it to the expense store.  The outcome is one of
``Ok(OCRIngestionResult)``, ``ValidationFailure`` or ``StoreFailure``; the
blueprint maps each to an HTTP response.

The store, not this module, decides whether the expense needs review.
"""

import hashlib
import hmac
import logging
import math
import re
from dataclasses import dataclass, field

from sitebooks.core import results
from sitebooks.core.exceptions import ValidationError
from sitebooks.core.results import FieldError, Ok, ValidationFailure
from sitebooks.models import db
from sitebooks.services import expense_service
from sitebooks.services.expense_service import OCRExpenseInput
from sitebooks.utils.sanitize import sanitize_number, sanitize_object, sanitize_text

logger = logging.getLogger(__name__)

_ISO_DATE_PREFIX_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")

MSG_CREATED = "Expense created successfully"
MSG_CREATED_NEEDS_REVIEW = "Expense created successfully but requires manual review due to low OCR confidence"
WARN_LOW_CONFIDENCE = "Low OCR confidence - manual review recommended"
WARN_PROJECT_AUTO_ASSIGNED = "Project was auto-assigned - please verify"
WARN_COST_CODE_AUTO_SUGGESTED = "Cost code was auto-suggested - please verify"


@dataclass
class OCRIngestionResult:
    expense: object
    warnings: list[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        return MSG_CREATED_NEEDS_REVIEW if self.expense.needs_review else MSG_CREATED

    def to_response(self) -> dict:
        e = self.expense
        return {
            "success": True,
            "expenseId": e.id,
            "message": self.message,
            "expense": {
                "id": e.id,
                "amount": e.total_amount,
                "supplier": e.supplier_name,
                "description": e.description,
                "status": e.status,
                "needsReview": e.needs_review,
                "ocrConfidence": e.ocr_confidence or 0,
            },
            "warnings": list(self.warnings),
        }


def _is_numeric_type(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_number(value) -> bool:
    """A finite int or float; NaN, infinities and oversized ints are refused."""
    if not _is_numeric_type(value):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


def validate_ocr_request(payload) -> list[FieldError]:
    """Evaluate every rule and return all field errors (empty when valid)."""
    if not isinstance(payload, dict):
        return [FieldError("body", "Request body must be a JSON object")]

    errors = []
    amount = payload.get("amount")
    if not _is_number(amount) or amount <= 0:
        errors.append(FieldError("amount", "Amount is required and must be greater than 0"))

    tax = payload.get("taxAmount")
    if tax is not None and (not _is_number(tax) or tax < 0):
        errors.append(FieldError("taxAmount", "Tax amount must be a number >= 0"))

    date = payload.get("date")
    if not date:
        errors.append(FieldError("date", "Date is required"))
    elif not isinstance(date, str) or not _ISO_DATE_PREFIX_RE.match(date):
        errors.append(FieldError("date", "Date must be in ISO format (YYYY-MM-DD)"))

    if len(sanitize_text(payload.get("supplier"))) < 2:
        errors.append(FieldError("supplier", "Supplier name is required (minimum 2 characters)"))
    if len(sanitize_text(payload.get("description"))) < 3:
        errors.append(FieldError("description", "Description is required (minimum 3 characters)"))

    file = payload.get("file")
    if not isinstance(file, dict) or not file.get("data"):
        errors.append(FieldError("file.data", "File data is required"))

    ocr = payload.get("ocrData")
    confidence = ocr.get("confidence") if isinstance(ocr, dict) else None
    if not _is_numeric_type(confidence):
        errors.append(FieldError("ocrData", "OCR data with confidence score is required"))
    elif not _is_number(confidence) or confidence < 0 or confidence > 1:
        errors.append(FieldError("ocrData.confidence", "OCR confidence must be between 0 and 1"))
    return errors


def _optional_id(payload: dict, key: str) -> str | None:
    return sanitize_text(payload.get(key), 64) or None


def build_ocr_input(payload: dict) -> OCRExpenseInput:
    """Normalize a validated request into the store's intake record."""
    ocr = payload["ocrData"]
    file = payload["file"]
    extracted = ocr.get("extractedFields")
    return OCRExpenseInput(
        amount=float(payload["amount"]),
        tax_amount=float(payload.get("taxAmount") or 0),
        date=payload["date"][:10],
        supplier=sanitize_text(payload["supplier"], 255),
        description=sanitize_text(payload["description"]),
        invoice_number=sanitize_text(payload.get("invoiceNumber"), 100) or None,
        confidence=float(ocr["confidence"]),
        raw_text=sanitize_text(ocr.get("rawText"), 20000),
        extracted_fields=sanitize_object(extracted) if isinstance(extracted, dict) else {},
        processing_time=sanitize_number(ocr.get("processingTime")),
        provider=sanitize_text(ocr.get("provider"), 50) or None,
        file_name=sanitize_text(file.get("name"), 255) or "document",
        file_mime_type=sanitize_text(file.get("mimeType"), 100) or None,
        file_data=file["data"] if isinstance(file["data"], str) else "",
        project_id=_optional_id(payload, "projectId"),
        cost_code_id=_optional_id(payload, "costCodeId"),
        supplier_id=_optional_id(payload, "supplierId"),
        source=sanitize_text(payload.get("source"), 20) or "ocr",
        source_id=sanitize_text(payload.get("sourceId"), 100) or None,
    )


def _warnings_for(payload: dict, expense) -> list[str]:
    warnings = []
    if "low_confidence" in (expense.review_reasons or []):
        warnings.append(WARN_LOW_CONFIDENCE)
    if not payload.get("projectId"):
        warnings.append(WARN_PROJECT_AUTO_ASSIGNED)
    if not payload.get("costCodeId"):
        warnings.append(WARN_COST_CODE_AUTO_SUGGESTED)
    return warnings


def ingest_ocr_expense(payload) -> results.Result:
    """Validate, normalize and store one OCR expense.

    Returns:
        Ok(OCRIngestionResult) on success,
        ValidationFailure when request or store-level validation fails,
        results.StoreFailure when the store raised anything else.
    """
    errors = validate_ocr_request(payload)
    if errors:
        logger.info("OCR request rejected: %s", ", ".join(e.field for e in errors))
        return ValidationFailure(errors)

    try:
        expense = expense_service.create_expense_from_ocr(build_ocr_input(payload))
    except ValidationError as exc:
        db.session.rollback()
        return ValidationFailure(
            [FieldError(e["field"], e["message"]) for e in exc.errors] or [FieldError("body", str(exc))],
        )
    except Exception as exc:
        db.session.rollback()
        logger.exception("Error creating OCR expense")
        return results.StoreFailure(
            message=str(exc) or "Failed to create expense",
            error_type=type(exc).__name__,
        )
    return Ok(OCRIngestionResult(expense=expense, warnings=_warnings_for(payload, expense)))


def verify_webhook_signature(payload: bytes | str, signature: str | None, secret: str | None) -> bool:
    """Check an HMAC-SHA256 hex signature of the raw request body.

    Accepts an optional ``sha256=`` prefix.  An empty secret or signature
    never verifies.
    """
    if not secret or not signature:
        return False
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    if signature.startswith("sha256="):
        signature = signature[len("sha256="):]
    expected = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.strip().lower())
