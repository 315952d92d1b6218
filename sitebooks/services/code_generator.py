"""
Sequential document number generator.

Generates human-readable numbers for:
  - Expenses (manual):       EXP-{seq}   (e.g. EXP-00001)
  - Expenses (OCR intake):   AUTO-{seq}  (e.g. AUTO-00042)
  - Progress certificates:   {contract}-PC-{seq}  (e.g. SC-2026-001-PC-03)
  - Holdbacks:               HB-{seq}    (e.g. HB-0007)

Numbers are unique per table. The sequence is count-based with a retry
loop over the unique column, so gaps left by deletions never collide.
"""

from sqlalchemy import func

from sitebooks.models import db

_MAX_ATTEMPTS = 50


def _next_code(model, column, prefix: str, width: int, scope=None) -> str:
    query = db.session.query(func.count(model.id))
    if scope is not None:
        query = query.filter(scope)
    seq = (query.scalar() or 0) + 1

    for _ in range(_MAX_ATTEMPTS):
        code = f"{prefix}{seq:0{width}d}"
        exists = db.session.query(model.id).filter(column == code).first()
        if not exists:
            return code
        seq += 1
    raise RuntimeError(f"Could not allocate a unique code with prefix {prefix!r}")


def generate_expense_number(auto: bool = False) -> str:
    from sitebooks.models.expense import Expense

    prefix = "AUTO-" if auto else "EXP-"
    return _next_code(Expense, Expense.expense_number, prefix, 5,
                      scope=Expense.expense_number.like(f"{prefix}%"))


def generate_certificate_number(subcontract) -> str:
    from sitebooks.models.progress_certificate import ProgressCertificate

    return _next_code(
        ProgressCertificate,
        ProgressCertificate.certificate_number,
        f"{subcontract.contract_number}-PC-",
        2,
        scope=ProgressCertificate.subcontract_id == subcontract.id,
    )


def generate_holdback_number() -> str:
    from sitebooks.models.holdback import Holdback

    return _next_code(Holdback, Holdback.holdback_number, "HB-", 4)
