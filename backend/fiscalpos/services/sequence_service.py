# Overview: Per-branch document numbering (sale numbers, invoice and credit note numbers).

from __future__ import annotations

from datetime import date

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def next_sequence_value(*, branch_id: int, sequence_key: str) -> int:
    """
    Atomically allocate the next number of a (branch, key) series.

    Must run inside the caller's transaction; the increment commits or rolls
    back with it. Gaps are possible when the caller rolls back, duplicates
    are not.
    """
    if not branch_id:
        raise DocumentSequenceError("branch_id is required")
    if not sequence_key:
        raise DocumentSequenceError("sequence_key is required")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.branch_id == branch_id,
            DocumentSequence.sequence_key == sequence_key,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        try:
            # Savepoint so a lost insert race does not poison the outer transaction
            with db.session.begin_nested():
                db.session.add(DocumentSequence(branch_id=branch_id, sequence_key=sequence_key, next_number=2))
            return 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise

    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(branch_id=branch_id, sequence_key=sequence_key)
        .scalar()
    )
    return current - 1


def next_sale_number(*, branch_id: int, branch_code: str, business_day: date) -> str:
    """{YYYYMMDD}{branch code}{4-digit daily sequence}, e.g. 20250115CEN0007."""
    seq = next_sequence_value(branch_id=branch_id, sequence_key=f"SALE:{business_day:%Y%m%d}")
    return f"{business_day:%Y%m%d}{branch_code}{seq:04d}"


def next_invoice_number(*, branch_id: int, invoice_type: str) -> int:
    return next_sequence_value(branch_id=branch_id, sequence_key=f"INVOICE:{invoice_type}")


def next_credit_note_number(*, branch_id: int, credit_note_type: str) -> int:
    return next_sequence_value(branch_id=branch_id, sequence_key=f"CREDIT_NOTE:{credit_note_type}")
