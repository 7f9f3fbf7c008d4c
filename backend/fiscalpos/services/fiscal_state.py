# Overview: Status transitions shared by invoices and credit notes.

"""
Fiscal document state machine.

    PENDING --success--------------------------> ISSUED
    PENDING --retryable failure, retries left--> PENDING (retry_count += 1)
    PENDING --non-retryable / retries exhausted-> FAILED  (retry_count += 1)
    PENDING|ISSUED --sale voided---------------> CANCELLED

Every failed attempt increments retry_count and stamps last_retry_at, so a
PENDING document never carries retry_count >= max_retries.

A result arriving for a document that was cancelled while the call was in
flight is recorded (CAE kept) but does not move it out of CANCELLED.

SUBMISSION CLAIM:
Before a document is sent to the gateway the caller claims it with a
conditional UPDATE on submission_claimed_at. Only the caller whose UPDATE
matched one row may submit; the claim is cleared when the result is applied.
A claim older than the stale timeout (crashed worker) can be taken over.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import or_

from ..extensions import db
from .fiscal_gateway import GatewayResult


STATUS_PENDING = "PENDING"
STATUS_ISSUED = "ISSUED"
STATUS_FAILED = "FAILED"
STATUS_CANCELLED = "CANCELLED"

FISCAL_STATUSES = (STATUS_PENDING, STATUS_ISSUED, STATUS_FAILED, STATUS_CANCELLED)


class ConflictingIssueError(Exception):
    """The gateway issued a second CAE for a document that already has one."""

    def __init__(self, existing_cae: str, new_cae: str | None):
        super().__init__(f"Document already issued with CAE {existing_cae}; gateway returned CAE {new_cae}")
        self.existing_cae = existing_cae
        self.new_cae = new_cae


def is_retry_eligible(document, max_retries: int) -> bool:
    return document.status == STATUS_PENDING and document.retry_count < max_retries


def submission_available(model, *, now: datetime, stale_after: float):
    """Filter clause: rows with no claim, or only a stale one."""
    stale_before = now - timedelta(seconds=stale_after)
    return or_(model.submission_claimed_at.is_(None), model.submission_claimed_at < stale_before)


def is_submission_in_flight(document, *, now: datetime, stale_after: float) -> bool:
    claimed_at = document.submission_claimed_at
    if claimed_at is not None and claimed_at.tzinfo is not None:
        claimed_at = claimed_at.astimezone(timezone.utc).replace(tzinfo=None)
    return claimed_at is not None and claimed_at >= now - timedelta(seconds=stale_after)


def claim_submission(model, document_id: int, *, max_retries: int, now: datetime, stale_after: float) -> bool:
    """
    Take the right to send one document to the gateway.

    Conditional UPDATE committed on its own; True only for the caller whose
    statement matched the row.
    """
    claimed = (
        db.session.query(model)
        .filter(
            model.id == document_id,
            model.status == STATUS_PENDING,
            model.retry_count < max_retries,
            submission_available(model, now=now, stale_after=stale_after),
        )
        .update({model.submission_claimed_at: now}, synchronize_session=False)
    )
    db.session.commit()
    return claimed == 1


def release_submission(model, document_id: int) -> None:
    """Drop a claim without recording an attempt (the call never produced a result)."""
    db.session.query(model).filter(model.id == document_id).update(
        {model.submission_claimed_at: None}, synchronize_session=False
    )
    db.session.commit()


def apply_gateway_result(document, result: GatewayResult, *, max_retries: int, now: datetime) -> str:
    """
    Fold one gateway attempt into an Invoice or CreditNote; returns the new status.

    Raises ConflictingIssueError (after releasing the claim) when a success
    carries a different CAE than the one already recorded; the recorded CAE
    is never replaced.
    """
    document.submission_claimed_at = None

    if result.success and document.cae and result.cae != document.cae:
        raise ConflictingIssueError(document.cae, result.cae)
    if not result.success and document.status == STATUS_ISSUED:
        # Late failure from a superseded attempt; the issued voucher stands
        return document.status

    document.gateway_response = result.raw_response

    if result.success:
        document.cae = result.cae
        document.cae_expiration = result.cae_expiration
        document.gateway_id = result.gateway_id
        document.issued_at = now
        document.error_message = None
        if document.status != STATUS_CANCELLED:
            document.status = STATUS_ISSUED
        return document.status

    document.retry_count = (document.retry_count or 0) + 1
    document.last_retry_at = now
    document.error_message = result.error

    if document.status == STATUS_CANCELLED:
        return document.status

    if result.retryable and document.retry_count < max_retries:
        document.status = STATUS_PENDING
    else:
        document.status = STATUS_FAILED
    return document.status


def cancel(document) -> bool:
    """
    Mark PENDING or ISSUED as CANCELLED. Returns True when the document
    had been ISSUED (and therefore needs a credit note). FAILED and already
    CANCELLED documents are left as they are.
    """
    if document.status == STATUS_ISSUED:
        document.status = STATUS_CANCELLED
        return True
    if document.status == STATUS_PENDING:
        document.status = STATUS_CANCELLED
    return False
