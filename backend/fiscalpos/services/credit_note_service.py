# Overview: Credit notes compensating ISSUED invoices of voided sales.

"""
Credit Note Service

Mirrors the invoice flow: duplicate guard on original_invoice_id (pre-check
plus unique constraint), PENDING row committed first, submission claimed so
only one caller reaches the gateway, call made outside any transaction,
outcome applied through fiscal_state.

Every failed attempt raises a HIGH alert: a voided sale whose invoice is
still fiscally valid needs an operator.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import CreditNote, Invoice
from ..validation import BusinessRuleError, NotFoundError
from fiscalpos.time_utils import business_date, utcnow
from . import fiscal_state
from .alert_service import ALERT_FAILED_CREDIT_NOTE, SEVERITY_HIGH, raise_alert
from .background import get_dispatcher
from .concurrency import lock_for_update, run_with_retry
from .fiscal_gateway import ExternalGatewayError, GatewayResult, get_gateway
from .ledger_service import append_audit_event
from .notifier import get_notifier
from .pricing import tax_by_rate
from .sequence_service import next_credit_note_number


def build_credit_note_payload(credit_note: CreditNote) -> dict:
    invoice = credit_note.original_invoice
    sale = invoice.sale
    branch = credit_note.branch
    tz_name = current_app.config["BUSINESS_TIMEZONE"]

    return {
        "voucher_type": f"NC_{credit_note.credit_note_type}",
        "point_of_sale": credit_note.point_of_sale,
        "number": credit_note.credit_note_number,
        "issue_date": business_date(tz_name, credit_note.created_at).isoformat(),
        "seller": {
            "tax_id": branch.tax_id,
            "tax_condition": branch.tax_condition,
        },
        "customer": {
            "name": invoice.customer_name,
            "document_type": invoice.customer_document_type,
            "document_number": invoice.customer_document_number,
            "tax_condition": invoice.customer_tax_condition,
            "tax_id": invoice.customer_tax_id,
            "address": invoice.customer_address,
        },
        "items": [
            {
                "description": item.product_name,
                "quantity": item.quantity,
                "unit_price_cents": item.unit_price_cents,
                "tax_rate_bps": item.tax_rate_bps,
                "total_cents": item.line_total_cents,
            }
            for item in sale.items
        ],
        "totals": {
            "net_cents": credit_note.net_cents,
            "tax_cents": credit_note.tax_cents,
            "total_cents": credit_note.total_cents,
            "discount_cents": sale.subtotal_cents - sale.total_cents,
            "tax_by_rate": tax_by_rate(sale.items, numerator=sale.total_cents, denominator=sale.subtotal_cents),
        },
        "original_invoice": {
            "voucher_type": invoice.invoice_type,
            "point_of_sale": invoice.point_of_sale,
            "number": invoice.invoice_number,
            "cae": invoice.cae,
        },
        "reason": credit_note.reason,
    }


def _create_pending_credit_note(invoice_id: int, reason: str | None, user_id: int | None) -> tuple[CreditNote | None, bool]:
    def _op():
        existing = db.session.query(CreditNote).filter_by(original_invoice_id=invoice_id).first()
        if existing:
            return existing, False

        invoice = db.session.query(Invoice).filter_by(id=invoice_id).first()
        if not invoice:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        if not invoice.cae:
            # Never issued fiscally: nothing to compensate
            current_app.logger.info("Invoice %s has no CAE; credit note not required", invoice.id)
            return None, False

        credit_note = CreditNote(
            original_invoice_id=invoice.id,
            sale_id=invoice.sale_id,
            branch_id=invoice.branch_id,
            credit_note_type=invoice.invoice_type,
            point_of_sale=invoice.point_of_sale,
            credit_note_number=next_credit_note_number(
                branch_id=invoice.branch_id, credit_note_type=invoice.invoice_type
            ),
            reason=(reason or "Anulación de venta")[:255],
            net_cents=invoice.net_cents,
            tax_cents=invoice.tax_cents,
            total_cents=invoice.total_cents,
            status=fiscal_state.STATUS_PENDING,
            retry_count=0,
            created_by_user_id=user_id,
        )
        db.session.add(credit_note)
        db.session.flush()

        append_audit_event(
            branch_id=invoice.branch_id,
            event_type="credit_note.created",
            event_category="fiscal",
            entity_type="credit_note",
            entity_id=credit_note.id,
            actor_user_id=user_id,
            sale_id=invoice.sale_id,
            occurred_at=utcnow(),
            note=f"Credit note for invoice {invoice.formatted_number}",
        )
        db.session.commit()
        current_app.logger.info("Credit note %s created for invoice %s (PENDING)", credit_note.id, invoice.id)
        return credit_note, True

    try:
        return run_with_retry(_op)
    except IntegrityError:
        existing = db.session.query(CreditNote).filter_by(original_invoice_id=invoice_id).first()
        if existing is None:
            raise
        current_app.logger.warning(
            "Credit note for invoice %s created concurrently (credit note %s); skipping", invoice_id, existing.id
        )
        return existing, False


def generate_credit_note_for_invoice(invoice_id: int, *, reason: str | None = None, user_id: int | None = None) -> CreditNote | None:
    credit_note, created = _create_pending_credit_note(invoice_id, reason, user_id)
    if credit_note is None:
        return None
    if not created:
        current_app.logger.warning(
            "Credit note already exists for invoice %s (credit note %s, %s); skipping",
            invoice_id, credit_note.id, credit_note.status,
        )
        return credit_note
    return submit_credit_note(credit_note.id)


def submit_credit_note(credit_note_id: int) -> CreditNote:
    config = current_app.config
    max_retries = config["INVOICE_MAX_RETRIES"]
    stale_after = config["FISCAL_SUBMISSION_CLAIM_TIMEOUT_SECONDS"]

    credit_note = db.session.query(CreditNote).filter_by(id=credit_note_id).first()
    if not credit_note:
        raise NotFoundError(f"Credit note {credit_note_id} not found")
    if not fiscal_state.is_retry_eligible(credit_note, max_retries):
        return credit_note

    claimed = run_with_retry(lambda: fiscal_state.claim_submission(
        CreditNote, credit_note_id, max_retries=max_retries, now=utcnow(), stale_after=stale_after,
    ))
    if not claimed:
        current_app.logger.info("Credit note %s is already being submitted; skipping", credit_note_id)
        return db.session.query(CreditNote).filter_by(id=credit_note_id).one()

    try:
        payload = build_credit_note_payload(db.session.query(CreditNote).filter_by(id=credit_note_id).one())
        # Release the read transaction before the network call
        db.session.commit()
        result = get_gateway().submit_credit_note(payload)
    except ExternalGatewayError as exc:
        result = GatewayResult.from_error(exc)
    except Exception:
        db.session.rollback()
        fiscal_state.release_submission(CreditNote, credit_note_id)
        raise

    def _op():
        locked = lock_for_update(db.session.query(CreditNote).filter_by(id=credit_note_id)).one()
        previous = locked.status
        conflict = None
        try:
            status = fiscal_state.apply_gateway_result(locked, result, max_retries=max_retries, now=utcnow())
        except fiscal_state.ConflictingIssueError as exc:
            conflict = exc
            status = locked.status

        if conflict is not None:
            event_type = "credit_note.duplicate_issue"
        elif result.success:
            event_type = "credit_note.issued"
        else:
            event_type = "credit_note.attempt_failed"
        append_audit_event(
            branch_id=locked.branch_id,
            event_type=event_type,
            event_category="fiscal",
            entity_type="credit_note",
            entity_id=locked.id,
            sale_id=locked.sale_id,
            occurred_at=utcnow(),
            note=result.error if not result.success else f"CAE {result.cae}",
            payload={"from": previous, "to": status, "retry_count": locked.retry_count, "retryable": result.retryable},
        )
        db.session.commit()
        return locked, conflict

    credit_note, conflict = run_with_retry(_op)

    if conflict is not None:
        current_app.logger.error(
            "Credit note %s issued twice by the gateway: kept CAE %s, received CAE %s",
            credit_note.id, conflict.existing_cae, conflict.new_cae,
        )
        raise_alert(
            alert_type=ALERT_FAILED_CREDIT_NOTE,
            severity=SEVERITY_HIGH,
            branch_id=credit_note.branch_id,
            user_id=credit_note.created_by_user_id,
            reference_type="CREDIT_NOTE",
            reference_id=credit_note.id,
            title=f"Nota de crédito {credit_note.formatted_number} emitida dos veces",
            message=(
                f"El gateway devolvió el CAE {conflict.new_cae} para una nota de crédito ya emitida "
                f"con CAE {conflict.existing_cae}. Requiere anulación manual del comprobante duplicado."
            ),
        )
    elif result.success:
        current_app.logger.info("Credit note %s issued - CAE %s", credit_note.id, credit_note.cae)
        get_notifier().publish_branch(credit_note.branch_id, {
            "type": "CREDIT_NOTE_ISSUED",
            "credit_note_id": credit_note.id,
            "invoice_id": credit_note.original_invoice_id,
            "sale_id": credit_note.sale_id,
            "cae": credit_note.cae,
        })
    else:
        current_app.logger.error(
            "Credit note %s failed (attempt %s, status %s): %s",
            credit_note.id, credit_note.retry_count, credit_note.status, result.error,
        )
        raise_alert(
            alert_type=ALERT_FAILED_CREDIT_NOTE,
            severity=SEVERITY_HIGH,
            branch_id=credit_note.branch_id,
            user_id=credit_note.created_by_user_id,
            reference_type="CREDIT_NOTE",
            reference_id=credit_note.id,
            title=f"Nota de crédito {credit_note.formatted_number} con error",
            message=f"Error al generar nota de crédito para la factura {credit_note.original_invoice_id}: {result.error}",
        )
    return credit_note


def retry_credit_note(credit_note_id: int) -> CreditNote:
    credit_note = db.session.query(CreditNote).filter_by(id=credit_note_id).first()
    if not credit_note:
        raise NotFoundError(f"Credit note {credit_note_id} not found")
    config = current_app.config
    if not fiscal_state.is_retry_eligible(credit_note, config["INVOICE_MAX_RETRIES"]):
        raise BusinessRuleError(
            "CREDIT_NOTE_NOT_RETRYABLE",
            f"Credit note in status {credit_note.status} cannot be retried",
            details={"status": credit_note.status, "retry_count": credit_note.retry_count},
        )
    if fiscal_state.is_submission_in_flight(
        credit_note, now=utcnow(), stale_after=config["FISCAL_SUBMISSION_CLAIM_TIMEOUT_SECONDS"]
    ):
        raise BusinessRuleError(
            "CREDIT_NOTE_SUBMISSION_IN_PROGRESS",
            "Credit note is being sent to the fiscal gateway",
            details={"status": credit_note.status, "retry_count": credit_note.retry_count},
        )
    return submit_credit_note(credit_note_id)


def list_retryable_credit_notes(limit: int) -> list[CreditNote]:
    config = current_app.config
    return (
        db.session.query(CreditNote)
        .filter(
            CreditNote.status == fiscal_state.STATUS_PENDING,
            CreditNote.retry_count < config["INVOICE_MAX_RETRIES"],
            fiscal_state.submission_available(
                CreditNote, now=utcnow(), stale_after=config["FISCAL_SUBMISSION_CLAIM_TIMEOUT_SECONDS"]
            ),
        )
        .order_by(CreditNote.created_at.asc(), CreditNote.id.asc())
        .limit(limit)
        .all()
    )


def dispatch_credit_note(invoice_id: int, *, reason: str | None, user_id: int | None) -> None:
    """Hand credit-note generation to the background dispatcher with a HIGH alert boundary."""

    def _on_error(exc: Exception) -> None:
        invoice = db.session.query(Invoice).filter_by(id=invoice_id).first()
        raise_alert(
            alert_type=ALERT_FAILED_CREDIT_NOTE,
            severity=SEVERITY_HIGH,
            branch_id=invoice.branch_id if invoice else None,
            user_id=user_id,
            reference_type="INVOICE",
            reference_id=invoice_id,
            title=f"Error al generar nota de crédito de la factura {invoice_id}",
            message=str(exc),
        )

    get_dispatcher().submit(
        f"credit_note:invoice:{invoice_id}",
        generate_credit_note_for_invoice,
        invoice_id,
        reason=reason,
        user_id=user_id,
        on_error=_on_error,
    )
