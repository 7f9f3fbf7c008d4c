# Overview: Fiscal invoice generation, submission and retry.

"""
Fiscal Invoice Service

FLOW (per sale, after the sale has committed):
1. Duplicate guard: an existing invoice for the sale is returned as-is.
   The UNIQUE(sale_id) constraint backs the check; losing the insert race
   (IntegrityError) is treated the same way.
2. A PENDING invoice is committed with its number and a customer snapshot.
3. The invoice is claimed for submission; only the claimer calls the
   gateway, outside any DB transaction.
4. The outcome is applied in a second short transaction (see fiscal_state).
   A second CAE for an already issued invoice is never recorded; it is
   logged and raised as a HIGH alert.
5. Alerts / notifications / late-issue credit notes run after that commit.

Invoice type: explicit override, else derived from branch and customer tax
conditions. Type A requires complete customer fiscal data; incomplete data is
rejected before any row is written or any call is made.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Branch, Customer, Invoice, Sale
from ..validation import (
    BusinessRuleError,
    NotFoundError,
    ValidationError,
    is_valid_tax_id,
    normalize_tax_id,
    optional_str,
)
from fiscalpos.time_utils import business_date, utcnow
from . import fiscal_state
from .alert_service import ALERT_FAILED_INVOICE, SEVERITY_HIGH, SEVERITY_MEDIUM, raise_alert
from .background import get_dispatcher
from .concurrency import lock_for_update, run_with_retry
from .fiscal_gateway import ExternalGatewayError, GatewayResult, get_gateway
from .ledger_service import append_audit_event
from .notifier import get_notifier
from .pricing import tax_by_rate
from .sequence_service import next_invoice_number


INVOICE_TYPES = ("A", "B", "C")

TAX_CONDITION_RI = "RESPONSABLE_INSCRIPTO"
TAX_CONDITION_MONOTRIBUTO = "MONOTRIBUTO"
TAX_CONDITION_FINAL = "CONSUMIDOR_FINAL"
TAX_CONDITIONS = (TAX_CONDITION_RI, TAX_CONDITION_MONOTRIBUTO, TAX_CONDITION_FINAL, "EXENTO")


# =============================================================================
# TYPE DETERMINATION / CUSTOMER SNAPSHOT
# =============================================================================

def determine_invoice_type(seller_tax_condition: str | None, customer_tax_condition: str | None,
                           customer_tax_id: str | None) -> str:
    """
    MONOTRIBUTO seller -> C.
    RESPONSABLE_INSCRIPTO seller -> A for an RI customer with a tax id, B otherwise.
    Anything else -> B.
    """
    if seller_tax_condition == TAX_CONDITION_MONOTRIBUTO:
        return "C"
    if seller_tax_condition == TAX_CONDITION_RI:
        if customer_tax_condition == TAX_CONDITION_RI and customer_tax_id:
            return "A"
        return "B"
    return "B"


def resolve_fiscal_customer(branch: Branch, customer: Customer | None, override: dict | None) -> dict:
    """
    Build the invoice type and customer snapshot for a sale.

    Raises:
        ValidationError: unknown invoice type or tax condition in the override
        BusinessRuleError: INVALID_TAX_ID, INVOICE_A_DATA_REQUIRED
    """
    override = override or {}
    if not isinstance(override, dict):
        raise ValidationError("invoice_override must be an object")

    snapshot = {
        "name": customer.display_name if customer else "Consumidor Final",
        "document_type": customer.document_type if customer else "DNI",
        "document_number": customer.document_number if customer else None,
        "tax_condition": customer.tax_condition if customer else TAX_CONDITION_FINAL,
        "tax_id": customer.tax_id if customer else None,
        "address": customer.address if customer else None,
    }

    raw_tax_id = override.get("customer_tax_id")
    if raw_tax_id:
        tax_id = normalize_tax_id(str(raw_tax_id))
        if not is_valid_tax_id(tax_id):
            raise BusinessRuleError(
                "INVALID_TAX_ID",
                "Tax id (CUIT) must contain 11 digits (format XX-XXXXXXXX-X)",
                details={"customer_tax_id": raw_tax_id},
            )
        snapshot["tax_id"] = tax_id
        snapshot["document_type"] = "CUIT"
        snapshot["document_number"] = tax_id

    tax_condition = optional_str(override.get("customer_tax_condition"), "customer_tax_condition", max_length=32)
    if tax_condition:
        if tax_condition not in TAX_CONDITIONS:
            raise ValidationError(f"customer_tax_condition must be one of {', '.join(TAX_CONDITIONS)}")
        snapshot["tax_condition"] = tax_condition

    for field in ("name", "address"):
        value = optional_str(override.get(f"customer_{field}"), f"customer_{field}")
        if value:
            snapshot[field] = value

    invoice_type = override.get("invoice_type")
    if invoice_type:
        invoice_type = str(invoice_type).upper()
        if invoice_type not in INVOICE_TYPES:
            raise ValidationError("invoice_type must be one of A, B, C")
    else:
        invoice_type = determine_invoice_type(branch.tax_condition, snapshot["tax_condition"], snapshot["tax_id"])

    if invoice_type == "A":
        missing = []
        if not is_valid_tax_id(snapshot["tax_id"]):
            missing.append("customer_tax_id")
        if not snapshot["tax_condition"] or snapshot["tax_condition"] == TAX_CONDITION_FINAL:
            missing.append("customer_tax_condition")
        if not snapshot["address"]:
            missing.append("customer_address")
        if not snapshot["name"] or snapshot["name"] == "Consumidor Final":
            missing.append("customer_name")
        if missing:
            raise BusinessRuleError(
                "INVOICE_A_DATA_REQUIRED",
                "Invoice type A requires complete customer fiscal data",
                details={"missing": missing},
            )

    snapshot["invoice_type"] = invoice_type
    return snapshot


# =============================================================================
# PAYLOAD
# =============================================================================

def build_invoice_payload(invoice: Invoice) -> dict:
    """Gateway-neutral payload for an invoice (see fiscal_gateway.format_wire_payload)."""
    sale = invoice.sale
    branch = invoice.branch
    tz_name = current_app.config["BUSINESS_TIMEZONE"]

    return {
        "voucher_type": invoice.invoice_type,
        "point_of_sale": invoice.point_of_sale,
        "number": invoice.invoice_number,
        "issue_date": business_date(tz_name, invoice.created_at).isoformat(),
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
            "net_cents": invoice.net_cents,
            "tax_cents": invoice.tax_cents,
            "total_cents": invoice.total_cents,
            "discount_cents": sale.subtotal_cents - sale.total_cents,
            "tax_by_rate": tax_by_rate(sale.items, numerator=sale.total_cents, denominator=sale.subtotal_cents),
        },
    }


# =============================================================================
# GENERATION
# =============================================================================

def _create_pending_invoice(sale_id: int) -> tuple[Invoice | None, bool]:
    def _op():
        existing = db.session.query(Invoice).filter_by(sale_id=sale_id).first()
        if existing:
            return existing, False

        sale = db.session.query(Sale).filter_by(id=sale_id).first()
        if not sale:
            raise NotFoundError(f"Sale {sale_id} not found")
        if sale.status == "VOIDED":
            current_app.logger.info("Sale %s voided before invoicing; no invoice generated", sale.sale_number)
            return None, False

        branch = sale.branch
        snapshot = resolve_fiscal_customer(branch, sale.customer, sale.invoice_override)
        invoice_type = snapshot["invoice_type"]

        invoice = Invoice(
            sale_id=sale.id,
            branch_id=sale.branch_id,
            invoice_type=invoice_type,
            point_of_sale=branch.point_of_sale,
            invoice_number=next_invoice_number(branch_id=branch.id, invoice_type=invoice_type),
            customer_name=snapshot["name"],
            customer_document_type=snapshot["document_type"],
            customer_document_number=snapshot["document_number"],
            customer_tax_condition=snapshot["tax_condition"],
            customer_tax_id=snapshot["tax_id"],
            customer_address=snapshot["address"],
            net_cents=sale.total_cents - sale.tax_cents,
            tax_cents=sale.tax_cents,
            total_cents=sale.total_cents,
            status=fiscal_state.STATUS_PENDING,
            retry_count=0,
        )
        db.session.add(invoice)
        db.session.flush()

        append_audit_event(
            branch_id=sale.branch_id,
            event_type="invoice.created",
            event_category="fiscal",
            entity_type="invoice",
            entity_id=invoice.id,
            sale_id=sale.id,
            occurred_at=utcnow(),
            note=f"Invoice {invoice_type} {invoice.formatted_number} for sale {sale.sale_number}",
        )

        db.session.commit()
        current_app.logger.info(
            "Invoice %s created for sale %s (type %s, PENDING)", invoice.id, sale.sale_number, invoice_type
        )
        return invoice, True

    try:
        return run_with_retry(_op)
    except IntegrityError:
        existing = db.session.query(Invoice).filter_by(sale_id=sale_id).first()
        if existing is None:
            raise
        current_app.logger.warning(
            "Invoice for sale %s created concurrently (invoice %s); skipping", sale_id, existing.id
        )
        return existing, False


def generate_invoice_for_sale(sale_id: int) -> Invoice | None:
    """
    Create (if needed) and submit the invoice for a sale.

    Idempotent: a sale that already has an invoice gets it back untouched.
    """
    invoice, created = _create_pending_invoice(sale_id)
    if invoice is None:
        return None
    if not created:
        current_app.logger.warning(
            "Invoice already exists for sale %s (invoice %s, %s); skipping generation",
            sale_id, invoice.id, invoice.status,
        )
        return invoice
    return submit_invoice(invoice.id)


# =============================================================================
# SUBMISSION / RETRY
# =============================================================================

def submit_invoice(invoice_id: int) -> Invoice:
    """
    One gateway attempt for a PENDING invoice with retries left; anything
    else is returned unchanged.
    """
    config = current_app.config
    max_retries = config["INVOICE_MAX_RETRIES"]
    stale_after = config["FISCAL_SUBMISSION_CLAIM_TIMEOUT_SECONDS"]

    invoice = db.session.query(Invoice).filter_by(id=invoice_id).first()
    if not invoice:
        raise NotFoundError(f"Invoice {invoice_id} not found")
    if not fiscal_state.is_retry_eligible(invoice, max_retries):
        return invoice

    claimed = run_with_retry(lambda: fiscal_state.claim_submission(
        Invoice, invoice_id, max_retries=max_retries, now=utcnow(), stale_after=stale_after,
    ))
    if not claimed:
        current_app.logger.info("Invoice %s is already being submitted; skipping", invoice_id)
        return db.session.query(Invoice).filter_by(id=invoice_id).one()

    try:
        payload = build_invoice_payload(db.session.query(Invoice).filter_by(id=invoice_id).one())
        # Release the read transaction before the network call
        db.session.commit()
        result = get_gateway().submit_invoice(payload)
    except ExternalGatewayError as exc:
        result = GatewayResult.from_error(exc)
    except Exception:
        db.session.rollback()
        fiscal_state.release_submission(Invoice, invoice_id)
        raise

    def _op():
        locked = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).one()
        previous = locked.status
        conflict = None
        try:
            status = fiscal_state.apply_gateway_result(locked, result, max_retries=max_retries, now=utcnow())
        except fiscal_state.ConflictingIssueError as exc:
            conflict = exc
            status = locked.status

        if conflict is not None:
            event_type = "invoice.duplicate_issue"
        elif result.success:
            event_type = "invoice.issued"
        else:
            event_type = "invoice.attempt_failed"
        append_audit_event(
            branch_id=locked.branch_id,
            event_type=event_type,
            event_category="fiscal",
            entity_type="invoice",
            entity_id=locked.id,
            sale_id=locked.sale_id,
            occurred_at=utcnow(),
            note=result.error if not result.success else f"CAE {result.cae}",
            payload={"from": previous, "to": status, "retry_count": locked.retry_count, "retryable": result.retryable},
        )
        db.session.commit()
        return locked, previous, conflict

    invoice, previous, conflict = run_with_retry(_op)
    if conflict is not None:
        _report_conflicting_issue(invoice, conflict)
        return invoice
    _after_attempt(invoice, previous, result)
    return invoice


def _report_conflicting_issue(invoice: Invoice, conflict: fiscal_state.ConflictingIssueError) -> None:
    current_app.logger.error(
        "Invoice %s issued twice by the gateway: kept CAE %s, received CAE %s",
        invoice.id, conflict.existing_cae, conflict.new_cae,
    )
    raise_alert(
        alert_type=ALERT_FAILED_INVOICE,
        severity=SEVERITY_HIGH,
        branch_id=invoice.branch_id,
        user_id=invoice.sale.created_by_user_id,
        reference_type="INVOICE",
        reference_id=invoice.id,
        title=f"Factura {invoice.formatted_number} emitida dos veces",
        message=(
            f"El gateway devolvió el CAE {conflict.new_cae} para una factura ya emitida "
            f"con CAE {conflict.existing_cae}. Requiere anulación manual del comprobante duplicado."
        ),
    )


def _after_attempt(invoice: Invoice, previous: str, result: GatewayResult) -> None:
    logger = current_app.logger
    sale = invoice.sale

    if result.success:
        if invoice.status == fiscal_state.STATUS_CANCELLED:
            # Voided while the call was in flight: the voucher exists fiscally and must be compensated
            logger.warning(
                "Invoice %s issued by gateway after local cancellation (CAE %s); generating credit note",
                invoice.id, invoice.cae,
            )
            from .credit_note_service import dispatch_credit_note
            dispatch_credit_note(invoice.id, reason=sale.void_reason, user_id=sale.voided_by_user_id)
            return

        logger.info("Invoice %s issued - CAE %s", invoice.id, invoice.cae)
        get_notifier().publish_branch(invoice.branch_id, {
            "type": "INVOICE_ISSUED",
            "invoice_id": invoice.id,
            "sale_id": invoice.sale_id,
            "cae": invoice.cae,
        })
        return

    if invoice.status == fiscal_state.STATUS_PENDING:
        logger.warning(
            "Invoice %s failed (attempt %s, retryable): %s", invoice.id, invoice.retry_count, result.error
        )
        if invoice.retry_count == 1:
            raise_alert(
                alert_type=ALERT_FAILED_INVOICE,
                severity=SEVERITY_MEDIUM,
                branch_id=invoice.branch_id,
                user_id=sale.created_by_user_id,
                reference_type="INVOICE",
                reference_id=invoice.id,
                title=f"Factura {invoice.formatted_number} pendiente de reintento",
                message=f"Error al generar factura para la venta {sale.sale_number}: {result.error}",
            )
    elif invoice.status == fiscal_state.STATUS_FAILED:
        logger.error(
            "Invoice %s FAILED after %s attempt(s): %s", invoice.id, invoice.retry_count, result.error
        )
        raise_alert(
            alert_type=ALERT_FAILED_INVOICE,
            severity=SEVERITY_HIGH,
            branch_id=invoice.branch_id,
            user_id=sale.created_by_user_id,
            reference_type="INVOICE",
            reference_id=invoice.id,
            title=f"Factura {invoice.formatted_number} FALLÓ",
            message=f"Error al generar factura para la venta {sale.sale_number}: {result.error}. Requiere intervención manual.",
        )


def retry_invoice(invoice_id: int) -> Invoice:
    """Manual retry; only PENDING invoices with retries left qualify."""
    invoice = db.session.query(Invoice).filter_by(id=invoice_id).first()
    if not invoice:
        raise NotFoundError(f"Invoice {invoice_id} not found")
    config = current_app.config
    if not fiscal_state.is_retry_eligible(invoice, config["INVOICE_MAX_RETRIES"]):
        raise BusinessRuleError(
            "INVOICE_NOT_RETRYABLE",
            f"Invoice in status {invoice.status} cannot be retried",
            details={"status": invoice.status, "retry_count": invoice.retry_count},
        )
    if fiscal_state.is_submission_in_flight(
        invoice, now=utcnow(), stale_after=config["FISCAL_SUBMISSION_CLAIM_TIMEOUT_SECONDS"]
    ):
        raise BusinessRuleError(
            "INVOICE_SUBMISSION_IN_PROGRESS",
            "Invoice is being sent to the fiscal gateway",
            details={"status": invoice.status, "retry_count": invoice.retry_count},
        )
    return submit_invoice(invoice_id)


def list_retryable_invoices(limit: int) -> list[Invoice]:
    """PENDING invoices with retries left and no live submission claim, oldest first."""
    config = current_app.config
    return (
        db.session.query(Invoice)
        .filter(
            Invoice.status == fiscal_state.STATUS_PENDING,
            Invoice.retry_count < config["INVOICE_MAX_RETRIES"],
            fiscal_state.submission_available(
                Invoice, now=utcnow(), stale_after=config["FISCAL_SUBMISSION_CLAIM_TIMEOUT_SECONDS"]
            ),
        )
        .order_by(Invoice.created_at.asc(), Invoice.id.asc())
        .limit(limit)
        .all()
    )


def dispatch_invoice_generation(sale_id: int, *, sale_number: str, branch_id: int, user_id: int | None) -> None:
    """Hand invoice generation to the background dispatcher with a FAILED_INVOICE alert boundary."""

    def _on_error(exc: Exception) -> None:
        raise_alert(
            alert_type=ALERT_FAILED_INVOICE,
            severity=SEVERITY_HIGH,
            branch_id=branch_id,
            user_id=user_id,
            reference_type="SALE",
            reference_id=sale_id,
            title=f"Error al generar factura de la venta {sale_number}",
            message=f"No se pudo generar la factura para la venta {sale_number}. Error: {exc}",
        )

    get_dispatcher().submit(f"invoice:sale:{sale_id}", generate_invoice_for_sale, sale_id, on_error=_on_error)
