# Overview: Same-day sale void with full ledger reversal.

"""
Void & Reversal Engine

ELIGIBILITY (checked in this order, nothing written on rejection):
- SALE_ALREADY_VOIDED: sale status is VOIDED
- SESSION_CLOSED: the sale's register session was closed
- VOID_WINDOW_EXPIRED: session business date is not today's business date

AUTHORIZATION:
- Actor role with can_void_sale, or
- Supervisor PIN of an active user whose role can void

REVERSAL (one transaction, append-only):
- RETURN stock movement per line (original SALE movement untouched)
- ADJUST loyalty / credit entries netting the sale's effect
- Negated VOID- payment rows for every original tender
- Invoice: ISSUED or PENDING -> CANCELLED

AFTER COMMIT: SALE_VOIDED notification, HIGH alert, and a background credit
note when the invoice had been ISSUED.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..models import Customer, Invoice, Role, Sale, User
from ..validation import BusinessRuleError, NotFoundError, ValidationError
from fiscalpos.time_utils import business_date, utcnow
from . import fiscal_state
from .alert_service import ALERT_VOIDED_SALE, SEVERITY_HIGH, raise_alert
from .auth_service import find_user_by_pin
from .concurrency import lock_for_update, run_with_retry
from .credit_note_service import dispatch_credit_note
from .customer_ledger_service import post_credit, post_loyalty
from .inventory_service import record_movement
from .ledger_service import append_audit_event
from .notifier import get_notifier
from .payment_service import reverse_payment
from .sale_service import SALE_STATUS_VOIDED, verify_sale_totals


@dataclass
class _VoidOutcome:
    sale: Sale
    invoice_id: int | None
    needs_credit_note: bool


def check_void_eligibility(sale: Sale, today) -> None:
    """Raise the first failing eligibility rule for `sale` on business day `today`."""
    if sale.status == SALE_STATUS_VOIDED:
        raise BusinessRuleError(
            "SALE_ALREADY_VOIDED",
            f"Sale {sale.sale_number} is already voided",
            details={"sale_id": sale.id},
        )

    session = sale.session
    if session is not None and session.status == "CLOSED":
        raise BusinessRuleError(
            "SESSION_CLOSED",
            "Cannot void a sale from a closed register session",
            details={"sale_id": sale.id, "session_id": session.id},
        )

    sale_day = session.business_date if session is not None else None
    if sale_day != today:
        raise BusinessRuleError(
            "VOID_WINDOW_EXPIRED",
            "Only sales from the current business day can be voided",
            details={
                "sale_id": sale.id,
                "sale_business_date": sale_day.isoformat() if sale_day else None,
                "business_date": today.isoformat(),
            },
        )


def authorize_void(actor: User, supervisor_pin: str | None) -> int | None:
    """
    Returns the approving supervisor id, or None when the actor may void
    on their own.
    """
    if actor.role is not None and actor.role.can_void_sale:
        return None

    if not supervisor_pin:
        raise BusinessRuleError(
            "VOID_AUTHORIZATION_REQUIRED",
            "Supervisor PIN required to void this sale",
            details={"user_id": actor.id},
        )

    supervisor = find_user_by_pin(supervisor_pin, Role.can_void_sale.is_(True))
    if supervisor is None:
        raise BusinessRuleError("VOID_AUTHORIZATION_FAILED", "Supervisor PIN invalid or not allowed to void")
    return supervisor.id


def _reverse_customer_ledgers(sale: Sale, customer: Customer, actor_id: int) -> None:
    label = f"Anulación de venta {sale.sale_number}"

    # Restorations first so the balance never dips below zero mid-reversal
    if sale.points_redeemed:
        post_loyalty(customer, points=sale.points_redeemed, transaction_type="ADJUST",
                     sale_id=sale.id, user_id=actor_id, description=label)
    if sale.credit_used_cents:
        post_credit(customer, amount_cents=sale.credit_used_cents, transaction_type="ADJUST",
                    sale_id=sale.id, user_id=actor_id, description=label)
    if sale.points_earned:
        post_loyalty(customer, points=-sale.points_earned, transaction_type="ADJUST",
                     sale_id=sale.id, user_id=actor_id, description=label)
    if sale.change_as_credit_cents:
        post_credit(customer, amount_cents=-sale.change_as_credit_cents, transaction_type="ADJUST",
                    sale_id=sale.id, user_id=actor_id, description=label)


def _void_sale_locked(sale_id: int, actor: User, reason: str, supervisor_pin: str | None) -> _VoidOutcome:
    sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
    if not sale:
        raise NotFoundError(f"Sale {sale_id} not found")

    now = utcnow()
    check_void_eligibility(sale, business_date(current_app.config["BUSINESS_TIMEZONE"], now))
    approved_by = authorize_void(actor, supervisor_pin)
    verify_sale_totals(sale)

    sale.status = SALE_STATUS_VOIDED
    sale.void_reason = reason
    sale.voided_by_user_id = actor.id
    sale.void_approved_by_user_id = approved_by
    sale.voided_at = now

    for item in sale.items:
        record_movement(
            branch_id=sale.branch_id,
            product_id=item.product_id,
            movement_type="RETURN",
            quantity_delta=item.quantity,
            reference_type="SALE",
            reference_id=sale.id,
            user_id=actor.id,
            note=f"Anulación de venta {sale.sale_number}",
        )

    if sale.customer_id is not None:
        customer = lock_for_update(db.session.query(Customer).filter_by(id=sale.customer_id)).one()
        _reverse_customer_ledgers(sale, customer, actor.id)

    originals = [payment for payment in sale.payments if payment.reverses_payment_id is None]
    for payment in originals:
        reverse_payment(payment, sale.sale_number)

    needs_credit_note = False
    invoice = lock_for_update(db.session.query(Invoice).filter_by(sale_id=sale.id)).first()
    if invoice is not None:
        previous = invoice.status
        needs_credit_note = fiscal_state.cancel(invoice) and bool(invoice.cae)
        current_app.logger.info("Invoice %s for sale %s: %s -> %s", invoice.id, sale.id, previous, invoice.status)

    append_audit_event(
        branch_id=sale.branch_id,
        event_type="sale.voided",
        event_category="sales",
        entity_type="sale",
        entity_id=sale.id,
        actor_user_id=actor.id,
        sale_id=sale.id,
        occurred_at=now,
        note=reason,
        payload={
            "approved_by_user_id": approved_by,
            "invoice_id": invoice.id if invoice else None,
            "invoice_status": invoice.status if invoice else None,
        },
    )

    db.session.commit()
    return _VoidOutcome(sale=sale, invoice_id=invoice.id if invoice else None, needs_credit_note=needs_credit_note)


def void_sale(sale_id: int, actor: User, reason: str | None, supervisor_pin: str | None = None) -> Sale:
    """
    Void a COMPLETED sale from the current business day.

    Raises:
        ValidationError: missing reason
        NotFoundError: unknown sale
        BusinessRuleError: SALE_ALREADY_VOIDED, SESSION_CLOSED,
            VOID_WINDOW_EXPIRED, VOID_AUTHORIZATION_REQUIRED,
            VOID_AUTHORIZATION_FAILED, TOTALS_INCONSISTENT
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("reason is required")
    if len(reason) > 255:
        raise ValidationError("reason must be at most 255 characters")

    outcome = run_with_retry(lambda: _void_sale_locked(sale_id, actor, reason, supervisor_pin))
    sale = outcome.sale

    current_app.logger.info("Sale %s voided by user %s: %s", sale.sale_number, actor.id, reason)

    get_notifier().publish_branch(sale.branch_id, {
        "type": "SALE_VOIDED",
        "sale_id": sale.id,
        "sale_number": sale.sale_number,
        "total_cents": sale.total_cents,
        "branch_id": sale.branch_id,
    })

    raise_alert(
        alert_type=ALERT_VOIDED_SALE,
        severity=SEVERITY_HIGH,
        branch_id=sale.branch_id,
        user_id=actor.id,
        reference_type="SALE",
        reference_id=sale.id,
        title=f"Venta {sale.sale_number} anulada",
        message=f"Venta por ${sale.total_cents / 100:.2f} anulada. Motivo: {reason}",
    )

    if outcome.needs_credit_note:
        dispatch_credit_note(outcome.invoice_id, reason=reason, user_id=actor.id)

    return sale
