# Overview: Tender validation and payment capture/reversal for sales.

"""
Payment Capture

DESIGN PRINCIPLES:
- Split payments: one sale can carry any number of tenders
- Each tender is checked against its PaymentMethod policy before anything
  is written
- Append-only: a void never edits a payment, it adds a negated reversal row
"""

from __future__ import annotations

from dataclasses import dataclass

from ..extensions import db
from ..models import PaymentMethod, SalePayment
from ..validation import (
    BusinessRuleError,
    CARD_LAST_FOUR_RE,
    ValidationError,
    optional_int,
    optional_str,
    require_int,
)


# =============================================================================
# DEFAULT PAYMENT METHODS (CONSTANTS)
# =============================================================================

DEFAULT_PAYMENT_METHODS = (
    # code, name, requires_reference, requires_authorization
    ("CASH", "Efectivo", False, False),
    ("DEBIT", "Tarjeta de débito", False, True),
    ("CREDIT", "Tarjeta de crédito", False, True),
    ("QR", "QR / Billetera virtual", True, False),
    ("TRANSFER", "Transferencia", True, False),
)

VOID_REFERENCE_PREFIX = "VOID-"


@dataclass
class TenderInput:
    payment_method: PaymentMethod
    amount_cents: int
    reference_number: str | None = None
    authorization_code: str | None = None
    card_brand: str | None = None
    card_last_four: str | None = None
    installments: int | None = None
    qr_provider: str | None = None
    transfer_reference: str | None = None


# =============================================================================
# VALIDATION
# =============================================================================

def _load_method(raw: dict) -> PaymentMethod:
    method = None
    if raw.get("payment_method_id") is not None:
        method_id = require_int(raw.get("payment_method_id"), "payment_method_id", minimum=1)
        method = db.session.query(PaymentMethod).filter_by(id=method_id).first()
    elif raw.get("payment_method_code"):
        method = db.session.query(PaymentMethod).filter_by(code=str(raw["payment_method_code"]).upper()).first()
    else:
        raise ValidationError("payment_method_id or payment_method_code required")

    if method is None or not method.is_active:
        raise ValidationError("Payment method not found or inactive")
    return method


def parse_tender(raw: dict, index: int) -> TenderInput:
    """
    Validate one tender against its method's policy.

    Raises BusinessRuleError with a stable code for policy violations.
    """
    if not isinstance(raw, dict):
        raise ValidationError(f"payments[{index}] must be an object")

    method = _load_method(raw)
    try:
        amount = require_int(raw.get("amount_cents"), "amount_cents")
    except ValidationError:
        amount = None
    if amount is None or amount <= 0:
        raise BusinessRuleError(
            "INVALID_PAYMENT_AMOUNT",
            "Payment amount must be greater than zero",
            details={"index": index, "payment_method": method.code},
        )

    tender = TenderInput(
        payment_method=method,
        amount_cents=amount,
        reference_number=optional_str(raw.get("reference_number"), "reference_number", max_length=64),
        authorization_code=optional_str(raw.get("authorization_code"), "authorization_code", max_length=64),
        card_brand=optional_str(raw.get("card_brand"), "card_brand", max_length=32),
        card_last_four=optional_str(raw.get("card_last_four"), "card_last_four", max_length=4),
        installments=optional_int(raw.get("installments"), "installments", minimum=1),
        qr_provider=optional_str(raw.get("qr_provider"), "qr_provider", max_length=32),
        transfer_reference=optional_str(raw.get("transfer_reference"), "transfer_reference", max_length=64),
    )

    if method.requires_reference and not tender.reference_number:
        raise BusinessRuleError(
            "PAYMENT_REFERENCE_REQUIRED",
            f"Payment method {method.name} requires a reference number",
            details={"index": index, "payment_method": method.code},
        )

    if method.requires_authorization:
        if not tender.authorization_code:
            raise BusinessRuleError(
                "PAYMENT_AUTH_CODE_REQUIRED",
                f"Payment method {method.name} requires an authorization code",
                details={"index": index, "payment_method": method.code},
            )
        if not tender.card_last_four or not CARD_LAST_FOUR_RE.match(tender.card_last_four):
            raise BusinessRuleError(
                "INVALID_CARD_LAST_FOUR",
                "Card last four digits must be exactly 4 digits",
                details={"index": index, "payment_method": method.code},
            )
    elif tender.card_last_four and not CARD_LAST_FOUR_RE.match(tender.card_last_four):
        raise BusinessRuleError(
            "INVALID_CARD_LAST_FOUR",
            "Card last four digits must be exactly 4 digits",
            details={"index": index, "payment_method": method.code},
        )

    return tender


def parse_tenders(raw_payments, total_cents: int) -> tuple[list[TenderInput], int]:
    """
    Validate all tenders and the covering rule. Returns (tenders, paid_cents).
    """
    if raw_payments is None:
        raw_payments = []
    if not isinstance(raw_payments, list):
        raise ValidationError("payments must be a list")

    tenders = [parse_tender(raw, i) for i, raw in enumerate(raw_payments)]
    paid = sum(t.amount_cents for t in tenders)
    if paid < total_cents:
        raise BusinessRuleError(
            "INSUFFICIENT_PAYMENT",
            "Payments do not cover the sale total",
            details={"total_cents": total_cents, "paid_cents": paid},
        )
    return tenders, paid


# =============================================================================
# CAPTURE / REVERSAL
# =============================================================================

def capture_tender(sale_id: int, tender: TenderInput) -> SalePayment:
    payment = SalePayment(
        sale_id=sale_id,
        payment_method_id=tender.payment_method.id,
        amount_cents=tender.amount_cents,
        reference_number=tender.reference_number,
        authorization_code=tender.authorization_code,
        card_brand=tender.card_brand,
        card_last_four=tender.card_last_four,
        installments=tender.installments,
        qr_provider=tender.qr_provider,
        transfer_reference=tender.transfer_reference,
    )
    db.session.add(payment)
    return payment


def _void_ref(value: str | None, max_length: int = 64) -> str | None:
    if not value:
        return None
    return f"{VOID_REFERENCE_PREFIX}{value}"[:max_length]


def reverse_payment(payment: SalePayment, sale_number: str) -> SalePayment:
    """
    Negated copy of `payment`, linked back to it.

    Every reversal carries a VOID- reference; tenders captured without one
    (cash) fall back to the sale number.
    """
    reversal = SalePayment(
        sale_id=payment.sale_id,
        payment_method_id=payment.payment_method_id,
        amount_cents=-payment.amount_cents,
        reference_number=_void_ref(payment.reference_number or sale_number),
        authorization_code=_void_ref(payment.authorization_code),
        card_brand=payment.card_brand,
        card_last_four=payment.card_last_four,
        installments=payment.installments,
        qr_provider=payment.qr_provider,
        transfer_reference=_void_ref(payment.transfer_reference),
        reverses_payment_id=payment.id,
    )
    db.session.add(reversal)
    return reversal


def create_default_payment_methods() -> list[PaymentMethod]:
    """Idempotent seed of the standard tenders."""
    methods = []
    for code, name, requires_reference, requires_authorization in DEFAULT_PAYMENT_METHODS:
        method = db.session.query(PaymentMethod).filter_by(code=code).first()
        if not method:
            method = PaymentMethod(
                code=code,
                name=name,
                requires_reference=requires_reference,
                requires_authorization=requires_authorization,
            )
            db.session.add(method)
        methods.append(method)
    db.session.flush()
    return methods
