# Overview: Atomic sale creation across stock, payments and customer ledgers.

"""
Sale Transaction Engine

WHY: A sale touches stock, tenders, loyalty points and store credit. Either
all of it is recorded or none of it is.

ORDER OF WORK (one DB transaction):
1. Register session must be OPEN
2. Price every line (unit x qty - line discount, VAT per product)
3. Resolve and authorize the sale discount
4. Points redemption / credit use, total = subtotal - discount - points - credit
5. Tender validation and covering rule
6. Stock, points and credit sufficiency
   -- nothing has been written up to here --
7. Sale, items, payments, stock movements, ledger entries, audit event
8. Commit

AFTER COMMIT: SALE_CREATED notification, deferred alerts (low stock, large
discount, high-value sale), invoice generation handed to the background
dispatcher.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..extensions import db
from ..models import Customer, Product, RegisterSession, Sale, SaleItem, User
from ..validation import (
    BusinessRuleError,
    NotFoundError,
    ValidationError,
    optional_int,
    optional_str,
    require_int,
)
from fiscalpos.time_utils import business_date, utcnow
from .alert_service import (
    ALERT_HIGH_VALUE_SALE,
    ALERT_LARGE_DISCOUNT,
    ALERT_LOW_STOCK,
    SEVERITY_MEDIUM,
    raise_alert,
)
from .concurrency import lock_for_update, run_with_retry
from .customer_ledger_service import (
    ensure_credit_available,
    ensure_points_available,
    points_earned_for,
    post_credit,
    post_loyalty,
)
from .discount_service import resolve_discount
from .inventory_service import find_shortages, low_stock_level, record_movement
from .invoice_service import dispatch_invoice_generation, resolve_fiscal_customer
from .ledger_service import append_audit_event
from .notifier import get_notifier
from .payment_service import capture_tender, parse_tenders
from .pricing import price_line, tax_by_rate
from .sequence_service import next_sale_number


SALE_STATUS_COMPLETED = "COMPLETED"
SALE_STATUS_VOIDED = "VOIDED"


@dataclass
class PricedItem:
    product: Product
    quantity: int
    unit_price_cents: int
    discount_cents: int
    tax_rate_bps: int
    is_tax_included: bool
    tax_cents: int
    line_total_cents: int


@dataclass
class _PendingAlert:
    alert_type: str
    severity: str
    title: str
    message: str
    reference_type: str
    reference_id: int | None = None


@dataclass
class _SaleOutcome:
    sale: Sale
    alerts: list[_PendingAlert] = field(default_factory=list)


# =============================================================================
# REQUEST PARSING / PRICING
# =============================================================================

def _price_items(raw_items) -> list[PricedItem]:
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items must be a non-empty list")

    priced = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        product_id = require_int(raw.get("product_id"), f"items[{index}].product_id", minimum=1)
        quantity = require_int(raw.get("quantity"), f"items[{index}].quantity", minimum=1)
        line_discount = optional_int(raw.get("discount_cents"), f"items[{index}].discount_cents", minimum=0) or 0

        product = db.session.query(Product).filter_by(id=product_id).first()
        if not product or not product.is_active:
            raise NotFoundError(f"Product {product_id} not found")

        if line_discount > product.price_cents * quantity:
            raise ValidationError(f"items[{index}].discount_cents exceeds the line amount")

        line = price_line(
            unit_price_cents=product.price_cents,
            quantity=quantity,
            tax_rate_bps=product.tax_rate_bps,
            is_tax_included=product.is_tax_included,
            discount_cents=line_discount,
        )
        priced.append(PricedItem(
            product=product,
            quantity=quantity,
            unit_price_cents=product.price_cents,
            discount_cents=line_discount,
            tax_rate_bps=product.tax_rate_bps,
            is_tax_included=product.is_tax_included,
            tax_cents=line.tax_cents,
            line_total_cents=line.line_total_cents,
        ))
    return priced


def _load_open_session(session_id: int) -> RegisterSession:
    session = lock_for_update(db.session.query(RegisterSession).filter_by(id=session_id)).first()
    if not session:
        raise NotFoundError(f"Register session {session_id} not found")
    if session.status != "OPEN":
        raise BusinessRuleError(
            "SESSION_NOT_OPEN",
            "Register session is not open",
            details={"session_id": session_id, "status": session.status},
        )
    return session


def _load_customer(customer_id: int | None) -> Customer | None:
    if customer_id is None:
        return None
    customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
    if not customer or not customer.is_active:
        raise NotFoundError(f"Customer {customer_id} not found")
    return customer


# =============================================================================
# CREATE
# =============================================================================

def _create_sale_locked(data: dict, actor: User) -> _SaleOutcome:
    config = current_app.config

    # --- validation phase: no writes ---------------------------------------
    session_id = require_int(data.get("session_id"), "session_id", minimum=1)
    session = _load_open_session(session_id)
    customer = _load_customer(optional_int(data.get("customer_id"), "customer_id", minimum=1))
    seller_id = optional_int(data.get("seller_id"), "seller_id", minimum=1) or actor.id

    items = _price_items(data.get("items"))
    subtotal = sum(item.line_total_cents for item in items)

    discount = resolve_discount(
        actor=actor,
        subtotal_cents=subtotal,
        discount_type=data.get("discount_type"),
        discount_percent=data.get("discount_percent"),
        discount_amount_cents=data.get("discount_amount_cents"),
        reason=data.get("discount_reason"),
        supervisor_pin=data.get("supervisor_pin"),
        customer=customer,
    )

    points_to_redeem = optional_int(data.get("points_to_redeem"), "points_to_redeem", minimum=0) or 0
    credit_to_use = optional_int(data.get("credit_to_use_cents"), "credit_to_use_cents", minimum=0) or 0
    change_as_credit = optional_int(data.get("change_as_credit_cents"), "change_as_credit_cents", minimum=0) or 0

    if (points_to_redeem or credit_to_use or change_as_credit) and customer is None:
        raise ValidationError("A customer is required to redeem points or use store credit")
    if points_to_redeem:
        ensure_points_available(customer, points_to_redeem)
    if credit_to_use:
        ensure_credit_available(customer, credit_to_use)

    points_value = points_to_redeem * int(config["LOYALTY_POINT_VALUE_CENTS"])
    total = subtotal - discount.discount_cents - points_value - credit_to_use
    if total < 0:
        raise BusinessRuleError(
            "NEGATIVE_TOTAL",
            "Discounts and redemptions exceed the sale subtotal",
            details={
                "subtotal_cents": subtotal,
                "discount_cents": discount.discount_cents,
                "points_value_cents": points_value,
                "credit_used_cents": credit_to_use,
            },
        )

    tenders, paid = parse_tenders(data.get("payments"), total)
    change = paid - total
    if change_as_credit > change:
        raise ValidationError("change_as_credit_cents exceeds the change due")

    requirements: dict[int, int] = {}
    products: dict[int, Product] = {}
    for item in items:
        requirements[item.product.id] = requirements.get(item.product.id, 0) + item.quantity
        products[item.product.id] = item.product
    shortages = find_shortages(session.branch_id, requirements, products)
    if shortages:
        raise BusinessRuleError(
            "INSUFFICIENT_STOCK",
            "Insufficient stock to complete sale",
            details={"items": shortages},
        )

    branch = session.register.branch
    override = data.get("invoice_override")
    if override:
        # Reject bad fiscal data now rather than after the sale is recorded
        resolve_fiscal_customer(branch, customer, override)

    earned = points_earned_for(total, int(config["LOYALTY_CENTS_PER_POINT"])) if customer else 0
    tax_total = sum(tax_by_rate(items, numerator=total, denominator=subtotal).values())

    # --- write phase ---------------------------------------------------------
    now = utcnow()
    sale = Sale(
        sale_number=next_sale_number(
            branch_id=branch.id,
            branch_code=branch.code,
            business_day=business_date(config["BUSINESS_TIMEZONE"], now),
        ),
        branch_id=branch.id,
        register_id=session.register_id,
        session_id=session.id,
        customer_id=customer.id if customer else None,
        seller_id=seller_id,
        created_by_user_id=actor.id,
        subtotal_cents=subtotal,
        tax_cents=tax_total,
        total_cents=total,
        paid_cents=paid,
        change_cents=change,
        discount_type=discount.discount_type,
        discount_bps=discount.discount_bps,
        discount_cents=discount.discount_cents,
        discount_reason=discount.reason,
        discount_applied_by_user_id=discount.applied_by_user_id,
        discount_approved_by_user_id=discount.approved_by_user_id,
        points_earned=earned,
        points_redeemed=points_to_redeem,
        points_redemption_cents=points_value,
        credit_used_cents=credit_to_use,
        change_as_credit_cents=change_as_credit,
        status=SALE_STATUS_COMPLETED,
        invoice_override=override or None,
        notes=optional_str(data.get("notes"), "notes", max_length=2000),
        created_at=now,
    )
    db.session.add(sale)
    db.session.flush()

    for item in items:
        db.session.add(SaleItem(
            sale_id=sale.id,
            product_id=item.product.id,
            product_name=item.product.name,
            product_sku=item.product.sku,
            quantity=item.quantity,
            unit_price_cents=item.unit_price_cents,
            discount_cents=item.discount_cents,
            tax_rate_bps=item.tax_rate_bps,
            tax_cents=item.tax_cents,
            is_tax_included=item.is_tax_included,
            line_total_cents=item.line_total_cents,
        ))

    for tender in tenders:
        capture_tender(sale.id, tender)

    outcome = _SaleOutcome(sale=sale)

    for item in items:
        stock, _ = record_movement(
            branch_id=branch.id,
            product_id=item.product.id,
            movement_type="SALE",
            quantity_delta=-item.quantity,
            reference_type="SALE",
            reference_id=sale.id,
            user_id=actor.id,
            note=f"Venta {sale.sale_number}",
        )
        severity = low_stock_level(stock, item.product)
        if severity:
            outcome.alerts.append(_PendingAlert(
                alert_type=ALERT_LOW_STOCK,
                severity=severity,
                title=f"Stock bajo: {item.product.name}",
                message=f"{item.product.name} ({item.product.sku}) quedó con {stock.quantity} unidades en {branch.name}",
                reference_type="PRODUCT",
                reference_id=item.product.id,
            ))

    if customer is not None:
        if points_to_redeem:
            post_loyalty(customer, points=-points_to_redeem, transaction_type="REDEEM", sale_id=sale.id,
                         user_id=actor.id, description=f"Canje en venta {sale.sale_number}")
        if earned:
            post_loyalty(customer, points=earned, transaction_type="EARN", sale_id=sale.id,
                         user_id=actor.id, description=f"Puntos por venta {sale.sale_number}")
        if credit_to_use:
            post_credit(customer, amount_cents=-credit_to_use, transaction_type="DEBIT", sale_id=sale.id,
                        user_id=actor.id, description=f"Uso de crédito en venta {sale.sale_number}")
        if change_as_credit:
            post_credit(customer, amount_cents=change_as_credit, transaction_type="CREDIT", sale_id=sale.id,
                        user_id=actor.id, description=f"Vuelto como crédito de venta {sale.sale_number}")

    append_audit_event(
        branch_id=branch.id,
        event_type="sale.completed",
        event_category="sales",
        entity_type="sale",
        entity_id=sale.id,
        actor_user_id=actor.id,
        sale_id=sale.id,
        occurred_at=now,
        note=f"Sale {sale.sale_number} completed",
        payload={"total_cents": total, "discount_cents": discount.discount_cents},
    )

    if discount.discount_cents:
        threshold_bps = int(float(config["LARGE_DISCOUNT_ALERT_PERCENT"]) * 100)
        if discount.discount_bps >= threshold_bps:
            approved = " con autorización de supervisor" if discount.needed_supervisor else ""
            outcome.alerts.append(_PendingAlert(
                alert_type=ALERT_LARGE_DISCOUNT,
                severity=SEVERITY_MEDIUM,
                title=f"Descuento alto en {branch.name}",
                message=(
                    f"Venta {sale.sale_number}: descuento del {discount.discount_bps / 100:.1f}% "
                    f"(${discount.discount_cents / 100:.2f}){approved}. Motivo: {discount.reason}"
                ),
                reference_type="SALE",
                reference_id=sale.id,
            ))

    if total >= int(config["HIGH_VALUE_SALE_ALERT_CENTS"]):
        outcome.alerts.append(_PendingAlert(
            alert_type=ALERT_HIGH_VALUE_SALE,
            severity=SEVERITY_MEDIUM,
            title=f"Venta de alto valor en {branch.name}",
            message=(
                f"Venta {sale.sale_number} por ${total / 100:.2f} supera el umbral de "
                f"${int(config['HIGH_VALUE_SALE_ALERT_CENTS']) / 100:.2f}"
            ),
            reference_type="SALE",
            reference_id=sale.id,
        ))

    db.session.commit()
    return outcome


def create_sale(data: dict, actor: User) -> Sale:
    """
    Record a COMPLETED sale or raise with nothing written.

    Raises:
        ValidationError, NotFoundError, BusinessRuleError (see module doc for
        the stable codes)
    """
    if not isinstance(data, dict):
        raise ValidationError("Request body must be an object")

    outcome = run_with_retry(lambda: _create_sale_locked(data, actor))
    sale = outcome.sale

    current_app.logger.info(
        "Sale %s completed: total %s cents, %s item(s)", sale.sale_number, sale.total_cents, len(sale.items)
    )

    get_notifier().publish_branch(sale.branch_id, {
        "type": "SALE_CREATED",
        "sale_id": sale.id,
        "sale_number": sale.sale_number,
        "total_cents": sale.total_cents,
        "branch_id": sale.branch_id,
    })

    for pending in outcome.alerts:
        raise_alert(
            alert_type=pending.alert_type,
            severity=pending.severity,
            branch_id=sale.branch_id,
            user_id=actor.id,
            reference_type=pending.reference_type,
            reference_id=pending.reference_id,
            title=pending.title,
            message=pending.message,
        )

    dispatch_invoice_generation(
        sale.id,
        sale_number=sale.sale_number,
        branch_id=sale.branch_id,
        user_id=actor.id,
    )
    return sale


def get_sale(sale_id: int) -> Sale:
    sale = db.session.query(Sale).filter_by(id=sale_id).first()
    if not sale:
        raise NotFoundError(f"Sale {sale_id} not found")
    return sale


def verify_sale_totals(sale: Sale) -> None:
    """Raise TOTALS_INCONSISTENT if the stored figures break the total identity."""
    expected = sale.subtotal_cents - sale.discount_cents - sale.points_redemption_cents - sale.credit_used_cents
    if expected != sale.total_cents or sale.total_cents < 0:
        raise BusinessRuleError(
            "TOTALS_INCONSISTENT",
            f"Sale {sale.sale_number} totals are inconsistent",
            details={"expected_total_cents": expected, "total_cents": sale.total_cents},
        )

