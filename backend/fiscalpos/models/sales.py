from __future__ import annotations

from ..extensions import db
from fiscalpos.time_utils import to_utc_z
from fiscalpos.validation import bps_to_percent


class PaymentMethod(db.Model):
    """
    Tender definition (cash, debit, credit, QR, transfer...).

    requires_reference: a reference number must accompany the payment.
    requires_authorization: card tenders; an authorization code and the card's
    last four digits are mandatory.
    """
    __tablename__ = "payment_methods"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_payment_methods_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(64), nullable=False)
    requires_reference = db.Column(db.Boolean, nullable=False, default=False)
    requires_authorization = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "requires_reference": self.requires_reference,
            "requires_authorization": self.requires_authorization,
            "is_active": self.is_active,
        }


class Sale(db.Model):
    """
    Completed sale.

    Created atomically (items, payments, stock and customer ledgers in one
    transaction) and then immutable except for the one-way transition to
    VOIDED.

    INVARIANT: total = subtotal - discount - points redemption - credit used,
    and total >= 0.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("sale_number", name="uq_sales_sale_number"),
        db.Index("ix_sales_branch_status_created", "branch_id", "status", "created_at"),
        db.CheckConstraint("total_cents >= 0", name="ck_sales_total_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_number = db.Column(db.String(32), nullable=False)

    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=False, index=True)
    session_id = db.Column(db.Integer, db.ForeignKey("register_sessions.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    # Totals (all amounts in cents)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    paid_cents = db.Column(db.Integer, nullable=False, default=0)
    change_cents = db.Column(db.Integer, nullable=False, default=0)

    # Discount: NONE, PERCENT, FIXED, WHOLESALE
    discount_type = db.Column(db.String(16), nullable=False, default="NONE")
    discount_bps = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_reason = db.Column(db.String(255), nullable=True)
    discount_applied_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    discount_approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # Customer ledgers
    points_earned = db.Column(db.Integer, nullable=False, default=0)
    points_redeemed = db.Column(db.Integer, nullable=False, default=0)
    points_redemption_cents = db.Column(db.Integer, nullable=False, default=0)
    credit_used_cents = db.Column(db.Integer, nullable=False, default=0)
    change_as_credit_cents = db.Column(db.Integer, nullable=False, default=0)

    # Lifecycle: COMPLETED, VOIDED
    status = db.Column(db.String(16), nullable=False, default="COMPLETED", index=True)

    # Cashier-selected invoice type / customer fiscal data for this sale only
    invoice_override = db.Column(db.JSON, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # Void audit trail (set only on transition to VOIDED)
    void_reason = db.Column(db.String(255), nullable=True)
    voided_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    void_approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    branch = db.relationship("Branch")
    session = db.relationship("RegisterSession")
    customer = db.relationship("Customer")
    items = db.relationship("SaleItem", backref="sale", lazy=True, order_by="SaleItem.id")
    payments = db.relationship("SalePayment", backref="sale", lazy=True, order_by="SalePayment.id")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def points_value_cents(self) -> int:
        return self.points_redemption_cents

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "sale_number": self.sale_number,
            "branch_id": self.branch_id,
            "register_id": self.register_id,
            "session_id": self.session_id,
            "customer_id": self.customer_id,
            "seller_id": self.seller_id,
            "created_by_user_id": self.created_by_user_id,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "paid_cents": self.paid_cents,
            "change_cents": self.change_cents,
            "discount_type": self.discount_type,
            "discount_percent": bps_to_percent(self.discount_bps),
            "discount_cents": self.discount_cents,
            "discount_reason": self.discount_reason,
            "discount_applied_by_user_id": self.discount_applied_by_user_id,
            "discount_approved_by_user_id": self.discount_approved_by_user_id,
            "points_earned": self.points_earned,
            "points_redeemed": self.points_redeemed,
            "points_redemption_cents": self.points_redemption_cents,
            "credit_used_cents": self.credit_used_cents,
            "change_as_credit_cents": self.change_as_credit_cents,
            "status": self.status,
            "invoice_override": self.invoice_override,
            "notes": self.notes,
            "void_reason": self.void_reason,
            "voided_by_user_id": self.voided_by_user_id,
            "void_approved_by_user_id": self.void_approved_by_user_id,
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        if include_lines:
            data["items"] = [item.to_dict() for item in self.items]
            data["payments"] = [payment.to_dict() for payment in self.payments]
        return data


class SaleItem(db.Model):
    """
    Priced line of a sale. Product name and SKU are snapshotted so later
    catalog edits never change a recorded sale.
    """
    __tablename__ = "sale_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    product_name = db.Column(db.String(255), nullable=False)
    product_sku = db.Column(db.String(64), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False)
    is_tax_included = db.Column(db.Boolean, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_sku": self.product_sku,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_cents": self.tax_cents,
            "is_tax_included": self.is_tax_included,
            "line_total_cents": self.line_total_cents,
        }


class SalePayment(db.Model):
    """
    Captured tender for a sale.

    Append-only: a void adds a reversal row with a negated amount, VOID-
    prefixed references and reverses_payment_id pointing at the original.
    """
    __tablename__ = "sale_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    payment_method_id = db.Column(db.Integer, db.ForeignKey("payment_methods.id"), nullable=False)

    amount_cents = db.Column(db.Integer, nullable=False)  # Negative for reversals
    reference_number = db.Column(db.String(64), nullable=True)
    authorization_code = db.Column(db.String(64), nullable=True)
    card_brand = db.Column(db.String(32), nullable=True)
    card_last_four = db.Column(db.String(4), nullable=True)
    installments = db.Column(db.Integer, nullable=True)
    qr_provider = db.Column(db.String(32), nullable=True)
    transfer_reference = db.Column(db.String(64), nullable=True)

    reverses_payment_id = db.Column(db.Integer, db.ForeignKey("sale_payments.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    payment_method = db.relationship("PaymentMethod")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "payment_method_id": self.payment_method_id,
            "payment_method_code": self.payment_method.code if self.payment_method else None,
            "amount_cents": self.amount_cents,
            "reference_number": self.reference_number,
            "authorization_code": self.authorization_code,
            "card_brand": self.card_brand,
            "card_last_four": self.card_last_four,
            "installments": self.installments,
            "qr_provider": self.qr_provider,
            "transfer_reference": self.transfer_reference,
            "reverses_payment_id": self.reverses_payment_id,
            "created_at": to_utc_z(self.created_at),
        }
