from __future__ import annotations

from ..extensions import db
from fiscalpos.time_utils import to_utc_z
from fiscalpos.validation import bps_to_percent


class Customer(db.Model):
    """
    Customer master data plus the two running balances the sale engine
    moves: loyalty points and store credit.

    Balances are denormalized totals of LoyaltyTransaction and
    CreditTransaction and must never go negative.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_document", "document_type", "document_number"),
        db.CheckConstraint("loyalty_points >= 0", name="ck_customers_loyalty_non_negative"),
        db.CheckConstraint("credit_balance_cents >= 0", name="ck_customers_credit_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(128), nullable=True)
    last_name = db.Column(db.String(128), nullable=True)
    business_name = db.Column(db.String(255), nullable=True)

    document_type = db.Column(db.String(16), nullable=False, default="DNI")  # DNI, CUIT, CUIL, PASSPORT, OTHER
    document_number = db.Column(db.String(32), nullable=True)

    # CONSUMIDOR_FINAL, RESPONSABLE_INSCRIPTO, MONOTRIBUTO, EXENTO
    tax_condition = db.Column(db.String(32), nullable=False, default="CONSUMIDOR_FINAL")
    tax_id = db.Column(db.String(11), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    is_wholesale = db.Column(db.Boolean, nullable=False, default=False)
    wholesale_discount_bps = db.Column(db.Integer, nullable=False, default=0)

    loyalty_points = db.Column(db.Integer, nullable=False, default=0)
    credit_balance_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def display_name(self) -> str:
        if self.business_name:
            return self.business_name
        full = " ".join(p for p in (self.first_name, self.last_name) if p)
        return full or "Consumidor Final"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "business_name": self.business_name,
            "display_name": self.display_name,
            "document_type": self.document_type,
            "document_number": self.document_number,
            "tax_condition": self.tax_condition,
            "tax_id": self.tax_id,
            "address": self.address,
            "email": self.email,
            "phone": self.phone,
            "is_wholesale": self.is_wholesale,
            "wholesale_discount_percent": bps_to_percent(self.wholesale_discount_bps),
            "loyalty_points": self.loyalty_points,
            "credit_balance_cents": self.credit_balance_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class LoyaltyTransaction(db.Model):
    """
    Append-only ledger of loyalty point events.

    TRANSACTION TYPES:
    - EARN: Points earned from a sale
    - REDEEM: Points redeemed as sale payment
    - ADJUST: Compensation (void) or manual correction

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "loyalty_transactions"
    __table_args__ = (
        db.Index("ix_loyalty_txns_customer_occurred", "customer_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(16), nullable=False)
    points = db.Column(db.Integer, nullable=False)  # Signed
    balance_after = db.Column(db.Integer, nullable=False)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    description = db.Column(db.String(255), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "transaction_type": self.transaction_type,
            "points": self.points,
            "balance_after": self.balance_after,
            "sale_id": self.sale_id,
            "user_id": self.user_id,
            "description": self.description,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class CreditTransaction(db.Model):
    """
    Append-only ledger of store-credit movements.

    TRANSACTION TYPES:
    - CREDIT: Balance added (change kept as credit)
    - DEBIT: Balance used as sale payment
    - ADJUST: Compensation (void) or manual correction

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "credit_transactions"
    __table_args__ = (
        db.Index("ix_credit_txns_customer_occurred", "customer_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(16), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)  # Signed
    balance_after_cents = db.Column(db.Integer, nullable=False)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    description = db.Column(db.String(255), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "transaction_type": self.transaction_type,
            "amount_cents": self.amount_cents,
            "balance_after_cents": self.balance_after_cents,
            "sale_id": self.sale_id,
            "user_id": self.user_id,
            "description": self.description,
            "occurred_at": to_utc_z(self.occurred_at),
        }
