from __future__ import annotations

from ..extensions import db
from fiscalpos.time_utils import to_utc_z


class Product(db.Model):
    """
    Catalog item.

    is_tax_included: price_cents already contains VAT (typical for retail
    shelf prices); otherwise VAT is added on top at sale time.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    price_cents = db.Column(db.Integer, nullable=False)
    cost_cents = db.Column(db.Integer, nullable=True)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=2100)  # Basis points (2100 = 21%)
    is_tax_included = db.Column(db.Boolean, nullable=False, default=True)

    minimum_stock = db.Column(db.Integer, nullable=False, default=0)
    allow_negative_stock = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "price_cents": self.price_cents,
            "cost_cents": self.cost_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "is_tax_included": self.is_tax_included,
            "minimum_stock": self.minimum_stock,
            "allow_negative_stock": self.allow_negative_stock,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class BranchStock(db.Model):
    """
    Running on-hand quantity per (branch, product).

    Every change is paired with a StockMovement row written in the same
    transaction; quantity is the fold of those movements.
    """
    __tablename__ = "branch_stocks"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "product_id", name="uq_branch_stocks_branch_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    # Branch-level override of Product.minimum_stock
    min_stock = db.Column(db.Integer, nullable=True)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "min_stock": self.min_stock,
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only stock ledger.

    MOVEMENT TYPES:
    - SALE: decrement for a completed sale (negative delta)
    - RETURN: compensating increment when a sale is voided (positive delta)
    - ADJUSTMENT: manual correction

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_reference", "reference_type", "reference_id"),
        db.Index("ix_stock_movements_branch_product", "branch_id", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    movement_type = db.Column(db.String(16), nullable=False)
    quantity_delta = db.Column(db.Integer, nullable=False)
    quantity_before = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    note = db.Column(db.String(255), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "product_id": self.product_id,
            "movement_type": self.movement_type,
            "quantity_delta": self.quantity_delta,
            "quantity_before": self.quantity_before,
            "quantity_after": self.quantity_after,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "user_id": self.user_id,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }
