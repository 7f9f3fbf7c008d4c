# Overview: Branch stock ledger; every quantity change writes a StockMovement in the same transaction.

from __future__ import annotations

from ..extensions import db
from ..models import BranchStock, Product, StockMovement
from fiscalpos.time_utils import utcnow
from .concurrency import lock_for_update


def get_stock(branch_id: int, product_id: int, *, lock: bool = False) -> BranchStock | None:
    query = db.session.query(BranchStock).filter_by(branch_id=branch_id, product_id=product_id)
    if lock:
        query = lock_for_update(query)
    return query.first()


def get_or_create_stock(branch_id: int, product_id: int) -> BranchStock:
    stock = get_stock(branch_id, product_id, lock=True)
    if stock is None:
        stock = BranchStock(branch_id=branch_id, product_id=product_id, quantity=0)
        db.session.add(stock)
        db.session.flush()
    return stock


def find_shortages(branch_id: int, requirements: dict[int, int], products: dict[int, Product]) -> list[dict]:
    """
    Compare aggregated requested quantities against on-hand stock.

    Products flagged allow_negative_stock never short. Rows are locked so the
    check holds until the caller commits.
    """
    shortages = []
    for product_id in sorted(requirements):
        requested = requirements[product_id]
        product = products[product_id]
        if product.allow_negative_stock:
            continue
        stock = get_stock(branch_id, product_id, lock=True)
        on_hand = stock.quantity if stock else 0
        if on_hand < requested:
            shortages.append({
                "product_id": product_id,
                "sku": product.sku,
                "requested_quantity": requested,
                "on_hand": on_hand,
            })
    return shortages


def record_movement(
    *,
    branch_id: int,
    product_id: int,
    movement_type: str,
    quantity_delta: int,
    reference_type: str | None = None,
    reference_id: int | None = None,
    user_id: int | None = None,
    note: str | None = None,
) -> tuple[BranchStock, StockMovement]:
    """
    Apply a signed quantity change and append its ledger row.

    Does not commit; the caller owns the transaction.
    """
    stock = get_or_create_stock(branch_id, product_id)
    before = stock.quantity
    stock.quantity = before + quantity_delta

    movement = StockMovement(
        branch_id=branch_id,
        product_id=product_id,
        movement_type=movement_type,
        quantity_delta=quantity_delta,
        quantity_before=before,
        quantity_after=stock.quantity,
        reference_type=reference_type,
        reference_id=reference_id,
        user_id=user_id,
        note=note,
        occurred_at=utcnow(),
    )
    db.session.add(movement)
    db.session.flush()
    return stock, movement


def low_stock_level(stock: BranchStock, product: Product) -> str | None:
    """
    Severity of a low-stock condition after a decrement, or None.

    HIGH when the shelf is empty, MEDIUM when at or below the minimum.
    """
    threshold = stock.min_stock if stock.min_stock is not None else product.minimum_stock
    if stock.quantity <= 0:
        return "HIGH"
    if threshold and stock.quantity <= threshold:
        return "MEDIUM"
    return None
