# Overview: Loyalty points and store credit ledgers.

"""
Customer ledgers.

Each movement updates the running balance on Customer and appends an
immutable transaction row carrying the balance snapshot. A movement that
would take a balance below zero is rejected before anything is written.
Nothing here commits; callers own the transaction.
"""

from __future__ import annotations

from ..extensions import db
from ..models import Customer, LoyaltyTransaction, CreditTransaction
from ..validation import BusinessRuleError
from fiscalpos.time_utils import utcnow


def points_earned_for(total_cents: int, cents_per_point: int) -> int:
    """One point per full `cents_per_point` spent (floor)."""
    if total_cents <= 0 or cents_per_point <= 0:
        return 0
    return total_cents // cents_per_point


def ensure_points_available(customer: Customer, points: int) -> None:
    if points > customer.loyalty_points:
        raise BusinessRuleError(
            "INSUFFICIENT_POINTS",
            "Customer does not have enough loyalty points",
            details={"customer_id": customer.id, "requested": points, "available": customer.loyalty_points},
        )


def ensure_credit_available(customer: Customer, amount_cents: int) -> None:
    if amount_cents > customer.credit_balance_cents:
        raise BusinessRuleError(
            "INSUFFICIENT_CREDIT",
            "Customer does not have enough store credit",
            details={
                "customer_id": customer.id,
                "requested_cents": amount_cents,
                "available_cents": customer.credit_balance_cents,
            },
        )


def post_loyalty(
    customer: Customer,
    *,
    points: int,
    transaction_type: str,
    sale_id: int | None = None,
    user_id: int | None = None,
    description: str | None = None,
) -> LoyaltyTransaction:
    """Signed points movement: EARN (+), REDEEM (-), ADJUST (+/-)."""
    if points < 0:
        ensure_points_available(customer, -points)

    customer.loyalty_points = customer.loyalty_points + points
    txn = LoyaltyTransaction(
        customer_id=customer.id,
        transaction_type=transaction_type,
        points=points,
        balance_after=customer.loyalty_points,
        sale_id=sale_id,
        user_id=user_id,
        description=description,
        occurred_at=utcnow(),
    )
    db.session.add(txn)
    return txn


def post_credit(
    customer: Customer,
    *,
    amount_cents: int,
    transaction_type: str,
    sale_id: int | None = None,
    user_id: int | None = None,
    description: str | None = None,
) -> CreditTransaction:
    """Signed credit movement: CREDIT (+), DEBIT (-), ADJUST (+/-)."""
    if amount_cents < 0:
        ensure_credit_available(customer, -amount_cents)

    customer.credit_balance_cents = customer.credit_balance_cents + amount_cents
    txn = CreditTransaction(
        customer_id=customer.id,
        transaction_type=transaction_type,
        amount_cents=amount_cents,
        balance_after_cents=customer.credit_balance_cents,
        sale_id=sale_id,
        user_id=user_id,
        description=description,
        occurred_at=utcnow(),
    )
    db.session.add(txn)
    return txn
