# Overview: Sale-level discount resolution and authorization.

"""
Discount Authorization Policy

RULES:
- WHOLESALE discounts come from the attached wholesale customer and need no
  authorization.
- Any other non-zero discount needs a role with can_give_discount and a
  non-empty reason.
- Above the acting user's max_discount_bps a supervisor PIN is mandatory.
  The PIN is matched against active users whose role can give discounts;
  the first whose own limit covers the requested discount approves it.
- A discount is never capped: without an approver the whole sale fails.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..models import Customer, Role, User
from ..validation import BusinessRuleError, ValidationError, percent_to_bps, require_int
from .auth_service import find_user_by_pin
from .pricing import BPS_SCALE, percent_of, prorate


DISCOUNT_NONE = "NONE"
DISCOUNT_PERCENT = "PERCENT"
DISCOUNT_FIXED = "FIXED"
DISCOUNT_WHOLESALE = "WHOLESALE"

VALID_DISCOUNT_TYPES = (DISCOUNT_NONE, DISCOUNT_PERCENT, DISCOUNT_FIXED, DISCOUNT_WHOLESALE)


@dataclass(frozen=True)
class DiscountDecision:
    discount_type: str
    discount_bps: int
    discount_cents: int
    reason: str | None = None
    applied_by_user_id: int | None = None
    approved_by_user_id: int | None = None

    @property
    def needed_supervisor(self) -> bool:
        return self.approved_by_user_id is not None


NO_DISCOUNT = DiscountDecision(discount_type=DISCOUNT_NONE, discount_bps=0, discount_cents=0)


def _within_limit(limit_bps: int, discount_cents: int, subtotal_cents: int) -> bool:
    # Exact comparison: discount / subtotal <= limit / 10000
    return discount_cents * BPS_SCALE <= limit_bps * subtotal_cents


def resolve_discount(
    *,
    actor: User,
    subtotal_cents: int,
    discount_type: str | None,
    discount_percent=None,
    discount_amount_cents=None,
    reason: str | None = None,
    supervisor_pin: str | None = None,
    customer: Customer | None = None,
) -> DiscountDecision:
    """
    Turn a requested discount into an authorized amount or raise.

    Raises:
        ValidationError: malformed request (unknown type, bad percent, no
            wholesale customer)
        BusinessRuleError: DISCOUNT_NOT_PERMITTED, DISCOUNT_REASON_REQUIRED,
            DISCOUNT_EXCEEDS_LIMIT, DISCOUNT_AUTHORIZATION_FAILED
    """
    discount_type = (discount_type or DISCOUNT_NONE).upper()
    if discount_type not in VALID_DISCOUNT_TYPES:
        raise ValidationError(f"discount_type must be one of {', '.join(VALID_DISCOUNT_TYPES)}")

    if discount_type == DISCOUNT_NONE:
        return NO_DISCOUNT

    if discount_type == DISCOUNT_WHOLESALE:
        if customer is None or not customer.is_wholesale:
            raise ValidationError("Wholesale discount requires a wholesale customer")
        bps = customer.wholesale_discount_bps
        return DiscountDecision(
            discount_type=DISCOUNT_WHOLESALE,
            discount_bps=bps,
            discount_cents=percent_of(subtotal_cents, bps),
            reason=reason or "Wholesale customer",
            applied_by_user_id=actor.id,
        )

    if discount_type == DISCOUNT_PERCENT:
        bps = percent_to_bps(discount_percent, "discount_percent")
        cents = percent_of(subtotal_cents, bps)
    else:
        cents = require_int(discount_amount_cents, "discount_amount_cents", minimum=0)
        bps = prorate(BPS_SCALE, cents, subtotal_cents) if subtotal_cents else 0

    if cents == 0:
        return NO_DISCOUNT

    role = actor.role
    if role is None or not role.can_give_discount:
        raise BusinessRuleError(
            "DISCOUNT_NOT_PERMITTED",
            "User is not allowed to apply discounts",
            details={"user_id": actor.id},
        )

    reason = (reason or "").strip()
    if not reason:
        raise BusinessRuleError("DISCOUNT_REASON_REQUIRED", "A reason is required for discounts")

    approved_by = None
    if not _within_limit(role.max_discount_bps, cents, subtotal_cents):
        if not supervisor_pin:
            raise BusinessRuleError(
                "DISCOUNT_EXCEEDS_LIMIT",
                "Discount exceeds the user's limit; supervisor PIN required",
                details={
                    "requested_bps": bps,
                    "max_discount_bps": role.max_discount_bps,
                },
            )
        supervisor = find_user_by_pin(
            supervisor_pin,
            Role.can_give_discount.is_(True),
            accept=lambda user: _within_limit(user.role.max_discount_bps, cents, subtotal_cents),
        )
        if supervisor is None:
            raise BusinessRuleError(
                "DISCOUNT_AUTHORIZATION_FAILED",
                "Supervisor PIN invalid or supervisor limit insufficient",
                details={"requested_bps": bps},
            )
        approved_by = supervisor.id

    return DiscountDecision(
        discount_type=discount_type,
        discount_bps=bps,
        discount_cents=cents,
        reason=reason,
        applied_by_user_id=actor.id,
        approved_by_user_id=approved_by,
    )
