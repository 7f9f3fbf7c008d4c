# Overview: Line and sale arithmetic in integer cents.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

BPS_SCALE = 10000


def round_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def prorate(amount_cents: int, numerator: int, denominator: int) -> int:
    """amount * numerator / denominator, half-up. Zero denominator yields zero."""
    if denominator == 0:
        return 0
    return round_cents(Decimal(amount_cents) * Decimal(numerator) / Decimal(denominator))


def percent_of(amount_cents: int, bps: int) -> int:
    return prorate(amount_cents, bps, BPS_SCALE)


@dataclass(frozen=True)
class LinePrice:
    gross_cents: int
    tax_cents: int
    line_total_cents: int

    @property
    def net_cents(self) -> int:
        return self.line_total_cents - self.tax_cents


def price_line(
    *,
    unit_price_cents: int,
    quantity: int,
    tax_rate_bps: int,
    is_tax_included: bool,
    discount_cents: int = 0,
) -> LinePrice:
    """
    Price one sale line.

    gross = unit * quantity - line discount.
    Tax-included prices carry VAT inside the gross: tax = gross * r / (1 + r).
    Tax-excluded prices get VAT on top: tax = gross * r, total = gross + tax.
    """
    gross = unit_price_cents * quantity - discount_cents
    if is_tax_included:
        tax = prorate(gross, tax_rate_bps, BPS_SCALE + tax_rate_bps)
        total = gross
    else:
        tax = percent_of(gross, tax_rate_bps)
        total = gross + tax
    return LinePrice(gross_cents=gross, tax_cents=tax, line_total_cents=total)


def tax_by_rate(lines, *, numerator: int, denominator: int) -> dict[int, int]:
    """
    VAT per rate bracket, scaled by numerator/denominator (sale total over
    subtotal) so sale-level reductions are reflected in the fiscal figures.

    `lines` yields objects with tax_rate_bps and tax_cents.
    """
    raw: dict[int, int] = {}
    for line in lines:
        raw[line.tax_rate_bps] = raw.get(line.tax_rate_bps, 0) + line.tax_cents
    return {rate: prorate(tax, numerator, denominator) for rate, tax in sorted(raw.items())}
