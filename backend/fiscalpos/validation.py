from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any


TAX_ID_RE = re.compile(r"^\d{11}$")
CARD_LAST_FOUR_RE = re.compile(r"^\d{4}$")


class ValidationError(ValueError):
    """400-level input problem."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class NotFoundError(LookupError):
    """404-level missing record."""


class BusinessRuleError(Exception):
    """
    409-level business rule violation.

    `code` is a stable machine-readable string (e.g. INSUFFICIENT_STOCK) that
    clients branch on; `message` is for humans.
    """

    def __init__(self, code: str, message: str, details: dict | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


def require_int(value: Any, field: str, *, minimum: int | None = None) -> int:
    """Strict integer coercion: rejects bools, floats and scientific notation."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str) and re.fullmatch(r"-?\d+", value.strip()):
        result = int(value.strip())
    else:
        raise ValidationError(f"{field} must be an integer")
    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    return result


def optional_int(value: Any, field: str, *, minimum: int | None = None) -> int | None:
    if value is None or value == "":
        return None
    return require_int(value, field, minimum=minimum)


def percent_to_bps(value: Any, field: str) -> int:
    """
    Convert a percentage (15, "12.5") to basis points (1500, 1250).

    Anything outside 0..100 or finer than 0.01% is rejected.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number")
    try:
        pct = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number")
    if not pct.is_finite() or pct < 0 or pct > 100:
        raise ValidationError(f"{field} must be between 0 and 100")
    bps = pct * 100
    if bps != bps.to_integral_value():
        raise ValidationError(f"{field} supports at most two decimals")
    return int(bps)


def bps_to_percent(bps: int | None) -> float | None:
    if bps is None:
        return None
    return float((Decimal(bps) / 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def optional_str(value: Any, field: str, *, max_length: int = 255) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    value = value.strip()
    if not value:
        return None
    if len(value) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return value


def is_valid_tax_id(value: str | None) -> bool:
    """11-digit CUIT/CUIL (dashes tolerated)."""
    if not value:
        return False
    return bool(TAX_ID_RE.match(value.replace("-", "")))


def normalize_tax_id(value: str | None) -> str | None:
    if not value:
        return None
    return value.replace("-", "").strip()
