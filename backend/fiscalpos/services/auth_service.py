# Overview: Supervisor PIN hashing and lookup; default role bootstrap.

"""
Supervisor PIN authorization.

WHY: Discounts above a cashier's limit and voids by users without the
capability need a second person on the spot. The supervisor types a PIN on
the cashier's terminal; the PIN is matched against every eligible user.

SECURITY NOTES:
- PINs hashed with bcrypt (cost factor from PIN_HASH_ROUNDS, 12 by default)
- 4 to 8 digits
- Inactive users never authorize
"""

from __future__ import annotations

import re
from typing import Callable

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import User, Role
from ..validation import ValidationError


PIN_RE = re.compile(r"^\d{4,8}$")

DEFAULT_ROLES = (
    # name, can_void_sale, can_give_discount, max_discount_bps
    ("owner", True, True, 10000),
    ("manager", True, True, 3000),
    ("cashier", False, True, 500),
)


def validate_pin_format(pin: str) -> None:
    if not isinstance(pin, str) or not PIN_RE.match(pin):
        raise ValidationError("PIN must be 4 to 8 digits")


def hash_pin(pin: str) -> str:
    """Hash PIN using bcrypt. PIN format is validated before hashing."""
    validate_pin_format(pin)
    rounds = int(current_app.config.get("PIN_HASH_ROUNDS", 12))
    hashed = bcrypt.hashpw(pin.encode('utf-8'), bcrypt.gensalt(rounds=rounds))
    return hashed.decode('utf-8')


def verify_pin(pin: str, pin_hash: str | None) -> bool:
    """
    Verify PIN against bcrypt hash.

    WHY timing-safe: bcrypt.checkpw() prevents timing attacks automatically.
    """
    if not pin or not pin_hash:
        return False
    try:
        return bcrypt.checkpw(pin.encode('utf-8'), pin_hash.encode('utf-8'))
    except ValueError:
        # Malformed stored hash
        return False


def set_user_pin(user: User, pin: str) -> User:
    user.pin_hash = hash_pin(pin)
    db.session.add(user)
    return user


def find_user_by_pin(pin: str, role_filter, accept: Callable[[User], bool] | None = None) -> User | None:
    """
    Return the first active user matching `role_filter` whose PIN hash
    verifies and who passes `accept`. Ordered by user id so the outcome is
    deterministic.
    """
    if not pin:
        return None

    candidates = (
        db.session.query(User)
        .join(Role, Role.id == User.role_id)
        .filter(User.is_active.is_(True), User.pin_hash.isnot(None), role_filter)
        .order_by(User.id.asc())
        .all()
    )
    for candidate in candidates:
        if not verify_pin(pin, candidate.pin_hash):
            continue
        if accept is not None and not accept(candidate):
            continue
        return candidate
    return None


def create_default_roles() -> list[Role]:
    """Idempotent: creates missing default roles, leaves existing ones untouched."""
    roles = []
    for name, can_void, can_discount, max_bps in DEFAULT_ROLES:
        role = db.session.query(Role).filter_by(name=name).first()
        if not role:
            role = Role(
                name=name,
                can_void_sale=can_void,
                can_give_discount=can_discount,
                max_discount_bps=max_bps,
            )
            db.session.add(role)
        roles.append(role)
    db.session.flush()
    return roles
