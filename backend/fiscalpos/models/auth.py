from __future__ import annotations

from ..extensions import db
from fiscalpos.time_utils import to_utc_z
from fiscalpos.validation import bps_to_percent


class Role(db.Model):
    """
    Role with the capability flags the sale engine consults.

    max_discount_bps is the largest discount (basis points) a holder may
    grant without a supervisor PIN, and the largest a holder may approve
    when acting as supervisor.
    """
    __tablename__ = "roles"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_roles_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(32), nullable=False)
    description = db.Column(db.String(255), nullable=True)

    can_void_sale = db.Column(db.Boolean, nullable=False, default=False)
    can_give_discount = db.Column(db.Boolean, nullable=False, default=False)
    max_discount_bps = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "can_void_sale": self.can_void_sale,
            "can_give_discount": self.can_give_discount,
            "max_discount_percent": bps_to_percent(self.max_discount_bps),
        }


class User(db.Model):
    """
    Staff member. pin_hash is a bcrypt hash of the supervisor PIN used for
    discount approval and void authorization; NULL means the user cannot
    authorize by PIN.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("username", name="uq_users_username"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), nullable=False)
    first_name = db.Column(db.String(64), nullable=True)
    last_name = db.Column(db.String(64), nullable=True)

    role_id = db.Column(db.Integer, db.ForeignKey("roles.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)

    pin_hash = db.Column(db.String(255), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    role = db.relationship("Role", backref=db.backref("users", lazy=True))

    @property
    def display_name(self) -> str:
        full = " ".join(p for p in (self.first_name, self.last_name) if p)
        return full or self.username

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "role_id": self.role_id,
            "role": self.role.name if self.role else None,
            "branch_id": self.branch_id,
            "has_pin": self.pin_hash is not None,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
