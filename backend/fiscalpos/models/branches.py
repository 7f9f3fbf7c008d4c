from __future__ import annotations

from ..extensions import db
from fiscalpos.time_utils import to_utc_z


class Branch(db.Model):
    """
    A physical store. Carries the seller-side fiscal identity used when
    invoicing (tax condition, tax id, AFIP point of sale).
    """
    __tablename__ = "branches"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_branches_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(16), nullable=False)
    name = db.Column(db.String(128), nullable=False)

    # RESPONSABLE_INSCRIPTO, MONOTRIBUTO, EXENTO
    tax_condition = db.Column(db.String(32), nullable=False, default="RESPONSABLE_INSCRIPTO")
    tax_id = db.Column(db.String(11), nullable=True)
    point_of_sale = db.Column(db.Integer, nullable=False, default=1)
    address = db.Column(db.String(255), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "tax_condition": self.tax_condition,
            "tax_id": self.tax_id,
            "point_of_sale": self.point_of_sale,
            "address": self.address,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class CashRegister(db.Model):
    """POS terminal within a branch."""
    __tablename__ = "cash_registers"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "register_number", name="uq_cash_registers_branch_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    register_number = db.Column(db.Integer, nullable=False)
    name = db.Column(db.String(64), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    branch = db.relationship("Branch", backref=db.backref("registers", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "register_number": self.register_number,
            "name": self.name or f"Caja {self.register_number}",
            "is_active": self.is_active,
        }


class RegisterSession(db.Model):
    """
    One shift on a register, OPEN until a blind closing.

    business_date is the branch-local calendar day the shift belongs to; the
    void window compares against it.
    """
    __tablename__ = "register_sessions"
    __table_args__ = (
        db.Index("ix_register_sessions_register_status", "register_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="OPEN")  # OPEN, CLOSED
    business_date = db.Column(db.Date, nullable=False)

    opened_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    opening_cash_cents = db.Column(db.Integer, nullable=False, default=0)

    closed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    declared_cash_cents = db.Column(db.Integer, nullable=True)

    register = db.relationship("CashRegister", backref=db.backref("sessions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "register_id": self.register_id,
            "status": self.status,
            "business_date": self.business_date.isoformat() if self.business_date else None,
            "opened_by_user_id": self.opened_by_user_id,
            "opened_at": to_utc_z(self.opened_at),
            "opening_cash_cents": self.opening_cash_cents,
            "closed_by_user_id": self.closed_by_user_id,
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "declared_cash_cents": self.declared_cash_cents,
        }
