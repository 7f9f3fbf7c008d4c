from __future__ import annotations

from ..extensions import db
from fiscalpos.time_utils import to_utc_z


class Alert(db.Model):
    """
    Operational alert for owners and branch managers.

    ALERT TYPES: LOW_STOCK, LARGE_DISCOUNT, HIGH_VALUE_SALE, VOIDED_SALE,
    FAILED_INVOICE, FAILED_CREDIT_NOTE.
    SEVERITY: LOW, MEDIUM, HIGH, CRITICAL.
    """
    __tablename__ = "alerts"
    __table_args__ = (
        db.Index("ix_alerts_branch_created", "branch_id", "created_at"),
        db.Index("ix_alerts_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    alert_type = db.Column(db.String(32), nullable=False, index=True)
    severity = db.Column(db.String(16), nullable=False, default="MEDIUM")

    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=True)
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "alert_type": self.alert_type,
            "severity": self.severity,
            "branch_id": self.branch_id,
            "user_id": self.user_id,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "title": self.title,
            "message": self.message,
            "is_read": self.is_read,
            "created_at": to_utc_z(self.created_at),
        }
