from __future__ import annotations

from ..extensions import db
from fiscalpos.time_utils import to_utc_z


class Invoice(db.Model):
    """
    Fiscal invoice for a sale (at most one per sale).

    LIFECYCLE:
    - PENDING: created, not yet accepted by the gateway (may be retried)
    - ISSUED: gateway returned a CAE
    - FAILED: non-retryable rejection or retries exhausted
    - CANCELLED: sale voided; an ISSUED invoice keeps its CAE and gets a
      credit note

    The customer fiscal fields are a snapshot taken at creation.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("sale_id", name="uq_invoices_sale"),
        db.UniqueConstraint("branch_id", "invoice_type", "invoice_number", name="uq_invoices_branch_type_number"),
        db.Index("ix_invoices_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    invoice_type = db.Column(db.String(1), nullable=False)  # A, B, C
    point_of_sale = db.Column(db.Integer, nullable=False)
    invoice_number = db.Column(db.Integer, nullable=False)

    customer_name = db.Column(db.String(255), nullable=True)
    customer_document_type = db.Column(db.String(16), nullable=True)
    customer_document_number = db.Column(db.String(32), nullable=True)
    customer_tax_condition = db.Column(db.String(32), nullable=True)
    customer_tax_id = db.Column(db.String(11), nullable=True)
    customer_address = db.Column(db.String(255), nullable=True)

    net_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="PENDING")
    cae = db.Column(db.String(32), nullable=True)
    cae_expiration = db.Column(db.Date, nullable=True)
    gateway_id = db.Column(db.String(64), nullable=True)
    gateway_response = db.Column(db.JSON, nullable=True)
    issued_at = db.Column(db.DateTime(timezone=True), nullable=True)

    retry_count = db.Column(db.Integer, nullable=False, default=0)
    last_retry_at = db.Column(db.DateTime(timezone=True), nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    # Set while one caller is sending the document to the gateway
    submission_claimed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    sale = db.relationship("Sale", backref=db.backref("invoice", uselist=False, lazy=True))
    branch = db.relationship("Branch")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def formatted_number(self) -> str:
        return f"{self.point_of_sale:04d}-{self.invoice_number:08d}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "branch_id": self.branch_id,
            "invoice_type": self.invoice_type,
            "point_of_sale": self.point_of_sale,
            "invoice_number": self.invoice_number,
            "formatted_number": self.formatted_number,
            "customer_name": self.customer_name,
            "customer_document_type": self.customer_document_type,
            "customer_document_number": self.customer_document_number,
            "customer_tax_condition": self.customer_tax_condition,
            "customer_tax_id": self.customer_tax_id,
            "customer_address": self.customer_address,
            "net_cents": self.net_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "status": self.status,
            "cae": self.cae,
            "cae_expiration": self.cae_expiration.isoformat() if self.cae_expiration else None,
            "gateway_id": self.gateway_id,
            "issued_at": to_utc_z(self.issued_at) if self.issued_at else None,
            "retry_count": self.retry_count,
            "last_retry_at": to_utc_z(self.last_retry_at) if self.last_retry_at else None,
            "error_message": self.error_message,
            "created_at": to_utc_z(self.created_at),
        }


class CreditNote(db.Model):
    """
    Compensating fiscal document for an ISSUED invoice whose sale was voided.

    Same lifecycle and retry fields as Invoice; credit_note_type mirrors the
    original invoice type and numbering is per (branch, type).
    """
    __tablename__ = "credit_notes"
    __table_args__ = (
        db.UniqueConstraint("original_invoice_id", name="uq_credit_notes_original_invoice"),
        db.UniqueConstraint("branch_id", "credit_note_type", "credit_note_number", name="uq_credit_notes_branch_type_number"),
        db.Index("ix_credit_notes_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    original_invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    credit_note_type = db.Column(db.String(1), nullable=False)  # A, B, C
    point_of_sale = db.Column(db.Integer, nullable=False)
    credit_note_number = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)

    net_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="PENDING")
    cae = db.Column(db.String(32), nullable=True)
    cae_expiration = db.Column(db.Date, nullable=True)
    gateway_id = db.Column(db.String(64), nullable=True)
    gateway_response = db.Column(db.JSON, nullable=True)
    issued_at = db.Column(db.DateTime(timezone=True), nullable=True)

    retry_count = db.Column(db.Integer, nullable=False, default=0)
    last_retry_at = db.Column(db.DateTime(timezone=True), nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    # Set while one caller is sending the document to the gateway
    submission_claimed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    original_invoice = db.relationship("Invoice", backref=db.backref("credit_note", uselist=False, lazy=True))
    branch = db.relationship("Branch")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def formatted_number(self) -> str:
        return f"{self.point_of_sale:04d}-{self.credit_note_number:08d}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "original_invoice_id": self.original_invoice_id,
            "sale_id": self.sale_id,
            "branch_id": self.branch_id,
            "credit_note_type": self.credit_note_type,
            "point_of_sale": self.point_of_sale,
            "credit_note_number": self.credit_note_number,
            "formatted_number": self.formatted_number,
            "reason": self.reason,
            "net_cents": self.net_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "status": self.status,
            "cae": self.cae,
            "cae_expiration": self.cae_expiration.isoformat() if self.cae_expiration else None,
            "gateway_id": self.gateway_id,
            "issued_at": to_utc_z(self.issued_at) if self.issued_at else None,
            "retry_count": self.retry_count,
            "last_retry_at": to_utc_z(self.last_retry_at) if self.last_retry_at else None,
            "error_message": self.error_message,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
