# Overview: Flask API routes for fiscal invoices (inspection, manual retry, generation).

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_actor
from ..extensions import db
from ..models import Invoice
from ..services import invoice_service
from ..services.fiscal_gateway import build_qr_url
from ..services.fiscal_state import FISCAL_STATUSES
from ..validation import BusinessRuleError, NotFoundError, ValidationError


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


def _invoice_payload(invoice: Invoice) -> dict:
    data = invoice.to_dict()
    data["qr_url"] = None
    if invoice.cae:
        data["qr_url"] = build_qr_url(
            issue_date=(invoice.issued_at or invoice.created_at).date().isoformat(),
            seller_tax_id=invoice.branch.tax_id,
            point_of_sale=invoice.point_of_sale,
            voucher_type=invoice.invoice_type,
            number=invoice.invoice_number,
            total_cents=invoice.total_cents,
            customer_document_type=invoice.customer_document_type,
            customer_document_number=invoice.customer_document_number,
            cae=invoice.cae,
        )
    return data


@invoices_bp.get("")
@require_actor
def list_invoices_route():
    """
    List invoices, newest first.

    Query params:
    - status: PENDING, ISSUED, FAILED, CANCELLED (optional)
    - branch_id (optional)
    - limit: default 50, max 200
    """
    status = (request.args.get("status") or "").upper() or None
    if status and status not in FISCAL_STATUSES:
        return jsonify({"error": f"status must be one of {', '.join(FISCAL_STATUSES)}"}), 400

    try:
        limit = min(int(request.args.get("limit", 50)), 200)
    except ValueError:
        return jsonify({"error": "limit must be an integer"}), 400

    query = db.session.query(Invoice)
    if status:
        query = query.filter(Invoice.status == status)
    branch_id = request.args.get("branch_id", type=int)
    if branch_id:
        query = query.filter(Invoice.branch_id == branch_id)

    invoices = query.order_by(Invoice.created_at.desc(), Invoice.id.desc()).limit(limit).all()
    return jsonify({"invoices": [invoice.to_dict() for invoice in invoices], "count": len(invoices)}), 200


@invoices_bp.get("/<int:invoice_id>")
@require_actor
def get_invoice_route(invoice_id: int):
    invoice = db.session.query(Invoice).filter_by(id=invoice_id).first()
    if not invoice:
        return jsonify({"error": "Invoice not found"}), 404
    return jsonify({"invoice": _invoice_payload(invoice)}), 200


@invoices_bp.post("/<int:invoice_id>/retry")
@require_actor
def retry_invoice_route(invoice_id: int):
    """Manual re-submission of a PENDING invoice with retries left."""
    try:
        invoice = invoice_service.retry_invoice(invoice_id)
        return jsonify({"invoice": _invoice_payload(invoice)}), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except BusinessRuleError as e:
        return jsonify(e.to_dict()), 409
    except Exception:
        current_app.logger.exception("Failed to retry invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/sales/<int:sale_id>/generate")
@require_actor
def generate_invoice_route(sale_id: int):
    """
    Generate the invoice for a sale synchronously.

    Returns the existing invoice untouched when the sale already has one.
    """
    try:
        invoice = invoice_service.generate_invoice_for_sale(sale_id)
        if invoice is None:
            return jsonify({"error": "Sale is voided; no invoice generated"}), 409
        return jsonify({"invoice": _invoice_payload(invoice)}), 200

    except ValidationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except BusinessRuleError as e:
        return jsonify(e.to_dict()), 409
    except Exception:
        current_app.logger.exception("Failed to generate invoice")
        return jsonify({"error": "Internal server error"}), 500
