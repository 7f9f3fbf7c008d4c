# Overview: Flask API routes for sales; parses input and returns JSON responses.

# backend/fiscalpos/routes/sales.py
"""Sales API routes"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor
from ..services import sale_service, void_service
from ..validation import BusinessRuleError, NotFoundError, ValidationError


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
@require_actor
def create_sale_route():
    """
    Record a completed sale.

    Body: session_id, items[{product_id, quantity, discount_cents?}],
    payments[{payment_method_code, amount_cents, ...}], customer_id?,
    discount_type?, discount_percent? | discount_amount_cents?,
    discount_reason?, supervisor_pin?, points_to_redeem?,
    credit_to_use_cents?, change_as_credit_cents?, invoice_override?, notes?

    Invoice generation starts after the response is committed; the sale is
    returned as soon as it is recorded.
    """
    try:
        data = request.get_json(silent=True) or {}
        sale = sale_service.create_sale(data, g.current_user)
        return jsonify({"sale": sale.to_dict(include_lines=True)}), 201

    except ValidationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except BusinessRuleError as e:
        return jsonify(e.to_dict()), 409
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_actor
def get_sale_route(sale_id: int):
    """Sale with items, payments and its invoice (if any)."""
    try:
        sale = sale_service.get_sale(sale_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404

    return jsonify({
        "sale": sale.to_dict(include_lines=True),
        "invoice": sale.invoice.to_dict() if sale.invoice else None,
    }), 200


@sales_bp.post("/<int:sale_id>/void")
@require_actor
def void_sale_route(sale_id: int):
    """
    Void a sale from the current business day.

    Body: reason (required), supervisor_pin (when the actor's role cannot void)
    """
    try:
        data = request.get_json(silent=True) or {}
        sale = void_service.void_sale(
            sale_id,
            g.current_user,
            reason=data.get("reason"),
            supervisor_pin=data.get("supervisor_pin"),
        )
        return jsonify({"sale": sale.to_dict(include_lines=True)}), 200

    except ValidationError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except BusinessRuleError as e:
        return jsonify(e.to_dict()), 409
    except Exception:
        current_app.logger.exception("Failed to void sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>/invoice")
@require_actor
def get_sale_invoice_route(sale_id: int):
    try:
        sale = sale_service.get_sale(sale_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404

    if not sale.invoice:
        return jsonify({"error": "Invoice not found for this sale"}), 404
    return jsonify({"invoice": sale.invoice.to_dict()}), 200
