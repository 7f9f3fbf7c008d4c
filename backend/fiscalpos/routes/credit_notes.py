# Overview: Flask API routes for credit notes (inspection and manual retry).

from flask import Blueprint, jsonify, current_app

from ..decorators import require_actor
from ..extensions import db
from ..models import CreditNote
from ..services import credit_note_service
from ..validation import BusinessRuleError, NotFoundError


credit_notes_bp = Blueprint("credit_notes", __name__, url_prefix="/api/credit-notes")


@credit_notes_bp.get("/<int:credit_note_id>")
@require_actor
def get_credit_note_route(credit_note_id: int):
    credit_note = db.session.query(CreditNote).filter_by(id=credit_note_id).first()
    if not credit_note:
        return jsonify({"error": "Credit note not found"}), 404
    return jsonify({"credit_note": credit_note.to_dict()}), 200


@credit_notes_bp.post("/<int:credit_note_id>/retry")
@require_actor
def retry_credit_note_route(credit_note_id: int):
    try:
        credit_note = credit_note_service.retry_credit_note(credit_note_id)
        return jsonify({"credit_note": credit_note.to_dict()}), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except BusinessRuleError as e:
        return jsonify(e.to_dict()), 409
    except Exception:
        current_app.logger.exception("Failed to retry credit note")
        return jsonify({"error": "Internal server error"}), 500
