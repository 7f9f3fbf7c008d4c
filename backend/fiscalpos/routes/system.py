# backend/fiscalpos/routes/system.py
"""
System health endpoint.

Reports database connectivity, fiscal gateway reachability, and the
backlog of fiscal documents waiting for the retry sweep.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import CreditNote, Invoice
from ..services.fiscal_gateway import get_gateway
from ..services.fiscal_state import STATUS_FAILED, STATUS_PENDING
from fiscalpos.time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity and the fiscal backlog.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        pending = db.session.query(func.count(Invoice.id)).filter(Invoice.status == STATUS_PENDING).scalar()
        failed = db.session.query(func.count(Invoice.id)).filter(Invoice.status == STATUS_FAILED).scalar()
        pending_notes = db.session.query(func.count(CreditNote.id)).filter(CreditNote.status == STATUS_PENDING).scalar()
        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "pending_invoices": pending,
                "failed_invoices": failed,
                "pending_credit_notes": pending_notes,
            },
        }
    except SQLAlchemyError:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_gateway_health() -> dict:
    """
    Gateway reachability. An unreachable gateway only degrades the service:
    sales keep working and invoices wait in PENDING.
    """
    start_time = time.time()
    status = get_gateway().check_status()
    elapsed_ms = (time.time() - start_time) * 1000
    if status.connected:
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2), "details": status.detail}
    return {"status": "degraded", "latency_ms": round(elapsed_ms, 2), "error": status.error}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: database reachable (gateway may be degraded)
    - 503: database unhealthy
    """
    database_health = check_database_health()
    gateway_health = check_gateway_health()

    if database_health["status"] == "unhealthy":
        overall = "unhealthy"
    elif gateway_health["status"] != "healthy":
        overall = "degraded"
    else:
        overall = "healthy"

    return {
        "status": overall,
        "timestamp": utcnow().isoformat() + "Z",
        "checks": {
            "database": database_health,
            "fiscal_gateway": gateway_health,
        },
    }, 503 if overall == "unhealthy" else 200
