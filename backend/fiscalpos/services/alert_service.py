# Overview: Operational alert sink (persist + publish). Never raises to the caller.

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Alert
from .notifier import OWNERS_TOPIC, get_notifier


# =============================================================================
# ALERT TYPES / SEVERITIES (CONSTANTS)
# =============================================================================

ALERT_LOW_STOCK = "LOW_STOCK"
ALERT_LARGE_DISCOUNT = "LARGE_DISCOUNT"
ALERT_HIGH_VALUE_SALE = "HIGH_VALUE_SALE"
ALERT_VOIDED_SALE = "VOIDED_SALE"
ALERT_FAILED_INVOICE = "FAILED_INVOICE"
ALERT_FAILED_CREDIT_NOTE = "FAILED_CREDIT_NOTE"

SEVERITY_LOW = "LOW"
SEVERITY_MEDIUM = "MEDIUM"
SEVERITY_HIGH = "HIGH"
SEVERITY_CRITICAL = "CRITICAL"


def raise_alert(
    *,
    alert_type: str,
    severity: str,
    branch_id: int | None,
    title: str,
    message: str | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    user_id: int | None = None,
) -> Alert | None:
    """
    Persist an alert in its own short transaction and publish it.

    Call only after the caller's own work is committed. Storage failures are
    logged and swallowed: an alert must never undo or fail the operation it
    reports on.
    """
    alert = Alert(
        alert_type=alert_type,
        severity=severity,
        branch_id=branch_id,
        user_id=user_id,
        reference_type=reference_type,
        reference_id=reference_id,
        title=title[:255],
        message=message,
    )
    try:
        db.session.add(alert)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to persist %s alert for %s %s", alert_type, reference_type, reference_id)
        return None

    event = {"type": "ALERT_CREATED", "alert": alert.to_dict()}
    if branch_id is not None:
        get_notifier().publish_branch(branch_id, event)
    else:
        get_notifier().publish(OWNERS_TOPIC, event)
    return alert
