# Overview: Append-only audit trail writer.

from __future__ import annotations

from typing import Optional
from datetime import datetime

from ..extensions import db
from ..models import AuditEvent
"""
Audit Trail Invariants (authoritative)

- Append-only log for cross-cutting domain events.
- No domain/business logic in the audit trail itself.
- Events are written inside the same DB transaction as the domain event they record.
- occurred_at is business time; created_at is system time (DB default).
"""


def append_audit_event(
    *,
    branch_id: int,
    event_type: str,
    event_category: str,
    entity_type: str,
    entity_id: int,
    actor_user_id: int | None = None,
    sale_id: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[dict] = None,
) -> AuditEvent:
    """
    Append-only audit event.

    - No domain logic here.
    - No deletes/updates of existing events.
    """
    ev = AuditEvent(
        branch_id=branch_id,
        event_type=event_type,
        event_category=event_category,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        sale_id=sale_id,
        occurred_at=occurred_at,  # if None, db default applies
        note=note[:255] if note else note,
        payload=payload,
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev
