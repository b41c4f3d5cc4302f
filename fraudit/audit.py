"""Audit trail: every pipeline mutation records one event row."""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from fraudit.models import AuditLog

log = logging.getLogger(__name__)


def record(
    session: Session,
    action: str,
    entity_type: str,
    entity_id: Any,
    details: str | None = None,
    user_id: str | None = None,
) -> AuditLog:
    """Add an audit event to the caller's unit of work. Caller must commit."""
    entry = AuditLog(
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        details=details,
    )
    session.add(entry)
    return entry


def record_isolated(
    session_factory,
    action: str,
    entity_type: str,
    entity_id: Any,
    details: str | None = None,
    user_id: str | None = None,
) -> bool:
    """Commit an audit event in its own session. Never raises.

    Used from error paths where the primary unit of work has been rolled back.
    """
    try:
        session = session_factory()
    except Exception:
        log.exception("Could not open session for audit event %s %s/%s", action, entity_type, entity_id)
        return False
    try:
        record(session, action, entity_type, entity_id, details, user_id)
        session.commit()
        return True
    except Exception:
        session.rollback()
        log.exception("Failed to write audit event %s %s/%s", action, entity_type, entity_id)
        return False
    finally:
        session.close()
