from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import AuditActorType, AuditLog

logger = logging.getLogger("app.audit")


def log_audit(
    db: Session,
    *,
    actor_type: AuditActorType,
    actor_id: str,
    action: str,
    success: bool,
    entity_type: str | None = None,
    entity_id: str | None = None,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditLog | None:
    """Persist one audit row in its own commit.

    A failed write is logged and rolled back; the audited action already
    happened and is not undone.
    """
    entry = AuditLog(
        ts_utc=datetime.now(timezone.utc),
        actor_type=actor_type,
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        success=success,
        details=details or {},
    )
    db.add(entry)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "audit_log_write_failed",
            extra={
                "request_id": request_id,
                "action": action,
                "actor_type": actor_type.value,
                "actor_id": actor_id,
                "entity_id": entity_id,
            },
        )
        return None

    logger.info(
        "audit_event",
        extra={
            "request_id": request_id,
            "action": action,
            "actor_type": actor_type.value,
            "actor_id": actor_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "success": success,
            "details": entry.details,
        },
    )
    return entry


def audit_request(
    request: Request,
    db: Session,
    *,
    action: str,
    entity_type: str,
    success: bool = True,
    entity_id: int | str | None = None,
    details: dict[str, Any] | None = None,
) -> AuditLog | None:
    """Audit an HTTP action on behalf of the caller resolved for ``request``."""
    is_admin = getattr(request.state, "actor", None) == "admin"
    return log_audit(
        db,
        actor_type=AuditActorType.ADMIN if is_admin else AuditActorType.USER,
        actor_id=getattr(request.state, "actor_id", None) or "anonymous",
        action=action,
        success=success,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        details=details,
        request_id=getattr(request.state, "request_id", None),
    )
