from __future__ import annotations

from datetime import datetime
import logging
from typing import Optional, Sequence

from sqlalchemy.orm import Session

from . import models, schemas

logger = logging.getLogger(__name__)


def create_audit_event(
    db: Session,
    *,
    tenant_id: str,
    data: schemas.AuditEventCreate,
) -> models.AuditEvent:
    event = models.AuditEvent(
        tenant_id=tenant_id,
        entity_type=data.entity_type,
        entity_id=data.entity_id,
        action=data.action,
        actor_user_id=data.actor_user_id,
        before=data.before,
        after=data.after,
        correlation_id=data.correlation_id,
        metadata_json=data.metadata,
    )
    if data.occurred_at is not None:
        event.occurred_at = data.occurred_at
    db.add(event)
    db.flush()
    return event


def log_event(
    db: Session,
    *,
    tenant_id: str,
    actor_user_id: Optional[str],
    entity_type: str,
    entity_id: str,
    action: str,
    before: Optional[dict] = None,
    after: Optional[dict] = None,
    correlation_id: Optional[str] = None,
    metadata: Optional[dict] = None,
    critical: bool = False,
) -> Optional[models.AuditEvent]:
    """
    Best-effort activity logger.

    The insert runs inside a SAVEPOINT so a failed write is rolled back on
    its own and the caller's business transaction carries on.
    - For critical actions, raise on failure.
    - For non-critical actions, log warning and continue.
    """
    try:
        with db.begin_nested():
            event = create_audit_event(
                db,
                tenant_id=tenant_id,
                data=schemas.AuditEventCreate(
                    entity_type=entity_type,
                    entity_id=entity_id,
                    action=action,
                    actor_user_id=actor_user_id,
                    before=before,
                    after=after,
                    correlation_id=correlation_id,
                    metadata=metadata,
                ),
            )
        return event
    except Exception:
        logger.warning(
            "Failed to log audit event",
            exc_info=True,
            extra={
                "tenant_id": tenant_id,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "action": action,
                "critical": critical,
            },
        )
        if critical:
            raise
        return None


def list_audit_events(
    db: Session,
    *,
    tenant_id: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = 200,
) -> Sequence[models.AuditEvent]:
    query = db.query(models.AuditEvent).filter(models.AuditEvent.tenant_id == tenant_id)
    if entity_type:
        query = query.filter(models.AuditEvent.entity_type == entity_type)
    if entity_id:
        query = query.filter(models.AuditEvent.entity_id == entity_id)
    if start:
        query = query.filter(models.AuditEvent.occurred_at >= start)
    if end:
        query = query.filter(models.AuditEvent.occurred_at <= end)
    return query.order_by(models.AuditEvent.occurred_at.desc()).limit(limit).all()
