from datetime import datetime, timezone
from uuid import UUID
from sqlalchemy.orm import Session
from sqlalchemy import func
from . import models


def record_sop_event(
    db: Session,
    actor: str,
    action: str,
    template_id: UUID | None = None,
    version_id: UUID | None = None,
    detail: dict | None = None,
) -> models.SOPAuditEvent:
    event = models.SOPAuditEvent(
        template_id=template_id,
        version_id=version_id,
        actor=actor,
        action=action,
        detail=detail or {},
        created_at=datetime.now(timezone.utc),
    )
    db.add(event)
    return event


def list_template_events(
    db: Session,
    template_id: UUID,
    action: str | None = None,
) -> list[models.SOPAuditEvent]:
    query = db.query(models.SOPAuditEvent).filter(models.SOPAuditEvent.template_id == template_id)
    if action:
        query = query.filter(models.SOPAuditEvent.action == action)
    return query.order_by(models.SOPAuditEvent.created_at.desc()).all()


def count_actions(db: Session, template_id: UUID):
    rows = (
        db.query(models.SOPAuditEvent.action, func.count(models.SOPAuditEvent.id))
        .filter(models.SOPAuditEvent.template_id == template_id)
        .group_by(models.SOPAuditEvent.action)
        .all()
    )
    return [{"action": r[0], "count": r[1]} for r in rows]
