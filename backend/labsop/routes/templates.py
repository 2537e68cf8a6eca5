"""SOP template API routes."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .. import audit, schemas
from ..actors import get_current_actor
from ..database import get_db
from ..services import sop_editor
from ..services.errors import SOPConfigError
from .http_errors import sop_http_error, stale_write_error

# purpose: expose SOP template maintenance, structure editing and audit history
# status: pilot
# depends_on: backend.labsop.services.sop_editor

router = APIRouter(prefix="/api/sop", tags=["sop", "templates"])


@router.post(
    "/templates",
    status_code=status.HTTP_201_CREATED,
    response_model=schemas.SOPTemplateOut,
)
def create_template(
    payload: schemas.SOPTemplateCreate,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    try:
        template = sop_editor.create_template(db, payload, actor=actor)
        db.commit()
        db.refresh(template)
    except SOPConfigError as exc:
        db.rollback()
        raise sop_http_error(exc) from exc
    return template


@router.get("/templates", response_model=list[schemas.SOPTemplateSummaryOut])
def list_templates(
    search: str | None = None,
    status_filter: schemas.TemplateStatus | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    return sop_editor.list_templates(db, search=search, status=status_filter)


@router.post("/templates/status", response_model=list[schemas.SOPTemplateSummaryOut])
def set_templates_status(
    payload: schemas.SOPTemplateStatusBatch,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    try:
        templates = sop_editor.set_template_status(
            db, payload.template_ids, payload.status, actor=actor
        )
        db.commit()
        for template in templates:
            db.refresh(template)
    except SOPConfigError as exc:
        db.rollback()
        raise sop_http_error(exc) from exc
    except StaleDataError as exc:
        db.rollback()
        raise stale_write_error(exc) from exc
    return templates


@router.get("/templates/{template_id}", response_model=schemas.SOPTemplateOut)
def get_template(
    template_id: UUID,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    try:
        return sop_editor.get_template(db, template_id)
    except SOPConfigError as exc:
        raise sop_http_error(exc) from exc


@router.put("/templates/{template_id}", response_model=schemas.SOPTemplateOut)
def update_template(
    template_id: UUID,
    payload: schemas.SOPTemplateUpdate,
    expected_revision: int | None = None,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    try:
        template = sop_editor.get_template(db, template_id)
        sop_editor.update_template(
            db, template, payload, actor=actor, expected_revision=expected_revision
        )
        db.commit()
        db.refresh(template)
    except SOPConfigError as exc:
        db.rollback()
        raise sop_http_error(exc) from exc
    except StaleDataError as exc:
        db.rollback()
        raise stale_write_error(exc) from exc
    return template


@router.delete("/templates/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_template(
    template_id: UUID,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    try:
        template = sop_editor.get_template(db, template_id)
        sop_editor.delete_template(db, template, actor=actor)
        db.commit()
    except SOPConfigError as exc:
        db.rollback()
        raise sop_http_error(exc) from exc
    except StaleDataError as exc:
        db.rollback()
        raise stale_write_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/templates/{template_id}/copy",
    status_code=status.HTTP_201_CREATED,
    response_model=schemas.SOPTemplateOut,
)
def copy_template(
    template_id: UUID,
    payload: schemas.SOPTemplateCopy,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    try:
        source = sop_editor.get_template(db, template_id)
        duplicate = sop_editor.copy_template(db, source, actor=actor, name=payload.name)
        db.commit()
        db.refresh(duplicate)
    except SOPConfigError as exc:
        db.rollback()
        raise sop_http_error(exc) from exc
    return duplicate


@router.get(
    "/templates/{template_id}/summary",
    response_model=schemas.SOPTemplateStructureCounts,
)
def summarize_template(
    template_id: UUID,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    try:
        sop_editor.get_template(db, template_id)
    except SOPConfigError as exc:
        raise sop_http_error(exc) from exc
    return sop_editor.summarize_template(db, template_id)


@router.get(
    "/templates/{template_id}/audit",
    response_model=list[schemas.SOPAuditEventOut],
)
def list_template_audit(
    template_id: UUID,
    action: str | None = None,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    try:
        sop_editor.get_template(db, template_id)
    except SOPConfigError as exc:
        raise sop_http_error(exc) from exc
    return audit.list_template_events(db, template_id, action=action)


@router.get(
    "/templates/{template_id}/audit/summary",
    response_model=list[schemas.SOPAuditActionCount],
)
def summarize_template_audit(
    template_id: UUID,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    try:
        sop_editor.get_template(db, template_id)
    except SOPConfigError as exc:
        raise sop_http_error(exc) from exc
    return audit.count_actions(db, template_id)


@router.post(
    "/templates/{template_id}/steps",
    status_code=status.HTTP_201_CREATED,
    response_model=schemas.SOPStepOut,
)
def add_step(
    template_id: UUID,
    payload: schemas.SOPStepCreate,
    expected_revision: int | None = None,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    try:
        template = sop_editor.get_template(db, template_id)
        step = sop_editor.add_step(
            db, template, payload, actor=actor, expected_revision=expected_revision
        )
        db.commit()
        db.refresh(step)
    except SOPConfigError as exc:
        db.rollback()
        raise sop_http_error(exc) from exc
    except StaleDataError as exc:
        db.rollback()
        raise stale_write_error(exc) from exc
    return step


@router.put(
    "/templates/{template_id}/steps/{step_id}",
    response_model=schemas.SOPStepOut,
)
def update_step(
    template_id: UUID,
    step_id: UUID,
    payload: schemas.SOPStepUpdate,
    expected_revision: int | None = None,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    try:
        template = sop_editor.get_template(db, template_id)
        step = sop_editor.update_step(
            db, template, step_id, payload, actor=actor, expected_revision=expected_revision
        )
        db.commit()
        db.refresh(step)
    except SOPConfigError as exc:
        db.rollback()
        raise sop_http_error(exc) from exc
    except StaleDataError as exc:
        db.rollback()
        raise stale_write_error(exc) from exc
    return step


@router.post(
    "/templates/{template_id}/steps/{step_id}/move",
    response_model=list[schemas.SOPStepOut],
)
def move_step(
    template_id: UUID,
    step_id: UUID,
    payload: schemas.SOPStepMove,
    expected_revision: int | None = None,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    try:
        template = sop_editor.get_template(db, template_id)
        sop_editor.reorder_step(
            db,
            template,
            step_id,
            payload.direction,
            actor=actor,
            expected_revision=expected_revision,
        )
        db.commit()
        db.refresh(template)
    except SOPConfigError as exc:
        db.rollback()
        raise sop_http_error(exc) from exc
    except StaleDataError as exc:
        db.rollback()
        raise stale_write_error(exc) from exc
    return sorted(template.steps, key=lambda step: step.display_order)


@router.delete(
    "/templates/{template_id}/steps/{step_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_step(
    template_id: UUID,
    step_id: UUID,
    expected_revision: int | None = None,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    try:
        template = sop_editor.get_template(db, template_id)
        sop_editor.delete_step(
            db, template, step_id, actor=actor, expected_revision=expected_revision
        )
        db.commit()
    except SOPConfigError as exc:
        db.rollback()
        raise sop_http_error(exc) from exc
    except StaleDataError as exc:
        db.rollback()
        raise stale_write_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
