"""Step field and quality-control configuration routes."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .. import schemas
from ..actors import get_current_actor
from ..database import get_db
from ..services import sop_editor
from ..services.errors import SOPConfigError
from .http_errors import sop_http_error, stale_write_error

# purpose: configure data-entry fields and QC checkpoints of a single SOP step
# status: pilot
# depends_on: backend.labsop.services.sop_editor

router = APIRouter(prefix="/api/sop/steps", tags=["sop", "step-config"])


@router.get("/{step_id}", response_model=schemas.SOPStepDetailOut)
def get_step(
    step_id: UUID,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    try:
        return sop_editor.get_step(db, step_id)
    except SOPConfigError as exc:
        raise sop_http_error(exc) from exc


@router.get("/{step_id}/validation", response_model=schemas.StepValidationReport)
def validate_step(
    step_id: UUID,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    try:
        step = sop_editor.get_step(db, step_id)
    except SOPConfigError as exc:
        raise sop_http_error(exc) from exc
    return sop_editor.validate_step_configuration(step)


@router.post(
    "/{step_id}/fields",
    status_code=status.HTTP_201_CREATED,
    response_model=schemas.StepFieldOut,
)
def add_field(
    step_id: UUID,
    payload: schemas.StepFieldCreate,
    expected_revision: int | None = None,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    try:
        step = sop_editor.get_step(db, step_id)
        field = sop_editor.add_field(
            db, step, payload, actor=actor, expected_revision=expected_revision
        )
        db.commit()
        db.refresh(field)
    except SOPConfigError as exc:
        db.rollback()
        raise sop_http_error(exc) from exc
    except StaleDataError as exc:
        db.rollback()
        raise stale_write_error(exc) from exc
    return field


@router.put("/{step_id}/fields/{field_key}", response_model=schemas.StepFieldOut)
def update_field(
    step_id: UUID,
    field_key: str,
    payload: schemas.StepFieldUpdate,
    expected_revision: int | None = None,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    try:
        step = sop_editor.get_step(db, step_id)
        field = sop_editor.update_field(
            db, step, field_key, payload, actor=actor, expected_revision=expected_revision
        )
        db.commit()
        db.refresh(field)
    except SOPConfigError as exc:
        db.rollback()
        raise sop_http_error(exc) from exc
    except StaleDataError as exc:
        db.rollback()
        raise stale_write_error(exc) from exc
    return field


@router.delete(
    "/{step_id}/fields/{field_key}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_field(
    step_id: UUID,
    field_key: str,
    cascade: bool = False,
    expected_revision: int | None = None,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    try:
        step = sop_editor.get_step(db, step_id)
        sop_editor.delete_field(
            db,
            step,
            field_key,
            actor=actor,
            cascade=cascade,
            expected_revision=expected_revision,
        )
        db.commit()
    except SOPConfigError as exc:
        db.rollback()
        raise sop_http_error(exc) from exc
    except StaleDataError as exc:
        db.rollback()
        raise stale_write_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{step_id}/qc-points",
    status_code=status.HTTP_201_CREATED,
    response_model=schemas.QualityControlPointOut,
)
def add_qc_point(
    step_id: UUID,
    payload: schemas.QualityControlPointCreate,
    expected_revision: int | None = None,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    try:
        step = sop_editor.get_step(db, step_id)
        point = sop_editor.add_qc_point(
            db, step, payload, actor=actor, expected_revision=expected_revision
        )
        db.commit()
        db.refresh(point)
    except SOPConfigError as exc:
        db.rollback()
        raise sop_http_error(exc) from exc
    except StaleDataError as exc:
        db.rollback()
        raise stale_write_error(exc) from exc
    return point


@router.post(
    "/{step_id}/qc-points/activation",
    response_model=list[schemas.QualityControlPointOut],
)
def set_qc_activation(
    step_id: UUID,
    payload: schemas.QualityControlActivation,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    try:
        step = sop_editor.get_step(db, step_id)
        points = sop_editor.set_step_qc_active(db, step, payload.is_active, actor=actor)
        db.commit()
        for point in points:
            db.refresh(point)
    except SOPConfigError as exc:
        db.rollback()
        raise sop_http_error(exc) from exc
    except StaleDataError as exc:
        db.rollback()
        raise stale_write_error(exc) from exc
    return points


@router.put(
    "/{step_id}/qc-points/{qc_id}",
    response_model=schemas.QualityControlPointOut,
)
def update_qc_point(
    step_id: UUID,
    qc_id: UUID,
    payload: schemas.QualityControlPointUpdate,
    expected_revision: int | None = None,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    try:
        step = sop_editor.get_step(db, step_id)
        point = sop_editor.update_qc_point(
            db, step, qc_id, payload, actor=actor, expected_revision=expected_revision
        )
        db.commit()
        db.refresh(point)
    except SOPConfigError as exc:
        db.rollback()
        raise sop_http_error(exc) from exc
    except StaleDataError as exc:
        db.rollback()
        raise stale_write_error(exc) from exc
    return point


@router.delete(
    "/{step_id}/qc-points/{qc_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_qc_point(
    step_id: UUID,
    qc_id: UUID,
    expected_revision: int | None = None,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    try:
        step = sop_editor.get_step(db, step_id)
        sop_editor.delete_qc_point(
            db, step, qc_id, actor=actor, expected_revision=expected_revision
        )
        db.commit()
    except SOPConfigError as exc:
        db.rollback()
        raise sop_http_error(exc) from exc
    except StaleDataError as exc:
        db.rollback()
        raise stale_write_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{step_id}/qc-points/{qc_id}/toggle",
    response_model=schemas.QualityControlPointOut,
)
def toggle_qc_point(
    step_id: UUID,
    qc_id: UUID,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    try:
        step = sop_editor.get_step(db, step_id)
        point = sop_editor.toggle_qc_point(db, step, qc_id, actor=actor)
        db.commit()
        db.refresh(point)
    except SOPConfigError as exc:
        db.rollback()
        raise sop_http_error(exc) from exc
    except StaleDataError as exc:
        db.rollback()
        raise stale_write_error(exc) from exc
    return point
