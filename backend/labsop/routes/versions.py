"""SOP version lifecycle routes."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .. import schemas
from ..actors import get_current_actor
from ..database import get_db
from ..services import sop_editor, sop_versions, version_compare
from ..services.errors import SOPConfigError, SOPNotFound
from .http_errors import sop_http_error, stale_write_error

# purpose: cut, review, approve, activate and compare SOP versions
# status: pilot
# depends_on: backend.labsop.services.sop_versions, backend.labsop.services.version_compare

router = APIRouter(prefix="/api/sop", tags=["sop", "versions"])


@router.post(
    "/templates/{template_id}/versions",
    status_code=status.HTTP_201_CREATED,
    response_model=schemas.SOPVersionOut,
)
def cut_version(
    template_id: UUID,
    payload: schemas.SOPVersionCreate,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    try:
        version = sop_versions.cut_version(db, template_id, payload, actor=actor)
        db.commit()
        db.refresh(version)
    except SOPConfigError as exc:
        db.rollback()
        raise sop_http_error(exc) from exc
    return version


@router.get(
    "/templates/{template_id}/versions",
    response_model=list[schemas.SOPVersionOut],
)
def list_versions(
    template_id: UUID,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    try:
        sop_editor.get_template(db, template_id)
    except SOPConfigError as exc:
        raise sop_http_error(exc) from exc
    return sop_versions.list_versions(db, template_id)


@router.get(
    "/templates/{template_id}/versions/current",
    response_model=schemas.SOPVersionOut,
)
def get_current_version(
    template_id: UUID,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    try:
        sop_editor.get_template(db, template_id)
        version = sop_versions.current_version(db, template_id)
        if version is None:
            raise SOPNotFound(f"template {template_id} has no version in force")
    except SOPConfigError as exc:
        raise sop_http_error(exc) from exc
    return version


@router.get("/versions/compare", response_model=schemas.SOPVersionComparison)
def compare_versions(
    old_id: UUID,
    new_id: UUID,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    try:
        old = sop_versions.get_version(db, old_id)
        new = sop_versions.get_version(db, new_id)
        return version_compare.build_comparison(old, new)
    except SOPConfigError as exc:
        raise sop_http_error(exc) from exc


@router.get("/versions/{version_id}", response_model=schemas.SOPVersionOut)
def get_version(
    version_id: UUID,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    try:
        return sop_versions.get_version(db, version_id)
    except SOPConfigError as exc:
        raise sop_http_error(exc) from exc


@router.delete("/versions/{version_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_version(
    version_id: UUID,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    try:
        version = sop_versions.get_version(db, version_id)
        sop_versions.delete_version(db, version, actor=actor)
        db.commit()
    except SOPConfigError as exc:
        db.rollback()
        raise sop_http_error(exc) from exc
    except StaleDataError as exc:
        db.rollback()
        raise stale_write_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


def _run_transition(db: Session, version_id: UUID, apply):
    try:
        version = sop_versions.get_version(db, version_id)
        apply(version)
        db.commit()
        db.refresh(version)
    except SOPConfigError as exc:
        db.rollback()
        raise sop_http_error(exc) from exc
    except StaleDataError as exc:
        db.rollback()
        raise stale_write_error(exc) from exc
    return version


@router.post("/versions/{version_id}/submit", response_model=schemas.SOPVersionOut)
def submit_version(
    version_id: UUID,
    expected_revision: int | None = None,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    return _run_transition(
        db,
        version_id,
        lambda version: sop_versions.submit_for_review(
            db, version, actor=actor, expected_revision=expected_revision
        ),
    )


@router.post("/versions/{version_id}/approve", response_model=schemas.SOPVersionOut)
def approve_version(
    version_id: UUID,
    expected_revision: int | None = None,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    return _run_transition(
        db,
        version_id,
        lambda version: sop_versions.approve(
            db, version, approver=actor, expected_revision=expected_revision
        ),
    )


@router.post("/versions/{version_id}/reject", response_model=schemas.SOPVersionOut)
def reject_version(
    version_id: UUID,
    expected_revision: int | None = None,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    return _run_transition(
        db,
        version_id,
        lambda version: sop_versions.reject(
            db, version, actor=actor, expected_revision=expected_revision
        ),
    )


@router.post("/versions/{version_id}/deprecate", response_model=schemas.SOPVersionOut)
def deprecate_version(
    version_id: UUID,
    expected_revision: int | None = None,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    return _run_transition(
        db,
        version_id,
        lambda version: sop_versions.deprecate(
            db, version, actor=actor, expected_revision=expected_revision
        ),
    )


@router.post("/versions/{version_id}/activate", response_model=schemas.SOPVersionOut)
def activate_version(
    version_id: UUID,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    return _run_transition(
        db,
        version_id,
        lambda version: sop_versions.activate(db, version.template, version, actor=actor),
    )


@router.post(
    "/versions/{version_id}/copy",
    status_code=status.HTTP_201_CREATED,
    response_model=schemas.SOPVersionOut,
)
def copy_version(
    version_id: UUID,
    payload: schemas.SOPVersionCopy,
    db: Session = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    try:
        source = sop_versions.get_version(db, version_id)
        version = sop_versions.copy_version(db, source, payload, actor=actor)
        db.commit()
        db.refresh(version)
    except SOPConfigError as exc:
        db.rollback()
        raise sop_http_error(exc) from exc
    return version
