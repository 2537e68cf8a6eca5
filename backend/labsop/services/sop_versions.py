"""SOP version lifecycle: cutting, review, approval, activation and retirement."""

from __future__ import annotations

import re
import threading
from datetime import datetime, timezone
from typing import Dict, Iterable
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import audit, models, schemas
from .errors import (
    ConfigurationConflict,
    InvalidConfiguration,
    InvalidTransition,
    ReferentialIntegrityViolation,
    SOPNotFound,
)

# purpose: drive versions through draft/review/approved/active and keep one current version per template
# status: pilot
# depends_on: backend.labsop.models.SOPVersion

VERSION_PATTERN = re.compile(r"^v\d+\.\d+\.\d+(-[0-9A-Za-z.-]+)?$")

_activation_locks: Dict[UUID, threading.Lock] = {}
_activation_registry_lock = threading.Lock()


def _activation_lock(template_id: UUID) -> threading.Lock:
    with _activation_registry_lock:
        lock = _activation_locks.get(template_id)
        if lock is None:
            lock = threading.Lock()
            _activation_locks[template_id] = lock
        return lock


def discard_activation_lock(template_id: UUID) -> None:
    with _activation_registry_lock:
        _activation_locks.pop(template_id, None)


def build_snapshot(template: models.SOPTemplate) -> dict:
    """Capture step identity and names, with their field keys and QC point ids."""

    steps = []
    for step in sorted(template.steps, key=lambda item: item.display_order):
        steps.append(
            {
                "id": str(step.id),
                "name": step.name,
                "display_order": step.display_order,
                "field_keys": [field.field_key for field in sorted(step.fields, key=lambda f: f.display_order)],
                "qc_point_ids": [str(point.id) for point in sorted(step.qc_points, key=lambda p: p.display_order)],
            }
        )
    return {"steps": steps}


def _capture_structure(version: models.SOPVersion, template: models.SOPTemplate) -> None:
    version.snapshot = build_snapshot(template)
    version.step_count = template.step_count
    version.field_count = template.field_count
    version.qc_point_count = template.qc_point_count


def _require_version_metadata(template: models.SOPTemplate) -> None:
    missing = []
    if not (template.name or "").strip():
        missing.append("name")
    if not (template.description or "").strip():
        missing.append("description")
    if not template.applicable_projects:
        missing.append("applicable projects")
    if missing:
        raise InvalidConfiguration(
            f"template {template.id} needs {', '.join(missing)} before a version can be cut"
        )


def _validate_version_string(db: Session, template_id: UUID, version: str) -> str:
    text = (version or "").strip()
    if not VERSION_PATTERN.match(text):
        raise InvalidConfiguration(f"'{version}' is not a version string such as v1.2.0")
    exists = (
        db.query(models.SOPVersion.id)
        .filter(
            models.SOPVersion.template_id == template_id,
            models.SOPVersion.version == text,
        )
        .first()
    )
    if exists:
        raise InvalidConfiguration(f"version {text} already exists for template {template_id}")
    return text


def _clean_features(features: Dict[str, str]) -> Dict[str, str]:
    cleaned: Dict[str, str] = {}
    for name, value in features.items():
        key = (name or "").strip()
        if not key:
            raise InvalidConfiguration("feature names cannot be blank")
        cleaned[key] = "" if value is None else str(value)
    return cleaned


def _insert_version(db: Session, template: models.SOPTemplate, version: models.SOPVersion) -> None:
    template.versions.append(version)
    try:
        db.flush()
    except IntegrityError as exc:
        # another editor stored the same version string after our check
        raise InvalidConfiguration(
            f"version {version.version} already exists for template {template.id}"
        ) from exc


def _check_revision(version: models.SOPVersion, expected_revision: int | None) -> None:
    if expected_revision is not None and expected_revision != version.revision:
        raise ConfigurationConflict(
            f"version {version.version} is at revision {version.revision}, not {expected_revision}"
        )


def get_version(db: Session, version_id: UUID) -> models.SOPVersion:
    version = db.get(models.SOPVersion, version_id)
    if not version:
        raise SOPNotFound(f"version {version_id} not found")
    return version


def list_versions(db: Session, template_id: UUID) -> list[models.SOPVersion]:
    return (
        db.query(models.SOPVersion)
        .filter(models.SOPVersion.template_id == template_id)
        .order_by(models.SOPVersion.created_at.desc(), models.SOPVersion.version.desc())
        .all()
    )


def current_version(db: Session, template_id: UUID) -> models.SOPVersion | None:
    return (
        db.query(models.SOPVersion)
        .filter(
            models.SOPVersion.template_id == template_id,
            models.SOPVersion.is_current.is_(True),
        )
        .one_or_none()
    )


def cut_version(
    db: Session,
    template_id: UUID,
    payload: schemas.SOPVersionCreate,
    *,
    actor: str,
) -> models.SOPVersion:
    """Create a draft version that records the template's present shape."""

    template = db.get(models.SOPTemplate, template_id)
    if template is None:
        raise ReferentialIntegrityViolation(f"template {template_id} does not exist")
    _require_version_metadata(template)
    version_string = _validate_version_string(db, template.id, payload.version)
    features = _clean_features(payload.features)
    version = models.SOPVersion(
        template_id=template.id,
        template_name=template.name,
        version=version_string,
        status="draft",
        description=payload.description,
        change_log=payload.change_log,
        features=features,
        created_by=actor,
        created_at=datetime.now(timezone.utc),
        is_current=False,
    )
    _capture_structure(version, template)
    _insert_version(db, template, version)
    audit.record_sop_event(
        db,
        actor,
        "version.cut",
        template_id=template.id,
        version_id=version.id,
        detail={"version": version.version, "step_count": version.step_count},
    )
    return version


def copy_version(
    db: Session,
    source: models.SOPVersion,
    payload: schemas.SOPVersionCopy,
    *,
    actor: str,
) -> models.SOPVersion:
    """Open a new draft from an existing version against the live template structure."""

    template = source.template
    _require_version_metadata(template)
    version_string = _validate_version_string(db, template.id, payload.version)
    version = models.SOPVersion(
        template_id=template.id,
        template_name=template.name,
        version=version_string,
        status="draft",
        description=payload.description if payload.description is not None else source.description,
        change_log=source.change_log,
        features=dict(source.features or {}),
        created_by=actor,
        created_at=datetime.now(timezone.utc),
        is_current=False,
        based_on_id=source.id,
    )
    _capture_structure(version, template)
    _insert_version(db, template, version)
    audit.record_sop_event(
        db,
        actor,
        "version.copied",
        template_id=template.id,
        version_id=version.id,
        detail={"version": version.version, "based_on": source.version},
    )
    return version


def _transition(
    db: Session,
    version: models.SOPVersion,
    allowed_from: Iterable[str],
    target: str,
    *,
    actor: str,
    action: str,
    expected_revision: int | None = None,
) -> models.SOPVersion:
    allowed = set(allowed_from)
    _check_revision(version, expected_revision)
    if version.status not in allowed:
        raise InvalidTransition(
            f"version {version.version} is {version.status}; expected one of {', '.join(sorted(allowed))}"
        )
    previous = version.status
    version.status = target
    db.flush()
    audit.record_sop_event(
        db,
        actor,
        action,
        template_id=version.template_id,
        version_id=version.id,
        detail={"version": version.version, "from": previous, "to": target},
    )
    return version


def submit_for_review(
    db: Session,
    version: models.SOPVersion,
    *,
    actor: str,
    expected_revision: int | None = None,
) -> models.SOPVersion:
    return _transition(
        db,
        version,
        {"draft"},
        "review",
        actor=actor,
        action="version.submitted",
        expected_revision=expected_revision,
    )


def approve(
    db: Session,
    version: models.SOPVersion,
    *,
    approver: str,
    expected_revision: int | None = None,
) -> models.SOPVersion:
    _check_revision(version, expected_revision)
    if version.status != "review":
        raise InvalidTransition(f"version {version.version} is {version.status}; only versions in review can be approved")
    now = datetime.now(timezone.utc)
    version.reviewed_by = approver
    version.reviewed_at = now
    version.approved_by = approver
    version.approved_at = now
    return _transition(
        db,
        version,
        {"review"},
        "approved",
        actor=approver,
        action="version.approved",
    )


def reject(
    db: Session,
    version: models.SOPVersion,
    *,
    actor: str,
    expected_revision: int | None = None,
) -> models.SOPVersion:
    _check_revision(version, expected_revision)
    if version.status != "review":
        raise InvalidTransition(f"version {version.version} is {version.status}; only versions in review can be rejected")
    version.reviewed_by = actor
    version.reviewed_at = datetime.now(timezone.utc)
    return _transition(
        db,
        version,
        {"review"},
        "draft",
        actor=actor,
        action="version.rejected",
    )


def deprecate(
    db: Session,
    version: models.SOPVersion,
    *,
    actor: str,
    expected_revision: int | None = None,
) -> models.SOPVersion:
    return _transition(
        db,
        version,
        {"draft", "review", "approved"},
        "deprecated",
        actor=actor,
        action="version.deprecated",
        expected_revision=expected_revision,
    )


def _other_current_version(
    db: Session, template_id: UUID, version_id: UUID
) -> models.SOPVersion | None:
    return (
        db.query(models.SOPVersion)
        .populate_existing()
        .filter(
            models.SOPVersion.template_id == template_id,
            models.SOPVersion.is_current.is_(True),
            models.SOPVersion.id != version_id,
        )
        .one_or_none()
    )


def activate(
    db: Session,
    template: models.SOPTemplate,
    version: models.SOPVersion,
    *,
    actor: str,
) -> models.SOPVersion:
    """Put an approved version in force and archive the one it replaces.

    Activations of the same template are serialised in-process. The version
    row is re-read once the lock is held, so a caller that lost a race sees
    the winner's state and fails. The demotion and promotion are committed
    together before the lock is released. A promotion that another process
    beat to the current-version index fails with ``ConfigurationConflict``.
    """

    if version.template_id != template.id:
        raise InvalidConfiguration(
            f"version {version.version} does not belong to template {template.id}"
        )
    with _activation_lock(template.id):
        db.refresh(version)
        if version.status != "approved":
            raise InvalidTransition(
                f"version {version.version} is {version.status}; only approved versions can be activated"
            )
        previous = _other_current_version(db, template.id, version.id)
        now = datetime.now(timezone.utc)
        try:
            if previous is not None:
                previous.status = "archived"
                previous.is_current = False
                # the partial unique index rejects two current rows, so demote first
                db.flush()
            version.status = "active"
            version.is_current = True
            version.activated_at = now
            db.flush()
            audit.record_sop_event(
                db,
                actor,
                "version.activated",
                template_id=template.id,
                version_id=version.id,
                detail={
                    "version": version.version,
                    "archived": previous.version if previous is not None else None,
                },
            )
            db.commit()
        except IntegrityError as exc:
            raise ConfigurationConflict(
                f"template {template.id} gained another current version while {version.version} was being activated"
            ) from exc
    return version


def delete_version(db: Session, version: models.SOPVersion, *, actor: str) -> None:
    if version.is_current:
        raise ConfigurationConflict(
            f"version {version.version} is in force and cannot be deleted"
        )
    for derived in db.query(models.SOPVersion).filter(models.SOPVersion.based_on_id == version.id).all():
        derived.based_on_id = None
    audit.record_sop_event(
        db,
        actor,
        "version.deleted",
        template_id=version.template_id,
        version_id=version.id,
        detail={"version": version.version, "status": version.status},
    )
    version.template.versions.remove(version)
    db.flush()
