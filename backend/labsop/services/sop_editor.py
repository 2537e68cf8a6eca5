"""SOP template structure editing: templates, steps, fields and quality-control points."""

from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Iterable, Sequence
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.orm import Session, selectinload

from .. import audit, models, schemas
from . import field_rules, sop_versions
from .errors import (
    ConfigurationConflict,
    InvalidConfiguration,
    ReferentialIntegrityViolation,
    SOPNotFound,
)

# purpose: enforce ordering, cascade and referential rules on the template aggregate
# status: pilot
# depends_on: backend.labsop.models.SOPTemplate, backend.labsop.services.field_rules

STRICT_EDIT_LOCK_ENV = "SOP_STRICT_EDIT_LOCK"
_LOCKING_VERSION_STATUSES = {"review", "approved", "active"}
_THRESHOLD_CHECK_TYPES = {"range", "formula"}
_NULLABLE_FIELD_ATTRS = {"default_value", "unit", "validation_rule", "placeholder", "help_text"}


def strict_edit_lock_enabled() -> bool:
    return os.getenv(STRICT_EDIT_LOCK_ENV, "0").lower() in {"1", "true", "yes"}


def template_is_mutable(template: models.SOPTemplate) -> bool:
    """Answer whether structural edits may be applied to the template right now.

    Edits always apply to the live template by default. With the strict lock
    enabled, a template whose versions include one in review, approved or
    active is frozen until a new draft version is opened.
    """

    if not strict_edit_lock_enabled():
        return True
    statuses = {version.status for version in template.versions}
    if "draft" in statuses:
        return True
    return not statuses & _LOCKING_VERSION_STATUSES


def _require_mutable(template: models.SOPTemplate) -> None:
    if not template_is_mutable(template):
        raise ConfigurationConflict(
            f"template {template.id} is locked by a version under review or in force; open a draft version first"
        )


def _check_revision(template: models.SOPTemplate, expected_revision: int | None) -> None:
    if expected_revision is not None and expected_revision != template.revision:
        raise ConfigurationConflict(
            f"template {template.id} is at revision {template.revision}, not {expected_revision}"
        )


def _prepare_edit(template: models.SOPTemplate, expected_revision: int | None) -> None:
    _check_revision(template, expected_revision)
    _require_mutable(template)


def _touch(template: models.SOPTemplate, actor: str) -> None:
    template.updated_by = actor
    template.updated_at = datetime.now(timezone.utc)


def _ordered(items: Iterable) -> list:
    return sorted(items, key=lambda item: item.display_order)


def _renumber(items: Iterable) -> None:
    for index, item in enumerate(_ordered(items), start=1):
        item.display_order = index


def _next_order(items: Sequence) -> int:
    return max((item.display_order for item in items), default=0) + 1


def _require_text(value: str | None, label: str) -> str:
    text = (value or "").strip()
    if not text:
        raise InvalidConfiguration(f"{label} is required")
    return text


# ----- lookups -----


def get_template(db: Session, template_id: UUID) -> models.SOPTemplate:
    template = db.get(models.SOPTemplate, template_id)
    if not template:
        raise SOPNotFound(f"template {template_id} not found")
    return template


def get_step(db: Session, step_id: UUID) -> models.SOPStep:
    step = db.get(models.SOPStep, step_id)
    if not step:
        raise SOPNotFound(f"step {step_id} not found")
    return step


def find_template_step(template: models.SOPTemplate, step_id: UUID) -> models.SOPStep:
    for step in template.steps:
        if step.id == step_id:
            return step
    raise SOPNotFound(f"step {step_id} not found in template {template.id}")


def find_field(step: models.SOPStep, field_key: str) -> models.StepField:
    for field in step.fields:
        if field.field_key == field_key:
            return field
    raise SOPNotFound(f"field '{field_key}' not found on step {step.id}")


def find_qc_point(step: models.SOPStep, qc_id: UUID) -> models.QualityControlPoint:
    for point in step.qc_points:
        if point.id == qc_id:
            return point
    raise SOPNotFound(f"quality control point {qc_id} not found on step {step.id}")


# ----- templates -----


def _clean_projects(projects: Iterable[str]) -> list[str]:
    cleaned: list[str] = []
    for project in projects:
        name = (project or "").strip()
        if not name:
            raise InvalidConfiguration("applicable project names cannot be blank")
        if name not in cleaned:
            cleaned.append(name)
    return cleaned


def create_template(
    db: Session,
    payload: schemas.SOPTemplateCreate,
    *,
    actor: str,
) -> models.SOPTemplate:
    now = datetime.now(timezone.utc)
    template = models.SOPTemplate(
        name=_require_text(payload.name, "template name"),
        description=payload.description,
        applicable_projects=_clean_projects(payload.applicable_projects),
        status=payload.status,
        created_by=actor,
        created_at=now,
        updated_by=actor,
        updated_at=now,
    )
    db.add(template)
    db.flush()
    audit.record_sop_event(
        db,
        actor,
        "template.created",
        template_id=template.id,
        detail={"name": template.name},
    )
    return template


def update_template(
    db: Session,
    template: models.SOPTemplate,
    payload: schemas.SOPTemplateUpdate,
    *,
    actor: str,
    expected_revision: int | None = None,
) -> models.SOPTemplate:
    """Apply metadata changes; the step structure is left untouched."""

    _check_revision(template, expected_revision)
    changes = payload.model_dump(exclude_unset=True)
    if "name" in changes:
        changes["name"] = _require_text(changes["name"], "template name")
    if "applicable_projects" in changes:
        changes["applicable_projects"] = _clean_projects(changes["applicable_projects"] or [])
    if changes.get("status") is None:
        changes.pop("status", None)
    for key, value in changes.items():
        setattr(template, key, value)
    _touch(template, actor)
    db.flush()
    audit.record_sop_event(
        db,
        actor,
        "template.updated",
        template_id=template.id,
        detail={"fields": sorted(changes)},
    )
    return template


def set_template_status(
    db: Session,
    template_ids: Sequence[UUID],
    status: str,
    *,
    actor: str,
) -> list[models.SOPTemplate]:
    templates = [get_template(db, template_id) for template_id in template_ids]
    for template in templates:
        if template.status == status:
            continue
        template.status = status
        _touch(template, actor)
        audit.record_sop_event(
            db,
            actor,
            "template.status_changed",
            template_id=template.id,
            detail={"status": status},
        )
    db.flush()
    return templates


def list_templates(
    db: Session,
    *,
    search: str | None = None,
    status: str | None = None,
) -> list[models.SOPTemplate]:
    query = db.query(models.SOPTemplate).options(
        selectinload(models.SOPTemplate.steps).selectinload(models.SOPStep.fields),
        selectinload(models.SOPTemplate.steps).selectinload(models.SOPStep.qc_points),
        selectinload(models.SOPTemplate.versions),
    )
    if status:
        query = query.filter(models.SOPTemplate.status == status)
    templates = query.order_by(models.SOPTemplate.created_at.desc()).all()
    if not search:
        return templates
    needle = search.strip().lower()
    return [
        template
        for template in templates
        if needle in template.name.lower()
        or any(needle in project.lower() for project in template.applicable_projects or [])
    ]


def copy_template(
    db: Session,
    template: models.SOPTemplate,
    *,
    actor: str,
    name: str | None = None,
) -> models.SOPTemplate:
    """Deep copy steps, fields and QC points into a new template without versions."""

    now = datetime.now(timezone.utc)
    duplicate = models.SOPTemplate(
        name=_require_text(name, "template name") if name is not None else f"{template.name} (copy)",
        description=template.description,
        applicable_projects=list(template.applicable_projects or []),
        status=template.status,
        created_by=actor,
        created_at=now,
        updated_by=actor,
        updated_at=now,
    )
    for step in _ordered(template.steps):
        step_copy = models.SOPStep(
            name=step.name,
            step_type=step.step_type,
            description=step.description,
            is_required=step.is_required,
            estimated_minutes=step.estimated_minutes,
            display_order=step.display_order,
            has_quality_control=step.has_quality_control,
            sop_document=step.sop_document,
            created_at=now,
        )
        for field in _ordered(step.fields):
            step_copy.fields.append(
                models.StepField(
                    field_key=field.field_key,
                    name=field.name,
                    field_type=field.field_type,
                    is_required=field.is_required,
                    default_value=field.default_value,
                    unit=field.unit,
                    options=list(field.options or []),
                    validation_rule=field.validation_rule,
                    placeholder=field.placeholder,
                    help_text=field.help_text,
                    display_order=field.display_order,
                    show_in_quick_panel=field.show_in_quick_panel,
                    allow_batch_edit=field.allow_batch_edit,
                    participate_validation=field.participate_validation,
                    include_in_report=field.include_in_report,
                )
            )
        for point in _ordered(step.qc_points):
            step_copy.qc_points.append(
                models.QualityControlPoint(
                    name=point.name,
                    check_mode=point.check_mode,
                    check_type=point.check_type,
                    description=point.description,
                    is_required=point.is_required,
                    trigger_condition=point.trigger_condition,
                    check_rule=point.check_rule,
                    warning_threshold=point.warning_threshold,
                    error_threshold=point.error_threshold,
                    auto_correction=point.auto_correction,
                    notification_level=point.notification_level,
                    related_fields=list(point.related_fields or []),
                    display_order=point.display_order,
                    is_active=point.is_active,
                )
            )
        duplicate.steps.append(step_copy)
    db.add(duplicate)
    db.flush()
    audit.record_sop_event(
        db,
        actor,
        "template.copied",
        template_id=duplicate.id,
        detail={"source_template_id": str(template.id)},
    )
    return duplicate


def delete_template(db: Session, template: models.SOPTemplate, *, actor: str) -> None:
    current = next((version for version in template.versions if version.is_current), None)
    if current is not None:
        raise ConfigurationConflict(
            f"template {template.id} has version {current.version} in force and cannot be deleted"
        )
    audit.record_sop_event(
        db,
        actor,
        "template.deleted",
        template_id=template.id,
        detail={"name": template.name, "version_count": len(template.versions)},
    )
    db.delete(template)
    db.flush()
    sop_versions.discard_activation_lock(template.id)


# ----- steps -----


def _validate_step_values(name: str | None, estimated_minutes: int | None) -> str:
    cleaned = _require_text(name, "step name")
    if estimated_minutes is None or estimated_minutes <= 0:
        raise InvalidConfiguration("estimated duration must be a positive number of minutes")
    return cleaned


def add_step(
    db: Session,
    template: models.SOPTemplate,
    payload: schemas.SOPStepCreate,
    *,
    actor: str,
    expected_revision: int | None = None,
) -> models.SOPStep:
    _prepare_edit(template, expected_revision)
    name = _validate_step_values(payload.name, payload.estimated_minutes)
    step = models.SOPStep(
        name=name,
        step_type=payload.step_type,
        description=payload.description,
        is_required=payload.is_required,
        estimated_minutes=payload.estimated_minutes,
        display_order=_next_order(template.steps),
        has_quality_control=payload.has_quality_control,
        sop_document=payload.sop_document,
        created_at=datetime.now(timezone.utc),
    )
    template.steps.append(step)
    _touch(template, actor)
    db.flush()
    audit.record_sop_event(
        db,
        actor,
        "step.added",
        template_id=template.id,
        detail={"step_id": str(step.id), "name": step.name, "display_order": step.display_order},
    )
    return step


def update_step(
    db: Session,
    template: models.SOPTemplate,
    step_id: UUID,
    payload: schemas.SOPStepUpdate,
    *,
    actor: str,
    expected_revision: int | None = None,
) -> models.SOPStep:
    _prepare_edit(template, expected_revision)
    step = find_template_step(template, step_id)
    changes = payload.model_dump(exclude_unset=True)
    for required in ("step_type", "is_required", "has_quality_control"):
        if required in changes and changes[required] is None:
            changes.pop(required)
    name = _validate_step_values(
        changes.get("name", step.name),
        changes.get("estimated_minutes", step.estimated_minutes),
    )
    if "name" in changes:
        changes["name"] = name
    for key, value in changes.items():
        setattr(step, key, value)
    _touch(template, actor)
    db.flush()
    audit.record_sop_event(
        db,
        actor,
        "step.updated",
        template_id=template.id,
        detail={"step_id": str(step.id), "fields": sorted(changes)},
    )
    return step


def reorder_step(
    db: Session,
    template: models.SOPTemplate,
    step_id: UUID,
    direction: str,
    *,
    actor: str,
    expected_revision: int | None = None,
) -> list[models.SOPStep]:
    """Swap a step with its neighbour; moving past either end leaves the order unchanged."""

    if direction not in {"up", "down"}:
        raise InvalidConfiguration(f"unknown move direction '{direction}'")
    _prepare_edit(template, expected_revision)
    step = find_template_step(template, step_id)
    steps = _ordered(template.steps)
    index = steps.index(step)
    target = index - 1 if direction == "up" else index + 1
    if target < 0 or target >= len(steps):
        return steps
    steps[index], steps[target] = steps[target], steps[index]
    for position, item in enumerate(steps, start=1):
        item.display_order = position
    _touch(template, actor)
    db.flush()
    audit.record_sop_event(
        db,
        actor,
        "step.moved",
        template_id=template.id,
        detail={"step_id": str(step.id), "direction": direction, "display_order": step.display_order},
    )
    return steps


def _snapshot_step_ids(version: models.SOPVersion) -> set[str]:
    return {entry.get("id") for entry in (version.snapshot or {}).get("steps", [])}


def delete_step(
    db: Session,
    template: models.SOPTemplate,
    step_id: UUID,
    *,
    actor: str,
    expected_revision: int | None = None,
) -> None:
    _prepare_edit(template, expected_revision)
    step = find_template_step(template, step_id)
    current = next((version for version in template.versions if version.is_current), None)
    has_draft = any(version.status == "draft" for version in template.versions)
    if current is not None and str(step.id) in _snapshot_step_ids(current) and not has_draft:
        raise ConfigurationConflict(
            f"step '{step.name}' is part of version {current.version} in force; open a draft version before removing it"
        )
    detail = {
        "step_id": str(step.id),
        "name": step.name,
        "fields_removed": len(step.fields),
        "qc_points_removed": len(step.qc_points),
    }
    template.steps.remove(step)
    _renumber(template.steps)
    _touch(template, actor)
    db.flush()
    audit.record_sop_event(db, actor, "step.deleted", template_id=template.id, detail=detail)


# ----- fields -----


def _field_values(
    step: models.SOPStep,
    values: dict,
    *,
    current: models.StepField | None = None,
) -> dict:
    """Validate the merged field definition and return the values to store."""

    merged = {}
    if current is not None:
        merged = {
            "field_key": current.field_key,
            "name": current.name,
            "field_type": current.field_type,
            "options": list(current.options or []),
            "default_value": current.default_value,
            "validation_rule": current.validation_rule,
        }
        if "field_type" in values and values["field_type"] != current.field_type and "options" not in values:
            merged["options"] = []
    merged.update(
        {key: value for key, value in values.items() if value is not None or key in _NULLABLE_FIELD_ATTRS}
    )

    field_key = _require_text(merged.get("field_key"), "field identifier")
    for sibling in step.fields:
        if sibling is not current and sibling.field_key == field_key:
            raise InvalidConfiguration(f"field identifier '{field_key}' already exists on step {step.id}")
    field_type = merged["field_type"]
    if field_type not in field_rules.FIELD_TYPES:
        raise InvalidConfiguration(f"unknown field type '{field_type}'")
    options = [option.strip() for option in merged.get("options") or []]
    if any(not option for option in options):
        raise InvalidConfiguration("select options cannot be blank")
    if len(set(options)) != len(options):
        raise InvalidConfiguration("select options must be unique")
    if field_type == "select" and not options:
        raise InvalidConfiguration("select fields require at least one option")
    if field_type != "select" and options:
        raise InvalidConfiguration("options are only allowed on select fields")

    result = dict(values)
    result.update(
        field_key=field_key,
        name=_require_text(merged.get("name"), "field name"),
        field_type=field_type,
        options=options,
        default_value=field_rules.normalize_default(field_type, merged.get("default_value"), options),
        validation_rule=field_rules.normalize_rule(field_type, merged.get("validation_rule")),
    )
    return result


def _referencing_points(step: models.SOPStep, field_key: str) -> list[models.QualityControlPoint]:
    return [point for point in step.qc_points if field_key in (point.related_fields or [])]


def add_field(
    db: Session,
    step: models.SOPStep,
    payload: schemas.StepFieldCreate,
    *,
    actor: str,
    expected_revision: int | None = None,
) -> models.StepField:
    template = step.template
    _prepare_edit(template, expected_revision)
    values = _field_values(step, payload.model_dump())
    field = models.StepField(**values, display_order=_next_order(step.fields))
    step.fields.append(field)
    _touch(template, actor)
    db.flush()
    audit.record_sop_event(
        db,
        actor,
        "field.added",
        template_id=template.id,
        detail={"step_id": str(step.id), "field_key": field.field_key},
    )
    return field


def update_field(
    db: Session,
    step: models.SOPStep,
    field_key: str,
    payload: schemas.StepFieldUpdate,
    *,
    actor: str,
    expected_revision: int | None = None,
) -> models.StepField:
    template = step.template
    _prepare_edit(template, expected_revision)
    field = find_field(step, field_key)
    changes = {
        key: value
        for key, value in payload.model_dump(exclude_unset=True).items()
        if value is not None or key in _NULLABLE_FIELD_ATTRS
    }
    new_key = changes.get("field_key")
    if new_key is not None and new_key.strip() != field.field_key:
        referencing = _referencing_points(step, field.field_key)
        if referencing:
            raise ReferentialIntegrityViolation(
                f"field '{field.field_key}' is referenced by quality control point '{referencing[0].name}' and cannot be renamed"
            )
    values = _field_values(step, changes, current=field)
    for key, value in values.items():
        setattr(field, key, value)
    _touch(template, actor)
    db.flush()
    audit.record_sop_event(
        db,
        actor,
        "field.updated",
        template_id=template.id,
        detail={"step_id": str(step.id), "field_key": field.field_key, "fields": sorted(changes)},
    )
    return field


def delete_field(
    db: Session,
    step: models.SOPStep,
    field_key: str,
    *,
    actor: str,
    cascade: bool = False,
    expected_revision: int | None = None,
) -> None:
    """Remove a field; with ``cascade`` its key is also stripped from QC point references."""

    template = step.template
    _prepare_edit(template, expected_revision)
    field = find_field(step, field_key)
    referencing = _referencing_points(step, field_key)
    if referencing and not cascade:
        names = ", ".join(point.name for point in referencing)
        raise ReferentialIntegrityViolation(
            f"field '{field_key}' is referenced by quality control points: {names}"
        )
    for point in referencing:
        point.related_fields = [key for key in point.related_fields if key != field_key]
    step.fields.remove(field)
    _renumber(step.fields)
    _touch(template, actor)
    db.flush()
    audit.record_sop_event(
        db,
        actor,
        "field.deleted",
        template_id=template.id,
        detail={
            "step_id": str(step.id),
            "field_key": field_key,
            "cascaded_qc_points": [str(point.id) for point in referencing],
        },
    )


# ----- quality control points -----


def _validate_related_fields(step: models.SOPStep, related_fields: Iterable[str]) -> list[str]:
    known = {field.field_key for field in step.fields}
    cleaned: list[str] = []
    for key in related_fields:
        if key not in known:
            raise ReferentialIntegrityViolation(f"field '{key}' does not exist on step {step.id}")
        if key not in cleaned:
            cleaned.append(key)
    return cleaned


def _validate_thresholds(check_type: str, warning: float | None, error: float | None) -> None:
    if check_type in _THRESHOLD_CHECK_TYPES:
        return
    if warning is not None or error is not None:
        raise InvalidConfiguration(f"thresholds are not supported for {check_type} checks")


def add_qc_point(
    db: Session,
    step: models.SOPStep,
    payload: schemas.QualityControlPointCreate,
    *,
    actor: str,
    expected_revision: int | None = None,
) -> models.QualityControlPoint:
    template = step.template
    _prepare_edit(template, expected_revision)
    values = payload.model_dump()
    values["name"] = _require_text(values["name"], "quality control point name")
    values["related_fields"] = _validate_related_fields(step, values["related_fields"])
    _validate_thresholds(values["check_type"], values["warning_threshold"], values["error_threshold"])
    point = models.QualityControlPoint(**values, display_order=_next_order(step.qc_points))
    step.qc_points.append(point)
    step.has_quality_control = True
    _touch(template, actor)
    db.flush()
    audit.record_sop_event(
        db,
        actor,
        "qc_point.added",
        template_id=template.id,
        detail={"step_id": str(step.id), "qc_point_id": str(point.id), "name": point.name},
    )
    return point


def update_qc_point(
    db: Session,
    step: models.SOPStep,
    qc_id: UUID,
    payload: schemas.QualityControlPointUpdate,
    *,
    actor: str,
    expected_revision: int | None = None,
) -> models.QualityControlPoint:
    template = step.template
    _prepare_edit(template, expected_revision)
    point = find_qc_point(step, qc_id)
    changes = payload.model_dump(exclude_unset=True)
    for required in ("name", "check_mode", "check_type", "is_required", "auto_correction", "notification_level", "is_active"):
        if required in changes and changes[required] is None:
            changes.pop(required)
    if "name" in changes:
        changes["name"] = _require_text(changes["name"], "quality control point name")
    if "related_fields" in changes:
        changes["related_fields"] = _validate_related_fields(step, changes["related_fields"] or [])
    _validate_thresholds(
        changes.get("check_type", point.check_type),
        changes.get("warning_threshold", point.warning_threshold),
        changes.get("error_threshold", point.error_threshold),
    )
    for key, value in changes.items():
        setattr(point, key, value)
    _touch(template, actor)
    db.flush()
    audit.record_sop_event(
        db,
        actor,
        "qc_point.updated",
        template_id=template.id,
        detail={"step_id": str(step.id), "qc_point_id": str(point.id), "fields": sorted(changes)},
    )
    return point


def delete_qc_point(
    db: Session,
    step: models.SOPStep,
    qc_id: UUID,
    *,
    actor: str,
    expected_revision: int | None = None,
) -> None:
    template = step.template
    _prepare_edit(template, expected_revision)
    point = find_qc_point(step, qc_id)
    step.qc_points.remove(point)
    _renumber(step.qc_points)
    _touch(template, actor)
    db.flush()
    audit.record_sop_event(
        db,
        actor,
        "qc_point.deleted",
        template_id=template.id,
        detail={"step_id": str(step.id), "qc_point_id": str(qc_id), "name": point.name},
    )


def toggle_qc_point(
    db: Session,
    step: models.SOPStep,
    qc_id: UUID,
    *,
    actor: str,
) -> models.QualityControlPoint:
    template = step.template
    _require_mutable(template)
    point = find_qc_point(step, qc_id)
    point.is_active = not point.is_active
    _touch(template, actor)
    db.flush()
    audit.record_sop_event(
        db,
        actor,
        "qc_point.toggled",
        template_id=template.id,
        detail={"step_id": str(step.id), "qc_point_id": str(point.id), "is_active": point.is_active},
    )
    return point


def set_step_qc_active(
    db: Session,
    step: models.SOPStep,
    is_active: bool,
    *,
    actor: str,
) -> list[models.QualityControlPoint]:
    template = step.template
    _require_mutable(template)
    for point in step.qc_points:
        point.is_active = is_active
    _touch(template, actor)
    db.flush()
    audit.record_sop_event(
        db,
        actor,
        "qc_point.bulk_toggled",
        template_id=template.id,
        detail={"step_id": str(step.id), "is_active": is_active, "count": len(step.qc_points)},
    )
    return _ordered(step.qc_points)


# ----- read-only checks -----


def validate_step_configuration(step: models.SOPStep) -> schemas.StepValidationReport:
    """Report configuration problems on a step without changing it."""

    issues: list[schemas.StepValidationIssue] = []
    known_keys = {field.field_key for field in step.fields}
    for field in step.fields:
        if field.field_type == "select" and not field.options:
            issues.append(
                schemas.StepValidationIssue(
                    code="select_without_options",
                    message=f"select field '{field.field_key}' has no options",
                    field_key=field.field_key,
                )
            )
        if field.validation_rule and not field_rules.value_satisfies(
            field.field_type, field.validation_rule, field.default_value
        ):
            issues.append(
                schemas.StepValidationIssue(
                    code="default_violates_rule",
                    message=f"default value of '{field.field_key}' does not satisfy '{field.validation_rule}'",
                    field_key=field.field_key,
                )
            )
    for point in step.qc_points:
        for key in point.related_fields or []:
            if key not in known_keys:
                issues.append(
                    schemas.StepValidationIssue(
                        code="dangling_field_reference",
                        message=f"quality control point '{point.name}' references missing field '{key}'",
                        field_key=key,
                        qc_point_id=point.id,
                    )
                )
    for label, items in (("field", step.fields), ("quality control point", step.qc_points)):
        orders = [item.display_order for item in items]
        if len(set(orders)) != len(orders):
            issues.append(
                schemas.StepValidationIssue(
                    code="duplicate_display_order",
                    message=f"{label} display orders are not unique",
                )
            )
    active_points = [point for point in step.qc_points if point.is_active]
    if step.has_quality_control and not active_points:
        issues.append(
            schemas.StepValidationIssue(
                code="quality_control_without_points",
                message="step is flagged for quality control but has no active checkpoints",
            )
        )
    if active_points and not step.has_quality_control:
        issues.append(
            schemas.StepValidationIssue(
                code="quality_control_flag_missing",
                message="step has active checkpoints but is not flagged for quality control",
            )
        )
    return schemas.StepValidationReport(step_id=step.id, valid=not issues, issues=issues)


def summarize_template(db: Session, template_id: UUID) -> dict[str, int]:
    """Return step, field and QC counts straight from the database."""

    step_count = (
        db.query(sa.func.count(models.SOPStep.id))
        .filter(models.SOPStep.template_id == template_id)
        .scalar()
    )
    field_count = (
        db.query(sa.func.count(models.StepField.id))
        .join(models.SOPStep, models.StepField.step_id == models.SOPStep.id)
        .filter(models.SOPStep.template_id == template_id)
        .scalar()
    )
    qc_point_count = (
        db.query(sa.func.count(models.QualityControlPoint.id))
        .join(models.SOPStep, models.QualityControlPoint.step_id == models.SOPStep.id)
        .filter(models.SOPStep.template_id == template_id)
        .scalar()
    )
    return {
        "step_count": step_count or 0,
        "field_count": field_count or 0,
        "qc_point_count": qc_point_count or 0,
    }
