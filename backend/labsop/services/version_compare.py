"""Structural diff between two versions of the same SOP template."""

from __future__ import annotations

from typing import List

from .. import models, schemas
from .errors import InvalidConfiguration

# purpose: summarise what changed between version snapshots for reviewers before activation
# status: pilot

COUNT_DIMENSIONS = (
    ("step_count", "步骤数量"),
    ("field_count", "字段数量"),
    ("qc_point_count", "质量控制点"),
)


def _as_text(value) -> str:
    if value is None:
        return ""
    return str(value)


def _diff(label: str, old_value: str, new_value: str) -> schemas.FieldDiff | None:
    if old_value == new_value:
        return None
    if not old_value:
        change_type = "added"
    elif not new_value:
        change_type = "deleted"
    else:
        change_type = "modified"
    return schemas.FieldDiff(
        field=label,
        old_value=old_value,
        new_value=new_value,
        change_type=change_type,
    )


def compare_versions(
    old: models.SOPVersion, new: models.SOPVersion
) -> List[schemas.FieldDiff]:
    """Compare the counters and feature flags captured when each version was cut.

    Only dimensions that differ are returned. Counts come first in a fixed
    order, followed by feature flags sorted by name.
    """

    if old.template_id != new.template_id:
        raise InvalidConfiguration(
            f"versions {old.version} and {new.version} belong to different templates"
        )
    differences: List[schemas.FieldDiff] = []
    for attribute, label in COUNT_DIMENSIONS:
        diff = _diff(label, _as_text(getattr(old, attribute)), _as_text(getattr(new, attribute)))
        if diff:
            differences.append(diff)
    old_features = old.features or {}
    new_features = new.features or {}
    for name in sorted(set(old_features) | set(new_features)):
        diff = _diff(name, _as_text(old_features.get(name)), _as_text(new_features.get(name)))
        if diff:
            differences.append(diff)
    return differences


def build_comparison(
    old: models.SOPVersion, new: models.SOPVersion
) -> schemas.SOPVersionComparison:
    return schemas.SOPVersionComparison(
        old_version_id=old.id,
        new_version_id=new.id,
        old_version=old.version,
        new_version=new.version,
        differences=compare_versions(old, new),
    )
