import pytest

from labsop import schemas
from labsop.services import sop_editor, sop_versions, version_compare
from labsop.services.errors import InvalidConfiguration
from labsop.tests.conftest import ACTOR, seed_template


def _cut(db, template, version, features=None):
    return sop_versions.cut_version(
        db,
        template.id,
        schemas.SOPVersionCreate(version=version, features=features or {}),
        actor=ACTOR,
    )


def test_compare_reports_changed_counts_and_feature_flags(db):
    template = seed_template(db, steps=(("Extraction", 90), ("PCR", 120)))
    old = _cut(db, template, "v1.0.0", features={"智能异常检测": "已启用", "自动校正": "关闭"})
    sop_editor.add_step(
        db, template, schemas.SOPStepCreate(name="Sequencing", estimated_minutes=60), actor=ACTOR
    )
    new = _cut(db, template, "v1.1.0", features={"AI质量控制": "已启用", "自动校正": "开启"})

    diffs = version_compare.compare_versions(old, new)

    assert [(d.field, d.old_value, d.new_value, d.change_type) for d in diffs] == [
        ("步骤数量", "2", "3", "modified"),
        ("AI质量控制", "", "已启用", "added"),
        ("智能异常检测", "已启用", "", "deleted"),
        ("自动校正", "关闭", "开启", "modified"),
    ]


def test_compare_identical_snapshots_is_empty(db):
    template = seed_template(db, steps=(("Extraction", 90),))
    first = _cut(db, template, "v1.0.0", features={"AI质量控制": "已启用"})
    second = _cut(db, template, "v1.0.1", features={"AI质量控制": "已启用"})
    assert version_compare.compare_versions(first, second) == []


def test_compare_uses_captured_counts_not_live_structure(db):
    template = seed_template(db, steps=(("Extraction", 90),))
    first = _cut(db, template, "v1.0.0")
    second = _cut(db, template, "v1.0.1")
    sop_editor.add_step(
        db, template, schemas.SOPStepCreate(name="PCR", estimated_minutes=120), actor=ACTOR
    )
    assert version_compare.compare_versions(first, second) == []


def test_compare_across_templates_is_rejected(db):
    first = seed_template(db, name="First")
    second = seed_template(db, name="Second")
    with pytest.raises(InvalidConfiguration):
        version_compare.compare_versions(_cut(db, first, "v1.0.0"), _cut(db, second, "v1.0.0"))


def test_build_comparison_carries_version_labels(db):
    template = seed_template(db, steps=(("Extraction", 90),))
    old = _cut(db, template, "v1.0.0")
    new = _cut(db, template, "v2.0.0", features={"AI质量控制": "已启用"})
    comparison = version_compare.build_comparison(old, new)
    assert comparison.old_version == "v1.0.0"
    assert comparison.new_version == "v2.0.0"
    assert len(comparison.differences) == 1
    assert comparison.differences[0].change_type == "added"
