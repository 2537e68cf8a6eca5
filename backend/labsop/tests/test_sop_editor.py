import uuid

import pytest

from labsop import audit, models, schemas
from labsop.services import sop_editor, sop_versions
from labsop.services.errors import (
    ConfigurationConflict,
    InvalidConfiguration,
    ReferentialIntegrityViolation,
    SOPNotFound,
)
from labsop.tests.conftest import ACTOR, seed_template


def _orders(template):
    return [step.display_order for step in sorted(template.steps, key=lambda s: s.display_order)]


def _names(template):
    return [step.name for step in sorted(template.steps, key=lambda s: s.display_order)]


def _add_field(db, step, key, field_type="number", **extra):
    payload = schemas.StepFieldCreate(field_key=key, name=key.title(), field_type=field_type, **extra)
    return sop_editor.add_field(db, step, payload, actor=ACTOR)


def _add_qc(db, step, name, related, check_type="range", **extra):
    payload = schemas.QualityControlPointCreate(
        name=name, check_type=check_type, related_fields=related, **extra
    )
    return sop_editor.add_qc_point(db, step, payload, actor=ACTOR)


def test_steps_are_appended_with_next_display_order(db):
    template = seed_template(db, name="T1")
    extraction = sop_editor.add_step(
        db, template, schemas.SOPStepCreate(name="Extraction", estimated_minutes=90), actor=ACTOR
    )
    assert extraction.display_order == 1
    pcr = sop_editor.add_step(
        db, template, schemas.SOPStepCreate(name="PCR", estimated_minutes=120), actor=ACTOR
    )
    db.commit()
    assert pcr.display_order == 2
    assert len(template.steps) == 2
    assert template.updated_by == ACTOR


@pytest.mark.parametrize("name,minutes", [("", 30), ("   ", 30), ("Lysis", 0), ("Lysis", -5)])
def test_add_step_rejects_blank_name_or_non_positive_duration(db, name, minutes):
    template = seed_template(db)
    with pytest.raises(InvalidConfiguration):
        sop_editor.add_step(
            db, template, schemas.SOPStepCreate(name=name, estimated_minutes=minutes), actor=ACTOR
        )
    assert template.steps == []


def test_reorder_at_boundary_is_idempotent(db):
    template = seed_template(db, steps=(("Extraction", 90), ("PCR", 120), ("Sequencing", 60)))
    first = sorted(template.steps, key=lambda s: s.display_order)[0]
    last = sorted(template.steps, key=lambda s: s.display_order)[-1]
    before = _names(template)

    sop_editor.reorder_step(db, template, first.id, "up", actor=ACTOR)
    once = _names(template)
    sop_editor.reorder_step(db, template, first.id, "up", actor=ACTOR)
    assert _names(template) == once == before

    sop_editor.reorder_step(db, template, last.id, "down", actor=ACTOR)
    sop_editor.reorder_step(db, template, last.id, "down", actor=ACTOR)
    assert _names(template) == before
    assert _orders(template) == [1, 2, 3]


def test_reorder_swaps_adjacent_steps(db):
    template = seed_template(db, steps=(("Extraction", 90), ("PCR", 120), ("Sequencing", 60)))
    pcr = next(step for step in template.steps if step.name == "PCR")

    sop_editor.reorder_step(db, template, pcr.id, "up", actor=ACTOR)
    assert _names(template) == ["PCR", "Extraction", "Sequencing"]

    sop_editor.reorder_step(db, template, pcr.id, "down", actor=ACTOR)
    sop_editor.reorder_step(db, template, pcr.id, "down", actor=ACTOR)
    db.commit()
    db.refresh(template)
    assert _names(template) == ["Extraction", "Sequencing", "PCR"]
    assert _orders(template) == [1, 2, 3]


def test_display_orders_stay_dense_after_mixed_operations(db):
    template = seed_template(db, steps=(("A", 10), ("B", 10), ("C", 10), ("D", 10)))
    b = next(step for step in template.steps if step.name == "B")
    d = next(step for step in template.steps if step.name == "D")

    sop_editor.delete_step(db, template, b.id, actor=ACTOR)
    assert _orders(template) == [1, 2, 3]
    sop_editor.reorder_step(db, template, d.id, "up", actor=ACTOR)
    sop_editor.add_step(db, template, schemas.SOPStepCreate(name="E", estimated_minutes=5), actor=ACTOR)
    c = next(step for step in template.steps if step.name == "C")
    sop_editor.delete_step(db, template, c.id, actor=ACTOR)
    db.commit()
    db.refresh(template)

    assert _names(template) == ["A", "D", "E"]
    assert _orders(template) == [1, 2, 3]


def test_delete_step_cascades_fields_and_qc_points(db):
    template = seed_template(db, steps=(("Quantification", 30),))
    step = template.steps[0]
    _add_field(db, step, "concentration")
    _add_qc(db, step, "浓度检查", ["concentration"])
    db.commit()
    step_id = step.id

    sop_editor.delete_step(db, template, step_id, actor=ACTOR)
    db.commit()

    assert db.get(models.SOPStep, step_id) is None
    assert db.query(models.StepField).filter(models.StepField.step_id == step_id).count() == 0
    assert (
        db.query(models.QualityControlPoint)
        .filter(models.QualityControlPoint.step_id == step_id)
        .count()
        == 0
    )


def test_field_key_must_be_unique_within_step(db):
    template = seed_template(db, steps=(("Quantification", 30),))
    step = template.steps[0]
    _add_field(db, step, "concentration")
    with pytest.raises(InvalidConfiguration):
        _add_field(db, step, "concentration", field_type="text")
    assert [field.field_key for field in step.fields] == ["concentration"]


def test_select_fields_require_options_and_matching_default(db):
    template = seed_template(db, steps=(("Quantification", 30),))
    step = template.steps[0]
    with pytest.raises(InvalidConfiguration):
        _add_field(db, step, "instrument", field_type="select")
    with pytest.raises(InvalidConfiguration):
        _add_field(db, step, "instrument", field_type="select", options=["Qubit"], default_value="NanoDrop")
    with pytest.raises(InvalidConfiguration):
        _add_field(db, step, "volume", options=["1", "2"])

    field = _add_field(
        db, step, "instrument", field_type="select", options=["Qubit", "NanoDrop"], default_value="Qubit"
    )
    assert field.options == ["Qubit", "NanoDrop"]
    assert field.default_value == "Qubit"

    with pytest.raises(InvalidConfiguration):
        sop_editor.update_field(
            db, step, "instrument", schemas.StepFieldUpdate(options=["NanoDrop"]), actor=ACTOR
        )
    assert field.options == ["Qubit", "NanoDrop"]


def test_field_defaults_and_rules_follow_field_kind(db):
    template = seed_template(db, steps=(("Quantification", 30),))
    step = template.steps[0]
    field = _add_field(db, step, "concentration", default_value="12.5", validation_rule=">0", unit="ng/μL")
    assert field.default_value == 12.5
    assert field.validation_rule == ">0"

    with pytest.raises(InvalidConfiguration):
        _add_field(db, step, "operator", field_type="text", validation_rule="([bad")
    with pytest.raises(InvalidConfiguration):
        _add_field(db, step, "report", field_type="file", default_value="x.pdf")

    updated = sop_editor.update_field(
        db,
        step,
        "concentration",
        schemas.StepFieldUpdate(validation_rule="1-100", placeholder="ng/μL", help_text="Qubit reading"),
        actor=ACTOR,
    )
    assert updated.validation_rule == "1-100"
    assert updated.placeholder == "ng/μL"


def test_qc_point_related_fields_must_exist_on_step(db):
    template = seed_template(db, steps=(("Quantification", 30), ("Library", 60)))
    quant, library = sorted(template.steps, key=lambda s: s.display_order)
    _add_field(db, library, "insert_size")
    with pytest.raises(ReferentialIntegrityViolation):
        _add_qc(db, quant, "Insert check", ["insert_size"])
    assert quant.qc_points == []


def test_thresholds_only_for_range_and_formula_checks(db):
    template = seed_template(db, steps=(("Quantification", 30),))
    step = template.steps[0]
    _add_field(db, step, "concentration")
    with pytest.raises(InvalidConfiguration):
        _add_qc(db, step, "Visual", [], check_type="visual", warning_threshold=1.0)
    point = _add_qc(db, step, "Range", ["concentration"], warning_threshold=5.0, error_threshold=1.0)
    assert point.warning_threshold == 5.0
    assert step.has_quality_control is True
    with pytest.raises(InvalidConfiguration):
        sop_editor.update_qc_point(
            db, step, point.id, schemas.QualityControlPointUpdate(check_type="enum"), actor=ACTOR
        )
    assert point.check_type == "range"


def test_referenced_field_delete_fails_without_cascade(db):
    template = seed_template(db, steps=(("Quantification", 30),))
    step = template.steps[0]
    _add_field(db, step, "concentration")
    point = _add_qc(db, step, "浓度检查", ["concentration"])
    db.commit()

    with pytest.raises(ReferentialIntegrityViolation):
        sop_editor.delete_field(db, step, "concentration", actor=ACTOR)

    db.refresh(point)
    assert point.related_fields == ["concentration"]
    assert [field.field_key for field in step.fields] == ["concentration"]


def test_cascading_field_delete_strips_qc_references(db):
    template = seed_template(db, steps=(("Quantification", 30),))
    step = template.steps[0]
    _add_field(db, step, "concentration")
    _add_field(db, step, "volume")
    point = _add_qc(db, step, "浓度检查", ["concentration", "volume"])
    db.commit()

    sop_editor.delete_field(db, step, "concentration", actor=ACTOR, cascade=True)
    db.commit()
    db.refresh(point)
    db.refresh(step)

    assert point.related_fields == ["volume"]
    assert [(f.field_key, f.display_order) for f in step.fields] == [("volume", 1)]


def test_renaming_a_referenced_field_is_rejected(db):
    template = seed_template(db, steps=(("Quantification", 30),))
    step = template.steps[0]
    _add_field(db, step, "concentration")
    _add_field(db, step, "volume")
    _add_qc(db, step, "浓度检查", ["concentration"])

    with pytest.raises(ReferentialIntegrityViolation):
        sop_editor.update_field(
            db, step, "concentration", schemas.StepFieldUpdate(field_key="conc"), actor=ACTOR
        )
    renamed = sop_editor.update_field(
        db, step, "volume", schemas.StepFieldUpdate(field_key="volume_ul"), actor=ACTOR
    )
    assert renamed.field_key == "volume_ul"


def test_qc_activation_toggles(db):
    template = seed_template(db, steps=(("Quantification", 30),))
    step = template.steps[0]
    first = _add_qc(db, step, "Visual check", [], check_type="visual")
    _add_qc(db, step, "Photo", [], check_type="file")

    toggled = sop_editor.toggle_qc_point(db, step, first.id, actor=ACTOR)
    assert toggled.is_active is False

    points = sop_editor.set_step_qc_active(db, step, False, actor=ACTOR)
    assert [point.is_active for point in points] == [False, False]
    report = sop_editor.validate_step_configuration(step)
    assert not report.valid
    assert [issue.code for issue in report.issues] == ["quality_control_without_points"]

    sop_editor.set_step_qc_active(db, step, True, actor=ACTOR)
    assert sop_editor.validate_step_configuration(step).valid


def test_validate_step_configuration_reports_dangling_references(db):
    template = seed_template(db, steps=(("Quantification", 30),))
    step = template.steps[0]
    _add_field(db, step, "concentration")
    point = _add_qc(db, step, "浓度检查", ["concentration"])
    db.commit()
    # simulate data written before reference checks existed
    point.related_fields = ["concentration", "legacy_od"]
    db.commit()
    db.refresh(step)

    report = sop_editor.validate_step_configuration(step)
    assert report.valid is False
    assert report.issues[0].code == "dangling_field_reference"
    assert report.issues[0].field_key == "legacy_od"
    assert report.issues[0].qc_point_id == point.id


def test_template_metadata_and_listing(db):
    template = seed_template(db, name="RNA extraction kit A")
    other = seed_template(db, name="Library prep")
    sop_editor.update_template(
        db,
        other,
        schemas.SOPTemplateUpdate(applicable_projects=["RNA-seq ", "RNA-seq", "Panel"]),
        actor=ACTOR,
    )
    db.commit()
    assert other.applicable_projects == ["RNA-seq", "Panel"]

    found = {tpl.id for tpl in sop_editor.list_templates(db, search="rna")}
    assert {template.id, other.id} <= found

    sop_editor.set_template_status(db, [template.id], "inactive", actor=ACTOR)
    db.commit()
    inactive = {tpl.id for tpl in sop_editor.list_templates(db, status="inactive")}
    assert template.id in inactive
    assert other.id not in inactive

    with pytest.raises(InvalidConfiguration):
        sop_editor.update_template(
            db, other, schemas.SOPTemplateUpdate(applicable_projects=["", "WGS"]), actor=ACTOR
        )


def test_batch_status_change_with_unknown_template_changes_nothing(db):
    template = seed_template(db)
    missing = uuid.uuid4()
    with pytest.raises(SOPNotFound):
        sop_editor.set_template_status(db, [template.id, missing], "inactive", actor=ACTOR)
    assert template.status == "active"


def test_copy_template_duplicates_structure_without_versions(db):
    template = seed_template(db, steps=(("Quantification", 30), ("Library", 60)))
    quant = sorted(template.steps, key=lambda s: s.display_order)[0]
    _add_field(db, quant, "concentration", default_value=10)
    _add_qc(db, quant, "浓度检查", ["concentration"])
    db.commit()
    sop_versions.cut_version(db, template.id, schemas.SOPVersionCreate(version="v1.0.0"), actor=ACTOR)
    db.commit()

    duplicate = sop_editor.copy_template(db, template, actor="li.si", name="Copy of extraction")
    db.commit()
    db.refresh(duplicate)

    assert duplicate.id != template.id
    assert duplicate.name == "Copy of extraction"
    assert duplicate.created_by == "li.si"
    assert duplicate.versions == []
    assert _names(duplicate) == ["Quantification", "Library"]
    copied_step = sorted(duplicate.steps, key=lambda s: s.display_order)[0]
    assert copied_step.id != quant.id
    assert copied_step.fields[0].field_key == "concentration"
    assert copied_step.qc_points[0].related_fields == ["concentration"]
    assert sop_editor.summarize_template(db, duplicate.id) == {
        "step_count": 2,
        "field_count": 1,
        "qc_point_count": 1,
    }


def test_stale_revision_is_rejected(db):
    template = seed_template(db)
    revision = template.revision
    sop_editor.add_step(
        db,
        template,
        schemas.SOPStepCreate(name="Extraction", estimated_minutes=90),
        actor=ACTOR,
        expected_revision=revision,
    )
    assert template.revision > revision
    with pytest.raises(ConfigurationConflict):
        sop_editor.add_step(
            db,
            template,
            schemas.SOPStepCreate(name="PCR", estimated_minutes=120),
            actor=ACTOR,
            expected_revision=revision,
        )
    assert _names(template) == ["Extraction"]


def test_template_is_mutable_by_default_even_with_active_version(db):
    template = seed_template(db, steps=(("Extraction", 90),))
    version = sop_versions.cut_version(
        db, template.id, schemas.SOPVersionCreate(version="v1.0.0"), actor=ACTOR
    )
    sop_versions.submit_for_review(db, version, actor=ACTOR)
    sop_versions.approve(db, version, approver="qa.lead")
    sop_versions.activate(db, template, version, actor=ACTOR)

    assert sop_editor.template_is_mutable(template)
    step = sop_editor.add_step(
        db, template, schemas.SOPStepCreate(name="PCR", estimated_minutes=120), actor=ACTOR
    )
    assert step.display_order == 2


def test_strict_edit_lock_blocks_structure_until_a_draft_exists(db, monkeypatch):
    monkeypatch.setenv("SOP_STRICT_EDIT_LOCK", "1")
    template = seed_template(db, steps=(("Extraction", 90),))
    assert sop_editor.template_is_mutable(template)

    version = sop_versions.cut_version(
        db, template.id, schemas.SOPVersionCreate(version="v1.0.0"), actor=ACTOR
    )
    sop_versions.submit_for_review(db, version, actor=ACTOR)
    assert not sop_editor.template_is_mutable(template)
    with pytest.raises(ConfigurationConflict):
        sop_editor.add_step(
            db, template, schemas.SOPStepCreate(name="PCR", estimated_minutes=120), actor=ACTOR
        )
    assert len(template.steps) == 1

    sop_versions.copy_version(db, version, schemas.SOPVersionCopy(version="v1.1.0"), actor=ACTOR)
    assert sop_editor.template_is_mutable(template)
    sop_editor.add_step(
        db, template, schemas.SOPStepCreate(name="PCR", estimated_minutes=120), actor=ACTOR
    )
    assert len(template.steps) == 2


def test_delete_template_with_current_version_conflicts(db):
    template = seed_template(db, steps=(("Extraction", 90),))
    version = sop_versions.cut_version(
        db, template.id, schemas.SOPVersionCreate(version="v1.0.0"), actor=ACTOR
    )
    sop_versions.submit_for_review(db, version, actor=ACTOR)
    sop_versions.approve(db, version, approver="qa.lead")
    sop_versions.activate(db, template, version, actor=ACTOR)

    with pytest.raises(ConfigurationConflict):
        sop_editor.delete_template(db, template, actor=ACTOR)
    assert db.get(models.SOPTemplate, template.id) is not None


def test_delete_template_cascades_steps_and_versions(db):
    template = seed_template(db, steps=(("Extraction", 90),))
    template_id = template.id
    sop_versions.cut_version(db, template_id, schemas.SOPVersionCreate(version="v1.0.0"), actor=ACTOR)
    db.commit()

    sop_editor.delete_template(db, template, actor=ACTOR)
    db.commit()

    assert db.get(models.SOPTemplate, template_id) is None
    assert db.query(models.SOPStep).filter(models.SOPStep.template_id == template_id).count() == 0
    assert db.query(models.SOPVersion).filter(models.SOPVersion.template_id == template_id).count() == 0
    actions = [event.action for event in audit.list_template_events(db, template_id)]
    assert "template.deleted" in actions


def test_deleting_a_template_drops_its_activation_lock(db):
    template = seed_template(db, steps=(("Extraction", 90),))
    template_id = template.id
    sop_versions._activation_lock(template_id)
    assert template_id in sop_versions._activation_locks

    sop_editor.delete_template(db, template, actor=ACTOR)
    db.commit()

    assert template_id not in sop_versions._activation_locks
