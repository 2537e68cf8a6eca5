import uuid
import sqlalchemy as sa
from sqlalchemy import (
    Column,
    String,
    Boolean,
    DateTime,
    ForeignKey,
    JSON,
    Integer,
    Text,
    Float,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SOPTemplate(Base):
    __tablename__ = "sop_templates"

    # purpose: reusable SOP definition acting as aggregate root for steps, fields and QC points
    # status: pilot

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    status = Column(String, default="active", nullable=False)
    applicable_projects = Column(JSON, default=list, nullable=False)
    description = Column(Text, nullable=True)
    created_by = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_by = Column(String, nullable=True)
    updated_at = Column(DateTime, default=utcnow, nullable=False)
    revision = Column(Integer, nullable=False)

    steps = relationship(
        "SOPStep",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="SOPStep.display_order",
    )
    versions = relationship(
        "SOPVersion",
        back_populates="template",
        cascade="all, delete-orphan",
        foreign_keys="SOPVersion.template_id",
    )

    @property
    def step_count(self) -> int:
        return len(self.steps)

    @property
    def field_count(self) -> int:
        return sum(len(step.fields) for step in self.steps)

    @property
    def qc_point_count(self) -> int:
        return sum(len(step.qc_points) for step in self.steps)

    @property
    def current_version(self) -> str | None:
        return next((v.version for v in self.versions if v.is_current), None)

    __mapper_args__ = {"version_id_col": revision}
    __table_args__ = (
        sa.CheckConstraint(
            "status IN ('active', 'inactive')",
            name="ck_sop_template_status",
        ),
    )


class SOPStep(Base):
    __tablename__ = "sop_steps"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    template_id = Column(
        UUID(as_uuid=True),
        ForeignKey("sop_templates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String, nullable=False)
    step_type = Column(String, default="experiment", nullable=False)
    description = Column(Text, nullable=True)
    is_required = Column(Boolean, default=True, nullable=False)
    estimated_minutes = Column(Integer, nullable=False)
    display_order = Column(Integer, nullable=False)
    has_quality_control = Column(Boolean, default=False, nullable=False)
    sop_document = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    template = relationship("SOPTemplate", back_populates="steps")
    fields = relationship(
        "StepField",
        back_populates="step",
        cascade="all, delete-orphan",
        order_by="StepField.display_order",
    )
    qc_points = relationship(
        "QualityControlPoint",
        back_populates="step",
        cascade="all, delete-orphan",
        order_by="QualityControlPoint.display_order",
    )

    @property
    def field_count(self) -> int:
        return len(self.fields)

    @property
    def qc_point_count(self) -> int:
        return len(self.qc_points)

    __table_args__ = (
        sa.CheckConstraint("estimated_minutes > 0", name="ck_sop_step_duration"),
        sa.CheckConstraint(
            "step_type IN ('info_record', 'experiment', 'instrument', 'data_analysis', 'report')",
            name="ck_sop_step_type",
        ),
    )


class StepField(Base):
    __tablename__ = "sop_step_fields"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    step_id = Column(
        UUID(as_uuid=True),
        ForeignKey("sop_steps.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    field_key = Column(String, nullable=False)
    name = Column(String, nullable=False)
    field_type = Column(String, nullable=False)
    is_required = Column(Boolean, default=False, nullable=False)
    default_value = Column(JSON, nullable=True)
    unit = Column(String, nullable=True)
    options = Column(JSON, default=list, nullable=False)
    validation_rule = Column(String, nullable=True)
    placeholder = Column(String, nullable=True)
    help_text = Column(Text, nullable=True)
    display_order = Column(Integer, nullable=False)
    show_in_quick_panel = Column(Boolean, default=False, nullable=False)
    allow_batch_edit = Column(Boolean, default=False, nullable=False)
    participate_validation = Column(Boolean, default=True, nullable=False)
    include_in_report = Column(Boolean, default=True, nullable=False)

    step = relationship("SOPStep", back_populates="fields")

    __table_args__ = (
        sa.UniqueConstraint("step_id", "field_key", name="uq_sop_step_field_key"),
        sa.CheckConstraint(
            "field_type IN ('text', 'number', 'date', 'file', 'select', 'textarea', 'checkbox')",
            name="ck_sop_step_field_type",
        ),
    )


class QualityControlPoint(Base):
    __tablename__ = "sop_qc_points"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    step_id = Column(
        UUID(as_uuid=True),
        ForeignKey("sop_steps.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String, nullable=False)
    check_mode = Column(String, default="manual", nullable=False)
    check_type = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    is_required = Column(Boolean, default=True, nullable=False)
    trigger_condition = Column(String, nullable=True)
    check_rule = Column(String, nullable=True)
    warning_threshold = Column(Float, nullable=True)
    error_threshold = Column(Float, nullable=True)
    auto_correction = Column(Boolean, default=False, nullable=False)
    notification_level = Column(String, default="warning", nullable=False)
    related_fields = Column(JSON, default=list, nullable=False)
    display_order = Column(Integer, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    step = relationship("SOPStep", back_populates="qc_points")

    __table_args__ = (
        sa.CheckConstraint(
            "check_mode IN ('manual', 'automatic', 'semi-automatic')",
            name="ck_sop_qc_check_mode",
        ),
        sa.CheckConstraint(
            "notification_level IN ('info', 'warning', 'error')",
            name="ck_sop_qc_notification_level",
        ),
    )


class SOPVersion(Base):
    __tablename__ = "sop_versions"

    # purpose: snapshot descriptor of a template shape moving through review, approval and activation
    # status: pilot
    # depends_on: sop_templates

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    template_id = Column(
        UUID(as_uuid=True),
        ForeignKey("sop_templates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    template_name = Column(String, nullable=False)
    version = Column(String, nullable=False)
    status = Column(String, default="draft", nullable=False)
    description = Column(Text, nullable=True)
    change_log = Column(Text, nullable=True)
    features = Column(JSON, default=dict, nullable=False)
    snapshot = Column(JSON, default=dict, nullable=False)
    created_by = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    reviewed_by = Column(String, nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    approved_by = Column(String, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    activated_at = Column(DateTime, nullable=True)
    is_current = Column(Boolean, default=False, nullable=False)
    step_count = Column(Integer, default=0, nullable=False)
    field_count = Column(Integer, default=0, nullable=False)
    qc_point_count = Column(Integer, default=0, nullable=False)
    based_on_id = Column(
        UUID(as_uuid=True),
        ForeignKey("sop_versions.id", ondelete="SET NULL"),
        nullable=True,
    )
    revision = Column(Integer, nullable=False)

    template = relationship(
        "SOPTemplate", back_populates="versions", foreign_keys=[template_id]
    )
    based_on = relationship("SOPVersion", remote_side=[id])

    __mapper_args__ = {"version_id_col": revision}
    __table_args__ = (
        sa.UniqueConstraint("template_id", "version", name="uq_sop_template_version"),
        sa.Index(
            "uq_sop_template_current_version",
            "template_id",
            unique=True,
            sqlite_where=sa.text("is_current = 1"),
            postgresql_where=sa.text("is_current"),
        ),
        sa.CheckConstraint(
            "status IN ('draft', 'review', 'approved', 'active', 'archived', 'deprecated')",
            name="ck_sop_version_status",
        ),
    )


class SOPAuditEvent(Base):
    __tablename__ = "sop_audit_events"

    # purpose: persist SOP configuration and version lifecycle actions for traceability
    # status: pilot

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    template_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    version_id = Column(UUID(as_uuid=True), nullable=True)
    actor = Column(String, nullable=False)
    action = Column(String, nullable=False)
    detail = Column(JSON, default=dict, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
