from datetime import datetime
from typing import Optional, Any, Dict, Literal, List
from pydantic import BaseModel, ConfigDict, Field
from uuid import UUID


TemplateStatus = Literal["active", "inactive"]
StepType = Literal["info_record", "experiment", "instrument", "data_analysis", "report"]
FieldType = Literal["text", "number", "date", "file", "select", "textarea", "checkbox"]
CheckMode = Literal["manual", "automatic", "semi-automatic"]
CheckType = Literal["range", "enum", "formula", "file", "visual"]
NotificationLevel = Literal["info", "warning", "error"]
VersionStatus = Literal["draft", "review", "approved", "active", "archived", "deprecated"]


class SOPTemplateCreate(BaseModel):
    name: str
    description: Optional[str] = None
    applicable_projects: List[str] = Field(default_factory=list)
    status: TemplateStatus = "active"


class SOPTemplateUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    applicable_projects: Optional[List[str]] = None
    status: Optional[TemplateStatus] = None


class SOPTemplateCopy(BaseModel):
    name: Optional[str] = None


class SOPTemplateStatusBatch(BaseModel):
    template_ids: List[UUID]
    status: TemplateStatus


class SOPStepCreate(BaseModel):
    name: str
    step_type: StepType = "experiment"
    description: Optional[str] = None
    is_required: bool = True
    estimated_minutes: int
    has_quality_control: bool = False
    sop_document: Optional[str] = None


class SOPStepUpdate(BaseModel):
    name: Optional[str] = None
    step_type: Optional[StepType] = None
    description: Optional[str] = None
    is_required: Optional[bool] = None
    estimated_minutes: Optional[int] = None
    has_quality_control: Optional[bool] = None
    sop_document: Optional[str] = None


class SOPStepMove(BaseModel):
    direction: Literal["up", "down"]


class StepFieldCreate(BaseModel):
    field_key: str
    name: str
    field_type: FieldType
    is_required: bool = False
    default_value: Any = None
    unit: Optional[str] = None
    options: List[str] = Field(default_factory=list)
    validation_rule: Optional[str] = None
    placeholder: Optional[str] = None
    help_text: Optional[str] = None
    show_in_quick_panel: bool = False
    allow_batch_edit: bool = False
    participate_validation: bool = True
    include_in_report: bool = True


class StepFieldUpdate(BaseModel):
    field_key: Optional[str] = None
    name: Optional[str] = None
    field_type: Optional[FieldType] = None
    is_required: Optional[bool] = None
    default_value: Any = None
    unit: Optional[str] = None
    options: Optional[List[str]] = None
    validation_rule: Optional[str] = None
    placeholder: Optional[str] = None
    help_text: Optional[str] = None
    show_in_quick_panel: Optional[bool] = None
    allow_batch_edit: Optional[bool] = None
    participate_validation: Optional[bool] = None
    include_in_report: Optional[bool] = None


class QualityControlPointCreate(BaseModel):
    name: str
    check_mode: CheckMode = "manual"
    check_type: CheckType
    description: Optional[str] = None
    is_required: bool = True
    trigger_condition: Optional[str] = None
    check_rule: Optional[str] = None
    warning_threshold: Optional[float] = None
    error_threshold: Optional[float] = None
    auto_correction: bool = False
    notification_level: NotificationLevel = "warning"
    related_fields: List[str] = Field(default_factory=list)
    is_active: bool = True


class QualityControlPointUpdate(BaseModel):
    name: Optional[str] = None
    check_mode: Optional[CheckMode] = None
    check_type: Optional[CheckType] = None
    description: Optional[str] = None
    is_required: Optional[bool] = None
    trigger_condition: Optional[str] = None
    check_rule: Optional[str] = None
    warning_threshold: Optional[float] = None
    error_threshold: Optional[float] = None
    auto_correction: Optional[bool] = None
    notification_level: Optional[NotificationLevel] = None
    related_fields: Optional[List[str]] = None
    is_active: Optional[bool] = None


class QualityControlActivation(BaseModel):
    is_active: bool


class StepFieldOut(BaseModel):
    id: UUID
    step_id: UUID
    field_key: str
    name: str
    field_type: FieldType
    is_required: bool
    default_value: Any = None
    unit: Optional[str] = None
    options: List[str] = Field(default_factory=list)
    validation_rule: Optional[str] = None
    placeholder: Optional[str] = None
    help_text: Optional[str] = None
    display_order: int
    show_in_quick_panel: bool
    allow_batch_edit: bool
    participate_validation: bool
    include_in_report: bool
    model_config = ConfigDict(from_attributes=True)


class QualityControlPointOut(BaseModel):
    id: UUID
    step_id: UUID
    name: str
    check_mode: CheckMode
    check_type: CheckType
    description: Optional[str] = None
    is_required: bool
    trigger_condition: Optional[str] = None
    check_rule: Optional[str] = None
    warning_threshold: Optional[float] = None
    error_threshold: Optional[float] = None
    auto_correction: bool
    notification_level: NotificationLevel
    related_fields: List[str] = Field(default_factory=list)
    display_order: int
    is_active: bool
    model_config = ConfigDict(from_attributes=True)


class SOPStepOut(BaseModel):
    id: UUID
    template_id: UUID
    name: str
    step_type: StepType
    description: Optional[str] = None
    is_required: bool
    estimated_minutes: int
    display_order: int
    has_quality_control: bool
    sop_document: Optional[str] = None
    field_count: int = 0
    qc_point_count: int = 0
    model_config = ConfigDict(from_attributes=True)


class SOPStepDetailOut(SOPStepOut):
    fields: List[StepFieldOut] = Field(default_factory=list)
    qc_points: List[QualityControlPointOut] = Field(default_factory=list)


class SOPTemplateSummaryOut(BaseModel):
    id: UUID
    name: str
    status: TemplateStatus
    applicable_projects: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    created_by: str
    created_at: datetime
    updated_by: Optional[str] = None
    updated_at: datetime
    revision: int
    step_count: int = 0
    field_count: int = 0
    qc_point_count: int = 0
    current_version: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class SOPTemplateStructureCounts(BaseModel):
    step_count: int
    field_count: int
    qc_point_count: int


class SOPTemplateOut(SOPTemplateSummaryOut):
    steps: List[SOPStepOut] = Field(default_factory=list)


class StepValidationIssue(BaseModel):
    """Problem detected on a step configuration without mutating it."""

    code: str
    message: str
    field_key: Optional[str] = None
    qc_point_id: Optional[UUID] = None


class StepValidationReport(BaseModel):
    step_id: UUID
    valid: bool
    issues: List[StepValidationIssue] = Field(default_factory=list)


class SOPVersionCreate(BaseModel):
    version: str
    description: Optional[str] = None
    change_log: Optional[str] = None
    features: Dict[str, str] = Field(default_factory=dict)


class SOPVersionCopy(BaseModel):
    version: str
    description: Optional[str] = None


class SOPVersionOut(BaseModel):
    id: UUID
    template_id: UUID
    template_name: str
    version: str
    status: VersionStatus
    description: Optional[str] = None
    change_log: Optional[str] = None
    features: Dict[str, str] = Field(default_factory=dict)
    created_by: str
    created_at: datetime
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    activated_at: Optional[datetime] = None
    is_current: bool
    step_count: int
    field_count: int
    qc_point_count: int
    based_on_id: Optional[UUID] = None
    revision: int
    model_config = ConfigDict(from_attributes=True)


class FieldDiff(BaseModel):
    """Single dimension difference between two version snapshots."""

    field: str
    old_value: str
    new_value: str
    change_type: Literal["added", "modified", "deleted"]


class SOPVersionComparison(BaseModel):
    old_version_id: UUID
    new_version_id: UUID
    old_version: str
    new_version: str
    differences: List[FieldDiff] = Field(default_factory=list)


class SOPAuditEventOut(BaseModel):
    id: UUID
    template_id: Optional[UUID] = None
    version_id: Optional[UUID] = None
    actor: str
    action: str
    detail: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class SOPAuditActionCount(BaseModel):
    action: str
    count: int
