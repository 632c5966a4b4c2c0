"""Request and response schemas for the inspection API.

JSON keys are camelCase; Python attributes stay snake_case. Enum values are
accepted in any case and rendered upper-case.
"""

import uuid
from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field
from pydantic.alias_generators import to_camel

from buildstate.models.audit import AuditLog
from buildstate.models.inspection import (
    Finding,
    FindingSeverity,
    Inspection,
    InspectionAttachment,
    InspectionReminder,
    InspectionStatus,
    InspectionType,
    Recommendation,
)
from buildstate.models.job import Job
from buildstate.models.user import User


def _lower(value: Any) -> Any:
    return value.lower() if isinstance(value, str) else value


StatusIn = Annotated[InspectionStatus, BeforeValidator(_lower)]
TypeIn = Annotated[InspectionType, BeforeValidator(_lower)]
SeverityIn = Annotated[FindingSeverity, BeforeValidator(_lower)]


class CamelModel(BaseModel):
    """Base schema with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Requests


class InspectionCreate(CamelModel):
    """Schema for scheduling a new inspection."""

    property_id: uuid.UUID
    unit_id: uuid.UUID | None = None
    title: str = Field(..., min_length=1, max_length=255)
    inspection_type: TypeIn = Field(default=InspectionType.ROUTINE, alias="type")
    scheduled_date: datetime
    assigned_to_id: uuid.UUID | None = None
    notes: str | None = None
    tags: list[str] | None = None


class InspectionUpdate(CamelModel):
    """Schema for a partial inspection update. Only sent fields are applied."""

    title: str | None = Field(default=None, max_length=255)
    inspection_type: TypeIn | None = Field(default=None, alias="type")
    scheduled_date: datetime | None = None
    assigned_to_id: uuid.UUID | None = None
    notes: str | None = None
    findings: str | None = None
    tags: list[str] | None = None
    status: StatusIn | None = None


class InspectionCompleteRequest(CamelModel):
    """Schema for completing an inspection."""

    findings: str | None = None
    notes: str | None = None
    tags: list[str] | None = None
    auto_create_jobs: bool = True
    preview_only: bool = False


class FindingCreate(CamelModel):
    system: str = Field(..., min_length=1, max_length=100)
    severity: SeverityIn
    note: str | None = None
    photo_urls: list[str] | None = None


class AttachmentCreate(CamelModel):
    file_name: str = Field(..., min_length=1, max_length=255)
    file_type: str = Field(..., min_length=1, max_length=100)
    file_url: str = Field(..., min_length=1, max_length=1000)
    size: int | None = Field(default=None, ge=0)


class ReminderCreate(CamelModel):
    reminder_date: datetime
    channel: Literal["in_app", "email", "sms"] = "in_app"
    recipients: list[str] | None = None
    note: str | None = None


# Responses


class UserSummary(CamelModel):
    id: str
    full_name: str
    email: str


class PropertySummary(CamelModel):
    id: str
    name: str
    address: str | None = None
    health_score: int | None = None


class UnitSummary(CamelModel):
    id: str
    unit_number: str


class InspectionResponse(CamelModel):
    """Schema for inspection response."""

    id: str
    org_id: str
    property_id: str
    unit_id: str | None
    title: str
    type: str
    status: str
    scheduled_date: datetime
    completed_date: datetime | None
    assigned_to_id: str | None
    completed_by_id: str | None
    findings: str | None
    notes: str | None
    tags: list[str] = []
    created_at: datetime | None = None
    updated_at: datetime | None = None
    property: PropertySummary | None = None
    unit: UnitSummary | None = None
    assigned_to: UserSummary | None = None


class InspectionPageResponse(CamelModel):
    """Paginated inspection response."""

    items: list[InspectionResponse]
    total: int
    page: int
    has_more: bool


class FindingResponse(CamelModel):
    id: str
    inspection_id: str
    system: str
    severity: str
    note: str | None
    photo_urls: list[str] = []
    created_at: datetime | None = None


class RecommendationResponse(CamelModel):
    id: str
    inspection_id: str
    finding_id: str
    property_id: str
    rule_id: str | None
    summary: str
    estimated_hours: float | None
    estimated_cost_aed: float | None = Field(default=None, alias="estimatedCostAED")
    priority: str
    suggested_within_days: int | None
    created_at: datetime | None = None


class JobResponse(CamelModel):
    id: str
    property_id: str
    unit_id: str | None
    inspection_id: str | None
    title: str
    description: str | None
    priority: str
    status: str
    created_at: datetime | None = None


class CompletionResponse(InspectionResponse):
    """Completed inspection plus what completion produced."""

    follow_up_jobs_created: int
    follow_up_jobs: list[JobResponse]
    condition_index: int
    recommendations: list[RecommendationResponse]


class CompletionPreviewResponse(CamelModel):
    preview: bool = True
    follow_up_jobs: list[dict[str, Any]]
    total_jobs_to_create: int


class AttachmentResponse(CamelModel):
    id: str
    inspection_id: str
    file_name: str
    file_type: str
    file_url: str
    size: int | None
    uploaded_by_id: str | None
    uploaded_at: datetime | None = None


class ReminderResponse(CamelModel):
    id: str
    inspection_id: str
    reminder_date: datetime
    channel: str
    recipients: list[str] = []
    note: str | None


class AuditEntryResponse(CamelModel):
    id: str
    timestamp: datetime
    action: str
    user_id: str | None
    entity_type: str
    entity_id: str
    description: str | None
    changes: dict[str, dict[str, Any]] | None
    metadata: dict[str, Any] | None


class AnalyticsMetrics(CamelModel):
    total: int
    completion_rate: float
    status: dict[str, int]
    average_condition_index: int | None


class AnalyticsCharts(CamelModel):
    monthly_completion: list[dict[str, Any]]
    recurring_issues: list[dict[str, Any]]


class AnalyticsResponse(CamelModel):
    metrics: AnalyticsMetrics
    charts: AnalyticsCharts


class CalendarEntry(CamelModel):
    id: str
    title: str
    type: str
    status: str
    scheduled_date: datetime
    property_id: str
    unit_id: str | None
    assigned_to_id: str | None


# Converters


def _str(value: Any) -> str | None:
    return str(value) if value is not None else None


def user_to_summary(user: User | None) -> UserSummary | None:
    if user is None:
        return None
    return UserSummary(id=str(user.id), full_name=user.full_name, email=user.email)


def inspection_to_response(inspection: Inspection) -> InspectionResponse:
    """Convert an inspection model to response. Relationships must be loaded."""
    prop = inspection.parent_property
    unit = inspection.unit
    return InspectionResponse(
        id=str(inspection.id),
        org_id=str(inspection.org_id),
        property_id=str(inspection.property_id),
        unit_id=_str(inspection.unit_id),
        title=inspection.title,
        type=inspection.inspection_type.name,
        status=inspection.status.name,
        scheduled_date=inspection.scheduled_date,
        completed_date=inspection.completed_date,
        assigned_to_id=_str(inspection.assigned_to_id),
        completed_by_id=_str(inspection.completed_by_id),
        findings=inspection.findings,
        notes=inspection.notes,
        tags=inspection.tags,
        created_at=inspection.created_at,
        updated_at=inspection.updated_at,
        property=PropertySummary(
            id=str(prop.id), name=prop.name, address=prop.address, health_score=prop.health_score
        )
        if prop is not None
        else None,
        unit=UnitSummary(id=str(unit.id), unit_number=unit.unit_number) if unit is not None else None,
        assigned_to=user_to_summary(inspection.assigned_to),
    )


def finding_to_response(finding: Finding) -> FindingResponse:
    return FindingResponse(
        id=str(finding.id),
        inspection_id=str(finding.inspection_id),
        system=finding.system,
        severity=finding.severity.name,
        note=finding.note,
        photo_urls=finding.photo_urls or [],
        created_at=finding.created_at,
    )


def recommendation_to_response(rec: Recommendation) -> RecommendationResponse:
    return RecommendationResponse(
        id=str(rec.id),
        inspection_id=str(rec.inspection_id),
        finding_id=str(rec.finding_id),
        property_id=str(rec.property_id),
        rule_id=rec.rule_id,
        summary=rec.summary,
        estimated_hours=rec.estimated_hours,
        estimated_cost_aed=rec.estimated_cost_aed,
        priority=rec.priority.upper(),
        suggested_within_days=rec.suggested_within_days,
        created_at=rec.created_at,
    )


def job_to_response(job: Job) -> JobResponse:
    return JobResponse(
        id=str(job.id),
        property_id=str(job.property_id),
        unit_id=_str(job.unit_id),
        inspection_id=_str(job.inspection_id),
        title=job.title,
        description=job.description,
        priority=job.priority.name,
        status=job.status.name,
        created_at=job.created_at,
    )


def attachment_to_response(attachment: InspectionAttachment) -> AttachmentResponse:
    return AttachmentResponse(
        id=str(attachment.id),
        inspection_id=str(attachment.inspection_id),
        file_name=attachment.file_name,
        file_type=attachment.file_type,
        file_url=attachment.file_url,
        size=attachment.size,
        uploaded_by_id=_str(attachment.uploaded_by_id),
        uploaded_at=attachment.uploaded_at,
    )


def reminder_to_response(reminder: InspectionReminder) -> ReminderResponse:
    return ReminderResponse(
        id=str(reminder.id),
        inspection_id=str(reminder.inspection_id),
        reminder_date=reminder.reminder_date,
        channel=reminder.channel,
        recipients=reminder.recipients or [],
        note=reminder.note,
    )


def audit_to_response(entry: AuditLog) -> AuditEntryResponse:
    changes = None
    if entry.old_values is not None or entry.new_values is not None:
        old, new = entry.old_values or {}, entry.new_values or {}
        changes = {key: {"before": old.get(key), "after": new.get(key)} for key in sorted(set(old) | set(new))}
    return AuditEntryResponse(
        id=str(entry.id),
        timestamp=entry.timestamp,
        action=entry.action.name,
        user_id=_str(entry.user_id),
        entity_type=entry.entity_type,
        entity_id=entry.entity_id,
        description=entry.description,
        changes=changes,
        metadata=entry.extra_data,
    )


def inspection_to_calendar_entry(inspection: Inspection) -> CalendarEntry:
    return CalendarEntry(
        id=str(inspection.id),
        title=inspection.title,
        type=inspection.inspection_type.name,
        status=inspection.status.name,
        scheduled_date=inspection.scheduled_date,
        property_id=str(inspection.property_id),
        unit_id=_str(inspection.unit_id),
        assigned_to_id=_str(inspection.assigned_to_id),
    )
