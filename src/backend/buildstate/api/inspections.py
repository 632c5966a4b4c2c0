"""Inspection lifecycle API endpoints."""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, status

from buildstate.api.schemas import (
    AttachmentCreate,
    AttachmentResponse,
    AuditEntryResponse,
    CompletionPreviewResponse,
    CompletionResponse,
    FindingCreate,
    FindingResponse,
    InspectionCompleteRequest,
    InspectionCreate,
    InspectionPageResponse,
    InspectionResponse,
    InspectionUpdate,
    JobResponse,
    RecommendationResponse,
    ReminderCreate,
    ReminderResponse,
    attachment_to_response,
    audit_to_response,
    finding_to_response,
    inspection_to_response,
    job_to_response,
    recommendation_to_response,
    reminder_to_response,
)
from buildstate.core.config import settings
from buildstate.core.deps import DbSession, Identity, SessionFactory
from buildstate.services.inspection_service import InspectionFilters, InspectionService
from buildstate.services.inspection_state_machine import CompletionPreview, CompletionRequest

router = APIRouter()


def get_inspection_service(db: DbSession, session_factory: SessionFactory) -> InspectionService:
    return InspectionService(db, session_factory)


Service = Annotated[InspectionService, Depends(get_inspection_service)]


def list_filters(
    property_id: Annotated[uuid.UUID | None, Query(alias="propertyId")] = None,
    unit_id: Annotated[uuid.UUID | None, Query(alias="unitId")] = None,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    inspector_id: Annotated[uuid.UUID | None, Query(alias="inspectorId")] = None,
    search: Annotated[str | None, Query(max_length=200)] = None,
    tags: Annotated[str | None, Query()] = None,
    tag: Annotated[str | None, Query()] = None,
    date_from: Annotated[str | None, Query(alias="dateFrom")] = None,
    date_to: Annotated[str | None, Query(alias="dateTo")] = None,
    sort_by: Annotated[str | None, Query(alias="sortBy")] = None,
    sort_order: Annotated[str | None, Query(alias="sortOrder")] = None,
    limit: Annotated[int, Query(ge=1, le=settings.inspection_list_max_limit)] = settings.inspection_list_default_limit,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> InspectionFilters:
    """Collect list query parameters."""
    return InspectionFilters(
        property_id=property_id,
        unit_id=unit_id,
        status=status_filter,
        inspector_id=inspector_id,
        search=search,
        tags=tags,
        tag=tag,
        date_from=date_from,
        date_to=date_to,
        sort_by=sort_by,
        sort_order=sort_order,
        limit=limit,
        offset=offset,
    )


Filters = Annotated[InspectionFilters, Depends(list_filters)]


@router.get("", response_model=InspectionPageResponse)
async def list_inspections(identity: Identity, service: Service, filters: Filters) -> InspectionPageResponse:
    """List inspections visible to the caller."""
    page = await service.list_inspections(identity, filters)
    return InspectionPageResponse(
        items=[inspection_to_response(i) for i in page.items],
        total=page.total,
        page=page.page,
        has_more=page.has_more,
    )


@router.post("", response_model=InspectionResponse, status_code=status.HTTP_201_CREATED)
async def create_inspection(
    body: InspectionCreate,
    identity: Identity,
    service: Service,
    request: Request,
) -> InspectionResponse:
    """Schedule a new inspection."""
    inspection = await service.create_inspection(
        identity,
        property_id=body.property_id,
        title=body.title,
        scheduled_date=body.scheduled_date,
        inspection_type=body.inspection_type,
        unit_id=body.unit_id,
        assigned_to_id=body.assigned_to_id,
        notes=body.notes,
        tags=body.tags,
        request=request,
    )
    return inspection_to_response(inspection)


@router.get("/{inspection_id}", response_model=InspectionResponse)
async def get_inspection(inspection_id: uuid.UUID, identity: Identity, service: Service) -> InspectionResponse:
    """Get an inspection by ID."""
    inspection = await service.get_inspection(identity, inspection_id)
    return inspection_to_response(inspection)


@router.patch("/{inspection_id}", response_model=InspectionResponse)
async def update_inspection(
    inspection_id: uuid.UUID,
    body: InspectionUpdate,
    identity: Identity,
    service: Service,
    request: Request,
) -> InspectionResponse:
    """Partially update an inspection."""
    changes = body.model_dump(exclude_unset=True)
    inspection = await service.update_inspection(identity, inspection_id, changes, request=request)
    return inspection_to_response(inspection)


@router.delete("/{inspection_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_inspection(inspection_id: uuid.UUID, identity: Identity, service: Service, request: Request) -> None:
    """Delete an inspection."""
    await service.delete_inspection(identity, inspection_id, request=request)


@router.post("/{inspection_id}/start", response_model=InspectionResponse)
async def start_inspection(
    inspection_id: uuid.UUID, identity: Identity, service: Service, request: Request
) -> InspectionResponse:
    """Move a scheduled inspection to in progress."""
    inspection = await service.start_inspection(identity, inspection_id, request=request)
    return inspection_to_response(inspection)


@router.post("/{inspection_id}/cancel", response_model=InspectionResponse)
async def cancel_inspection(
    inspection_id: uuid.UUID, identity: Identity, service: Service, request: Request
) -> InspectionResponse:
    """Cancel an open inspection."""
    inspection = await service.cancel_inspection(identity, inspection_id, request=request)
    return inspection_to_response(inspection)


@router.post(
    "/{inspection_id}/complete",
    response_model=CompletionResponse | CompletionPreviewResponse,
)
async def complete_inspection(
    inspection_id: uuid.UUID,
    identity: Identity,
    service: Service,
    request: Request,
    body: InspectionCompleteRequest | None = None,
) -> CompletionResponse | CompletionPreviewResponse:
    """Complete an inspection, or preview the follow-up jobs with ``previewOnly``."""
    body = body or InspectionCompleteRequest()
    data = CompletionRequest(
        findings=body.findings,
        notes=body.notes,
        tags=body.tags,
        auto_create_jobs=body.auto_create_jobs,
        preview_only=body.preview_only,
    )
    result = await service.complete_inspection(identity, inspection_id, data, request=request)

    if isinstance(result, CompletionPreview):
        return CompletionPreviewResponse(
            follow_up_jobs=[
                {**job, "priority": job["priority"].upper(), "status": job["status"].upper()}
                for job in result.follow_up_jobs
            ],
            total_jobs_to_create=result.total_jobs_to_create,
        )

    return CompletionResponse(
        **inspection_to_response(result.inspection).model_dump(),
        follow_up_jobs_created=len(result.follow_up_jobs),
        follow_up_jobs=[job_to_response(job) for job in result.follow_up_jobs],
        condition_index=result.condition_index,
        recommendations=[recommendation_to_response(r) for r in result.recommendations],
    )


@router.get("/{inspection_id}/audit", response_model=list[AuditEntryResponse])
async def get_inspection_audit(
    inspection_id: uuid.UUID,
    identity: Identity,
    service: Service,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
) -> list[AuditEntryResponse]:
    """Audit trail for an inspection, newest first."""
    entries = await service.audit_trail(identity, inspection_id, limit=limit)
    return [audit_to_response(entry) for entry in entries]


# Findings


@router.get("/{inspection_id}/findings", response_model=list[FindingResponse])
async def list_findings(inspection_id: uuid.UUID, identity: Identity, service: Service) -> list[FindingResponse]:
    findings = await service.list_findings(identity, inspection_id)
    return [finding_to_response(f) for f in findings]


@router.post("/{inspection_id}/findings", response_model=FindingResponse, status_code=status.HTTP_201_CREATED)
async def add_finding(
    inspection_id: uuid.UUID,
    body: FindingCreate,
    identity: Identity,
    service: Service,
    request: Request,
) -> FindingResponse:
    """Record a structured finding."""
    finding = await service.add_finding(
        identity,
        inspection_id,
        system=body.system,
        severity=body.severity,
        note=body.note,
        photo_urls=body.photo_urls,
        request=request,
    )
    return finding_to_response(finding)


@router.delete("/{inspection_id}/findings/{finding_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_finding(
    inspection_id: uuid.UUID,
    finding_id: uuid.UUID,
    identity: Identity,
    service: Service,
    request: Request,
) -> None:
    await service.delete_finding(identity, inspection_id, finding_id, request=request)


@router.get("/{inspection_id}/recommendations", response_model=list[RecommendationResponse])
async def list_recommendations(
    inspection_id: uuid.UUID, identity: Identity, service: Service
) -> list[RecommendationResponse]:
    recommendations = await service.list_recommendations(identity, inspection_id)
    return [recommendation_to_response(r) for r in recommendations]


@router.get("/{inspection_id}/jobs", response_model=list[JobResponse])
async def list_jobs(inspection_id: uuid.UUID, identity: Identity, service: Service) -> list[JobResponse]:
    jobs = await service.list_jobs(identity, inspection_id)
    return [job_to_response(job) for job in jobs]


# Attachments and reminders


@router.post(
    "/{inspection_id}/attachments",
    response_model=AttachmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_attachment(
    inspection_id: uuid.UUID,
    body: AttachmentCreate,
    identity: Identity,
    service: Service,
    request: Request,
) -> AttachmentResponse:
    """Register an uploaded file against an inspection."""
    attachment = await service.add_attachment(
        identity,
        inspection_id,
        file_name=body.file_name,
        file_type=body.file_type,
        file_url=body.file_url,
        size=body.size,
        request=request,
    )
    return attachment_to_response(attachment)


@router.delete("/{inspection_id}/attachments/{attachment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_attachment(
    inspection_id: uuid.UUID,
    attachment_id: uuid.UUID,
    identity: Identity,
    service: Service,
    request: Request,
) -> None:
    await service.delete_attachment(identity, inspection_id, attachment_id, request=request)


@router.post(
    "/{inspection_id}/reminders",
    response_model=ReminderResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_reminder(
    inspection_id: uuid.UUID,
    body: ReminderCreate,
    identity: Identity,
    service: Service,
    request: Request,
) -> ReminderResponse:
    """Schedule a reminder for an upcoming inspection."""
    reminder = await service.create_reminder(
        identity,
        inspection_id,
        reminder_date=body.reminder_date,
        channel=body.channel,
        recipients=body.recipients,
        note=body.note,
        request=request,
    )
    return reminder_to_response(reminder)
