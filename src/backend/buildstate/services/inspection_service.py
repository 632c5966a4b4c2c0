"""Inspection service: scoped queries, CRUD and child records.

Every read goes through the caller's scope predicate, so an inspection the
caller may not see is indistinguishable from one that does not exist.
Lifecycle transitions are delegated to ``InspectionStateMachine``.
"""

import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Sequence

import structlog
from fastapi import Request
from sqlalchemy import Select, and_, asc, delete, desc, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from buildstate.core.config import settings
from buildstate.core.deps import Permission
from buildstate.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from buildstate.models.audit import AuditAction, AuditLog
from buildstate.models.inspection import (
    Finding,
    FindingSeverity,
    Inspection,
    InspectionAttachment,
    InspectionReminder,
    InspectionStatus,
    InspectionTag,
    InspectionType,
    Recommendation,
)
from buildstate.models.job import Job
from buildstate.models.organization import Organization
from buildstate.models.property import Property, Unit, UnitTenant
from buildstate.models.user import User, UserRole
from buildstate.services.access_scope import IdentityContext, inspection_filter, resolve_scope
from buildstate.services.audit_service import AuditTrailRecorder, format_changes
from buildstate.services.inspection_state_machine import (
    CompletionPreview,
    CompletionRequest,
    CompletionResult,
    InspectionStateMachine,
    audit_metadata,
    ensure_editable,
)
from buildstate.services.notification_service import InAppNotificationDispatcher, NotificationDispatcher
from buildstate.services.post_commit import PostCommitOutbox

logger = structlog.get_logger()

OPEN_STATES = (InspectionStatus.SCHEDULED, InspectionStatus.IN_PROGRESS)

SORT_FIELDS = {
    "scheduledDate": Inspection.scheduled_date,
    "status": Inspection.status,
    "title": Inspection.title,
    "createdAt": Inspection.created_at,
    "completedDate": Inspection.completed_date,
}
DEFAULT_SORT = ("scheduledDate", "asc")

UPDATABLE_FIELDS = (
    "title",
    "inspection_type",
    "scheduled_date",
    "assigned_to_id",
    "notes",
    "findings",
    "tags",
    "status",
)

DETAIL_OPTIONS = (
    selectinload(Inspection.parent_property),
    selectinload(Inspection.unit),
    selectinload(Inspection.assigned_to),
)

CALENDAR_LIMIT = 500
RECURRING_ISSUES_LIMIT = 10


# Query parameter parsing


def split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def parse_statuses(value: str | None) -> list[InspectionStatus]:
    """Parse a status or comma-list of statuses; unknown values are dropped."""
    statuses = []
    for part in split_csv(value):
        try:
            status = InspectionStatus(part.lower())
        except ValueError:
            continue
        if status not in statuses:
            statuses.append(status)
    return statuses


def parse_tags(tags: str | None, tag: str | None = None) -> list[str]:
    """Merge the single ``tag`` and comma-list ``tags`` parameters."""
    merged: list[str] = []
    for value in split_csv(tag) + split_csv(tags):
        if value not in merged:
            merged.append(value)
    return merged


def parse_date(value: str | None) -> datetime | None:
    """Parse an ISO date or datetime; invalid input is ignored."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_sort(sort_by: str | None, sort_order: str | None) -> tuple[str, str]:
    """Validated (field, direction). Unknown fields fall back to scheduledDate ascending."""
    if sort_by not in SORT_FIELDS:
        return DEFAULT_SORT
    direction = "desc" if (sort_order or "").lower() == "desc" else "asc"
    return sort_by, direction


@dataclass
class InspectionFilters:
    """List filters as received from the query string."""

    property_id: uuid.UUID | None = None
    unit_id: uuid.UUID | None = None
    status: str | None = None
    inspector_id: uuid.UUID | None = None
    search: str | None = None
    tags: str | None = None
    tag: str | None = None
    date_from: str | None = None
    date_to: str | None = None
    sort_by: str | None = None
    sort_order: str | None = None
    limit: int | None = None
    offset: int = 0


def build_filter_clauses(filters: InspectionFilters) -> list[Any]:
    """WHERE clauses for the caller-supplied filters (scope excluded)."""
    clauses: list[Any] = []

    if filters.property_id:
        clauses.append(Inspection.property_id == filters.property_id)
    if filters.unit_id:
        clauses.append(Inspection.unit_id == filters.unit_id)

    statuses = parse_statuses(filters.status)
    if statuses:
        clauses.append(Inspection.status.in_(statuses))

    if filters.inspector_id:
        clauses.append(Inspection.assigned_to_id == filters.inspector_id)

    search = (filters.search or "").strip()
    if search:
        pattern = f"%{search}%"
        clauses.append(
            or_(
                Inspection.title.ilike(pattern),
                Inspection.notes.ilike(pattern),
                Inspection.findings.ilike(pattern),
            )
        )

    # Every requested tag must be present
    for tag in parse_tags(filters.tags, filters.tag):
        clauses.append(Inspection.tag_rows.any(InspectionTag.tag == tag))

    date_from = parse_date(filters.date_from)
    if date_from:
        clauses.append(Inspection.scheduled_date >= date_from)
    date_to = parse_date(filters.date_to)
    if date_to:
        clauses.append(Inspection.scheduled_date <= date_to)

    return clauses


@dataclass
class InspectionPage:
    items: list[Inspection]
    total: int
    page: int
    has_more: bool


@dataclass
class InspectionAnalytics:
    total: int
    completion_rate: float
    status: dict[str, int]
    average_condition_index: int | None
    monthly_completion: list[dict[str, Any]] = field(default_factory=list)
    recurring_issues: list[dict[str, Any]] = field(default_factory=list)


def _require(identity: IdentityContext, permission: Permission) -> None:
    if not identity.has_permission(permission):
        raise ForbiddenError(f"Permission denied: {permission.value}")


class InspectionService:
    """Scoped inspection operations for one request."""

    def __init__(
        self,
        db: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: NotificationDispatcher | None = None,
    ):
        self.db = db
        self.session_factory = session_factory
        self.notifier = notifier or InAppNotificationDispatcher(session_factory)
        self.audit = AuditTrailRecorder(session_factory)
        self.state_machine = InspectionStateMachine(db, session_factory, notifier=self.notifier)

    # Queries

    def _scoped(self, identity: IdentityContext, query: Select) -> Select:
        return query.where(inspection_filter(identity, resolve_scope(identity)))

    async def list_inspections(self, identity: IdentityContext, filters: InspectionFilters) -> InspectionPage:
        """List visible inspections with filtering, sorting and paging."""
        limit = filters.limit or settings.inspection_list_default_limit
        limit = max(1, min(limit, settings.inspection_list_max_limit))
        offset = max(0, filters.offset or 0)

        clauses = build_filter_clauses(filters)

        count_query = self._scoped(identity, select(func.count()).select_from(Inspection)).where(*clauses)
        total = (await self.db.execute(count_query)).scalar() or 0

        sort_field, direction = parse_sort(filters.sort_by, filters.sort_order)
        column = SORT_FIELDS[sort_field]
        order = desc(column) if direction == "desc" else asc(column)

        query = (
            self._scoped(identity, select(Inspection))
            .where(*clauses)
            .options(*DETAIL_OPTIONS)
            .order_by(order, Inspection.id)
            .offset(offset)
            .limit(limit)
        )
        items = list((await self.db.execute(query)).scalars().all())

        return InspectionPage(
            items=items,
            total=total,
            page=offset // limit + 1,
            has_more=offset + len(items) < total,
        )

    async def get_inspection(self, identity: IdentityContext, inspection_id: uuid.UUID) -> Inspection:
        """Load a visible inspection.

        Raises:
            NotFoundError: If it does not exist or is outside the caller's scope
        """
        query = (
            self._scoped(identity, select(Inspection))
            .where(Inspection.id == inspection_id)
            .options(*DETAIL_OPTIONS)
        )
        inspection = (await self.db.execute(query)).scalar_one_or_none()
        if inspection is None:
            raise NotFoundError("Inspection not found")
        return inspection

    async def _reload(self, inspection_id: uuid.UUID) -> Inspection:
        query = (
            select(Inspection)
            .where(Inspection.id == inspection_id)
            .options(*DETAIL_OPTIONS)
            .execution_options(populate_existing=True)
        )
        return (await self.db.execute(query)).scalar_one()

    # Create / update / delete

    async def _validate_assignee(self, assigned_to_id: uuid.UUID, org_id: uuid.UUID) -> User:
        user = await self.db.get(User, assigned_to_id)
        if user is None or user.org_id != org_id or not user.is_active:
            raise ValidationError.for_field("assignedToId", "Assigned user not found")
        if user.role != UserRole.TECHNICIAN:
            raise ValidationError.for_field("assignedToId", "Inspections can only be assigned to technicians")
        return user

    async def _check_overlap(
        self,
        unit_id: uuid.UUID,
        scheduled_date: datetime,
        exclude_id: uuid.UUID | None = None,
    ) -> None:
        window = timedelta(minutes=settings.inspection_overlap_window_minutes)
        query = select(Inspection.id).where(
            Inspection.unit_id == unit_id,
            Inspection.status.in_(OPEN_STATES),
            Inspection.scheduled_date > scheduled_date - window,
            Inspection.scheduled_date < scheduled_date + window,
        )
        if exclude_id is not None:
            query = query.where(Inspection.id != exclude_id)
        if (await self.db.execute(query.limit(1))).first() is not None:
            raise ConflictError(
                "Another inspection is already scheduled for this unit within "
                f"{settings.inspection_overlap_window_minutes} minutes"
            )

    async def _active_tenant_ids(self, unit_id: uuid.UUID | None) -> list[uuid.UUID]:
        if unit_id is None:
            return []
        result = await self.db.execute(
            select(UnitTenant.tenant_id).where(UnitTenant.unit_id == unit_id, UnitTenant.is_active.is_(True))
        )
        return list(result.scalars().all())

    async def create_inspection(
        self,
        identity: IdentityContext,
        *,
        property_id: uuid.UUID,
        title: str,
        scheduled_date: datetime,
        inspection_type: InspectionType = InspectionType.ROUTINE,
        unit_id: uuid.UUID | None = None,
        assigned_to_id: uuid.UUID | None = None,
        notes: str | None = None,
        tags: list[str] | None = None,
        request: Request | None = None,
    ) -> Inspection:
        """Schedule a new inspection.

        Raises:
            ForbiddenError: If the caller cannot create inspections or the
                organization's subscription is not active
            NotFoundError: If the property is outside the caller's scope
            ValidationError: If the unit or assignee is invalid
            ConflictError: If the unit already has an open inspection within
                the overlap window
        """
        _require(identity, Permission.INSPECTION_CREATE)

        property = await self.db.get(Property, property_id)
        if property is None or (identity.org_id is not None and property.org_id != identity.org_id):
            raise NotFoundError("Property not found")
        if identity.role == UserRole.PROPERTY_MANAGER and property.id not in identity.managed_property_ids:
            raise NotFoundError("Property not found")

        organization = await self.db.get(Organization, property.org_id)
        if organization is None or not organization.has_active_subscription:
            raise ForbiddenError("An active subscription is required to schedule inspections")

        if not title or not title.strip():
            raise ValidationError.for_field("title", "Title is required")

        if unit_id is not None:
            unit = await self.db.get(Unit, unit_id)
            if unit is None or unit.property_id != property.id:
                raise ValidationError.for_field("unitId", "Unit does not belong to this property")

        if assigned_to_id is not None:
            await self._validate_assignee(assigned_to_id, property.org_id)

        if unit_id is not None:
            await self._check_overlap(unit_id, scheduled_date)

        inspection = Inspection(
            id=uuid.uuid4(),
            org_id=property.org_id,
            property_id=property.id,
            unit_id=unit_id,
            title=title.strip(),
            inspection_type=inspection_type,
            status=InspectionStatus.SCHEDULED,
            scheduled_date=scheduled_date,
            assigned_to_id=assigned_to_id,
            created_by_id=identity.user_id,
            notes=notes,
        )
        inspection.tag_rows = []
        if tags:
            inspection.set_tags(tags)

        self.db.add(inspection)
        await self.db.commit()
        inspection = await self._reload(inspection.id)

        logger.info(
            "Inspection created",
            inspection_id=str(inspection.id),
            property_id=str(property.id),
            unit_id=str(unit_id) if unit_id else None,
            user_id=str(identity.user_id),
        )

        recipients = ([assigned_to_id] if assigned_to_id else []) + await self._active_tenant_ids(unit_id)
        snapshot = inspection.snapshot()

        outbox = PostCommitOutbox()

        async def notify(results: dict[str, Any]) -> int:
            return await self.notifier.notify_inspection_scheduled(inspection, property, recipients)

        async def audit(results: dict[str, Any]) -> None:
            await self.audit.record(
                entity_type="inspection",
                entity_id=inspection.id,
                action=AuditAction.INSPECTION_CREATED,
                user_id=identity.user_id,
                changes=format_changes(None, snapshot),
                metadata=audit_metadata(identity, property_id=str(property.id)),
                request=request,
                description=f"Inspection '{inspection.title}' scheduled",
            )

        if recipients:
            outbox.add("notification", notify)
        outbox.add("audit", audit)
        await outbox.run()

        return inspection

    async def update_inspection(
        self,
        identity: IdentityContext,
        inspection_id: uuid.UUID,
        changes: dict[str, Any],
        request: Request | None = None,
    ) -> Inspection:
        """Apply a partial update.

        ``changes`` holds only the fields the caller sent. Status may move to
        IN_PROGRESS or CANCELLED here; completion has its own action.

        Raises:
            ConflictError: On lifecycle edits to a completed inspection or an
                invalid status transition
        """
        inspection = await self.get_inspection(identity, inspection_id)
        _require(identity, Permission.INSPECTION_UPDATE)

        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(
                "Unknown fields",
                issues=[{"field": name, "message": "Field cannot be updated"} for name in sorted(unknown)],
            )

        # Unchanged lifecycle values are not edits
        effective = {
            key: value
            for key, value in changes.items()
            if not (key in ("status", "assigned_to_id") and getattr(inspection, key) == value)
        }
        ensure_editable(inspection, set(effective))

        before = inspection.snapshot()

        if "title" in effective:
            title = (effective["title"] or "").strip()
            if not title:
                raise ValidationError.for_field("title", "Title is required")
            inspection.title = title
        if effective.get("inspection_type") is not None:
            inspection.inspection_type = effective["inspection_type"]
        if effective.get("scheduled_date") is not None:
            if inspection.unit_id is not None:
                await self._check_overlap(inspection.unit_id, effective["scheduled_date"], exclude_id=inspection.id)
            inspection.scheduled_date = effective["scheduled_date"]
        if "assigned_to_id" in effective:
            if effective["assigned_to_id"] is not None:
                await self._validate_assignee(effective["assigned_to_id"], inspection.org_id)
            inspection.assigned_to_id = effective["assigned_to_id"]
        if "notes" in effective:
            inspection.notes = effective["notes"]
        if "findings" in effective:
            inspection.findings = effective["findings"]
        if effective.get("tags") is not None:
            inspection.set_tags(effective["tags"])
        if effective.get("status") is not None:
            target = effective["status"]
            if target == InspectionStatus.COMPLETED:
                raise ValidationError.for_field("status", "Use the complete action to complete an inspection")
            is_valid, error = self.state_machine.can_transition(inspection, target)
            if not is_valid:
                raise ConflictError(error)
            inspection.status = target

        await self.db.commit()
        inspection = await self._reload(inspection.id)

        diff = format_changes(before, inspection.snapshot())
        if diff:
            await self.audit.record(
                entity_type="inspection",
                entity_id=inspection.id,
                action=AuditAction.INSPECTION_UPDATED,
                user_id=identity.user_id,
                changes=diff,
                metadata=audit_metadata(identity, fields=sorted(diff)),
                request=request,
                description="Inspection updated",
            )
        logger.info("Inspection updated", inspection_id=str(inspection.id), fields=sorted(diff or {}))
        return inspection

    async def delete_inspection(
        self,
        identity: IdentityContext,
        inspection_id: uuid.UUID,
        request: Request | None = None,
    ) -> None:
        """Hard-delete an inspection and its child records. Jobs are kept."""
        inspection = await self.get_inspection(identity, inspection_id)
        _require(identity, Permission.INSPECTION_DELETE)

        before = inspection.snapshot()

        await self.db.execute(delete(Recommendation).where(Recommendation.inspection_id == inspection.id))
        await self.db.execute(delete(Finding).where(Finding.inspection_id == inspection.id))
        await self.db.execute(delete(InspectionAttachment).where(InspectionAttachment.inspection_id == inspection.id))
        await self.db.execute(delete(InspectionReminder).where(InspectionReminder.inspection_id == inspection.id))
        await self.db.execute(update(Job).where(Job.inspection_id == inspection.id).values(inspection_id=None))
        await self.db.delete(inspection)
        await self.db.commit()

        await self.audit.record(
            entity_type="inspection",
            entity_id=inspection_id,
            action=AuditAction.INSPECTION_DELETED,
            user_id=identity.user_id,
            changes=format_changes(before, None),
            metadata=audit_metadata(identity),
            request=request,
            description=f"Inspection '{before['title']}' deleted",
        )
        logger.info("Inspection deleted", inspection_id=str(inspection_id), user_id=str(identity.user_id))

    # Lifecycle

    async def start_inspection(
        self, identity: IdentityContext, inspection_id: uuid.UUID, request: Request | None = None
    ) -> Inspection:
        inspection = await self.get_inspection(identity, inspection_id)
        _require(identity, Permission.INSPECTION_UPDATE)
        await self.state_machine.transition(inspection, InspectionStatus.IN_PROGRESS, identity, request)
        return await self._reload(inspection.id)

    async def cancel_inspection(
        self, identity: IdentityContext, inspection_id: uuid.UUID, request: Request | None = None
    ) -> Inspection:
        inspection = await self.get_inspection(identity, inspection_id)
        _require(identity, Permission.INSPECTION_UPDATE)
        await self.state_machine.transition(inspection, InspectionStatus.CANCELLED, identity, request)
        return await self._reload(inspection.id)

    async def complete_inspection(
        self,
        identity: IdentityContext,
        inspection_id: uuid.UUID,
        data: CompletionRequest,
        request: Request | None = None,
    ) -> CompletionResult | CompletionPreview:
        """Complete an inspection, or preview the follow-up jobs it would create."""
        inspection = await self.get_inspection(identity, inspection_id)
        _require(identity, Permission.INSPECTION_COMPLETE)

        if data.preview_only:
            return await self.state_machine.preview(inspection, data)

        result = await self.state_machine.complete(inspection, data, identity, request)
        result.inspection = await self._reload(inspection.id)
        return result

    # Findings

    async def list_findings(self, identity: IdentityContext, inspection_id: uuid.UUID) -> list[Finding]:
        inspection = await self.get_inspection(identity, inspection_id)
        result = await self.db.execute(
            select(Finding).where(Finding.inspection_id == inspection.id).order_by(Finding.created_at)
        )
        return list(result.scalars().all())

    async def add_finding(
        self,
        identity: IdentityContext,
        inspection_id: uuid.UUID,
        *,
        system: str,
        severity: FindingSeverity,
        note: str | None = None,
        photo_urls: list[str] | None = None,
        request: Request | None = None,
    ) -> Finding:
        """Record a structured finding on an open inspection."""
        inspection = await self.get_inspection(identity, inspection_id)
        _require(identity, Permission.INSPECTION_UPDATE)
        if inspection.status not in OPEN_STATES:
            raise ConflictError(f"Cannot add findings to a {inspection.status.value} inspection")
        if not system or not system.strip():
            raise ValidationError.for_field("system", "System is required")

        finding = Finding(
            id=uuid.uuid4(),
            inspection_id=inspection.id,
            system=system.strip(),
            severity=severity,
            note=note,
            photo_urls=photo_urls or [],
            created_by_id=identity.user_id,
        )
        self.db.add(finding)
        await self.db.commit()

        await self.audit.record(
            entity_type="inspection",
            entity_id=inspection.id,
            action=AuditAction.FINDING_ADDED,
            user_id=identity.user_id,
            metadata=audit_metadata(
                identity,
                finding_id=str(finding.id),
                system=finding.system,
                severity=finding.severity.value,
            ),
            request=request,
        )
        return finding

    async def delete_finding(
        self,
        identity: IdentityContext,
        inspection_id: uuid.UUID,
        finding_id: uuid.UUID,
        request: Request | None = None,
    ) -> None:
        """Delete a finding that no recommendation references yet."""
        inspection = await self.get_inspection(identity, inspection_id)
        _require(identity, Permission.INSPECTION_UPDATE)

        finding = await self.db.get(Finding, finding_id)
        if finding is None or finding.inspection_id != inspection.id:
            raise NotFoundError("Finding not found")

        referenced = await self.db.execute(
            select(Recommendation.id).where(Recommendation.finding_id == finding.id).limit(1)
        )
        if referenced.first() is not None:
            raise ConflictError("Finding is referenced by a recommendation and cannot be deleted")

        await self.db.delete(finding)
        await self.db.commit()

        await self.audit.record(
            entity_type="inspection",
            entity_id=inspection.id,
            action=AuditAction.FINDING_DELETED,
            user_id=identity.user_id,
            metadata=audit_metadata(identity, finding_id=str(finding_id)),
            request=request,
        )

    async def list_recommendations(self, identity: IdentityContext, inspection_id: uuid.UUID) -> list[Recommendation]:
        inspection = await self.get_inspection(identity, inspection_id)
        result = await self.db.execute(
            select(Recommendation)
            .where(Recommendation.inspection_id == inspection.id)
            .order_by(Recommendation.created_at, Recommendation.rule_id)
        )
        return list(result.scalars().all())

    async def list_jobs(self, identity: IdentityContext, inspection_id: uuid.UUID) -> list[Job]:
        inspection = await self.get_inspection(identity, inspection_id)
        result = await self.db.execute(
            select(Job).where(Job.inspection_id == inspection.id).order_by(Job.created_at, Job.title)
        )
        return list(result.scalars().all())

    # Attachments and reminders

    async def add_attachment(
        self,
        identity: IdentityContext,
        inspection_id: uuid.UUID,
        *,
        file_name: str,
        file_type: str,
        file_url: str,
        size: int | None = None,
        request: Request | None = None,
    ) -> InspectionAttachment:
        """Register an already uploaded file against an inspection."""
        inspection = await self.get_inspection(identity, inspection_id)
        _require(identity, Permission.INSPECTION_UPDATE)

        attachment = InspectionAttachment(
            id=uuid.uuid4(),
            inspection_id=inspection.id,
            file_name=file_name,
            file_type=file_type,
            file_url=file_url,
            size=size,
            uploaded_by_id=identity.user_id,
        )
        self.db.add(attachment)
        await self.db.commit()

        await self.audit.record(
            entity_type="inspection",
            entity_id=inspection.id,
            action=AuditAction.ATTACHMENT_ADDED,
            user_id=identity.user_id,
            metadata=audit_metadata(identity, attachment_id=str(attachment.id), file_name=file_name),
            request=request,
        )
        return attachment

    async def delete_attachment(
        self,
        identity: IdentityContext,
        inspection_id: uuid.UUID,
        attachment_id: uuid.UUID,
        request: Request | None = None,
    ) -> None:
        inspection = await self.get_inspection(identity, inspection_id)
        _require(identity, Permission.INSPECTION_UPDATE)

        attachment = await self.db.get(InspectionAttachment, attachment_id)
        if attachment is None or attachment.inspection_id != inspection.id:
            raise NotFoundError("Attachment not found")

        file_name = attachment.file_name
        await self.db.delete(attachment)
        await self.db.commit()

        await self.audit.record(
            entity_type="inspection",
            entity_id=inspection.id,
            action=AuditAction.ATTACHMENT_DELETED,
            user_id=identity.user_id,
            metadata=audit_metadata(identity, attachment_id=str(attachment_id), file_name=file_name),
            request=request,
        )

    async def create_reminder(
        self,
        identity: IdentityContext,
        inspection_id: uuid.UUID,
        *,
        reminder_date: datetime,
        channel: str = "in_app",
        recipients: list[str] | None = None,
        note: str | None = None,
        request: Request | None = None,
    ) -> InspectionReminder:
        """Schedule a reminder for an open inspection."""
        inspection = await self.get_inspection(identity, inspection_id)
        _require(identity, Permission.INSPECTION_UPDATE)
        if inspection.status not in OPEN_STATES:
            raise ConflictError(f"Cannot add reminders to a {inspection.status.value} inspection")

        reminder = InspectionReminder(
            id=uuid.uuid4(),
            inspection_id=inspection.id,
            user_id=identity.user_id,
            reminder_date=reminder_date,
            channel=channel,
            recipients=recipients or [],
            note=note,
        )
        self.db.add(reminder)
        await self.db.commit()

        await self.audit.record(
            entity_type="inspection",
            entity_id=inspection.id,
            action=AuditAction.REMINDER_CREATED,
            user_id=identity.user_id,
            metadata=audit_metadata(
                identity,
                reminder_id=str(reminder.id),
                reminder_date=reminder_date.isoformat(),
                channel=channel,
            ),
            request=request,
        )
        return reminder

    # Audit trail

    async def audit_trail(self, identity: IdentityContext, inspection_id: uuid.UUID, limit: int = 50) -> list[AuditLog]:
        """Audit entries for a visible inspection, newest first."""
        inspection = await self.get_inspection(identity, inspection_id)
        _require(identity, Permission.INSPECTION_AUDIT)
        return await self.audit.list_entity_trail("inspection", inspection.id, limit=limit)

    # Aggregation helpers

    async def analytics(self, identity: IdentityContext, filters: InspectionFilters) -> InspectionAnalytics:
        """Status counts, completion trend and recurring finding systems."""
        clauses = build_filter_clauses(filters)
        scope = inspection_filter(identity, resolve_scope(identity))

        rows = (
            await self.db.execute(
                select(Inspection.status, Inspection.completed_date, Inspection.property_id).where(scope, *clauses)
            )
        ).all()

        status_counts = {status.value: 0 for status in InspectionStatus}
        monthly: Counter[str] = Counter()
        property_ids = set()
        for status, completed_date, property_id in rows:
            status_counts[status.value] += 1
            property_ids.add(property_id)
            if status == InspectionStatus.COMPLETED and completed_date is not None:
                monthly[completed_date.strftime("%Y-%m")] += 1

        total = len(rows)
        completed = status_counts[InspectionStatus.COMPLETED.value]
        completion_rate = round(completed / total * 100, 1) if total else 0.0

        average_pci = None
        if property_ids:
            avg = (
                await self.db.execute(
                    select(func.avg(Property.health_score)).where(
                        Property.id.in_(list(property_ids)),
                        Property.health_score.is_not(None),
                    )
                )
            ).scalar()
            average_pci = int(round(float(avg))) if avg is not None else None

        issue_rows = (
            await self.db.execute(
                select(Finding.system, func.count(Finding.id))
                .join(Inspection, Finding.inspection_id == Inspection.id)
                .where(scope, *clauses)
                .group_by(Finding.system)
                .order_by(func.count(Finding.id).desc(), Finding.system)
                .limit(RECURRING_ISSUES_LIMIT)
            )
        ).all()

        return InspectionAnalytics(
            total=total,
            completion_rate=completion_rate,
            status=status_counts,
            average_condition_index=average_pci,
            monthly_completion=[{"month": month, "completed": monthly[month]} for month in sorted(monthly)],
            recurring_issues=[{"label": system, "count": count} for system, count in issue_rows],
        )

    async def calendar(
        self,
        identity: IdentityContext,
        start: str | None = None,
        end: str | None = None,
    ) -> list[Inspection]:
        """Visible inspections scheduled within [start, end]; invalid bounds are ignored."""
        query = self._scoped(identity, select(Inspection))
        start_date = parse_date(start)
        end_date = parse_date(end)
        if start_date:
            query = query.where(Inspection.scheduled_date >= start_date)
        if end_date:
            query = query.where(Inspection.scheduled_date <= end_date)
        query = query.order_by(Inspection.scheduled_date, Inspection.id).limit(CALENDAR_LIMIT)
        return list((await self.db.execute(query)).scalars().all())

    async def list_tags(self, identity: IdentityContext) -> list[str]:
        """Distinct tags across visible inspections."""
        query = (
            select(InspectionTag.tag)
            .join(Inspection, InspectionTag.inspection_id == Inspection.id)
            .where(inspection_filter(identity, resolve_scope(identity)))
            .distinct()
            .order_by(InspectionTag.tag)
        )
        return list((await self.db.execute(query)).scalars().all())

    async def list_inspectors(self, identity: IdentityContext) -> Sequence[User]:
        """Technicians the caller can assign, or who work on inspections they can see."""
        if identity.has_permission(Permission.INSPECTION_CREATE):
            query = select(User).where(User.role == UserRole.TECHNICIAN, User.is_active.is_(True))
            if identity.org_id is not None:
                query = query.where(User.org_id == identity.org_id)
        else:
            assignees = (
                select(Inspection.assigned_to_id)
                .where(
                    inspection_filter(identity, resolve_scope(identity)),
                    Inspection.assigned_to_id.is_not(None),
                )
            )
            query = select(User).where(and_(User.id.in_(assignees), User.role == UserRole.TECHNICIAN))
        query = query.order_by(User.full_name)
        return list((await self.db.execute(query)).scalars().all())
