"""Inspection state machine with validated transitions.

This module implements the inspection lifecycle:

    SCHEDULED -> IN_PROGRESS -> COMPLETED
         |            |
         +------------+-----> CANCELLED

COMPLETED and CANCELLED are terminal. Completion is the only transition with
side effects: it scores the property, records recommendations and then hands
follow-up jobs, notification and audit to a post-commit outbox.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog
from fastapi import Request
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.attributes import set_committed_value

from buildstate.core.errors import ConflictError, ServiceError, ValidationError
from buildstate.core.metrics import record_inspection_completed
from buildstate.models.audit import AuditAction
from buildstate.models.inspection import Finding, Inspection, InspectionStatus, Recommendation
from buildstate.models.job import Job
from buildstate.models.property import Property
from buildstate.models.user import User
from buildstate.services.access_scope import IdentityContext, is_scope_bypass, resolve_scope
from buildstate.services.audit_service import AuditTrailRecorder, format_changes
from buildstate.services.condition_scorer import compute_pci
from buildstate.services.findings_classifier import classify_observations
from buildstate.services.notification_service import InAppNotificationDispatcher, NotificationDispatcher
from buildstate.services.post_commit import PostCommitOutbox
from buildstate.services.recommendation_engine import RuleSet, apply_rules, build_recommendation
from buildstate.services.remediation_job_factory import RemediationJobFactory, build_payloads

logger = structlog.get_logger()


# Valid state transitions: from_state -> [to_states]
VALID_TRANSITIONS: dict[InspectionStatus, list[InspectionStatus]] = {
    InspectionStatus.SCHEDULED: [
        InspectionStatus.IN_PROGRESS,
        InspectionStatus.COMPLETED,
        InspectionStatus.CANCELLED,
    ],
    InspectionStatus.IN_PROGRESS: [
        InspectionStatus.COMPLETED,
        InspectionStatus.CANCELLED,
    ],
    InspectionStatus.COMPLETED: [],  # Terminal state
    InspectionStatus.CANCELLED: [],  # Terminal state
}

TERMINAL_STATES = frozenset({InspectionStatus.COMPLETED, InspectionStatus.CANCELLED})

# Fields frozen once an inspection is completed
LIFECYCLE_FIELDS = ("scheduled_date", "status", "assigned_to_id", "findings")

TRANSITION_ACTIONS = {
    InspectionStatus.IN_PROGRESS: AuditAction.INSPECTION_STARTED,
    InspectionStatus.CANCELLED: AuditAction.INSPECTION_CANCELLED,
}


def audit_metadata(identity: IdentityContext, **extra: Any) -> dict[str, Any] | None:
    """Audit metadata, stamped when the caller acted through the scope bypass."""
    metadata = {k: v for k, v in extra.items() if v is not None}
    if is_scope_bypass(resolve_scope(identity)):
        metadata["scope_bypass"] = True
        logger.info("Scope bypass used", user_id=str(identity.user_id), **extra)
    return metadata or None


def ensure_editable(inspection: Inspection, fields: set[str]) -> None:
    """Reject lifecycle edits on a completed inspection."""
    if inspection.status != InspectionStatus.COMPLETED:
        return
    frozen = sorted(fields.intersection(LIFECYCLE_FIELDS))
    if frozen:
        raise ConflictError(f"Cannot change {', '.join(frozen)} on a completed inspection")


@dataclass
class CompletionRequest:
    """Caller input for completing an inspection."""

    findings: str | None = None
    notes: str | None = None
    tags: list[str] | None = None
    auto_create_jobs: bool = True
    preview_only: bool = False


@dataclass
class CompletionResult:
    """Outcome of a committed completion."""

    inspection: Inspection
    condition_index: int
    recommendations: list[Recommendation] = field(default_factory=list)
    follow_up_jobs: list[Job] = field(default_factory=list)


@dataclass
class CompletionPreview:
    """Jobs a completion with the same input would create."""

    follow_up_jobs: list[dict[str, Any]]

    @property
    def total_jobs_to_create(self) -> int:
        return len(self.follow_up_jobs)


class InspectionStateMachine:
    """State machine for inspection lifecycle management."""

    def __init__(
        self,
        db: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: NotificationDispatcher | None = None,
        rule_set: RuleSet | None = None,
    ):
        self.db = db
        self.session_factory = session_factory
        self.audit = AuditTrailRecorder(session_factory)
        self.job_factory = RemediationJobFactory(session_factory)
        self.notifier = notifier or InAppNotificationDispatcher(session_factory)
        self.rule_set = rule_set

    def can_transition(
        self,
        inspection: Inspection,
        target_status: InspectionStatus,
    ) -> tuple[bool, str]:
        """Check if a transition is valid.

        Returns:
            Tuple of (is_valid, error_message)
        """
        current_status = inspection.status
        valid_targets = VALID_TRANSITIONS.get(current_status, [])
        if target_status not in valid_targets:
            return False, f"Cannot transition from {current_status.value} to {target_status.value}"
        return True, ""

    async def transition(
        self,
        inspection: Inspection,
        target_status: InspectionStatus,
        identity: IdentityContext,
        request: Request | None = None,
    ) -> Inspection:
        """Start or cancel an inspection.

        Raises:
            ValidationError: If asked to complete; use ``complete`` instead
            ConflictError: If the transition is not allowed from the current state
        """
        if target_status == InspectionStatus.COMPLETED:
            raise ValidationError.for_field("status", "Use the complete action to complete an inspection")

        current_status = inspection.status
        is_valid, error = self.can_transition(inspection, target_status)
        if not is_valid:
            raise ConflictError(error)

        inspection.status = target_status
        await self.db.commit()
        await self.db.refresh(inspection)

        await self.audit.record(
            entity_type="inspection",
            entity_id=inspection.id,
            action=TRANSITION_ACTIONS[target_status],
            user_id=identity.user_id,
            changes=format_changes({"status": current_status.value}, {"status": target_status.value}),
            metadata=audit_metadata(identity, inspection_id=str(inspection.id)),
            request=request,
            description=f"Inspection status changed to {target_status.value}",
        )

        logger.info(
            "Inspection status transitioned",
            inspection_id=str(inspection.id),
            from_status=current_status.value,
            to_status=target_status.value,
            user_id=str(identity.user_id),
        )
        return inspection

    def _guard_completion(self, inspection: Inspection) -> None:
        if inspection.status == InspectionStatus.COMPLETED or inspection.completed_date is not None:
            raise ConflictError("Inspection is already completed")
        if inspection.status == InspectionStatus.CANCELLED:
            raise ConflictError("A cancelled inspection cannot be completed")

    async def _load_findings(self, inspection: Inspection) -> list[Finding]:
        result = await self.db.execute(
            select(Finding).where(Finding.inspection_id == inspection.id).order_by(Finding.created_at)
        )
        return list(result.scalars().all())

    async def preview(self, inspection: Inspection, data: CompletionRequest) -> CompletionPreview:
        """Run the completion guards and classification without writing."""
        self._guard_completion(inspection)
        if not data.auto_create_jobs:
            return CompletionPreview(follow_up_jobs=[])

        findings_text = data.findings if data.findings is not None else inspection.findings
        classified = classify_observations(findings_text, await self._load_findings(inspection))
        return CompletionPreview(follow_up_jobs=build_payloads(inspection, classified))

    async def complete(
        self,
        inspection: Inspection,
        data: CompletionRequest,
        identity: IdentityContext,
        request: Request | None = None,
    ) -> CompletionResult:
        """Complete an inspection.

        Steps 1-4 share one transaction: merge caller input, flip the status
        with a compare-and-set, score the property and record
        recommendations. Follow-up jobs, the notification and the audit
        entry run afterwards and cannot fail the request.

        Raises:
            ConflictError: If the inspection is completed or cancelled, or a
                concurrent request completed it first
        """
        self._guard_completion(inspection)
        inspection_id = inspection.id
        before = inspection.snapshot()
        now = datetime.now(timezone.utc)

        try:
            # 1. merge caller values over stored ones
            if data.findings is not None:
                inspection.findings = data.findings
            if data.notes is not None:
                inspection.notes = data.notes
            if data.tags is not None:
                inspection.set_tags(data.tags)

            # 2. compare-and-set; the loser of a race updates zero rows
            result = await self.db.execute(
                update(Inspection)
                .where(
                    Inspection.id == inspection.id,
                    Inspection.status.notin_(list(TERMINAL_STATES)),
                    Inspection.completed_date.is_(None),
                )
                .values(
                    status=InspectionStatus.COMPLETED,
                    completed_date=now,
                    completed_by_id=identity.user_id,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise ConflictError("Inspection is already completed")

            set_committed_value(inspection, "status", InspectionStatus.COMPLETED)
            set_committed_value(inspection, "completed_date", now)
            set_committed_value(inspection, "completed_by_id", identity.user_id)

            # 3. condition index onto the property
            findings = await self._load_findings(inspection)
            pci = compute_pci(findings)
            property = await self.db.get(Property, inspection.property_id)
            if property is not None:
                property.health_score = pci

            # 4. recommendations
            payloads = apply_rules(findings, self.rule_set)
            recommendations = [build_recommendation(payload, inspection) for payload in payloads]
            self.db.add_all(recommendations)

            await self.db.commit()
        except ServiceError:
            await self.db.rollback()
            raise
        except Exception as e:
            await self.db.rollback()
            logger.error("Inspection completion failed", inspection_id=str(inspection_id), error=str(e))
            raise

        record_inspection_completed(inspection.inspection_type.value, pci)
        logger.info(
            "Inspection completed",
            inspection_id=str(inspection.id),
            condition_index=pci,
            recommendations=len(recommendations),
            user_id=str(identity.user_id),
        )

        outbox = self._completion_outbox(inspection, data, identity, property, before, pci, recommendations, request)
        results = await outbox.run()

        return CompletionResult(
            inspection=inspection,
            condition_index=pci,
            recommendations=recommendations,
            follow_up_jobs=results.get("follow_up_jobs") or [],
        )

    def _completion_outbox(
        self,
        inspection: Inspection,
        data: CompletionRequest,
        identity: IdentityContext,
        property: Property | None,
        before: dict[str, Any],
        pci: int,
        recommendations: list[Recommendation],
        request: Request | None,
    ) -> PostCommitOutbox:
        outbox = PostCommitOutbox()

        if data.auto_create_jobs:
            async def create_follow_up_jobs(results: dict[str, Any]) -> list[Job]:
                findings = await self._load_findings(inspection)
                classified = classify_observations(inspection.findings, findings)
                jobs = await self.job_factory.create_jobs(inspection, classified, identity.user_id)
                for job in jobs:
                    await self.audit.record(
                        entity_type="job",
                        entity_id=job.id,
                        action=AuditAction.JOB_CREATED,
                        user_id=identity.user_id,
                        metadata={"inspection_id": str(inspection.id), "priority": job.priority.value},
                        request=request,
                        description=f"Follow-up job '{job.title}' created",
                    )
                return jobs

            outbox.add("follow_up_jobs", create_follow_up_jobs)

        async def notify(results: dict[str, Any]) -> int:
            manager = await self._get_user(property.manager_id if property else None)
            completed_by = await self._get_user(identity.user_id)
            return await self.notifier.notify_inspection_completed(
                inspection,
                completed_by,
                property,
                manager,
                results.get("follow_up_jobs") or [],
            )

        outbox.add("notification", notify)

        async def audit(results: dict[str, Any]) -> None:
            jobs = results.get("follow_up_jobs") or []
            await self.audit.record(
                entity_type="inspection",
                entity_id=inspection.id,
                action=AuditAction.INSPECTION_COMPLETED,
                user_id=identity.user_id,
                changes=format_changes(before, inspection.snapshot()),
                metadata=audit_metadata(
                    identity,
                    condition_index=pci,
                    recommendations=len(recommendations),
                    follow_up_jobs=len(jobs),
                ),
                request=request,
                description="Inspection completed",
            )

        outbox.add("audit", audit)
        return outbox

    async def _get_user(self, user_id: uuid.UUID | None) -> User | None:
        if user_id is None:
            return None
        return await self.db.get(User, user_id)
