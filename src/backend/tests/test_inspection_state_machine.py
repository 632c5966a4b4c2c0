"""Tests for the inspection lifecycle state machine."""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select
from structlog.testing import capture_logs

from buildstate.core.errors import ConflictError, ValidationError
from buildstate.models.audit import AuditAction, AuditLog
from buildstate.models.inspection import FindingSeverity, Inspection, InspectionStatus, Recommendation
from buildstate.models.job import Job, JobPriority
from buildstate.models.notification import Notification
from buildstate.models.property import Property
from buildstate.services import inspection_state_machine as state_machine_module
from buildstate.services.inspection_state_machine import (
    CompletionRequest,
    InspectionStateMachine,
    ensure_editable,
)
from buildstate.services.remediation_job_factory import RemediationJobFactory

FLAGGED_TEXT = "\n".join(
    [
        "URGENT: Gas leak detected",
        "Normal wear on carpet",
        "Immediate safety hazard in stairwell",
        "HIGH: Loose handrail",
    ]
)


async def _count(db_session, model, *where) -> int:
    query = select(func.count()).select_from(model)
    if where:
        query = query.where(*where)
    return (await db_session.execute(query)).scalar()


class TestTransitions:
    """Tests for the transition table."""

    @pytest.mark.asyncio
    async def test_valid_transitions(self, db_session, session_factory, make_inspection):
        machine = InspectionStateMachine(db_session, session_factory)
        inspection = await make_inspection()

        assert machine.can_transition(inspection, InspectionStatus.IN_PROGRESS) == (True, "")
        assert machine.can_transition(inspection, InspectionStatus.COMPLETED)[0]
        assert machine.can_transition(inspection, InspectionStatus.CANCELLED)[0]

        inspection.status = InspectionStatus.COMPLETED
        assert not machine.can_transition(inspection, InspectionStatus.IN_PROGRESS)[0]
        assert not machine.can_transition(inspection, InspectionStatus.CANCELLED)[0]

    @pytest.mark.asyncio
    async def test_start_records_audit(self, db_session, session_factory, make_inspection, manager_user, identity_for):
        machine = InspectionStateMachine(db_session, session_factory)
        inspection = await make_inspection()
        identity = await identity_for(manager_user)

        await machine.transition(inspection, InspectionStatus.IN_PROGRESS, identity)

        assert inspection.status == InspectionStatus.IN_PROGRESS
        entry = (await db_session.execute(select(AuditLog))).scalar_one()
        assert entry.action == AuditAction.INSPECTION_STARTED
        assert entry.old_values == {"status": "scheduled"}
        assert entry.new_values == {"status": "in_progress"}

    @pytest.mark.asyncio
    async def test_terminal_state_rejects_transition(
        self, db_session, session_factory, make_inspection, manager_user, identity_for
    ):
        machine = InspectionStateMachine(db_session, session_factory)
        inspection = await make_inspection(status=InspectionStatus.CANCELLED)
        identity = await identity_for(manager_user)

        with pytest.raises(ConflictError):
            await machine.transition(inspection, InspectionStatus.IN_PROGRESS, identity)

    @pytest.mark.asyncio
    async def test_transition_to_completed_needs_complete_action(
        self, db_session, session_factory, make_inspection, manager_user, identity_for
    ):
        machine = InspectionStateMachine(db_session, session_factory)
        inspection = await make_inspection()

        with pytest.raises(ValidationError):
            await machine.transition(inspection, InspectionStatus.COMPLETED, await identity_for(manager_user))

    @pytest.mark.asyncio
    async def test_admin_transition_is_stamped_as_bypass(
        self, db_session, session_factory, make_inspection, admin_user, identity_for
    ):
        machine = InspectionStateMachine(db_session, session_factory)
        inspection = await make_inspection()

        await machine.transition(inspection, InspectionStatus.CANCELLED, await identity_for(admin_user))

        entry = (await db_session.execute(select(AuditLog))).scalar_one()
        assert entry.action == AuditAction.INSPECTION_CANCELLED
        assert entry.extra_data["scope_bypass"] is True

    def test_completed_lifecycle_fields_are_frozen(self):
        inspection = Inspection(status=InspectionStatus.COMPLETED)

        with pytest.raises(ConflictError, match="scheduled_date"):
            ensure_editable(inspection, {"scheduled_date", "notes"})
        ensure_editable(inspection, {"notes", "title"})


class TestCompletion:
    """Tests for completing an inspection."""

    @pytest.mark.asyncio
    async def test_complete_scores_and_recommends(
        self,
        db_session,
        session_factory,
        make_inspection,
        make_finding,
        test_property,
        technician_user,
        identity_for,
    ):
        inspection = await make_inspection(title="Annual Check", assigned_to_id=technician_user.id)
        await make_finding(inspection, "Plumbing", FindingSeverity.HIGH, "Slow leak under kitchen sink")
        await make_finding(inspection, "Paint", FindingSeverity.LOW, "Scuffed walls")
        identity = await identity_for(technician_user)

        machine = InspectionStateMachine(db_session, session_factory)
        result = await machine.complete(inspection, CompletionRequest(), identity)

        assert result.condition_index == 70
        assert test_property.health_score == 70
        assert inspection.status == InspectionStatus.COMPLETED
        assert inspection.completed_date is not None
        assert inspection.completed_by_id == technician_user.id

        assert [r.rule_id for r in result.recommendations] == ["plumbing-leak-high"]
        assert await _count(db_session, Recommendation) == 1

        # Structured findings drive jobs when there is no free text
        assert [(j.priority, j.description) for j in result.follow_up_jobs] == [
            (JobPriority.HIGH, "Plumbing: Slow leak under kitchen sink"),
        ]

        actions = (await db_session.execute(select(AuditLog.action))).scalars().all()
        assert AuditAction.INSPECTION_COMPLETED in actions
        assert AuditAction.JOB_CREATED in actions

    @pytest.mark.asyncio
    async def test_complete_without_findings_is_100(
        self, db_session, session_factory, make_inspection, test_property, manager_user, identity_for
    ):
        inspection = await make_inspection()
        machine = InspectionStateMachine(db_session, session_factory)

        result = await machine.complete(inspection, CompletionRequest(), await identity_for(manager_user))

        assert result.condition_index == 100
        assert test_property.health_score == 100
        assert result.recommendations == []
        assert result.follow_up_jobs == []

    @pytest.mark.asyncio
    async def test_caller_values_override_stored(
        self, db_session, session_factory, make_inspection, manager_user, identity_for
    ):
        inspection = await make_inspection(findings="Normal wear on carpet", notes="old", tags=["annual"])
        machine = InspectionStateMachine(db_session, session_factory)

        result = await machine.complete(
            inspection,
            CompletionRequest(findings=FLAGGED_TEXT, notes="All rooms checked", tags=["annual", "gas"]),
            await identity_for(manager_user),
        )

        assert inspection.findings == FLAGGED_TEXT
        assert inspection.notes == "All rooms checked"
        assert inspection.tags == ["annual", "gas"]
        assert [j.priority for j in result.follow_up_jobs] == [
            JobPriority.URGENT,
            JobPriority.HIGH,
            JobPriority.HIGH,
        ]
        assert [j.title for j in result.follow_up_jobs] == [
            "Quarterly Inspection - Follow-Up 1",
            "Quarterly Inspection - Follow-Up 2",
            "Quarterly Inspection - Follow-Up 3",
        ]

    @pytest.mark.asyncio
    async def test_auto_create_jobs_disabled(self, db_session, session_factory, make_inspection, manager_user, identity_for):
        inspection = await make_inspection(findings=FLAGGED_TEXT)
        machine = InspectionStateMachine(db_session, session_factory)

        result = await machine.complete(
            inspection, CompletionRequest(auto_create_jobs=False), await identity_for(manager_user)
        )

        assert result.follow_up_jobs == []
        assert await _count(db_session, Job) == 0

    @pytest.mark.asyncio
    async def test_double_completion_conflicts(
        self, db_session, session_factory, make_inspection, make_finding, manager_user, identity_for
    ):
        inspection = await make_inspection()
        await make_finding(inspection, "Plumbing", FindingSeverity.HIGH, "Leak at valve")
        identity = await identity_for(manager_user)
        machine = InspectionStateMachine(db_session, session_factory)

        await machine.complete(inspection, CompletionRequest(), identity)
        completed_date = inspection.completed_date

        with pytest.raises(ConflictError):
            await machine.complete(inspection, CompletionRequest(findings="URGENT: again"), identity)

        assert inspection.completed_date == completed_date
        assert await _count(db_session, Recommendation) == 1
        assert await _count(db_session, AuditLog, AuditLog.action == AuditAction.INSPECTION_COMPLETED) == 1

    @pytest.mark.asyncio
    async def test_concurrent_completion_loser_conflicts(
        self, db_session, session_factory, make_inspection, make_finding, manager_user, identity_for
    ):
        inspection = await make_inspection()
        await make_finding(inspection, "Plumbing", FindingSeverity.HIGH, "Leak at valve")
        identity = await identity_for(manager_user)

        # A second request that loaded the inspection before the first committed
        async with session_factory() as other:
            stale = await other.get(Inspection, inspection.id)
            await other.commit()

            await InspectionStateMachine(db_session, session_factory).complete(inspection, CompletionRequest(), identity)

            with pytest.raises(ConflictError):
                await InspectionStateMachine(other, session_factory).complete(stale, CompletionRequest(), identity)

        assert await _count(db_session, Recommendation) == 1
        assert await _count(db_session, AuditLog, AuditLog.action == AuditAction.INSPECTION_COMPLETED) == 1

    @pytest.mark.asyncio
    async def test_failed_completion_commits_nothing(
        self,
        db_session,
        session_factory,
        make_inspection,
        make_finding,
        test_property,
        manager_user,
        identity_for,
        monkeypatch,
    ):
        inspection = await make_inspection(notes="old notes")
        await make_finding(inspection, "Plumbing", FindingSeverity.HIGH, "Leak at valve")
        identity = await identity_for(manager_user)

        def broken_rules(*args, **kwargs):
            raise RuntimeError("rule evaluation failed")

        monkeypatch.setattr(state_machine_module, "apply_rules", broken_rules)
        machine = InspectionStateMachine(db_session, session_factory)

        with capture_logs() as logs:
            with pytest.raises(RuntimeError, match="rule evaluation failed"):
                await machine.complete(inspection, CompletionRequest(notes="new notes"), identity)

        failure = next(log for log in logs if log["event"] == "Inspection completion failed")
        assert failure["inspection_id"] == str(inspection.id)

        async with session_factory() as fresh:
            stored = await fresh.get(Inspection, inspection.id)
            assert stored.status == InspectionStatus.SCHEDULED
            assert stored.completed_date is None
            assert stored.notes == "old notes"
            assert (await fresh.get(Property, test_property.id)).health_score is None
            assert await _count(fresh, Recommendation) == 0
            assert await _count(fresh, Job) == 0
            assert await _count(fresh, AuditLog) == 0

    @pytest.mark.asyncio
    async def test_cancelled_cannot_complete(self, db_session, session_factory, make_inspection, manager_user, identity_for):
        inspection = await make_inspection(status=InspectionStatus.CANCELLED)
        machine = InspectionStateMachine(db_session, session_factory)

        with pytest.raises(ConflictError):
            await machine.complete(inspection, CompletionRequest(), await identity_for(manager_user))

    @pytest.mark.asyncio
    async def test_job_failure_does_not_undo_completion(
        self, db_session, session_factory, make_inspection, manager_user, identity_for
    ):
        inspection = await make_inspection(findings=FLAGGED_TEXT)
        machine = InspectionStateMachine(db_session, session_factory)
        original = RemediationJobFactory._create_job
        attempts = []

        async def flaky_create(self, job):
            attempts.append(job.title)
            if len(attempts) == 1:
                raise RuntimeError("insert failed")
            return await original(self, job)

        machine.job_factory._create_job = flaky_create.__get__(machine.job_factory)

        result = await machine.complete(inspection, CompletionRequest(), await identity_for(manager_user))

        assert len(attempts) == 3
        assert inspection.status == InspectionStatus.COMPLETED
        assert [j.title for j in result.follow_up_jobs] == [
            "Quarterly Inspection - Follow-Up 2",
            "Quarterly Inspection - Follow-Up 3",
        ]
        assert await _count(db_session, Job) == 2
        assert await _count(db_session, AuditLog, AuditLog.action == AuditAction.JOB_CREATED) == 2

        entry = (
            await db_session.execute(select(AuditLog).where(AuditLog.action == AuditAction.INSPECTION_COMPLETED))
        ).scalar_one()
        assert entry.extra_data["follow_up_jobs"] == 2

    @pytest.mark.asyncio
    async def test_notifier_failure_is_swallowed(
        self, db_session, session_factory, make_inspection, manager_user, identity_for
    ):
        inspection = await make_inspection()
        notifier = AsyncMock()
        notifier.notify_inspection_completed.side_effect = RuntimeError("inbox down")
        machine = InspectionStateMachine(db_session, session_factory, notifier=notifier)

        with capture_logs() as logs:
            result = await machine.complete(inspection, CompletionRequest(), await identity_for(manager_user))

        assert result.inspection.status == InspectionStatus.COMPLETED
        notifier.notify_inspection_completed.assert_awaited_once()
        assert any(log["event"] == "Post-commit task failed" for log in logs)
        assert await _count(db_session, AuditLog, AuditLog.action == AuditAction.INSPECTION_COMPLETED) == 1

    @pytest.mark.asyncio
    async def test_manager_is_notified(
        self, db_session, session_factory, make_inspection, manager_user, technician_user, identity_for
    ):
        inspection = await make_inspection(assigned_to_id=technician_user.id)
        machine = InspectionStateMachine(db_session, session_factory)

        await machine.complete(inspection, CompletionRequest(), await identity_for(technician_user))

        notification = (await db_session.execute(select(Notification))).scalar_one()
        assert notification.user_id == manager_user.id
        assert notification.type == "inspection_completed"


class TestPreview:
    """Tests for completion preview."""

    @pytest.mark.asyncio
    async def test_preview_writes_nothing(
        self, db_session, session_factory, make_inspection, make_finding, test_property, manager_user
    ):
        inspection = await make_inspection(findings=FLAGGED_TEXT)
        await make_finding(inspection, "Plumbing", FindingSeverity.HIGH, "Leak at valve")
        machine = InspectionStateMachine(db_session, session_factory)

        preview = await machine.preview(inspection, CompletionRequest(preview_only=True))

        assert preview.total_jobs_to_create == 3
        assert [p["priority"] for p in preview.follow_up_jobs] == ["urgent", "high", "high"]
        assert inspection.status == InspectionStatus.SCHEDULED
        assert test_property.health_score is None
        assert await _count(db_session, Job) == 0
        assert await _count(db_session, Recommendation) == 0
        assert await _count(db_session, AuditLog) == 0

    @pytest.mark.asyncio
    async def test_preview_matches_completion(
        self, db_session, session_factory, make_inspection, manager_user, identity_for
    ):
        inspection = await make_inspection()
        machine = InspectionStateMachine(db_session, session_factory)
        data = CompletionRequest(findings=FLAGGED_TEXT)

        preview = await machine.preview(inspection, data)
        result = await machine.complete(inspection, data, await identity_for(manager_user))

        assert [(p["title"], p["description"], p["priority"]) for p in preview.follow_up_jobs] == [
            (j.title, j.description, j.priority.value) for j in result.follow_up_jobs
        ]

    @pytest.mark.asyncio
    async def test_preview_respects_auto_create_jobs(self, db_session, session_factory, make_inspection):
        inspection = await make_inspection(findings=FLAGGED_TEXT)
        machine = InspectionStateMachine(db_session, session_factory)

        preview = await machine.preview(inspection, CompletionRequest(auto_create_jobs=False))

        assert preview.follow_up_jobs == []

    @pytest.mark.asyncio
    async def test_preview_of_completed_conflicts(self, db_session, session_factory, make_inspection):
        inspection = await make_inspection(status=InspectionStatus.COMPLETED)
        machine = InspectionStateMachine(db_session, session_factory)

        with pytest.raises(ConflictError):
            await machine.preview(inspection, CompletionRequest())
