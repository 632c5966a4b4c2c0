"""Follow-up work orders for flagged inspection observations."""

import uuid
from typing import Any, Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from buildstate.core.metrics import record_follow_up_job
from buildstate.models.inspection import Inspection
from buildstate.models.job import Job, JobStatus
from buildstate.services.findings_classifier import ClassifiedFinding

logger = structlog.get_logger()


def follow_up_title(inspection_title: str, index: int) -> str:
    return f"{inspection_title} - Follow-Up {index}"


def build_payloads(inspection: Inspection, classified: Sequence[ClassifiedFinding]) -> list[dict[str, Any]]:
    """Job payloads that ``create_jobs`` would persist. Writes nothing."""
    return [
        {
            "title": follow_up_title(inspection.title, index),
            "description": item.description,
            "priority": item.priority.value,
            "status": JobStatus.OPEN.value,
            "propertyId": str(inspection.property_id),
            "unitId": str(inspection.unit_id) if inspection.unit_id else None,
            "inspectionId": str(inspection.id),
        }
        for index, item in enumerate(classified, start=1)
    ]


class RemediationJobFactory:
    """Creates one job per classified observation.

    Each job is written in its own session so one failed insert cannot
    poison the others or the already committed completion.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _create_job(self, job: Job) -> Job:
        async with self.session_factory() as session:
            session.add(job)
            await session.commit()
        return job

    async def create_jobs(
        self,
        inspection: Inspection,
        classified: Sequence[ClassifiedFinding],
        created_by_id: uuid.UUID | None = None,
    ) -> list[Job]:
        """Create jobs in list order. Returns only those that were persisted."""
        created: list[Job] = []
        for index, item in enumerate(classified, start=1):
            job = Job(
                id=uuid.uuid4(),
                org_id=inspection.org_id,
                property_id=inspection.property_id,
                unit_id=inspection.unit_id,
                inspection_id=inspection.id,
                title=follow_up_title(inspection.title, index),
                description=item.description,
                priority=item.priority,
                status=JobStatus.OPEN,
                created_by_id=created_by_id,
            )
            try:
                created.append(await self._create_job(job))
                record_follow_up_job(success=True)
            except Exception as e:
                record_follow_up_job(success=False)
                logger.error(
                    "Failed to create follow-up job",
                    inspection_id=str(inspection.id),
                    index=index,
                    priority=item.priority.value,
                    error=str(e),
                )

        logger.info(
            "Follow-up jobs created",
            inspection_id=str(inspection.id),
            attempted=len(classified),
            created=len(created),
        )
        return created
