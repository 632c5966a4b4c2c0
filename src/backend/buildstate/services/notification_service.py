"""Inspection notifications.

``NotificationDispatcher`` is the boundary the lifecycle engine talks to.
The shipped adapter writes to the in-app inbox; each delivery is retried
with exponential backoff before it is given up and logged.
"""

import uuid
from typing import Any, Iterable, Protocol, Sequence

import backoff
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from buildstate.core.config import settings
from buildstate.models.inspection import Inspection
from buildstate.models.job import Job
from buildstate.models.notification import Notification
from buildstate.models.property import Property
from buildstate.models.user import User

logger = structlog.get_logger()


class NotificationDispatcher(Protocol):
    """Outbound notifications about inspections."""

    async def notify_inspection_completed(
        self,
        inspection: Inspection,
        completed_by: User | None,
        property: Property | None,
        manager: User | None,
        created_jobs: Sequence[Job],
    ) -> int: ...

    async def notify_inspection_scheduled(
        self,
        inspection: Inspection,
        property: Property | None,
        recipients: Iterable[uuid.UUID],
    ) -> int: ...


class InAppNotificationDispatcher:
    """Delivers notifications as in-app inbox rows."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_tries: int | None = None,
        retry_factor: float = 0.5,
    ):
        self.session_factory = session_factory
        self.max_tries = max_tries or settings.notification_max_tries
        self._deliver_with_retry = backoff.on_exception(
            backoff.expo,
            Exception,
            max_tries=self.max_tries,
            factor=retry_factor,
            jitter=backoff.full_jitter,
            on_backoff=lambda details: logger.warning(
                "Notification retry",
                tries=details["tries"],
                wait=round(details["wait"], 2),
            ),
        )(self._deliver)

    async def _deliver(self, notification: Notification) -> None:
        async with self.session_factory() as session:
            session.add(notification)
            await session.commit()

    async def send(
        self,
        user_id: uuid.UUID,
        type: str,
        title: str,
        message: str,
        entity_type: str | None = None,
        entity_id: Any = None,
    ) -> bool:
        """Deliver one notification. Returns False once retries are exhausted."""
        notification = Notification(
            id=uuid.uuid4(),
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
        )
        try:
            await self._deliver_with_retry(notification)
        except Exception as e:
            logger.error(
                "Notification delivery failed",
                user_id=str(user_id),
                type=type,
                tries=self.max_tries,
                error=str(e),
            )
            return False
        return True

    async def notify_inspection_completed(
        self,
        inspection: Inspection,
        completed_by: User | None,
        property: Property | None,
        manager: User | None,
        created_jobs: Sequence[Job],
    ) -> int:
        """Tell the property manager an inspection was completed."""
        if manager is None:
            logger.info("No manager to notify of completion", inspection_id=str(inspection.id))
            return 0

        by = completed_by.full_name if completed_by else "a team member"
        where = f" at {property.name}" if property else ""
        message = f"Inspection '{inspection.title}'{where} was completed by {by}."
        if created_jobs:
            message += f" {len(created_jobs)} follow-up job(s) created."

        delivered = await self.send(
            user_id=manager.id,
            type="inspection_completed",
            title="Inspection completed",
            message=message,
            entity_type="inspection",
            entity_id=inspection.id,
        )
        return int(delivered)

    async def notify_inspection_scheduled(
        self,
        inspection: Inspection,
        property: Property | None,
        recipients: Iterable[uuid.UUID],
    ) -> int:
        """Tell the assignee and residents about a new inspection."""
        when = inspection.scheduled_date.strftime("%Y-%m-%d %H:%M") if inspection.scheduled_date else "a date to be confirmed"
        where = f" at {property.name}" if property else ""
        message = f"Inspection '{inspection.title}'{where} is scheduled for {when}."

        delivered = 0
        for user_id in dict.fromkeys(recipients):
            if await self.send(
                user_id=user_id,
                type="inspection_scheduled",
                title="Inspection scheduled",
                message=message,
                entity_type="inspection",
                entity_id=inspection.id,
            ):
                delivered += 1
        return delivered
