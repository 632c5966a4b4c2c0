"""Tests for in-app notification delivery."""

import uuid

import pytest
from sqlalchemy import select
from structlog.testing import capture_logs

from buildstate.models.notification import Notification
from buildstate.services.notification_service import InAppNotificationDispatcher


def _flaky_factory(session_factory, failures: int):
    """Session factory that raises for the first ``failures`` calls."""
    calls = {"count": 0}

    def factory():
        calls["count"] += 1
        if calls["count"] <= failures:
            raise ConnectionError("inbox unavailable")
        return session_factory()

    return factory, calls


class TestInAppNotificationDispatcher:
    """Tests for InAppNotificationDispatcher."""

    @pytest.mark.asyncio
    async def test_completion_notifies_manager(
        self, db_session, session_factory, make_inspection, test_property, manager_user, technician_user
    ):
        inspection = await make_inspection(title="Move-out check")
        dispatcher = InAppNotificationDispatcher(session_factory)

        delivered = await dispatcher.notify_inspection_completed(
            inspection, technician_user, test_property, manager_user, []
        )

        assert delivered == 1
        notification = (await db_session.execute(select(Notification))).scalar_one()
        assert notification.user_id == manager_user.id
        assert notification.type == "inspection_completed"
        assert "Move-out check" in notification.message
        assert "Tariq Technician" in notification.message
        assert notification.entity_id == str(inspection.id)

    @pytest.mark.asyncio
    async def test_completion_without_manager_sends_nothing(self, session_factory, make_inspection, test_property):
        inspection = await make_inspection()
        dispatcher = InAppNotificationDispatcher(session_factory)

        assert await dispatcher.notify_inspection_completed(inspection, None, test_property, None, []) == 0

    @pytest.mark.asyncio
    async def test_scheduled_dedupes_recipients(
        self, db_session, session_factory, make_inspection, test_property, technician_user, manager_user
    ):
        inspection = await make_inspection()
        dispatcher = InAppNotificationDispatcher(session_factory)

        delivered = await dispatcher.notify_inspection_scheduled(
            inspection, test_property, [technician_user.id, manager_user.id, technician_user.id]
        )

        assert delivered == 2
        rows = (await db_session.execute(select(Notification.user_id))).scalars().all()
        assert sorted(map(str, rows)) == sorted([str(technician_user.id), str(manager_user.id)])

    @pytest.mark.asyncio
    async def test_delivery_retries_transient_failures(self, db_session, session_factory, manager_user):
        factory, calls = _flaky_factory(session_factory, failures=2)
        dispatcher = InAppNotificationDispatcher(factory, max_tries=3, retry_factor=0)

        assert await dispatcher.send(manager_user.id, "test", "Title", "Message") is True
        assert calls["count"] == 3
        assert len((await db_session.execute(select(Notification))).scalars().all()) == 1

    @pytest.mark.asyncio
    async def test_delivery_gives_up_after_max_tries(self, session_factory):
        factory, calls = _flaky_factory(session_factory, failures=10)
        dispatcher = InAppNotificationDispatcher(factory, max_tries=2, retry_factor=0)

        with capture_logs() as logs:
            delivered = await dispatcher.send(uuid.uuid4(), "test", "Title", "Message")

        assert delivered is False
        assert calls["count"] == 2
        assert any(log["event"] == "Notification delivery failed" for log in logs)
