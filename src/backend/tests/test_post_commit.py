"""Tests for the post-commit outbox."""

import pytest
from structlog.testing import capture_logs

from buildstate.services.post_commit import PostCommitOutbox


class TestPostCommitOutbox:
    """Tests for PostCommitOutbox."""

    @pytest.mark.asyncio
    async def test_tasks_run_in_order_and_share_results(self):
        outbox = PostCommitOutbox()
        seen = []

        async def jobs(results):
            seen.append("jobs")
            return ["job-1", "job-2"]

        async def notify(results):
            seen.append("notify")
            return len(results["jobs"])

        outbox.add("jobs", jobs)
        outbox.add("notify", notify)
        results = await outbox.run()

        assert seen == ["jobs", "notify"]
        assert results == {"jobs": ["job-1", "job-2"], "notify": 2}
        assert outbox.failures == []

    @pytest.mark.asyncio
    async def test_failure_is_isolated(self):
        outbox = PostCommitOutbox()

        async def broken(results):
            raise RuntimeError("mail server down")

        async def audit(results):
            return "recorded"

        outbox.add("notification", broken)
        outbox.add("audit", audit)

        with capture_logs() as logs:
            results = await outbox.run()

        assert results == {"audit": "recorded"}
        assert outbox.failures == ["notification"]
        assert any(log["event"] == "Post-commit task failed" and log["task"] == "notification" for log in logs)
