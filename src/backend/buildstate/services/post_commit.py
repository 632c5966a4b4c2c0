"""Best-effort side effects that run after a transaction commits.

Tasks run in the order they were added. Each one is guarded on its own: an
exception is logged and counted, and the next task still runs. Results are
kept by task name so later tasks can read what earlier ones produced.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import structlog

from buildstate.core.metrics import record_post_commit_failure

logger = structlog.get_logger()

PostCommitTask = Callable[[dict[str, Any]], Awaitable[Any]]


@dataclass
class PostCommitOutbox:
    """Ordered list of named post-commit tasks."""

    tasks: list[tuple[str, PostCommitTask]] = field(default_factory=list)
    results: dict[str, Any] = field(default_factory=dict)
    failures: list[str] = field(default_factory=list)

    def add(self, name: str, task: PostCommitTask) -> None:
        self.tasks.append((name, task))

    async def run(self) -> dict[str, Any]:
        """Run every task; never raises."""
        for name, task in self.tasks:
            try:
                self.results[name] = await task(self.results)
            except Exception as e:
                self.failures.append(name)
                record_post_commit_failure(name)
                logger.error("Post-commit task failed", task=name, error=str(e), exc_info=True)
        return self.results
