"""Prometheus metrics instrumentation for Buildstate."""

from prometheus_client import Counter, Histogram
from prometheus_fastapi_instrumentator import Instrumentator, metrics

# Inspections counter
inspections_completed_total = Counter(
    "buildstate_inspections_completed_total",
    "Total number of completed inspections",
    ["inspection_type"],
)

# Condition index distribution
condition_index = Histogram(
    "buildstate_condition_index",
    "Property Condition Index computed at inspection completion",
    buckets=[10, 20, 30, 40, 50, 60, 70, 80, 90, 100],
)

# Follow-up jobs counter
follow_up_jobs_total = Counter(
    "buildstate_follow_up_jobs_total",
    "Follow-up job creation attempts by outcome",
    ["outcome"],
)

# Post-commit side effects
post_commit_failures_total = Counter(
    "buildstate_post_commit_failures_total",
    "Post-commit tasks that raised",
    ["task"],
)

# Audit writes
audit_write_failures_total = Counter(
    "buildstate_audit_write_failures_total",
    "Audit entries that could not be persisted",
)


def setup_metrics(app) -> Instrumentator:
    """Set up Prometheus metrics instrumentation for FastAPI app."""
    instrumentator = Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        should_respect_env_var=True,
        should_instrument_requests_inprogress=True,
        excluded_handlers=["/health", "/metrics"],
        env_var_name="METRICS_ENABLED",
        inprogress_name="http_requests_inprogress",
        inprogress_labels=True,
    )

    instrumentator.add(
        metrics.default(
            metric_namespace="",
            metric_subsystem="",
            latency_highr_buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )
    )

    instrumentator.instrument(app)

    return instrumentator


def expose_metrics(app, instrumentator: Instrumentator) -> None:
    """Expose the /metrics endpoint."""
    instrumentator.expose(app, include_in_schema=False, should_gzip=True)


# Helper functions for updating custom metrics


def record_inspection_completed(inspection_type: str, pci: int) -> None:
    """Count a completion and observe its condition index."""
    inspections_completed_total.labels(inspection_type=inspection_type).inc()
    condition_index.observe(pci)


def record_follow_up_job(success: bool) -> None:
    """Count a follow-up job creation attempt."""
    follow_up_jobs_total.labels(outcome="created" if success else "failed").inc()


def record_post_commit_failure(task: str) -> None:
    """Count a post-commit task failure."""
    post_commit_failures_total.labels(task=task).inc()


def record_audit_failure() -> None:
    """Count an audit write failure."""
    audit_write_failures_total.inc()
