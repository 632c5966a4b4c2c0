"""Read-only inspection aggregations: analytics, calendar, tags, inspectors."""

from typing import Annotated

from fastapi import APIRouter, Query

from buildstate.api.inspections import Filters, Service
from buildstate.api.schemas import (
    AnalyticsCharts,
    AnalyticsMetrics,
    AnalyticsResponse,
    CalendarEntry,
    UserSummary,
    inspection_to_calendar_entry,
    user_to_summary,
)
from buildstate.core.deps import Identity
from buildstate.models.inspection import InspectionStatus

router = APIRouter()


@router.get("/analytics", response_model=AnalyticsResponse)
async def inspection_analytics(identity: Identity, service: Service, filters: Filters) -> AnalyticsResponse:
    """Status breakdown, monthly completions and recurring finding systems."""
    analytics = await service.analytics(identity, filters)
    return AnalyticsResponse(
        metrics=AnalyticsMetrics(
            total=analytics.total,
            completion_rate=analytics.completion_rate,
            status={InspectionStatus(value).name: count for value, count in analytics.status.items()},
            average_condition_index=analytics.average_condition_index,
        ),
        charts=AnalyticsCharts(
            monthly_completion=analytics.monthly_completion,
            recurring_issues=analytics.recurring_issues,
        ),
    )


@router.get("/calendar", response_model=list[CalendarEntry])
async def inspection_calendar(
    identity: Identity,
    service: Service,
    start: Annotated[str | None, Query()] = None,
    end: Annotated[str | None, Query()] = None,
) -> list[CalendarEntry]:
    """Visible inspections scheduled between ``start`` and ``end``."""
    inspections = await service.calendar(identity, start=start, end=end)
    return [inspection_to_calendar_entry(i) for i in inspections]


@router.get("/tags", response_model=list[str])
async def inspection_tags(identity: Identity, service: Service) -> list[str]:
    """Distinct tags in use on visible inspections."""
    return await service.list_tags(identity)


@router.get("/inspectors", response_model=list[UserSummary])
async def inspection_inspectors(identity: Identity, service: Service) -> list[UserSummary]:
    """Technicians relevant to the caller."""
    users = await service.list_inspectors(identity)
    return [user_to_summary(user) for user in users]
