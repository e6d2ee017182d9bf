"""
Analytics dashboard endpoints.

Every report is scoped to the caller's company (and to the caller's own jobs
for recruiters) and narrowed by the common query-string filters.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Path, Query
from fastapi.responses import PlainTextResponse

from api.dependencies import get_analytics_filters, require_active_user
from api.schemas.analytics import AnalyticsFilters
from api.services import analytics as analytics_service
from api.services.analytics_export import export_report, validate_export_request
from database.models.users import User

router = APIRouter(prefix="/analytics", tags=["analytics"])

EXPORT_MEDIA_TYPES = {"csv": "text/csv", "text": "text/plain"}


def _scope(user: User) -> tuple:
    return user.company_id, user.id, user.role


@router.get("/kpis", summary="KPI Metrics")
async def get_kpis(
    filters: AnalyticsFilters = Depends(get_analytics_filters),
    current_user: User = Depends(require_active_user),
):
    """Headline counters for the dashboard."""
    return await analytics_service.get_kpi_metrics(*_scope(current_user), filters)


@router.get("/funnel", summary="Pipeline Funnel")
async def get_funnel(
    filters: AnalyticsFilters = Depends(get_analytics_filters),
    current_user: User = Depends(require_active_user),
):
    return await analytics_service.get_funnel_analytics(*_scope(current_user), filters)


@router.get("/conversion", summary="Stage Conversion Rates")
async def get_conversion(
    filters: AnalyticsFilters = Depends(get_analytics_filters),
    current_user: User = Depends(require_active_user),
):
    return await analytics_service.get_conversion_rates(*_scope(current_user), filters)


@router.get("/time-to-fill", summary="Time to Fill")
async def get_time_to_fill(
    filters: AnalyticsFilters = Depends(get_analytics_filters),
    current_user: User = Depends(require_active_user),
):
    return await analytics_service.get_time_to_fill(*_scope(current_user), filters)


@router.get("/time-in-stage", summary="Time in Stage")
async def get_time_in_stage(
    filters: AnalyticsFilters = Depends(get_analytics_filters),
    current_user: User = Depends(require_active_user),
):
    """Average stage durations with the bottleneck stage and a suggestion."""
    return await analytics_service.get_time_in_stage(*_scope(current_user), filters)


@router.get("/sources", summary="Source Performance")
async def get_sources(
    filters: AnalyticsFilters = Depends(get_analytics_filters),
    current_user: User = Depends(require_active_user),
):
    return await analytics_service.get_source_performance(*_scope(current_user), filters)


@router.get("/recruiters", summary="Recruiter Productivity")
async def get_recruiters(
    filters: AnalyticsFilters = Depends(get_analytics_filters),
    current_user: User = Depends(require_active_user),
):
    return await analytics_service.get_recruiter_productivity(*_scope(current_user), filters)


@router.get("/panels", summary="Panel Performance")
async def get_panels(
    filters: AnalyticsFilters = Depends(get_analytics_filters),
    current_user: User = Depends(require_active_user),
):
    return await analytics_service.get_panel_performance(*_scope(current_user), filters)


@router.get("/drop-off", summary="Drop-off Analysis")
async def get_drop_off(
    filters: AnalyticsFilters = Depends(get_analytics_filters),
    current_user: User = Depends(require_active_user),
):
    return await analytics_service.get_drop_off_analysis(*_scope(current_user), filters)


@router.get("/rejection-reasons", summary="Rejection Reasons")
async def get_rejection_reasons(
    filters: AnalyticsFilters = Depends(get_analytics_filters),
    current_user: User = Depends(require_active_user),
):
    return await analytics_service.get_rejection_reasons(*_scope(current_user), filters)


@router.get("/offers", summary="Offer Acceptance")
async def get_offers(
    filters: AnalyticsFilters = Depends(get_analytics_filters),
    current_user: User = Depends(require_active_user),
):
    return await analytics_service.get_offer_acceptance_rate(*_scope(current_user), filters)


@router.get("/sla", summary="SLA Status")
async def get_sla(
    filters: AnalyticsFilters = Depends(get_analytics_filters),
    current_user: User = Depends(require_active_user),
):
    return await analytics_service.get_sla_status(*_scope(current_user), filters)


@router.get("/overview", summary="Dashboard Overview")
async def get_overview(
    filters: AnalyticsFilters = Depends(get_analytics_filters),
    current_user: User = Depends(require_active_user),
):
    """KPIs, funnel, time-to-fill, sources and SLA status in one payload."""
    return await analytics_service.get_overview(*_scope(current_user), filters)


@router.get(
    "/export/{report}",
    summary="Export Report",
    description="Render one report as CSV or plain text.",
    response_class=PlainTextResponse,
)
async def export_analytics_report(
    report: str = Path(..., description="Report key, e.g. funnel or overview"),
    format: str = Query("csv", description="csv or text"),
    filters: AnalyticsFilters = Depends(get_analytics_filters),
    current_user: User = Depends(require_active_user),
):
    validate_export_request(report, format)

    data = await analytics_service.REPORTS[report](*_scope(current_user), filters)
    body = export_report(report, data, format)

    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    extension = "csv" if format == "csv" else "txt"
    return PlainTextResponse(
        body,
        media_type=EXPORT_MEDIA_TYPES[format],
        headers={
            "Content-Disposition": f'attachment; filename="{report}-report-{stamp}.{extension}"'
        },
    )
