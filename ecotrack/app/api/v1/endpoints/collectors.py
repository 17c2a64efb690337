"""
Collector API Endpoints.

Routes, workload statistics, pickup history and the pickup actions
(start / complete / fail) for waste collectors, plus collector
administration for admins.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status, Path, Query, Body
from sqlalchemy.ext.asyncio import AsyncSession

from ecotrack.app.db.session import get_db
from ecotrack.app.models.enums import UserRole
from ecotrack.app.models.report_enums import PickupStatus, OPEN_STATUSES
from ecotrack.app.core.dependencies import get_current_user
from ecotrack.app.core.exceptions import InvalidRoleError
from ecotrack.app.core.guards import require_role, require_admin, CollectorAccessGuard
from ecotrack.app.repositories.queries import (
    ReportQuery, ReportSort, PickupHistoryQuery, CollectorQuery, Page
)
from ecotrack.app.repositories.report_store import ReportStore
from ecotrack.app.schemas.collector import (
    RouteResponse, RouteStopResponse, SkippedReportResponse, RouteStatisticsResponse,
    CollectorStatusUpdate, CollectorStatusResponse, CollectorSummary, CollectorWithStats,
    CollectorListResponse, CollectorDetailResponse, CollectorDashboardResponse
)
from ecotrack.app.schemas.pickup import (
    PickupStartRequest, PickupCompleteRequest, PickupFailRequest,
    PickupLogResponse, PickupActionResponse, PickupHistoryResponse
)
from ecotrack.app.schemas.report import ReportResponse
from ecotrack.app.services.geo import GeoPoint
from ecotrack.app.services.lifecycle_service import (
    LifecycleService, PickupCompletion, PickupOutcome, get_lifecycle_service
)
from ecotrack.app.services.route_builder import RouteBuilder, Route, RouteStatistics

router = APIRouter(prefix="/collectors", tags=["Collectors"])

collector_guard = CollectorAccessGuard()

RECENT_PICKUPS_LIMIT = 10
DASHBOARD_COMPLETED_LIMIT = 5
DASHBOARD_OPEN_REPORTS_LIMIT = 100


def _statistics_response(collector_id: int, stats: RouteStatistics) -> RouteStatisticsResponse:
    return RouteStatisticsResponse(
        collector_id=collector_id,
        total_reports=stats.total_reports,
        pending_reports=stats.pending_reports,
        in_progress_reports=stats.in_progress_reports,
        completed_today=stats.completed_today,
        estimated_time_remaining_minutes=stats.estimated_time_remaining_minutes
    )


def _route_response(collector, route: Route, stats: RouteStatistics) -> RouteResponse:
    return RouteResponse(
        collector_id=collector.id,
        start_location=route.start_location.as_pair() if route.start_location else None,
        stops=[
            RouteStopResponse(
                sequence=index,
                report=ReportResponse.model_validate(stop.report),
                coordinates=stop.point.as_pair(),
                distance_km=stop.distance_km,
                travel_minutes=stop.travel_minutes,
                handling_minutes=stop.handling_minutes,
                estimated_minutes=stop.estimated_minutes
            )
            for index, stop in enumerate(route.stops, start=1)
        ],
        total_distance_km=route.total_distance_km,
        total_minutes=route.total_minutes,
        skipped=[SkippedReportResponse(report_id=s.report_id, reason=s.reason) for s in route.skipped],
        collector=CollectorSummary.model_validate(collector),
        statistics=_statistics_response(collector.id, stats)
    )


def _pickup_response(outcome: PickupOutcome) -> PickupActionResponse:
    return PickupActionResponse(
        pickup_log=PickupLogResponse.model_validate(outcome.pickup_log),
        report_id=outcome.report.id,
        report_status=outcome.report.status
    )


# --- Admin ---

@router.get("", response_model=CollectorListResponse)
async def list_collectors(
    is_active: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """List collectors with their workload statistics (Admin only)."""
    query = CollectorQuery(is_active=is_active, page=Page(page, page_size))
    collectors, total = await ReportStore(db).list_collectors(query)

    builder = RouteBuilder(db)
    items = []
    for collector in collectors:
        stats = await builder.collector_statistics(collector.id)
        items.append(CollectorWithStats(
            collector=CollectorSummary.model_validate(collector),
            statistics=_statistics_response(collector.id, stats)
        ))

    return CollectorListResponse(
        collectors=items,
        total=total,
        page=page,
        page_size=page_size,
        total_pages=query.page.total_pages(total)
    )


@router.put("/{collector_id}/status", response_model=CollectorStatusResponse)
async def update_collector_status(
    collector_id: int = Path(..., description="Collector user ID"),
    body: CollectorStatusUpdate = Body(...),
    current_user: dict = Depends(require_admin),
    service: LifecycleService = Depends(get_lifecycle_service)
):
    """
    Activate or deactivate a collector (Admin only).

    Deactivation returns the collector's open reports to pending and revokes
    their tokens.
    """
    change = await service.set_collector_active(collector_id, body.is_active, current_user)
    return CollectorStatusResponse(
        collector_id=change.collector.id,
        is_active=change.collector.is_active,
        reverted_report_ids=change.reverted_report_ids
    )


# --- Collector self-service ---

@router.get("/dashboard", response_model=CollectorDashboardResponse)
async def get_dashboard(
    current_user: dict = Depends(require_role([UserRole.COLLECTOR])),
    db: AsyncSession = Depends(get_db)
):
    """
    Collector dashboard: statistics, open reports (critical first), and the
    most recent completed pickups.
    """
    collector_id = current_user["user_id"]
    store = ReportStore(db)

    stats = await RouteBuilder(db).get_route_statistics(collector_id)
    open_reports, _ = await store.list_reports(ReportQuery(
        statuses=OPEN_STATUSES,
        assigned_collector_id=collector_id,
        sort=ReportSort.URGENCY,
        page=Page(1, DASHBOARD_OPEN_REPORTS_LIMIT)
    ))
    recent = await store.recent_pickups(
        collector_id, status=PickupStatus.COMPLETED, limit=DASHBOARD_COMPLETED_LIMIT
    )

    return CollectorDashboardResponse(
        statistics=_statistics_response(collector_id, stats),
        open_reports=[ReportResponse.model_validate(r) for r in open_reports],
        recent_completed=[PickupLogResponse.model_validate(p) for p in recent]
    )


@router.post("/pickup/start", response_model=PickupActionResponse, status_code=status.HTTP_201_CREATED)
async def start_pickup(
    body: PickupStartRequest,
    current_user: dict = Depends(require_role([UserRole.COLLECTOR])),
    service: LifecycleService = Depends(get_lifecycle_service)
):
    """
    Start a pickup (Collector only).

    Validates:
    - No open pickup for this report by this collector
    - Report is assigned to the caller
    - Report is ASSIGNED
    """
    outcome = await service.start_pickup(body.report_id, current_user["user_id"])
    return _pickup_response(outcome)


@router.put("/pickup/{pickup_log_id}/complete", response_model=PickupActionResponse)
async def complete_pickup(
    pickup_log_id: int = Path(..., description="Pickup log ID"),
    body: Optional[PickupCompleteRequest] = Body(None),
    current_user: dict = Depends(require_role([UserRole.COLLECTOR])),
    service: LifecycleService = Depends(get_lifecycle_service)
):
    """Complete an open pickup; the report becomes COLLECTED (Collector only)."""
    completion = PickupCompletion(**body.model_dump()) if body else None
    outcome = await service.complete_pickup(pickup_log_id, current_user["user_id"], completion)
    return _pickup_response(outcome)


@router.put("/pickup/{pickup_log_id}/fail", response_model=PickupActionResponse)
async def fail_pickup(
    pickup_log_id: int = Path(..., description="Pickup log ID"),
    body: PickupFailRequest = Body(...),
    current_user: dict = Depends(require_role([UserRole.COLLECTOR])),
    service: LifecycleService = Depends(get_lifecycle_service)
):
    """Record a failed attempt; the report returns to ASSIGNED (Collector only)."""
    outcome = await service.fail_pickup(
        pickup_log_id, current_user["user_id"], body.reason, body.notes
    )
    return _pickup_response(outcome)


# --- Collector-scoped reads (admin or the collector themself) ---

@router.get("/{collector_id}", response_model=CollectorDetailResponse)
async def get_collector(
    collector_id: int = Path(..., description="Collector user ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Collector profile, statistics and most recent pickups."""
    collector_guard.enforce(collector_id, current_user, "profile")

    store = ReportStore(db)
    collector = await store.get_user(collector_id)
    if collector.role != UserRole.COLLECTOR:
        raise InvalidRoleError(collector_id, UserRole.COLLECTOR.value, collector.role.value)

    stats = await RouteBuilder(db).collector_statistics(collector_id)
    recent = await store.recent_pickups(collector_id, limit=RECENT_PICKUPS_LIMIT)

    return CollectorDetailResponse(
        collector=CollectorSummary.model_validate(collector),
        statistics=_statistics_response(collector_id, stats),
        recent_pickups=[PickupLogResponse.model_validate(p) for p in recent]
    )


@router.get("/{collector_id}/route", response_model=RouteResponse)
async def get_route(
    collector_id: int = Path(..., description="Collector user ID"),
    start_lat: Optional[float] = Query(None, alias="startLat", ge=-90, le=90),
    start_lng: Optional[float] = Query(None, alias="startLng", ge=-180, le=180),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Greedy nearest-neighbour visiting order over the collector's assigned
    and in-progress reports.

    Without startLat/startLng the route starts at the oldest open report.
    The collector's profile and workload statistics come along with it.
    """
    collector_guard.enforce(collector_id, current_user, "route")

    if (start_lat is None) != (start_lng is None):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="startLat and startLng must be provided together"
        )
    start_point = GeoPoint(lng=start_lng, lat=start_lat) if start_lat is not None else None

    builder = RouteBuilder(db)
    route = await builder.build_route(collector_id, start_point)
    collector = await ReportStore(db).get_user(collector_id)
    stats = await builder.collector_statistics(collector_id)
    return _route_response(collector, route, stats)


@router.get("/{collector_id}/statistics", response_model=RouteStatisticsResponse)
async def get_statistics(
    collector_id: int = Path(..., description="Collector user ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Workload counts and remaining-time estimate for a collector."""
    collector_guard.enforce(collector_id, current_user, "statistics")

    stats = await RouteBuilder(db).get_route_statistics(collector_id)
    return _statistics_response(collector_id, stats)


@router.get("/{collector_id}/history", response_model=PickupHistoryResponse)
async def get_history(
    collector_id: int = Path(..., description="Collector user ID"),
    status_filter: Optional[PickupStatus] = Query(None, alias="status"),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Pickup history, newest first, with optional status and date filters."""
    collector_guard.enforce(collector_id, current_user, "history")

    query = PickupHistoryQuery(
        collector_id=collector_id,
        status=status_filter,
        start_date=start_date,
        end_date=end_date,
        page=Page(page, page_size)
    )
    logs, total = await ReportStore(db).list_pickup_history(query)

    return PickupHistoryResponse(
        pickups=[PickupLogResponse.model_validate(p) for p in logs],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=query.page.total_pages(total)
    )
