"""
Route Builder.

Orders a collector's open reports into a visiting sequence using a greedy
nearest-neighbour walk over great-circle distances, and aggregates the
collector's workload statistics.

Routes are computed on demand and never persisted.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from typing import List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from ecotrack.app.core.config import settings
from ecotrack.app.core.exceptions import InvalidGeometryError
from ecotrack.app.models.report import Report
from ecotrack.app.models.report_enums import ReportStatus, Urgency, WasteType, OPEN_STATUSES
from ecotrack.app.repositories.report_store import ReportStore
from ecotrack.app.services.geo import GeoPoint, coordinate_problem, distance_between

logger = logging.getLogger(__name__)


# Extra on-site minutes on top of the base handling time
WASTE_TYPE_HANDLING_MINUTES = {
    WasteType.HAZARDOUS: 20,
    WasteType.ELECTRONIC: 10,
    WasteType.MIXED: 5,
}
URGENCY_HANDLING_MINUTES = {
    Urgency.CRITICAL: 10,
    Urgency.HIGH: 5,
}


@dataclass(frozen=True)
class RouteStop:
    report: Report
    point: GeoPoint
    distance_km: float
    travel_minutes: float
    handling_minutes: int

    @property
    def estimated_minutes(self) -> float:
        return self.travel_minutes + self.handling_minutes


@dataclass(frozen=True)
class SkippedReport:
    report_id: int
    reason: str


@dataclass
class Route:
    stops: List[RouteStop] = field(default_factory=list)
    skipped: List[SkippedReport] = field(default_factory=list)
    start_location: Optional[GeoPoint] = None

    @property
    def total_distance_km(self) -> float:
        return sum(stop.distance_km for stop in self.stops)

    @property
    def total_minutes(self) -> float:
        return sum(stop.estimated_minutes for stop in self.stops)

    @property
    def report_ids(self) -> List[int]:
        return [stop.report.id for stop in self.stops]


@dataclass(frozen=True)
class RouteStatistics:
    total_reports: int
    pending_reports: int
    in_progress_reports: int
    completed_today: int
    estimated_time_remaining_minutes: int


def estimate_handling_minutes(report: Report, base_minutes: int = None) -> int:
    base = settings.base_handling_minutes if base_minutes is None else base_minutes
    return (
        base
        + WASTE_TYPE_HANDLING_MINUTES.get(report.waste_type, 0)
        + URGENCY_HANDLING_MINUTES.get(report.urgency, 0)
    )


def estimate_travel_minutes(distance_km: float, average_speed_kmh: float = None) -> float:
    speed = settings.average_speed_kmh if average_speed_kmh is None else average_speed_kmh
    return distance_km / speed * 60


def report_point(report: Report) -> GeoPoint:
    """
    Raises:
        InvalidGeometryError: coordinates are missing, non-finite or out of range
    """
    problem = coordinate_problem(report.longitude, report.latitude)
    if problem:
        raise InvalidGeometryError(report.id, problem)
    return GeoPoint(lng=float(report.longitude), lat=float(report.latitude))


def plan_route(
    reports: Sequence[Report],
    start_point: Optional[GeoPoint] = None,
    average_speed_kmh: float = None,
    base_handling_minutes: int = None
) -> Route:
    """
    Greedy nearest-neighbour ordering.

    Args:
        reports: Candidates in creation order; ties go to the earlier one
        start_point: Collector position; defaults to the first candidate
        average_speed_kmh: Travel speed for leg times
        base_handling_minutes: On-site minutes before type/urgency extras

    Returns:
        Route visiting every candidate with usable coordinates exactly once
    """
    route = Route(start_location=start_point)

    pool: List[Tuple[Report, GeoPoint]] = []
    for report in reports:
        try:
            pool.append((report, report_point(report)))
        except InvalidGeometryError as e:
            logger.warning("Skipping report %s in route: %s", e.report_id, e.reason)
            route.skipped.append(SkippedReport(e.report_id, e.reason))

    def make_stop(report: Report, point: GeoPoint, distance_km: float) -> RouteStop:
        return RouteStop(
            report=report,
            point=point,
            distance_km=distance_km,
            travel_minutes=estimate_travel_minutes(distance_km, average_speed_kmh),
            handling_minutes=estimate_handling_minutes(report, base_handling_minutes)
        )

    if not pool:
        return route

    if start_point is None:
        first_report, current = pool.pop(0)
        route.stops.append(make_stop(first_report, current, 0.0))
    else:
        current = start_point

    while pool:
        best_index = 0
        best_distance = distance_between(current, pool[0][1])
        for index in range(1, len(pool)):
            distance = distance_between(current, pool[index][1])
            if distance < best_distance:
                best_index = index
                best_distance = distance

        report, point = pool.pop(best_index)
        route.stops.append(make_stop(report, point, best_distance))
        current = point

    return route


def local_day_bounds(now: datetime, tz_name: str) -> Tuple[datetime, datetime]:
    """
    [start, end) of the local calendar day containing now, as naive UTC.

    Naive inputs are taken to be UTC.
    """
    tz = ZoneInfo(tz_name)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local_date = now.astimezone(tz).date()

    start_local = datetime.combine(local_date, time.min, tzinfo=tz)
    end_local = datetime.combine(local_date + timedelta(days=1), time.min, tzinfo=tz)
    return (
        start_local.astimezone(timezone.utc).replace(tzinfo=None),
        end_local.astimezone(timezone.utc).replace(tzinfo=None),
    )


class RouteBuilder:
    """Builds routes and statistics for one collector at a time."""

    def __init__(self, db: AsyncSession):
        self.store = ReportStore(db)

    async def build_route(self, collector_id: int, start_point: Optional[GeoPoint] = None) -> Route:
        """
        Raises:
            ResourceNotFoundError: collector unknown or inactive
            InvalidRoleError: user is not a collector
        """
        await self.store.get_active_collector(collector_id)
        reports = await self.store.find_reports_by_collector_and_status(collector_id, OPEN_STATUSES)

        route = plan_route(
            reports,
            start_point,
            average_speed_kmh=settings.average_speed_kmh,
            base_handling_minutes=settings.base_handling_minutes
        )
        logger.info(
            "Built route for collector %s: %d stops, %.2f km, %d skipped",
            collector_id, len(route.stops), route.total_distance_km, len(route.skipped)
        )
        return route

    async def get_route_statistics(self, collector_id: int, now: Optional[datetime] = None) -> RouteStatistics:
        """Counts over all the collector's reports, independent of route order."""
        await self.store.get_active_collector(collector_id)
        return await self.collector_statistics(collector_id, now)

    async def collector_statistics(self, collector_id: int, now: Optional[datetime] = None) -> RouteStatistics:
        """Statistics without the active-collector check (listings include inactive collectors)."""
        counts = await self.store.count_reports_by_status(collector_id)

        start, end = local_day_bounds(now or datetime.now(timezone.utc), settings.local_timezone)
        completed_today = await self.store.count_collected_between(collector_id, start, end)

        pending = counts.get(ReportStatus.ASSIGNED, 0)
        in_progress = counts.get(ReportStatus.IN_PROGRESS, 0)
        open_count = sum(counts.get(status, 0) for status in OPEN_STATUSES)

        return RouteStatistics(
            total_reports=sum(counts.values()),
            pending_reports=pending,
            in_progress_reports=in_progress,
            completed_today=completed_today,
            estimated_time_remaining_minutes=open_count * settings.handling_minutes_per_report
        )
