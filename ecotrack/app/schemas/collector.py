"""
Collector Pydantic schemas.

Route, statistics, listing and dashboard responses.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Tuple
from ecotrack.app.schemas.report import ReportResponse
from ecotrack.app.schemas.pickup import PickupLogResponse


class RouteStopResponse(BaseModel):
    sequence: int = Field(..., description="1-based visiting order")
    report: ReportResponse
    coordinates: Tuple[float, float] = Field(..., description="(longitude, latitude)")
    distance_km: float = Field(..., description="Leg distance from the previous position")
    travel_minutes: float
    handling_minutes: int
    estimated_minutes: float


class SkippedReportResponse(BaseModel):
    report_id: int
    reason: str


class RouteStatisticsResponse(BaseModel):
    collector_id: int
    total_reports: int
    pending_reports: int
    in_progress_reports: int
    completed_today: int
    estimated_time_remaining_minutes: int


class CollectorStatusUpdate(BaseModel):
    is_active: bool


class CollectorStatusResponse(BaseModel):
    collector_id: int
    is_active: bool
    reverted_report_ids: List[int]


class CollectorSummary(BaseModel):
    id: int
    name: str
    email: str
    username: str
    phone: Optional[str]
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class RouteResponse(BaseModel):
    collector_id: int
    start_location: Optional[Tuple[float, float]] = Field(None, description="(longitude, latitude)")
    stops: List[RouteStopResponse]
    total_distance_km: float
    total_minutes: float
    skipped: List[SkippedReportResponse]
    collector: CollectorSummary
    statistics: RouteStatisticsResponse


class CollectorWithStats(BaseModel):
    collector: CollectorSummary
    statistics: RouteStatisticsResponse


class CollectorListResponse(BaseModel):
    collectors: List[CollectorWithStats]
    total: int
    page: int
    page_size: int
    total_pages: int


class CollectorDetailResponse(BaseModel):
    collector: CollectorSummary
    statistics: RouteStatisticsResponse
    recent_pickups: List[PickupLogResponse]


class CollectorDashboardResponse(BaseModel):
    statistics: RouteStatisticsResponse
    open_reports: List[ReportResponse] = Field(..., description="Critical first, then oldest first")
    recent_completed: List[PickupLogResponse]
