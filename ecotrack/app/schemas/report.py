"""
Waste Report Pydantic schemas.

Defines request and response models for report submission and
administration.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List
from ecotrack.app.models.report_enums import ReportStatus, Urgency, WasteType


class ReportCreate(BaseModel):
    """Schema for submitting a new waste report."""
    photo: str = Field(..., min_length=1, max_length=255, description="Stored photo reference (filename or URL)")
    description: str = Field(..., min_length=1, max_length=500, description="What was found")
    longitude: float = Field(..., ge=-180, le=180)
    latitude: float = Field(..., ge=-90, le=90)
    address: Optional[str] = Field(None, max_length=200, description="Resolved from coordinates when omitted")
    waste_type: Optional[WasteType] = Field(None, description="Reporter's own classification")
    urgency: Urgency = Field(default=Urgency.MEDIUM)
    estimated_quantity: Optional[str] = Field(None, max_length=100)


class AssignCollectorRequest(BaseModel):
    collector_id: int = Field(..., gt=0)


class ResolveReportRequest(BaseModel):
    admin_notes: Optional[str] = Field(None, max_length=500)


class ReportResponse(BaseModel):
    """Schema for report response."""
    id: int
    user_id: int
    assigned_collector_id: Optional[int]
    longitude: Optional[float]
    latitude: Optional[float]
    address: Optional[str]
    waste_type: WasteType
    predicted_type: Optional[str]
    confidence: Optional[float]
    photo: str
    description: str
    urgency: Urgency
    status: ReportStatus
    estimated_quantity: Optional[str]
    actual_quantity: Optional[str]
    collector_notes: Optional[str]
    admin_notes: Optional[str]
    created_at: datetime
    updated_at: datetime
    assigned_at: Optional[datetime]
    collected_at: Optional[datetime]
    resolved_at: Optional[datetime]
    cancelled_at: Optional[datetime]

    class Config:
        from_attributes = True


class ReportListResponse(BaseModel):
    """Schema for paginated report list."""
    reports: List[ReportResponse]
    total: int
    page: int
    page_size: int
    total_pages: int



class WasteTypeCount(BaseModel):
    waste_type: WasteType
    count: int


class ReportStatisticsResponse(BaseModel):
    """Report counts within the caller's scope."""
    total_reports: int
    pending_reports: int
    assigned_reports: int
    in_progress_reports: int
    collected_reports: int
    resolved_reports: int
    cancelled_reports: int
    critical_reports: int
    high_urgency_reports: int
    waste_types: List[WasteTypeCount] = Field(..., description="Most common first")


class ReportDeletedResponse(BaseModel):
    report_id: int
    deleted_pickup_logs: int
