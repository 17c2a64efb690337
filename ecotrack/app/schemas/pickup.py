"""
Pickup Pydantic schemas.

Collector actions on a report: start, complete, fail.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List
from ecotrack.app.models.report_enums import PickupStatus, ReportStatus, WasteType


class PickupStartRequest(BaseModel):
    report_id: int = Field(..., gt=0)


class PickupCompleteRequest(BaseModel):
    actual_quantity: Optional[str] = Field(None, max_length=100)
    waste_type_confirmed: Optional[WasteType] = None
    notes: Optional[str] = Field(None, max_length=500)


class PickupFailRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=200)
    notes: Optional[str] = Field(None, max_length=500)


class PickupLogResponse(BaseModel):
    id: int
    report_id: int
    collector_id: int
    status: PickupStatus
    start_time: datetime
    end_time: Optional[datetime]
    duration_minutes: Optional[int]
    actual_quantity: Optional[str]
    waste_type_confirmed: Optional[WasteType]
    notes: Optional[str]
    failure_reason: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class PickupActionResponse(BaseModel):
    """Result of a pickup action: the log and where the report ended up."""
    pickup_log: PickupLogResponse
    report_id: int
    report_status: ReportStatus


class PickupHistoryResponse(BaseModel):
    pickups: List[PickupLogResponse]
    total: int
    page: int
    page_size: int
    total_pages: int
