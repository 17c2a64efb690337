"""
Typed query parameters for report and pickup-log listings.

Each listing takes one of these instead of an ad-hoc filter dict, so every
filter, sort key and page bound is explicit.
"""

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from ecotrack.app.models.report_enums import ReportStatus, Urgency, WasteType, PickupStatus


class ReportSort(str, enum.Enum):
    NEWEST = "newest"
    OLDEST = "oldest"
    URGENCY = "urgency"  # critical first, then oldest first


@dataclass(frozen=True)
class Page:
    page: int = 1
    page_size: int = 10

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    def total_pages(self, total: int) -> int:
        return (total + self.page_size - 1) // self.page_size if total else 0


@dataclass(frozen=True)
class ReportQuery:
    statuses: Sequence[ReportStatus] = ()
    urgency: Optional[Urgency] = None
    waste_type: Optional[WasteType] = None
    reporter_id: Optional[int] = None
    assigned_collector_id: Optional[int] = None
    sort: ReportSort = ReportSort.NEWEST
    page: Page = Page()


@dataclass(frozen=True)
class PickupHistoryQuery:
    collector_id: int
    status: Optional[PickupStatus] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    page: Page = Page()


@dataclass(frozen=True)
class CollectorQuery:
    is_active: Optional[bool] = None
    page: Page = Page()
