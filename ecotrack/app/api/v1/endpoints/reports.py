"""
Waste Report API Endpoints.

Citizens submit and track reports; admins assign, resolve, cancel and
delete them. Statistics follow the same role scope as the listing.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status, Path, Query, Body
from sqlalchemy.ext.asyncio import AsyncSession

from ecotrack.app.db.session import get_db
from ecotrack.app.models.enums import UserRole
from ecotrack.app.models.report_enums import ReportStatus, Urgency, WasteType
from ecotrack.app.schemas.report import (
    ReportCreate, ReportResponse, ReportListResponse,
    AssignCollectorRequest, ResolveReportRequest,
    ReportStatisticsResponse, WasteTypeCount, ReportDeletedResponse
)
from ecotrack.app.core.dependencies import get_current_user
from ecotrack.app.core.guards import require_admin, is_admin
from ecotrack.app.repositories.queries import ReportQuery, ReportSort, Page
from ecotrack.app.repositories.report_store import ReportStore
from ecotrack.app.services.lifecycle_service import LifecycleService, get_lifecycle_service

router = APIRouter(prefix="/reports", tags=["Reports"])


def _role_scope(current_user: dict) -> dict:
    """
    Listing scope by role:
    - ADMIN: all reports
    - COLLECTOR: reports assigned to them
    - USER: their own reports
    """
    role = current_user.get("role")
    if role == UserRole.ADMIN.value:
        return {}
    if role == UserRole.COLLECTOR.value:
        return {"assigned_collector_id": current_user["user_id"]}
    return {"reporter_id": current_user["user_id"]}


async def _list(db: AsyncSession, query: ReportQuery) -> ReportListResponse:
    reports, total = await ReportStore(db).list_reports(query)
    return ReportListResponse(
        reports=[ReportResponse.model_validate(r) for r in reports],
        total=total,
        page=query.page.page,
        page_size=query.page.page_size,
        total_pages=query.page.total_pages(total)
    )


@router.post("", response_model=ReportResponse, status_code=status.HTTP_201_CREATED)
async def create_report(
    report_data: ReportCreate,
    current_user: dict = Depends(get_current_user),
    service: LifecycleService = Depends(get_lifecycle_service)
):
    """
    Submit a waste report.

    The report starts pending. A confident photo classification overrides
    the submitted waste type; a missing address is looked up from the
    coordinates.
    """
    report = await service.create_report(current_user, report_data)
    return ReportResponse.model_validate(report)


@router.get("", response_model=ReportListResponse)
async def list_reports(
    status_filter: Optional[List[ReportStatus]] = Query(None, alias="status"),
    urgency: Optional[Urgency] = Query(None),
    waste_type: Optional[WasteType] = Query(None),
    sort: ReportSort = Query(ReportSort.NEWEST),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """List reports within the caller's role scope."""
    query = ReportQuery(
        statuses=tuple(status_filter or ()),
        urgency=urgency,
        waste_type=waste_type,
        **_role_scope(current_user),
        sort=sort,
        page=Page(page, page_size)
    )
    return await _list(db, query)


@router.get("/mine", response_model=ReportListResponse)
async def list_my_reports(
    status_filter: Optional[List[ReportStatus]] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Reports submitted by the caller, newest first."""
    query = ReportQuery(
        statuses=tuple(status_filter or ()),
        reporter_id=current_user["user_id"],
        page=Page(page, page_size)
    )
    return await _list(db, query)


@router.get("/statistics", response_model=ReportStatisticsResponse)
async def get_report_statistics(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Status, urgency and waste-type counts within the caller's role scope."""
    overview = await ReportStore(db).report_overview(ReportQuery(**_role_scope(current_user)))

    return ReportStatisticsResponse(
        total_reports=overview.total,
        pending_reports=overview.by_status.get(ReportStatus.PENDING, 0),
        assigned_reports=overview.by_status.get(ReportStatus.ASSIGNED, 0),
        in_progress_reports=overview.by_status.get(ReportStatus.IN_PROGRESS, 0),
        collected_reports=overview.by_status.get(ReportStatus.COLLECTED, 0),
        resolved_reports=overview.by_status.get(ReportStatus.RESOLVED, 0),
        cancelled_reports=overview.by_status.get(ReportStatus.CANCELLED, 0),
        critical_reports=overview.by_urgency.get(Urgency.CRITICAL, 0),
        high_urgency_reports=overview.by_urgency.get(Urgency.HIGH, 0),
        waste_types=[
            WasteTypeCount(waste_type=waste_type, count=count)
            for waste_type, count in overview.by_waste_type
        ]
    )


@router.get("/{report_id}", response_model=ReportResponse)
async def get_report(
    report_id: int = Path(..., description="Report ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get a report (admin, its reporter, or its assigned collector)."""
    report = await ReportStore(db).get_report(report_id)

    user_id = current_user["user_id"]
    if not is_admin(current_user) and user_id not in (report.user_id, report.assigned_collector_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied"
        )

    return ReportResponse.model_validate(report)


@router.patch("/{report_id}/assign", response_model=ReportResponse)
async def assign_collector(
    report_id: int = Path(..., description="Report ID"),
    body: AssignCollectorRequest = Body(...),
    current_user: dict = Depends(require_admin),
    service: LifecycleService = Depends(get_lifecycle_service)
):
    """Assign a pending report to an active collector (Admin only)."""
    report = await service.assign_collector(report_id, body.collector_id, current_user)
    return ReportResponse.model_validate(report)


@router.post("/{report_id}/resolve", response_model=ReportResponse)
async def resolve_report(
    report_id: int = Path(..., description="Report ID"),
    body: Optional[ResolveReportRequest] = Body(None),
    current_user: dict = Depends(require_admin),
    service: LifecycleService = Depends(get_lifecycle_service)
):
    """Confirm a collected report (Admin only)."""
    report = await service.resolve_report(
        report_id, current_user, body.admin_notes if body else None
    )
    return ReportResponse.model_validate(report)


@router.post("/{report_id}/cancel", response_model=ReportResponse)
async def cancel_report(
    report_id: int = Path(..., description="Report ID"),
    current_user: dict = Depends(get_current_user),
    service: LifecycleService = Depends(get_lifecycle_service)
):
    """Cancel a report (Admin, or the reporter for their own report)."""
    report = await service.cancel_report(report_id, current_user)
    return ReportResponse.model_validate(report)


@router.delete("/{report_id}", response_model=ReportDeletedResponse)
async def delete_report(
    report_id: int = Path(..., description="Report ID"),
    current_user: dict = Depends(require_admin),
    service: LifecycleService = Depends(get_lifecycle_service)
):
    """Delete a report together with its pickup logs (Admin only)."""
    deleted_logs = await service.delete_report(report_id, current_user)
    return ReportDeletedResponse(report_id=report_id, deleted_pickup_logs=deleted_logs)
