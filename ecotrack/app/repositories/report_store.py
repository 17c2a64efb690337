"""
Report Lifecycle Store.

Persistence for reports and pickup logs. Status writes are compare-and-set:
an UPDATE only applies while the row still holds the status the caller read,
so of two racing transitions exactly one wins and the other gets
StaleStateError.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, update, delete, func, case
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ecotrack.app.core.exceptions import (
    ResourceNotFoundError, StaleStateError, DuplicateActiveLogError, InvalidRoleError
)
from ecotrack.app.models.report import Report
from ecotrack.app.models.pickup_log import PickupLog
from ecotrack.app.models.user import User
from ecotrack.app.models.enums import UserRole
from ecotrack.app.models.report_enums import (
    ReportStatus, PickupStatus, Urgency, WasteType, OPEN_STATUSES, URGENCY_RANK
)
from ecotrack.app.repositories.queries import (
    ReportQuery, ReportSort, PickupHistoryQuery, CollectorQuery
)

logger = logging.getLogger(__name__)


@dataclass
class ReportOverview:
    """Report counts over one listing scope."""
    by_status: Dict[ReportStatus, int]
    by_urgency: Dict[Urgency, int]
    by_waste_type: List[Tuple[WasteType, int]]  # most common first

    @property
    def total(self) -> int:
        return sum(self.by_status.values())


class ReportStore:
    """Request-scoped access to reports, pickup logs and collectors."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # --- Reads ---

    async def get_report(self, report_id: int) -> Report:
        report = await self.db.get(Report, report_id, populate_existing=True)
        if not report:
            raise ResourceNotFoundError("Report", report_id)
        return report

    async def get_user(self, user_id: int) -> User:
        user = await self.db.get(User, user_id)
        if not user:
            raise ResourceNotFoundError("User", user_id)
        return user

    async def get_active_collector(self, collector_id: int) -> User:
        """
        Raises:
            ResourceNotFoundError: no such user, or the user is deactivated
            InvalidRoleError: the user exists but is not a collector
        """
        user = await self.db.get(User, collector_id)
        if not user or not user.is_active:
            raise ResourceNotFoundError("Collector", collector_id)
        if user.role != UserRole.COLLECTOR:
            raise InvalidRoleError(collector_id, UserRole.COLLECTOR.value, user.role.value)
        return user

    async def list_active_admins(self) -> List[User]:
        result = await self.db.execute(
            select(User).where(User.role == UserRole.ADMIN, User.is_active == True)
        )
        return list(result.scalars().all())

    async def find_reports_by_collector_and_status(
        self,
        collector_id: int,
        statuses: Iterable[ReportStatus]
    ) -> List[Report]:
        """
        Reports assigned to a collector in any of the given statuses,
        in creation order (created_at, then id).
        """
        result = await self.db.execute(
            select(Report).where(
                Report.assigned_collector_id == collector_id,
                Report.status.in_(list(statuses))
            ).order_by(Report.created_at.asc(), Report.id.asc())
        )
        return list(result.scalars().all())

    async def count_reports_by_status(self, collector_id: int) -> Dict[ReportStatus, int]:
        """Per-status counts of every report assigned to a collector."""
        result = await self.db.execute(
            select(Report.status, func.count(Report.id))
            .where(Report.assigned_collector_id == collector_id)
            .group_by(Report.status)
        )
        return {status: count for status, count in result.all()}

    async def count_collected_between(
        self,
        collector_id: int,
        start: datetime,
        end: datetime
    ) -> int:
        """Reports this collector picked up in [start, end)."""
        result = await self.db.execute(
            select(func.count(Report.id)).where(
                Report.assigned_collector_id == collector_id,
                Report.status.in_([ReportStatus.COLLECTED, ReportStatus.RESOLVED]),
                Report.collected_at >= start,
                Report.collected_at < end
            )
        )
        return result.scalar() or 0

    @staticmethod
    def _report_conditions(query: ReportQuery) -> list:
        conditions = []
        if query.statuses:
            conditions.append(Report.status.in_(list(query.statuses)))
        if query.urgency:
            conditions.append(Report.urgency == query.urgency)
        if query.waste_type:
            conditions.append(Report.waste_type == query.waste_type)
        if query.reporter_id is not None:
            conditions.append(Report.user_id == query.reporter_id)
        if query.assigned_collector_id is not None:
            conditions.append(Report.assigned_collector_id == query.assigned_collector_id)
        return conditions

    async def list_reports(self, query: ReportQuery) -> Tuple[List[Report], int]:
        """Filtered, sorted, paginated report listing."""
        conditions = self._report_conditions(query)

        total = (await self.db.execute(
            select(func.count(Report.id)).where(*conditions)
        )).scalar() or 0

        if query.sort == ReportSort.OLDEST:
            order_by = (Report.created_at.asc(), Report.id.asc())
        elif query.sort == ReportSort.URGENCY:
            urgency_rank = case(
                {urgency.value: rank for urgency, rank in URGENCY_RANK.items()},
                value=Report.urgency
            )
            order_by = (urgency_rank.asc(), Report.created_at.asc(), Report.id.asc())
        else:
            order_by = (Report.created_at.desc(), Report.id.desc())

        result = await self.db.execute(
            select(Report).where(*conditions)
            .order_by(*order_by)
            .offset(query.page.offset)
            .limit(query.page.page_size)
        )
        return list(result.scalars().all()), total

    async def report_overview(self, query: ReportQuery) -> ReportOverview:
        """
        Status, urgency and waste-type counts over the reports matching
        query's filters. Sort and page are ignored.
        """
        conditions = self._report_conditions(query)

        async def grouped(column, order_by=None):
            stmt = select(column, func.count(Report.id)).where(*conditions).group_by(column)
            if order_by is not None:
                stmt = stmt.order_by(*order_by)
            return (await self.db.execute(stmt)).all()

        by_status = {status: count for status, count in await grouped(Report.status)}
        by_urgency = {urgency: count for urgency, count in await grouped(Report.urgency)}
        by_waste_type = [
            (waste_type, count)
            for waste_type, count in await grouped(
                Report.waste_type, order_by=(func.count(Report.id).desc(), Report.waste_type)
            )
        ]
        return ReportOverview(by_status, by_urgency, by_waste_type)

    async def list_collectors(self, query: CollectorQuery) -> Tuple[List[User], int]:
        conditions = [User.role == UserRole.COLLECTOR]
        if query.is_active is not None:
            conditions.append(User.is_active == query.is_active)

        total = (await self.db.execute(
            select(func.count(User.id)).where(*conditions)
        )).scalar() or 0

        result = await self.db.execute(
            select(User).where(*conditions)
            .order_by(User.created_at.desc(), User.id.desc())
            .offset(query.page.offset)
            .limit(query.page.page_size)
        )
        return list(result.scalars().all()), total

    # --- Report writes ---

    async def add_report(self, report: Report) -> Report:
        self.db.add(report)
        await self.db.flush()
        return report

    async def update_report_status(
        self,
        report_id: int,
        expected_status: ReportStatus,
        new_status: ReportStatus,
        fields: Optional[Dict[str, Any]] = None,
        expected_collector_id: Optional[int] = None
    ) -> Report:
        """
        Compare-and-set a report's status.

        Args:
            report_id: Report to move
            expected_status: Status the caller validated against
            new_status: Target status
            fields: Extra columns written in the same statement
            expected_collector_id: Also require this assigned collector

        Returns:
            The freshly loaded report

        Raises:
            ResourceNotFoundError: report does not exist
            StaleStateError: report no longer matches the expected state
        """
        conditions = [Report.id == report_id, Report.status == expected_status]
        if expected_collector_id is not None:
            conditions.append(Report.assigned_collector_id == expected_collector_id)

        result = await self.db.execute(
            update(Report)
            .where(*conditions)
            .values(status=new_status, **(fields or {}))
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            current = (await self.db.execute(
                select(Report.status).where(Report.id == report_id)
            )).scalar_one_or_none()
            if current is None:
                raise ResourceNotFoundError("Report", report_id)
            logger.info(
                "Stale transition on report %s: expected %s, found %s",
                report_id, expected_status.value, current.value
            )
            raise StaleStateError("Report", report_id, expected_status.value, current.value)

        return await self._reload(Report, report_id)

    async def deactivate_collector_cascade(self, collector_id: int) -> List[int]:
        """
        Return every assigned/in-progress report of a collector to pending
        and clear its assignment. Open pickup logs are left as they are.

        Returns:
            IDs of the reverted reports
        """
        result = await self.db.execute(
            select(Report.id).where(
                Report.assigned_collector_id == collector_id,
                Report.status.in_(list(OPEN_STATUSES))
            )
        )
        report_ids = list(result.scalars().all())
        if not report_ids:
            return []

        await self.db.execute(
            update(Report)
            .where(
                Report.id.in_(report_ids),
                Report.status.in_(list(OPEN_STATUSES))
            )
            .values(
                status=ReportStatus.PENDING,
                assigned_collector_id=None,
                assigned_at=None
            )
            .execution_options(synchronize_session=False)
        )
        return report_ids

    async def delete_report(self, report_id: int) -> int:
        """
        Delete a report. Its pickup logs go with it through the foreign key's
        ON DELETE CASCADE.

        Returns:
            Number of pickup logs removed along with the report
        """
        await self.get_report(report_id)
        log_count = (await self.db.execute(
            select(func.count(PickupLog.id)).where(PickupLog.report_id == report_id)
        )).scalar() or 0

        await self.db.execute(
            delete(Report)
            .where(Report.id == report_id)
            .execution_options(synchronize_session=False)
        )
        return log_count

    # --- Pickup logs ---

    async def get_pickup_log(self, pickup_log_id: int) -> PickupLog:
        log = await self.db.get(PickupLog, pickup_log_id, populate_existing=True)
        if not log:
            raise ResourceNotFoundError("Pickup log", pickup_log_id)
        return log

    async def find_open_pickup_log(self, report_id: int, collector_id: int) -> Optional[PickupLog]:
        result = await self.db.execute(
            select(PickupLog).where(
                PickupLog.report_id == report_id,
                PickupLog.collector_id == collector_id,
                PickupLog.status == PickupStatus.STARTED
            )
        )
        return result.scalar_one_or_none()

    async def create_pickup_log(self, report_id: int, collector_id: int) -> PickupLog:
        """
        Open a pickup log.

        Raises:
            DuplicateActiveLogError: an open log already exists for the pair
                (caught by the partial unique index under a race)
        """
        log = PickupLog(
            report_id=report_id,
            collector_id=collector_id,
            start_time=datetime.utcnow(),
            status=PickupStatus.STARTED
        )
        self.db.add(log)
        try:
            await self.db.flush()  # Will raise IntegrityError if unique index violated
        except IntegrityError:
            await self.db.rollback()
            raise DuplicateActiveLogError(report_id, collector_id)
        return log

    async def close_pickup_log(
        self,
        pickup_log_id: int,
        outcome: PickupStatus,
        fields: Optional[Dict[str, Any]] = None
    ) -> PickupLog:
        """
        Close an open pickup log as completed or failed, stamping end_time.

        Raises:
            ValueError: outcome is not terminal
            StaleStateError: the log was already closed
        """
        if outcome == PickupStatus.STARTED:
            raise ValueError("A pickup log can only be closed as completed or failed")

        values = {"status": outcome, "end_time": datetime.utcnow()}
        values.update(fields or {})

        result = await self.db.execute(
            update(PickupLog)
            .where(
                PickupLog.id == pickup_log_id,
                PickupLog.status == PickupStatus.STARTED
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            current = (await self.db.execute(
                select(PickupLog.status).where(PickupLog.id == pickup_log_id)
            )).scalar_one_or_none()
            if current is None:
                raise ResourceNotFoundError("Pickup log", pickup_log_id)
            raise StaleStateError("Pickup log", pickup_log_id, PickupStatus.STARTED.value, current.value)

        return await self._reload(PickupLog, pickup_log_id)

    async def fail_open_pickup_logs(self, report_id: int, reason: str) -> int:
        """Close every open log of a report as failed. Returns the count."""
        result = await self.db.execute(
            update(PickupLog)
            .where(
                PickupLog.report_id == report_id,
                PickupLog.status == PickupStatus.STARTED
            )
            .values(
                status=PickupStatus.FAILED,
                end_time=datetime.utcnow(),
                failure_reason=reason
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def list_pickup_history(self, query: PickupHistoryQuery) -> Tuple[List[PickupLog], int]:
        conditions = [PickupLog.collector_id == query.collector_id]
        if query.status:
            conditions.append(PickupLog.status == query.status)
        if query.start_date:
            conditions.append(PickupLog.created_at >= query.start_date)
        if query.end_date:
            conditions.append(PickupLog.created_at <= query.end_date)

        total = (await self.db.execute(
            select(func.count(PickupLog.id)).where(*conditions)
        )).scalar() or 0

        result = await self.db.execute(
            select(PickupLog).where(*conditions)
            .order_by(PickupLog.created_at.desc(), PickupLog.id.desc())
            .offset(query.page.offset)
            .limit(query.page.page_size)
        )
        return list(result.scalars().all()), total

    async def recent_pickups(
        self,
        collector_id: int,
        status: Optional[PickupStatus] = None,
        limit: int = 10
    ) -> List[PickupLog]:
        conditions = [PickupLog.collector_id == collector_id]
        order_by = PickupLog.created_at.desc()
        if status:
            conditions.append(PickupLog.status == status)
        if status == PickupStatus.COMPLETED:
            order_by = PickupLog.end_time.desc()

        result = await self.db.execute(
            select(PickupLog).where(*conditions).order_by(order_by, PickupLog.id.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def _reload(self, model, pk: int):
        result = await self.db.execute(
            select(model).where(model.id == pk).execution_options(populate_existing=True)
        )
        return result.scalar_one()
