"""
Report Lifecycle Service.

Every report and pickup-log transition lives here. Each operation:
1. validates the move against the state machine,
2. writes through ReportStore's compare-and-set,
3. commits,
4. records an audit event,
5. dispatches notifications (best-effort, never rolls anything back).
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ecotrack.app.core.config import settings
from ecotrack.app.core.exceptions import (
    DuplicateActiveLogError, InsufficientPermissionsError, InvalidRoleError, StaleStateError
)
from ecotrack.app.core.guards import is_admin
from ecotrack.app.core.token_revocation import revoke_all_user_tokens, clear_user_token_revocation
from ecotrack.app.db.session import get_db
from ecotrack.app.domain.lifecycle.state_machine import ensure_transition
from ecotrack.app.models.enums import UserRole
from ecotrack.app.models.pickup_log import PickupLog
from ecotrack.app.models.report import Report
from ecotrack.app.models.report_enums import PickupStatus, ReportStatus, Urgency, WasteType
from ecotrack.app.models.user import User
from ecotrack.app.repositories.report_store import ReportStore
from ecotrack.app.schemas.report import ReportCreate
from ecotrack.app.services.audit import log_event, AuditAction
from ecotrack.app.services.classifier import WasteClassifier, get_classifier
from ecotrack.app.services.geo import coordinate_problem
from ecotrack.app.services.geocoding import ReverseGeocoder, get_geocoder
from ecotrack.app.services.notifier import Notifier, Recipient, dispatch, get_notifier

logger = logging.getLogger(__name__)


@dataclass
class PickupOutcome:
    report: Report
    pickup_log: PickupLog


@dataclass
class PickupCompletion:
    actual_quantity: Optional[str] = None
    waste_type_confirmed: Optional[WasteType] = None
    notes: Optional[str] = None


@dataclass
class CollectorStatusChange:
    collector: User
    reverted_report_ids: List[int] = field(default_factory=list)


class LifecycleService:
    """
    Request-scoped lifecycle operations.

    Actors are the decoded token dicts produced by get_current_user
    (keys: user_id, sub, role).
    """

    def __init__(
        self,
        db: AsyncSession,
        notifier: Optional[Notifier] = None,
        geocoder: Optional[ReverseGeocoder] = None,
        classifier: Optional[WasteClassifier] = None
    ):
        self.db = db
        self.store = ReportStore(db)
        self.notifier = notifier
        self.geocoder = geocoder
        self.classifier = classifier

    @asynccontextmanager
    async def _transaction(self):
        try:
            yield
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

    async def _notify(self, user: Optional[User], template: str, **params):
        if self.notifier is None or user is None:
            return None
        return await dispatch(self.notifier, Recipient.from_user(user), template, params)

    # --- Reporter ---

    async def create_report(self, reporter: dict, payload: ReportCreate) -> Report:
        """
        Submit a new pending report.

        The classifier's prediction replaces the reporter's waste type only
        when it is confident enough; a missing address is reverse-geocoded.
        """
        waste_type = payload.waste_type or WasteType.OTHER
        predicted_type = None
        confidence = None

        prediction = None
        if self.classifier is not None:
            try:
                prediction = self.classifier.classify(payload.photo)
            except Exception:
                logger.warning("Waste classification failed for photo %s", payload.photo, exc_info=True)

        if prediction is not None:
            predicted_type = prediction.waste_type.value
            confidence = prediction.confidence
            if prediction.confidence > settings.classifier_confidence_threshold:
                waste_type = prediction.waste_type

        address = payload.address.strip() if payload.address else None
        if not address and self.geocoder is not None \
                and coordinate_problem(payload.longitude, payload.latitude) is None:
            address = await self.geocoder.reverse_geocode(payload.latitude, payload.longitude)

        report = Report(
            user_id=reporter["user_id"],
            longitude=payload.longitude,
            latitude=payload.latitude,
            address=address,
            waste_type=waste_type,
            predicted_type=predicted_type,
            confidence=confidence,
            photo=payload.photo,
            description=payload.description,
            urgency=payload.urgency,
            estimated_quantity=payload.estimated_quantity,
            status=ReportStatus.PENDING
        )

        urgent = report.urgency in (Urgency.CRITICAL, Urgency.HIGH)
        admins = await self.store.list_active_admins() if urgent else []

        async with self._transaction():
            await self.store.add_report(report)
        await self.db.refresh(report)

        await log_event(
            db=self.db,
            action=AuditAction.REPORT_CREATED,
            actor_id=reporter["user_id"],
            actor_username=reporter.get("sub"),
            metadata={
                "report_id": report.id,
                "waste_type": report.waste_type.value,
                "urgency": report.urgency.value
            }
        )

        if urgent:
            location = report.address or f"{report.latitude}, {report.longitude}"
            for admin in admins:
                await self._notify(admin, "urgent_report", location=location)

        return report

    # --- Admin ---

    async def assign_collector(self, report_id: int, collector_id: int, actor: dict) -> Report:
        """
        pending -> assigned.

        Raises:
            ResourceNotFoundError: unknown report, or unknown/inactive collector
            InvalidRoleError: target user is not a collector
            InvalidTransitionError: report is not pending
            StaleStateError: report changed since it was read
        """
        report = await self.store.get_report(report_id)
        collector = await self.store.get_active_collector(collector_id)
        reporter = await self.store.get_user(report.user_id)
        ensure_transition(report.status, ReportStatus.ASSIGNED)

        now = datetime.utcnow()
        async with self._transaction():
            report = await self.store.update_report_status(
                report_id,
                expected_status=report.status,
                new_status=ReportStatus.ASSIGNED,
                fields={"assigned_collector_id": collector.id, "assigned_at": now, "updated_at": now}
            )

        logger.info("Report %s assigned to collector %s", report_id, collector_id)
        await log_event(
            db=self.db,
            action=AuditAction.COLLECTOR_ASSIGNED,
            actor_id=actor["user_id"],
            actor_username=actor.get("sub"),
            target_user_id=collector.id,
            target_username=collector.username,
            metadata={"report_id": report_id}
        )

        await self._notify(reporter, "report_assigned", collector_name=collector.name)
        await self._notify(collector, "new_assignment", report_count=1)
        return report

    async def resolve_report(self, report_id: int, actor: dict, admin_notes: Optional[str] = None) -> Report:
        """collected -> resolved."""
        report = await self.store.get_report(report_id)
        ensure_transition(report.status, ReportStatus.RESOLVED)

        now = datetime.utcnow()
        fields = {"resolved_at": now, "updated_at": now}
        if admin_notes is not None:
            fields["admin_notes"] = admin_notes

        async with self._transaction():
            report = await self.store.update_report_status(
                report_id, report.status, ReportStatus.RESOLVED, fields
            )

        await log_event(
            db=self.db,
            action=AuditAction.REPORT_RESOLVED,
            actor_id=actor["user_id"],
            actor_username=actor.get("sub"),
            metadata={"report_id": report_id}
        )
        return report

    async def cancel_report(self, report_id: int, actor: dict) -> Report:
        """
        Any non-terminal status -> cancelled. Admins may cancel anything,
        reporters only their own reports. Clears the assignment and closes
        any pickup still open on the report.
        """
        report = await self.store.get_report(report_id)
        if not is_admin(actor) and report.user_id != actor["user_id"]:
            raise InsufficientPermissionsError(
                "You can only cancel your own reports",
                details={"report_id": report_id}
            )
        ensure_transition(report.status, ReportStatus.CANCELLED)

        previous_collector_id = report.assigned_collector_id
        now = datetime.utcnow()
        async with self._transaction():
            report = await self.store.update_report_status(
                report_id,
                report.status,
                ReportStatus.CANCELLED,
                {"assigned_collector_id": None, "cancelled_at": now, "updated_at": now}
            )
            closed = await self.store.fail_open_pickup_logs(report_id, "Report cancelled")

        await log_event(
            db=self.db,
            action=AuditAction.REPORT_CANCELLED,
            actor_id=actor["user_id"],
            actor_username=actor.get("sub"),
            target_user_id=previous_collector_id,
            metadata={"report_id": report_id, "closed_pickup_logs": closed}
        )
        return report

    async def delete_report(self, report_id: int, actor: dict) -> int:
        """
        Remove a report and its pickup logs, whatever its status (Admin only).

        Returns:
            Number of pickup logs deleted with the report
        """
        if not is_admin(actor):
            raise InsufficientPermissionsError(
                "Only admins can delete reports",
                details={"report_id": report_id}
            )

        async with self._transaction():
            deleted_logs = await self.store.delete_report(report_id)

        logger.info("Report %s deleted with %d pickup log(s)", report_id, deleted_logs)
        await log_event(
            db=self.db,
            action=AuditAction.REPORT_DELETED,
            actor_id=actor["user_id"],
            actor_username=actor.get("sub"),
            metadata={"report_id": report_id, "deleted_pickup_logs": deleted_logs}
        )
        return deleted_logs

    async def set_collector_active(self, collector_id: int, is_active: bool, actor: dict) -> CollectorStatusChange:
        """
        Activate or deactivate a collector.

        Deactivation returns every assigned/in-progress report of the
        collector to pending and revokes their tokens. Open pickup logs are
        not touched.
        """
        collector = await self.store.get_user(collector_id)
        if collector.role != UserRole.COLLECTOR:
            raise InvalidRoleError(collector_id, UserRole.COLLECTOR.value, collector.role.value)

        if collector.is_active == is_active:
            return CollectorStatusChange(collector)

        reverted: List[int] = []
        async with self._transaction():
            collector.is_active = is_active
            if not is_active:
                reverted = await self.store.deactivate_collector_cascade(collector_id)
        await self.db.refresh(collector)

        if is_active:
            await clear_user_token_revocation(collector_id)
            action = AuditAction.COLLECTOR_ACTIVATED
        else:
            await revoke_all_user_tokens(collector_id)
            action = AuditAction.COLLECTOR_DEACTIVATED
            logger.info("Collector %s deactivated, %d report(s) returned to pending", collector_id, len(reverted))

        await log_event(
            db=self.db,
            action=action,
            actor_id=actor["user_id"],
            actor_username=actor.get("sub"),
            target_user_id=collector.id,
            target_username=collector.username,
            metadata={"reverted_report_ids": reverted}
        )
        return CollectorStatusChange(collector, reverted)

    # --- Collector ---

    async def start_pickup(self, report_id: int, collector_id: int) -> PickupOutcome:
        """
        assigned -> in_progress, opening a pickup log.

        Raises:
            DuplicateActiveLogError: this collector already has an open log
                on the report
            InsufficientPermissionsError: report is not assigned to collector
            InvalidTransitionError: report is not assigned
            StaleStateError: lost a race with another transition
        """
        report = await self.store.get_report(report_id)

        open_log = await self.store.find_open_pickup_log(report_id, collector_id)
        if open_log:
            raise DuplicateActiveLogError(report_id, collector_id, open_log.id)

        if report.assigned_collector_id != collector_id:
            raise InsufficientPermissionsError(
                "This report is not assigned to you",
                details={"report_id": report_id}
            )
        ensure_transition(report.status, ReportStatus.IN_PROGRESS)

        async with self._transaction():
            report = await self.store.update_report_status(
                report_id,
                expected_status=report.status,
                new_status=ReportStatus.IN_PROGRESS,
                fields={"updated_at": datetime.utcnow()},
                expected_collector_id=collector_id
            )
            pickup_log = await self.store.create_pickup_log(report_id, collector_id)
        await self.db.refresh(pickup_log)

        await log_event(
            db=self.db,
            action=AuditAction.PICKUP_STARTED,
            actor_id=collector_id,
            metadata={"report_id": report_id, "pickup_log_id": pickup_log.id}
        )
        return PickupOutcome(report, pickup_log)

    async def _get_owned_open_log(self, pickup_log_id: int, collector_id: int) -> PickupLog:
        pickup_log = await self.store.get_pickup_log(pickup_log_id)
        if pickup_log.collector_id != collector_id:
            raise InsufficientPermissionsError(
                "This pickup belongs to another collector",
                details={"pickup_log_id": pickup_log_id}
            )
        if not pickup_log.is_open:
            raise StaleStateError(
                "Pickup log", pickup_log_id, PickupStatus.STARTED.value, pickup_log.status.value
            )
        return pickup_log

    async def complete_pickup(
        self,
        pickup_log_id: int,
        collector_id: int,
        completion: Optional[PickupCompletion] = None
    ) -> PickupOutcome:
        """
        Close an open log as completed; report in_progress -> collected.

        Quantity, confirmed waste type and notes are mirrored onto the report.
        """
        completion = completion or PickupCompletion()
        pickup_log = await self._get_owned_open_log(pickup_log_id, collector_id)
        report = await self.store.get_report(pickup_log.report_id)
        ensure_transition(report.status, ReportStatus.COLLECTED)
        reporter = await self.db.get(User, report.user_id)

        now = datetime.utcnow()
        report_fields = {"collected_at": now, "updated_at": now}
        if completion.actual_quantity is not None:
            report_fields["actual_quantity"] = completion.actual_quantity
        if completion.notes is not None:
            report_fields["collector_notes"] = completion.notes
        if completion.waste_type_confirmed is not None:
            report_fields["waste_type"] = completion.waste_type_confirmed

        async with self._transaction():
            pickup_log = await self.store.close_pickup_log(
                pickup_log_id,
                PickupStatus.COMPLETED,
                {
                    "end_time": now,
                    "actual_quantity": completion.actual_quantity,
                    "waste_type_confirmed": completion.waste_type_confirmed,
                    "notes": completion.notes
                }
            )
            report = await self.store.update_report_status(
                report.id,
                expected_status=ReportStatus.IN_PROGRESS,
                new_status=ReportStatus.COLLECTED,
                fields=report_fields,
                expected_collector_id=collector_id
            )

        await log_event(
            db=self.db,
            action=AuditAction.PICKUP_COMPLETED,
            actor_id=collector_id,
            metadata={
                "report_id": report.id,
                "pickup_log_id": pickup_log_id,
                "duration_minutes": pickup_log.duration_minutes
            }
        )

        await self._notify(reporter, "report_collected")
        return PickupOutcome(report, pickup_log)

    async def fail_pickup(
        self,
        pickup_log_id: int,
        collector_id: int,
        reason: str,
        notes: Optional[str] = None
    ) -> PickupOutcome:
        """
        Close an open log as failed; report in_progress -> assigned so the
        collector can try again.

        A log left open by a collector deactivation no longer drives its
        report (the report went back to pending and may have been assigned
        again). Failing such a log closes it and leaves the report as it is,
        which clears the way for a fresh start_pickup.
        """
        pickup_log = await self._get_owned_open_log(pickup_log_id, collector_id)
        report = await self.store.get_report(pickup_log.report_id)

        now = datetime.utcnow()
        log_fields = {"end_time": now, "failure_reason": reason, "notes": notes}

        if report.status != ReportStatus.IN_PROGRESS or report.assigned_collector_id != collector_id:
            async with self._transaction():
                pickup_log = await self.store.close_pickup_log(pickup_log_id, PickupStatus.FAILED, log_fields)
            report = await self.store.get_report(report.id)

            logger.info(
                "Closed detached pickup log %s; report %s stays %s",
                pickup_log_id, report.id, report.status.value
            )
            await log_event(
                db=self.db,
                action=AuditAction.PICKUP_FAILED,
                actor_id=collector_id,
                metadata={
                    "report_id": report.id,
                    "pickup_log_id": pickup_log_id,
                    "reason": reason,
                    "report_status": report.status.value,
                    "detached": True
                }
            )
            return PickupOutcome(report, pickup_log)

        ensure_transition(report.status, ReportStatus.ASSIGNED)
        async with self._transaction():
            pickup_log = await self.store.close_pickup_log(pickup_log_id, PickupStatus.FAILED, log_fields)
            report = await self.store.update_report_status(
                report.id,
                expected_status=ReportStatus.IN_PROGRESS,
                new_status=ReportStatus.ASSIGNED,
                fields={"updated_at": now},
                expected_collector_id=collector_id
            )

        await log_event(
            db=self.db,
            action=AuditAction.PICKUP_FAILED,
            actor_id=collector_id,
            metadata={"report_id": report.id, "pickup_log_id": pickup_log_id, "reason": reason}
        )
        return PickupOutcome(report, pickup_log)


def get_lifecycle_service(
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    geocoder: ReverseGeocoder = Depends(get_geocoder),
    classifier: WasteClassifier = Depends(get_classifier)
) -> LifecycleService:
    """FastAPI dependency wiring the service to its collaborators."""
    return LifecycleService(db, notifier=notifier, geocoder=geocoder, classifier=classifier)
