"""
Report Lifecycle Service Tests.

Drives LifecycleService directly: transitions, ownership rules, pickup logs,
collector deactivation, audit events and notifications.
"""

import pytest
from sqlalchemy import select

from ecotrack.app.core.exceptions import (
    DuplicateActiveLogError, InsufficientPermissionsError, InvalidRoleError,
    InvalidTransitionError, ResourceNotFoundError, StaleStateError
)
from ecotrack.app.core.token_revocation import are_user_tokens_revoked
from ecotrack.app.models.audit_log import AuditLog
from ecotrack.app.models.enums import UserRole
from ecotrack.app.models.pickup_log import PickupLog
from ecotrack.app.models.report_enums import ReportStatus, PickupStatus, Urgency, WasteType
from ecotrack.app.schemas.report import ReportCreate
from ecotrack.app.services.audit import AuditAction
from ecotrack.app.services.classifier import KeywordWasteClassifier, WasteClassifier
from ecotrack.app.services.lifecycle_service import LifecycleService, PickupCompletion
from ecotrack.app.services.notifier import Notifier, NotificationResult
from ecotrack.tests.factories import OfflineGeocoder, actor, create_user, create_report


class BrokenClassifier(WasteClassifier):
    def classify(self, filename, image_bytes=None):
        raise RuntimeError("model not loaded")


class RecordingNotifier(Notifier):
    channel = "recording"

    def __init__(self):
        self.sent = []

    async def notify(self, recipient, template, params):
        self.sent.append((recipient.user_id, template, params))
        return NotificationResult.ok(self.channel)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def service(db_session, notifier):
    return LifecycleService(db_session, notifier=notifier)


async def audit_actions(db):
    result = await db.execute(select(AuditLog.action).order_by(AuditLog.id))
    return list(result.scalars().all())


async def start_assigned_pickup(service, db, reporter, collector):
    report = await create_report(db, reporter, status=ReportStatus.ASSIGNED, collector=collector)
    return await service.start_pickup(report.id, collector.id)


# --- create_report ---

@pytest.mark.asyncio
async def test_create_report_is_pending_and_audited(db_session, service, citizen):
    payload = ReportCreate(
        photo="IMG_001.jpg",
        description="Bags by the bus stop",
        longitude=77.59,
        latitude=12.97,
        address="MG Road"
    )

    report = await service.create_report(actor(citizen), payload)

    assert report.id is not None
    assert report.status == ReportStatus.PENDING
    assert report.user_id == citizen.id
    assert report.assigned_collector_id is None
    assert report.waste_type == WasteType.OTHER
    assert report.urgency == Urgency.MEDIUM
    assert report.coordinates == (77.59, 12.97)
    assert await audit_actions(db_session) == [AuditAction.REPORT_CREATED]


@pytest.mark.asyncio
async def test_create_report_adopts_confident_classification(db_session, citizen):
    service = LifecycleService(db_session, classifier=KeywordWasteClassifier())
    payload = ReportCreate(
        photo="plastic_bottle_bag_cup_wrapper.jpg",
        description="Pile of packaging",
        longitude=0,
        latitude=0,
        address="Beach",
        waste_type=WasteType.PAPER
    )

    report = await service.create_report(actor(citizen), payload)

    assert report.waste_type == WasteType.PLASTIC
    assert report.predicted_type == "plastic"
    assert report.confidence == pytest.approx(0.61)


@pytest.mark.asyncio
async def test_create_report_keeps_reporter_type_on_weak_prediction(db_session, citizen):
    service = LifecycleService(db_session, classifier=KeywordWasteClassifier())
    payload = ReportCreate(
        photo="IMG_001.jpg",
        description="Old fridge",
        longitude=0,
        latitude=0,
        address="Alley",
        waste_type=WasteType.ELECTRONIC
    )

    report = await service.create_report(actor(citizen), payload)

    assert report.waste_type == WasteType.ELECTRONIC
    assert report.predicted_type == "other"
    assert report.confidence == pytest.approx(0.3)


@pytest.mark.asyncio
async def test_create_report_survives_classifier_failure(db_session, citizen, caplog):
    service = LifecycleService(db_session, classifier=BrokenClassifier())
    payload = ReportCreate(
        photo="IMG_002.jpg",
        description="Broken chairs",
        longitude=0,
        latitude=0,
        address="Park gate",
        waste_type=WasteType.MIXED
    )

    report = await service.create_report(actor(citizen), payload)

    assert report.status == ReportStatus.PENDING
    assert report.waste_type == WasteType.MIXED
    assert report.predicted_type is None
    assert report.confidence is None
    assert "Waste classification failed" in caplog.text


@pytest.mark.asyncio
async def test_create_report_geocodes_missing_address(db_session, citizen):
    geocoder = OfflineGeocoder("Cubbon Park, Karnataka, India")
    service = LifecycleService(db_session, geocoder=geocoder)
    payload = ReportCreate(photo="p.jpg", description="Litter", longitude=77.59, latitude=12.97)

    report = await service.create_report(actor(citizen), payload)

    assert report.address == "Cubbon Park, Karnataka, India"
    assert geocoder.calls == [(12.97, 77.59)]


@pytest.mark.asyncio
async def test_create_report_without_geocode_result_keeps_no_address(db_session, citizen):
    service = LifecycleService(db_session, geocoder=OfflineGeocoder(None))
    payload = ReportCreate(photo="p.jpg", description="Litter", longitude=1, latitude=1)

    report = await service.create_report(actor(citizen), payload)

    assert report.address is None


@pytest.mark.asyncio
async def test_urgent_report_notifies_active_admins(db_session, service, notifier, citizen, admin):
    await create_user(db_session, "retired_admin", UserRole.ADMIN, is_active=False)
    payload = ReportCreate(
        photo="p.jpg", description="Chemical spill", longitude=1, latitude=2,
        address="Dock 4", urgency=Urgency.CRITICAL
    )

    await service.create_report(actor(citizen), payload)

    assert notifier.sent == [(admin.id, "urgent_report", {"location": "Dock 4"})]


@pytest.mark.asyncio
async def test_routine_report_sends_no_notification(service, notifier, citizen, admin):
    payload = ReportCreate(photo="p.jpg", description="Bin full", longitude=1, latitude=2, address="X")

    await service.create_report(actor(citizen), payload)

    assert notifier.sent == []


# --- assign_collector ---

@pytest.mark.asyncio
async def test_assign_collector(db_session, service, notifier, admin, collector, citizen):
    report = await create_report(db_session, citizen)

    report = await service.assign_collector(report.id, collector.id, actor(admin))

    assert report.status == ReportStatus.ASSIGNED
    assert report.assigned_collector_id == collector.id
    assert report.assigned_at is not None
    assert notifier.sent == [
        (citizen.id, "report_assigned", {"collector_name": collector.name}),
        (collector.id, "new_assignment", {"report_count": 1}),
    ]
    assert await audit_actions(db_session) == [AuditAction.COLLECTOR_ASSIGNED]


@pytest.mark.asyncio
async def test_assign_rejects_non_pending_report(db_session, service, admin, collector, citizen):
    report = await create_report(db_session, citizen, status=ReportStatus.ASSIGNED, collector=collector)

    with pytest.raises(InvalidTransitionError):
        await service.assign_collector(report.id, collector.id, actor(admin))


@pytest.mark.asyncio
async def test_assign_rejects_bad_collectors(db_session, service, admin, citizen):
    report = await create_report(db_session, citizen)
    inactive = await create_user(db_session, "inactive_collector", UserRole.COLLECTOR, is_active=False)

    with pytest.raises(InvalidRoleError):
        await service.assign_collector(report.id, citizen.id, actor(admin))
    with pytest.raises(ResourceNotFoundError):
        await service.assign_collector(report.id, inactive.id, actor(admin))
    with pytest.raises(ResourceNotFoundError):
        await service.assign_collector(report.id, 424242, actor(admin))
    with pytest.raises(ResourceNotFoundError):
        await service.assign_collector(424242, inactive.id, actor(admin))

    await db_session.refresh(report)
    assert report.status == ReportStatus.PENDING
    assert report.assigned_collector_id is None


# --- start_pickup ---

@pytest.mark.asyncio
async def test_start_pickup_opens_log(db_session, service, collector, citizen):
    outcome = await start_assigned_pickup(service, db_session, citizen, collector)

    assert outcome.report.status == ReportStatus.IN_PROGRESS
    assert outcome.pickup_log.status == PickupStatus.STARTED
    assert outcome.pickup_log.report_id == outcome.report.id
    assert outcome.pickup_log.collector_id == collector.id
    assert outcome.pickup_log.end_time is None
    assert await audit_actions(db_session) == [AuditAction.PICKUP_STARTED]


@pytest.mark.asyncio
async def test_second_start_is_duplicate(db_session, service, collector, citizen):
    outcome = await start_assigned_pickup(service, db_session, citizen, collector)

    with pytest.raises(DuplicateActiveLogError) as exc_info:
        await service.start_pickup(outcome.report.id, collector.id)

    assert exc_info.value.status_code == 409
    logs = (await db_session.execute(select(PickupLog))).scalars().all()
    assert len(logs) == 1


@pytest.mark.asyncio
async def test_start_requires_assigned_collector(db_session, service, collector, citizen):
    other = await create_user(db_session, "other_collector", UserRole.COLLECTOR)
    report = await create_report(db_session, citizen, status=ReportStatus.ASSIGNED, collector=collector)
    pending = await create_report(db_session, citizen)

    with pytest.raises(InsufficientPermissionsError):
        await service.start_pickup(report.id, other.id)
    with pytest.raises(InsufficientPermissionsError):
        await service.start_pickup(pending.id, collector.id)


@pytest.mark.asyncio
async def test_start_rejects_collected_report(db_session, service, collector, citizen):
    report = await create_report(db_session, citizen, status=ReportStatus.COLLECTED, collector=collector)

    with pytest.raises(InvalidTransitionError):
        await service.start_pickup(report.id, collector.id)


# --- complete_pickup ---

@pytest.mark.asyncio
async def test_complete_pickup_mirrors_onto_report(db_session, service, notifier, collector, citizen):
    started = await start_assigned_pickup(service, db_session, citizen, collector)

    outcome = await service.complete_pickup(
        started.pickup_log.id,
        collector.id,
        PickupCompletion(actual_quantity="3 bags", waste_type_confirmed=WasteType.MIXED, notes="Left gate open")
    )

    assert outcome.pickup_log.status == PickupStatus.COMPLETED
    assert outcome.pickup_log.end_time is not None
    assert outcome.pickup_log.duration_minutes == 0
    assert outcome.report.status == ReportStatus.COLLECTED
    assert outcome.report.collected_at is not None
    assert outcome.report.actual_quantity == "3 bags"
    assert outcome.report.waste_type == WasteType.MIXED
    assert outcome.report.collector_notes == "Left gate open"
    assert notifier.sent == [(citizen.id, "report_collected", {})]


@pytest.mark.asyncio
async def test_complete_without_details(db_session, service, collector, citizen):
    started = await start_assigned_pickup(service, db_session, citizen, collector)

    outcome = await service.complete_pickup(started.pickup_log.id, collector.id)

    assert outcome.report.status == ReportStatus.COLLECTED
    assert outcome.report.waste_type == WasteType.OTHER


@pytest.mark.asyncio
async def test_closed_log_cannot_be_closed_again(db_session, service, collector, citizen):
    started = await start_assigned_pickup(service, db_session, citizen, collector)
    await service.complete_pickup(started.pickup_log.id, collector.id)

    with pytest.raises(StaleStateError):
        await service.complete_pickup(started.pickup_log.id, collector.id)
    with pytest.raises(StaleStateError):
        await service.fail_pickup(started.pickup_log.id, collector.id, "Gate locked")


@pytest.mark.asyncio
async def test_other_collector_cannot_close_log(db_session, service, collector, citizen):
    other = await create_user(db_session, "other_collector", UserRole.COLLECTOR)
    started = await start_assigned_pickup(service, db_session, citizen, collector)

    with pytest.raises(InsufficientPermissionsError):
        await service.complete_pickup(started.pickup_log.id, other.id)

    with pytest.raises(ResourceNotFoundError):
        await service.complete_pickup(999999, collector.id)


# --- fail_pickup ---

@pytest.mark.asyncio
async def test_failed_pickup_returns_report_to_assigned(db_session, service, collector, citizen):
    started = await start_assigned_pickup(service, db_session, citizen, collector)

    outcome = await service.fail_pickup(started.pickup_log.id, collector.id, "Gate locked", notes="Came at 7am")

    assert outcome.pickup_log.status == PickupStatus.FAILED
    assert outcome.pickup_log.failure_reason == "Gate locked"
    assert outcome.pickup_log.notes == "Came at 7am"
    assert outcome.report.status == ReportStatus.ASSIGNED
    assert outcome.report.assigned_collector_id == collector.id

    # A fresh attempt may follow
    retry = await service.start_pickup(outcome.report.id, collector.id)
    assert retry.pickup_log.id != started.pickup_log.id
    assert retry.report.status == ReportStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_log_left_open_by_deactivation_can_be_failed(db_session, service, admin, collector, citizen):
    """Deactivate mid-pickup, reactivate, reassign: the old log must not block a new attempt."""
    started = await start_assigned_pickup(service, db_session, citizen, collector)
    await service.set_collector_active(collector.id, False, actor(admin))
    await service.set_collector_active(collector.id, True, actor(admin))
    report = await service.assign_collector(started.report.id, collector.id, actor(admin))
    assert report.status == ReportStatus.ASSIGNED

    with pytest.raises(DuplicateActiveLogError) as exc_info:
        await service.start_pickup(report.id, collector.id)
    assert exc_info.value.details["pickup_log_id"] == started.pickup_log.id

    # Completing is still refused: the report was never restarted
    with pytest.raises(InvalidTransitionError):
        await service.complete_pickup(started.pickup_log.id, collector.id)

    outcome = await service.fail_pickup(started.pickup_log.id, collector.id, "Collector was deactivated")

    assert outcome.pickup_log.status == PickupStatus.FAILED
    assert outcome.pickup_log.end_time is not None
    assert outcome.report.status == ReportStatus.ASSIGNED
    assert outcome.report.assigned_collector_id == collector.id

    retry = await service.start_pickup(report.id, collector.id)
    assert retry.pickup_log.id != started.pickup_log.id
    assert retry.report.status == ReportStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_log_left_open_on_pending_report_closes_without_moving_it(
    db_session, service, admin, collector, citizen
):
    started = await start_assigned_pickup(service, db_session, citizen, collector)
    await service.set_collector_active(collector.id, False, actor(admin))
    await service.set_collector_active(collector.id, True, actor(admin))

    outcome = await service.fail_pickup(started.pickup_log.id, collector.id, "Stale attempt")

    assert outcome.pickup_log.status == PickupStatus.FAILED
    assert outcome.report.status == ReportStatus.PENDING
    assert outcome.report.assigned_collector_id is None

    result = await db_session.execute(
        select(AuditLog).where(AuditLog.action == AuditAction.PICKUP_FAILED)
    )
    entry = result.scalar_one()
    assert entry.meta_data["detached"] is True
    assert entry.meta_data["report_status"] == "pending"


# --- resolve / cancel ---

@pytest.mark.asyncio
async def test_resolve_collected_report(db_session, service, admin, collector, citizen):
    report = await create_report(db_session, citizen, status=ReportStatus.COLLECTED, collector=collector)

    report = await service.resolve_report(report.id, actor(admin), admin_notes="Verified on site")

    assert report.status == ReportStatus.RESOLVED
    assert report.resolved_at is not None
    assert report.admin_notes == "Verified on site"


@pytest.mark.asyncio
async def test_resolve_requires_collected(db_session, service, admin, citizen):
    report = await create_report(db_session, citizen)

    with pytest.raises(InvalidTransitionError):
        await service.resolve_report(report.id, actor(admin))


@pytest.mark.asyncio
async def test_reporter_cancels_own_report(db_session, service, citizen):
    report = await create_report(db_session, citizen)

    report = await service.cancel_report(report.id, actor(citizen))

    assert report.status == ReportStatus.CANCELLED
    assert report.cancelled_at is not None


@pytest.mark.asyncio
async def test_other_user_cannot_cancel(db_session, service, citizen):
    neighbour = await create_user(db_session, "neighbour")
    report = await create_report(db_session, citizen)

    with pytest.raises(InsufficientPermissionsError):
        await service.cancel_report(report.id, actor(neighbour))


@pytest.mark.asyncio
async def test_admin_cancel_closes_open_pickup(db_session, service, admin, collector, citizen):
    started = await start_assigned_pickup(service, db_session, citizen, collector)

    report = await service.cancel_report(started.report.id, actor(admin))

    assert report.status == ReportStatus.CANCELLED
    assert report.assigned_collector_id is None
    log = (await db_session.execute(
        select(PickupLog).where(PickupLog.id == started.pickup_log.id).execution_options(populate_existing=True)
    )).scalar_one()
    assert log.status == PickupStatus.FAILED
    assert log.failure_reason == "Report cancelled"
    assert log.end_time is not None


@pytest.mark.asyncio
async def test_delete_report_removes_its_pickup_logs(db_session, service, admin, collector, citizen):
    started = await start_assigned_pickup(service, db_session, citizen, collector)
    await service.fail_pickup(started.pickup_log.id, collector.id, "Gate locked")
    await service.start_pickup(started.report.id, collector.id)
    untouched = await create_report(db_session, citizen)

    deleted_logs = await service.delete_report(started.report.id, actor(admin))

    assert deleted_logs == 2
    remaining = (await db_session.execute(
        select(PickupLog.id).where(PickupLog.report_id == started.report.id)
    )).scalars().all()
    assert remaining == []
    with pytest.raises(ResourceNotFoundError):
        await service.store.get_report(started.report.id)
    assert (await service.store.get_report(untouched.id)).status == ReportStatus.PENDING

    result = await db_session.execute(
        select(AuditLog).where(AuditLog.action == AuditAction.REPORT_DELETED)
    )
    assert result.scalar_one().meta_data == {"report_id": started.report.id, "deleted_pickup_logs": 2}


@pytest.mark.asyncio
async def test_delete_report_is_admin_only(db_session, service, admin, citizen):
    report = await create_report(db_session, citizen)

    with pytest.raises(InsufficientPermissionsError):
        await service.delete_report(report.id, actor(citizen))
    with pytest.raises(ResourceNotFoundError):
        await service.delete_report(424242, actor(admin))


@pytest.mark.asyncio
async def test_terminal_reports_cannot_be_cancelled(db_session, service, admin, citizen):
    resolved = await create_report(db_session, citizen, status=ReportStatus.RESOLVED)
    cancelled = await create_report(db_session, citizen, status=ReportStatus.CANCELLED)

    with pytest.raises(InvalidTransitionError):
        await service.cancel_report(resolved.id, actor(admin))
    with pytest.raises(InvalidTransitionError):
        await service.cancel_report(cancelled.id, actor(admin))


# --- collector activation ---

@pytest.mark.asyncio
async def test_deactivation_reverts_open_reports(db_session, service, admin, collector, citizen):
    assigned = await create_report(db_session, citizen, status=ReportStatus.ASSIGNED, collector=collector)
    started = await start_assigned_pickup(service, db_session, citizen, collector)
    collected = await create_report(db_session, citizen, status=ReportStatus.COLLECTED, collector=collector)

    change = await service.set_collector_active(collector.id, False, actor(admin))

    assert change.collector.is_active is False
    assert sorted(change.reverted_report_ids) == sorted([assigned.id, started.report.id])
    assert await are_user_tokens_revoked(collector.id)

    for report in (assigned, started.report, collected):
        await db_session.refresh(report)
    assert assigned.status == ReportStatus.PENDING
    assert assigned.assigned_collector_id is None
    assert started.report.status == ReportStatus.PENDING
    assert collected.status == ReportStatus.COLLECTED
    assert collected.assigned_collector_id == collector.id

    # Open pickup logs survive deactivation
    await db_session.refresh(started.pickup_log)
    assert started.pickup_log.status == PickupStatus.STARTED


@pytest.mark.asyncio
async def test_reactivation_clears_revocation(db_session, service, admin, collector):
    await service.set_collector_active(collector.id, False, actor(admin))

    change = await service.set_collector_active(collector.id, True, actor(admin))

    assert change.collector.is_active is True
    assert change.reverted_report_ids == []
    assert not await are_user_tokens_revoked(collector.id)
    assert await audit_actions(db_session) == [
        AuditAction.COLLECTOR_DEACTIVATED,
        AuditAction.COLLECTOR_ACTIVATED,
    ]


@pytest.mark.asyncio
async def test_unchanged_status_is_noop(db_session, service, admin, collector):
    change = await service.set_collector_active(collector.id, True, actor(admin))

    assert change.reverted_report_ids == []
    assert await audit_actions(db_session) == []


@pytest.mark.asyncio
async def test_only_collectors_can_be_deactivated(service, admin, citizen):
    with pytest.raises(InvalidRoleError):
        await service.set_collector_active(citizen.id, False, actor(admin))


# --- full walk ---

@pytest.mark.asyncio
async def test_report_walks_full_lifecycle(db_session, service, admin, collector, citizen):
    payload = ReportCreate(photo="p.jpg", description="Sofa on kerb", longitude=3, latitude=4, address="Elm St")

    report = await service.create_report(actor(citizen), payload)
    report = await service.assign_collector(report.id, collector.id, actor(admin))
    started = await service.start_pickup(report.id, collector.id)
    done = await service.complete_pickup(started.pickup_log.id, collector.id)
    report = await service.resolve_report(done.report.id, actor(admin))

    assert report.status == ReportStatus.RESOLVED
    assert await audit_actions(db_session) == [
        AuditAction.REPORT_CREATED,
        AuditAction.COLLECTOR_ASSIGNED,
        AuditAction.PICKUP_STARTED,
        AuditAction.PICKUP_COMPLETED,
        AuditAction.REPORT_RESOLVED,
    ]
