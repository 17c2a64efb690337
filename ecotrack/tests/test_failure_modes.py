"""
Failure Injection Tests.

Validates resilience against collaborator failures: the push gateway, the
reverse geocoder and the notifier must never break or roll back a
lifecycle transition.
"""

import asyncio
import json

import httpx
import pytest

from ecotrack.app.core.reliability import CircuitBreaker, CircuitOpenError
from ecotrack.app.models.report_enums import ReportStatus, WasteType
from ecotrack.app.services.classifier import KeywordWasteClassifier
from ecotrack.app.services.geocoding import ReverseGeocoder
from ecotrack.app.services.lifecycle_service import LifecycleService
from ecotrack.app.services.notifier import (
    CompositeNotifier, DeliveryState, InAppNotifier, Notifier, NotificationResult,
    PushNotifier, Recipient, dispatch, render_template
)
from ecotrack.tests.factories import actor, create_report


class ExplodingNotifier(Notifier):
    channel = "exploding"

    async def notify(self, recipient, template, params):
        raise RuntimeError("SMTP down")


class SlowNotifier(Notifier):
    channel = "slow"

    async def notify(self, recipient, template, params):
        await asyncio.sleep(5)
        return NotificationResult.ok(self.channel)


class FixedNotifier(Notifier):
    def __init__(self, result):
        self.result = result
        self.channel = result.channel

    async def notify(self, recipient, template, params):
        return self.result


# --- Circuit breaker ---

@pytest.mark.asyncio
async def test_circuit_breaker_activates():
    """Test that circuit breaker opens after threshold failures."""
    cb = CircuitBreaker(failure_threshold=2, reset_timeout=60)

    async def failing_func():
        raise ValueError("Boom")

    for _ in range(2):
        with pytest.raises(ValueError):
            await cb.call(failing_func)

    with pytest.raises(CircuitOpenError):
        await cb.call(failing_func)
    assert cb.state == "OPEN"


@pytest.mark.asyncio
async def test_circuit_breaker_probe_closes_after_timeout(mocker):
    cb = CircuitBreaker(failure_threshold=1, reset_timeout=10)
    clock = mocker.patch("ecotrack.app.core.reliability.time.time", return_value=1000.0)

    async def failing_func():
        raise ValueError("Boom")

    async def healthy_func():
        return "ok"

    with pytest.raises(ValueError):
        await cb.call(failing_func)
    with pytest.raises(CircuitOpenError):
        await cb.call(healthy_func)

    clock.return_value = 1011.0
    assert await cb.call(healthy_func) == "ok"
    assert cb.state == "CLOSED"
    assert cb.failures == 0


# --- Notifier ---

@pytest.mark.asyncio
async def test_dispatch_swallows_notifier_errors():
    result = await dispatch(ExplodingNotifier(), Recipient(user_id=1), "report_collected")

    assert result.state == DeliveryState.FAILED
    assert result.detail == "error"


@pytest.mark.asyncio
async def test_dispatch_times_out_slow_notifier():
    result = await dispatch(SlowNotifier(), Recipient(user_id=1), "report_collected", timeout=0.01)

    assert result.state == DeliveryState.FAILED
    assert result.detail == "timeout"


@pytest.mark.asyncio
async def test_dispatch_without_recipient_is_noop():
    assert await dispatch(ExplodingNotifier(), None, "report_collected") is None


def test_render_template_requires_parameters():
    title, body, _ = render_template("report_assigned", {"collector_name": "Ravi"})
    assert title == "Report Assigned"
    assert "Ravi" in body

    with pytest.raises(ValueError):
        render_template("report_assigned", {})
    with pytest.raises(ValueError):
        render_template("no_such_template", {})


@pytest.mark.asyncio
async def test_failing_notifier_does_not_roll_back_transition(db_session, admin, collector, citizen):
    report = await create_report(db_session, citizen)
    service = LifecycleService(db_session, notifier=ExplodingNotifier())

    updated = await service.assign_collector(report.id, collector.id, actor(admin))

    assert updated.status == ReportStatus.ASSIGNED
    await db_session.refresh(report)
    assert report.status == ReportStatus.ASSIGNED
    assert report.assigned_collector_id == collector.id


@pytest.mark.asyncio
async def test_composite_result_states():
    delivered = FixedNotifier(NotificationResult.ok("in_app"))
    unavailable = FixedNotifier(NotificationResult.unavailable("push", "no token"))
    failed = FixedNotifier(NotificationResult.failed("push", "HTTP 500"))
    recipient = Recipient(user_id=1)

    result = await CompositeNotifier([delivered, unavailable]).notify(recipient, "report_collected", {})
    assert result.delivered
    assert result.detail == "in_app=delivered; push=unavailable"

    result = await CompositeNotifier([unavailable]).notify(recipient, "report_collected", {})
    assert result.state == DeliveryState.UNAVAILABLE

    result = await CompositeNotifier([unavailable, failed]).notify(recipient, "report_collected", {})
    assert result.state == DeliveryState.FAILED


@pytest.mark.asyncio
async def test_in_app_notifier_writes_inbox(session_factory, citizen):
    result = await InAppNotifier(session_factory).notify(
        Recipient.from_user(citizen), "new_assignment", {"report_count": 2}
    )

    assert result.delivered
    assert result.channel == "in_app"


@pytest.mark.asyncio
async def test_in_app_notifier_reports_bad_template(session_factory, citizen):
    result = await InAppNotifier(session_factory).notify(Recipient.from_user(citizen), "new_assignment", {})

    assert result.state == DeliveryState.FAILED


@pytest.mark.asyncio
async def test_push_unavailable_without_gateway_or_token():
    with_token = Recipient(user_id=1, device_token="device-1")

    result = await PushNotifier(None).notify(with_token, "report_collected", {})
    assert result.state == DeliveryState.UNAVAILABLE

    result = await PushNotifier("http://push.test/send").notify(Recipient(user_id=1), "report_collected", {})
    assert result.state == DeliveryState.UNAVAILABLE


@pytest.mark.asyncio
async def test_push_sends_rendered_message():
    captured = {}

    def handler(request):
        captured["auth"] = request.headers.get("authorization")
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"message_id": "msg-42"})

    notifier = PushNotifier(
        "http://push.test/send",
        api_key="secret",
        breaker=CircuitBreaker(),
        transport=httpx.MockTransport(handler)
    )

    result = await notifier.notify(
        Recipient(user_id=7, device_token="device-7"), "report_assigned", {"collector_name": "Ravi"}
    )

    assert result.delivered
    assert result.detail == "msg-42"
    assert captured["auth"] == "Bearer secret"
    assert captured["body"]["token"] == "device-7"
    assert captured["body"]["notification"]["title"] == "Report Assigned"
    assert captured["body"]["data"] == {"type": "report_assigned", "collector_name": "Ravi"}


@pytest.mark.asyncio
async def test_push_gateway_errors_open_the_circuit():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503)

    notifier = PushNotifier(
        "http://push.test/send",
        breaker=CircuitBreaker(failure_threshold=2, reset_timeout=60),
        transport=httpx.MockTransport(handler)
    )
    recipient = Recipient(user_id=7, device_token="device-7")

    for _ in range(2):
        result = await notifier.notify(recipient, "report_collected", {})
        assert result.state == DeliveryState.FAILED

    result = await notifier.notify(recipient, "report_collected", {})
    assert result.detail == "push gateway circuit open"
    assert len(calls) == 2


# --- Reverse geocoding ---

def geocoder_for(handler, breaker=None):
    return ReverseGeocoder(
        base_url="http://geo.test/reverse",
        timeout=1,
        breaker=breaker or CircuitBreaker(),
        transport=httpx.MockTransport(handler)
    )


@pytest.mark.asyncio
async def test_geocoder_joins_locality_parts():
    seen = {}

    def handler(request):
        seen.update(request.url.params)
        return httpx.Response(200, json={
            "locality": "Indiranagar",
            "principalSubdivision": "Karnataka",
            "countryName": "India"
        })

    address = await geocoder_for(handler).reverse_geocode(12.97, 77.64)

    assert address == "Indiranagar, Karnataka, India"
    assert seen == {"latitude": "12.97", "longitude": "77.64", "localityLanguage": "en"}


@pytest.mark.asyncio
async def test_geocoder_prefers_display_name():
    def handler(request):
        return httpx.Response(200, json={"display_name": "12 Park St", "locality": "Ignored"})

    assert await geocoder_for(handler).reverse_geocode(1, 2) == "12 Park St"


@pytest.mark.asyncio
async def test_geocoder_failures_yield_none():
    def server_error(request):
        return httpx.Response(500)

    def not_json(request):
        return httpx.Response(200, text="<html>")

    def empty(request):
        return httpx.Response(200, json={})

    def unreachable(request):
        raise httpx.ConnectError("no route to host")

    for handler in (server_error, not_json, empty, unreachable):
        assert await geocoder_for(handler).reverse_geocode(1, 2) is None


@pytest.mark.asyncio
async def test_geocoder_skips_calls_while_circuit_open():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500)

    geocoder = geocoder_for(handler, CircuitBreaker(failure_threshold=1, reset_timeout=60))

    assert await geocoder.reverse_geocode(1, 2) is None
    assert await geocoder.reverse_geocode(1, 2) is None
    assert len(calls) == 1


# --- Classifier ---

@pytest.mark.parametrize("filename,expected_type,expected_confidence", [
    ("plastic_bottle_bag_cup_wrapper.jpg", WasteType.PLASTIC, 0.61),
    ("old_laptop_charger_cable.png", WasteType.ELECTRONIC, 0.49),
    ("IMG_001.jpg", WasteType.OTHER, 0.3),
    ("", WasteType.OTHER, 0.3),
])
def test_keyword_classifier(filename, expected_type, expected_confidence):
    result = KeywordWasteClassifier().classify(filename)

    assert result.waste_type == expected_type
    assert result.confidence == pytest.approx(expected_confidence)


def test_classifier_lists_alternatives():
    result = KeywordWasteClassifier().classify("glass_bottle.jpg")

    # "bottle" is both a plastic and a glass keyword; glass also matches "glass"
    assert result.waste_type == WasteType.GLASS
    assert [waste_type for waste_type, _ in result.alternatives] == [WasteType.PLASTIC]
