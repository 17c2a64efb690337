"""
Notification delivery.

Lifecycle transitions announce themselves through an injected Notifier.
Delivery is best-effort: every notifier reports a NotificationResult instead
of raising, "not configured" is a typed UNAVAILABLE result, and dispatch()
bounds each call with a timeout so a slow channel never holds a request.
"""

import abc
import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import httpx
from fastapi import Depends
from sqlalchemy.ext.asyncio import async_sessionmaker

from ecotrack.app.core.config import settings
from ecotrack.app.core.reliability import CircuitBreaker, CircuitOpenError, push_circuit_breaker
from ecotrack.app.db.session import get_session_factory
from ecotrack.app.models.notification import NotificationType
from ecotrack.app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


class DeliveryState(str, enum.Enum):
    DELIVERED = "delivered"
    UNAVAILABLE = "unavailable"  # Channel not configured or recipient unreachable
    FAILED = "failed"


@dataclass(frozen=True)
class NotificationResult:
    state: DeliveryState
    channel: str
    detail: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return self.state == DeliveryState.DELIVERED

    @classmethod
    def ok(cls, channel: str, detail: Optional[str] = None) -> "NotificationResult":
        return cls(DeliveryState.DELIVERED, channel, detail)

    @classmethod
    def unavailable(cls, channel: str, reason: str) -> "NotificationResult":
        return cls(DeliveryState.UNAVAILABLE, channel, reason)

    @classmethod
    def failed(cls, channel: str, error: str) -> "NotificationResult":
        return cls(DeliveryState.FAILED, channel, error)


@dataclass(frozen=True)
class Recipient:
    user_id: int
    device_token: Optional[str] = None

    @classmethod
    def from_user(cls, user) -> "Recipient":
        return cls(user_id=user.id, device_token=user.device_token)


@dataclass(frozen=True)
class NotificationTemplate:
    title: str
    body: str
    type: NotificationType


TEMPLATES: Dict[str, NotificationTemplate] = {
    "report_assigned": NotificationTemplate(
        "Report Assigned",
        "Your waste report has been assigned to {collector_name} for collection.",
        NotificationType.REPORT_UPDATE,
    ),
    "report_collected": NotificationTemplate(
        "Waste Collected",
        "Your reported waste has been successfully collected. Thank you!",
        NotificationType.REPORT_UPDATE,
    ),
    "new_assignment": NotificationTemplate(
        "New Collection Assignment",
        "You have {report_count} new waste collection(s) assigned to you.",
        NotificationType.ASSIGNMENT,
    ),
    "urgent_report": NotificationTemplate(
        "Urgent Waste Report",
        "Critical waste situation reported at {location}. Immediate attention required.",
        NotificationType.WARNING,
    ),
}


def render_template(template: str, params: Dict[str, Any]) -> tuple:
    """
    Returns:
        (title, body, NotificationType)

    Raises:
        ValueError: unknown template or missing parameter
    """
    entry = TEMPLATES.get(template)
    if entry is None:
        raise ValueError(f"Unknown notification template: {template}")
    try:
        body = entry.body.format(**params)
    except KeyError as e:
        raise ValueError(f"Template {template} requires parameter {e}")
    return entry.title, body, entry.type


class Notifier(abc.ABC):
    """Delivery channel for lifecycle notifications."""

    channel = "base"

    @abc.abstractmethod
    async def notify(
        self,
        recipient: Recipient,
        template: str,
        params: Dict[str, Any]
    ) -> NotificationResult:
        ...


class InAppNotifier(Notifier):
    """
    Writes to the in-app inbox using its own session, so a failed insert
    cannot touch the transaction that triggered it.
    """

    channel = "in_app"

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def notify(self, recipient: Recipient, template: str, params: Dict[str, Any]) -> NotificationResult:
        try:
            title, body, notif_type = render_template(template, params)
            async with self.session_factory() as session:
                notif = await NotificationService.create_notification(
                    session,
                    user_id=recipient.user_id,
                    title=title,
                    message=body,
                    type=notif_type,
                    template=template,
                    metadata={k: str(v) for k, v in params.items()} or None
                )
                await session.commit()
                return NotificationResult.ok(self.channel, f"notification {notif.id}")
        except Exception as e:
            logger.warning("In-app notification %s for user %s failed: %s", template, recipient.user_id, e)
            return NotificationResult.failed(self.channel, str(e))


class PushNotifier(Notifier):
    """
    Sends device push messages through an HTTP push gateway.

    Without a configured gateway or a recipient device token the result is
    UNAVAILABLE; no request is attempted.
    """

    channel = "push"

    def __init__(
        self,
        gateway_url: Optional[str],
        api_key: Optional[str] = None,
        timeout: float = 5.0,
        breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.gateway_url = gateway_url
        self.api_key = api_key
        self.timeout = timeout
        self.breaker = breaker or push_circuit_breaker
        self.transport = transport

    async def notify(self, recipient: Recipient, template: str, params: Dict[str, Any]) -> NotificationResult:
        if not self.gateway_url:
            return NotificationResult.unavailable(self.channel, "push gateway not configured")
        if not recipient.device_token:
            return NotificationResult.unavailable(self.channel, "recipient has no device token")

        try:
            title, body, _ = render_template(template, params)
        except ValueError as e:
            return NotificationResult.failed(self.channel, str(e))

        message = {
            "token": recipient.device_token,
            "notification": {"title": title, "body": body},
            "data": {"type": template, **{k: str(v) for k, v in params.items()}},
        }

        try:
            message_id = await self.breaker.call(self._send, message)
        except CircuitOpenError:
            return NotificationResult.failed(self.channel, "push gateway circuit open")
        except httpx.HTTPError as e:
            logger.warning("Push to user %s failed: %s", recipient.user_id, e)
            return NotificationResult.failed(self.channel, str(e))

        return NotificationResult.ok(self.channel, message_id)

    async def _send(self, message: Dict[str, Any]) -> Optional[str]:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(self.gateway_url, json=message, headers=headers)
            response.raise_for_status()
            try:
                return response.json().get("message_id")
            except ValueError:
                return None


class CompositeNotifier(Notifier):
    """Fans a notification out to several channels."""

    channel = "composite"

    def __init__(self, notifiers: Sequence[Notifier]):
        self.notifiers = list(notifiers)

    async def notify(self, recipient: Recipient, template: str, params: Dict[str, Any]) -> NotificationResult:
        results: List[NotificationResult] = []
        for notifier in self.notifiers:
            results.append(await notifier.notify(recipient, template, params))

        detail = "; ".join(f"{r.channel}={r.state.value}" for r in results)
        if any(r.delivered for r in results):
            return NotificationResult.ok(self.channel, detail)
        if results and all(r.state == DeliveryState.UNAVAILABLE for r in results):
            return NotificationResult.unavailable(self.channel, detail)
        return NotificationResult.failed(self.channel, detail or "no channels")


async def dispatch(
    notifier: Notifier,
    recipient: Optional[Recipient],
    template: str,
    params: Optional[Dict[str, Any]] = None,
    timeout: Optional[float] = None
) -> Optional[NotificationResult]:
    """
    Fire-and-forget wrapper used after a transition has committed.

    Never raises; a timeout or unexpected error becomes a FAILED result and
    a log line.
    """
    if recipient is None:
        return None

    timeout = timeout if timeout is not None else settings.notification_timeout_seconds
    try:
        result = await asyncio.wait_for(
            notifier.notify(recipient, template, params or {}),
            timeout=timeout
        )
    except asyncio.TimeoutError:
        logger.warning("Notification %s to user %s timed out", template, recipient.user_id)
        return NotificationResult.failed(notifier.channel, "timeout")
    except Exception:
        logger.warning("Notification %s to user %s failed", template, recipient.user_id, exc_info=True)
        return NotificationResult.failed(notifier.channel, "error")

    if not result.delivered:
        logger.info(
            "Notification %s to user %s not delivered: %s",
            template, recipient.user_id, result.detail
        )
    return result


def get_notifier(
    session_factory: async_sessionmaker = Depends(get_session_factory)
) -> Notifier:
    """FastAPI dependency building the default notifier."""
    return CompositeNotifier([
        InAppNotifier(session_factory),
        PushNotifier(
            settings.push_gateway_url,
            settings.push_gateway_api_key,
            timeout=settings.notification_timeout_seconds
        ),
    ])
