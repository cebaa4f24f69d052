"""
Best-effort notification dispatch.

Services hand messages to a ``NotificationDispatcher`` only after their unit of
work has committed. Delivery is asynchronous and at-most-once; a dispatch
failure is logged and never propagates to the caller.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
import logging
from typing import Optional, Protocol

from ..core.config import settings
from ..monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)


class NotificationCategory(str, Enum):
    BOOKING = "booking"
    PAYMENT = "payment"
    REVIEW = "review"
    SYSTEM = "system"


@dataclass(frozen=True)
class NotificationMessage:
    user_id: str
    title: str
    body: str
    category: NotificationCategory
    related_entity_id: Optional[str] = None
    action_url: Optional[str] = None

    def to_payload(self) -> dict[str, Optional[str]]:
        payload = asdict(self)
        payload["category"] = self.category.value
        return payload


class NotificationDispatcher(Protocol):
    def notify(
        self,
        user_id: str,
        title: str,
        body: str,
        category: NotificationCategory,
        related_entity_id: Optional[str] = None,
        action_url: Optional[str] = None,
    ) -> None:
        ...


class CeleryNotificationDispatcher:
    """Enqueue the ``notifications.deliver`` task for each message."""

    def __init__(self, enabled: Optional[bool] = None):
        self.enabled = settings.notifications_enabled if enabled is None else enabled

    def notify(
        self,
        user_id: str,
        title: str,
        body: str,
        category: NotificationCategory,
        related_entity_id: Optional[str] = None,
        action_url: Optional[str] = None,
    ) -> None:
        message = NotificationMessage(
            user_id=user_id,
            title=title,
            body=body,
            category=NotificationCategory(category),
            related_entity_id=related_entity_id,
            action_url=action_url,
        )
        if not self.enabled:
            logger.info("Notifications disabled; dropping '%s' for user %s", title, user_id)
            prometheus_metrics.inc_notification(message.category.value, "disabled")
            return

        try:
            from ..tasks.notification_tasks import deliver_notification

            deliver_notification.delay(**message.to_payload())
            prometheus_metrics.inc_notification(message.category.value, "queued")
        except Exception as exc:
            logger.error(
                "Failed to enqueue notification '%s' for user %s: %s",
                title,
                user_id,
                exc,
                exc_info=True,
            )
            prometheus_metrics.inc_notification(message.category.value, "failed")


class NullNotificationDispatcher:
    """Dispatcher that discards every message."""

    def notify(
        self,
        user_id: str,
        title: str,
        body: str,
        category: NotificationCategory,
        related_entity_id: Optional[str] = None,
        action_url: Optional[str] = None,
    ) -> None:
        logger.debug("Discarding notification '%s' for user %s", title, user_id)


def dispatch_safely(dispatcher: NotificationDispatcher, message: NotificationMessage) -> None:
    """Deliver ``message`` through ``dispatcher``; errors are logged and suppressed."""
    try:
        dispatcher.notify(
            user_id=message.user_id,
            title=message.title,
            body=message.body,
            category=message.category,
            related_entity_id=message.related_entity_id,
            action_url=message.action_url,
        )
    except Exception as exc:
        logger.error(
            "Notification dispatch failed for user %s (%s): %s",
            message.user_id,
            message.title,
            exc,
            exc_info=True,
        )
        prometheus_metrics.inc_notification(message.category.value, "failed")
