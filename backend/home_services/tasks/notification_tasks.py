# backend/home_services/tasks/notification_tasks.py
"""
Celery task that delivers in-app notifications.

The task writes one Notification row per message. It runs after the
originating transaction has committed and never touches booking, payment or
payout state.
"""

from __future__ import annotations

from typing import Any, Optional

from celery.app.task import Task
from celery.utils.log import get_task_logger
from sqlalchemy.orm import Session

from home_services.database import get_db_session
from home_services.models.notification import Notification
from home_services.tasks.celery_app import celery_app

logger = get_task_logger(__name__)


def store_notification(
    session: Session,
    *,
    user_id: str,
    title: str,
    body: str,
    category: str,
    related_entity_id: Optional[str] = None,
    action_url: Optional[str] = None,
) -> Notification:
    notification = Notification(
        user_id=user_id,
        title=title,
        message=body,
        category=category,
        related_id=related_entity_id,
        action_url=action_url,
    )
    session.add(notification)
    session.flush()
    return notification


@celery_app.task(
    name="notifications.deliver",
    bind=True,
    max_retries=3,
    default_retry_delay=30,
    queue="notifications",
)
def deliver_notification(
    self: "Task[Any, Any]",
    user_id: str,
    title: str,
    body: str,
    category: str,
    related_entity_id: Optional[str] = None,
    action_url: Optional[str] = None,
) -> Optional[str]:
    """Persist an in-app notification; retried on storage errors."""
    try:
        with get_db_session() as session:
            notification = store_notification(
                session,
                user_id=user_id,
                title=title,
                body=body,
                category=category,
                related_entity_id=related_entity_id,
                action_url=action_url,
            )
            notification_id = notification.id
    except Exception as exc:
        logger.warning("Notification for user %s failed: %s", user_id, exc)
        raise self.retry(exc=exc)

    logger.info("Delivered notification %s to user %s (%s)", notification_id, user_id, title)
    return notification_id
