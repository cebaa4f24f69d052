# backend/home_services/tasks/celery_app.py
"""
Celery application configuration for the home-services engine.

This module sets up the Celery app with Redis as the broker, configures task
serialization and routing, and installs the beat schedule.
"""

import logging
import os
from typing import Any

from celery import Celery
from celery.signals import setup_logging

from home_services.core.config import settings


def create_celery_app() -> Celery:
    """
    Create and configure the Celery application.

    Returns:
        Celery: Configured Celery application instance
    """
    broker_url = os.getenv("CELERY_BROKER_URL") or settings.celery_broker_url

    celery_app = Celery("home_services", broker=broker_url)

    celery_app.conf.update(
        {
            # Task settings
            "task_serializer": "json",
            "accept_content": ["json"],
            "result_serializer": "json",
            "timezone": "UTC",
            "enable_utc": True,
            "task_ignore_result": True,
            # Worker settings
            "worker_prefetch_multiplier": 4,
            "worker_max_tasks_per_child": 1000,
            "worker_hijack_root_logger": False,
            # Task execution settings
            "task_soft_time_limit": 300,
            "task_time_limit": 600,
            "task_acks_late": True,
            "task_reject_on_worker_lost": True,
            "task_default_retry_delay": 60,
        }
    )

    celery_app.conf.imports = (
        "home_services.tasks.notification_tasks",
        "home_services.tasks.settlement_tasks",
    )

    celery_app.conf.task_routes = {
        "notifications.*": {"queue": "notifications"},
        "settlement.*": {"queue": "payments"},
    }

    from home_services.tasks.beat_schedule import get_beat_schedule

    celery_app.conf.beat_schedule = get_beat_schedule(settings.environment)

    return celery_app


# Disable Celery's default logging configuration
@setup_logging.connect
def config_loggers(*args: Any, **kwargs: Any) -> None:
    """Configure logging to integrate with the application's logging setup."""
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


celery_app = create_celery_app()
