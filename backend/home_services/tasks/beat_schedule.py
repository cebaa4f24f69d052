# backend/home_services/tasks/beat_schedule.py
"""
Celery Beat schedule configuration.

Periodic tasks are scheduled using crontab expressions.
"""

from typing import Any

from celery.schedules import crontab

CELERYBEAT_SCHEDULE: dict[str, dict[str, Any]] = {
    # Weekly provider settlement - Mondays at 03:00 UTC
    "create-provider-payouts": {
        "task": "settlement.create_provider_payouts",
        "schedule": crontab(day_of_week="mon", hour=3, minute=0),
        "kwargs": {},
        "options": {
            "queue": "payments",
            "priority": 5,
        },
    },
}

SCHEDULE_CONFIG: dict[str, dict[str, dict[str, Any]]] = {
    "development": {
        # Nightly in development so the run is easy to observe
        "create-provider-payouts": {
            "task": "settlement.create_provider_payouts",
            "schedule": crontab(hour=3, minute=0),
            "kwargs": {},
            "options": {"queue": "payments"},
        },
    },
}


def get_beat_schedule(environment: str = "production") -> dict[str, dict[str, Any]]:
    """
    Get the beat schedule for the specified environment.

    Args:
        environment: The environment name (production, staging, development, test)

    Returns:
        Mapping of task name to Celery beat configuration dict
    """
    base: dict[str, dict[str, Any]] = dict(CELERYBEAT_SCHEDULE)
    overrides = SCHEDULE_CONFIG.get(environment)
    if overrides:
        base.update(overrides)
    return base
