# backend/home_services/tasks/__init__.py
"""
Celery tasks package.

This package contains the asynchronous and periodic work:
- In-app notification delivery
- Scheduled provider settlement
"""

from home_services.tasks.celery_app import celery_app
from home_services.tasks.notification_tasks import deliver_notification
from home_services.tasks.settlement_tasks import create_provider_payouts, run_provider_settlement

__all__ = [
    "celery_app",
    "create_provider_payouts",
    "deliver_notification",
    "run_provider_settlement",
]
