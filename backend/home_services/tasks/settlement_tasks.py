# backend/home_services/tasks/settlement_tasks.py
"""
Periodic settlement task.

Runs one payout batch per active provider. Each provider settles in its own
transaction, so one provider's failure does not affect the others.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from celery.app.task import Task
from celery.utils.log import get_task_logger
from sqlalchemy.orm import Session

from home_services.core.clock import Clock
from home_services.core.exceptions import DomainException, NothingToSettleException
from home_services.database import SessionLocal
from home_services.repositories.provider_repository import ProviderRepository
from home_services.services.notification_dispatcher import NotificationDispatcher
from home_services.services.settlement_service import SettlementService
from home_services.tasks.celery_app import celery_app

logger = get_task_logger(__name__)


def run_provider_settlement(
    session: Session,
    *,
    period_start: Optional[datetime] = None,
    period_end: Optional[datetime] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
    clock: Optional[Clock] = None,
) -> Dict[str, Any]:
    """Settle every active provider and return a summary of the run."""
    service = SettlementService(session, dispatcher=dispatcher, clock=clock)
    provider_ids = ProviderRepository(session).list_active_ids()

    summary: Dict[str, Any] = {
        "providers": len(provider_ids),
        "created": 0,
        "skipped": 0,
        "failed": 0,
        "payout_ids": [],
    }
    for provider_id in provider_ids:
        try:
            payout = service.create_payout_batch_with_retry(provider_id, period_start, period_end)
        except NothingToSettleException:
            summary["skipped"] += 1
            continue
        except DomainException as exc:
            summary["failed"] += 1
            logger.error(
                "Settlement for provider %s failed (%s): %s", provider_id, exc.kind.value, exc.message
            )
            continue
        except Exception as exc:
            summary["failed"] += 1
            logger.error("Settlement for provider %s crashed: %s", provider_id, exc, exc_info=True)
            continue
        summary["created"] += 1
        summary["payout_ids"].append(payout.id)

    logger.info(
        "Settlement run finished: %s providers, %s payouts, %s skipped, %s failed",
        summary["providers"],
        summary["created"],
        summary["skipped"],
        summary["failed"],
    )
    return summary


@celery_app.task(name="settlement.create_provider_payouts", bind=True, max_retries=0, queue="payments")
def create_provider_payouts(
    self: "Task[Any, Any]",
    period_start: Optional[str] = None,
    period_end: Optional[str] = None,
) -> Dict[str, Any]:
    """Beat entry point; optional ISO-8601 period bounds."""
    start = datetime.fromisoformat(period_start) if period_start else None
    end = datetime.fromisoformat(period_end) if period_end else None
    session = SessionLocal()
    try:
        return run_provider_settlement(session, period_start=start, period_end=end)
    finally:
        session.close()
