# backend/home_services/services/settlement_service.py
"""
Settlement Service: provider payout batching.

A settlement run turns a provider's completed, paid and not yet claimed
bookings into one Payout plus one PayoutBooking claim row per booking. The
eligibility read and the claim insert share a single transaction:

- the provider row is locked first, so runs for the same provider queue up
  on databases with row locks;
- eligibility excludes bookings that already have a claim row;
- the UNIQUE constraint on payout_bookings.booking_id rejects any claim that
  slipped through, which rolls back the whole batch and surfaces as a
  retryable ConcurrencyConflictException.

Money movement is external. This service only records the processing
outcome reported by that step.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_DOWN, Decimal
import logging
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple, Union

from sqlalchemy.orm import Session

from ..core.clock import Clock, as_utc
from ..core.config import settings
from ..core.exceptions import (
    ConcurrencyConflictException,
    InvalidStateException,
    NotFoundException,
    NothingToSettleException,
    ValidationException,
)
from ..core.money import CENT, to_money
from ..models.payout import Payout, PayoutStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.payout_repository import EligibleBooking, PayoutLine, PayoutRepository
from ..repositories.provider_repository import ProviderRepository
from .base import BaseService
from .notification_dispatcher import (
    CeleryNotificationDispatcher,
    NotificationCategory,
    NotificationDispatcher,
    NotificationMessage,
    dispatch_safely,
)

logger = logging.getLogger(__name__)

PAYOUT_TRANSITIONS: Dict[PayoutStatus, FrozenSet[PayoutStatus]] = {
    PayoutStatus.PENDING: frozenset(
        {PayoutStatus.PROCESSING, PayoutStatus.COMPLETED, PayoutStatus.FAILED}
    ),
    PayoutStatus.PROCESSING: frozenset({PayoutStatus.COMPLETED, PayoutStatus.FAILED}),
    PayoutStatus.COMPLETED: frozenset(),
    PayoutStatus.FAILED: frozenset(),
}


@dataclass(frozen=True)
class PayoutTotals:
    total_revenue: Decimal
    platform_fee: Decimal
    amount: Decimal


def build_payout_lines(
    eligible: Sequence[EligibleBooking], commission_rate: Decimal
) -> Tuple[List[PayoutLine], PayoutTotals]:
    """
    Split a batch into per-booking lines and compute the batch totals.

    platform_fee is ``total_revenue * commission_rate`` rounded to cents. It is
    spread over the lines by largest remainder: every line first takes its
    exact share truncated to the cent, then the leftover cents go one each to
    the lines with the largest truncated fractions (earlier lines win ties).
    Lines therefore sum to the batch totals and no line's commission leaves
    ``[0, booking_amount]``.
    """
    total_revenue = to_money(sum((item.amount for item in eligible), Decimal("0")))
    platform_fee = to_money(total_revenue * commission_rate)

    grosses = [to_money(item.amount) for item in eligible]
    shares = [gross * commission_rate for gross in grosses]
    commissions = [share.quantize(CENT, rounding=ROUND_DOWN) for share in shares]
    leftover_cents = int((platform_fee - sum(commissions, Decimal("0"))) / CENT)
    by_remainder = sorted(
        range(len(shares)), key=lambda i: shares[i] - commissions[i], reverse=True
    )
    for index in by_remainder[:leftover_cents]:
        commissions[index] += CENT

    lines = [
        PayoutLine(
            booking_id=item.booking_id,
            booking_amount=gross,
            commission=commission,
            net_amount=gross - commission,
        )
        for item, gross, commission in zip(eligible, grosses, commissions)
    ]

    return lines, PayoutTotals(
        total_revenue=total_revenue,
        platform_fee=platform_fee,
        amount=total_revenue - platform_fee,
    )


class SettlementService(BaseService):
    """Creates payout batches and records their processing outcome."""

    def __init__(
        self,
        db: Session,
        *,
        commission_rate: Optional[Union[Decimal, float, str]] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        clock: Optional[Clock] = None,
        statement_timeout_ms: Optional[int] = None,
        max_attempts: Optional[int] = None,
    ):
        super().__init__(db, clock=clock, statement_timeout_ms=statement_timeout_ms)
        self.payout_repository = PayoutRepository(db)
        self.provider_repository = ProviderRepository(db)
        rate = commission_rate if commission_rate is not None else settings.platform_commission_rate
        # str() keeps a float rate such as 0.15 from carrying its binary expansion
        self.commission_rate = Decimal(str(rate))
        if not Decimal("0") <= self.commission_rate < Decimal("1"):
            raise ValidationException(
                "Commission rate must be within [0, 1)",
                details={"commission_rate": str(self.commission_rate)},
            )
        self.dispatcher: NotificationDispatcher = dispatcher or CeleryNotificationDispatcher()
        self.max_attempts = max_attempts or settings.payout_claim_max_attempts

    @BaseService.measure_operation("create_payout_batch")
    def create_payout_batch(
        self,
        provider_id: str,
        period_start: Optional[datetime] = None,
        period_end: Optional[datetime] = None,
    ) -> Payout:
        """
        Claim every eligible booking of ``provider_id`` in the period into one payout.

        Raises:
            NotFoundException: provider missing
            ValidationException: period_start after period_end
            NothingToSettleException: no unclaimed eligible bookings
            ConcurrencyConflictException: a concurrent run claimed one of the bookings
        """
        now = self.now()
        start, end = self._resolve_period(period_start, period_end, now)

        with self.transaction():
            provider = self.provider_repository.get_for_update(provider_id)
            if provider is None:
                raise NotFoundException(f"Service provider {provider_id} not found")

            eligible = self.payout_repository.find_unclaimed_completed_bookings(
                provider_id, start, end
            )
            if not eligible:
                raise NothingToSettleException(provider_id)

            currencies = {item.currency for item in eligible}
            if len(currencies) > 1:
                raise ValidationException(
                    "Eligible bookings span several currencies",
                    details={"provider_id": provider_id, "currencies": sorted(currencies)},
                )

            lines, totals = build_payout_lines(eligible, self.commission_rate)
            payout = self.payout_repository.create_payout_with_lines(
                lines,
                provider_id=provider_id,
                amount=totals.amount,
                total_revenue=totals.total_revenue,
                platform_fee=totals.platform_fee,
                currency=currencies.pop(),
                status=PayoutStatus.PENDING.value,
                period_start=start,
                period_end=end,
                booking_count=len(lines),
                created_at=now,
            )
            self.after_commit(prometheus_metrics.inc_payout_created)

        self.logger.info(
            "Created payout %s for provider %s: %s bookings, revenue=%s fee=%s net=%s",
            payout.id,
            provider_id,
            payout.booking_count,
            payout.total_revenue,
            payout.platform_fee,
            payout.amount,
        )
        return payout

    @BaseService.measure_operation("create_payout_batch_with_retry")
    def create_payout_batch_with_retry(
        self,
        provider_id: str,
        period_start: Optional[datetime] = None,
        period_end: Optional[datetime] = None,
    ) -> Payout:
        """Run ``create_payout_batch`` again from scratch whenever a claim race is lost."""
        attempt = 1
        while True:
            try:
                return self.create_payout_batch(provider_id, period_start, period_end)
            except ConcurrencyConflictException:
                prometheus_metrics.inc_payout_claim_conflict()
                if attempt >= self.max_attempts:
                    self.logger.error(
                        "Payout claim for provider %s lost %s races; giving up",
                        provider_id,
                        attempt,
                    )
                    raise
                self.logger.warning(
                    "Payout claim for provider %s conflicted (attempt %s/%s); retrying",
                    provider_id,
                    attempt,
                    self.max_attempts,
                )
                attempt += 1

    # Processing outcome

    @BaseService.measure_operation("mark_payout_processing")
    def mark_payout_processing(self, payout_id: str) -> Payout:
        with self.transaction():
            payout = self._get_payout_for_update(payout_id)
            self._move(payout, PayoutStatus.PROCESSING)
        return payout

    @BaseService.measure_operation("complete_payout")
    def complete_payout(self, payout_id: str, transaction_reference: str) -> Payout:
        if not transaction_reference or not transaction_reference.strip():
            raise ValidationException("A transaction reference is required to complete a payout")

        now = self.now()
        with self.transaction():
            payout = self._get_payout_for_update(payout_id)
            self._move(payout, PayoutStatus.COMPLETED)
            payout.processed_at = now
            payout.transaction_reference = transaction_reference.strip()
            self._notify_provider_after_commit(
                payout,
                "Payout Processed",
                f"Your payout of {payout.amount} {payout.currency} has been processed.",
            )
        return payout

    @BaseService.measure_operation("fail_payout")
    def fail_payout(self, payout_id: str, reason: str) -> Payout:
        now = self.now()
        with self.transaction():
            payout = self._get_payout_for_update(payout_id)
            self._move(payout, PayoutStatus.FAILED)
            payout.processed_at = now
            payout.failure_reason = reason
            self._notify_provider_after_commit(
                payout,
                "Payout Failed",
                f"Your payout of {payout.amount} {payout.currency} could not be processed.",
            )
        return payout

    # Queries

    def get_payout(self, payout_id: str) -> Payout:
        payout = self.payout_repository.get_with_items(payout_id)
        if payout is None:
            raise NotFoundException(f"Payout {payout_id} not found")
        return payout

    def get_provider_payouts(self, provider_id: str, limit: int = 50) -> List[Payout]:
        if self.provider_repository.get_by_id(provider_id) is None:
            raise NotFoundException(f"Service provider {provider_id} not found")
        return self.payout_repository.list_for_provider(provider_id, limit=limit)

    # Helpers

    def _resolve_period(
        self,
        period_start: Optional[datetime],
        period_end: Optional[datetime],
        now: datetime,
    ) -> Tuple[datetime, datetime]:
        end = as_utc(period_end) if period_end is not None else as_utc(now)
        start = (
            as_utc(period_start)
            if period_start is not None
            else end - timedelta(days=settings.payout_default_period_days)
        )
        if start > end:
            raise ValidationException(
                "Payout period start must not be after its end",
                details={"period_start": start.isoformat(), "period_end": end.isoformat()},
            )
        return start, end

    def _get_payout_for_update(self, payout_id: str) -> Payout:
        payout = self.payout_repository.get_for_update(payout_id)
        if payout is None:
            raise NotFoundException(f"Payout {payout_id} not found")
        return payout

    def _move(self, payout: Payout, target: PayoutStatus) -> None:
        current = PayoutStatus(payout.status)
        if target not in PAYOUT_TRANSITIONS[current]:
            raise InvalidStateException(
                f"Cannot move payout from {current.value} to {target.value}",
                current_status=current.value,
                action=target.value,
            )
        payout.status = target.value
        self.payout_repository.flush()
        self.logger.info("Payout %s: %s -> %s", payout.id, current.value, target.value)

    def _notify_provider_after_commit(self, payout: Payout, title: str, body: str) -> None:
        provider = self.provider_repository.get_by_id(payout.provider_id)
        if provider is None:
            return
        message = NotificationMessage(
            user_id=provider.user_id,
            title=title,
            body=body,
            category=NotificationCategory.PAYMENT,
            related_entity_id=payout.id,
            action_url=f"/provider/payouts/{payout.id}",
        )
        self.after_commit(lambda: dispatch_safely(self.dispatcher, message))
