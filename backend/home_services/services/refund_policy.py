"""Cancellation refund policy for bookings."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Tuple

from ..core.clock import hours_between
from ..core.money import percent_of, to_money
from ..models.booking import Booking

# (minimum hours before service, refund percentage, reason); first match wins
REFUND_TIERS: Tuple[Tuple[float, int, str], ...] = (
    (24, 100, "Full refund: Cancelled more than 24 hours before service"),
    (12, 75, "75% refund: Cancelled 12-24 hours before service"),
    (6, 50, "50% refund: Cancelled 6-12 hours before service"),
    (2, 25, "25% refund: Cancelled 2-6 hours before service"),
)
NO_REFUND_REASON = "No refund: Cancelled less than 2 hours before service"
PROVIDER_CANCELLATION_REASON = "Full refund: Cancelled by provider"


@dataclass(frozen=True)
class RefundDecision:
    percentage: int
    amount: Decimal
    cancellation_fee: Decimal
    reason: str

    def to_payload(self) -> dict[str, object]:
        return {
            "percentage": self.percentage,
            "amount": str(self.amount),
            "cancellation_fee": str(self.cancellation_fee),
            "reason": self.reason,
        }


def refund_percentage(hours_until_service: float) -> Tuple[int, str]:
    """Tier lookup; a value exactly on a boundary gets the higher tier."""
    for min_hours, percentage, reason in REFUND_TIERS:
        if hours_until_service >= min_hours:
            return percentage, reason
    return 0, NO_REFUND_REASON


def calculate_refund(
    booking: Booking, is_customer_cancellation: bool, now: datetime
) -> RefundDecision:
    """
    Compute the refund owed when ``booking`` is cancelled at ``now``.

    Provider-initiated cancellations always refund in full. Customer
    cancellations are tiered by hours remaining until ``scheduled_at``.
    No side effects.
    """
    total = to_money(booking.total_amount)
    if not is_customer_cancellation:
        percentage, reason = 100, PROVIDER_CANCELLATION_REASON
    else:
        percentage, reason = refund_percentage(hours_between(now, booking.scheduled_at))

    amount = percent_of(total, percentage)
    return RefundDecision(
        percentage=percentage,
        amount=amount,
        cancellation_fee=total - amount,
        reason=reason,
    )
