# backend/home_services/services/booking_service.py
"""
Booking Service for the home-services platform.

Handles every booking status change:
- Accept / reject by a provider
- Start and complete on site
- Cancellation with refund calculation
- Rescheduling

Each operation locks the booking row, validates the move against the
transition table, writes the new state plus a history record in one unit of
work, and only then hands notifications to the dispatcher.
"""

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from ..core.clock import Clock, as_utc
from ..core.config import settings
from ..core.exceptions import (
    ConcurrencyConflictException,
    NotEligibleException,
    NotFoundException,
)
from ..core.money import to_money
from ..models.booking import Booking, BookingHistory
from ..models.payment import Payment, PaymentStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.booking_repository import BookingRepository
from ..repositories.payment_repository import PaymentRepository
from ..repositories.provider_repository import ProviderRepository
from .base import BaseService
from .booking_state_machine import (
    BookingAction,
    Transition,
    TransitionContext,
    resolve_transition,
)
from .notification_dispatcher import (
    CeleryNotificationDispatcher,
    NotificationCategory,
    NotificationDispatcher,
    NotificationMessage,
    dispatch_safely,
)
from .refund_policy import RefundDecision, calculate_refund

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CancellationResult:
    booking: Booking
    refund: RefundDecision
    payment: Optional[Payment]

    def to_payload(self) -> dict[str, object]:
        return {
            "booking": self.booking.to_dict(),
            "refund": self.refund.to_payload(),
            "payment_status": self.payment.status if self.payment else None,
        }


class BookingService(BaseService):
    """Service layer for booking status transitions."""

    def __init__(
        self,
        db: Session,
        *,
        dispatcher: Optional[NotificationDispatcher] = None,
        clock: Optional[Clock] = None,
        statement_timeout_ms: Optional[int] = None,
        reschedule_min_notice_hours: Optional[float] = None,
    ):
        super().__init__(db, clock=clock, statement_timeout_ms=statement_timeout_ms)
        self.booking_repository = BookingRepository(db)
        self.payment_repository = PaymentRepository(db)
        self.provider_repository = ProviderRepository(db)
        self.dispatcher: NotificationDispatcher = dispatcher or CeleryNotificationDispatcher()
        self.reschedule_min_notice_hours = (
            reschedule_min_notice_hours
            if reschedule_min_notice_hours is not None
            else settings.reschedule_min_notice_hours
        )

    # Queries

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)
        if booking is None:
            raise NotFoundException(f"Booking {booking_id} not found")
        return booking

    def get_booking_history(self, booking_id: str) -> List[BookingHistory]:
        self.get_booking(booking_id)
        return self.booking_repository.get_history(booking_id)

    # Provider responses

    @BaseService.measure_operation("accept_booking")
    def accept_booking(self, booking_id: str, provider_id: str) -> Booking:
        """
        Assign ``provider_id`` to a pending booking and confirm it.

        Raises:
            NotFoundException: booking or provider missing
            InvalidStateException: booking is not pending
            NotEligibleException: provider does not offer the booked service
        """
        now = self.now()
        with self.transaction():
            booking = self._get_booking_for_update(booking_id)
            transition = resolve_transition(
                BookingAction.ACCEPT, TransitionContext(booking, provider_id, now)
            )

            self._require_eligible_provider(booking, provider_id)

            booking.provider_id = provider_id
            self._record_transition(
                booking, transition, provider_id, "Booking accepted by provider", now
            )
            self._notify_after_commit(
                booking.customer_id,
                "Booking Confirmed",
                f"Your booking for {self._format_time(booking.scheduled_at)} has been accepted.",
                booking.id,
            )

        self.log_operation("accept_booking", booking_id=booking.id, provider_id=provider_id)
        return booking

    @BaseService.measure_operation("reject_booking")
    def reject_booking(self, booking_id: str, provider_id: str, reason: Optional[str] = None) -> Booking:
        """Decline a pending booking; it ends up cancelled with the provider's reason."""
        now = self.now()
        with self.transaction():
            booking = self._get_booking_for_update(booking_id)
            transition = resolve_transition(
                BookingAction.REJECT, TransitionContext(booking, provider_id, now)
            )
            self._require_eligible_provider(booking, provider_id)

            booking.cancelled_at = now
            booking.cancellation_reason = (
                f"Rejected by provider: {reason}" if reason else "Rejected by provider"
            )
            self._record_transition(
                booking,
                transition,
                provider_id,
                f"Booking rejected by provider. Reason: {reason or 'Not specified'}",
                now,
            )
            self._notify_after_commit(
                booking.customer_id,
                "Booking Declined",
                "The provider could not take your booking."
                + (f" Reason: {reason}" if reason else ""),
                booking.id,
            )

        self.log_operation("reject_booking", booking_id=booking.id, provider_id=provider_id)
        return booking

    # On-site lifecycle

    @BaseService.measure_operation("start_service")
    def start_service(self, booking_id: str, provider_id: str) -> Booking:
        now = self.now()
        with self.transaction():
            booking = self._get_booking_for_update(booking_id)
            transition = resolve_transition(
                BookingAction.START, TransitionContext(booking, provider_id, now)
            )

            booking.started_at = now
            self._record_transition(booking, transition, provider_id, "Service started", now)
            self._notify_after_commit(
                booking.customer_id,
                "Service Started",
                "Your provider has started the service.",
                booking.id,
            )

        self.log_operation("start_service", booking_id=booking.id, provider_id=provider_id)
        return booking

    @BaseService.measure_operation("complete_service")
    def complete_service(self, booking_id: str, provider_id: str) -> Booking:
        now = self.now()
        with self.transaction():
            booking = self._get_booking_for_update(booking_id)
            transition = resolve_transition(
                BookingAction.COMPLETE, TransitionContext(booking, provider_id, now)
            )

            booking.completed_at = now
            self._record_transition(booking, transition, provider_id, "Service completed", now)
            self._notify_after_commit(
                booking.customer_id,
                "Service Completed",
                "Your service is complete. Tell us how it went by leaving a review.",
                booking.id,
            )

        self.log_operation("complete_service", booking_id=booking.id, provider_id=provider_id)
        return booking

    # Either party

    @BaseService.measure_operation("cancel_booking")
    def cancel_booking(
        self,
        booking_id: str,
        user_id: str,
        reason: Optional[str],
        is_customer: bool,
    ) -> CancellationResult:
        """
        Cancel a pending or confirmed booking and record the policy refund.

        The refund is computed before anything is written; the booking, its
        history entry and the payment refund commit together.
        """
        now = self.now()
        with self.transaction():
            booking = self._get_booking_for_update(booking_id)
            transition = resolve_transition(
                BookingAction.CANCEL,
                TransitionContext(booking, user_id, now, is_customer=is_customer),
            )

            refund = calculate_refund(booking, is_customer, now)

            booking.cancelled_at = now
            booking.cancellation_reason = reason

            cancelled_by = "customer" if is_customer else "provider"
            self._record_transition(
                booking,
                transition,
                user_id,
                f"Cancelled by {cancelled_by}. Reason: {reason or 'Not specified'}. "
                f"Refund: {refund.amount} ({refund.percentage}%)",
                now,
            )
            payment = self._apply_refund(booking, refund, now)

            if is_customer:
                if booking.provider_id is not None:
                    self._notify_provider_after_commit(
                        booking.provider_id,
                        "Booking Cancelled",
                        f"The customer cancelled the booking for {self._format_time(booking.scheduled_at)}.",
                        booking.id,
                    )
            else:
                self._notify_after_commit(
                    booking.customer_id,
                    "Booking Cancelled",
                    f"Your provider cancelled the booking. You will receive a full refund of "
                    f"{refund.amount} {booking.currency}.",
                    booking.id,
                )

        self.log_operation(
            "cancel_booking",
            booking_id=booking.id,
            cancelled_by=user_id,
            refund_percentage=refund.percentage,
        )
        return CancellationResult(booking=booking, refund=refund, payment=payment)

    @BaseService.measure_operation("reschedule_booking")
    def reschedule_booking(
        self,
        booking_id: str,
        user_id: str,
        new_scheduled_at: datetime,
        is_customer: bool,
        reason: Optional[str] = None,
    ) -> Booking:
        """Move a pending or confirmed booking; its status does not change."""
        now = self.now()
        with self.transaction():
            booking = self._get_booking_for_update(booking_id)
            transition = resolve_transition(
                BookingAction.RESCHEDULE,
                TransitionContext(
                    booking,
                    user_id,
                    now,
                    is_customer=is_customer,
                    new_scheduled_at=new_scheduled_at,
                    min_notice_hours=self.reschedule_min_notice_hours,
                ),
            )

            previous = as_utc(booking.scheduled_at)
            booking.scheduled_at = as_utc(new_scheduled_at)
            rescheduled_by = "customer" if is_customer else "provider"
            self._record_transition(
                booking,
                transition,
                user_id,
                f"Rescheduled by {rescheduled_by} from {self._format_time(previous)} "
                f"to {self._format_time(booking.scheduled_at)}. Reason: {reason or 'Not specified'}",
                now,
            )

            body = (
                f"Your booking has been moved from {self._format_time(previous)} "
                f"to {self._format_time(booking.scheduled_at)}."
            )
            if is_customer:
                if booking.provider_id is not None:
                    self._notify_provider_after_commit(
                        booking.provider_id, "Booking Rescheduled", body, booking.id
                    )
            else:
                self._notify_after_commit(booking.customer_id, "Booking Rescheduled", body, booking.id)

        self.log_operation("reschedule_booking", booking_id=booking.id, rescheduled_by=user_id)
        return booking

    # Helpers

    def _get_booking_for_update(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_for_update(booking_id)
        if booking is None:
            raise NotFoundException(f"Booking {booking_id} not found")
        return booking

    def _require_eligible_provider(self, booking: Booking, provider_id: str) -> None:
        provider = self.provider_repository.get_by_id(provider_id)
        if provider is None:
            raise NotFoundException(f"Service provider {provider_id} not found")
        if not self.booking_repository.provider_offers_service(provider_id, booking.service_id):
            raise NotEligibleException(
                "Provider does not offer the booked service",
                details={"provider_id": provider_id, "service_id": booking.service_id},
            )

    def _record_transition(
        self,
        booking: Booking,
        transition: Transition,
        actor_id: Optional[str],
        notes: str,
        now: datetime,
    ) -> None:
        if not self.booking_repository.compare_and_set_status(
            booking.id, transition.source.value, transition.target.value
        ):
            raise ConcurrencyConflictException(
                "Booking was changed by another request; reload and retry",
                details={"booking_id": booking.id, "expected_status": transition.source.value},
            )
        set_committed_value(booking, "status", transition.target.value)
        self.booking_repository.append_history(
            booking, changed_by_id=actor_id, notes=notes, changed_at=now
        )
        self.logger.info(
            "Booking %s: %s -> %s by %s",
            booking.id,
            transition.source.value,
            transition.target.value,
            actor_id,
        )
        action, target = transition.action.value, transition.target.value
        self.after_commit(lambda: prometheus_metrics.inc_booking_transition(action, target))

    def _apply_refund(
        self, booking: Booking, refund: RefundDecision, now: datetime
    ) -> Optional[Payment]:
        payment = self.payment_repository.get_by_booking_id(booking.id)
        if payment is None or payment.status != PaymentStatus.COMPLETED.value:
            return payment

        amount = to_money(payment.amount)
        refund_amount = min(refund.amount, amount)
        if refund_amount <= 0:
            return payment

        payment.refund_amount = refund_amount
        payment.refunded_at = now
        payment.refund_reason = refund.reason
        payment.status = (
            PaymentStatus.REFUNDED.value
            if refund_amount == amount
            else PaymentStatus.PARTIALLY_REFUNDED.value
        )
        self.payment_repository.flush()
        self.logger.info(
            "Recorded refund of %s %s on payment %s for booking %s",
            refund_amount,
            payment.currency,
            payment.id,
            booking.id,
        )
        return payment

    def _notify_after_commit(
        self, user_id: str, title: str, body: str, booking_id: str
    ) -> None:
        message = NotificationMessage(
            user_id=user_id,
            title=title,
            body=body,
            category=NotificationCategory.BOOKING,
            related_entity_id=booking_id,
            action_url=f"/bookings/{booking_id}",
        )
        self.after_commit(lambda: dispatch_safely(self.dispatcher, message))

    def _notify_provider_after_commit(
        self, provider_id: str, title: str, body: str, booking_id: str
    ) -> None:
        provider = self.provider_repository.get_by_id(provider_id)
        if provider is None:
            self.logger.warning("Provider %s missing; skipping notification", provider_id)
            return
        self._notify_after_commit(provider.user_id, title, body, booking_id)

    @staticmethod
    def _format_time(value: datetime) -> str:
        return as_utc(value).strftime("%Y-%m-%d %H:%M UTC")
