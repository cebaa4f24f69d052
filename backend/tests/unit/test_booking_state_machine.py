from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from home_services.core.exceptions import (
    InvalidStateException,
    UnauthorizedActionException,
    ValidationException,
)
from home_services.models.booking import Booking, BookingStatus
from home_services.services.booking_state_machine import (
    TRANSITIONS,
    BookingAction,
    TransitionContext,
    allowed_actions,
    resolve_transition,
)

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _booking(status: BookingStatus, provider_id="prov-1", scheduled_at=None, started_at=None):
    return Booking(
        id="bk-1",
        customer_id="cust-1",
        provider_id=provider_id,
        service_id="svc-1",
        status=status.value,
        scheduled_at=scheduled_at or NOW + timedelta(days=1),
        started_at=started_at,
        total_amount=Decimal("100.00"),
        currency="USD",
    )


class TestTransitionTable:
    def test_allowed_actions_per_status(self):
        assert allowed_actions(BookingStatus.PENDING) == {
            BookingAction.ACCEPT,
            BookingAction.REJECT,
            BookingAction.CANCEL,
            BookingAction.RESCHEDULE,
        }
        assert allowed_actions(BookingStatus.CONFIRMED) == {
            BookingAction.START,
            BookingAction.CANCEL,
            BookingAction.RESCHEDULE,
        }
        assert allowed_actions(BookingStatus.IN_PROGRESS) == {BookingAction.COMPLETE}

    @pytest.mark.parametrize(
        "status", [BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.REJECTED]
    )
    def test_terminal_statuses_have_no_exits(self, status):
        assert status.is_terminal
        assert allowed_actions(status) == frozenset()
        assert all(source != status for source, _ in TRANSITIONS)

    def test_reschedule_keeps_status(self):
        for status in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
            transition = TRANSITIONS[(status, BookingAction.RESCHEDULE)]
            assert transition.target == status


class TestResolveTransition:
    def test_accept_pending_unassigned(self):
        booking = _booking(BookingStatus.PENDING, provider_id=None)
        transition = resolve_transition(
            BookingAction.ACCEPT, TransitionContext(booking, "prov-9", NOW)
        )
        assert transition.target == BookingStatus.CONFIRMED
        # resolving never mutates the booking
        assert booking.status == BookingStatus.PENDING.value
        assert booking.provider_id is None

    def test_accept_addressed_to_other_provider_is_unauthorized(self):
        booking = _booking(BookingStatus.PENDING, provider_id="prov-1")
        with pytest.raises(UnauthorizedActionException):
            resolve_transition(BookingAction.ACCEPT, TransitionContext(booking, "prov-2", NOW))

    def test_reject_pending_cancels(self):
        booking = _booking(BookingStatus.PENDING)
        transition = resolve_transition(
            BookingAction.REJECT, TransitionContext(booking, "prov-1", NOW)
        )
        assert transition.target == BookingStatus.CANCELLED

    @pytest.mark.parametrize(
        "status,action",
        [
            (BookingStatus.CONFIRMED, BookingAction.ACCEPT),
            (BookingStatus.IN_PROGRESS, BookingAction.CANCEL),
            (BookingStatus.PENDING, BookingAction.START),
            (BookingStatus.CONFIRMED, BookingAction.COMPLETE),
        ],
    )
    def test_illegal_pairs_raise_invalid_state(self, status, action):
        booking = _booking(status, scheduled_at=NOW - timedelta(hours=1), started_at=NOW)
        with pytest.raises(InvalidStateException) as exc_info:
            resolve_transition(
                action, TransitionContext(booking, "prov-1", NOW, is_customer=False)
            )
        assert exc_info.value.details["current_status"] == status.value
        assert exc_info.value.details["action"] == action.value

    def test_terminal_status_reported_before_actor_check(self):
        booking = _booking(BookingStatus.COMPLETED)
        with pytest.raises(InvalidStateException):
            resolve_transition(BookingAction.CANCEL, TransitionContext(booking, "stranger", NOW))

    def test_start_requires_assigned_provider(self):
        booking = _booking(BookingStatus.CONFIRMED, scheduled_at=NOW)
        with pytest.raises(UnauthorizedActionException):
            resolve_transition(BookingAction.START, TransitionContext(booking, "prov-2", NOW))

    def test_start_before_service_day_is_invalid_state(self):
        booking = _booking(BookingStatus.CONFIRMED, scheduled_at=NOW + timedelta(days=1))
        with pytest.raises(InvalidStateException):
            resolve_transition(BookingAction.START, TransitionContext(booking, "prov-1", NOW))

    def test_start_later_on_the_service_day_is_allowed(self):
        booking = _booking(BookingStatus.CONFIRMED, scheduled_at=NOW + timedelta(hours=6))
        transition = resolve_transition(
            BookingAction.START, TransitionContext(booking, "prov-1", NOW)
        )
        assert transition.target == BookingStatus.IN_PROGRESS

    def test_complete_requires_recorded_start(self):
        booking = _booking(BookingStatus.IN_PROGRESS, started_at=None)
        with pytest.raises(InvalidStateException):
            resolve_transition(BookingAction.COMPLETE, TransitionContext(booking, "prov-1", NOW))

    def test_cancel_by_customer_checks_ownership(self):
        booking = _booking(BookingStatus.CONFIRMED)
        with pytest.raises(UnauthorizedActionException):
            resolve_transition(
                BookingAction.CANCEL,
                TransitionContext(booking, "cust-2", NOW, is_customer=True),
            )
        transition = resolve_transition(
            BookingAction.CANCEL, TransitionContext(booking, "cust-1", NOW, is_customer=True)
        )
        assert transition.target == BookingStatus.CANCELLED

    def test_cancel_by_unassigned_provider_is_unauthorized(self):
        booking = _booking(BookingStatus.PENDING, provider_id=None)
        with pytest.raises(UnauthorizedActionException):
            resolve_transition(BookingAction.CANCEL, TransitionContext(booking, "prov-1", NOW))


class TestRescheduleGuard:
    def _ctx(self, booking, new_time, min_notice_hours=2):
        return TransitionContext(
            booking,
            "cust-1",
            NOW,
            is_customer=True,
            new_scheduled_at=new_time,
            min_notice_hours=min_notice_hours,
        )

    def test_valid_reschedule(self):
        booking = _booking(BookingStatus.CONFIRMED, scheduled_at=NOW + timedelta(hours=10))
        transition = resolve_transition(
            BookingAction.RESCHEDULE, self._ctx(booking, NOW + timedelta(days=3))
        )
        assert transition.target == BookingStatus.CONFIRMED

    @pytest.mark.parametrize(
        "new_time",
        [None, NOW, NOW - timedelta(hours=1), NOW + timedelta(hours=10)],
        ids=["missing", "now", "past", "unchanged"],
    )
    def test_rejects_bad_new_time(self, new_time):
        booking = _booking(BookingStatus.PENDING, scheduled_at=NOW + timedelta(hours=10))
        with pytest.raises(ValidationException):
            resolve_transition(BookingAction.RESCHEDULE, self._ctx(booking, new_time))

    def test_rejects_inside_notice_window(self):
        booking = _booking(BookingStatus.CONFIRMED, scheduled_at=NOW + timedelta(minutes=90))
        with pytest.raises(ValidationException) as exc_info:
            resolve_transition(
                BookingAction.RESCHEDULE, self._ctx(booking, NOW + timedelta(days=2))
            )
        assert exc_info.value.details == {"min_notice_hours": 2}

    def test_notice_boundary_is_inclusive(self):
        booking = _booking(BookingStatus.CONFIRMED, scheduled_at=NOW + timedelta(hours=2))
        resolve_transition(BookingAction.RESCHEDULE, self._ctx(booking, NOW + timedelta(days=2)))
