"""
Booking status transition table.

Every legal (from-status, action) pair is listed in ``TRANSITIONS`` together
with the target status and the guard predicates that must pass. Pairs that are
absent are illegal, which makes every terminal status a dead end.

Check order: terminal status, then actor, then the (status, action) lookup,
then the transition's own guards.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, FrozenSet, Optional, Tuple

from ..core.clock import as_utc, hours_between
from ..core.exceptions import (
    InvalidStateException,
    UnauthorizedActionException,
    ValidationException,
)
from ..models.booking import Booking, BookingStatus


class BookingAction(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    START = "start"
    COMPLETE = "complete"
    CANCEL = "cancel"
    RESCHEDULE = "reschedule"


@dataclass(frozen=True)
class TransitionContext:
    booking: Booking
    actor_id: Optional[str]
    now: datetime
    is_customer: bool = False
    new_scheduled_at: Optional[datetime] = None
    min_notice_hours: float = 2


Guard = Callable[[TransitionContext], None]


@dataclass(frozen=True)
class Transition:
    source: BookingStatus
    action: BookingAction
    target: BookingStatus
    guards: Tuple[Guard, ...] = ()


# Actor guards


def _provider_may_respond(ctx: TransitionContext) -> None:
    booking = ctx.booking
    if booking.provider_id is not None and booking.provider_id != ctx.actor_id:
        raise UnauthorizedActionException("This booking is addressed to a different provider")


def _assigned_provider_only(ctx: TransitionContext) -> None:
    if not ctx.booking.is_assigned_to(ctx.actor_id):
        raise UnauthorizedActionException("Only the assigned provider can perform this action")


def _booking_party_only(ctx: TransitionContext) -> None:
    booking = ctx.booking
    if ctx.is_customer:
        if booking.customer_id != ctx.actor_id:
            raise UnauthorizedActionException("You are not the customer for this booking")
    elif not booking.is_assigned_to(ctx.actor_id):
        raise UnauthorizedActionException("You are not the assigned provider for this booking")


# Transition guards


def _service_day_reached(ctx: TransitionContext) -> None:
    if as_utc(ctx.booking.scheduled_at).date() > as_utc(ctx.now).date():
        raise InvalidStateException(
            "Cannot start service before the scheduled date",
            current_status=ctx.booking.status,
            action=BookingAction.START.value,
        )


def _start_recorded(ctx: TransitionContext) -> None:
    if ctx.booking.started_at is None:
        raise InvalidStateException(
            "Service start time was never recorded",
            current_status=ctx.booking.status,
            action=BookingAction.COMPLETE.value,
        )


def _valid_new_schedule(ctx: TransitionContext) -> None:
    new_time = ctx.new_scheduled_at
    if new_time is None:
        raise ValidationException("A new scheduled time is required")
    if as_utc(new_time) <= as_utc(ctx.now):
        raise ValidationException("New scheduled time must be in the future")
    if as_utc(new_time) == as_utc(ctx.booking.scheduled_at):
        raise ValidationException("New scheduled time must differ from the current one")
    if hours_between(ctx.now, ctx.booking.scheduled_at) < ctx.min_notice_hours:
        raise ValidationException(
            f"Cannot reschedule less than {ctx.min_notice_hours:g} hours before the scheduled time",
            details={"min_notice_hours": ctx.min_notice_hours},
        )


ACTOR_GUARDS: Dict[BookingAction, Guard] = {
    BookingAction.ACCEPT: _provider_may_respond,
    BookingAction.REJECT: _provider_may_respond,
    BookingAction.START: _assigned_provider_only,
    BookingAction.COMPLETE: _assigned_provider_only,
    BookingAction.CANCEL: _booking_party_only,
    BookingAction.RESCHEDULE: _booking_party_only,
}

_S = BookingStatus
_A = BookingAction

TRANSITIONS: Dict[Tuple[BookingStatus, BookingAction], Transition] = {
    (t.source, t.action): t
    for t in (
        Transition(_S.PENDING, _A.ACCEPT, _S.CONFIRMED),
        Transition(_S.PENDING, _A.REJECT, _S.CANCELLED),
        Transition(_S.CONFIRMED, _A.START, _S.IN_PROGRESS, (_service_day_reached,)),
        Transition(_S.IN_PROGRESS, _A.COMPLETE, _S.COMPLETED, (_start_recorded,)),
        Transition(_S.PENDING, _A.CANCEL, _S.CANCELLED),
        Transition(_S.CONFIRMED, _A.CANCEL, _S.CANCELLED),
        Transition(_S.PENDING, _A.RESCHEDULE, _S.PENDING, (_valid_new_schedule,)),
        Transition(_S.CONFIRMED, _A.RESCHEDULE, _S.CONFIRMED, (_valid_new_schedule,)),
    )
}


def allowed_actions(status: BookingStatus) -> FrozenSet[BookingAction]:
    return frozenset(action for (source, action) in TRANSITIONS if source == status)


def _illegal(current: BookingStatus, action: BookingAction) -> InvalidStateException:
    return InvalidStateException(
        f"Cannot {action.value} a booking with status {current.value}",
        current_status=current.value,
        action=action.value,
    )


def resolve_transition(action: BookingAction, ctx: TransitionContext) -> Transition:
    """
    Validate ``action`` against the booking in ``ctx`` and return the transition.

    Raises UnauthorizedActionException, InvalidStateException or
    ValidationException; never mutates the booking.
    """
    current = BookingStatus(ctx.booking.status)
    if current.is_terminal:
        raise _illegal(current, action)

    actor_guard = ACTOR_GUARDS.get(action)
    if actor_guard is not None:
        actor_guard(ctx)

    transition = TRANSITIONS.get((current, action))
    if transition is None:
        raise _illegal(current, action)

    for guard in transition.guards:
        guard(ctx)
    return transition
