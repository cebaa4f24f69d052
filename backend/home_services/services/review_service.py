# backend/home_services/services/review_service.py
"""
Review commands: create, edit, delete and moderate.

Every mutation that can change a provider's visible rating set recomputes the
provider aggregate inside the same transaction.
"""

from datetime import timedelta
from enum import Enum
import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..core.clock import Clock, as_utc
from ..core.config import settings
from ..core.exceptions import (
    InvalidStateException,
    NotFoundException,
    UnauthorizedActionException,
    ValidationException,
)
from ..models.booking import BookingStatus
from ..models.review import Review
from ..repositories.booking_repository import BookingRepository
from ..repositories.provider_repository import ProviderRepository
from ..repositories.review_repository import ReviewRepository
from .base import BaseService
from .notification_dispatcher import (
    CeleryNotificationDispatcher,
    NotificationCategory,
    NotificationDispatcher,
    NotificationMessage,
    dispatch_safely,
)
from .rating_aggregator import RatingAggregator

logger = logging.getLogger(__name__)

MAX_COMMENT_LENGTH = 1000


class ModerationAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    HIDE = "hide"
    SHOW = "show"


def _validate_rating(rating: object) -> int:
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ValidationException("Rating must be an integer between 1 and 5")
    return rating


def _clean_comment(comment: Optional[str]) -> Optional[str]:
    if comment is None:
        return None
    text = comment.strip()
    if len(text) > MAX_COMMENT_LENGTH:
        raise ValidationException(f"Review text cannot exceed {MAX_COMMENT_LENGTH} characters")
    return text or None


class ReviewService(BaseService):
    def __init__(
        self,
        db: Session,
        *,
        dispatcher: Optional[NotificationDispatcher] = None,
        clock: Optional[Clock] = None,
        statement_timeout_ms: Optional[int] = None,
        edit_window_hours: Optional[int] = None,
    ):
        super().__init__(db, clock=clock, statement_timeout_ms=statement_timeout_ms)
        self.review_repository = ReviewRepository(db)
        self.booking_repository = BookingRepository(db)
        self.provider_repository = ProviderRepository(db)
        self.rating_aggregator = RatingAggregator(
            db, clock=self.clock, statement_timeout_ms=self.statement_timeout_ms
        )
        self.dispatcher: NotificationDispatcher = dispatcher or CeleryNotificationDispatcher()
        self.edit_window = timedelta(
            hours=edit_window_hours
            if edit_window_hours is not None
            else settings.review_edit_window_hours
        )

    def get_review(self, review_id: str) -> Review:
        review = self.review_repository.get_by_id(review_id)
        if review is None:
            raise NotFoundException(f"Review {review_id} not found")
        return review

    @BaseService.measure_operation("create_review")
    def create_review(
        self,
        *,
        booking_id: str,
        customer_id: str,
        rating: int,
        comment: Optional[str] = None,
    ) -> Review:
        """Submit a review for a completed booking."""
        rating = _validate_rating(rating)
        comment = _clean_comment(comment)
        now = self.now()

        with self.transaction():
            booking = self.booking_repository.get_by_id(booking_id)
            if booking is None:
                raise NotFoundException(f"Booking {booking_id} not found")
            if booking.customer_id != customer_id:
                raise UnauthorizedActionException("You can only review your own booking")
            if booking.status != BookingStatus.COMPLETED.value:
                raise InvalidStateException(
                    "Only completed bookings can be reviewed",
                    current_status=booking.status,
                    action="review",
                )
            if booking.provider_id is None:
                raise InvalidStateException("Booking has no assigned provider", action="review")
            if self.review_repository.exists_for_booking(booking_id):
                raise InvalidStateException(
                    "A review already exists for this booking", action="review"
                )

            review = self.review_repository.create(
                booking_id=booking_id,
                customer_id=customer_id,
                provider_id=booking.provider_id,
                rating=rating,
                comment=comment,
                is_visible=True,
                is_verified=True,
                created_at=now,
            )
            self.rating_aggregator.recompute(booking.provider_id)
            self._notify_provider_after_commit(
                booking.provider_id,
                f"New {rating}-Star Review",
                "A customer left a review for a completed booking.",
                review.id,
            )

        self.log_operation("create_review", review_id=review.id, booking_id=booking_id)
        return review

    @BaseService.measure_operation("update_review")
    def update_review(
        self,
        *,
        review_id: str,
        customer_id: str,
        rating: Optional[int] = None,
        comment: Optional[str] = None,
    ) -> Review:
        """Edit a review within the edit window; recomputes only when the rating changes."""
        if rating is not None:
            rating = _validate_rating(rating)
        comment = _clean_comment(comment)
        now = self.now()

        with self.transaction():
            review = self._get_owned_review(review_id, customer_id)
            if as_utc(now) - as_utc(review.created_at) > self.edit_window:
                raise InvalidStateException(
                    f"Reviews can only be edited within {int(self.edit_window.total_seconds() // 3600)} "
                    "hours of posting",
                    action="update_review",
                )

            rating_changed = rating is not None and rating != review.rating
            if rating is not None:
                review.rating = rating
            if comment is not None:
                review.comment = comment
            review.updated_at = now
            self.review_repository.flush()

            if rating_changed:
                self.rating_aggregator.recompute(review.provider_id)

        self.log_operation("update_review", review_id=review.id, rating_changed=rating_changed)
        return review

    @BaseService.measure_operation("delete_review")
    def delete_review(self, *, review_id: str, customer_id: str) -> None:
        with self.transaction():
            review = self._get_owned_review(review_id, customer_id)
            provider_id = review.provider_id
            self.review_repository.delete(review)
            self.rating_aggregator.recompute(provider_id)

        self.log_operation("delete_review", review_id=review_id)

    @BaseService.measure_operation("moderate_review")
    def moderate_review(
        self,
        *,
        review_id: str,
        moderator_id: str,
        action: ModerationAction,
        reason: Optional[str] = None,
    ) -> Review:
        """
        Apply a moderation decision.

        approve: verified and visible; reject: unverified and hidden;
        hide / show: visibility only.
        """
        action = ModerationAction(action)
        with self.transaction():
            review = self.review_repository.get_for_update(review_id)
            if review is None:
                raise NotFoundException(f"Review {review_id} not found")

            was_visible = review.is_visible
            if action is ModerationAction.APPROVE:
                review.is_verified = True
                review.is_visible = True
            elif action is ModerationAction.REJECT:
                review.is_verified = False
                review.is_visible = False
            elif action is ModerationAction.HIDE:
                review.is_visible = False
            else:
                review.is_visible = True
            review.updated_at = self.now()
            self.review_repository.flush()

            if review.is_visible != was_visible:
                self.rating_aggregator.recompute(review.provider_id)

            if action is ModerationAction.REJECT:
                message = NotificationMessage(
                    user_id=review.customer_id,
                    title="Review Not Approved",
                    body="Your review did not meet our guidelines."
                    + (f" Reason: {reason}" if reason else ""),
                    category=NotificationCategory.REVIEW,
                    related_entity_id=review.id,
                )
                self.after_commit(lambda: dispatch_safely(self.dispatcher, message))

        self.logger.info(
            "Review %s moderated by %s: %s (visible=%s verified=%s)",
            review.id,
            moderator_id,
            action.value,
            review.is_visible,
            review.is_verified,
        )
        return review

    def _get_owned_review(self, review_id: str, customer_id: str) -> Review:
        review = self.review_repository.get_for_update(review_id)
        if review is None:
            raise NotFoundException(f"Review {review_id} not found")
        if review.customer_id != customer_id:
            raise UnauthorizedActionException("You can only change your own review")
        return review

    def _notify_provider_after_commit(
        self, provider_id: str, title: str, body: str, review_id: str
    ) -> None:
        provider = self.provider_repository.get_by_id(provider_id)
        if provider is None:
            return
        message = NotificationMessage(
            user_id=provider.user_id,
            title=title,
            body=body,
            category=NotificationCategory.REVIEW,
            related_entity_id=review_id,
        )
        self.after_commit(lambda: dispatch_safely(self.dispatcher, message))
