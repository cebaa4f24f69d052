"""
Unit tests for ReviewService.

Every mutation that changes the visible rating set must leave the provider
aggregate equal to a fresh recompute over its visible reviews.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from home_services.core.exceptions import (
    InvalidStateException,
    NotFoundException,
    UnauthorizedActionException,
    ValidationException,
)
from home_services.models.booking import BookingStatus
from home_services.models.review import Review
from home_services.services.notification_dispatcher import NotificationCategory
from home_services.services.review_service import ModerationAction, ReviewService

from tests.unit._ledger_helpers import FIXED_NOW


@pytest.fixture
def review_service(unit_db, dispatcher, clock):
    return ReviewService(unit_db, dispatcher=dispatcher, clock=clock)


@pytest.fixture
def catalog(ledger):
    service = ledger.service()
    provider = ledger.provider(offers=[service])
    return service, provider


@pytest.fixture
def make_completed(ledger, catalog):
    service, provider = catalog
    counter = {"n": 0}

    def _make(customer_id="customer-1"):
        counter["n"] += 1
        return ledger.completed_booking(
            service=service,
            provider=provider,
            customer_id=customer_id,
            completed_at=FIXED_NOW - timedelta(hours=counter["n"]),
        )

    return _make


class TestCreateReview:
    def test_create_updates_aggregate_and_notifies(
        self, review_service, make_completed, catalog, dispatcher
    ):
        provider = catalog[1]
        booking = make_completed()

        review = review_service.create_review(
            booking_id=booking.id, customer_id=booking.customer_id, rating=5, comment="  Spotless  "
        )

        assert review.comment == "Spotless"
        assert review.is_visible is True
        assert review.is_verified is True
        assert review.provider_id == provider.id
        assert provider.average_rating == Decimal("5.00")
        assert provider.total_reviews == 1
        assert dispatcher.titles() == ["New 5-Star Review"]
        assert dispatcher.messages[0].user_id == provider.user_id
        assert dispatcher.messages[0].category is NotificationCategory.REVIEW

    def test_unknown_booking(self, review_service):
        with pytest.raises(NotFoundException):
            review_service.create_review(
                booking_id="01HNOBOOKING00000000000000", customer_id="customer-1", rating=4
            )

    def test_only_the_booking_customer_may_review(self, review_service, make_completed):
        booking = make_completed()
        with pytest.raises(UnauthorizedActionException):
            review_service.create_review(
                booking_id=booking.id, customer_id="customer-2", rating=4
            )

    def test_booking_must_be_completed(self, review_service, ledger, catalog):
        service, provider = catalog
        booking = ledger.booking(service=service, provider=provider, status=BookingStatus.CONFIRMED)
        with pytest.raises(InvalidStateException):
            review_service.create_review(
                booking_id=booking.id, customer_id=booking.customer_id, rating=4
            )

    def test_one_review_per_booking(self, review_service, make_completed, unit_db, dispatcher):
        booking = make_completed()
        review_service.create_review(booking_id=booking.id, customer_id=booking.customer_id, rating=4)

        with pytest.raises(InvalidStateException):
            review_service.create_review(
                booking_id=booking.id, customer_id=booking.customer_id, rating=2
            )
        assert unit_db.query(Review).filter_by(booking_id=booking.id).count() == 1
        assert len(dispatcher.messages) == 1

    @pytest.mark.parametrize("rating", [0, 6, -1, True, "5", 4.5])
    def test_rating_must_be_an_integer_from_one_to_five(self, review_service, make_completed, rating):
        booking = make_completed()
        with pytest.raises(ValidationException):
            review_service.create_review(
                booking_id=booking.id, customer_id=booking.customer_id, rating=rating
            )

    def test_comment_length_is_limited(self, review_service, make_completed):
        booking = make_completed()
        with pytest.raises(ValidationException):
            review_service.create_review(
                booking_id=booking.id,
                customer_id=booking.customer_id,
                rating=4,
                comment="x" * 1001,
            )


class TestUpdateAndDelete:
    def test_rating_change_recomputes(self, review_service, make_completed, catalog, clock):
        provider = catalog[1]
        first = make_completed()
        second = make_completed()
        review_service.create_review(booking_id=first.id, customer_id=first.customer_id, rating=5)
        review = review_service.create_review(
            booking_id=second.id, customer_id=second.customer_id, rating=5
        )
        clock.advance(hours=3)

        updated = review_service.update_review(
            review_id=review.id, customer_id=second.customer_id, rating=2, comment="Came back late"
        )

        assert updated.rating == 2
        assert updated.comment == "Came back late"
        assert provider.average_rating == Decimal("3.50")
        assert provider.total_reviews == 2

    def test_edit_window_closes(self, review_service, make_completed, clock):
        booking = make_completed()
        review = review_service.create_review(
            booking_id=booking.id, customer_id=booking.customer_id, rating=4
        )
        clock.advance(hours=49)

        with pytest.raises(InvalidStateException):
            review_service.update_review(
                review_id=review.id, customer_id=booking.customer_id, rating=5
            )

    def test_only_author_may_edit(self, review_service, make_completed):
        booking = make_completed()
        review = review_service.create_review(
            booking_id=booking.id, customer_id=booking.customer_id, rating=4
        )
        with pytest.raises(UnauthorizedActionException):
            review_service.update_review(review_id=review.id, customer_id="customer-2", rating=1)

    def test_delete_recomputes(self, review_service, make_completed, catalog, unit_db):
        provider = catalog[1]
        booking = make_completed()
        review = review_service.create_review(
            booking_id=booking.id, customer_id=booking.customer_id, rating=3
        )

        review_service.delete_review(review_id=review.id, customer_id=booking.customer_id)

        assert unit_db.query(Review).count() == 0
        assert provider.average_rating == Decimal("0.00")
        assert provider.total_reviews == 0
        with pytest.raises(NotFoundException):
            review_service.get_review(review.id)


class TestModeration:
    def test_hidden_review_drops_out_of_the_average(self, review_service, make_completed, catalog):
        provider = catalog[1]
        reviews = []
        for rating in (5, 3, 4):
            booking = make_completed()
            reviews.append(
                review_service.create_review(
                    booking_id=booking.id, customer_id=booking.customer_id, rating=rating
                )
            )
        assert provider.average_rating == Decimal("4.00")

        review_service.moderate_review(
            review_id=reviews[1].id, moderator_id="admin-1", action=ModerationAction.HIDE
        )

        assert provider.average_rating == Decimal("4.50")
        assert provider.total_reviews == 2

        review_service.moderate_review(
            review_id=reviews[1].id, moderator_id="admin-1", action=ModerationAction.SHOW
        )
        assert provider.average_rating == Decimal("4.00")
        assert provider.total_reviews == 3

    def test_reject_unverifies_hides_and_tells_the_customer(
        self, review_service, make_completed, catalog, dispatcher
    ):
        booking = make_completed()
        review = review_service.create_review(
            booking_id=booking.id, customer_id=booking.customer_id, rating=1
        )

        moderated = review_service.moderate_review(
            review_id=review.id,
            moderator_id="admin-1",
            action=ModerationAction.REJECT,
            reason="Abusive language",
        )

        assert moderated.is_visible is False
        assert moderated.is_verified is False
        assert catalog[1].total_reviews == 0
        assert dispatcher.titles()[-1] == "Review Not Approved"
        assert dispatcher.messages[-1].user_id == booking.customer_id
        assert "Abusive language" in dispatcher.messages[-1].body

    def test_unknown_review(self, review_service):
        with pytest.raises(NotFoundException):
            review_service.moderate_review(
                review_id="01HNOREVIEW000000000000000",
                moderator_id="admin-1",
                action=ModerationAction.APPROVE,
            )
