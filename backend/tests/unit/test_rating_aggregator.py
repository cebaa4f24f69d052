from datetime import timedelta
from decimal import Decimal

import pytest

from home_services.core.clock import as_utc
from home_services.core.exceptions import NotFoundException
from home_services.services.rating_aggregator import RatingAggregator, compute_rating_aggregate

from tests.unit._ledger_helpers import FIXED_NOW


@pytest.mark.parametrize(
    "ratings,expected",
    [
        ([5, 3, 4], Decimal("4.00")),
        ([5, 4], Decimal("4.50")),
        ([5, 4, 4], Decimal("4.33")),
        ([5, 5, 4], Decimal("4.67")),
        ([1], Decimal("1.00")),
        # 4.125 rounds half up
        ([5, 4, 4, 4, 4, 4, 4, 4], Decimal("4.13")),
    ],
)
def test_compute_rating_aggregate(ratings, expected):
    aggregate = compute_rating_aggregate(ratings)
    assert aggregate.average_rating == expected
    assert aggregate.total_reviews == len(ratings)


def test_empty_rating_set_is_zero():
    aggregate = compute_rating_aggregate([])
    assert aggregate.average_rating == Decimal("0.00")
    assert aggregate.total_reviews == 0


class TestRecompute:
    def _completed(self, ledger, service, provider, days_ago):
        return ledger.completed_booking(
            service=service, provider=provider, completed_at=FIXED_NOW - timedelta(days=days_ago)
        )

    def test_recompute_counts_only_visible_reviews(self, unit_db, clock, ledger):
        service = ledger.service()
        provider = ledger.provider(offers=[service])
        ledger.review(self._completed(ledger, service, provider, 3), rating=5)
        ledger.review(self._completed(ledger, service, provider, 2), rating=3, is_visible=False)
        ledger.review(self._completed(ledger, service, provider, 1), rating=4)

        aggregate = RatingAggregator(unit_db, clock=clock).recompute(provider.id)

        assert aggregate.average_rating == Decimal("4.50")
        assert aggregate.total_reviews == 2
        unit_db.expire_all()
        assert provider.average_rating == Decimal("4.50")
        assert provider.total_reviews == 2
        assert as_utc(provider.rating_updated_at) == FIXED_NOW

    def test_recompute_without_reviews_resets_to_zero(self, unit_db, clock, ledger):
        provider = ledger.provider()
        provider.average_rating = Decimal("3.20")
        provider.total_reviews = 5
        unit_db.commit()

        aggregate = RatingAggregator(unit_db, clock=clock).recompute(provider.id)

        assert aggregate.total_reviews == 0
        assert provider.average_rating == Decimal("0.00")
        assert provider.total_reviews == 0

    def test_recompute_is_idempotent(self, unit_db, clock, ledger):
        service = ledger.service()
        provider = ledger.provider(offers=[service])
        ledger.review(self._completed(ledger, service, provider, 1), rating=4)
        aggregator = RatingAggregator(unit_db, clock=clock)

        assert aggregator.recompute(provider.id) == aggregator.recompute(provider.id)

    def test_unknown_provider(self, unit_db, clock):
        with pytest.raises(NotFoundException):
            RatingAggregator(unit_db, clock=clock).recompute("01HNOPROVIDER0000000000000")
