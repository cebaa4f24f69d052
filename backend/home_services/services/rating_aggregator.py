# backend/home_services/services/rating_aggregator.py
"""
Provider rating aggregate.

The aggregate is always rebuilt from the full live set of visible reviews,
never adjusted incrementally. ``recompute`` locks the provider row before it
reads the reviews, so concurrent recomputes for one provider serialize and
the last writer has seen every committed review.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ..core.clock import Clock
from ..core.exceptions import NotFoundException
from ..repositories.provider_repository import ProviderRepository
from ..repositories.review_repository import ReviewRepository
from .base import BaseService

_TWO_PLACES = Decimal("0.01")


@dataclass(frozen=True)
class RatingAggregate:
    average_rating: Decimal
    total_reviews: int


def compute_rating_aggregate(ratings: Iterable[int]) -> RatingAggregate:
    """Mean of ``ratings`` rounded half-up to 2 places; (0, 0) for no ratings."""
    values = [int(r) for r in ratings]
    if not values:
        return RatingAggregate(average_rating=Decimal("0.00"), total_reviews=0)
    mean = Decimal(sum(values)) / Decimal(len(values))
    return RatingAggregate(
        average_rating=mean.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP),
        total_reviews=len(values),
    )


class RatingAggregator(BaseService):
    """Sole writer of ServiceProvider.average_rating and total_reviews."""

    def __init__(
        self,
        db: Session,
        *,
        clock: Optional[Clock] = None,
        statement_timeout_ms: Optional[int] = None,
    ):
        super().__init__(db, clock=clock, statement_timeout_ms=statement_timeout_ms)
        self.provider_repository = ProviderRepository(db)
        self.review_repository = ReviewRepository(db)

    @BaseService.measure_operation("recompute_provider_rating")
    def recompute(self, provider_id: str) -> RatingAggregate:
        """
        Rebuild the rating aggregate of ``provider_id``.

        Joins the caller's transaction when one is open on the same session,
        so a review mutation and its recompute commit together.
        """
        with self.transaction():
            provider = self.provider_repository.get_for_update(provider_id)
            if provider is None:
                raise NotFoundException(f"Service provider {provider_id} not found")

            aggregate = compute_rating_aggregate(
                self.review_repository.get_visible_ratings(provider_id)
            )
            provider.average_rating = aggregate.average_rating
            provider.total_reviews = aggregate.total_reviews
            provider.rating_updated_at = self.now()
            self.provider_repository.flush()

        self.logger.info(
            "Provider %s rating recomputed: %s over %s reviews",
            provider_id,
            aggregate.average_rating,
            aggregate.total_reviews,
        )
        return aggregate
