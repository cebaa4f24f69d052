# backend/home_services/repositories/review_repository.py
"""
Repositories for reviews/ratings.

Follows repository pattern: no business logic, DB-only operations.
"""

import logging
from typing import List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.review import Review
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class ReviewRepository(BaseRepository[Review]):
    """Data access for `Review`."""

    def __init__(self, db: Session):
        super().__init__(db, Review)
        self.logger = logging.getLogger(__name__)

    def exists_for_booking(self, booking_id: str) -> bool:
        try:
            return (
                self.db.query(self.model.id).filter(self.model.booking_id == booking_id).first()
                is not None
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error checking review existence: {e}")
            raise RepositoryException(f"Failed to check review existence: {e}")

    def get_visible_ratings(self, provider_id: str) -> List[int]:
        """Full live set of visible ratings for a provider; never a cached count."""
        try:
            rows = (
                self.db.query(Review.rating)
                .filter(Review.provider_id == provider_id, Review.is_visible.is_(True))
                .all()
            )
            return [int(row[0]) for row in rows]
        except SQLAlchemyError as e:
            self.logger.error(f"Error fetching visible ratings for {provider_id}: {e}")
            raise RepositoryException(f"Failed to fetch visible ratings: {e}")
