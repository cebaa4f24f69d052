# backend/home_services/repositories/payment_repository.py
"""Data access for booking payments."""

import logging
from typing import Optional, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.payment import Payment
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class PaymentRepository(BaseRepository[Payment]):
    def __init__(self, db: Session):
        super().__init__(db, Payment)

    def get_by_booking_id(self, booking_id: str) -> Optional[Payment]:
        try:
            return cast(
                Optional[Payment],
                self.db.query(Payment).filter(Payment.booking_id == booking_id).first(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error fetching payment for booking {booking_id}: {e}")
            raise RepositoryException(f"Failed to fetch payment: {e}")
