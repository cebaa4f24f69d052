# backend/home_services/repositories/booking_repository.py
"""
Booking Repository for the home-services ledger.

This repository handles:
- Locked booking reads for status transitions
- Compare-and-set status writes
- The append-only booking history trail
- Provider/service eligibility lookups used by Accept
"""

from datetime import datetime
import logging
from typing import List, Optional, cast

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.booking import Booking, BookingHistory
from ..models.provider import ProviderService
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class BookingRepository(BaseRepository[Booking]):
    """Repository for booking data access."""

    def __init__(self, db: Session):
        super().__init__(db, Booking)
        self.logger = logging.getLogger(__name__)

    def append_history(
        self,
        booking: Booking,
        *,
        changed_by_id: Optional[str],
        notes: Optional[str],
        changed_at: datetime,
    ) -> BookingHistory:
        """Record the booking's current status in the audit trail."""
        try:
            entry = BookingHistory(
                booking_id=booking.id,
                status=booking.status,
                changed_by_id=changed_by_id,
                notes=notes,
                changed_at=changed_at,
            )
            self.db.add(entry)
            self.db.flush()
            return entry
        except SQLAlchemyError as e:
            self.logger.error(f"Error appending history for booking {booking.id}: {str(e)}")
            raise RepositoryException(f"Failed to append booking history: {str(e)}")

    def compare_and_set_status(self, booking_id: str, expected: str, target: str) -> bool:
        """
        Move a booking from ``expected`` to ``target`` in a single UPDATE.

        Returns False when the stored status no longer matches ``expected``.
        Storage errors propagate so the unit of work can classify lock contention.
        """
        result = self.db.execute(
            update(Booking)
            .where(Booking.id == booking_id, Booking.status == expected)
            .values(status=target)
            .execution_options(synchronize_session=False)
        )
        return bool(getattr(result, "rowcount", 0))

    def get_history(self, booking_id: str) -> List[BookingHistory]:
        """Return history entries oldest first."""
        try:
            return cast(
                List[BookingHistory],
                self.db.query(BookingHistory)
                .filter(BookingHistory.booking_id == booking_id)
                .order_by(BookingHistory.changed_at.asc(), BookingHistory.id.asc())
                .all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error fetching history for booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to fetch booking history: {str(e)}")

    def provider_offers_service(self, provider_id: str, service_id: str) -> bool:
        try:
            return (
                self.db.query(ProviderService.id)
                .filter(
                    ProviderService.provider_id == provider_id,
                    ProviderService.service_id == service_id,
                    ProviderService.is_active.is_(True),
                )
                .first()
                is not None
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error checking provider service offering: {str(e)}")
            raise RepositoryException(f"Failed to check provider service: {str(e)}")
