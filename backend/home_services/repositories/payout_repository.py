# backend/home_services/repositories/payout_repository.py
"""
Repositories for provider payouts.

Follows repository pattern: no business logic, DB-only operations. The
eligibility query and the claim insert are meant to run inside one
transaction owned by SettlementService.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import logging
from typing import List, Optional, Sequence, cast

from sqlalchemy import and_, exists, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from ..core.exceptions import RepositoryException
from ..database.session_utils import supports_row_locks
from ..models.booking import Booking, BookingStatus
from ..models.payment import Payment, PaymentStatus
from ..models.payout import Payout, PayoutBooking
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EligibleBooking:
    """A completed, paid, unclaimed booking as seen at claim time."""

    booking_id: str
    amount: Decimal
    currency: str
    completed_at: datetime


@dataclass(frozen=True)
class PayoutLine:
    booking_id: str
    booking_amount: Decimal
    commission: Decimal
    net_amount: Decimal


class PayoutRepository(BaseRepository[Payout]):
    """Data access for `Payout` and its `PayoutBooking` claim rows."""

    def __init__(self, db: Session):
        super().__init__(db, Payout)
        self.logger = logging.getLogger(__name__)

    def find_unclaimed_completed_bookings(
        self, provider_id: str, period_start: datetime, period_end: datetime
    ) -> List[EligibleBooking]:
        """
        Completed bookings in the period with a completed payment and no claim row.

        The NOT EXISTS exclusion is evaluated in the same statement as the
        eligibility filter. Booking rows are locked where the dialect allows.
        """
        already_claimed = exists().where(PayoutBooking.booking_id == Booking.id)
        stmt = (
            select(Booking.id, Payment.amount, Payment.currency, Booking.completed_at)
            .join(Payment, Payment.booking_id == Booking.id)
            .where(
                and_(
                    Booking.provider_id == provider_id,
                    Booking.status == BookingStatus.COMPLETED.value,
                    Booking.completed_at.is_not(None),
                    Booking.completed_at >= period_start,
                    Booking.completed_at <= period_end,
                    Payment.status == PaymentStatus.COMPLETED.value,
                    ~already_claimed,
                )
            )
            .order_by(Booking.completed_at.asc(), Booking.id.asc())
        )
        if supports_row_locks(self.db):
            stmt = stmt.with_for_update(of=Booking)
        try:
            rows = self.db.execute(stmt).all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error selecting settlement candidates for {provider_id}: {e}")
            raise RepositoryException(f"Failed to select settlement candidates: {e}")
        return [
            EligibleBooking(
                booking_id=row[0],
                amount=Decimal(row[1]),
                currency=row[2],
                completed_at=row[3],
            )
            for row in rows
        ]

    def create_payout_with_lines(self, lines: Sequence[PayoutLine], **payout_fields: object) -> Payout:
        """
        Insert a payout and one claim row per line, flushing both together.

        A duplicate booking_id in payout_bookings surfaces as IntegrityError so the
        caller can treat the whole batch as a lost race.
        """
        try:
            payout = Payout(**payout_fields)
            payout.items = [
                PayoutBooking(
                    booking_id=line.booking_id,
                    booking_amount=line.booking_amount,
                    commission=line.commission,
                    net_amount=line.net_amount,
                )
                for line in lines
            ]
            self.db.add(payout)
            self.db.flush()
            return payout
        except IntegrityError:
            raise
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating payout: {e}")
            raise RepositoryException(f"Failed to create payout: {e}")

    def get_with_items(self, payout_id: str) -> Optional[Payout]:
        try:
            return cast(
                Optional[Payout],
                self.db.query(Payout)
                .options(selectinload(Payout.items))
                .filter(Payout.id == payout_id)
                .first(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error fetching payout {payout_id}: {e}")
            raise RepositoryException(f"Failed to fetch payout: {e}")

    def list_for_provider(self, provider_id: str, limit: int = 50) -> List[Payout]:
        try:
            return cast(
                List[Payout],
                self.db.query(Payout)
                .filter(Payout.provider_id == provider_id)
                .order_by(Payout.created_at.desc(), Payout.id.desc())
                .limit(limit)
                .all(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing payouts for {provider_id}: {e}")
            raise RepositoryException(f"Failed to list payouts: {e}")
