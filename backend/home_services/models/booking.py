# backend/home_services/models/booking.py
"""
Booking model for the home-services platform.

A booking is created PENDING by a customer request, accepted by a provider,
then started and completed on site. Status changes go exclusively through
BookingService, which consults the transition table in
services/booking_state_machine.py and appends a BookingHistory row for
every change.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
import logging
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
import ulid

from ..database import Base

if TYPE_CHECKING:
    from .payment import Payment
    from .provider import ServiceProvider

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    PENDING = "PENDING"  # Requested by customer, awaiting a provider
    CONFIRMED = "CONFIRMED"  # Accepted by a provider
    IN_PROGRESS = "IN_PROGRESS"  # Provider on site
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.REJECTED}
)


class Booking(Base):
    """One scheduled service engagement between a customer and a provider."""

    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(
        String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID())
    )

    customer_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    provider_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("service_providers.id"), nullable=True, index=True
    )
    service_id: Mapped[str] = mapped_column(String(26), ForeignKey("services.id"), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BookingStatus.PENDING.value, index=True
    )
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, default=_utcnow, onupdate=_utcnow
    )

    provider: Mapped[Optional["ServiceProvider"]] = relationship("ServiceProvider")
    payment: Mapped[Optional["Payment"]] = relationship(
        "Payment", back_populates="booking", uselist=False
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'CONFIRMED', 'IN_PROGRESS', 'COMPLETED', 'CANCELLED', 'REJECTED')",
            name="ck_bookings_status",
        ),
        CheckConstraint(
            "completed_at IS NULL OR cancelled_at IS NULL",
            name="ck_bookings_completed_xor_cancelled",
        ),
        CheckConstraint("total_amount >= 0", name="ck_bookings_amount_non_negative"),
        Index("ix_bookings_provider_status_completed", "provider_id", "status", "completed_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Booking {self.id}: customer={self.customer_id}, "
            f"provider={self.provider_id}, scheduled_at={self.scheduled_at}, status={self.status}>"
        )

    def is_assigned_to(self, provider_id: Optional[str]) -> bool:
        return provider_id is not None and self.provider_id == provider_id

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "provider_id": self.provider_id,
            "service_id": self.service_id,
            "status": self.status,
            "scheduled_at": self.scheduled_at.isoformat() if self.scheduled_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "total_amount": str(self.total_amount),
            "currency": self.currency,
            "cancellation_reason": self.cancellation_reason,
        }


class BookingHistory(Base):
    """
    Append-only audit record of a booking transition.

    Rows are inserted by BookingService alongside the transition they describe
    and are never updated or deleted.
    """

    __tablename__ = "booking_history"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    changed_by_id: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    booking: Mapped["Booking"] = relationship("Booking")

    __table_args__ = (Index("ix_booking_history_booking_changed", "booking_id", "changed_at"),)

    def __repr__(self) -> str:
        return f"<BookingHistory {self.booking_id}: {self.status} by {self.changed_by_id}>"
