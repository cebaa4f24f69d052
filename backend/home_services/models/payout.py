# backend/home_services/models/payout.py
"""
Provider payout batches.

A Payout aggregates the net earnings of a set of completed bookings. Each
settled booking is recorded once in payout_bookings; the UNIQUE constraint on
payout_bookings.booking_id is the storage-level guarantee that no booking is
ever paid out twice, even when two settlement runs overlap.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
import ulid

from ..database import Base

if TYPE_CHECKING:
    from .provider import ServiceProvider


class PayoutStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Payout(Base):
    __tablename__ = "payouts"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    provider_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("service_providers.id"), nullable=False, index=True
    )

    # amount == total_revenue - platform_fee
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_revenue: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=PayoutStatus.PENDING.value)
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    booking_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    transaction_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    provider: Mapped["ServiceProvider"] = relationship("ServiceProvider", back_populates="payouts")
    items: Mapped[List["PayoutBooking"]] = relationship(
        "PayoutBooking", back_populates="payout", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')", name="ck_payouts_status"
        ),
        CheckConstraint("amount >= 0", name="ck_payouts_amount_non_negative"),
        CheckConstraint("period_start <= period_end", name="ck_payouts_period_order"),
        Index("ix_payouts_provider_created", "provider_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Payout {self.id}: provider={self.provider_id}, amount={self.amount}, status={self.status}>"


class PayoutBooking(Base):
    """Per-booking line of a payout batch."""

    __tablename__ = "payout_bookings"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    payout_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("payouts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    booking_id: Mapped[str] = mapped_column(String(26), ForeignKey("bookings.id"), nullable=False)

    booking_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    commission: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    payout: Mapped["Payout"] = relationship("Payout", back_populates="items")

    __table_args__ = (UniqueConstraint("booking_id", name="uq_payout_bookings_booking"),)

    def __repr__(self) -> str:
        return f"<PayoutBooking {self.booking_id} -> {self.payout_id}: net={self.net_amount}>"
