# backend/home_services/models/provider.py
"""
Provider-side catalog models.

ServiceProvider carries the derived rating aggregate (average_rating,
total_reviews). Those two columns are written only by the RatingAggregator;
no command path sets them from user input.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
import ulid

from ..database import Base

if TYPE_CHECKING:
    from .payout import Payout


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Service(Base):
    """Catalog entry a customer can book (e.g. deep cleaning, plumbing repair)."""

    __tablename__ = "services"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<Service {self.id}: {self.name}>"


class ServiceProvider(Base):
    """A provider account able to accept bookings and receive payouts."""

    __tablename__ = "service_providers"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    user_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    business_name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Rating aggregate (owned by RatingAggregator)
    average_rating: Mapped[Decimal] = mapped_column(Numeric(3, 2), nullable=False, default=Decimal("0"))
    total_reviews: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rating_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    services: Mapped[List["ProviderService"]] = relationship(
        "ProviderService", back_populates="provider", cascade="all, delete-orphan"
    )
    payouts: Mapped[List["Payout"]] = relationship("Payout", back_populates="provider")

    __table_args__ = (
        CheckConstraint("average_rating >= 0 AND average_rating <= 5", name="ck_providers_rating_range"),
        CheckConstraint("total_reviews >= 0", name="ck_providers_review_count"),
    )

    def __repr__(self) -> str:
        return (
            f"<ServiceProvider {self.id}: rating={self.average_rating}, reviews={self.total_reviews}>"
        )


class ProviderService(Base):
    """Links a provider to a catalog service it offers."""

    __tablename__ = "provider_services"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    provider_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("service_providers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    service_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("services.id", ondelete="CASCADE"), nullable=False, index=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    provider: Mapped["ServiceProvider"] = relationship("ServiceProvider", back_populates="services")

    __table_args__ = (UniqueConstraint("provider_id", "service_id", name="uq_provider_services"),)
