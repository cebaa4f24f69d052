# backend/home_services/repositories/__init__.py
"""
Repository layer for the home-services ledger.

Repositories own queries and row locking; services own transactions.
"""

from .base_repository import BaseRepository
from .booking_repository import BookingRepository
from .payment_repository import PaymentRepository
from .payout_repository import EligibleBooking, PayoutLine, PayoutRepository
from .provider_repository import ProviderRepository
from .review_repository import ReviewRepository

__all__ = [
    "BaseRepository",
    "BookingRepository",
    "EligibleBooking",
    "PaymentRepository",
    "PayoutLine",
    "PayoutRepository",
    "ProviderRepository",
    "ReviewRepository",
]
