# backend/home_services/models/__init__.py
"""
Database models for the home-services booking and settlement engine.

Importing this package registers every table on ``Base.metadata``.
"""

from .booking import TERMINAL_STATUSES, Booking, BookingHistory, BookingStatus
from .notification import Notification
from .payment import Payment, PaymentStatus
from .payout import Payout, PayoutBooking, PayoutStatus
from .provider import ProviderService, Service, ServiceProvider
from .review import Review

__all__ = [
    "Booking",
    "BookingHistory",
    "BookingStatus",
    "Notification",
    "Payment",
    "PaymentStatus",
    "Payout",
    "PayoutBooking",
    "PayoutStatus",
    "ProviderService",
    "Review",
    "Service",
    "ServiceProvider",
    "TERMINAL_STATUSES",
]
