"""API routers."""

from crewlink_service.routers import (
    bids,
    bookings,
    conversations,
    health,
    jobs,
    notifications,
    payments,
    reviews,
)

__all__ = [
    "bids",
    "bookings",
    "conversations",
    "health",
    "jobs",
    "notifications",
    "payments",
    "reviews",
]
