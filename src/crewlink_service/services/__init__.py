"""Service layer components."""

from crewlink_service.services.bid_resolution import BidResolver
from crewlink_service.services.booking_lifecycle import BookingManager
from crewlink_service.services.conversations import ConversationService
from crewlink_service.services.escrow_payments import EscrowPayments
from crewlink_service.services.job_board import JobBoard
from crewlink_service.services.marketplace_store import MarketplaceStore
from crewlink_service.services.notifier import Notifier

__all__ = [
    "BidResolver",
    "BookingManager",
    "ConversationService",
    "EscrowPayments",
    "JobBoard",
    "MarketplaceStore",
    "Notifier",
]
