"""CrewLink Service - job board, bids, bookings, and escrow payments for the gig marketplace."""

__version__ = "0.1.0"
