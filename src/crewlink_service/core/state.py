"""Application state management."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from crewlink_service.clients.email_client import EmailClient
    from crewlink_service.clients.stripe_gateway import StripeGateway
    from crewlink_service.core.auth import SessionVerifier
    from crewlink_service.services.bid_resolution import BidResolver
    from crewlink_service.services.booking_lifecycle import BookingManager
    from crewlink_service.services.conversations import ConversationService
    from crewlink_service.services.escrow_payments import EscrowPayments
    from crewlink_service.services.job_board import JobBoard
    from crewlink_service.services.marketplace_store import MarketplaceStore
    from crewlink_service.services.notifier import Notifier
    from crewlink_service.services.reviews import ReviewService


@dataclass
class AppState:
    """Runtime application state."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    store: MarketplaceStore | None = None
    notifier: Notifier | None = None
    session_verifier: SessionVerifier | None = None
    payment_gateway: StripeGateway | None = None
    email_client: EmailClient | None = None
    job_board: JobBoard | None = None
    bid_resolver: BidResolver | None = None
    booking_manager: BookingManager | None = None
    escrow_payments: EscrowPayments | None = None
    conversations: ConversationService | None = None
    reviews: ReviewService | None = None

    def __setattr__(self, name: str, value: Any) -> None:
        """Keep service references to swappable clients in sync with AppState fields."""
        super().__setattr__(name, value)
        if value is None:
            return

        escrow_payments = self.__dict__.get("escrow_payments")
        bid_resolver = self.__dict__.get("bid_resolver")

        if name == "payment_gateway" and escrow_payments is not None:
            escrow_payments.set_gateway(value)
        elif name == "email_client" and bid_resolver is not None:
            bid_resolver.set_email_client(value)
        elif name == "escrow_payments":
            payment_gateway = self.__dict__.get("payment_gateway")
            if payment_gateway is not None:
                value.set_gateway(payment_gateway)
        elif name == "bid_resolver":
            email_client = self.__dict__.get("email_client")
            if email_client is not None:
                value.set_email_client(email_client)

    @property
    def uptime_seconds(self) -> float:
        """Calculate uptime in seconds."""
        return (datetime.now(UTC) - self.start_time).total_seconds()

    @property
    def started_at(self) -> str:
        """ISO format start time."""
        return self.start_time.isoformat(timespec="seconds").replace("+00:00", "Z")


# Global application state container
_state_container: dict[str, AppState | None] = {"app_state": None}


def get_app_state() -> AppState:
    """Get the current application state."""
    app_state = _state_container["app_state"]
    if app_state is None:
        msg = "Application state not initialized"
        raise RuntimeError(msg)
    return app_state


def init_app_state() -> AppState:
    """Initialize application state. Called during startup."""
    app_state = AppState()
    _state_container["app_state"] = app_state
    return app_state


def reset_app_state() -> None:
    """Reset application state. Used in testing."""
    _state_container["app_state"] = None
