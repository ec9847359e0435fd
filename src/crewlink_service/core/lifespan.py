"""Application lifecycle management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from crewlink_service.clients.email_client import EmailClient
from crewlink_service.clients.stripe_gateway import StripeGateway
from crewlink_service.config import get_safe_config, get_settings
from crewlink_service.core.auth import SessionVerifier
from crewlink_service.core.state import init_app_state
from crewlink_service.logging import get_logger, setup_logging
from crewlink_service.services.bid_resolution import BidResolver
from crewlink_service.services.booking_lifecycle import BookingManager
from crewlink_service.services.conversations import ConversationService
from crewlink_service.services.escrow_payments import EscrowPayments
from crewlink_service.services.job_board import JobBoard
from crewlink_service.services.marketplace_store import MarketplaceStore
from crewlink_service.services.notifier import Notifier
from crewlink_service.services.reviews import ReviewService

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    setup_logging(settings.logging.level, settings.logging.directory)
    logger = get_logger(__name__)
    logger.debug("Effective configuration", extra={"config": get_safe_config()})

    state = init_app_state()

    state.session_verifier = SessionVerifier(
        secret=settings.auth.session_secret,
        algorithm=settings.auth.algorithm,
    )

    state.payment_gateway = StripeGateway(
        secret_key=settings.payments.secret_key,
        webhook_secret=settings.payments.webhook_secret,
        currency=settings.payments.currency,
    )

    state.email_client = EmailClient(
        enabled=settings.email.enabled,
        api_key=settings.email.api_key,
        from_address=settings.email.from_address,
        app_base_url=settings.email.app_base_url,
    )

    store = MarketplaceStore(db_path=settings.database.path)
    state.store = store
    notifier = Notifier(store=store)
    state.notifier = notifier

    state.job_board = JobBoard(store=store, notifier=notifier)
    state.bid_resolver = BidResolver(
        store=store,
        notifier=notifier,
        email_client=state.email_client,
    )
    state.booking_manager = BookingManager(store=store, notifier=notifier)
    state.escrow_payments = EscrowPayments(
        store=store,
        gateway=state.payment_gateway,
        notifier=notifier,
    )
    state.conversations = ConversationService(store=store, notifier=notifier)
    state.reviews = ReviewService(store=store, notifier=notifier)

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "port": settings.server.port,
            "db_path": settings.database.path,
            "payment_provider": settings.payments.provider,
            "webhook_configured": state.payment_gateway.webhook_configured,
            "email_enabled": settings.email.enabled,
        },
    )

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})

    store.close()
