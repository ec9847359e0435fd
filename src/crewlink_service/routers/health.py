"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from crewlink_service.core.state import get_app_state
from crewlink_service.schemas import HealthResponse
from crewlink_service.services.booking_lifecycle import BOOKING_TRANSITIONS

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check service health and return booking statistics."""
    state = get_app_state()
    bookings_by_status = dict.fromkeys(BOOKING_TRANSITIONS, 0)
    if state.store is not None:
        bookings_by_status.update(state.store.count_bookings_by_status())
    return HealthResponse(
        status="ok",
        uptime_seconds=state.uptime_seconds,
        started_at=state.started_at,
        total_bookings=sum(bookings_by_status.values()),
        bookings_by_status=bookings_by_status,
    )
