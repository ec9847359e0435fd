"""Booking listing and state transition endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from crewlink_service.config import get_settings
from crewlink_service.core.state import get_app_state
from crewlink_service.routers.validation import (
    check_max_length,
    parse_pagination,
    read_model,
    require_principal,
    success,
)
from crewlink_service.schemas import UpdateBookingRequest

if TYPE_CHECKING:
    from crewlink_service.services.booking_lifecycle import BookingManager

router = APIRouter()


def _booking_manager() -> BookingManager:
    state = get_app_state()
    if state.booking_manager is None:
        msg = "BookingManager not initialized"
        raise RuntimeError(msg)
    return state.booking_manager


@router.get("/bookings")
async def list_bookings(
    request: Request,
    status: str | None = None,
    limit: str | None = None,
    offset: str | None = None,
) -> dict[str, Any]:
    """List the caller's bookings as hirer or worker, newest first."""
    principal = require_principal(request)
    page_limit, page_offset = parse_pagination(limit, offset)
    result = _booking_manager().list_bookings(
        principal,
        status=status,
        limit=page_limit,
        offset=page_offset,
    )
    return success(result)


@router.get("/bookings/{booking_id}")
async def get_booking(booking_id: str, request: Request) -> dict[str, Any]:
    """Get one booking. Participants only."""
    principal = require_principal(request)
    return success(_booking_manager().get_booking(principal, booking_id))


# ---------------------------------------------------------------------------
# PATCH /bookings: status transition
# ---------------------------------------------------------------------------


@router.patch("/bookings")
async def update_booking(request: Request) -> JSONResponse:
    """Apply one booking transition."""
    principal = require_principal(request)
    body = await read_model(request, UpdateBookingRequest)
    check_max_length(body.cancel_reason, "cancelReason", get_settings().limits.max_reason_length)

    booking = _booking_manager().transition(
        principal,
        body.booking_id,
        body.status,
        cancel_reason=body.cancel_reason,
        final_amount=body.final_amount,
    )
    return JSONResponse(status_code=200, content=success(booking))
