"""Escrow payment endpoints, the processor webhook, and the caller's ledger."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Query, Request
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
from crewlink_service.schemas import BookingPaymentRequest, RefundRequest

if TYPE_CHECKING:
    from crewlink_service.services.escrow_payments import EscrowPayments

router = APIRouter()


def _escrow_payments() -> EscrowPayments:
    state = get_app_state()
    if state.escrow_payments is None:
        msg = "EscrowPayments not initialized"
        raise RuntimeError(msg)
    return state.escrow_payments


@router.post("/payments/create-intent")
async def create_intent(request: Request) -> JSONResponse:
    """Open the escrow hold for a booking and return the client secret."""
    principal = require_principal(request)
    body = await read_model(request, BookingPaymentRequest)
    result = await _escrow_payments().create_hold(principal, body.booking_id)
    return JSONResponse(status_code=200, content=success(result))


@router.post("/payments/confirm")
async def confirm_payment(request: Request) -> JSONResponse:
    """Capture the held charge of a completed booking."""
    principal = require_principal(request)
    body = await read_model(request, BookingPaymentRequest)
    result = await _escrow_payments().capture_hold(principal, body.booking_id)
    return JSONResponse(status_code=200, content=success(result))


@router.post("/payments/refund")
async def refund_payment(request: Request) -> JSONResponse:
    """Refund a paid booking in full."""
    principal = require_principal(request)
    body = await read_model(request, RefundRequest)
    check_max_length(body.reason, "reason", get_settings().limits.max_reason_length)
    result = await _escrow_payments().issue_refund(principal, body.booking_id, body.reason)
    return JSONResponse(status_code=200, content=success(result))


# ---------------------------------------------------------------------------
# POST /payments/webhook: processor callback (signature-verified, no session)
# ---------------------------------------------------------------------------


@router.post("/payments/webhook")
async def payment_webhook(request: Request) -> JSONResponse:
    """Apply a signed processor event."""
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    result = _escrow_payments().handle_webhook(payload, signature)
    return JSONResponse(status_code=200, content=success(result))


@router.get("/earnings")
async def get_earnings(request: Request) -> dict[str, Any]:
    """Return the caller's earnings or spend counters."""
    principal = require_principal(request)
    return success(_escrow_payments().earnings(principal))


@router.get("/transactions")
async def list_transactions(
    request: Request,
    record_type: str | None = Query(default=None, alias="type"),
    limit: str | None = None,
    offset: str | None = None,
) -> dict[str, Any]:
    """List the caller's payment ledger entries, newest first."""
    principal = require_principal(request)
    page_limit, page_offset = parse_pagination(limit, offset)
    result = _escrow_payments().list_transactions(
        principal,
        record_type=record_type,
        limit=page_limit,
        offset=page_offset,
    )
    return success(result)
