"""Bid lookup and resolution endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from crewlink_service.core.state import get_app_state
from crewlink_service.routers.validation import read_model, require_principal, success
from crewlink_service.schemas import ResolveBidRequest

if TYPE_CHECKING:
    from crewlink_service.services.bid_resolution import BidResolver

router = APIRouter()


def _bid_resolver() -> BidResolver:
    state = get_app_state()
    if state.bid_resolver is None:
        msg = "BidResolver not initialized"
        raise RuntimeError(msg)
    return state.bid_resolver


@router.get("/bids/{bid_id}")
async def get_bid(bid_id: str, request: Request) -> dict[str, Any]:
    """Get one bid. Visible to the bidder and the job's poster."""
    principal = require_principal(request)
    return success(_bid_resolver().get_bid(principal, bid_id))


# ---------------------------------------------------------------------------
# POST /bids/{bid_id}: accept | reject | withdraw
# ---------------------------------------------------------------------------


@router.post("/bids/{bid_id}")
async def resolve_bid(bid_id: str, request: Request) -> JSONResponse:
    """Resolve a pending bid. Accepting opens the booking and conversation."""
    principal = require_principal(request)
    body = await read_model(request, ResolveBidRequest)
    result = await _bid_resolver().resolve_bid(principal, bid_id, body.action)
    return JSONResponse(status_code=200, content=success(result))
