"""Job posting, listing, status, and bid submission endpoints."""

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
from crewlink_service.schemas import CreateJobRequest, JobStatusRequest, SubmitBidRequest

if TYPE_CHECKING:
    from crewlink_service.services.job_board import JobBoard

router = APIRouter()


def _job_board() -> JobBoard:
    state = get_app_state()
    if state.job_board is None:
        msg = "JobBoard not initialized"
        raise RuntimeError(msg)
    return state.job_board


# ---------------------------------------------------------------------------
# POST /jobs: create job
# ---------------------------------------------------------------------------


@router.post("/jobs", status_code=201)
async def create_job(request: Request) -> JSONResponse:
    """Create a job as the authenticated hirer."""
    principal = require_principal(request)
    body = await read_model(request, CreateJobRequest)

    limits = get_settings().limits
    check_max_length(body.title, "title", limits.max_title_length)
    check_max_length(body.description, "description", limits.max_description_length)

    job = _job_board().create_job(
        principal,
        title=body.title,
        description=body.description,
        category=body.category,
        budget=body.budget,
        publish=body.publish,
    )
    return JSONResponse(status_code=201, content=success(job))


# ---------------------------------------------------------------------------
# GET /jobs: list jobs
# ---------------------------------------------------------------------------


@router.get("/jobs")
async def list_jobs(
    status: str | None = None,
    poster_id: str | None = Query(default=None, alias="posterId"),
    limit: str | None = None,
    offset: str | None = None,
) -> dict[str, Any]:
    """List jobs, newest first. Public."""
    page_limit, page_offset = parse_pagination(limit, offset)
    result = _job_board().list_jobs(
        status=status,
        poster_id=poster_id,
        limit=page_limit,
        offset=page_offset,
    )
    return success(result)


@router.get("/jobs/{job_id}")
async def get_job(job_id: str) -> dict[str, Any]:
    """Get one job. Public."""
    return success(_job_board().get_job(job_id))


# ---------------------------------------------------------------------------
# POST /jobs/{job_id}/status: manual job transition
# ---------------------------------------------------------------------------


@router.post("/jobs/{job_id}/status")
async def update_job_status(job_id: str, request: Request) -> JSONResponse:
    """Move a job along the job status table."""
    principal = require_principal(request)
    body = await read_model(request, JobStatusRequest)
    job = _job_board().transition_job(principal, job_id, body.status)
    return JSONResponse(status_code=200, content=success(job))


# ---------------------------------------------------------------------------
# POST /jobs/{job_id}/bids: submit bid
# MUST be before GET /jobs/{job_id}/bids
# ---------------------------------------------------------------------------


@router.post("/jobs/{job_id}/bids", status_code=201)
async def submit_bid(job_id: str, request: Request) -> JSONResponse:
    """Submit a bid on a posted job as the authenticated worker."""
    principal = require_principal(request)
    body = await read_model(request, SubmitBidRequest)
    check_max_length(body.message, "message", get_settings().limits.max_bid_message_length)

    state = get_app_state()
    if state.bid_resolver is None:
        msg = "BidResolver not initialized"
        raise RuntimeError(msg)

    bid = state.bid_resolver.submit_bid(
        principal,
        job_id,
        amount=body.amount,
        message=body.message,
        estimated_hours=body.estimated_hours,
    )
    return JSONResponse(status_code=201, content=success(bid))


@router.get("/jobs/{job_id}/bids")
async def list_job_bids(job_id: str, request: Request) -> dict[str, Any]:
    """List every bid on a job. Poster only."""
    principal = require_principal(request)
    return success(_job_board().list_job_bids(principal, job_id))
