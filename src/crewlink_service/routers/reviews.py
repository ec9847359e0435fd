"""Booking review endpoints."""

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
from crewlink_service.schemas import CreateReviewRequest

if TYPE_CHECKING:
    from crewlink_service.services.reviews import ReviewService

router = APIRouter()


def _review_service() -> ReviewService:
    state = get_app_state()
    if state.reviews is None:
        msg = "ReviewService not initialized"
        raise RuntimeError(msg)
    return state.reviews


@router.post("/reviews", status_code=201)
async def create_review(request: Request) -> JSONResponse:
    """Review the other party of a completed booking."""
    principal = require_principal(request)
    body = await read_model(request, CreateReviewRequest)

    limits = get_settings().limits
    check_max_length(body.title, "title", limits.max_title_length)
    check_max_length(body.content, "content", limits.max_review_length)

    review = _review_service().create_review(
        principal,
        body.booking_id,
        rating=body.rating,
        title=body.title,
        content=body.content,
        sub_ratings={
            "communication": body.communication_rating,
            "quality": body.quality_rating,
            "timeliness": body.timeliness_rating,
            "value": body.value_rating,
        },
    )
    return JSONResponse(status_code=201, content=success(review))


@router.get("/reviews")
async def list_reviews(
    request: Request,
    user_id: str | None = Query(default=None, alias="userId"),
    list_type: str = Query(default="received", alias="type"),
    limit: str | None = None,
    offset: str | None = None,
) -> dict[str, Any]:
    """List reviews received or given by a user, newest first."""
    principal = require_principal(request)
    page_limit, page_offset = parse_pagination(limit, offset)
    result = _review_service().list_reviews(
        principal,
        user_id=user_id,
        list_type=list_type,
        limit=page_limit,
        offset=page_offset,
    )
    return success(result)
