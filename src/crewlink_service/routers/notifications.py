"""In-app notification endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from crewlink_service.core.state import get_app_state
from crewlink_service.routers.validation import (
    parse_bool,
    parse_pagination,
    read_model,
    require_principal,
    success,
)
from crewlink_service.schemas import MarkReadRequest

if TYPE_CHECKING:
    from crewlink_service.services.notifier import Notifier

router = APIRouter()


def _notifier() -> Notifier:
    state = get_app_state()
    if state.notifier is None:
        msg = "Notifier not initialized"
        raise RuntimeError(msg)
    return state.notifier


@router.get("/notifications")
async def list_notifications(
    request: Request,
    unread_only: str | None = Query(default=None, alias="unreadOnly"),
    limit: str | None = None,
    offset: str | None = None,
) -> dict[str, Any]:
    """List the caller's notifications, newest first."""
    principal = require_principal(request)
    page_limit, page_offset = parse_pagination(limit, offset)
    result = _notifier().list_notifications(
        principal,
        unread_only=parse_bool(unread_only, "unreadOnly"),
        limit=page_limit,
        offset=page_offset,
    )
    return success(result)


@router.post("/notifications/read")
async def mark_notifications_read(request: Request) -> JSONResponse:
    """Mark the given notifications read, or all of them when ``ids`` is omitted."""
    principal = require_principal(request)
    body = await read_model(request, MarkReadRequest)
    result = _notifier().mark_read(principal, body.ids)
    return JSONResponse(status_code=200, content=success(result))
