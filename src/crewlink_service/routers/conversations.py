"""Conversation thread and message endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from crewlink_service.config import get_settings
from crewlink_service.core.state import get_app_state
from crewlink_service.routers.validation import (
    check_max_length,
    read_model,
    require_principal,
    success,
)
from crewlink_service.schemas import PostMessageRequest

if TYPE_CHECKING:
    from crewlink_service.services.conversations import ConversationService

router = APIRouter()


def _conversations() -> ConversationService:
    state = get_app_state()
    if state.conversations is None:
        msg = "ConversationService not initialized"
        raise RuntimeError(msg)
    return state.conversations


@router.get("/conversations")
async def list_conversations(request: Request) -> dict[str, Any]:
    """List the caller's conversation threads."""
    principal = require_principal(request)
    return success(_conversations().list_threads(principal))


@router.get("/conversations/{conversation_id}/messages")
async def list_messages(conversation_id: str, request: Request) -> dict[str, Any]:
    """List a thread's messages, oldest first."""
    principal = require_principal(request)
    return success(_conversations().list_messages(principal, conversation_id))


@router.post("/conversations/{conversation_id}/messages", status_code=201)
async def post_message(conversation_id: str, request: Request) -> JSONResponse:
    """Append a message to a thread."""
    principal = require_principal(request)
    body = await read_model(request, PostMessageRequest)
    check_max_length(body.content, "content", get_settings().limits.max_message_length)
    message = _conversations().post_message(principal, conversation_id, body.content)
    return JSONResponse(status_code=201, content=success(message))
