"""Shared request validation helpers for the routers."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel, ValidationError

from crewlink_service.config import get_settings
from crewlink_service.core.exceptions import ServiceError
from crewlink_service.core.state import get_app_state

if TYPE_CHECKING:
    from fastapi import Request

    from crewlink_service.core.auth import Principal

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_json_body(raw_body: bytes) -> dict[str, Any]:
    """Parse JSON body, raising ServiceError on failure."""
    try:
        data = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ServiceError(
            "INVALID_JSON",
            "Request body is not valid JSON",
            400,
            {},
        ) from exc

    if not isinstance(data, dict):
        raise ServiceError(
            "INVALID_JSON",
            "Request body must be a JSON object",
            400,
            {},
        )

    return data


async def read_model(request: Request, model: type[ModelT]) -> ModelT:
    """Read the request body as JSON and validate it against a request model."""
    data = parse_json_body(await request.body())
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        errors = [
            {
                "field": ".".join(str(part) for part in error["loc"]),
                "message": error["msg"],
            }
            for error in exc.errors()
        ]
        first = errors[0] if errors else {"field": "", "message": "Invalid request body"}
        raise ServiceError(
            "VALIDATION_ERROR",
            f"{first['field']}: {first['message']}" if first["field"] else first["message"],
            400,
            {"errors": errors},
        ) from exc


def check_max_length(value: str | None, field_name: str, limit: int) -> None:
    """Reject a string field longer than the configured limit."""
    if value is not None and len(value) > limit:
        raise ServiceError(
            "VALIDATION_ERROR",
            f"{field_name} must be {limit} characters or less",
            400,
            {"field": field_name, "max_length": limit},
        )


def _parse_int(raw: str | None, field_name: str, default: int) -> int:
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ServiceError(
            "VALIDATION_ERROR",
            f"{field_name} must be an integer",
            400,
            {"field": field_name},
        ) from exc


def parse_pagination(limit_raw: str | None, offset_raw: str | None) -> tuple[int, int]:
    """Resolve limit/offset query parameters against the configured page sizes."""
    limits = get_settings().limits
    limit = _parse_int(limit_raw, "limit", limits.default_page_size)
    offset = _parse_int(offset_raw, "offset", 0)
    if limit < 1 or limit > limits.max_page_size:
        raise ServiceError(
            "VALIDATION_ERROR",
            f"limit must be between 1 and {limits.max_page_size}",
            400,
            {"field": "limit"},
        )
    if offset < 0:
        raise ServiceError(
            "VALIDATION_ERROR",
            "offset must not be negative",
            400,
            {"field": "offset"},
        )
    return limit, offset


def parse_bool(raw: str | None, field_name: str) -> bool:
    """Parse a boolean query parameter (true/false/1/0)."""
    if raw is None or raw == "":
        return False
    lowered = raw.lower()
    if lowered in ("true", "1"):
        return True
    if lowered in ("false", "0"):
        return False
    raise ServiceError(
        "VALIDATION_ERROR",
        f"{field_name} must be true or false",
        400,
        {"field": field_name},
    )


def require_principal(request: Request) -> Principal:
    """Authenticate the request from its Authorization header."""
    state = get_app_state()
    if state.session_verifier is None:
        msg = "SessionVerifier not initialized"
        raise RuntimeError(msg)
    return state.session_verifier.authenticate(request.headers.get("authorization"))


def success(data: Any) -> dict[str, Any]:
    """Wrap a payload in the success envelope."""
    return {"success": True, "data": data}
