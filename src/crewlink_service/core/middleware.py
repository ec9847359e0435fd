"""ASGI middleware for request validation."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, cast

from fastapi.responses import JSONResponse

from crewlink_service.core.exceptions import error_envelope

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Receive, Scope, Send


_JSON_VALIDATION_ENDPOINTS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("POST", re.compile(r"^/jobs$")),
    ("POST", re.compile(r"^/jobs/[^/]+/status$")),
    ("POST", re.compile(r"^/jobs/[^/]+/bids$")),
    ("POST", re.compile(r"^/bids/[^/]+$")),
    ("PATCH", re.compile(r"^/bookings$")),
    ("POST", re.compile(r"^/payments/create-intent$")),
    ("POST", re.compile(r"^/payments/confirm$")),
    ("POST", re.compile(r"^/payments/refund$")),
    ("POST", re.compile(r"^/payments/webhook$")),
    ("POST", re.compile(r"^/notifications/read$")),
    ("POST", re.compile(r"^/conversations/[^/]+/messages$")),
    ("POST", re.compile(r"^/reviews$")),
)


class RequestValidationMiddleware:
    """
    ASGI middleware that validates Content-Type and body size.

    Runs before FastAPI routes. Returns 415 for a non-JSON content type on
    the JSON endpoints above, and 413 for oversized request bodies. The
    buffered body is replayed unchanged, so the webhook route still sees
    the exact bytes the processor signed.
    """

    def __init__(self, app: ASGIApp, max_body_size: int) -> None:
        self.app = app
        self.max_body_size = max_body_size

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        method = cast("str", scope.get("method", "GET"))

        if method not in ("POST", "PUT", "PATCH"):
            await self.app(scope, receive, send)
            return

        path = cast("str", scope.get("path", ""))
        raw_headers = cast("list[tuple[bytes, bytes]]", scope.get("headers", []))
        headers: dict[bytes, bytes] = dict(raw_headers)
        content_type = headers.get(b"content-type", b"").decode().lower()

        expects_json = any(
            candidate_method == method and pattern.match(path) is not None
            for candidate_method, pattern in _JSON_VALIDATION_ENDPOINTS
        )

        # Unknown endpoint/method combos should be handled by router as 404/405.
        if not expects_json:
            await self.app(scope, receive, send)
            return

        if not content_type.startswith("application/json"):
            response = JSONResponse(
                status_code=415,
                content=error_envelope(
                    "UNSUPPORTED_MEDIA_TYPE",
                    "Content-Type must be application/json",
                    {},
                ),
            )
            await response(scope, receive, send)
            return

        # Read and buffer body, checking size
        body_parts: list[bytes] = []
        body_size = 0

        while True:
            message = cast("dict[str, Any]", await receive())
            chunk = cast("bytes", message.get("body", b""))
            body_parts.append(chunk)
            body_size += len(chunk)

            if body_size > self.max_body_size:
                response = JSONResponse(
                    status_code=413,
                    content=error_envelope(
                        "PAYLOAD_TOO_LARGE",
                        "Request body exceeds maximum allowed size",
                        {},
                    ),
                )
                await response(scope, receive, send)
                return

            if not message.get("more_body", False):
                break

        # Replay buffered body for downstream app
        full_body = b"".join(body_parts)
        body_sent = False

        async def buffered_receive() -> dict[str, Any]:
            nonlocal body_sent
            if not body_sent:
                body_sent = True
                return {"type": "http.request", "body": full_body, "more_body": False}
            return {"type": "http.disconnect"}

        await self.app(scope, buffered_receive, send)
