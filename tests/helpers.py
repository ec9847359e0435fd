"""Shared test helpers for session tokens, processor signatures, and API flows."""

from __future__ import annotations

import hashlib
import hmac
import time
from typing import TYPE_CHECKING, Any

from joserfc import jwt
from joserfc.jwk import OctKey

if TYPE_CHECKING:
    from pathlib import Path

    from httpx import AsyncClient, Response

TEST_SESSION_SECRET = "test-session-secret-0123456789abcdef"
TEST_WEBHOOK_SECRET = "whsec_test_secret_value"

HIRER_ID = "usr-hirer-alice"
OTHER_HIRER_ID = "usr-hirer-dave"
WORKER_ID = "usr-worker-bob"
OTHER_WORKER_ID = "usr-worker-carol"


def write_config(
    tmp_path: Path,
    *,
    webhook_secret: str | None = TEST_WEBHOOK_SECRET,
    max_body_size: int = 1048576,
) -> Path:
    """Write a complete test config.yaml under tmp_path and return its path."""
    webhook_line = f'"{webhook_secret}"' if webhook_secret is not None else "null"
    config_content = f"""\
service:
  name: "crewlink"
  version: "0.1.0"
server:
  host: "127.0.0.1"
  port: 8080
  log_level: "info"
logging:
  level: "WARNING"
  directory: "{tmp_path / "logs"}"
database:
  path: "{tmp_path / "crewlink.db"}"
auth:
  session_secret: "{TEST_SESSION_SECRET}"
  algorithm: "HS256"
payments:
  provider: "stripe"
  secret_key: "sk_test_dummy"
  webhook_secret: {webhook_line}
  currency: "usd"
email:
  enabled: false
  api_key: null
  from_address: "CrewLink <noreply@crewlink.test>"
  app_base_url: "http://crewlink.test"
request:
  max_body_size: {max_body_size}
limits:
  max_title_length: 200
  max_description_length: 10000
  max_bid_message_length: 2000
  max_reason_length: 500
  max_message_length: 5000
  max_review_length: 2000
  default_page_size: 20
  max_page_size: 100
"""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(config_content)
    return config_path


def make_session_token(
    user_id: str,
    role: str,
    *,
    secret: str = TEST_SESSION_SECRET,
    name: str | None = None,
    email: str | None = None,
    expires_in: int = 3600,
    extra_claims: dict[str, Any] | None = None,
) -> str:
    """Create an HS256 session token the way the login layer mints them."""
    claims: dict[str, Any] = {
        "sub": user_id,
        "role": role,
        "iat": int(time.time()),
        "exp": int(time.time()) + expires_in,
    }
    if name is not None:
        claims["name"] = name
    if email is not None:
        claims["email"] = email
    if extra_claims:
        claims.update(extra_claims)
    return jwt.encode({"alg": "HS256"}, claims, OctKey.import_key(secret))


def auth_headers(user_id: str, role: str, **token_kwargs: Any) -> dict[str, str]:
    """Authorization header for a user."""
    return {"Authorization": f"Bearer {make_session_token(user_id, role, **token_kwargs)}"}


def hirer_headers(user_id: str = HIRER_ID, **token_kwargs: Any) -> dict[str, str]:
    return auth_headers(user_id, "hirer", **token_kwargs)


def worker_headers(user_id: str = WORKER_ID, **token_kwargs: Any) -> dict[str, str]:
    return auth_headers(user_id, "worker", **token_kwargs)


def sign_webhook_payload(
    payload: bytes,
    secret: str = TEST_WEBHOOK_SECRET,
    timestamp: int | None = None,
) -> str:
    """Build a Stripe-Signature header value for a raw payload."""
    if timestamp is None:
        timestamp = int(time.time())
    signed = f"{timestamp}.".encode() + payload
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def payment_intent_event(
    event_type: str,
    intent_id: str,
    *,
    booking_id: str | None,
    hirer_id: str | None = HIRER_ID,
    job_title: str = "Fix the fence",
) -> dict[str, Any]:
    """A minimal processor event carrying a PaymentIntent."""
    metadata: dict[str, str] = {"jobTitle": job_title}
    if booking_id is not None:
        metadata["bookingId"] = booking_id
    if hirer_id is not None:
        metadata["hirerId"] = hirer_id
    return {
        "id": f"evt_{intent_id}",
        "object": "event",
        "type": event_type,
        "data": {"object": {"id": intent_id, "object": "payment_intent", "metadata": metadata}},
    }


# ---------------------------------------------------------------------------
# API flow helpers
# ---------------------------------------------------------------------------


async def create_job(
    client: AsyncClient,
    hirer_id: str = HIRER_ID,
    *,
    title: str = "Fix the fence",
    description: str = "Three broken panels on the back fence",
    budget: float | None = 200.0,
    publish: bool = True,
) -> Response:
    """Create a job via POST /jobs."""
    body: dict[str, Any] = {"title": title, "description": description, "publish": publish}
    if budget is not None:
        body["budget"] = budget
    return await client.post("/jobs", json=body, headers=hirer_headers(hirer_id))


async def submit_bid(
    client: AsyncClient,
    job_id: str,
    worker_id: str = WORKER_ID,
    *,
    amount: float = 150.0,
    message: str | None = "I can do this tomorrow",
    estimated_hours: float | None = 4.0,
) -> Response:
    """Submit a bid via POST /jobs/{job_id}/bids."""
    body: dict[str, Any] = {"amount": amount}
    if message is not None:
        body["message"] = message
    if estimated_hours is not None:
        body["estimatedHours"] = estimated_hours
    return await client.post(
        f"/jobs/{job_id}/bids",
        json=body,
        headers=worker_headers(worker_id, email=f"{worker_id}@example.com", name="Bob"),
    )


async def resolve_bid(
    client: AsyncClient,
    bid_id: str,
    action: str,
    headers: dict[str, str],
) -> Response:
    """Accept, reject, or withdraw via POST /bids/{bid_id}."""
    return await client.post(f"/bids/{bid_id}", json={"action": action}, headers=headers)


async def transition_booking(
    client: AsyncClient,
    booking_id: str,
    status: str,
    headers: dict[str, str],
    **extra: Any,
) -> Response:
    """Transition a booking via PATCH /bookings."""
    body: dict[str, Any] = {"bookingId": booking_id, "status": status, **extra}
    return await client.patch("/bookings", json=body, headers=headers)


async def setup_booking(
    client: AsyncClient,
    *,
    amount: float = 150.0,
) -> dict[str, str]:
    """Create a job, bid on it, and accept the bid. Returns the IDs involved."""
    job_resp = await create_job(client)
    assert job_resp.status_code == 201, job_resp.text
    job_id = job_resp.json()["data"]["id"]

    bid_resp = await submit_bid(client, job_id, amount=amount)
    assert bid_resp.status_code == 201, bid_resp.text
    bid_id = bid_resp.json()["data"]["id"]

    accept_resp = await resolve_bid(client, bid_id, "accept", hirer_headers())
    assert accept_resp.status_code == 200, accept_resp.text
    data = accept_resp.json()["data"]
    return {
        "job_id": job_id,
        "bid_id": bid_id,
        "booking_id": data["bookingId"],
        "conversation_id": data["conversationId"],
    }


async def setup_completed_booking(client: AsyncClient, *, amount: float = 150.0) -> dict[str, str]:
    """Create a booking, open the escrow hold, and take it to completed."""
    ids = await setup_booking(client, amount=amount)
    booking_id = ids["booking_id"]

    hold = await client.post(
        "/payments/create-intent",
        json={"bookingId": booking_id},
        headers=hirer_headers(),
    )
    assert hold.status_code == 200, hold.text

    started = await transition_booking(client, booking_id, "in_progress", worker_headers())
    assert started.status_code == 200, started.text
    completed = await transition_booking(client, booking_id, "completed", hirer_headers())
    assert completed.status_code == 200, completed.text
    return ids
