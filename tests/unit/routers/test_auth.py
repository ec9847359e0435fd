"""Session authentication tests across protected endpoints."""

from __future__ import annotations

import pytest

from tests.helpers import (
    HIRER_ID,
    auth_headers,
    hirer_headers,
    make_session_token,
)

PROTECTED_ENDPOINTS = [
    ("GET", "/bookings", None),
    ("GET", "/earnings", None),
    ("GET", "/notifications", None),
    ("GET", "/conversations", None),
    ("POST", "/jobs", {"title": "t", "description": "d"}),
    ("PATCH", "/bookings", {"bookingId": "bk-x", "status": "cancelled"}),
    ("POST", "/payments/create-intent", {"bookingId": "bk-x"}),
    ("POST", "/payments/refund", {"bookingId": "bk-x", "reason": "r"}),
]


async def _call(client, method, path, body, headers):
    return await client.request(method, path, json=body, headers=headers)


class TestSessionRequired:
    @pytest.mark.unit
    @pytest.mark.parametrize(("method", "path", "body"), PROTECTED_ENDPOINTS)
    async def test_missing_header_is_unauthenticated(self, client, method, path, body):
        response = await _call(client, method, path, body, {})
        assert response.status_code == 401
        assert response.json()["error"] == "UNAUTHENTICATED"

    @pytest.mark.unit
    async def test_wrong_scheme(self, client):
        token = make_session_token(HIRER_ID, "hirer")
        response = await client.get("/bookings", headers={"Authorization": f"Token {token}"})
        assert response.status_code == 401

    @pytest.mark.unit
    async def test_empty_bearer(self, client):
        response = await client.get("/bookings", headers={"Authorization": "Bearer "})
        assert response.status_code == 401

    @pytest.mark.unit
    async def test_expired_token(self, client):
        response = await client.get("/bookings", headers=hirer_headers(expires_in=-60))
        assert response.status_code == 401
        assert response.json()["message"] == "Invalid or expired session"

    @pytest.mark.unit
    async def test_token_signed_with_other_secret(self, client):
        headers = hirer_headers(secret="some-other-secret-0123456789abcdef")
        response = await client.get("/bookings", headers=headers)
        assert response.status_code == 401

    @pytest.mark.unit
    async def test_garbage_token(self, client):
        response = await client.get("/bookings", headers={"Authorization": "Bearer not.a.jwt"})
        assert response.status_code == 401

    @pytest.mark.unit
    async def test_unknown_role(self, client):
        response = await client.get("/bookings", headers=auth_headers(HIRER_ID, "admin"))
        assert response.status_code == 401
        assert response.json()["message"] == "Session has no valid role"

    @pytest.mark.unit
    async def test_valid_session_is_accepted(self, client):
        response = await client.get("/bookings", headers=hirer_headers())
        assert response.status_code == 200


class TestPublicEndpoints:
    @pytest.mark.unit
    async def test_job_listing_is_public(self, client):
        response = await client.get("/jobs")
        assert response.status_code == 200

    @pytest.mark.unit
    async def test_single_job_is_public(self, client):
        response = await client.get("/jobs/job-missing")
        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"
