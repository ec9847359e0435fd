"""Router test fixtures with a temporary database and mocked processor and email."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from crewlink_service.app import create_app
from crewlink_service.config import clear_settings_cache
from crewlink_service.core.exceptions import ServiceError
from crewlink_service.core.lifespan import lifespan
from crewlink_service.core.state import get_app_state, reset_app_state
from tests.helpers import write_config

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

INTENT_ID = "pi_test_123"
CLIENT_SECRET = "pi_test_123_secret_abc"
REFUND_ID = "re_test_456"


@pytest.fixture
async def app(tmp_path: Path) -> AsyncIterator[Any]:
    """Create a test app with temp database and mocked external services."""
    config_path = write_config(tmp_path)

    old_config = os.environ.get("CONFIG_PATH")
    os.environ["CONFIG_PATH"] = str(config_path)

    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with lifespan(test_app):
        state = get_app_state()

        # Processor calls are mocked; webhook signature verification stays real.
        gateway = state.payment_gateway
        gateway.create_hold = AsyncMock(
            return_value={"id": INTENT_ID, "client_secret": CLIENT_SECRET}
        )
        gateway.capture_hold = AsyncMock(return_value={"id": INTENT_ID, "status": "succeeded"})
        gateway.refund = AsyncMock(return_value={"id": REFUND_ID, "status": "succeeded"})

        mock_email = AsyncMock()
        mock_email.send_bid_accepted = AsyncMock(return_value=True)
        state.email_client = mock_email

        yield test_app

    reset_app_state()
    clear_settings_cache()
    if old_config is None:
        os.environ.pop("CONFIG_PATH", None)
    else:
        os.environ["CONFIG_PATH"] = old_config


@pytest.fixture
async def client(app: Any) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client for the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


# ---------------------------------------------------------------------------
# Mock override fixtures (use these to replace default mock behavior)
# ---------------------------------------------------------------------------
@pytest.fixture
def processor_unavailable(_app: Any) -> None:
    """Make every processor call fail the way the gateway reports it."""
    state = get_app_state()
    failure = ServiceError("UPSTREAM_FAILURE", "Payment processor request failed", 500, {})
    state.payment_gateway.create_hold = AsyncMock(side_effect=failure)
    state.payment_gateway.capture_hold = AsyncMock(side_effect=failure)
    state.payment_gateway.refund = AsyncMock(side_effect=failure)
