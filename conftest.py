"""Pytest fixture aliases used by unit test fixture helpers."""

from __future__ import annotations

from typing import Any

import pytest


@pytest.fixture(name="_app")
def fixture_app_alias(app: Any) -> Any:
    """Alias for fixtures that only need the app running, not its value."""
    return app
