"""Core infrastructure components."""

from crewlink_service.core.auth import Principal, SessionVerifier
from crewlink_service.core.exceptions import ServiceError
from crewlink_service.core.state import AppState, get_app_state, init_app_state

__all__ = [
    "AppState",
    "Principal",
    "ServiceError",
    "SessionVerifier",
    "get_app_state",
    "init_app_state",
]
