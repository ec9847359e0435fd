"""Session token verification and the authenticated principal."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, cast

from joserfc import jwt
from joserfc.errors import JoseError
from joserfc.jwk import OctKey

from crewlink_service.core.exceptions import ServiceError
from crewlink_service.logging import get_logger

Role = Literal["hirer", "worker"]

_VALID_ROLES: frozenset[str] = frozenset({"hirer", "worker"})


@dataclass(frozen=True)
class Principal:
    """The acting user, passed explicitly into every service operation."""

    user_id: str
    role: Role
    name: str | None = None
    email: str | None = None

    @property
    def is_hirer(self) -> bool:
        return self.role == "hirer"

    @property
    def is_worker(self) -> bool:
        return self.role == "worker"


def _unauthenticated(message: str) -> ServiceError:
    return ServiceError("UNAUTHENTICATED", message, 401, {})


class SessionVerifier:
    """
    Verifies HS-signed session JWTs issued by the login layer.

    Required claims: ``sub`` (user id), ``role`` (hirer | worker), ``exp``.
    Optional claims: ``name``, ``email``.
    """

    def __init__(self, secret: str, algorithm: str) -> None:
        self._key = OctKey.import_key(secret)
        self._algorithm = algorithm
        self._claims_registry = jwt.JWTClaimsRegistry(
            sub={"essential": True},
            exp={"essential": True},
        )
        self._logger = get_logger(__name__)

    def verify(self, token: str) -> Principal:
        """Decode and validate a session token, returning its principal."""
        try:
            decoded = jwt.decode(token, self._key, algorithms=[self._algorithm])
            self._claims_registry.validate(decoded.claims)
        except (JoseError, ValueError) as exc:
            self._logger.info("Session token rejected", extra={"reason": type(exc).__name__})
            raise _unauthenticated("Invalid or expired session") from exc

        claims = decoded.claims
        role = claims.get("role")
        if role not in _VALID_ROLES:
            raise _unauthenticated("Session has no valid role")

        user_id = claims["sub"]
        if not isinstance(user_id, str) or not user_id:
            raise _unauthenticated("Session has no subject")

        return Principal(
            user_id=user_id,
            role=cast("Role", role),
            name=claims.get("name"),
            email=claims.get("email"),
        )

    def authenticate(self, authorization: str | None) -> Principal:
        """Resolve the principal from an Authorization header value."""
        if authorization is None:
            raise _unauthenticated("Missing Authorization header")

        if not authorization.startswith("Bearer "):
            raise _unauthenticated("Authorization header must use Bearer scheme")

        token = authorization[len("Bearer ") :]
        if not token:
            raise _unauthenticated("Bearer token must not be empty")

        return self.verify(token)
