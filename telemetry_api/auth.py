"""Capability checks for write endpoints.

There is a single credential, ``ADMIN_API_KEY``, presented either as
``X-API-Key`` or as ``Authorization: Bearer <key>``. It grants every
capability. In development, with no key configured, writes are allowed with a
warning; in production a missing key is a server misconfiguration.
"""

from __future__ import annotations

import hmac
import logging
from enum import Enum
from typing import Callable, FrozenSet, Optional

from fastapi import Header, Request

from .errors import AuthorizationError, TelemetryError

logger = logging.getLogger(__name__)


class Capability(str, Enum):
    SENSORS_WRITE = "sensors:write"


class Role(str, Enum):
    ADMIN = "admin"
    READ_ONLY = "read_only"


ROLE_CAPABILITIES = {
    Role.ADMIN: frozenset(Capability),
    Role.READ_ONLY: frozenset(),
}


def _presented_key(x_api_key: Optional[str], authorization: Optional[str]) -> Optional[str]:
    if x_api_key:
        return x_api_key
    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() == "bearer" and token.strip():
            return token.strip()
    return None


def resolve_role(expected: Optional[str], presented: Optional[str], is_production: bool) -> Role:
    if not expected:
        if is_production:
            logger.error("CRITICAL: ADMIN_API_KEY not configured in production!")
            raise TelemetryError("Server misconfiguration: API key not set", status_code=500)
        logger.warning("[SECURITY WARNING] ADMIN_API_KEY not set - allowing unauthenticated writes (DEV ONLY)")
        return Role.ADMIN

    if not presented:
        raise AuthorizationError("API key required")
    if not hmac.compare_digest(presented.encode(), expected.encode()):
        logger.warning("Invalid API key attempt from request")
        raise AuthorizationError.forbidden("Invalid API key")
    return Role.ADMIN


def require(capability: Capability) -> Callable[..., Role]:
    """FastAPI dependency factory: ``Depends(require(Capability.SENSORS_WRITE))``."""

    def dependency(
        request: Request,
        x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
        authorization: Optional[str] = Header(default=None),
    ) -> Role:
        settings = request.app.state.services.settings
        role = resolve_role(
            settings.admin_api_key,
            _presented_key(x_api_key, authorization),
            settings.is_production,
        )
        granted: FrozenSet[Capability] = ROLE_CAPABILITIES[role]
        if capability not in granted:
            raise AuthorizationError.forbidden()
        return role

    return dependency
