"""API key validation for operator endpoints."""
from __future__ import annotations

import hmac

from fastapi import Depends, Header, HTTPException, status

from paysync.config import ENV, get_settings
from paysync.utils.errors import error_response

_OPEN_ENVS = {"dev", "local", "test"}


def _extract_key(
    authorization: str | None = Header(default=None),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> str | None:
    """Read the key from ``Authorization: Bearer ...`` or ``X-API-Key``."""
    if x_api_key:
        return x_api_key.strip()
    if authorization and authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1].strip()
    return None


def require_api_key(token: str | None = Depends(_extract_key)) -> str:
    """Validate the operator API key; without a configured key only dev envs are open."""

    expected = get_settings().ADMIN_API_KEY
    if expected is None:
        if ENV in _OPEN_ENVS:
            return "anonymous"
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=error_response("API_KEY_NOT_CONFIGURED", "ADMIN_API_KEY must be set outside dev."),
        )
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("NO_API_KEY", "API key required."),
        )
    if not hmac.compare_digest(token, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("UNAUTHORIZED_API_KEY", "Invalid API key."),
        )
    return token
