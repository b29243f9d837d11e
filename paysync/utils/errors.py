"""Error types and standardized error payloads."""
from typing import Any


class PaymentSyncError(Exception):
    """Base class for failures raised while syncing milestone payments."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AuthError(PaymentSyncError):
    """The backend rejected our credentials (HTTP 401/403)."""


class TransientError(PaymentSyncError):
    """Network failure or non-auth error response; safe to retry."""


class MalformedDataError(PaymentSyncError):
    """The backend answered with a payload we cannot interpret."""


def error_response(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return a standardized error payload."""

    payload: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        payload["error"]["details"] = details
    return payload


__all__ = [
    "PaymentSyncError",
    "AuthError",
    "TransientError",
    "MalformedDataError",
    "error_response",
]
