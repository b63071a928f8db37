from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each exception class defines both an HTTP status_code and a stable
    error_code:
    - unauthorized (401)
    - server_error (500)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class TokenError(AuthenticationError):
    """Session claims could not be verified.

    ``reason`` is kept for logs and metrics only; the HTTP boundary reports
    every subclass as the same ``unauthorized`` outcome.
    """

    reason: str = "invalid"


class MalformedTokenError(TokenError):
    """Token structure or claim payload cannot be decoded."""
    reason = "malformed"


class InvalidSignatureError(TokenError):
    """Token signature does not match the configured secret."""
    reason = "invalid_signature"


class ExpiredTokenError(TokenError):
    """Token was correctly signed but its expiry has passed."""
    reason = "expired"


class ConfigurationError(ServiceError):
    """Unusable configuration detected at first use (500)."""
    status_code = 500
    error_code = "server_error"


__all__ = [
    "ServiceError",
    "AuthenticationError",
    "TokenError",
    "MalformedTokenError",
    "InvalidSignatureError",
    "ExpiredTokenError",
    "ConfigurationError",
]
