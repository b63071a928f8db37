from __future__ import annotations

from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from warden.service.tokens import SessionClaims

# Stable error codes returned in error envelopes
ERROR_CODES = frozenset({
    "validation_error",
    "unauthorized",
    "forbidden",
    "not_found",
    "server_error",
    "service_unavailable",
})


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str = Field(..., description="Stable error code")
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in ERROR_CODES:
            raise ValueError(f"unknown error code: {value}")
        return value


class Envelope(BaseModel):
    """API envelope format."""

    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


class ClaimsOut(BaseModel):
    subject: str
    role: str
    issued_at: int
    expires_at: int
    token_id: str

    @classmethod
    def from_claims(cls, claims: SessionClaims) -> "ClaimsOut":
        return cls(
            subject=claims.subject,
            role=claims.role,
            issued_at=claims.issued_at,
            expires_at=claims.expires_at,
            token_id=claims.token_id,
        )
