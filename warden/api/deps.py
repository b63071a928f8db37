from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header

from warden.logging import get_logger
from warden.service.errors import AuthenticationError, TokenError
from warden.service.runtime import Runtime, get_runtime
from warden.service.tokens import SessionClaims

logger = get_logger(__name__)

_UNAUTHORIZED = "invalid or expired credentials"


def extract_bearer(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    scheme, _, value = header.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


async def authenticate_token(runtime: Runtime, token: Optional[str]) -> SessionClaims:
    """Verify a bearer token and check it has not been revoked.

    Every failure is reported as the same AuthenticationError so callers
    cannot tell a forged token from an expired or revoked one. The precise
    reason goes to the log. Store outages propagate unchanged: an
    unreachable blacklist is not evidence that a token is still valid.
    """
    if not token:
        logger.info("access_token_rejected", reason="missing")
        raise AuthenticationError(_UNAUTHORIZED)
    try:
        claims = runtime.tokens.verify(token)
    except TokenError as exc:
        logger.info("access_token_rejected", reason=exc.reason)
        raise AuthenticationError(_UNAUTHORIZED) from None
    if await runtime.store.is_token_blacklisted(claims.token_id):
        logger.info(
            "access_token_rejected",
            reason="revoked",
            token_id=claims.token_id,
            subject=claims.subject,
        )
        raise AuthenticationError(_UNAUTHORIZED)
    return claims


async def require_claims(
    authorization: Optional[str] = Header(default=None),
    runtime: Runtime = Depends(get_runtime),
) -> SessionClaims:
    return await authenticate_token(runtime, extract_bearer(authorization))
