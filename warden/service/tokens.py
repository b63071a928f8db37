from __future__ import annotations

import base64
import hashlib
import hmac
import json
import math
import secrets
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple

from argon2 import Parameters, PasswordHasher, Type, extract_parameters
from argon2.exceptions import InvalidHash, VerificationError

from warden.config import MIN_JWT_SECRET_LENGTH, Settings
from warden.logging import get_logger
from warden.service.errors import (
    ConfigurationError,
    ExpiredTokenError,
    InvalidSignatureError,
    MalformedTokenError,
)

logger = get_logger(__name__)

JWT_ALGORITHM = "HS256"
REFRESH_TOKEN_SEPARATOR = "."
SESSION_ID_BYTES = 16
REFRESH_SECRET_BYTES = 32

Clock = Callable[[], float]
RandomBytes = Callable[[int], bytes]


@dataclass(frozen=True)
class SessionClaims:
    subject: str
    role: str
    issued_at: int
    expires_at: int
    token_id: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "sub": self.subject,
            "role": self.role,
            "iat": self.issued_at,
            "exp": self.expires_at,
            "jti": self.token_id,
        }

    @classmethod
    def from_payload(cls, payload: Any) -> "SessionClaims":
        """Build claims from a decoded payload, rejecting missing or mistyped fields."""
        if not isinstance(payload, dict):
            raise MalformedTokenError("claims payload must be a JSON object")
        for name in ("sub", "role", "jti"):
            if not isinstance(payload.get(name), str) or not payload[name]:
                raise MalformedTokenError(f"claim '{name}' missing or not a string")
        for name in ("iat", "exp"):
            value = payload.get(name)
            # bool is an int subclass; reject it explicitly
            if not isinstance(value, int) or isinstance(value, bool):
                raise MalformedTokenError(f"claim '{name}' missing or not an integer")
        return cls(
            subject=payload["sub"],
            role=payload["role"],
            issued_at=payload["iat"],
            expires_at=payload["exp"],
            token_id=payload["jti"],
        )


@dataclass(frozen=True)
class RefreshCredential:
    session_id: uuid.UUID
    secret: str


@dataclass(frozen=True)
class RefreshCredentialHash:
    session_id: uuid.UUID
    hash: str


class TokenAuthority:
    """Issues and verifies signed session claims and refresh credentials.

    Purely computational: no I/O and no persistence. Persisting refresh
    credential hashes and consulting the revocation list are left to the
    caller. The clock and the random source are injected so tests can pin
    time and entropy.
    """

    def __init__(
        self,
        secret: str,
        *,
        access_ttl_seconds: int,
        leeway_seconds: int = 0,
        clock: Optional[Clock] = None,
        random_bytes: Optional[RandomBytes] = None,
        hasher: Optional[PasswordHasher] = None,
    ) -> None:
        if not secret or len(secret.encode()) < MIN_JWT_SECRET_LENGTH:
            raise ConfigurationError(
                f"signing secret must be at least {MIN_JWT_SECRET_LENGTH} bytes"
            )
        if access_ttl_seconds <= 0:
            raise ConfigurationError("access token TTL must be positive")
        if leeway_seconds < 0:
            raise ConfigurationError("expiry leeway must not be negative")
        self._key = secret.encode()
        self.access_ttl_seconds = int(access_ttl_seconds)
        self.leeway_seconds = int(leeway_seconds)
        self._clock: Clock = clock or time.time
        self._random_bytes: RandomBytes = random_bytes or secrets.token_bytes
        self._hasher = hasher or PasswordHasher(type=Type.ID)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        clock: Optional[Clock] = None,
        random_bytes: Optional[RandomBytes] = None,
    ) -> "TokenAuthority":
        hasher = PasswordHasher(
            time_cost=settings.argon2_time_cost,
            memory_cost=settings.argon2_memory_cost,
            parallelism=settings.argon2_parallelism,
            type=Type.ID,
        )
        return cls(
            settings.jwt_secret,
            access_ttl_seconds=settings.access_token_ttl_seconds,
            leeway_seconds=settings.jwt_leeway_seconds,
            clock=clock,
            random_bytes=random_bytes,
            hasher=hasher,
        )

    # ------------------------------------------------------------------
    # Session claims
    # ------------------------------------------------------------------

    def issue(self, subject: str, role: str) -> str:
        token, _ = self.issue_claims(subject, role)
        return token

    def issue_claims(self, subject: str, role: str) -> Tuple[str, SessionClaims]:
        """Issue a signed token and return it with the claims it carries.

        The claims include a random ``token_id`` so the token can later be
        revoked through the coordination store's blacklist.
        """
        now = int(self._clock())
        claims = SessionClaims(
            subject=subject,
            role=role,
            issued_at=now,
            expires_at=now + self.access_ttl_seconds,
            token_id=self._new_uuid().hex,
        )
        return self._encode_jwt(claims.to_payload()), claims

    def verify(self, token: str) -> SessionClaims:
        """Decode a token, check its signature, then its expiry.

        Raises:
            MalformedTokenError: structure or payload cannot be decoded
            InvalidSignatureError: algorithm or signature does not match
            ExpiredTokenError: signature is valid but the token has expired
        """
        if not isinstance(token, str):
            raise MalformedTokenError("token must be a string")
        if not token.isascii():
            raise MalformedTokenError("token must be ASCII")
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            raise MalformedTokenError("token must have three segments") from None

        header = self._decode_json_segment(header_b64, "header")
        if not isinstance(header, dict):
            raise MalformedTokenError("token header must be a JSON object")
        if header.get("alg") != JWT_ALGORITHM:
            logger.warning("jwt_invalid_algorithm", alg=str(header.get("alg")))
            raise InvalidSignatureError("unsupported signing algorithm")

        expected_sig = self._sign(f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(expected_sig.encode(), sig_b64.encode("utf-8")):
            raise InvalidSignatureError("signature mismatch")

        claims = SessionClaims.from_payload(
            self._decode_json_segment(payload_b64, "payload")
        )
        if self._clock() >= claims.expires_at + self.leeway_seconds:
            raise ExpiredTokenError(
                "token expired", detail={"expired_at": claims.expires_at}
            )
        return claims

    def remaining_validity(self, claims: SessionClaims) -> int:
        """Seconds until the claims expire; the TTL for a revocation marker."""
        return max(0, math.ceil(claims.expires_at - self._clock()))

    def _encode_segment(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _decode_segment(self, segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _decode_json_segment(self, segment: str, part: str) -> Any:
        try:
            return json.loads(self._decode_segment(segment))
        except ValueError:
            # binascii, unicode and JSON decode errors are all ValueErrors
            raise MalformedTokenError(f"token {part} is not valid base64 JSON") from None

    def _sign(self, signing_input: str) -> str:
        digest = hmac.new(self._key, signing_input.encode(), hashlib.sha256).digest()
        return self._encode_segment(digest)

    def _encode_jwt(self, payload: dict[str, Any]) -> str:
        header = {"alg": JWT_ALGORITHM, "typ": "JWT"}
        header_enc = self._encode_segment(
            json.dumps(header, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}"

    # ------------------------------------------------------------------
    # Refresh credentials
    # ------------------------------------------------------------------

    def _new_uuid(self) -> uuid.UUID:
        return uuid.UUID(bytes=self._random_bytes(SESSION_ID_BYTES), version=4)

    def create_refresh_credential(self) -> Tuple[RefreshCredential, RefreshCredentialHash]:
        """Generate a session id and secret, returning plaintext and hashed forms.

        The plaintext secret is handed back once for delivery to the client;
        only the argon2id hash is meant to be persisted.
        """
        session_id = self._new_uuid()
        secret = base64.b64encode(self._random_bytes(REFRESH_SECRET_BYTES)).decode("ascii")
        digest = self._hasher.hash(secret)
        logger.debug("refresh_credential_created", session_id=str(session_id))
        return (
            RefreshCredential(session_id=session_id, secret=secret),
            RefreshCredentialHash(session_id=session_id, hash=digest),
        )

    @staticmethod
    def format_refresh_token(session_id: uuid.UUID, secret: str) -> str:
        return f"{session_id}{REFRESH_TOKEN_SEPARATOR}{secret}"

    @staticmethod
    def parse_refresh_token(token: str) -> Optional[RefreshCredential]:
        """Split ``<session-uuid>.<secret>``; ``None`` on any malformed input."""
        if not isinstance(token, str) or not token:
            return None
        session_part, sep, secret = token.partition(REFRESH_TOKEN_SEPARATOR)
        if not sep or not secret:
            return None
        try:
            session_id = uuid.UUID(session_part)
        except ValueError:
            return None
        # uuid.UUID also accepts braces, urn: and unhyphenated forms
        if str(session_id) != session_part.lower():
            return None
        return RefreshCredential(session_id=session_id, secret=secret)

    def verify_refresh_secret(self, secret: str, stored_hash: str) -> bool:
        if not isinstance(secret, str) or not isinstance(stored_hash, str):
            return False
        try:
            return self._hasher.verify(stored_hash, secret)
        except (InvalidHash, VerificationError, UnicodeError):
            return False

    def refresh_hash_needs_rehash(self, stored_hash: str) -> bool:
        """True when the hash was made with different argon2 parameters."""
        try:
            return self._hasher.check_needs_rehash(stored_hash)
        except (InvalidHash, ValueError, TypeError):
            return True

    @staticmethod
    def describe_refresh_hash(stored_hash: str) -> Optional[Parameters]:
        """Parse the algorithm parameters out of a stored hash string."""
        try:
            return extract_parameters(stored_hash)
        except (InvalidHash, ValueError, TypeError):
            return None
