from __future__ import annotations

import contextlib
import json
import uuid
from typing import Any, Optional

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from warden.logging import get_logger
from warden.storage.errors import CorruptEntryError, StoreError, StoreUnavailableError

logger = get_logger(__name__)

BLACKLIST_NAMESPACE = "jwt:blacklist:"


class CoordinationStore:
    """Namespaced JSON values, counters, locks and a token blacklist on Redis.

    All keys are written as ``<prefix>:<key>``. The store serializes
    concurrent atomic operations itself; this class keeps no local locks
    and performs no retries. Connection failures surface as
    ``StoreUnavailableError``.
    """

    # Arms the TTL only on the call that created the counter, in one round trip
    _INCREMENT_SCRIPT = """
local created = redis.call('EXISTS', KEYS[1]) == 0
local value = redis.call('INCRBY', KEYS[1], ARGV[1])
local ttl = tonumber(ARGV[2])
if created and ttl > 0 then
  redis.call('EXPIRE', KEYS[1], ttl)
end
return value
"""

    # Compare-and-delete so a stale holder cannot drop a newer holder's lock
    _RELEASE_LOCK_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
  return redis.call('DEL', KEYS[1])
end
return 0
"""

    def __init__(self, client: aioredis.Redis, prefix: str):
        if not prefix:
            raise ValueError("key prefix must be non-empty")
        self.client = client
        self.prefix = prefix
        self._increment = self.client.register_script(self._INCREMENT_SCRIPT)
        self._release_lock = self.client.register_script(self._RELEASE_LOCK_SCRIPT)

    @classmethod
    def from_url(
        cls, redis_url: str, prefix: str, *, socket_timeout: float = 5.0
    ) -> "CoordinationStore":
        client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client, prefix)

    def key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    @staticmethod
    def _ttl_seconds(ttl_seconds: Optional[int], *, required: bool = False) -> Optional[int]:
        if ttl_seconds is None:
            if required:
                raise ValueError("ttl_seconds is required")
            return None
        ttl = int(ttl_seconds)
        if ttl <= 0:
            raise ValueError("ttl_seconds must be positive")
        return ttl

    @contextlib.asynccontextmanager
    async def _command(self, op: str, key: str):
        """Translate client failures into store errors for one round trip."""
        try:
            yield
        except (RedisConnectionError, RedisTimeoutError) as exc:
            logger.warning("coordination_store_unavailable", op=op, key=key, error=str(exc))
            raise StoreUnavailableError(
                "coordination store unavailable", {"op": op, "key": key}
            ) from exc
        except RedisError as exc:
            logger.error("coordination_store_error", op=op, key=key, error=str(exc))
            raise StoreError(str(exc), {"op": op, "key": key}) from exc

    # =========================================================================
    # Values
    # =========================================================================

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        ttl = self._ttl_seconds(ttl_seconds)
        payload = json.dumps(value)
        async with self._command("set", key):
            await self.client.set(self.key(key), payload, ex=ttl)

    async def get(self, key: str) -> Any:
        """Return the decoded value, or None when absent or expired.

        Raises:
            CorruptEntryError: a value is stored but is not valid JSON
        """
        async with self._command("get", key):
            raw = await self.client.get(self.key(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError) as exc:
            logger.error("coordination_entry_corrupt", key=key)
            raise CorruptEntryError("stored value is not valid JSON", {"key": key}) from exc

    async def delete(self, key: str) -> None:
        async with self._command("delete", key):
            await self.client.delete(self.key(key))

    async def exists(self, key: str) -> bool:
        async with self._command("exists", key):
            return bool(await self.client.exists(self.key(key)))

    async def ttl(self, key: str) -> Optional[int]:
        """Remaining lifetime in seconds; None if the key is absent or persistent."""
        async with self._command("ttl", key):
            remaining = await self.client.ttl(self.key(key))
        return remaining if remaining >= 0 else None

    # =========================================================================
    # Counters
    # =========================================================================

    async def increment(
        self, key: str, by: int = 1, ttl_seconds: Optional[int] = None
    ) -> int:
        """Atomically add ``by``; arm ``ttl_seconds`` only if this call created the key.

        Increments on an existing counter never reset or extend its TTL.
        """
        ttl = self._ttl_seconds(ttl_seconds)
        async with self._command("increment", key):
            value = await self._increment(keys=[self.key(key)], args=[int(by), ttl or 0])
        return int(value)

    async def decrement(self, key: str, by: int = 1) -> int:
        async with self._command("decrement", key):
            return int(await self.client.decrby(self.key(key), int(by)))

    async def set_if_absent(self, key: str, value: Any, ttl_seconds: int) -> bool:
        """Create-only write with the TTL applied in the same command."""
        ttl = self._ttl_seconds(ttl_seconds, required=True)
        payload = json.dumps(value)
        async with self._command("set_if_absent", key):
            acquired = await self.client.set(self.key(key), payload, ex=ttl, nx=True)
        return bool(acquired)

    # =========================================================================
    # Locks
    # =========================================================================

    async def acquire_lock(self, key: str, ttl_seconds: int) -> Optional[str]:
        """Try to take the lock; return the holder token, or None if held elsewhere.

        There is no renewal: a holder that outlives ``ttl_seconds`` must
        acquire again, and a crashed holder's lock lapses on its own.
        """
        holder_token = str(uuid.uuid4())
        if await self.set_if_absent(key, holder_token, ttl_seconds):
            logger.debug("lock_acquired", key=key, ttl_seconds=ttl_seconds)
            return holder_token
        logger.debug("lock_contended", key=key)
        return None

    async def release_lock(self, key: str, holder_token: str) -> bool:
        """Delete the lock only if ``holder_token`` still owns it.

        Returns True when this call removed the lock. A mismatched token
        (another holder took over after our TTL lapsed) leaves it untouched.
        """
        async with self._command("release_lock", key):
            removed = await self._release_lock(
                keys=[self.key(key)], args=[json.dumps(holder_token)]
            )
        released = bool(int(removed))
        if not released:
            logger.info("lock_release_skipped", key=key)
        return released

    # =========================================================================
    # Token blacklist
    # =========================================================================

    async def blacklist_token(self, token_id: str, ttl_seconds: int) -> None:
        """Mark a token identifier revoked for the rest of its validity window."""
        if ttl_seconds <= 0:
            # Already expired; nothing left to revoke
            logger.debug("blacklist_skipped_expired", token_id=token_id)
            return
        await self.set(f"{BLACKLIST_NAMESPACE}{token_id}", True, ttl_seconds)
        logger.info("token_blacklisted", token_id=token_id, ttl_seconds=ttl_seconds)

    async def is_token_blacklisted(self, token_id: str) -> bool:
        return await self.exists(f"{BLACKLIST_NAMESPACE}{token_id}")

    # =========================================================================
    # Connection
    # =========================================================================

    async def ping(self) -> bool:
        async with self._command("ping", ""):
            return bool(await self.client.ping())

    async def close(self) -> None:
        """Close the client and its pool. Call when shutting down."""
        await self.client.aclose()
