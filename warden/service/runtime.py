from __future__ import annotations

import threading
from typing import Optional
from urllib.parse import urlparse, urlunparse

from warden.config import Settings, get_settings, reset_settings_cache
from warden.logging import get_logger
from warden.service.tokens import TokenAuthority
from warden.storage.coordination import CoordinationStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a URL for safe logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if parsed.password:
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:***@{netloc}"
            else:
                netloc = f":***@{netloc}"
            return urlunparse((
                parsed.scheme,
                netloc,
                parsed.path,
                parsed.params,
                parsed.query,
                parsed.fragment,
            ))
        return url
    except ValueError:
        return "***url_parse_error***"


class Runtime:
    """Holds the singleton token authority and coordination store."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        tokens: Optional[TokenAuthority] = None,
        store: Optional[CoordinationStore] = None,
    ):
        self.settings = settings or get_settings()
        self.tokens = tokens or TokenAuthority.from_settings(self.settings)
        self.store = store or CoordinationStore.from_url(
            self.settings.redis_url,
            self.settings.cache_prefix,
            socket_timeout=self.settings.redis_socket_timeout,
        )
        logger.info(
            "runtime_initialized",
            redis_url=_mask_url_password(self.settings.redis_url),
            cache_prefix=self.settings.cache_prefix,
            access_token_ttl_seconds=self.settings.access_token_ttl_seconds,
        )

    async def close(self) -> None:
        await self.store.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton (double-checked under a lock)."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> None:
    """Drop the runtime singleton and cached settings for isolated test runs."""
    global runtime
    with _runtime_lock:
        runtime = None
        reset_settings_cache()
