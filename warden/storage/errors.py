from __future__ import annotations

from typing import Any, Dict, Optional


class StoreError(Exception):
    """Raised when the coordination store rejects or fails an operation."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class StoreUnavailableError(StoreError):
    """The backing key-value store could not be reached or timed out."""


class CorruptEntryError(StoreError):
    """A stored value exists but cannot be decoded."""


__all__ = ["StoreError", "StoreUnavailableError", "CorruptEntryError"]
