from __future__ import annotations

from typing import Any, Dict, Optional


class PersistenceError(Exception):
    """Raised inside a key-value backend when a read or write cannot complete.

    Backends catch and log it at their public boundary; the in-memory state
    stays authoritative.
    """

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


__all__ = ["PersistenceError"]
