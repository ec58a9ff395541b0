"""Process-local cache of file listings, invalidated per path.

Listings are cached under the page path the client was showing plus the
user and query. Any mutation made from a path drops every entry for that
path. Entries also expire after a TTL so edits made elsewhere (for example
a share granted by another user) show up eventually.
"""

import logging
import time
from typing import Any

logger = logging.getLogger(__name__)


class ListingCache:
    """TTL cache of listing results keyed by ``(path, key)``."""

    def __init__(self, ttl_seconds: float = 30.0) -> None:
        self.ttl_seconds = ttl_seconds
        self._entries: dict[str, dict[tuple, tuple[float, Any]]] = {}

    def get(self, path: str, key: tuple) -> Any | None:
        """Return a cached value, or None if absent or expired."""
        if self.ttl_seconds <= 0:
            return None
        entry = self._entries.get(path, {}).get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if time.monotonic() >= expires_at:
            del self._entries[path][key]
            return None
        return value

    def put(self, path: str, key: tuple, value: Any) -> None:
        if self.ttl_seconds <= 0:
            return
        self._entries.setdefault(path, {})[key] = (time.monotonic() + self.ttl_seconds, value)

    def invalidate(self, path: str) -> None:
        """Drop every cached listing for ``path``."""
        dropped = self._entries.pop(path, None)
        if dropped:
            logger.debug("Invalidated %d cached listings for %s", len(dropped), path)

    def clear(self) -> None:
        self._entries.clear()
