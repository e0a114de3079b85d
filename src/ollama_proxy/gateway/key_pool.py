"""Rotating pool of upstream API keys.

One pool is shared by every request the proxy serves. It is created once
from configuration and only ever mutated by rotation.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable

from ollama_proxy.gateway.errors import ConfigurationError

logger = logging.getLogger(__name__)


class KeyPool:
    """Ordered API keys with a shared rotation cursor.

    The cursor always satisfies ``0 <= index < len(pool)`` for a non-empty
    pool, and ``rotate()`` moves it to ``(index + 1) % len(pool)``.
    Rotation happens under a lock, but concurrent requests rotating the
    same pool still race on *which* key each of them ends up with.

    Example:
        >>> pool = KeyPool(["key-a", "key-b"])
        >>> pool.current()
        'key-a'
        >>> pool.rotate()
        'key-b'
    """

    def __init__(self, keys: Iterable[str] = ()):
        self._keys: tuple[str, ...] = tuple(k for k in keys if k)
        self._index = 0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._keys)

    @property
    def keys(self) -> tuple[str, ...]:
        return self._keys

    @property
    def index(self) -> int:
        """Position of the active key."""
        return self._index

    def current(self) -> str:
        """Return the active key.

        Raises:
            ConfigurationError: If the pool is empty.
        """
        if not self._keys:
            raise ConfigurationError("No API key configured")
        return self._keys[self._index]

    def rotate(self) -> str:
        """Advance the cursor and return the newly active key."""
        if not self._keys:
            raise ConfigurationError("No API key configured")
        with self._lock:
            self._index = (self._index + 1) % len(self._keys)
            index = self._index
        if len(self._keys) > 1:
            logger.info("Rotated to API key %d/%d", index + 1, len(self._keys))
        return self._keys[index]

    def describe(self) -> str:
        """Human-readable cursor position, e.g. ``2/3``."""
        return f"{self._index + 1}/{len(self._keys)}"
