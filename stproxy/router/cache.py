"""
Per-prefix cache of forwarding handlers.

Handlers are created lazily the first time a prefix is requested and reused
for the life of the process:
- Lock-free read on the hot path
- Double-checked insertion under a lock, so a prefix is built at most once
- Hit/miss/construction counters
"""

import logging
import threading
from typing import Any, Callable, Generic, TypeVar

logger = logging.getLogger("stproxy.router.cache")

H = TypeVar("H")


class ProxyCache(Generic[H]):
    """
    Cache mapping path prefix -> forwarding handler.

    Entries are never evicted. ``get_or_create`` guarantees that concurrent
    callers asking for the same uncached prefix share one handler instance.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, H] = {}
        self._lock = threading.Lock()

        self._hits = 0
        self._misses = 0
        self._constructions = 0

    def get(self, prefix: str) -> H | None:
        """Return the cached handler for ``prefix`` or None."""
        handler = self._handlers.get(prefix)
        if handler is not None:
            self._hits += 1
        return handler

    def get_or_create(self, prefix: str, factory: Callable[[], H]) -> H:
        """
        Return the handler for ``prefix``, building it with ``factory`` on first use.

        The factory runs under the cache lock and must not block on I/O.
        Exceptions from the factory propagate and nothing is cached.

        Args:
            prefix: Path prefix (routing key)
            factory: Zero-argument callable producing the handler

        Returns:
            The cached handler
        """
        handler = self._handlers.get(prefix)
        if handler is not None:
            self._hits += 1
            return handler

        with self._lock:
            # Double-check after acquiring lock
            handler = self._handlers.get(prefix)
            if handler is not None:
                self._hits += 1
                return handler

            self._misses += 1
            handler = factory()
            self._handlers[prefix] = handler
            self._constructions += 1
            logger.info("Created forwarding handler for prefix '%s'", prefix)
            return handler

    def __contains__(self, prefix: str) -> bool:
        return prefix in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)

    def prefixes(self) -> list[str]:
        return list(self._handlers)

    def get_metrics(self) -> dict[str, Any]:
        """
        Get cache metrics.

        Returns:
            Dict with hits, misses, constructions, entry count and hit rate
        """
        total = self._hits + self._misses
        return {
            "cache_hits": self._hits,
            "cache_misses": self._misses,
            "constructions": self._constructions,
            "entries": len(self._handlers),
            "hit_rate": self._hits / total if total > 0 else 0.0,
        }
