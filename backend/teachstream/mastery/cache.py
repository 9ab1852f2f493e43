"""In-process cache with explicit, generation-based invalidation.

Every key carries a generation token. `invalidate` bumps the token, and a
cached value is served only while its token is current. A load that started
before an invalidation stores its result under the old token, so the next
read recomputes instead of serving the stale value.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Tuple

logger = logging.getLogger(__name__)


class GenerationCache:
    """Async read-through cache keyed by arbitrary hashable keys."""

    def __init__(self, name: str = "cache"):
        self.name = name
        self._values: Dict[Hashable, Tuple[int, Any]] = {}
        self._generations: Dict[Hashable, int] = {}

    def generation(self, key: Hashable) -> int:
        return self._generations.get(key, 0)

    def peek(self, key: Hashable) -> Optional[Any]:
        """Current cached value, or None when missing or stale."""
        entry = self._values.get(key)
        if entry is None or entry[0] != self.generation(key):
            return None
        return entry[1]

    async def get_or_load(self, key: Hashable, loader: Callable[[], Awaitable[Any]]) -> Any:
        """
        Return the cached value for key, loading it on a miss.

        Args:
            key: Cache key
            loader: Coroutine factory computing the authoritative value

        Returns:
            The cached or freshly loaded value. Exceptions from the loader
            propagate and nothing is stored.
        """
        token = self.generation(key)
        entry = self._values.get(key)
        if entry is not None and entry[0] == token:
            return entry[1]

        value = await loader()
        self._values[key] = (token, value)
        return value

    def invalidate(self, key: Hashable) -> None:
        self._generations[key] = self.generation(key) + 1
        self._values.pop(key, None)
        logger.debug(f"[{self.name}] Invalidated {key}")

    def clear(self) -> None:
        """Drop every value; generations keep counting so in-flight loads stay stale."""
        for key in list(self._values):
            self.invalidate(key)


mastery_cache = GenerationCache("mastery")
