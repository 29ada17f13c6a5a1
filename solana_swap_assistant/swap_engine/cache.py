# solana_swap_assistant/swap_engine/cache.py
"""Explicit TTL cache objects handed to the components that read balances and token metadata."""
from __future__ import annotations

import time
from typing import Any, Callable, Hashable, Optional

from cachetools import TTLCache

_MISSING = object()


class ExpiringCache:
    """
    Thin wrapper over cachetools.TTLCache with an injectable clock.

    Reads are last-writer-wins; callers run on one event loop so there is no lock.
    """

    def __init__(self, ttl: float, maxsize: int = 1000, clock: Callable[[], float] = time.monotonic):
        self.ttl = float(ttl)
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=self.ttl, timer=clock)

    def get(self, key: Hashable, default: Any = None) -> Any:
        return self._cache.get(key, default)

    def set(self, key: Hashable, value: Any) -> None:
        self._cache[key] = value

    def invalidate(self, key: Hashable) -> None:
        self._cache.pop(key, None)

    def clear(self) -> None:
        self._cache.clear()

    def __contains__(self, key: Hashable) -> bool:
        return self._cache.get(key, _MISSING) is not _MISSING

    def __len__(self) -> int:
        self._cache.expire()
        return len(self._cache)


def make_balance_cache(ttl: float = 5.0, clock: Optional[Callable[[], float]] = None) -> ExpiringCache:
    return ExpiringCache(ttl=ttl, maxsize=1000, clock=clock or time.monotonic)


def make_token_cache(ttl: float = 600.0, clock: Optional[Callable[[], float]] = None) -> ExpiringCache:
    return ExpiringCache(ttl=ttl, maxsize=5000, clock=clock or time.monotonic)
