from __future__ import annotations

import functools
import threading
from copy import deepcopy
from time import monotonic
from typing import Any, Awaitable, Callable, TypeVar

from .config import RANKING_CACHE_TTL_SEC

T = TypeVar("T")


class TtlCache:
    def __init__(self, ttl_seconds: float = RANKING_CACHE_TTL_SEC) -> None:
        self.ttl_seconds = max(0.0, float(ttl_seconds))
        self._lock = threading.Lock()
        self._items: dict[Any, tuple[float, Any]] = {}

    def get(self, key: Any) -> Any | None:
        if self.ttl_seconds <= 0:
            return None
        now = monotonic()
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            expires_at, value = item
            if expires_at <= now:
                self._items.pop(key, None)
                return None
            return deepcopy(value)

    def put(self, key: Any, value: Any) -> None:
        if self.ttl_seconds <= 0:
            return
        expires_at = monotonic() + self.ttl_seconds
        with self._lock:
            self._items[key] = (expires_at, deepcopy(value))

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


def ttl_cached(cache: TtlCache) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Cache results of a coroutine function by its (hashable) arguments.

    ``None`` results are not cached.
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            key = (func.__qualname__, args, tuple(sorted(kwargs.items())))
            cached = cache.get(key)
            if cached is not None:
                return cached
            value = await func(*args, **kwargs)
            if value is not None:
                cache.put(key, value)
            return value

        wrapper.cache = cache  # type: ignore[attr-defined]
        return wrapper

    return decorator
