from __future__ import annotations

import threading
import time
from typing import Any, Callable, Optional

from cachetools import TTLCache
from typing_extensions import Protocol


class KeyValueStore(Protocol):
    """
    Process-wide key/value store with expiry. Call sites only depend on this
    interface so a shared cache can replace the in-memory one.
    """

    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> bool: ...

    def sweep(self) -> int: ...

    def __len__(self) -> int: ...


class MemoryStore:
    """
    TTLCache-backed store. `set` restarts the entry's lifetime; expired
    entries are dropped by `sweep`, which the app runs on a schedule.
    """

    def __init__(self, ttl: float, maxsize: int = 100_000, timer: Callable[[], float] = time.monotonic):
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._cache.get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._cache[key] = value

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._cache.pop(key, None) is not None

    def sweep(self) -> int:
        with self._lock:
            return len(self._cache.expire())

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
