import hashlib
import json
import time
from collections import OrderedDict
from typing import Any, Callable, Optional, Protocol
import threading

from travelmesh.config import settings


class Cache(Protocol):
    def get(self, key: str) -> Optional[Any]: ...
    def set(self, key: str, value: Any) -> None: ...
    def clear(self) -> None: ...


class SimpleCache:
    """
    In-process result cache with a TTL and an LRU size bound.
    Values are stored as-is; callers must not mutate what they get back.
    """

    def __init__(self, ttl_seconds: int = 900, max_entries: int = 256, clock: Callable[[], float] = time.monotonic):
        self._store: OrderedDict[str, tuple[Any, float]] = OrderedDict()
        self._lock = threading.Lock()
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            if key in self._store:
                value, inserted_at = self._store[key]
                if self._clock() - inserted_at < self._ttl:
                    self._store.move_to_end(key)
                    return value
                else:
                    del self._store[key]
        return None

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._store[key] = (value, self._clock())
            self._store.move_to_end(key)
            while len(self._store) > self._max_entries:
                self._store.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)


def _canonical(value: Any) -> Any:
    # Sets have no stable order; sort them so {"a","b"} and {"b","a"} collide on purpose
    if isinstance(value, (set, frozenset)):
        return sorted(_canonical(v) for v in value)
    if isinstance(value, dict):
        return {str(k): _canonical(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_canonical(v) for v in value]
    return value


def make_cache_key(namespace: str, fields: dict) -> str:
    """
    Build a deterministic key from an explicit record of request fields.
    Field order never matters: keys are sorted before hashing.
    """
    payload = json.dumps(_canonical(fields), sort_keys=True, default=str, separators=(",", ":"))
    return f"{namespace}:{hashlib.sha256(payload.encode()).hexdigest()}"


def fingerprint(data: bytes) -> str:
    """Content hash for uploaded media, used inside cache keys."""
    return hashlib.sha256(data).hexdigest()


# Global cache instance
cache = SimpleCache(ttl_seconds=settings.CACHE_TTL_SECONDS, max_entries=settings.CACHE_MAX_ENTRIES)
