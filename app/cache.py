# app/cache.py
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from util.logging import setup_logger

log = setup_logger("cache")

_MISS = object()


class TTLCache:
    """Thread-safe in-memory cache with per-entry time-to-live and tag invalidation."""

    def __init__(self, ttl_seconds: float = 60, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        self._store: Dict[str, Tuple[float, Any]] = {}
        self._tags: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return default
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._store[key]
                return default
            return value

    def set(self, key: str, value: Any, tags: Iterable[str] = (), ttl: Optional[float] = None) -> None:
        with self._lock:
            self._store[key] = (self._clock() + (self._ttl if ttl is None else ttl), value)
            for tag in tags:
                self._tags.setdefault(tag, set()).add(key)

    def invalidate_tag(self, tag: str) -> int:
        with self._lock:
            keys = self._tags.pop(tag, set())
            dropped = 0
            for key in keys:
                if self._store.pop(key, None) is not None:
                    dropped += 1
            return dropped

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
            self._tags.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)


def cached(cache: TTLCache, key: str, loader: Callable[[], Any], tags: Iterable[str] = ()) -> Any:
    value = cache.get(key, _MISS)
    if value is not _MISS:
        return value
    value = loader()
    cache.set(key, value, tags=tags)
    return value


# movers change at most once per refresh; the activity feed is polled by clients
MOVERS_CACHE = TTLCache(ttl_seconds=90)
LATEST_GAMES_CACHE = TTLCache(ttl_seconds=30)


def movers_tag(lb_id: str) -> str:
    return f"lb-movers:{lb_id}"


def latest_activity_tag(lb_id: str) -> str:
    return f"lb-latest-activity:{lb_id}"


def invalidate_leaderboards(lb_ids: Iterable[str]) -> List[str]:
    """Drop movers + latest activity for each leaderboard. Returns the unique ids touched."""
    unique: List[str] = []
    for lb_id in lb_ids:
        lb_id = str(lb_id or "").strip()
        if lb_id and lb_id not in unique:
            unique.append(lb_id)
    for lb_id in unique:
        MOVERS_CACHE.invalidate_tag(movers_tag(lb_id))
        LATEST_GAMES_CACHE.invalidate_tag(latest_activity_tag(lb_id))
    if unique:
        log.info(f"invalidated caches for {len(unique)} leaderboard(s)")
    return unique


def invalidate_for_puuids(store, puuids: Iterable[str]) -> List[str]:
    puuids = [p for p in dict.fromkeys(puuids) if p]
    if not puuids:
        return []
    return invalidate_leaderboards(store.leaderboard_ids_for_puuids(puuids))
