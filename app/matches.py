# app/matches.py
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

from app.db import safe_db
from riot.regions import routing_for_match_id
from riot.riot_api import RiotApiError
from util.logging import setup_logger

log = setup_logger("matches")

TIMELINE_DB_TTL = timedelta(hours=24)


class UnsupportedMatchId(ValueError):
    def __init__(self, match_id: str):
        self.match_id = match_id
        super().__init__("Unsupported match id")


def require_routing(match_id: str) -> str:
    routing = routing_for_match_id(match_id)
    if routing is None:
        raise UnsupportedMatchId(match_id)
    return routing


class _KeyedLocks:
    """
    One lock per match id, so concurrent requests share a single Riot fetch.
    A lock stays registered while any caller still holds or waits on it.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._users: Dict[str, int] = {}

    def get(self, key: str) -> threading.Lock:
        with self._guard:
            self._users[key] = self._users.get(key, 0) + 1
            return self._locks.setdefault(key, threading.Lock())

    def release(self, key: str):
        with self._guard:
            left = self._users.get(key, 0) - 1
            if left > 0:
                self._users[key] = left
                return
            self._users.pop(key, None)
            self._locks.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


_TIMELINE_LOCKS = _KeyedLocks()


def _fresh(ts: Any, now: datetime, ttl: timedelta) -> bool:
    if not isinstance(ts, datetime):
        return False
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return now - ts < ttl


def _cache_row(store, match_id: str) -> Dict[str, Any]:
    return safe_db(lambda: store.match_cache_get(match_id), {}, "match_cache read", log)


def _cache_put(store, match_id: str, kind: str, payload: Any):
    safe_db(lambda: store.match_cache_put(match_id, kind, payload), False, "match_cache write", log)


def get_match(client, store, match_id: str) -> Tuple[Dict[str, Any], str]:
    """(match, cache status). Finished matches never change, so a cached copy is always served."""
    routing = require_routing(match_id)
    row = _cache_row(store, match_id)
    if row.get("match_json"):
        return row["match_json"], "HIT-DB"
    match = client.get_match(match_id, routing=routing)
    _cache_put(store, match_id, "match", match)
    return match, "MISS"


def get_timeline(client, store, match_id: str, now: Optional[datetime] = None) -> Tuple[Dict[str, Any], str]:
    routing = require_routing(match_id)
    lock = _TIMELINE_LOCKS.get(match_id)
    try:
        with lock:
            now = now or datetime.now(timezone.utc)
            row = _cache_row(store, match_id)
            if row.get("timeline_json") and _fresh(row.get("timeline_fetched_at"), now, TIMELINE_DB_TTL):
                return row["timeline_json"], "HIT-DB"
            timeline = client.get_timeline(match_id, routing=routing)
            _cache_put(store, match_id, "timeline", timeline)
            return timeline, "MISS"
    finally:
        _TIMELINE_LOCKS.release(match_id)


def _optional(label: str, fn):
    try:
        return fn()
    except RiotApiError as ex:
        log.warning(f"[match details] {label} unavailable: {ex}")
        return None


def fetch_match_details(client, match_id: str) -> Dict[str, Any]:
    """Match, timeline and participant Riot ids for preloading; any missing part is None / absent."""
    empty = {"match": None, "timeline": None, "accounts": {}}
    routing = routing_for_match_id(match_id)
    if routing is None:
        return empty
    match = _optional("match", lambda: client.get_match(match_id, routing=routing))
    if not match:
        return empty
    timeline = _optional("timeline", lambda: client.get_timeline(match_id, routing=routing))

    accounts: Dict[str, Dict[str, str]] = {}
    for puuid in (match.get("metadata") or {}).get("participants") or []:
        account = _optional(f"account {puuid[:8]}", lambda p=puuid: client.get_account_by_puuid(p))
        if account and account.get("gameName") and account.get("tagLine"):
            accounts[puuid] = {"gameName": account["gameName"], "tagLine": account["tagLine"]}

    return {"match": match, "timeline": timeline or None, "accounts": accounts}
