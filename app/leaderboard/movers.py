# app/leaderboard/movers.py
import math
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
from zoneinfo import ZoneInfo

from app.cache import MOVERS_CACHE, cached, movers_tag
from app.db import safe_db
from riot.normalize import SOLO_QUEUE_TYPE
from util.logging import setup_logger

log = setup_logger("movers")

# above this gap between the snapshot delta and the summed LP events, trust the snapshot
EVENT_DRIFT_FALLBACK_THRESHOLD = 20
DEFAULT_TIMEZONE = "America/Chicago"

Mover = Tuple[str, float]


def _finite(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    return num if math.isfinite(num) else None


def _num(value: float):
    return int(value) if float(value).is_integer() else value


def window_bounds(tz_name: Optional[str] = None, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """(today_start, week_start) as aware datetimes: local midnight today and 7 days ago."""
    tz = ZoneInfo(tz_name or os.getenv("MOVERS_TIMEZONE", DEFAULT_TIMEZONE))
    local_now = (now or datetime.now(timezone.utc)).astimezone(tz)
    today = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    # wall-clock arithmetic; zoneinfo resolves the offset of each date on its own
    week = (local_now - timedelta(days=7)).replace(hour=0, minute=0, second=0, microsecond=0)
    return today, week


def delta_map(rows: Iterable[Mapping[str, Any]]) -> Dict[str, float]:
    out: Dict[str, float] = {}
    for row in rows:
        puuid = row.get("puuid")
        delta = _finite(row.get("lp_delta"))
        if not puuid or delta is None:
            continue
        out[puuid] = delta
    return out


def pick_blended_delta(canonical: Optional[float], event: Optional[float]) -> Optional[float]:
    has_canonical = _finite(canonical) is not None
    has_event = _finite(event) is not None
    if has_canonical and has_event:
        if abs(canonical - event) <= EVENT_DRIFT_FALLBACK_THRESHOLD:
            return event
        return canonical
    if has_event:
        return event
    if has_canonical:
        return canonical
    return None


def event_deltas(
    rows: Iterable[Mapping[str, Any]],
    today_start: datetime,
    week_start: datetime,
) -> Tuple[Dict[str, float], Dict[str, float]]:
    daily: Dict[str, float] = {}
    weekly: Dict[str, float] = {}
    for row in rows:
        puuid = row.get("puuid")
        delta = _finite(row.get("lp_delta"))
        recorded_at = row.get("recorded_at")
        if not puuid or delta is None or not isinstance(recorded_at, datetime):
            continue
        if recorded_at.tzinfo is None:
            recorded_at = recorded_at.replace(tzinfo=timezone.utc)
        if recorded_at >= week_start:
            weekly[puuid] = weekly.get(puuid, 0) + delta
        if recorded_at >= today_start:
            daily[puuid] = daily.get(puuid, 0) + delta
    return daily, weekly


def _entries(puuids: List[str], canonical: Dict[str, float], events: Dict[str, float]) -> List[Mover]:
    out: List[Mover] = []
    for puuid in puuids:
        resolved = pick_blended_delta(canonical.get(puuid), events.get(puuid))
        if resolved is not None:
            out.append((puuid, resolved))
    return out


def top_gain(entries: List[Mover]) -> Optional[Mover]:
    best = None
    for entry in entries:
        if best is None or entry[1] > best[1]:
            best = entry
    return best


def top_loss(entries: List[Mover]) -> Optional[Mover]:
    worst = None
    for entry in entries:
        if worst is None or entry[1] < worst[1]:
            worst = entry
    return worst


def _as_pair(entry: Optional[Mover]) -> Optional[list]:
    return [entry[0], _num(entry[1])] if entry else None


def build_movers(store, lb_id: str, now: Optional[datetime] = None, tz_name: Optional[str] = None) -> Dict[str, Any]:
    players = safe_db(lambda: store.leaderboard_players(lb_id), [], "leaderboard_players", log)
    puuids = [p["puuid"] for p in players if p.get("puuid")]
    today_start, week_start = window_bounds(tz_name, now)

    states: List[Mapping[str, Any]] = []
    daily_rows: List[Mapping[str, Any]] = []
    weekly_rows: List[Mapping[str, Any]] = []
    events: List[Mapping[str, Any]] = []
    if puuids:
        states = safe_db(lambda: store.riot_states(puuids), [], "player_riot_state", log)
        daily_rows = safe_db(lambda: store.movers_fast(lb_id, today_start), [], "movers_daily", log)
        weekly_rows = safe_db(lambda: store.movers_fast(lb_id, week_start), [], "movers_weekly", log)
        events = safe_db(lambda: store.lp_events_since(puuids, week_start, SOLO_QUEUE_TYPE), [],
                         "movers_recent_events", log)

    daily_events, weekly_events = event_deltas(events, today_start, week_start)
    daily = _entries(puuids, delta_map(daily_rows), daily_events)
    weekly = _entries(puuids, delta_map(weekly_rows), weekly_events)

    gain = top_gain(daily)
    loss = top_loss(daily)
    weekly_gain = top_gain(weekly)

    return {
        "players_by_puuid": {
            p["puuid"]: {"id": p.get("id"), "puuid": p["puuid"],
                         "game_name": p.get("game_name"), "tag_line": p.get("tag_line")}
            for p in players
        },
        "player_icons_by_puuid": {s["puuid"]: s.get("profile_icon_id") for s in states},
        "daily_top_gain": _as_pair(gain if gain and gain[1] > 0 else None),
        "daily_top_loss": _as_pair(loss if loss and loss[1] < 0 else None),
        "weekly_top_gain": _as_pair(weekly_gain if weekly_gain and weekly_gain[1] > 0 else None),
        # any sign, matching what the dashboards have always shown
        "weekly_top_loss": _as_pair(top_loss(weekly)),
    }


def get_movers_cached(store, lb_id: str) -> Dict[str, Any]:
    return cached(MOVERS_CACHE, f"lb-movers-v6:{lb_id}", lambda: build_movers(store, lb_id), tags=[movers_tag(lb_id)])


def get_movers_fresh(store, lb_id: str) -> Dict[str, Any]:
    return build_movers(store, lb_id)
