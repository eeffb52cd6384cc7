# app/leaderboard/goals.py
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional

from riot.ranks import is_apex, tier_weight

GOAL_MODES = ("LIVE", "RACE", "LP_GOAL", "RANK_GOAL")
GOAL_STATUSES = ("LIVE", "SCHEDULED", "ACTIVE", "ENDED", "COMPLETED")


def _to_utc(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _ms(dt: Optional[datetime]) -> Optional[int]:
    return int(dt.timestamp() * 1000) if dt else None


def _iso(dt: datetime) -> str:
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def normalize_goal_mode(mode: Optional[str]) -> str:
    raw = str(mode or "").strip().upper()
    return raw if raw in GOAL_MODES else "LIVE"


def format_goal_date(value: Any) -> Optional[str]:
    dt = _to_utc(value)
    if dt is None:
        return None
    hour = dt.hour % 12 or 12
    ampm = "AM" if dt.hour < 12 else "PM"
    return f"{dt.strftime('%b')} {dt.day}, {dt.year}, {hour}:{dt.minute:02d} {ampm}"


def format_goal_range(start: Any = None, end: Any = None) -> Optional[str]:
    s = format_goal_date(start)
    e = format_goal_date(end)
    if s and e:
        return f"{s} → {e}"
    if s:
        return f"Starts {s}"
    if e:
        return f"Ends {e}"
    return None


def lp_goal_completion(history: Iterable[Mapping[str, Any]], target_lp: int) -> Optional[Dict[str, Any]]:
    """Earliest apex-tier row at or above target_lp; ties on time go to the higher LP."""
    earliest: Optional[datetime] = None
    winner: Optional[Mapping[str, Any]] = None
    for row in history:
        lp = row.get("lp")
        if not is_apex(row.get("tier")) or lp is None or lp < target_lp:
            continue
        ts = _to_utc(row.get("fetched_at"))
        if ts is None:
            continue
        if earliest is None or ts < earliest or (ts == earliest and (winner.get("lp") or 0) < lp):
            earliest = ts
            winner = row
    if earliest is None or winner is None:
        return None
    return {"completion_at": _iso(earliest), "winner": winner}


def rank_goal_completion(history: Iterable[Mapping[str, Any]], target_tier: str) -> Optional[Dict[str, Any]]:
    """First UTC day anyone reached target_tier; that day's highest LP wins, completed at day end."""
    target = tier_weight(target_tier)
    if not target:
        return None
    earliest_day: Optional[str] = None
    winner: Optional[Mapping[str, Any]] = None
    for row in history:
        if tier_weight(row.get("tier")) < target:
            continue
        ts = _to_utc(row.get("fetched_at"))
        if ts is None:
            continue
        day = ts.date().isoformat()
        if earliest_day is None or day < earliest_day:
            earliest_day = day
            winner = row
        elif day == earliest_day and (row.get("lp") or 0) > (winner.get("lp") or 0):
            winner = row
    if earliest_day is None or winner is None:
        return None
    return {"completion_at": f"{earliest_day}T23:59:59.999Z", "winner": winner}


def compute_goal_state(config: Mapping[str, Any], history: Iterable[Mapping[str, Any]],
                       now: Optional[datetime] = None) -> Dict[str, Any]:
    now_ms = _ms(now or datetime.now(timezone.utc))
    mode = normalize_goal_mode(config.get("goal_mode"))
    start_ms = _ms(_to_utc(config.get("race_start_at")))
    race_end_ms = _ms(_to_utc(config.get("race_end_at")))
    history = list(history)

    status = "LIVE" if mode == "LIVE" else "ACTIVE"
    result: Optional[Dict[str, Any]] = None

    if mode == "RACE":
        if start_ms and now_ms < start_ms:
            status = "SCHEDULED"
        if race_end_ms and now_ms > race_end_ms:
            status = "ENDED"

    lp_goal = config.get("lp_goal")
    if mode == "LP_GOAL" and isinstance(lp_goal, (int, float)) and lp_goal > 0:
        result = lp_goal_completion(history, lp_goal)

    if mode == "RANK_GOAL" and config.get("rank_goal_tier"):
        result = rank_goal_completion(history, config["rank_goal_tier"])

    completion_at = None
    winner: Mapping[str, Any] = {}
    if result:
        status = "COMPLETED"
        completion_at = result["completion_at"]
        winner = result["winner"]

    end_ms = _ms(_to_utc(completion_at))
    if end_ms is None and mode == "RACE" and race_end_ms and now_ms > race_end_ms:
        end_ms = race_end_ms

    return {
        "mode": mode,
        "status": status,
        "start_ms": start_ms if mode == "RACE" else None,
        "end_ms": end_ms,
        "completion_at": completion_at,
        "winner_puuid": winner.get("puuid"),
        "winner_lp": winner.get("lp"),
        "winner_tier": winner.get("tier"),
        "winner_rank": winner.get("rank"),
    }
