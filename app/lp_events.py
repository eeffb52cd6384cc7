# app/lp_events.py
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from riot.normalize import queue_id_for_queue_type
from util.logging import setup_logger

log = setup_logger("lp_events")

SEARCH_COUNT = 50


class NoMatchFound(LookupError):
    pass


def best_match_before(client, puuid: str, recorded_ms: int, queue_id: Optional[int],
                      count: int = SEARCH_COUNT) -> Optional[Dict[str, Any]]:
    """The player's match that ended closest to (and not after) recorded_ms."""
    best: Optional[Dict[str, Any]] = None
    for match_id in client.get_match_ids_by_puuid(puuid, count=count):
        match = client.get_match(match_id)
        meta = match.get("metadata") or {}
        info = match.get("info") or {}
        if puuid not in (meta.get("participants") or []):
            continue
        if queue_id is not None and info.get("queueId") != queue_id:
            continue
        end_ts = info.get("gameEndTimestamp")
        if not end_ts:
            continue
        diff = recorded_ms - end_ts
        if diff < 0:
            continue
        if best is None or diff < best["diff"]:
            best = {"match_id": match_id, "diff": diff, "end_ts": end_ts}
    return best


def repair_lp_event(client, store, puuid: str, wrong_match_id: str, recorded_at: datetime,
                    queue_type: Optional[str] = None) -> Dict[str, Any]:
    if recorded_at.tzinfo is None:
        recorded_at = recorded_at.replace(tzinfo=timezone.utc)
    recorded_ms = int(recorded_at.timestamp() * 1000)
    best = best_match_before(client, puuid, recorded_ms, queue_id_for_queue_type(queue_type))
    if best is None:
        raise NoMatchFound(
            "No suitable match found to relink (try widening search/count or check recordedAt/queueType)"
        )
    updated = store.relink_lp_event(puuid, wrong_match_id, recorded_at, best["match_id"])
    log.info(f"relinked lp event puuid={puuid[:8]} {wrong_match_id} -> {best['match_id']} rows={updated}")
    match_end = datetime.fromtimestamp(best["end_ts"] / 1000, tz=timezone.utc)
    return {
        "ok": True,
        "newMatchId": best["match_id"],
        "matchEnd": match_end.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        "updated": updated,
    }
