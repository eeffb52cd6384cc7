# app/leaderboard/latest_games.py
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from app.cache import LATEST_GAMES_CACHE, cached, latest_activity_tag
from app.db import safe_db
from app.meta.ddragon import DD
from riot.normalize import FLEX_QUEUE_TYPE, SOLO_QUEUE_ID, SOLO_QUEUE_TYPE, compute_end_type
from riot.season import season_start
from util.logging import setup_logger

log = setup_logger("latest-activity")

LATEST_GAMES_LIMIT = 10

ChampionLoader = Callable[[str], Dict[int, Dict[str, str]]]


def _first_present(row: Mapping[str, Any], *keys: str):
    for key in keys:
        value = row.get(key)
        if value is not None:
            return value
    return None


def unique_match_ids(rows: List[Mapping[str, Any]]) -> List[str]:
    seen: Set[str] = set()
    out: List[str] = []
    for row in rows:
        mid = row.get("match_id")
        if mid and mid not in seen:
            seen.add(mid)
            out.append(mid)
    return out


def filter_season_rows(
    rows: List[Mapping[str, Any]],
    season_matches: List[Mapping[str, Any]],
    season_start_ms: int,
) -> List[Mapping[str, Any]]:
    """Solo-queue rows whose match is in this season, by match row or by the row's own end time."""
    allowed = {m["match_id"] for m in season_matches}
    end_by_id = {m["match_id"]: m.get("game_end_ts") for m in season_matches}
    out = []
    for row in rows:
        if row.get("queue_id") != SOLO_QUEUE_ID:
            continue
        if row.get("match_id") in allowed:
            out.append(row)
            continue
        end_ts = _first_present(row, "game_end_ts")
        if end_ts is None:
            end_ts = end_by_id.get(row.get("match_id"))
        if isinstance(end_ts, (int, float)):
            if end_ts >= season_start_ms:
                out.append(row)
            continue
        out.append(row)
    return out


def lp_by_match_and_player(events: List[Mapping[str, Any]]) -> Dict[str, Dict[str, Any]]:
    out: Dict[str, Dict[str, Any]] = {}
    for ev in events:
        if ev.get("match_id") and ev.get("puuid") and isinstance(ev.get("lp_delta"), (int, float)):
            out[f"{ev['match_id']}-{ev['puuid']}"] = {"delta": ev["lp_delta"], "note": ev.get("note")}
    return out


def to_game(row: Mapping[str, Any], lp_events: Dict[str, Dict[str, Any]],
            end_by_id: Dict[str, Optional[int]]) -> Dict[str, Any]:
    lp_event = lp_events.get(f"{row['match_id']}-{row['puuid']}")
    lp_change = _first_present(row, "lp_change", "lp_delta", "lp_diff")
    if lp_change is None and lp_event:
        lp_change = lp_event["delta"]
    lp_note = _first_present(row, "lp_note", "note")
    if lp_note is None and lp_event:
        lp_note = lp_event["note"]
    duration_s = _first_present(row, "game_duration_s", "gameDuration")
    end_ts = _first_present(row, "game_end_ts")
    if end_ts is None:
        end_ts = end_by_id.get(row["match_id"])

    return {
        "matchId": row["match_id"],
        "puuid": row["puuid"],
        "championId": row.get("champion_id"),
        "win": bool(row.get("win")),
        "k": row.get("kills") or 0,
        "d": row.get("deaths") or 0,
        "a": row.get("assists") or 0,
        "cs": row.get("cs") or 0,
        "endTs": end_ts,
        "durationS": duration_s,
        "queueId": row.get("queue_id"),
        "lpChange": lp_change,
        "lpNote": lp_note,
        "endType": compute_end_type(
            early_surrender=_first_present(row, "game_ended_in_early_surrender", "gameEndedInEarlySurrender"),
            surrender=_first_present(row, "game_ended_in_surrender", "gameEndedInSurrender"),
            duration_s=duration_s,
            lp_change=lp_change,
        ),
    }


def _games(store, latest_raw: List[Mapping[str, Any]], puuids: List[str],
           season_start_at: datetime) -> List[Dict[str, Any]]:
    match_ids = unique_match_ids(latest_raw)
    season_start_ms = int(season_start_at.timestamp() * 1000)
    season_matches: List[Mapping[str, Any]] = []
    events: List[Mapping[str, Any]] = []
    if match_ids:
        season_matches = safe_db(lambda: store.matches_in_season(match_ids, season_start_at), [],
                                 "latest_matches", log)
        if puuids:
            events = safe_db(lambda: store.lp_events_for_matches(match_ids, puuids), [],
                             "player_lp_events", log)

    lp_events = lp_by_match_and_player(events)
    end_by_id = {m["match_id"]: m.get("game_end_ts") for m in season_matches}
    rows = filter_season_rows(latest_raw, season_matches, season_start_ms)
    return [to_game(row, lp_events, end_by_id) for row in rows]


def _game_puuids(rows: List[Mapping[str, Any]]) -> List[str]:
    return list(dict.fromkeys(r["puuid"] for r in rows if r.get("puuid")))


def build_latest_activity(
    store,
    lb_id: str,
    dd_version: str,
    champions: Optional[ChampionLoader] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    champions = champions or DD.champion_map
    try:
        champ_map = champions(dd_version)
    except Exception as ex:
        log.warning(f"champion map unavailable for {dd_version}: {ex}")
        champ_map = {}

    players = safe_db(lambda: store.leaderboard_players(lb_id), [], "leaderboard_players", log)
    latest_raw = safe_db(lambda: store.latest_games(lb_id, LATEST_GAMES_LIMIT), [],
                         "get_leaderboard_latest_games", log)

    member_puuids = [p["puuid"] for p in players if p.get("puuid")]
    members = set(member_puuids)
    game_puuids = _game_puuids(latest_raw)
    missing = [p for p in game_puuids if p not in members]
    relevant = list(dict.fromkeys(member_puuids + game_puuids))
    match_ids = unique_match_ids(latest_raw)
    season_start_at = season_start(now=now, dd_version=dd_version)

    states: List[Mapping[str, Any]] = []
    ranks: List[Mapping[str, Any]] = []
    missing_players: List[Mapping[str, Any]] = []
    participants: List[Mapping[str, Any]] = []
    if relevant:
        states = safe_db(lambda: store.riot_states(relevant), [], "player_riot_state", log)
        ranks = safe_db(lambda: store.rank_snapshots(relevant, since=season_start_at), [],
                        "player_rank_snapshot", log)
    if missing:
        missing_players = safe_db(lambda: store.players_by_puuid(missing), [], "missing_players", log)
    if match_ids:
        participants = safe_db(lambda: store.participants_by_match(match_ids), [],
                               "match_participants_latest", log)

    players_by_puuid: Dict[str, Dict[str, Any]] = {}
    for p in players:
        players_by_puuid[p["puuid"]] = {
            "id": p.get("id"), "puuid": p["puuid"],
            "game_name": p.get("game_name"), "tag_line": p.get("tag_line"),
        }
    for p in missing_players:
        players_by_puuid.setdefault(p["puuid"], {
            "id": p["puuid"], "puuid": p["puuid"],
            "game_name": p.get("game_name"), "tag_line": p.get("tag_line"),
        })

    queues: Dict[str, Dict[str, Any]] = {}
    for row in ranks:
        entry = queues.setdefault(row["puuid"], {"solo": None, "flex": None})
        if row.get("queue_type") == SOLO_QUEUE_TYPE:
            entry["solo"] = row
        elif row.get("queue_type") == FLEX_QUEUE_TYPE:
            entry["flex"] = row
    rank_by_puuid = {}
    for puuid in relevant:
        entry = queues.get(puuid)
        rank_by_puuid[puuid] = (entry["solo"] or entry["flex"]) if entry else None

    participants_by_match: Dict[str, List[Dict[str, Any]]] = {}
    for row in participants:
        if not row.get("match_id") or not row.get("puuid"):
            continue
        participants_by_match.setdefault(row["match_id"], []).append({
            "matchId": row["match_id"],
            "puuid": row["puuid"],
            "championId": row.get("champion_id") or 0,
            "kills": row.get("kills") or 0,
            "deaths": row.get("deaths") or 0,
            "assists": row.get("assists") or 0,
            "cs": row.get("cs") or 0,
            "win": bool(row.get("win")),
        })

    return {
        "champ_map": champ_map,
        "players_by_puuid": players_by_puuid,
        "rank_by_puuid": rank_by_puuid,
        "participants_by_match": participants_by_match,
        "player_icons_by_puuid": {s["puuid"]: s.get("profile_icon_id") for s in states},
        "latest_games": _games(store, latest_raw, relevant, season_start_at),
    }


def get_latest_activity_cached(store, lb_id: str, dd_version: str) -> Dict[str, Any]:
    return cached(
        LATEST_GAMES_CACHE,
        f"lb-latest-activity-v1:{lb_id}:{dd_version}",
        lambda: build_latest_activity(store, lb_id, dd_version),
        tags=[latest_activity_tag(lb_id)],
    )


def get_latest_games_cached(store, lb_id: str, dd_version: str) -> List[Dict[str, Any]]:
    return get_latest_activity_cached(store, lb_id, dd_version)["latest_games"]


def get_latest_games_fresh(store, lb_id: str, dd_version: str, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Game rows only, straight from the database."""
    latest_raw = safe_db(lambda: store.latest_games(lb_id, LATEST_GAMES_LIMIT), [],
                         "get_leaderboard_latest_games", log)
    return _games(store, latest_raw, _game_puuids(latest_raw), season_start(now=now, dd_version=dd_version))
