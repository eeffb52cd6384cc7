# app/leaderboard/graph.py
from datetime import datetime, timezone
from functools import cmp_to_key
from typing import Any, Dict, List, Mapping, Optional

from app.db import safe_db
from riot.normalize import FLEX_QUEUE_TYPE, SOLO_QUEUE_TYPE
from riot.ranks import compare_ranks, format_rank
from util.logging import setup_logger

from .goals import compute_goal_state, format_goal_range

log = setup_logger("graph")

HISTORY_PAGE_SIZE = 1000
MAX_ADDITIONAL_PAGES = 9

CUTOFF_DISPLAY = (
    ("CHALLENGER", "Challenger"),
    ("GRANDMASTER", "Grandmaster"),
)


def fetch_lp_history(store, puuid: str, since: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Solo-queue LP history oldest first, at most 10 pages of 1000 rows."""
    first = store.lp_history_page(puuid, 0, since, HISTORY_PAGE_SIZE)
    if len(first) < HISTORY_PAGE_SIZE:
        return list(first)
    rows = list(first)
    for page in range(1, MAX_ADDITIONAL_PAGES + 1):
        batch = store.lp_history_page(puuid, page, since, HISTORY_PAGE_SIZE)
        rows.extend(batch)
        if len(batch) < HISTORY_PAGE_SIZE:
            break
    return rows


def graph_points(store, puuid: str, season_start_at: Optional[datetime]) -> List[Dict[str, Any]]:
    season_rows = fetch_lp_history(store, puuid, season_start_at)
    if season_rows:
        return season_rows
    return fetch_lp_history(store, puuid)


def _aware(value: Any) -> Optional[datetime]:
    if not isinstance(value, datetime):
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def pick_rank(rows: List[Mapping[str, Any]], season_start_at: Optional[datetime]) -> Dict[str, Optional[Mapping[str, Any]]]:
    """puuid -> solo snapshot, else flex, counting only snapshots fetched this season."""
    queues: Dict[str, Dict[str, Any]] = {}
    for r in rows:
        fetched = _aware(r.get("fetched_at"))
        if fetched is None or (season_start_at and fetched < season_start_at):
            continue
        entry = queues.setdefault(r["puuid"], {"solo": None, "flex": None})
        if r.get("queue_type") == SOLO_QUEUE_TYPE:
            entry["solo"] = r
        elif r.get("queue_type") == FLEX_QUEUE_TYPE:
            entry["flex"] = r
    return {p: (e["solo"] or e["flex"]) for p, e in queues.items()}


def season_champions(rows: List[Mapping[str, Any]]) -> Dict[str, List[Dict[str, int]]]:
    counts: Dict[str, Dict[int, int]] = {}
    for r in rows:
        if not r.get("puuid") or not r.get("champion_id"):
            continue
        per = counts.setdefault(r["puuid"], {})
        per[r["champion_id"]] = per.get(r["champion_id"], 0) + 1
    return {
        puuid: [{"champion_id": c, "games": g} for c, g in sorted(per.items(), key=lambda kv: -kv[1])]
        for puuid, per in counts.items()
    }


def format_cutoffs(rows: List[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    by_key = {f"{r['queue_type']}::{r['tier']}": r["cutoff_lp"] for r in rows}
    out = []
    for tier, label in CUTOFF_DISPLAY:
        lp = by_key.get(f"{SOLO_QUEUE_TYPE}::{tier}")
        if lp is not None:
            out.append({"tier": tier, "label": label, "lp": lp})
    return out


def build_overview(store, lb: Mapping[str, Any], season_start_at: datetime,
                   now: Optional[datetime] = None) -> Dict[str, Any]:
    lb_id = lb["id"]
    players = safe_db(lambda: store.leaderboard_players(lb_id), [], "leaderboard_players", log)
    puuids = [p["puuid"] for p in players if p.get("puuid")]
    season_ms = int(season_start_at.timestamp() * 1000)

    states: List[Mapping[str, Any]] = []
    ranks: List[Mapping[str, Any]] = []
    participants: List[Mapping[str, Any]] = []
    if puuids:
        states = safe_db(lambda: store.riot_states(puuids), [], "player_riot_state", log)
        ranks = safe_db(lambda: store.rank_snapshots(puuids), [], "player_rank_snapshot", log)
        participants = safe_db(lambda: store.season_participants(puuids, season_ms), [], "season_champions", log)
    cutoffs = safe_db(store.rank_cutoffs, [], "rank_cutoffs", log)

    state_by = {s["puuid"]: s for s in states}
    rank_by = pick_rank(ranks, season_start_at)
    champs_by = season_champions(participants)

    last_updated = None
    for s in states:
        ts = _aware(s.get("last_rank_sync_at"))
        if ts and (last_updated is None or ts > last_updated):
            last_updated = ts

    ordered = sorted(players, key=cmp_to_key(lambda a, b: compare_ranks(rank_by.get(a["puuid"]), rank_by.get(b["puuid"]))))
    rows = []
    for pos, p in enumerate(ordered, 1):
        rank = rank_by.get(p["puuid"])
        state = state_by.get(p["puuid"]) or {}
        rows.append({
            "position": pos,
            **{k: p.get(k) for k in ("id", "puuid", "game_name", "tag_line", "role", "twitch_url", "twitter_url")},
            "profile_icon_id": state.get("profile_icon_id"),
            "summoner_level": state.get("summoner_level"),
            "rank": rank,
            "rank_label": format_rank(rank.get("tier"), rank.get("rank"), rank.get("league_points")) if rank else "Unranked",
            "champions": champs_by.get(p["puuid"], [])[:3],
        })

    goal = None
    mode = (lb.get("goal_mode") or "LIVE").upper()
    if mode != "LIVE":
        history_since = _aware(lb.get("race_start_at")) or season_start_at
        history = safe_db(lambda: store.leaderboard_lp_history(lb_id, history_since), [],
                          "leaderboard_lp_history", log)
        goal = compute_goal_state(lb, history, now=now)
        goal["range"] = format_goal_range(lb.get("race_start_at"), lb.get("race_end_at"))

    return {
        "leaderboard": {k: lb.get(k) for k in ("id", "slug", "name", "description", "visibility", "updated_at")},
        "players": rows,
        "cutoffs": format_cutoffs(cutoffs),
        "last_updated": last_updated.isoformat() if last_updated else None,
        "goal": goal,
    }
