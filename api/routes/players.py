# api/routes/players.py
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from api.deps import get_season, get_store
from app.db import safe_db
from app.leaderboard.store import LeaderboardStore
from app.schemas.params import parse_player_limit
from riot.normalize import FLEX_QUEUE_TYPE, SOLO_QUEUE_TYPE
from riot.season import SeasonInfo
from util.logging import setup_logger

log = setup_logger("api.players")

router = APIRouter(prefix="/player", tags=["Players"])


def _latest(*values: Any) -> Optional[datetime]:
    stamps = []
    for v in values:
        if isinstance(v, datetime):
            stamps.append(v if v.tzinfo else v.replace(tzinfo=timezone.utc))
    return max(stamps) if stamps else None


def player_summary(state: Optional[Dict[str, Any]], ranks: List[Dict[str, Any]]) -> Dict[str, Any]:
    state = state or {}
    solo = next((r for r in ranks if r.get("queue_type") == SOLO_QUEUE_TYPE), None)
    flex = next((r for r in ranks if r.get("queue_type") == FLEX_QUEUE_TYPE), None)
    rank = solo or flex
    last = _latest(state.get("last_rank_sync_at"), state.get("last_matches_sync_at"), (rank or {}).get("fetched_at"))
    return {
        "profileIconId": state.get("profile_icon_id"),
        "lastUpdated": last.isoformat() if last else None,
        "rank": {
            "tier": rank.get("tier"),
            "rank": rank.get("rank"),
            "league_points": rank.get("league_points") or 0,
            "wins": rank.get("wins") or 0,
            "losses": rank.get("losses") or 0,
            "queueType": rank.get("queue_type"),
        } if rank else None,
    }


def match_row(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "matchId": row["match_id"],
        "puuid": row["puuid"],
        "championId": row["champion_id"],
        "win": row.get("win"),
        "k": row.get("kills") or 0,
        "d": row.get("deaths") or 0,
        "a": row.get("assists") or 0,
        "cs": row.get("cs") or 0,
        "visionScore": row.get("vision_score"),
        "endTs": row.get("game_end_ts"),
        "durationS": row.get("game_duration_s"),
        "queueId": row.get("queue_id"),
    }


@router.get("/{puuid}/summary")
def get_player_summary(puuid: str, store: LeaderboardStore = Depends(get_store)):
    state = safe_db(lambda: store.player_state(puuid), {}, "player_riot_state", log)
    ranks = safe_db(lambda: store.player_ranks(puuid), [], "player_rank_snapshot", log)
    top = safe_db(lambda: store.top_champions([puuid]), [], "player_top_champions", log)
    summary = player_summary(state, ranks)
    summary["topChampions"] = [
        {"championId": t["champion_id"], "games": t["games"], "wins": t.get("wins") or 0} for t in top
    ]
    return summary


@router.get("/{puuid}/matches")
def get_player_matches(
    puuid: str,
    limit: Optional[str] = Query(None, description="1..200 (default 50) or 'all'"),
    store: LeaderboardStore = Depends(get_store),
    season: SeasonInfo = Depends(get_season),
):
    rows = store.player_matches(puuid, season.start_ms, parse_player_limit(limit))
    return {"matches": [match_row(r) for r in rows]}
