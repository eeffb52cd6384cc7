# api/routes/leaderboards.py
from typing import Any, Dict, Optional

import psycopg
from fastapi import APIRouter, Depends, HTTPException, Query, Response

from api.deps import (
    get_riot_client,
    get_season,
    get_store,
    is_admin,
    leaderboard_by_id,
    leaderboard_by_slug,
    require_admin,
    visible_or_404,
)
from app.cache import invalidate_leaderboards
from app.leaderboard.graph import build_overview, graph_points
from app.leaderboard.latest_games import get_latest_activity_cached, get_latest_games_fresh
from app.leaderboard.movers import get_movers_fresh
from app.leaderboard.stats import build_stats
from app.leaderboard.store import MAX_LEADERBOARD_PLAYERS, LeaderboardStore
from app.meta.ddragon import DD, fallback_version
from app.schemas.params import AddPlayerBody, CreateLeaderboardBody
from riot.riot_api import RiotApiError, RiotClient
from riot.season import SeasonInfo
from util.logging import setup_logger

log = setup_logger("api.leaderboards")

router = APIRouter(tags=["Leaderboards"])

GRAPH_PUBLIC_S_MAXAGE_SECONDS = 300
GRAPH_PUBLIC_STALE_WHILE_REVALIDATE_SECONDS = 1800


# ---------- public reads ----------
@router.get("/lb/{slug}")
def leaderboard_overview(
    lb: Dict[str, Any] = Depends(leaderboard_by_slug),
    store: LeaderboardStore = Depends(get_store),
    season: SeasonInfo = Depends(get_season),
):
    dd_version = DD.latest_version()
    overview = build_overview(store, lb, season.start)
    overview["season"] = {"season": season.season, "start": season.start_iso}
    overview["dd_version"] = dd_version
    overview["latest_activity"] = get_latest_activity_cached(store, lb["id"], dd_version)
    return overview


@router.get("/lb/{slug}/graph")
def leaderboard_graph(
    response: Response,
    slug: str,
    puuid: Optional[str] = Query(None),
    store: LeaderboardStore = Depends(get_store),
    admin: bool = Depends(is_admin),
    season: SeasonInfo = Depends(get_season),
):
    puuid = (puuid or "").strip()
    if not slug or not puuid:
        raise HTTPException(status_code=400, detail="Missing slug or puuid")
    lb = visible_or_404(store.leaderboard_by_slug(slug), admin)
    if not store.is_member(lb["id"], puuid):
        raise HTTPException(status_code=404, detail="Not found")

    points = graph_points(store, puuid, season.start)
    if lb.get("visibility") == "PRIVATE":
        response.headers["Cache-Control"] = "private, no-store"
    else:
        response.headers["Cache-Control"] = (
            f"public, s-maxage={GRAPH_PUBLIC_S_MAXAGE_SECONDS}, "
            f"stale-while-revalidate={GRAPH_PUBLIC_STALE_WHILE_REVALIDATE_SECONDS}"
        )
    return {"points": points}


@router.get("/lb/{slug}/stats")
def leaderboard_stats(
    lb: Dict[str, Any] = Depends(leaderboard_by_slug),
    sort: Optional[str] = Query(None, description="winrate | games | kda | avgcs; prefix '-' for descending"),
    store: LeaderboardStore = Depends(get_store),
    season: SeasonInfo = Depends(get_season),
):
    stats = build_stats(store, lb["id"], season.start_ms, DD.champion_map(), sort)
    stats["season_start"] = season.start_iso
    return stats


@router.get("/leaderboards/{lb_id}/movers")
def leaderboard_movers(
    response: Response,
    lb: Dict[str, Any] = Depends(leaderboard_by_id),
    store: LeaderboardStore = Depends(get_store),
):
    response.headers["Cache-Control"] = "no-store"
    return {"movers": get_movers_fresh(store, lb["id"])}


@router.get("/leaderboards/{lb_id}/latest-games")
def leaderboard_latest_games(
    response: Response,
    lb: Dict[str, Any] = Depends(leaderboard_by_id),
    dd_version: Optional[str] = Query(None, alias="ddVersion"),
    store: LeaderboardStore = Depends(get_store),
):
    version = (dd_version or "").strip() or fallback_version()
    response.headers["Cache-Control"] = "no-store"
    return {"games": get_latest_games_fresh(store, lb["id"], version)}


# ---------- admin writes ----------
@router.post("/leaderboards", status_code=201, dependencies=[Depends(require_admin)])
def create_leaderboard(body: CreateLeaderboardBody, store: LeaderboardStore = Depends(get_store)):
    try:
        row = store.create_leaderboard(body.row())
    except psycopg.errors.UniqueViolation as ex:
        raise HTTPException(status_code=409, detail="Slug already taken") from ex
    log.info(f"created leaderboard slug={row['slug']} id={row['id']}")
    return {"leaderboard": row}


@router.post("/leaderboards/{lb_id}/players", status_code=201, dependencies=[Depends(require_admin)])
def add_player(
    body: AddPlayerBody,
    lb: Dict[str, Any] = Depends(leaderboard_by_id),
    store: LeaderboardStore = Depends(get_store),
    client: RiotClient = Depends(get_riot_client),
):
    if len(store.leaderboard_players(lb["id"], MAX_LEADERBOARD_PLAYERS)) >= MAX_LEADERBOARD_PLAYERS:
        raise HTTPException(status_code=400, detail=f"Max {MAX_LEADERBOARD_PLAYERS} players per leaderboard")

    try:
        puuid = client.resolve_puuid(body.game_name, body.tag_line)
    except RiotApiError as ex:
        if ex.status == 404:
            raise HTTPException(status_code=404, detail=f"Riot ID {body.riot_id} not found") from ex
        raise HTTPException(status_code=502, detail=f"Riot lookup failed: {ex}") from ex

    row = store.add_player(lb["id"], {
        "puuid": puuid,
        "game_name": body.game_name,
        "tag_line": body.tag_line,
        "role": body.role,
        "twitch_url": body.twitch_url,
        "twitter_url": body.twitter_url,
    })
    if row is None:
        raise HTTPException(status_code=409, detail="That player is already on this leaderboard")
    invalidate_leaderboards([lb["id"]])
    log.info(f"added {body.riot_id} to leaderboard {lb['id']}")
    return {"player": row}


@router.delete("/leaderboards/{lb_id}/players/{puuid}", dependencies=[Depends(require_admin)])
def remove_player(
    puuid: str,
    lb: Dict[str, Any] = Depends(leaderboard_by_id),
    store: LeaderboardStore = Depends(get_store),
):
    removed = store.remove_player(lb["id"], puuid)
    if not removed:
        raise HTTPException(status_code=404, detail="Not found")
    invalidate_leaderboards([lb["id"]])
    return {"ok": True, "removed": removed}
