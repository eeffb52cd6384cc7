# api/routes/matches.py
from fastapi import APIRouter, Depends, HTTPException, Response

from api.deps import get_riot_client, get_store
from app.leaderboard.store import LeaderboardStore
from app.matches import UnsupportedMatchId, fetch_match_details, get_match, get_timeline, require_routing
from riot.riot_api import RiotApiError, RiotClient, RiotRateLimited
from util.logging import setup_logger

log = setup_logger("api.matches")

router = APIRouter(prefix="/match", tags=["Matches"])

CACHE_CONTROL = "public, s-maxage=300, stale-while-revalidate=600"


def _riot_failure(ex: RiotApiError, what: str) -> HTTPException:
    log.error(f"[{what}] {ex}")
    if isinstance(ex, RiotRateLimited):
        return HTTPException(status_code=429, detail=str(ex))
    if ex.status == 404:
        return HTTPException(status_code=404, detail="Not found")
    return HTTPException(status_code=500, detail=f"Failed to fetch {what}")


def _check_routing(match_id: str):
    try:
        require_routing(match_id)
    except UnsupportedMatchId as ex:
        raise HTTPException(status_code=400, detail=str(ex)) from ex


@router.get("/{match_id}")
def match_detail(
    match_id: str,
    response: Response,
    store: LeaderboardStore = Depends(get_store),
    client: RiotClient = Depends(get_riot_client),
):
    _check_routing(match_id)
    try:
        match, status = get_match(client, store, match_id)
    except RiotApiError as ex:
        raise _riot_failure(ex, "match") from ex
    response.headers["Cache-Control"] = CACHE_CONTROL
    response.headers["X-Cache"] = status
    return {"match": match}


@router.get("/{match_id}/timeline")
def match_timeline(
    match_id: str,
    response: Response,
    store: LeaderboardStore = Depends(get_store),
    client: RiotClient = Depends(get_riot_client),
):
    _check_routing(match_id)
    try:
        timeline, status = get_timeline(client, store, match_id)
    except RiotApiError as ex:
        raise _riot_failure(ex, "timeline") from ex
    response.headers["Cache-Control"] = CACHE_CONTROL
    response.headers["X-Cache"] = status
    return {"timeline": timeline}


@router.get("/{match_id}/details")
def match_details(match_id: str, client: RiotClient = Depends(get_riot_client)):
    """Match, timeline and participant Riot ids in one call; missing parts come back null."""
    return fetch_match_details(client, match_id)
