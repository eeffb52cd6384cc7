# api/admin_refresh.py
from typing import List, Optional

import psycopg
from fastapi import APIRouter, Depends, HTTPException

from api.deps import get_refresh_store, get_riot_client, get_store, require_admin
from app.cache import invalidate_for_puuids, invalidate_leaderboards
from app.leaderboard.store import LeaderboardStore
from app.lp_events import NoMatchFound, repair_lp_event
from app.schemas.params import LpRepairBody, PuuidRepairBody, RefreshViewsBody, RevalidateBody
from riot.refresh import MissingRiotId, Refresher, RefreshStore
from riot.riot_api import RiotApiError, RiotClient
from util.logging import setup_logger

log = setup_logger("admin")

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])

DEFAULT_VIEWS: List[str] = [
    "leaderboard_lp_history",
]


def ident(s: str) -> str:
    return "".join(c for c in s if c.isalnum() or c == "_")


@router.post("/refresh")
def refresh_materialized_views(body: RefreshViewsBody, store: LeaderboardStore = Depends(get_store)):
    views = body.views or DEFAULT_VIEWS

    refreshed: List[str] = []
    errors: List[str] = []
    for v in views:
        name = ident(v)
        if name not in DEFAULT_VIEWS:
            errors.append(f"{name}: unknown view")
            continue
        try:
            store.refresh_materialized_view(name, analyze=body.analyze_after)
            refreshed.append(name)
        except psycopg.Error as e:
            log.error(f"refresh {name} failed: {e}")
            errors.append(f"{name}: {e}")

    return {"refreshed": refreshed, "errors": errors}


@router.post("/revalidate")
def revalidate(body: RevalidateBody):
    lb_ids = [i for i in (body.lb_ids or []) if i]
    if not lb_ids:
        raise HTTPException(status_code=400, detail="Missing lbIds")
    revalidated = invalidate_leaderboards(lb_ids)
    return {"ok": True, "revalidated": revalidated, "count": len(revalidated)}


@router.post("/lp-events/repair")
def repair_lp_events(
    body: LpRepairBody,
    store: LeaderboardStore = Depends(get_store),
    client: RiotClient = Depends(get_riot_client),
):
    try:
        return repair_lp_event(client, store, body.puuid, body.wrong_match_id, body.recorded_at, body.queue_type)
    except NoMatchFound as ex:
        raise HTTPException(status_code=404, detail=str(ex)) from ex
    except RiotApiError as ex:
        log.error(f"[lp repair] {ex}")
        raise HTTPException(status_code=502, detail=f"Riot lookup failed: {ex}") from ex


@router.post("/players/{puuid}/repair-puuid")
def repair_player_puuid(
    puuid: str,
    body: Optional[PuuidRepairBody] = None,
    store: RefreshStore = Depends(get_refresh_store),
    client: RiotClient = Depends(get_riot_client),
):
    """Move a player stored under a stale PUUID to the one Riot returns for their Riot ID."""
    body = body or PuuidRepairBody()
    refresher = Refresher(store, client, on_refreshed=lambda puuids: invalidate_for_puuids(store, puuids))
    try:
        return refresher.repair_puuid(puuid, body.game_name, body.tag_line, body.candidate_puuid)
    except MissingRiotId as ex:
        raise HTTPException(status_code=400, detail=str(ex)) from ex
    except RiotApiError as ex:
        log.error(f"[puuid repair] {ex}")
        if ex.status == 404:
            raise HTTPException(status_code=404, detail="Riot ID not found") from ex
        raise HTTPException(status_code=502, detail=f"Riot lookup failed: {ex}") from ex
    except psycopg.Error as ex:
        log.error(f"[puuid repair] migrating {puuid[:12]} failed: {ex}")
        raise HTTPException(status_code=500, detail=f"PUUID migration failed: {ex}") from ex
