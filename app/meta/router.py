# app/meta/router.py
import httpx
from fastapi import APIRouter, HTTPException, Query

from .ddragon import DD

router = APIRouter(prefix="/meta", tags=["Meta"])


@router.post("/refresh")
def meta_refresh(patch: str | None = Query(None), lang: str | None = Query(None)):
    """Force-refresh Data Dragon caches. If patch is provided (e.g., '15.24'), try to use it."""
    try:
        version = DD.refresh(patch_hint=patch, lang=lang)
    except (httpx.HTTPError, KeyError, ValueError) as ex:
        raise HTTPException(status_code=502, detail=f"Data Dragon unavailable: {ex}") from ex
    return {"ok": True, "version": version, "lang": DD.lang, "champions": len(DD.champions)}


@router.get("/version")
def meta_version():
    return {"version": DD.latest_version()}


@router.get("/champions")
def meta_champions():
    """Map of championId -> {id, name}."""
    version = DD.latest_version()
    return {"version": version, "champions": DD.champion_map(version)}
