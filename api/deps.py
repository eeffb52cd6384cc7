# api/deps.py
import os
import threading
import uuid
from typing import Any, Dict, Iterator, Optional

from dotenv import load_dotenv
from fastapi import Depends, Header, HTTPException

from app.db import get_pool
from app.leaderboard.store import LeaderboardStore
from app.meta.ddragon import DD
from riot.rate_limit import MultiLimiter
from riot.refresh import RefreshStore
from riot.riot_api import RiotClient
from riot.season import SeasonInfo, current_season_info

load_dotenv()  # harmless if already loaded elsewhere

_client: Optional[RiotClient] = None
_client_lock = threading.Lock()


def get_store() -> Iterator[LeaderboardStore]:
    with get_pool().connection() as conn:
        yield LeaderboardStore(conn)


def get_refresh_store() -> Iterator[RefreshStore]:
    with get_pool().connection() as conn:
        yield RefreshStore(conn)


def get_riot_client() -> RiotClient:
    """Process-wide client so the rate limiter sees every request."""
    global _client
    with _client_lock:
        if _client is None:
            api_key = os.getenv("RIOT_API_KEY", "")
            if not api_key:
                raise HTTPException(status_code=500, detail="Missing RIOT_API_KEY")
            _client = RiotClient(api_key, platform=os.getenv("RIOT_PLATFORM", "na1"), limiter=MultiLimiter())
        return _client


def get_season() -> SeasonInfo:
    return current_season_info(dd_version=DD.latest_version(), region=os.getenv("RIOT_PLATFORM", "na1"))


def _get_admin_token() -> str:
    token = os.getenv("ADMIN_TOKEN", "")
    if not token:
        # Surface a clear error instead of crashing on import
        raise HTTPException(status_code=500, detail="ADMIN_TOKEN not set")
    return token


def require_admin(authorization: Optional[str] = Header(None)) -> None:
    token = _get_admin_token()
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing Authorization header")
    if authorization.split(" ", 1)[1] != token:
        raise HTTPException(status_code=403, detail="Forbidden")


def is_admin(authorization: Optional[str] = Header(None)) -> bool:
    token = os.getenv("ADMIN_TOKEN", "")
    if not token or not authorization or not authorization.startswith("Bearer "):
        return False
    return authorization.split(" ", 1)[1] == token


def visible_or_404(lb: Optional[Dict[str, Any]], admin: bool) -> Dict[str, Any]:
    # private boards are indistinguishable from missing ones for everybody else
    if not lb or (lb.get("visibility") == "PRIVATE" and not admin):
        raise HTTPException(status_code=404, detail="Not found")
    return lb


def leaderboard_by_slug(slug: str, store: LeaderboardStore = Depends(get_store),
                        admin: bool = Depends(is_admin)) -> Dict[str, Any]:
    return visible_or_404(store.leaderboard_by_slug(slug), admin)


def leaderboard_by_id(lb_id: str, store: LeaderboardStore = Depends(get_store),
                      admin: bool = Depends(is_admin)) -> Dict[str, Any]:
    try:
        uuid.UUID(lb_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="Not found") from None
    return visible_or_404(store.leaderboard_by_id(lb_id), admin)
