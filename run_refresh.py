# run_refresh.py
import argparse
import os
import time
from datetime import datetime, timezone
from typing import List, Optional

import httpx
from dotenv import load_dotenv

from app.cache import invalidate_for_puuids
from app.db import connect
from riot.rate_limit import MultiLimiter
from riot.refresh import Refresher, RefreshStore
from riot.riot_api import RiotClient
from util.logging import key_preview, setup_logger

load_dotenv()
log = setup_logger("refresh")

RIOT_API_KEY = os.getenv("RIOT_API_KEY", "")
RIOT_PLATFORM = os.getenv("RIOT_PLATFORM", "na1")
STALE_MINUTES = int(os.getenv("REFRESH_STALE_MINUTES", "30"))
PLAYER_DELAY_MS = int(os.getenv("REFRESH_PLAYER_DELAY_MS", "250"))
MATCH_DELAY_MS = int(os.getenv("REFRESH_MATCH_DELAY_MS", "150"))
MATCH_COUNT = int(os.getenv("REFRESH_MATCH_COUNT", "10"))
# API instance whose caches should be dropped after a run (optional)
REVALIDATE_URL = os.getenv("REVALIDATE_URL", "")


def notify_api(lb_ids: List[str]) -> None:
    if not REVALIDATE_URL or not lb_ids:
        return
    token = os.getenv("ADMIN_TOKEN", "")
    try:
        r = httpx.post(
            REVALIDATE_URL,
            json={"lb_ids": lb_ids},
            headers={"Authorization": f"Bearer {token}"},
            timeout=10.0,
        )
    except httpx.HTTPError as ex:
        log.warning(f"revalidate request failed: {ex}")
        return
    if r.is_error:
        log.warning(f"revalidate {r.status_code}: {r.text[:200]}")
    else:
        log.info(f"revalidated {len(lb_ids)} leaderboard(s) on {REVALIDATE_URL}")


def parse_args(argv=None):
    ap = argparse.ArgumentParser(description="Refresh rank, matches and top champions for leaderboard players.")
    mode = ap.add_mutually_exclusive_group()
    mode.add_argument("--once", action="store_true", help="Single pass then exit (default)")
    mode.add_argument("--loop", type=int, metavar="SECONDS", help="Repeat every SECONDS until interrupted")
    mode.add_argument("--backfill-season", metavar="PUUID", help="Fetch every ranked solo match of the season for one player")
    mode.add_argument("--repair-puuid", metavar="PUUID", help="Re-resolve the stored Riot ID and move the player to its current PUUID")
    ap.add_argument("--season-start", metavar="ISO", help="Backfill from this instant instead of the season start")
    ap.add_argument("--force", action="store_true", help="Ignore staleness and refresh everyone")
    ap.add_argument("--puuid", action="append", default=[], help="Restrict to this PUUID (repeatable)")
    return ap.parse_args(argv)


def parse_iso(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def run_once(args) -> dict:
    log.info(f"[env] RIOT_API_KEY {key_preview(RIOT_API_KEY)} platform={RIOT_PLATFORM}")
    with connect() as conn, RiotClient(RIOT_API_KEY, platform=RIOT_PLATFORM, limiter=MultiLimiter()) as client:
        store = RefreshStore(conn)

        def on_refreshed(puuids: List[str]) -> None:
            notify_api(invalidate_for_puuids(store, puuids))

        refresher = Refresher(
            store,
            client,
            stale_minutes=STALE_MINUTES,
            player_delay_s=PLAYER_DELAY_MS / 1000.0,
            match_delay_s=MATCH_DELAY_MS / 1000.0,
            match_count=MATCH_COUNT,
            on_refreshed=on_refreshed,
            region=RIOT_PLATFORM,
        )
        if args.backfill_season:
            result = refresher.backfill_season(args.backfill_season, since=parse_iso(args.season_start))
            on_refreshed([args.backfill_season])
            return result
        if args.repair_puuid:
            result = refresher.repair_puuid(args.repair_puuid)
            log.info(f"[puuid repair] {result}")
            return result
        return refresher.run(force=args.force, only=args.puuid or None)


def main(argv=None):
    args = parse_args(argv)
    if not RIOT_API_KEY:
        raise RuntimeError("Missing RIOT_API_KEY")

    if not args.loop:
        run_once(args)
        return

    log.info(f"Refresh loop starting, every {args.loop}s")
    while True:
        try:
            run_once(args)
        except KeyboardInterrupt:
            log.info("Refresh interrupted, exiting.")
            break
        except Exception as loop_ex:
            log.error(f"Refresh loop error: {loop_ex}", exc_info=True)
        try:
            time.sleep(args.loop)
        except KeyboardInterrupt:
            log.info("Refresh interrupted, exiting.")
            break


if __name__ == "__main__":
    main()
