# riot/refresh.py
import time
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

import psycopg
from psycopg import sql

from app.db import execute, fetch_all, fetch_one, load_sql_bundle
from util.logging import setup_logger

from .normalize import (
    RANKED_QUEUE_TYPES, SOLO_QUEUE_ID, SOLO_QUEUE_TYPE,
    game_end_ms, participant_cs, queue_id_for_queue_type,
)
from .ranks import CUTOFF_SLOTS, DIVISION_WEIGHT, cutoff_lp, is_apex, ladder_lp, tier_weight
from .riot_api import RiotClient
from .season import season_start

log = setup_logger("refresh")

RIOT_STATE_COLUMNS = (
    "summoner_id", "profile_icon_id", "summoner_level",
    "last_account_sync_at", "last_rank_sync_at", "last_matches_sync_at", "last_error",
)

TOP_CHAMPS_SAMPLE = 50
TOP_CHAMPS_KEEP = 5

BACKFILL_PAGE_SIZE = 100
BACKFILL_MAX_PAGES = 80

# old duplicates go first so the updates never hit a unique constraint
MIGRATE_PUUID_STEPS = (
    "migrate_participants_dedupe", "migrate_participants",
    "migrate_players_dedupe", "migrate_players",
    "migrate_leaderboard_players_dedupe", "migrate_leaderboard_players",
    "migrate_riot_state_dedupe", "migrate_riot_state",
    "migrate_rank_snapshot_dedupe", "migrate_rank_snapshot",
    "migrate_top_champions_dedupe", "migrate_top_champions",
    "migrate_lp_history", "migrate_lp_events",
)

SQL = load_sql_bundle("refresh.sql", required=(
    "leaderboard_puuids", "riot_states", "rank_snapshot", "upsert_rank_snapshot",
    "insert_lp_history", "insert_lp_event", "unlinked_lp_events", "linkable_matches",
    "link_lp_event", "existing_match_ids", "insert_match", "insert_participant",
    "recent_participants", "delete_top_champions", "insert_top_champion",
    "upsert_rank_cutoff", "leaderboard_ids_for_puuids", "player_riot_id", "participant_match_ids",
) + MIGRATE_PUUID_STEPS)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RefreshStore:
    """Postgres side of the refresh script. One autocommit connection, one statement per call."""

    def __init__(self, conn: psycopg.Connection):
        self.conn = conn

    def leaderboard_puuids(self) -> List[str]:
        return [r["puuid"] for r in fetch_all(self.conn, SQL.leaderboard_puuids)]

    def riot_states(self, puuids: List[str]) -> Dict[str, Dict[str, Any]]:
        rows = fetch_all(self.conn, SQL.riot_states, {"puuids": puuids})
        return {r["puuid"]: r for r in rows}

    def upsert_riot_state(self, puuid: str, **fields) -> None:
        unknown = set(fields) - set(RIOT_STATE_COLUMNS)
        if unknown:
            raise ValueError(f"unknown player_riot_state columns: {sorted(unknown)}")
        cols = ["puuid", *fields]
        query = sql.SQL(
            "insert into player_riot_state ({cols}, updated_at) values ({vals}, now()) "
            "on conflict (puuid) do update set {sets}, updated_at = now()"
        ).format(
            cols=sql.SQL(", ").join(sql.Identifier(c) for c in cols),
            vals=sql.SQL(", ").join(sql.Placeholder(c) for c in cols),
            sets=sql.SQL(", ").join(
                sql.SQL("{c} = excluded.{c}").format(c=sql.Identifier(c)) for c in fields
            ),
        )
        with self.conn.cursor() as cur:
            cur.execute(query, {"puuid": puuid, **fields})

    def rank_snapshot(self, puuid: str, queue_type: str) -> Optional[Dict[str, Any]]:
        return fetch_one(self.conn, SQL.rank_snapshot, {"puuid": puuid, "queue_type": queue_type})

    def upsert_rank_snapshot(self, row: Mapping[str, Any]) -> None:
        execute(self.conn, SQL.upsert_rank_snapshot, row)

    def insert_lp_history(self, row: Mapping[str, Any]) -> None:
        execute(self.conn, SQL.insert_lp_history, row)

    def insert_lp_event(self, row: Mapping[str, Any]) -> None:
        execute(self.conn, SQL.insert_lp_event, row)

    def unlinked_lp_events(self, puuid: str) -> List[Dict[str, Any]]:
        return fetch_all(self.conn, SQL.unlinked_lp_events, {"puuid": puuid})

    def linkable_matches(self, puuid: str, queue_id: int, limit: int = 20) -> List[Dict[str, Any]]:
        return fetch_all(self.conn, SQL.linkable_matches, {"puuid": puuid, "queue_id": queue_id, "lim": limit})

    def link_lp_event(self, event_id: int, match_id: str) -> None:
        execute(self.conn, SQL.link_lp_event, {"id": event_id, "match_id": match_id})

    def existing_match_ids(self, match_ids: List[str]) -> set:
        if not match_ids:
            return set()
        return {r["match_id"] for r in fetch_all(self.conn, SQL.existing_match_ids, {"match_ids": match_ids})}

    def insert_match(self, row: Mapping[str, Any]) -> None:
        execute(self.conn, SQL.insert_match, row)

    def insert_participant(self, row: Mapping[str, Any]) -> None:
        execute(self.conn, SQL.insert_participant, row)

    def recent_participants(self, puuid: str, limit: int = TOP_CHAMPS_SAMPLE) -> List[Dict[str, Any]]:
        return fetch_all(self.conn, SQL.recent_participants, {"puuid": puuid, "lim": limit})

    def replace_top_champions(self, puuid: str, rows: List[Mapping[str, Any]]) -> None:
        with self.conn.transaction():
            execute(self.conn, SQL.delete_top_champions, {"puuid": puuid})
            for row in rows:
                execute(self.conn, SQL.insert_top_champion, row)

    def upsert_rank_cutoff(self, row: Mapping[str, Any]) -> None:
        execute(self.conn, SQL.upsert_rank_cutoff, row)

    def leaderboard_ids_for_puuids(self, puuids: List[str]) -> List[str]:
        rows = fetch_all(self.conn, SQL.leaderboard_ids_for_puuids, {"puuids": puuids})
        return [r["leaderboard_id"] for r in rows]

    def player_riot_id(self, puuid: str) -> Optional[Dict[str, Any]]:
        return fetch_one(self.conn, SQL.player_riot_id, {"puuid": puuid})

    def participant_match_ids(self, puuid: str, match_ids: List[str]) -> set:
        if not match_ids:
            return set()
        rows = fetch_all(self.conn, SQL.participant_match_ids, {"puuid": puuid, "match_ids": match_ids})
        return {r["match_id"] for r in rows}

    def migrate_puuid(self, old: str, new: str) -> Dict[str, int]:
        """Move every row of `old` to `new` in one transaction; rowcount per step."""
        counts: Dict[str, int] = {}
        with self.conn.transaction():
            for step in MIGRATE_PUUID_STEPS:
                counts[step] = execute(self.conn, SQL[step], {"old": old, "new": new})
        return counts


class MissingRiotId(LookupError):
    def __init__(self, puuid: str):
        self.puuid = puuid
        super().__init__("Missing Riot ID (gameName/tagLine) for this player")


def _norm(value: Any) -> str:
    return str(value or "").strip().lower()


def find_participant(
    participants: List[Mapping[str, Any]],
    puuid: str,
    riot_id: Optional[Mapping[str, Any]] = None,
) -> Optional[Mapping[str, Any]]:
    """By PUUID, else by Riot ID (case-insensitive) for rows stored under a migrated PUUID."""
    part = next((p for p in participants if p.get("puuid") == puuid), None)
    if part is not None or not riot_id:
        return part
    name, tag = _norm(riot_id.get("game_name")), _norm(riot_id.get("tag_line"))
    if not name or not tag:
        return None
    return next(
        (p for p in participants
         if _norm(p.get("riotIdGameName")) == name and _norm(p.get("riotIdTagline")) == tag),
        None,
    )


def is_stale(ts: Optional[datetime], now: datetime, window: timedelta) -> bool:
    if ts is None:
        return True
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return now - ts > window


def _rank_position(tier: Optional[str], division: Optional[str]) -> tuple:
    if is_apex(tier):
        return (tier_weight(tier), 0)
    return (tier_weight(tier), DIVISION_WEIGHT.get((division or "").upper(), 0))


def lp_event_note(prev: Mapping[str, Any], cur: Mapping[str, Any], games: int) -> Optional[str]:
    before = _rank_position(prev.get("tier"), prev.get("rank"))
    after = _rank_position(cur.get("tier"), cur.get("rank"))
    if after > before:
        return "PROMOTED"
    if after < before:
        return "DEMOTED"
    if games > 1:
        return "MULTI_GAME"
    return None


def top_champions(rows: Iterable[Mapping[str, Any]], keep: int = TOP_CHAMPS_KEEP) -> List[Dict[str, int]]:
    agg: Dict[int, Dict[str, int]] = defaultdict(lambda: {"games": 0, "wins": 0, "last": 0})
    for r in rows:
        cur = agg[int(r["champion_id"])]
        cur["games"] += 1
        cur["wins"] += 1 if r.get("win") else 0
        cur["last"] = max(cur["last"], int(r.get("game_end_ts") or 0))
    ranked = sorted(agg.items(), key=lambda kv: (-kv[1]["games"], -kv[1]["last"]))
    return [{"champion_id": cid, **v} for cid, v in ranked[:keep]]


class Refresher:
    """
    Polls Riot for every player on any leaderboard and upserts what changed.
    Players are processed one at a time; a failing player is recorded in
    player_riot_state.last_error and the run moves on.
    """
    def __init__(
        self,
        store: RefreshStore,
        client: RiotClient,
        stale_minutes: int = 30,
        player_delay_s: float = 0.25,
        match_delay_s: float = 0.15,
        match_count: int = 10,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] = utcnow,
        on_refreshed: Optional[Callable[[List[str]], Any]] = None,
        region: Optional[str] = None,
    ):
        self.store = store
        self.api = client
        self.stale_window = timedelta(minutes=stale_minutes)
        self.player_delay_s = player_delay_s
        self.match_delay_s = match_delay_s
        self.match_count = match_count
        self._sleep = sleep
        self._now = now
        self.on_refreshed = on_refreshed
        self.region = region

    # ---------- cutoffs ----------
    def refresh_rank_cutoffs(self) -> int:
        """Challenger / Grandmaster LP cutoffs for solo queue. Never fatal."""
        fetchers = {
            "CHALLENGER": self.api.get_challenger_entries,
            "GRANDMASTER": self.api.get_grandmaster_entries,
        }
        upserted = 0
        for tier, fetch in fetchers.items():
            try:
                entries = fetch(SOLO_QUEUE_TYPE) or []
            except Exception as ex:
                log.error(f"[cutoffs] fetching {tier} failed: {ex}")
                continue
            if not entries:
                continue
            value = cutoff_lp(entries, CUTOFF_SLOTS[tier])
            inactive = sum(1 for e in entries if e.get("inactive"))
            if value is None:
                log.info(f"[cutoffs] {tier}: only {len(entries) - inactive} active entries, no cutoff")
                continue
            try:
                self.store.upsert_rank_cutoff({
                    "queue_type": SOLO_QUEUE_TYPE, "tier": tier,
                    "cutoff_lp": value, "fetched_at": self._now(),
                })
            except Exception as ex:
                log.error(f"[cutoffs] upsert {tier} failed: {ex}")
                continue
            upserted += 1
            log.info(f"[cutoffs] {tier}: {len(entries)} total, {inactive} inactive, cutoff LP {value}")
        return upserted

    # ---------- per-player steps ----------
    def sync_summoner_basics(self, puuid: str) -> Optional[str]:
        data = self.api.get_summoner_by_puuid(puuid) or {}
        self.store.upsert_riot_state(
            puuid,
            summoner_id=data.get("id"),
            profile_icon_id=data.get("profileIconId"),
            summoner_level=data.get("summonerLevel"),
            last_account_sync_at=self._now(),
            last_error=None,
        )
        return data.get("id")

    def sync_rank(self, puuid: str) -> int:
        entries = self.api.get_league_entries_by_puuid(puuid) or []
        now = self._now()
        written = 0
        # unranked players return [] and still get a sync timestamp
        for e in entries:
            queue_type = e.get("queueType")
            if queue_type not in RANKED_QUEUE_TYPES:
                continue
            row = {
                "puuid": puuid,
                "queue_type": queue_type,
                "tier": e.get("tier"),
                "rank": e.get("rank"),
                "league_points": e.get("leaguePoints"),
                "wins": e.get("wins"),
                "losses": e.get("losses"),
                "fetched_at": now,
            }
            prev = self.store.rank_snapshot(puuid, queue_type)
            self.store.upsert_rank_snapshot(row)
            self._record_lp_change(prev, row)
            written += 1
        self.store.upsert_riot_state(puuid, last_rank_sync_at=now, last_error=None)
        return written

    def _record_lp_change(self, prev: Optional[Mapping[str, Any]], row: Mapping[str, Any]) -> None:
        fields = ("tier", "rank", "league_points", "wins", "losses")
        if prev is not None and all(prev.get(f) == row.get(f) for f in fields):
            return

        self.store.insert_lp_history({
            "puuid": row["puuid"], "queue_type": row["queue_type"],
            "tier": row["tier"], "rank": row["rank"], "lp": row["league_points"],
            "wins": row["wins"], "losses": row["losses"], "fetched_at": row["fetched_at"],
        })
        if prev is None:
            return

        games = (row.get("wins") or 0) + (row.get("losses") or 0) - (prev.get("wins") or 0) - (prev.get("losses") or 0)
        if games <= 0:
            return
        before = ladder_lp(prev.get("tier"), prev.get("rank"), prev.get("league_points"))
        after = ladder_lp(row.get("tier"), row.get("rank"), row.get("league_points"))
        if before is None or after is None:
            return
        self.store.insert_lp_event({
            "puuid": row["puuid"],
            "queue_type": row["queue_type"],
            "match_id": None,
            "lp_delta": after - before,
            "note": lp_event_note(prev, row, games),
            "recorded_at": row["fetched_at"],
        })

    def sync_matches(self, puuid: str) -> int:
        ids = self.api.get_match_ids_by_puuid(puuid, queue=SOLO_QUEUE_ID, count=self.match_count) or []
        existing = self.store.existing_match_ids(ids)
        new_ids = [mid for mid in ids if mid not in existing]
        inserted = 0
        for match_id in new_ids:
            self._store_match(match_id, puuid)
            inserted += 1
            self._sleep(self.match_delay_s)

        self.store.upsert_riot_state(puuid, last_matches_sync_at=self._now(), last_error=None)
        return inserted

    def _store_match(self, match_id: str, puuid: str, riot_id: Optional[Mapping[str, Any]] = None) -> bool:
        """Insert the match and the player's participant row. True when the player was found in it."""
        match = self.api.get_match(match_id) or {}
        info = match.get("info") or {}
        meta = match.get("metadata") or {}
        mid = meta.get("matchId") or match_id
        part = find_participant(info.get("participants") or [], puuid, riot_id)

        self.store.insert_match({
            "match_id": mid,
            "queue_id": int(info.get("queueId") or 0),
            "game_end_ts": game_end_ms(info),
            "game_duration_s": int(info.get("gameDuration") or 0),
            "game_ended_in_surrender": bool(part and part.get("gameEndedInSurrender")),
            "game_ended_in_early_surrender": bool(part and part.get("gameEndedInEarlySurrender")),
        })
        if part is None:
            return False
        self.store.insert_participant({
            "match_id": mid,
            "puuid": puuid,
            "champion_id": int(part.get("championId") or 0),
            "kills": int(part.get("kills") or 0),
            "deaths": int(part.get("deaths") or 0),
            "assists": int(part.get("assists") or 0),
            "cs": participant_cs(part),
            "win": bool(part.get("win")),
            "vision_score": part.get("visionScore"),
        })
        return True

    # ---------- season backfill ----------
    def season_match_ids(self, puuid: str, start_time_s: int) -> List[str]:
        """Every ranked solo match id since `start_time_s`, 100 per page until a short page."""
        ids: List[str] = []
        for page in range(BACKFILL_MAX_PAGES):
            batch = self.api.get_match_ids_by_puuid(
                puuid,
                queue=SOLO_QUEUE_ID,
                start=page * BACKFILL_PAGE_SIZE,
                count=BACKFILL_PAGE_SIZE,
                start_time=start_time_s,
            ) or []
            ids.extend(batch)
            if len(batch) < BACKFILL_PAGE_SIZE:
                break
        return list(dict.fromkeys(ids))

    def backfill_season(self, puuid: str, since: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Fetch the player's whole ranked solo season and insert every match
        they are missing a participant row for. Rows stored under an older
        PUUID are matched by the player's Riot ID instead.
        """
        since = since or season_start(now=self._now(), region=self.region)
        riot_id = self.store.player_riot_id(puuid)
        ids = self.season_match_ids(puuid, int(since.timestamp()))
        have = self.store.participant_match_ids(puuid, ids)
        missing = [mid for mid in ids if mid not in have]

        inserted = 0
        for i, match_id in enumerate(missing, start=1):
            if self._store_match(match_id, puuid, riot_id):
                inserted += 1
            if i % 25 == 0:
                log.info(f"[backfill] fetched {i}/{len(missing)}")
            self._sleep(self.match_delay_s)

        self.store.upsert_riot_state(puuid, last_matches_sync_at=self._now())
        result = {
            "puuid": puuid,
            "season_start": since.isoformat(),
            "riot_ids": len(ids),
            "missing_before": len(missing),
            "inserted_participants": inserted,
        }
        log.info(f"[backfill] {puuid[:12]} {result}")
        return result

    # ---------- PUUID repair ----------
    def repair_puuid(
        self,
        old_puuid: str,
        game_name: Optional[str] = None,
        tag_line: Optional[str] = None,
        candidate_puuid: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Re-resolve a player's Riot ID and move all of their rows to the PUUID
        Riot returns now. Raises MissingRiotId when no Riot ID is known.
        """
        game_name = (game_name or "").strip()
        tag_line = (tag_line or "").strip()
        if not game_name or not tag_line:
            stored = self.store.player_riot_id(old_puuid) or {}
            game_name = (stored.get("game_name") or "").strip()
            tag_line = (stored.get("tag_line") or "").strip()
        if not game_name or not tag_line:
            raise MissingRiotId(old_puuid)

        new_puuid = (candidate_puuid or "").strip() or self.api.resolve_puuid(game_name, tag_line)
        if not new_puuid or new_puuid == old_puuid:
            return {
                "updated": False,
                "oldPuuid": old_puuid,
                "newPuuid": old_puuid,
                "reason": "Candidate PUUID matched existing PUUID" if candidate_puuid
                else "No updated PUUID returned by Riot for this Riot ID",
            }

        counts = self.store.migrate_puuid(old_puuid, new_puuid)
        log.info(f"[puuid repair] {game_name}#{tag_line} {old_puuid[:8]} -> {new_puuid[:8]} "
                 f"rows={sum(counts.values())}")
        if self.on_refreshed is not None:
            try:
                self.on_refreshed([old_puuid, new_puuid])
            except Exception as ex:
                log.warning(f"cache invalidation failed: {ex}")
        return {
            "updated": True,
            "oldPuuid": old_puuid,
            "newPuuid": new_puuid,
            "gameName": game_name,
            "tagLine": tag_line,
        }

    def link_lp_events(self, puuid: str) -> int:
        """
        Attach unlinked LP events to the latest match of their queue that ended before them.
        Events are walked oldest first; a used match and everything older leave the pool.
        """
        linked = 0
        candidates: Dict[int, List[Dict[str, Any]]] = {}
        for ev in self.store.unlinked_lp_events(puuid):
            queue_id = queue_id_for_queue_type(ev.get("queue_type"))
            if queue_id is None:
                continue
            if queue_id not in candidates:
                candidates[queue_id] = self.store.linkable_matches(puuid, queue_id)
            recorded_ms = int(ev["recorded_at"].timestamp() * 1000)
            pool = candidates[queue_id]  # newest first
            idx = next((i for i, m in enumerate(pool) if (m.get("game_end_ts") or 0) <= recorded_ms), None)
            if idx is None:
                continue
            best = pool[idx]
            candidates[queue_id] = pool[:idx]
            self.store.link_lp_event(ev["id"], best["match_id"])
            linked += 1
        return linked

    def compute_top_champions(self, puuid: str) -> List[Dict[str, int]]:
        top = top_champions(self.store.recent_participants(puuid, TOP_CHAMPS_SAMPLE))
        computed_at = self._now()
        self.store.replace_top_champions(puuid, [
            {
                "puuid": puuid, "champion_id": t["champion_id"], "games": t["games"],
                "wins": t["wins"], "last_played_ts": t["last"], "computed_at": computed_at,
            }
            for t in top
        ])
        return top

    def refresh_player(self, puuid: str, stale_rank: bool = True, stale_matches: bool = True) -> bool:
        try:
            self.sync_summoner_basics(puuid)
            if stale_rank:
                self.sync_rank(puuid)
            if stale_matches:
                self.sync_matches(puuid)
            self.link_lp_events(puuid)
            self.compute_top_champions(puuid)
            self.api.metrics.record_player(True)
            return True
        except Exception as ex:
            log.error(f"Error for {puuid[:12]}: {ex}", exc_info=True)
            self.api.metrics.record_player(False)
            try:
                self.store.upsert_riot_state(puuid, last_error=str(ex)[:1000])
            except Exception as state_ex:
                log.error(f"could not record last_error for {puuid[:12]}: {state_ex}")
            return False

    # ---------- run ----------
    def run(self, force: bool = False, only: Optional[Iterable[str]] = None) -> Dict[str, int]:
        self.refresh_rank_cutoffs()

        puuids = list(dict.fromkeys(self.store.leaderboard_puuids()))
        if only:
            wanted = set(only)
            puuids = [p for p in puuids if p in wanted]
        if not puuids:
            log.info("No players to refresh.")
            return {"players": 0, "refreshed": 0, "failed": 0, "skipped": 0}

        states = self.store.riot_states(puuids)
        now = self._now()
        refreshed: List[str] = []
        failed = skipped = 0

        for puuid in puuids:
            st = states.get(puuid) or {}
            stale_rank = force or is_stale(st.get("last_rank_sync_at"), now, self.stale_window)
            stale_matches = force or is_stale(st.get("last_matches_sync_at"), now, self.stale_window)
            if not stale_rank and not stale_matches:
                skipped += 1
                continue

            log.info(f"Refreshing {puuid[:12]} stale_rank={stale_rank} stale_matches={stale_matches}")
            if self.refresh_player(puuid, stale_rank, stale_matches):
                refreshed.append(puuid)
            else:
                failed += 1
            self._sleep(self.player_delay_s)

        if refreshed and self.on_refreshed is not None:
            try:
                self.on_refreshed(refreshed)
            except Exception as ex:
                log.warning(f"cache invalidation failed: {ex}")

        log.info(self.api.metrics.summary())
        log.info(f"Done. players={len(puuids)} refreshed={len(refreshed)} failed={failed} skipped={skipped}")
        return {"players": len(puuids), "refreshed": len(refreshed), "failed": failed, "skipped": skipped}
