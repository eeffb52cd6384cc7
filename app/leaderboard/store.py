# app/leaderboard/store.py
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

import psycopg
from psycopg.types.json import Jsonb

from app.db import execute, fetch_all, fetch_one, load_sql_bundle
from riot.normalize import RANKED_QUEUE_TYPES, SOLO_QUEUE_ID, SOLO_QUEUE_TYPE

SQL = load_sql_bundle("leaderboard.sql", required=(
    "leaderboard_by_slug", "leaderboard_by_id", "leaderboard_players", "riot_states",
    "rank_snapshots", "players_by_puuid", "rank_cutoffs", "top_champions", "movers_fast",
    "lp_events_since", "lp_events_for_matches", "latest_games", "matches_in_season",
    "participants_by_match", "season_participants", "lp_history_page", "leaderboard_lp_history",
    "membership", "player_state", "player_ranks", "player_matches", "insert_leaderboard",
    "next_sort_order", "insert_leaderboard_player", "upsert_player", "delete_leaderboard_player",
    "relink_lp_event", "leaderboard_ids_for_puuids", "match_cache_get",
    "match_cache_put_match", "match_cache_put_timeline",
))

MAX_LEADERBOARD_PLAYERS = 50
PAGE_SIZE = 1000


class LeaderboardStore:
    """Every query the API and aggregation modules run. Rows come back as plain dicts."""

    def __init__(self, conn: psycopg.Connection):
        self.conn = conn

    def _all(self, name: str, **params) -> List[Dict[str, Any]]:
        return fetch_all(self.conn, SQL[name], params)

    def _one(self, name: str, **params) -> Optional[Dict[str, Any]]:
        return fetch_one(self.conn, SQL[name], params)

    # --- leaderboards ---
    def leaderboard_by_slug(self, slug: str) -> Optional[Dict[str, Any]]:
        return self._one("leaderboard_by_slug", slug=slug)

    def leaderboard_by_id(self, lb_id: str) -> Optional[Dict[str, Any]]:
        return self._one("leaderboard_by_id", lb_id=lb_id)

    def leaderboard_players(self, lb_id: str, limit: int = MAX_LEADERBOARD_PLAYERS) -> List[Dict[str, Any]]:
        return self._all("leaderboard_players", lb_id=lb_id, lim=limit)

    def is_member(self, lb_id: str, puuid: str) -> bool:
        return self._one("membership", lb_id=lb_id, puuid=puuid) is not None

    def leaderboard_ids_for_puuids(self, puuids: List[str]) -> List[str]:
        return [r["leaderboard_id"] for r in self._all("leaderboard_ids_for_puuids", puuids=list(puuids))]

    # --- players ---
    def riot_states(self, puuids: List[str]) -> List[Dict[str, Any]]:
        return self._all("riot_states", puuids=list(puuids))

    def rank_snapshots(
        self,
        puuids: List[str],
        queues: Iterable[str] = RANKED_QUEUE_TYPES,
        since: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        return self._all("rank_snapshots", puuids=list(puuids), queues=list(queues), since=since)

    def players_by_puuid(self, puuids: List[str]) -> List[Dict[str, Any]]:
        return self._all("players_by_puuid", puuids=list(puuids))

    def rank_cutoffs(self) -> List[Dict[str, Any]]:
        return self._all("rank_cutoffs")

    def top_champions(self, puuids: List[str]) -> List[Dict[str, Any]]:
        return self._all("top_champions", puuids=list(puuids))

    def player_state(self, puuid: str) -> Optional[Dict[str, Any]]:
        return self._one("player_state", puuid=puuid)

    def player_ranks(self, puuid: str) -> List[Dict[str, Any]]:
        return self._all("player_ranks", puuid=puuid)

    # --- movers ---
    def movers_fast(self, lb_id: str, start_at: datetime) -> List[Dict[str, Any]]:
        return self._all("movers_fast", lb_id=lb_id, start_at=start_at)

    def lp_events_since(self, puuids: List[str], since: datetime, queue_type: str = SOLO_QUEUE_TYPE) -> List[Dict[str, Any]]:
        return self._all("lp_events_since", puuids=list(puuids), since=since, queue_type=queue_type)

    # --- games ---
    def latest_games(self, lb_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        return self._all("latest_games", lb_id=lb_id, lim=limit)

    def lp_events_for_matches(self, match_ids: List[str], puuids: List[str]) -> List[Dict[str, Any]]:
        return self._all("lp_events_for_matches", match_ids=list(match_ids), puuids=list(puuids))

    def matches_in_season(self, match_ids: List[str], since: datetime) -> List[Dict[str, Any]]:
        since_ms = int(since.timestamp() * 1000)
        return self._all("matches_in_season", match_ids=list(match_ids), since=since, since_ms=since_ms)

    def participants_by_match(self, match_ids: List[str]) -> List[Dict[str, Any]]:
        return self._all("participants_by_match", match_ids=list(match_ids))

    def season_participants(self, puuids: List[str], since_ms: int) -> List[Dict[str, Any]]:
        return self._all("season_participants", puuids=list(puuids), since_ms=since_ms)

    def player_matches(
        self,
        puuid: str,
        since_ms: int,
        limit: Optional[int] = 50,
        queue_id: int = SOLO_QUEUE_ID,
    ) -> List[Dict[str, Any]]:
        """Newest first. limit=None pages through every row."""
        if limit is not None:
            return self._all("player_matches", puuid=puuid, queue_id=queue_id, since_ms=since_ms, lim=limit, off=0)
        rows: List[Dict[str, Any]] = []
        offset = 0
        while True:
            page = self._all("player_matches", puuid=puuid, queue_id=queue_id, since_ms=since_ms,
                             lim=PAGE_SIZE, off=offset)
            rows.extend(page)
            if len(page) < PAGE_SIZE:
                return rows
            offset += PAGE_SIZE

    # --- history ---
    def lp_history_page(self, puuid: str, page: int, since: Optional[datetime] = None,
                        page_size: int = PAGE_SIZE) -> List[Dict[str, Any]]:
        return self._all("lp_history_page", puuid=puuid, since=since, lim=page_size, off=page * page_size)

    def leaderboard_lp_history(self, lb_id: str, since: Optional[datetime] = None) -> List[Dict[str, Any]]:
        return self._all("leaderboard_lp_history", lb_id=lb_id, since=since)

    # --- writes ---
    def create_leaderboard(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        return self._one("insert_leaderboard", **row)

    def add_player(self, lb_id: str, row: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        with self.conn.transaction():
            nxt = self._one("next_sort_order", lb_id=lb_id)
            execute(self.conn, SQL.upsert_player, {
                "puuid": row["puuid"], "game_name": row.get("game_name"), "tag_line": row.get("tag_line"),
            })
            return self._one(
                "insert_leaderboard_player",
                lb_id=lb_id,
                puuid=row["puuid"],
                game_name=row.get("game_name"),
                tag_line=row.get("tag_line"),
                role=row.get("role"),
                twitch_url=row.get("twitch_url"),
                twitter_url=row.get("twitter_url"),
                sort_order=(nxt or {}).get("next", 0),
            )

    def remove_player(self, lb_id: str, puuid: str) -> int:
        return execute(self.conn, SQL.delete_leaderboard_player, {"lb_id": lb_id, "puuid": puuid})

    def relink_lp_event(self, puuid: str, wrong_match_id: str, recorded_at: datetime, new_match_id: str) -> int:
        return execute(self.conn, SQL.relink_lp_event, {
            "puuid": puuid, "wrong_match_id": wrong_match_id,
            "recorded_at": recorded_at, "new_match_id": new_match_id,
        })

    def refresh_materialized_view(self, name: str, analyze: bool = True) -> None:
        # name is validated against an allow-list by the caller
        with self.conn.cursor() as cur:
            cur.execute(f"refresh materialized view {name};")
            if analyze:
                cur.execute(f"analyze {name};")

    # --- match cache ---
    def match_cache_get(self, match_id: str) -> Optional[Dict[str, Any]]:
        return self._one("match_cache_get", match_id=match_id)

    def match_cache_put(self, match_id: str, kind: str, payload: Any) -> None:
        name = "match_cache_put_match" if kind == "match" else "match_cache_put_timeline"
        execute(self.conn, SQL[name], {"match_id": match_id, "payload": Jsonb(payload)})
