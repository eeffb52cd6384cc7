from datetime import datetime, timezone

import pytest

from app.cache import LATEST_GAMES_CACHE, MOVERS_CACHE
from riot.riot_api import RiotApiError

UTC = timezone.utc


def ts(*args) -> datetime:
    return datetime(*args, tzinfo=UTC)


def ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


class FakeStore:
    """In-memory stand-in for LeaderboardStore; every table is a list of dict rows."""

    def __init__(self, **tables):
        self.leaderboards = tables.get("leaderboards", [])
        self.players = tables.get("players", [])
        self.people = tables.get("people", [])
        self.states = tables.get("states", [])
        self.ranks = tables.get("ranks", [])
        self.cutoffs = tables.get("cutoffs", [])
        self.top = tables.get("top", [])
        self.history = tables.get("history", [])
        self.events = tables.get("events", [])
        self.latest = tables.get("latest", [])
        self.matches = tables.get("matches", [])
        self.participants = tables.get("participants", [])
        self.movers = tables.get("movers", {})
        self.cache = tables.get("cache", {})
        self.relinked = []
        self.page_calls = []

    # --- leaderboards ---
    def leaderboard_by_slug(self, slug):
        return next((lb for lb in self.leaderboards if lb["slug"] == slug), None)

    def leaderboard_by_id(self, lb_id):
        return next((lb for lb in self.leaderboards if lb["id"] == lb_id), None)

    def leaderboard_players(self, lb_id, limit=50):
        return [p for p in self.players if p.get("leaderboard_id", lb_id) == lb_id][:limit]

    def is_member(self, lb_id, puuid):
        return any(p["puuid"] == puuid for p in self.leaderboard_players(lb_id))

    def leaderboard_ids_for_puuids(self, puuids):
        return sorted({p["leaderboard_id"] for p in self.players if p["puuid"] in puuids})

    # --- player state ---
    def riot_states(self, puuids):
        return [s for s in self.states if s["puuid"] in puuids]

    def rank_snapshots(self, puuids, queues=("RANKED_SOLO_5x5", "RANKED_FLEX_SR"), since=None):
        return [
            r for r in self.ranks
            if r["puuid"] in puuids and r["queue_type"] in queues
            and (since is None or r["fetched_at"] >= since)
        ]

    def players_by_puuid(self, puuids):
        return [p for p in self.people if p["puuid"] in puuids]

    def rank_cutoffs(self):
        return list(self.cutoffs)

    def top_champions(self, puuids):
        return [t for t in self.top if t["puuid"] in puuids]

    def player_state(self, puuid):
        return next((s for s in self.states if s["puuid"] == puuid), None)

    def player_ranks(self, puuid):
        return [r for r in self.ranks if r["puuid"] == puuid]

    # --- movers / activity ---
    def movers_fast(self, lb_id, start_at):
        return self.movers.get(start_at, [])

    def lp_events_since(self, puuids, since, queue_type="RANKED_SOLO_5x5"):
        return [
            e for e in self.events
            if e["puuid"] in puuids and e.get("queue_type", queue_type) == queue_type and e["recorded_at"] >= since
        ]

    def latest_games(self, lb_id, limit=10):
        return self.latest[:limit]

    def lp_events_for_matches(self, match_ids, puuids):
        return [e for e in self.events if e.get("match_id") in match_ids and e["puuid"] in puuids]

    def matches_in_season(self, match_ids, since):
        since_ms = ms(since)
        return [m for m in self.matches if m["match_id"] in match_ids and m["game_end_ts"] >= since_ms]

    def participants_by_match(self, match_ids):
        return [p for p in self.participants if p["match_id"] in match_ids]

    def season_participants(self, puuids, since_ms):
        return [
            p for p in self.participants
            if p["puuid"] in puuids and (p.get("game_end_ts") or 0) >= since_ms
        ]

    def player_matches(self, puuid, since_ms, limit=50, queue_id=420):
        rows = [
            p for p in self.participants
            if p["puuid"] == puuid and p.get("queue_id") == queue_id and p["game_end_ts"] >= since_ms
        ]
        rows.sort(key=lambda r: -r["game_end_ts"])
        return rows if limit is None else rows[:limit]

    # --- history ---
    def lp_history_page(self, puuid, page, since=None, page_size=1000):
        self.page_calls.append((page, since))
        rows = sorted(
            (h for h in self.history if h["puuid"] == puuid and (since is None or h["fetched_at"] >= since)),
            key=lambda h: h["fetched_at"],
        )
        return rows[page * page_size:(page + 1) * page_size]

    def leaderboard_lp_history(self, lb_id, since=None):
        return [h for h in self.history if since is None or h["fetched_at"] >= since]

    # --- writes ---
    def create_leaderboard(self, row):
        created = dict(row, id=f"00000000-0000-0000-0000-{len(self.leaderboards) + 1:012d}")
        self.leaderboards.append(created)
        return {k: created[k] for k in ("id", "slug", "name", "visibility", "goal_mode")}

    def add_player(self, lb_id, row):
        if self.is_member(lb_id, row["puuid"]):
            return None
        member = dict(row, leaderboard_id=lb_id, id=f"row-{row['puuid']}", sort_order=len(self.players))
        self.players.append(member)
        return {k: member[k] for k in ("id", "puuid", "game_name", "tag_line", "sort_order")}

    def remove_player(self, lb_id, puuid):
        before = len(self.players)
        self.players = [p for p in self.players
                        if not (p.get("leaderboard_id", lb_id) == lb_id and p["puuid"] == puuid)]
        return before - len(self.players)

    def refresh_materialized_view(self, name, analyze=True):
        self.refreshed = getattr(self, "refreshed", []) + [(name, analyze)]

    def relink_lp_event(self, puuid, wrong_match_id, recorded_at, new_match_id):
        self.relinked.append((puuid, wrong_match_id, recorded_at, new_match_id))
        return 1

    def match_cache_get(self, match_id):
        return self.cache.get(match_id)

    def match_cache_put(self, match_id, kind, payload):
        row = self.cache.setdefault(match_id, {"match_id": match_id})
        row[f"{kind}_json"] = payload
        row[f"{kind}_fetched_at"] = datetime.now(UTC)


class FakeRiot:
    """Riot client double: unknown matches and timelines are 404s, unknown accounts are 500s."""

    def __init__(self, matches=None, timelines=None, accounts=None, match_ids=None, riot_ids=None,
                 lookup_status=404):
        self.matches = matches or {}
        self.timelines = timelines or {}
        self.accounts = accounts or {}
        self.match_ids = match_ids or []
        self.riot_ids = riot_ids or {}
        self.lookup_status = lookup_status
        self.calls = []

    def resolve_puuid(self, game_name, tag_line):
        key = f"{game_name}#{tag_line}"
        if key not in self.riot_ids:
            raise RiotApiError(self.lookup_status, f"/account/{key}")
        return self.riot_ids[key]

    def get_match(self, match_id, routing=None):
        self.calls.append(("match", match_id, routing))
        if match_id not in self.matches:
            raise RiotApiError(404, f"/match/{match_id}")
        return self.matches[match_id]

    def get_timeline(self, match_id, routing=None):
        self.calls.append(("timeline", match_id, routing))
        if match_id not in self.timelines:
            raise RiotApiError(404, f"/timeline/{match_id}")
        return self.timelines[match_id]

    def get_account_by_puuid(self, puuid):
        if puuid not in self.accounts:
            raise RiotApiError(500, f"/account/{puuid}")
        return self.accounts[puuid]

    def get_match_ids_by_puuid(self, puuid, count=20, **kwargs):
        self.calls.append(("ids", puuid, count))
        return self.match_ids[:count]


@pytest.fixture(autouse=True)
def _clear_caches(monkeypatch):
    monkeypatch.delenv("RANKED_SEASON_START", raising=False)
    MOVERS_CACHE.clear()
    LATEST_GAMES_CACHE.clear()
    yield
    MOVERS_CACHE.clear()
    LATEST_GAMES_CACHE.clear()
