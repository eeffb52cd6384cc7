# app/leaderboard/stats.py
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from app.db import safe_db
from app.utils.query import champion_sort_key, parse_sort
from util.logging import setup_logger

log = setup_logger("stats")

TOP_N = 5
TOP_SINGLE_N = 3


@dataclass
class StatTotals:
    games: int = 0
    wins: int = 0
    losses: int = 0
    kills: int = 0
    deaths: int = 0
    assists: int = 0
    cs: int = 0
    duration_s: int = 0

    def add(self, row: Mapping[str, Any], duration_s: int, with_duration: bool = True):
        win = 1 if row.get("win") else 0
        self.games += 1
        self.wins += win
        self.losses += 1 - win
        self.kills += row.get("kills") or 0
        self.deaths += row.get("deaths") or 0
        self.assists += row.get("assists") or 0
        self.cs += row.get("cs") or 0
        if with_duration:
            self.duration_s += duration_s


# ---------- formatting ----------
def format_winrate(wins: int, games: int) -> str:
    if not games:
        return "0%"
    # JS Math.round: halves go up
    return f"{int(wins / games * 100 + 0.5)}%"


def average_kda(kills: int, assists: int, deaths: int) -> Dict[str, Any]:
    kda = (kills + assists) / max(1, deaths)
    return {"value": kda, "label": f"{kda:.2f}"}


def format_match_duration(duration_s: Optional[int]) -> str:
    if duration_s is None:
        return ""
    return f"{duration_s // 60}:{duration_s % 60:02d}"


def format_days_hours(total_seconds: float) -> str:
    safe = total_seconds if isinstance(total_seconds, (int, float)) and total_seconds > 0 else 0
    safe = int(safe)
    return f"{safe // 86400}d {(safe % 86400) // 3600}h"


def _relative(n: int, unit: str) -> str:
    if n == 0 and unit == "second":
        return "now"
    word = unit if abs(n) == 1 else unit + "s"
    return f"{abs(n)} {word} ago" if n > 0 else f"in {abs(n)} {word}"


def time_ago(from_ms: int, now_ms: Optional[int] = None) -> str:
    if now_ms is None:
        now_ms = int(datetime.now(timezone.utc).timestamp() * 1000)
    diff_s = int((now_ms - from_ms) // 1000)
    if abs(diff_s) < 60:
        return _relative(diff_s, "second")
    diff_min = int(diff_s / 60)
    if abs(diff_min) < 60:
        return _relative(diff_min, "minute")
    diff_hr = int(diff_min / 60)
    if abs(diff_hr) < 48:
        return _relative(diff_hr, "hour")
    return _relative(int(diff_hr / 24), "day")


def display_name(player: Optional[Mapping[str, Any]], puuid: str) -> str:
    name = ((player or {}).get("game_name") or "").strip()
    return name or puuid


# ---------- aggregation ----------
def aggregate_stats(
    players: List[Mapping[str, Any]],
    participants: List[Mapping[str, Any]],
    season_start_ms: int,
    champ_map: Optional[Mapping[int, Mapping[str, str]]] = None,
    icons: Optional[Mapping[str, Optional[int]]] = None,
    sort: Optional[str] = None,
) -> Dict[str, Any]:
    champ_map = champ_map or {}
    icons = icons or {}
    players_by_puuid = {p["puuid"]: p for p in players}

    match_by_id: Dict[str, Dict[str, int]] = {}
    for row in participants:
        end_ts = row.get("game_end_ts")
        if not isinstance(end_ts, int) or end_ts < season_start_ms:
            continue
        match_by_id[row["match_id"]] = {"duration_s": row.get("game_duration_s") or 0, "end_ts": end_ts}
    rows = [r for r in participants if r["match_id"] in match_by_id]

    totals = StatTotals()
    per_player: Dict[str, StatTotals] = {}
    per_champ: Dict[int, StatTotals] = {}
    champ_players: Dict[int, Dict[str, StatTotals]] = {}

    for row in rows:
        duration = match_by_id[row["match_id"]]["duration_s"]
        totals.add(row, duration)
        per_player.setdefault(row["puuid"], StatTotals()).add(row, duration)
        # champion totals never carried play time
        per_champ.setdefault(row["champion_id"], StatTotals()).add(row, duration, with_duration=False)
        champ_players.setdefault(row["champion_id"], {}).setdefault(row["puuid"], StatTotals()).add(row, duration)

    champions = []
    for champ_id, t in per_champ.items():
        champ = champ_map.get(champ_id) or {}
        breakdown = []
        for puuid, pt in champ_players.get(champ_id, {}).items():
            breakdown.append({
                "puuid": puuid,
                "name": display_name(players_by_puuid.get(puuid), puuid),
                "profile_icon_id": icons.get(puuid),
                "games": pt.games,
                "wins": pt.wins,
                "losses": pt.losses,
                "winrate": format_winrate(pt.wins, pt.games),
                "kda": average_kda(pt.kills, pt.assists, pt.deaths),
                "avg_cs": pt.cs / pt.games if pt.games else 0,
            })
        breakdown.sort(key=lambda b: -b["games"])
        champions.append({
            "champion_id": champ_id,
            "champion_name": champ.get("name", "Unknown"),
            "champion_key": champ.get("id"),
            "games": t.games,
            "wins": t.wins,
            "losses": t.losses,
            "winrate": format_winrate(t.wins, t.games),
            "winrate_value": t.wins / t.games if t.games else 0,
            "kda": average_kda(t.kills, t.assists, t.deaths),
            "avg_cs": t.cs / t.games if t.games else 0,
            "players": breakdown,
        })
    key, direction = parse_sort(sort)
    champions.sort(key=champion_sort_key(key), reverse=direction == "desc")

    leaderboard = []
    for puuid, t in per_player.items():
        leaderboard.append({
            "puuid": puuid,
            "name": display_name(players_by_puuid.get(puuid), puuid),
            "profile_icon_id": icons.get(puuid),
            **asdict(t),
            "winrate": format_winrate(t.wins, t.games),
            "kda": average_kda(t.kills, t.assists, t.deaths),
        })

    def top(field, n=TOP_N):
        return sorted(leaderboard, key=field, reverse=True)[:n]

    def top_single(field):
        return [
            {k: r.get(k) for k in ("match_id", "puuid", "champion_id", "kills", "deaths", "assists", "cs", "win")}
            for r in sorted(rows, key=lambda r: r.get(field) or 0, reverse=True)[:TOP_SINGLE_N]
        ]

    by_match: Dict[str, List[Mapping[str, Any]]] = {}
    for row in rows:
        by_match.setdefault(row["match_id"], []).append(row)
    longest = []
    for match_id, meta in match_by_id.items():
        if meta["duration_s"] <= 0:
            continue
        rep = (by_match.get(match_id) or [None])[0]
        longest.append({
            "match_id": match_id,
            "duration_s": meta["duration_s"],
            "duration": format_match_duration(meta["duration_s"]),
            "end_ts": meta["end_ts"],
            "player_name": display_name(players_by_puuid.get(rep["puuid"]), rep["puuid"]) if rep else "Unknown",
            "profile_icon_id": icons.get(rep["puuid"]) if rep else None,
        })
    longest.sort(key=lambda m: -m["duration_s"])

    return {
        "no_games": not rows,
        "totals": {
            **asdict(totals),
            "winrate": format_winrate(totals.wins, totals.games),
            "kda": average_kda(totals.kills, totals.assists, totals.deaths),
            "time_played": format_days_hours(totals.duration_s),
        },
        "players": leaderboard,
        "champions": champions,
        "top": {
            "kills": top(lambda r: r["kills"]),
            "deaths": top(lambda r: r["deaths"]),
            "assists": top(lambda r: r["assists"]),
            "cs": top(lambda r: r["cs"]),
            "wins": top(lambda r: r["wins"]),
            "games": top(lambda r: r["games"]),
            "kda": top(lambda r: r["kda"]["value"]),
            "winrate": top(lambda r: r["wins"] / r["games"] if r["games"] else 0),
            "time_played": top(lambda r: r["duration_s"]),
        },
        "single_game": {
            "kills": top_single("kills"),
            "deaths": top_single("deaths"),
            "assists": top_single("assists"),
            "cs": top_single("cs"),
        },
        "longest_matches": longest[:TOP_N],
    }


def build_stats(store, lb_id: str, season_start_ms: int,
                champ_map: Optional[Mapping[int, Mapping[str, str]]] = None,
                sort: Optional[str] = None) -> Dict[str, Any]:
    players = safe_db(lambda: store.leaderboard_players(lb_id), [], "leaderboard_players", log)
    puuids = [p["puuid"] for p in players if p.get("puuid")]
    if not puuids:
        return aggregate_stats([], [], season_start_ms, champ_map, sort=sort)
    states = safe_db(lambda: store.riot_states(puuids), [], "player_riot_state", log)
    participants = safe_db(lambda: store.season_participants(puuids, season_start_ms), [],
                           "match_participants", log)
    icons = {s["puuid"]: s.get("profile_icon_id") for s in states}
    return aggregate_stats(players, participants, season_start_ms, champ_map, icons, sort)
