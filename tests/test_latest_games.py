from datetime import timedelta

from conftest import FakeStore, ms, ts

from app.leaderboard.latest_games import (
    build_latest_activity,
    filter_season_rows,
    get_latest_activity_cached,
    get_latest_games_fresh,
    unique_match_ids,
)

LB = "22222222-2222-2222-2222-222222222222"
NOW = ts(2026, 3, 1, 12)
SEASON = ts(2026, 1, 8, 20)
S_MS = ms(SEASON)
HOUR = 3600 * 1000


def _store():
    return FakeStore(
        players=[{"id": "row-a", "puuid": "A", "game_name": "Alpha", "tag_line": "NA1"}],
        people=[{"puuid": "B", "game_name": "Bravo", "tag_line": "EUW"}],
        states=[{"puuid": "A", "profile_icon_id": 11}, {"puuid": "B", "profile_icon_id": 22}],
        ranks=[
            {"puuid": "A", "queue_type": "RANKED_SOLO_5x5", "tier": "GOLD", "rank": "I", "league_points": 40,
             "fetched_at": ts(2026, 2, 1)},
            {"puuid": "A", "queue_type": "RANKED_FLEX_SR", "tier": "SILVER", "rank": "I", "league_points": 0,
             "fetched_at": ts(2026, 2, 1)},
            {"puuid": "B", "queue_type": "RANKED_FLEX_SR", "tier": "IRON", "rank": "IV", "league_points": 1,
             "fetched_at": ts(2026, 2, 1)},
        ],
        latest=[
            {"match_id": "NA1_3", "puuid": "A", "queue_id": 420, "game_end_ts": S_MS + 3 * HOUR,
             "game_duration_s": 1800, "champion_id": 99, "kills": 5, "deaths": 2, "assists": 9, "cs": 210,
             "win": True, "game_ended_in_surrender": False, "game_ended_in_early_surrender": False},
            {"match_id": "NA1_3", "puuid": "B", "queue_id": 420, "game_end_ts": S_MS + 3 * HOUR,
             "game_duration_s": 1800, "champion_id": 1, "kills": 1, "deaths": 6, "assists": 0, "cs": 150,
             "win": False, "lp_change": -14, "lp_note": None},
            {"match_id": "NA1_2", "puuid": "A", "queue_id": 440, "game_end_ts": S_MS + 2 * HOUR},
            {"match_id": "NA1_1", "puuid": "A", "queue_id": 420, "game_end_ts": S_MS - 1000},
            {"match_id": "NA1_0", "puuid": "A", "queue_id": 420, "game_end_ts": None, "game_duration_s": 180,
             "game_ended_in_early_surrender": True, "champion_id": 7},
        ],
        matches=[
            {"match_id": "NA1_3", "game_end_ts": S_MS + 3 * HOUR},
            {"match_id": "NA1_0", "game_end_ts": S_MS + HOUR},
        ],
        events=[{"match_id": "NA1_3", "puuid": "A", "lp_delta": 18, "note": None}],
        participants=[
            {"match_id": "NA1_3", "puuid": "A", "champion_id": 99, "kills": 5, "deaths": 2, "assists": 9,
             "cs": 210, "win": True},
            {"match_id": "NA1_3", "puuid": "B", "champion_id": 1, "kills": 1, "deaths": 6, "assists": 0,
             "cs": 150, "win": False},
        ],
    )


def _champions(version):
    return {99: {"id": "Kaisa", "name": "Kai'Sa"}}


def test_unique_match_ids_keeps_first_seen_order():
    rows = [{"match_id": "b"}, {"match_id": "a"}, {"match_id": "b"}, {"match_id": None}]
    assert unique_match_ids(rows) == ["b", "a"]


def test_filter_season_rows_keeps_rows_without_any_end_time():
    rows = [{"match_id": "x", "queue_id": 420}]
    assert filter_season_rows(rows, [], S_MS) == rows


def test_build_latest_activity():
    activity = build_latest_activity(_store(), LB, "16.4.1", champions=_champions, now=NOW)

    games = activity["latest_games"]
    assert [(g["matchId"], g["puuid"]) for g in games] == [("NA1_3", "A"), ("NA1_3", "B"), ("NA1_0", "A")]

    first = games[0]
    assert first["lpChange"] == 18
    assert first["endType"] == "NORMAL"
    assert (first["k"], first["d"], first["a"], first["cs"]) == (5, 2, 9, 210)
    # the row's own value wins over the event table
    assert games[1]["lpChange"] == -14
    assert games[2]["endTs"] == S_MS + HOUR
    assert games[2]["endType"] == "REMAKE"

    assert activity["champ_map"] == _champions("x")
    assert activity["players_by_puuid"]["B"]["game_name"] == "Bravo"
    assert activity["players_by_puuid"]["A"]["id"] == "row-a"
    assert activity["rank_by_puuid"]["A"]["tier"] == "GOLD"
    assert activity["rank_by_puuid"]["B"]["queue_type"] == "RANKED_FLEX_SR"
    assert len(activity["participants_by_match"]["NA1_3"]) == 2
    assert activity["player_icons_by_puuid"] == {"A": 11, "B": 22}


def test_champion_failures_leave_an_empty_map():
    def broken(version):
        raise RuntimeError("cdn down")

    activity = build_latest_activity(_store(), LB, "16.4.1", champions=broken, now=NOW)
    assert activity["champ_map"] == {}
    assert len(activity["latest_games"]) == 3


def test_empty_leaderboard():
    activity = build_latest_activity(FakeStore(), LB, "16.4.1", champions=_champions, now=NOW)
    assert activity["latest_games"] == []
    assert activity["players_by_puuid"] == {}


def test_fresh_games_skip_the_cache():
    store = _store()
    games = get_latest_games_fresh(store, LB, "16.4.1", now=NOW)
    assert len(games) == 3
    store.latest = store.latest[:1]
    assert len(get_latest_games_fresh(store, LB, "16.4.1", now=NOW)) == 1


def test_cached_activity_is_reused(monkeypatch):
    from app.meta import ddragon

    monkeypatch.setattr(ddragon.DD, "champion_map", lambda version=None: {})
    store = _store()
    first = get_latest_activity_cached(store, LB, "16.4.1")
    store.latest = []
    assert get_latest_activity_cached(store, LB, "16.4.1") is first
    assert get_latest_activity_cached(store, LB, "16.5.1") is not first


def test_season_start_is_respected_for_old_rows():
    store = _store()
    store.matches = []
    store.latest = [dict(store.latest[0], game_end_ts=ms(SEASON - timedelta(days=2)))]
    assert get_latest_games_fresh(store, LB, "16.4.1", now=NOW) == []
