from datetime import timedelta

import pytest
from conftest import ms, ts

from riot.metrics import Metrics
from riot.refresh import MissingRiotId, Refresher, find_participant, is_stale, lp_event_note, top_champions

NOW = ts(2026, 3, 1, 12)


class FakeRefreshStore:
    def __init__(self, puuids, states=None, snapshots=None, existing=(), riot_ids=None):
        self.riot_ids = riot_ids or {}
        self.migrated = []
        self.puuids = puuids
        self.states = states or {}
        self.snapshots = snapshots or {}
        self.existing = set(existing)
        self.state_writes = []
        self.history = []
        self.events = []
        self.matches = []
        self.participants = []
        self.top = {}
        self.cutoffs = []

    def leaderboard_puuids(self):
        return list(self.puuids)

    def riot_states(self, puuids):
        return {p: s for p, s in self.states.items() if p in puuids}

    def upsert_riot_state(self, puuid, **fields):
        self.state_writes.append((puuid, fields))

    def rank_snapshot(self, puuid, queue_type):
        return self.snapshots.get((puuid, queue_type))

    def upsert_rank_snapshot(self, row):
        self.snapshots[(row["puuid"], row["queue_type"])] = dict(row)

    def insert_lp_history(self, row):
        self.history.append(dict(row))

    def insert_lp_event(self, row):
        self.events.append(dict(row, id=len(self.events) + 1))

    def unlinked_lp_events(self, puuid):
        rows = [e for e in self.events if e["puuid"] == puuid and e["match_id"] is None]
        return sorted(rows, key=lambda e: (e["recorded_at"], e["id"]))

    def linkable_matches(self, puuid, queue_id, limit=20):
        mine = {p["match_id"] for p in self.participants if p["puuid"] == puuid}
        used = {e["match_id"] for e in self.events if e["puuid"] == puuid}
        rows = [m for m in self.matches
                if m["match_id"] in mine and m["match_id"] not in used and m["queue_id"] == queue_id]
        return sorted(rows, key=lambda m: -m["game_end_ts"])[:limit]

    def link_lp_event(self, event_id, match_id):
        next(e for e in self.events if e["id"] == event_id)["match_id"] = match_id

    def existing_match_ids(self, match_ids):
        return self.existing & set(match_ids)

    def insert_match(self, row):
        self.matches.append(dict(row))

    def insert_participant(self, row):
        self.participants.append(dict(row, game_end_ts=self.matches[-1]["game_end_ts"]))

    def recent_participants(self, puuid, limit=50):
        return [p for p in self.participants if p["puuid"] == puuid][:limit]

    def replace_top_champions(self, puuid, rows):
        self.top[puuid] = list(rows)

    def upsert_rank_cutoff(self, row):
        self.cutoffs.append(dict(row))

    def player_riot_id(self, puuid):
        return self.riot_ids.get(puuid)

    def participant_match_ids(self, puuid, match_ids):
        return {p["match_id"] for p in self.participants if p["puuid"] == puuid and p["match_id"] in match_ids}

    def migrate_puuid(self, old, new):
        self.migrated.append((old, new))
        moved = [p for p in self.participants if p["puuid"] == old]
        for p in moved:
            p["puuid"] = new
        return {"migrate_participants": len(moved)}


class FakeApi:
    def __init__(self, fail_summoner=False, season_ids=None, riot_ids=None):
        self.metrics = Metrics()
        self.fail_summoner = fail_summoner
        self.season_ids = season_ids
        self.riot_ids = riot_ids or {}
        self.match_calls = []
        self.page_calls = []

    def get_challenger_entries(self, queue):
        raise RuntimeError("league-v4 down")

    def get_grandmaster_entries(self, queue):
        entries = [{"leaguePoints": i} for i in range(701)]
        entries.append({"leaguePoints": 5000, "inactive": True})
        return entries

    def get_summoner_by_puuid(self, puuid):
        if self.fail_summoner:
            raise RuntimeError("summoner-v4 exploded")
        return {"id": "s-" + puuid, "profileIconId": 5, "summonerLevel": 100}

    def get_league_entries_by_puuid(self, puuid):
        return [
            {"queueType": "RANKED_SOLO_5x5", "tier": "GOLD", "rank": "II", "leaguePoints": 50,
             "wins": 10, "losses": 5},
            {"queueType": "RANKED_FLEX_SR", "tier": "SILVER", "rank": "I", "leaguePoints": 0,
             "wins": 1, "losses": 0},
            {"queueType": "CHERRY", "tier": "GOLD"},
        ]

    def get_match_ids_by_puuid(self, puuid, queue=None, start=0, count=20, start_time=None):
        if self.season_ids is None:
            return ["NA1_2", "NA1_1"]
        self.page_calls.append((queue, start, count, start_time))
        return self.season_ids[start:start + count]

    def resolve_puuid(self, game_name, tag_line):
        return self.riot_ids[f"{game_name}#{tag_line}"]

    def get_match(self, match_id):
        self.match_calls.append(match_id)
        return {
            "metadata": {"matchId": match_id},
            "info": {
                "queueId": 420,
                "gameEndTimestamp": ms(NOW - timedelta(minutes=20)),
                "gameDuration": 1700,
                "participants": [
                    {"puuid": "A", "championId": 145, "kills": 7, "deaths": 2, "assists": 4,
                     "totalMinionsKilled": 180, "neutralMinionsKilled": 20, "win": True, "visionScore": 22},
                ],
            },
        }


def _refresher(store, api, **kwargs):
    return Refresher(store, api, sleep=lambda s: None, now=lambda: NOW, **kwargs)


def test_is_stale():
    assert is_stale(None, NOW, timedelta(minutes=30))
    assert not is_stale(NOW - timedelta(minutes=10), NOW, timedelta(minutes=30))
    assert is_stale((NOW - timedelta(hours=1)).replace(tzinfo=None), NOW, timedelta(minutes=30))


def test_lp_event_note():
    gold2 = {"tier": "GOLD", "rank": "II"}
    assert lp_event_note({"tier": "GOLD", "rank": "III"}, gold2, 1) == "PROMOTED"
    assert lp_event_note({"tier": "PLATINUM", "rank": "IV"}, gold2, 1) == "DEMOTED"
    assert lp_event_note(gold2, gold2, 2) == "MULTI_GAME"
    assert lp_event_note(gold2, gold2, 1) is None
    assert lp_event_note({"tier": "MASTER", "rank": "I"}, {"tier": "GRANDMASTER", "rank": "I"}, 1) == "PROMOTED"


def test_top_champions_by_games_then_recency():
    rows = [
        {"champion_id": 1, "win": True, "game_end_ts": 10},
        {"champion_id": 2, "win": False, "game_end_ts": 30},
        {"champion_id": 1, "win": False, "game_end_ts": 20},
        {"champion_id": 3, "win": True, "game_end_ts": 40},
    ]
    top = top_champions(rows, keep=2)
    assert top == [
        {"champion_id": 1, "games": 2, "wins": 1, "last": 20},
        {"champion_id": 3, "games": 1, "wins": 1, "last": 40},
    ]


def test_cutoffs_skip_failures_and_inactive_entries():
    store = FakeRefreshStore([])
    assert _refresher(store, FakeApi()).refresh_rank_cutoffs() == 1
    assert store.cutoffs == [{"queue_type": "RANKED_SOLO_5x5", "tier": "GRANDMASTER",
                              "cutoff_lp": 1, "fetched_at": NOW}]


def test_run_refreshes_stale_players_only():
    store = FakeRefreshStore(
        ["A", "B", "A"],
        states={"B": {"last_rank_sync_at": NOW - timedelta(minutes=5),
                      "last_matches_sync_at": NOW - timedelta(minutes=5)}},
        snapshots={("A", "RANKED_SOLO_5x5"): {"tier": "GOLD", "rank": "III", "league_points": 90,
                                              "wins": 9, "losses": 5}},
        existing={"NA1_1"},
    )
    api = FakeApi()
    notified = []
    result = _refresher(store, api, on_refreshed=notified.append).run()

    assert result == {"players": 2, "refreshed": 1, "failed": 0, "skipped": 1}
    assert notified == [["A"]]

    # solo moved III 90 -> II 50 in one game; flex had no snapshot so it only gets history
    assert [h["queue_type"] for h in store.history] == ["RANKED_SOLO_5x5", "RANKED_FLEX_SR"]
    assert len(store.events) == 1
    event = store.events[0]
    assert (event["lp_delta"], event["note"]) == (60, "PROMOTED")
    assert event["match_id"] == "NA1_2"

    assert api.match_calls == ["NA1_2"]
    assert store.matches[0]["game_duration_s"] == 1700
    assert store.participants[0]["cs"] == 200
    assert store.top["A"][0]["champion_id"] == 145
    assert ("A", {"summoner_id": "s-A", "profile_icon_id": 5, "summoner_level": 100,
                  "last_account_sync_at": NOW, "last_error": None}) in store.state_writes


def test_unchanged_rank_writes_nothing_new():
    snapshot = {"tier": "GOLD", "rank": "II", "league_points": 50, "wins": 10, "losses": 5}
    store = FakeRefreshStore(["A"], snapshots={("A", "RANKED_SOLO_5x5"): snapshot})
    _refresher(store, FakeApi()).sync_rank("A")
    assert [h["queue_type"] for h in store.history] == ["RANKED_FLEX_SR"]
    assert store.events == []


def test_failed_player_records_last_error():
    store = FakeRefreshStore(["A"])
    api = FakeApi(fail_summoner=True)
    result = _refresher(store, api).run(force=True)
    assert result["failed"] == 1
    assert store.state_writes[-1] == ("A", {"last_error": "summoner-v4 exploded"})
    assert api.metrics.total("players_failed") == 1


def test_run_without_players():
    result = _refresher(FakeRefreshStore([]), FakeApi()).run(only=["Z"])
    assert result == {"players": 0, "refreshed": 0, "failed": 0, "skipped": 0}


def _linking_store(match_ends, events):
    store = FakeRefreshStore(["A"])
    for match_id, end in match_ends.items():
        store.matches.append({"match_id": match_id, "queue_id": 420, "game_end_ts": ms(end)})
        store.participants.append({"match_id": match_id, "puuid": "A"})
    for i, (recorded_at, match_id) in enumerate(events, start=1):
        store.events.append({"id": i, "puuid": "A", "queue_type": "RANKED_SOLO_5x5",
                             "match_id": match_id, "lp_delta": 20, "recorded_at": recorded_at})
    return store


def test_link_lp_events_takes_newest_unused_match_per_event():
    store = _linking_store(
        {
            "NA1_10": NOW - timedelta(hours=5),
            "NA1_11": NOW - timedelta(hours=3),
            "NA1_12": NOW - timedelta(hours=1),
            "NA1_13": NOW - timedelta(minutes=10),
        },
        [
            (NOW - timedelta(minutes=30), None),
            (NOW - timedelta(hours=4, minutes=55), "NA1_10"),
            (NOW - timedelta(hours=2, minutes=30), None),
        ],
    )
    assert _refresher(store, FakeApi()).link_lp_events("A") == 2
    assert [e["match_id"] for e in store.events] == ["NA1_12", "NA1_10", "NA1_11"]


def test_link_lp_events_never_goes_back_in_time():
    store = _linking_store(
        {"NA1_20": NOW - timedelta(hours=2), "NA1_21": NOW - timedelta(minutes=55)},
        [(NOW - timedelta(minutes=50), None), (NOW - timedelta(minutes=40), None)],
    )
    assert _refresher(store, FakeApi()).link_lp_events("A") == 1
    assert [e["match_id"] for e in store.events] == ["NA1_21", None]


def test_link_lp_events_ignores_other_queues():
    store = _linking_store({"NA1_30": NOW - timedelta(hours=1)}, [(NOW, None)])
    store.events[0]["queue_type"] = "RANKED_FLEX_SR"
    assert _refresher(store, FakeApi()).link_lp_events("A") == 0
    assert store.events[0]["match_id"] is None


# ---------- season backfill ----------
SEASON_START = ts(2026, 1, 8, 20)


class RenamedPlayerApi(FakeApi):
    """NA1_3 lists the player under a PUUID from another API key; NA1_4 lacks them entirely."""

    def get_match(self, match_id):
        match = super().get_match(match_id)
        part = match["info"]["participants"][0]
        if match_id == "NA1_3":
            part.update(puuid="OLD-A", riotIdGameName=" alpha", riotIdTagline="na1")
        elif match_id == "NA1_4":
            part.update(puuid="Z", riotIdGameName="Zed", riotIdTagline="NA1")
        return match


def test_backfill_pages_through_the_season():
    season_ids = [f"NA1_{i}" for i in range(230)]
    store = FakeRefreshStore(["A"], riot_ids={"A": {"game_name": "Alpha", "tag_line": "NA1"}})
    store.participants = [{"match_id": f"NA1_{i}", "puuid": "A"} for i in range(3)]
    api = RenamedPlayerApi(season_ids=season_ids)

    result = _refresher(store, api).backfill_season("A", since=SEASON_START)

    start_s = int(SEASON_START.timestamp())
    assert api.page_calls == [(420, 0, 100, start_s), (420, 100, 100, start_s), (420, 200, 100, start_s)]
    assert api.match_calls[:2] == ["NA1_3", "NA1_4"]
    assert len(api.match_calls) == 227
    assert result == {
        "puuid": "A",
        "season_start": "2026-01-08T20:00:00+00:00",
        "riot_ids": 230,
        "missing_before": 227,
        "inserted_participants": 226,
    }
    renamed = next(p for p in store.participants if p["match_id"] == "NA1_3")
    assert (renamed["puuid"], renamed["champion_id"]) == ("A", 145)
    assert not any(p["match_id"] == "NA1_4" for p in store.participants)
    assert len(store.matches) == 227
    assert store.state_writes[-1] == ("A", {"last_matches_sync_at": NOW})


def test_backfill_defaults_to_the_region_season_start():
    api = FakeApi(season_ids=[])
    result = _refresher(FakeRefreshStore(["A"]), api, region="euw1").backfill_season("A")
    assert api.page_calls == [(420, 0, 100, int(ts(2026, 1, 8, 12).timestamp()))]
    assert result["riot_ids"] == 0 and result["inserted_participants"] == 0


def test_backfill_stops_after_the_page_cap():
    class EndlessApi(FakeApi):
        def get_match_ids_by_puuid(self, puuid, queue=None, start=0, count=20, start_time=None):
            self.page_calls.append(start)
            return [f"NA1_{start + i}" for i in range(count)]

    api = EndlessApi()
    ids = _refresher(FakeRefreshStore(["A"]), api).season_match_ids("A", 0)
    assert len(api.page_calls) == 80
    assert api.page_calls[-1] == 7900
    assert len(ids) == 8000


def test_find_participant_falls_back_to_riot_id():
    parts = [
        {"puuid": "X", "riotIdGameName": "Alpha", "riotIdTagline": "NA1"},
        {"puuid": "A", "riotIdGameName": "Other", "riotIdTagline": "NA1"},
    ]
    assert find_participant(parts, "A")["riotIdGameName"] == "Other"
    assert find_participant(parts, "B", {"game_name": "ALPHA", "tag_line": "na1 "})["puuid"] == "X"
    assert find_participant(parts, "B", {"game_name": "Alpha", "tag_line": ""}) is None
    assert find_participant(parts, "B") is None


# ---------- PUUID repair ----------
def test_repair_puuid_moves_rows_to_the_resolved_puuid():
    store = FakeRefreshStore(["OLD"], riot_ids={"OLD": {"game_name": "Alpha ", "tag_line": "NA1"}})
    store.participants = [{"match_id": "NA1_1", "puuid": "OLD"}]
    notified = []
    refresher = _refresher(store, FakeApi(riot_ids={"Alpha#NA1": "NEW"}), on_refreshed=notified.append)

    result = refresher.repair_puuid("OLD")

    assert result == {"updated": True, "oldPuuid": "OLD", "newPuuid": "NEW",
                      "gameName": "Alpha", "tagLine": "NA1"}
    assert store.migrated == [("OLD", "NEW")]
    assert store.participants[0]["puuid"] == "NEW"
    assert notified == [["OLD", "NEW"]]


def test_repair_puuid_without_a_change():
    store = FakeRefreshStore(["A"], riot_ids={"A": {"game_name": "Alpha", "tag_line": "NA1"}})
    result = _refresher(store, FakeApi(riot_ids={"Alpha#NA1": "A"})).repair_puuid("A")
    assert result["updated"] is False
    assert result["reason"] == "No updated PUUID returned by Riot for this Riot ID"
    assert store.migrated == []

    same = _refresher(store, FakeApi()).repair_puuid("A", candidate_puuid="A")
    assert same["reason"] == "Candidate PUUID matched existing PUUID"


def test_repair_puuid_prefers_the_given_riot_id_and_candidate():
    store = FakeRefreshStore(["OLD"])
    api = FakeApi(riot_ids={"Faker#KR1": "P-Faker"})
    assert _refresher(store, api).repair_puuid("OLD", " Faker", "KR1 ")["newPuuid"] == "P-Faker"
    assert _refresher(store, FakeApi()).repair_puuid("OLD2", "Faker", "KR1", candidate_puuid="P-2")["newPuuid"] == "P-2"
    assert store.migrated == [("OLD", "P-Faker"), ("OLD2", "P-2")]


def test_repair_puuid_needs_a_riot_id():
    with pytest.raises(MissingRiotId) as ei:
        _refresher(FakeRefreshStore(["OLD"]), FakeApi()).repair_puuid("OLD")
    assert str(ei.value) == "Missing Riot ID (gameName/tagLine) for this player"
