from functools import cmp_to_key

import pytest

from riot.normalize import (
    compute_end_type,
    derive_patch,
    game_end_ms,
    parse_riot_id,
    participant_cs,
    patch_major,
    queue_id_for_queue_type,
)
from riot.ranks import compare_ranks, cutoff_lp, format_rank, is_apex, ladder_lp, rank_score
from riot.regions import resolve_routing, routing_for_match_id


def test_parse_riot_id_trims_parts():
    assert parse_riot_id("  Faker # KR1 ") == ("Faker", "KR1")


@pytest.mark.parametrize("raw", ["", "Faker", "Faker#", "#KR1", "a#b#c"])
def test_parse_riot_id_rejects_malformed(raw):
    with pytest.raises(ValueError):
        parse_riot_id(raw)


def test_patch_helpers():
    assert derive_patch("25.17.456.1234") == "25.17"
    assert patch_major("16.1.1") == 16
    assert patch_major("latest") is None
    assert patch_major(None) is None


def test_queue_ids():
    assert queue_id_for_queue_type("RANKED_SOLO_5x5") == 420
    assert queue_id_for_queue_type("RANKED_FLEX_SR") == 440
    assert queue_id_for_queue_type("ARAM") is None


def test_participant_cs_counts_jungle_camps():
    assert participant_cs({"totalMinionsKilled": 180, "neutralMinionsKilled": 24}) == 204
    assert participant_cs({}) == 0


def test_game_end_falls_back_to_start_plus_duration():
    assert game_end_ms({"gameEndTimestamp": 5000}) == 5000
    assert game_end_ms({"gameStartTimestamp": 1000, "gameDuration": 60}) == 61000


@pytest.mark.parametrize(
    "kwargs,expected",
    [
        ({"early_surrender": True, "duration_s": 180}, "REMAKE"),
        ({"early_surrender": True, "duration_s": 240}, "EARLY_SURRENDER"),
        ({"early_surrender": True, "lp_change": -5}, "EARLY_SURRENDER"),
        ({"early_surrender": True}, "REMAKE"),
        ({"surrender": True, "duration_s": 1500}, "SURRENDER"),
        ({"duration_s": 200, "lp_change": 0}, "REMAKE"),
        ({"duration_s": 280, "lp_change": -12}, "EARLY_SURRENDER"),
        ({"duration_s": 1800, "lp_change": 21}, "NORMAL"),
        ({"duration_s": 200, "lp_change": float("nan")}, "REMAKE"),
    ],
)
def test_compute_end_type(kwargs, expected):
    assert compute_end_type(**kwargs) == expected


def test_ranks_sort_best_first():
    rows = [
        {"tier": "GOLD", "rank": "II", "league_points": 50},
        None,
        {"tier": "MASTER", "rank": "I", "league_points": 10},
        {"tier": "GOLD", "rank": "I", "league_points": 0},
        {"tier": "GOLD", "rank": "II", "league_points": 75},
    ]
    ordered = sorted(rows, key=cmp_to_key(compare_ranks))
    assert ordered[0]["tier"] == "MASTER"
    assert ordered[1] == {"tier": "GOLD", "rank": "I", "league_points": 0}
    assert ordered[2]["league_points"] == 75
    assert ordered[-1] is None


def test_ladder_lp_spans_promotions():
    assert ladder_lp("GOLD", "II", 50) == 1450
    assert ladder_lp("GOLD", "I", 0) - ladder_lp("GOLD", "II", 90) == 10
    # apex tiers share one floor
    assert ladder_lp("GRANDMASTER", "I", 400) == ladder_lp("MASTER", "I", 400)
    assert ladder_lp(None, None, 10) is None


def test_rank_score_ignores_apex_division():
    assert rank_score({"tier": "MASTER", "rank": "I", "league_points": 5}) == 80005
    assert rank_score(None) == 0
    assert is_apex("challenger")


def test_format_rank():
    assert format_rank(None) == "Unranked"
    assert format_rank("DIAMOND", "III", 42) == "Diamond III   42 LP"
    assert format_rank("CHALLENGER", "I", 1200) == "Challenger   1200 LP"


def test_cutoff_lp_skips_inactive():
    entries = [{"leaguePoints": lp} for lp in (900, 800, 700)] + [{"leaguePoints": 999, "inactive": True}]
    assert cutoff_lp(entries, 2) == 800
    assert cutoff_lp(entries, 4) is None


def test_routing():
    assert routing_for_match_id("NA1_5365324203") == "americas"
    assert routing_for_match_id("EUW1_1") == "europe"
    assert routing_for_match_id("XX_1") is None
    assert routing_for_match_id("nounderscore") is None
    assert resolve_routing("kr") == "asia"
    assert resolve_routing("sea") == "sea"
