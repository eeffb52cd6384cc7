import re

import pytest
from fastapi import HTTPException

from app.schemas.params import (
    AddPlayerBody,
    CreateLeaderboardBody,
    LpRepairBody,
    normalize_role,
    normalize_visibility,
    parse_player_limit,
    slugify,
)


def _detail(excinfo):
    assert excinfo.value.status_code == 400
    return excinfo.value.detail


def test_visibility_defaults_and_suggestions():
    assert normalize_visibility(None) == "PUBLIC"
    assert normalize_visibility(" unlisted ") == "UNLISTED"
    with pytest.raises(HTTPException) as ei:
        normalize_visibility("privat")
    detail = _detail(ei)
    assert detail["param"] == "visibility"
    assert "PRIVATE" in detail["suggestions"]


def test_role_aliases():
    assert normalize_role("adc") == "BOT"
    assert normalize_role("Jg") == "JUNGLE"
    assert normalize_role("SUPPORT") == "SUPPORT"
    assert normalize_role("") is None
    with pytest.raises(HTTPException) as ei:
        normalize_role("jungel")
    assert "JUNGLE" in _detail(ei)["suggestions"]


def test_player_limit():
    assert parse_player_limit(None) == 50
    assert parse_player_limit("all") is None
    assert parse_player_limit("ALL") is None
    assert parse_player_limit("0") == 1
    assert parse_player_limit("500") == 200
    assert parse_player_limit("25") == 25
    with pytest.raises(HTTPException) as ei:
        parse_player_limit("lots")
    assert _detail(ei)["param"] == "limit"


@pytest.mark.parametrize("raw", ["inf", "-inf", "1e400"])
def test_player_limit_overflow_is_a_bad_request(raw):
    with pytest.raises(HTTPException) as ei:
        parse_player_limit(raw)
    assert _detail(ei)["param"] == "limit"


def test_slugify():
    assert slugify("  Climb to Masters!! ") == "climb-to-masters"
    assert slugify("***") == ""


def test_create_leaderboard_generates_slug():
    body = CreateLeaderboardBody(name="  My Board! ", visibility="private")
    row = body.row()
    assert row["name"] == "My Board!"
    assert row["visibility"] == "PRIVATE"
    assert row["goal_mode"] == "LIVE"
    assert re.match(r"^my-board-[a-z0-9]{5}$", row["slug"])


def test_create_leaderboard_keeps_explicit_slug():
    body = CreateLeaderboardBody(name="x", slug="Duo-Queue", goal_mode="lp-goal", lp_goal=500)
    assert body.row()["slug"] == "duo-queue"
    assert body.goal_mode == "LP_GOAL"


def test_create_leaderboard_rejects_bad_slug():
    with pytest.raises(HTTPException) as ei:
        CreateLeaderboardBody(name="x", slug="Bad Slug")
    detail = _detail(ei)
    assert detail["param"] == "slug"
    assert detail["suggestions"] == ["bad-slug"]


def test_create_leaderboard_requires_a_name():
    with pytest.raises(HTTPException) as ei:
        CreateLeaderboardBody(name="   ")
    assert _detail(ei)["param"] == "name"


@pytest.mark.parametrize("kwargs,param", [
    ({"goal_mode": "LP_GOAL"}, "lp_goal"),
    ({"goal_mode": "LP_GOAL", "lp_goal": 0}, "lp_goal"),
    ({"goal_mode": "RANK_GOAL"}, "rank_goal_tier"),
    ({"goal_mode": "RACE", "race_start_at": "2026-03-01T00:00:00Z", "race_end_at": "2026-02-01T00:00:00Z"},
     "race_end_at"),
    ({"goal_mode": "sprint"}, "goal_mode"),
])
def test_goal_config_is_checked(kwargs, param):
    with pytest.raises(HTTPException) as ei:
        CreateLeaderboardBody(name="x", **kwargs)
    assert _detail(ei)["param"] == param


def test_rank_goal_tier_suggestion():
    with pytest.raises(HTTPException) as ei:
        CreateLeaderboardBody(name="x", goal_mode="RANK_GOAL", rank_goal_tier="diamnd")
    assert "DIAMOND" in _detail(ei)["suggestions"]
    ok = CreateLeaderboardBody(name="x", goal_mode="RANK_GOAL", rank_goal_tier="master")
    assert ok.rank_goal_tier == "MASTER"


def test_add_player_body():
    body = AddPlayerBody(riot_id=" Faker # KR1 ", role="mid", twitch_url="https://twitch.tv/faker")
    assert body.riot_id == "Faker#KR1"
    assert (body.game_name, body.tag_line) == ("Faker", "KR1")
    assert body.role == "MID"
    assert body.twitter_url is None


@pytest.mark.parametrize("kwargs,param", [
    ({"riot_id": "Faker"}, "riot_id"),
    ({"riot_id": "a#b#c"}, "riot_id"),
    ({"riot_id": "Faker#KR1", "twitch_url": "twitch.tv/faker"}, "twitch_url"),
])
def test_add_player_rejects(kwargs, param):
    with pytest.raises(HTTPException) as ei:
        AddPlayerBody(**kwargs)
    assert _detail(ei)["param"] == param


def test_lp_repair_body():
    body = LpRepairBody(puuid=" p1 ", wrong_match_id="NA1_1", recorded_at="2026-02-01T10:00:00Z")
    assert body.puuid == "p1"
    assert body.queue_type == "RANKED_SOLO_5x5"
    assert body.recorded_at.year == 2026
    with pytest.raises(HTTPException) as ei:
        LpRepairBody(puuid="p1", wrong_match_id="", recorded_at="2026-02-01T10:00:00Z")
    assert _detail(ei)["param"] == "wrong_match_id"
    with pytest.raises(HTTPException):
        LpRepairBody(puuid="p1", wrong_match_id="x", recorded_at="2026-02-01T10:00:00Z", queue_type="ARAM")
