# app/schemas/params.py
import re
import secrets
import string
from datetime import datetime
from difflib import get_close_matches
from typing import List, Literal, Optional

from fastapi import HTTPException
from pydantic import BaseModel, field_validator, model_validator

from app.leaderboard.goals import GOAL_MODES
from riot.normalize import FLEX_QUEUE_TYPE, SOLO_QUEUE_TYPE, parse_riot_id
from riot.ranks import TIER_WEIGHT

Visibility = Literal["PUBLIC", "UNLISTED", "PRIVATE"]
VISIBILITIES = ["PUBLIC", "UNLISTED", "PRIVATE"]

ROLE_ALIASES = {
    "top": "TOP", "toplane": "TOP",
    "jg": "JUNGLE", "jungle": "JUNGLE",
    "mid": "MID", "middle": "MID", "midlane": "MID",
    "bot": "BOT", "adc": "BOT", "bottom": "BOT", "carry": "BOT",
    "sup": "SUPPORT", "support": "SUPPORT", "supp": "SUPPORT",
}
ROLES = ["TOP", "JUNGLE", "MID", "BOT", "SUPPORT"]

SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
URL_RE = re.compile(r"^https?://\S+$", re.IGNORECASE)

PLAYER_LIMIT_DEFAULT = 50
PLAYER_LIMIT_MAX = 200


def _err(param: str, value, allowed: List[str], suggestions: Optional[List[str]] = None):
    raise HTTPException(
        status_code=400,
        detail={
            "error": "invalid_param",
            "param": param,
            "value": value,
            "allowed": allowed,
            "suggestions": suggestions or [],
        },
    )


def _suggest(value: str, universe: List[str], n=3):
    return get_close_matches(value, universe, n=n, cutoff=0.6)


def _blank(raw) -> bool:
    return raw is None or (isinstance(raw, str) and raw.strip() == "")


def slugify(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower().strip()).strip("-")


def random_suffix(n: int = 5) -> str:
    alphabet = string.ascii_lowercase + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(n))


def normalize_visibility(raw: Optional[str]) -> str:
    if _blank(raw):
        return "PUBLIC"
    v = raw.strip().upper()
    if v in VISIBILITIES:
        return v
    _err("visibility", raw, VISIBILITIES, _suggest(v, VISIBILITIES))


def normalize_goal_mode_param(raw: Optional[str]) -> str:
    if _blank(raw):
        return "LIVE"
    v = raw.strip().upper().replace("-", "_")
    if v in GOAL_MODES:
        return v
    _err("goal_mode", raw, list(GOAL_MODES), _suggest(v, list(GOAL_MODES)))


def normalize_tier(raw: Optional[str]) -> Optional[str]:
    if _blank(raw):
        return None
    v = raw.strip().upper()
    if v in TIER_WEIGHT:
        return v
    allowed = list(TIER_WEIGHT)
    _err("rank_goal_tier", raw, allowed, _suggest(v, allowed))


def normalize_role(raw: Optional[str]) -> Optional[str]:
    if _blank(raw):
        return None
    key = raw.strip().lower()
    if key in ROLE_ALIASES:
        return ROLE_ALIASES[key]
    if raw.strip().upper() in ROLES:
        return raw.strip().upper()
    _err("role", raw, ROLES, _suggest(raw.upper(), ROLES))


def normalize_url(raw: Optional[str], param: str) -> Optional[str]:
    if _blank(raw):
        return None
    if URL_RE.match(raw.strip()):
        return raw.strip()
    _err(param, raw, ["http(s) URL"])


def normalize_queue_type(raw: Optional[str]) -> str:
    if _blank(raw):
        return SOLO_QUEUE_TYPE
    allowed = [SOLO_QUEUE_TYPE, FLEX_QUEUE_TYPE]
    if raw.strip() in allowed:
        return raw.strip()
    _err("queue_type", raw, allowed, _suggest(raw.strip(), allowed))


def parse_player_limit(raw: Optional[str]) -> Optional[int]:
    """'all' -> None (every row); anything else is clamped to 1..200, default 50."""
    if _blank(raw):
        return PLAYER_LIMIT_DEFAULT
    if raw.strip().lower() == "all":
        return None
    try:
        n = int(float(raw))
    except (ValueError, OverflowError):
        _err("limit", raw, ["1..200", "all"])
    return min(max(n, 1), PLAYER_LIMIT_MAX)


class CreateLeaderboardBody(BaseModel):
    name: str
    slug: Optional[str] = None
    user_id: Optional[str] = None
    description: Optional[str] = None
    visibility: str = "PUBLIC"
    goal_mode: str = "LIVE"
    race_start_at: Optional[datetime] = None
    race_end_at: Optional[datetime] = None
    lp_goal: Optional[int] = None
    rank_goal_tier: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def _v_name(cls, v):
        if _blank(v):
            _err("name", v, ["non-empty name"])
        return v.strip()

    @field_validator("description", mode="before")
    @classmethod
    def _v_description(cls, v):
        return None if _blank(v) else v.strip()

    @field_validator("slug", mode="before")
    @classmethod
    def _v_slug(cls, v):
        if _blank(v):
            return None
        s = v.strip().lower()
        if not SLUG_RE.match(s):
            _err("slug", v, ["lowercase letters, digits and dashes"], [slugify(v)] if slugify(v) else [])
        return s

    @field_validator("visibility", mode="before")
    @classmethod
    def _v_visibility(cls, v):
        return normalize_visibility(v)

    @field_validator("goal_mode", mode="before")
    @classmethod
    def _v_goal_mode(cls, v):
        return normalize_goal_mode_param(v)

    @field_validator("rank_goal_tier", mode="before")
    @classmethod
    def _v_tier(cls, v):
        return normalize_tier(v)

    @model_validator(mode="after")
    def _v_goal(self):
        if self.goal_mode == "LP_GOAL" and not (self.lp_goal and self.lp_goal > 0):
            _err("lp_goal", self.lp_goal, ["positive LP when goal_mode is LP_GOAL"])
        if self.goal_mode == "RANK_GOAL" and not self.rank_goal_tier:
            _err("rank_goal_tier", self.rank_goal_tier, list(TIER_WEIGHT))
        if self.race_start_at and self.race_end_at and self.race_end_at <= self.race_start_at:
            _err("race_end_at", self.race_end_at.isoformat(), ["after race_start_at"])
        return self

    def row(self) -> dict:
        data = self.model_dump()
        data["slug"] = self.slug or f"{slugify(self.name) or 'leaderboard'}-{random_suffix()}"
        return data


class AddPlayerBody(BaseModel):
    riot_id: str
    role: Optional[str] = None
    twitch_url: Optional[str] = None
    twitter_url: Optional[str] = None

    @field_validator("riot_id", mode="before")
    @classmethod
    def _v_riot_id(cls, v):
        try:
            name, tag = parse_riot_id(v if isinstance(v, str) else "")
        except ValueError as ex:
            _err("riot_id", v, [str(ex)])
        return f"{name}#{tag}"

    @field_validator("role", mode="before")
    @classmethod
    def _v_role(cls, v):
        return normalize_role(v)

    @field_validator("twitch_url", mode="before")
    @classmethod
    def _v_twitch(cls, v):
        return normalize_url(v, "twitch_url")

    @field_validator("twitter_url", mode="before")
    @classmethod
    def _v_twitter(cls, v):
        return normalize_url(v, "twitter_url")

    @property
    def game_name(self) -> str:
        return parse_riot_id(self.riot_id)[0]

    @property
    def tag_line(self) -> str:
        return parse_riot_id(self.riot_id)[1]


class RevalidateBody(BaseModel):
    lb_ids: Optional[List[str]] = None


class LpRepairBody(BaseModel):
    puuid: str
    wrong_match_id: str
    recorded_at: datetime
    queue_type: str = SOLO_QUEUE_TYPE

    @field_validator("puuid", "wrong_match_id", mode="before")
    @classmethod
    def _v_required(cls, v, info):
        if _blank(v):
            _err(info.field_name, v, ["non-empty string"])
        return v.strip()

    @field_validator("queue_type", mode="before")
    @classmethod
    def _v_queue(cls, v):
        return normalize_queue_type(v)


class PuuidRepairBody(BaseModel):
    game_name: Optional[str] = None
    tag_line: Optional[str] = None
    candidate_puuid: Optional[str] = None

    @field_validator("game_name", "tag_line", "candidate_puuid", mode="before")
    @classmethod
    def _v_optional(cls, v):
        return None if _blank(v) else str(v).strip()


class RefreshViewsBody(BaseModel):
    views: Optional[List[str]] = None
    analyze_after: bool = True
