# riot/ranks.py
from typing import Iterable, Mapping, Optional, Tuple

TIER_WEIGHT = {
    "CHALLENGER": 10,
    "GRANDMASTER": 9,
    "MASTER": 8,
    "DIAMOND": 7,
    "EMERALD": 6,
    "PLATINUM": 5,
    "GOLD": 4,
    "SILVER": 3,
    "BRONZE": 2,
    "IRON": 1,
}
DIVISION_WEIGHT = {"I": 4, "II": 3, "III": 2, "IV": 1}
APEX_TIERS = {"MASTER", "GRANDMASTER", "CHALLENGER"}

# active ladder slots above each cutoff
CUTOFF_SLOTS = {"CHALLENGER": 300, "GRANDMASTER": 700}


def tier_weight(tier: Optional[str]) -> int:
    if not tier:
        return 0
    return TIER_WEIGHT.get(tier.upper(), 0)


def is_apex(tier: Optional[str]) -> bool:
    return (tier or "").upper() in APEX_TIERS


def rank_sort_key(r: Optional[Mapping]) -> Tuple[int, int, int]:
    if not r:
        return (0, 0, 0)
    tier = tier_weight(r.get("tier"))
    division = DIVISION_WEIGHT.get((r.get("rank") or "").upper(), 0)
    lp = r.get("league_points") or 0
    return (tier, division, lp)


def compare_ranks(a: Optional[Mapping], b: Optional[Mapping]) -> int:
    """Comparator for sorting best rank first (use with functools.cmp_to_key)."""
    ka, kb = rank_sort_key(a), rank_sort_key(b)
    for x, y in zip(ka, kb):
        if x != y:
            return y - x
    return 0


def rank_score(r: Optional[Mapping]) -> int:
    tier, division, lp = rank_sort_key(r)
    division_score = 0 if is_apex((r or {}).get("tier")) else division
    return tier * 10000 + division_score * 1000 + lp


def ladder_lp(tier: Optional[str], division: Optional[str], lp: Optional[int]) -> Optional[int]:
    """
    Position on one continuous LP scale: every division below Master is 100 LP wide,
    apex tiers share Master's floor. Differences between two positions give the LP
    gained or lost across promotions and demotions.
    """
    weight = tier_weight(tier)
    if not weight:
        return None
    lp = lp or 0
    if is_apex(tier):
        return (TIER_WEIGHT["MASTER"] - 1) * 400 + lp
    div = DIVISION_WEIGHT.get((division or "").upper(), 1)
    return (weight - 1) * 400 + (div - 1) * 100 + lp


def format_rank(tier: Optional[str], division: Optional[str] = None, lp: Optional[int] = None) -> str:
    if not tier:
        return "Unranked"
    t = tier.upper()
    show_division = bool(division) and t not in APEX_TIERS
    nice_tier = t[0] + t[1:].lower()
    nice_div = f" {division}" if show_division else ""
    return f"{nice_tier}{nice_div}   {lp or 0} LP"


def cutoff_lp(entries: Iterable[Mapping], slots: int) -> Optional[int]:
    # inactive players hold a ladder spot on Riot's list but not on the public ladder
    active = sorted(
        (int(e.get("leaguePoints") or 0) for e in entries if not e.get("inactive")),
        reverse=True,
    )
    if len(active) < slots:
        return None
    return active[slots - 1]
