# riot/regions.py
from typing import Optional

# platform host -> routing region
PLATFORM_TO_ROUTING = {
    # AMERICAS
    "na1": "americas", "br1": "americas", "la1": "americas", "la2": "americas",
    # EUROPE
    "euw1": "europe", "eun1": "europe", "tr1": "europe", "ru": "europe",
    # ASIA
    "kr": "asia", "jp1": "asia",
    # SEA
    "oc1": "sea", "ph2": "sea", "sg2": "sea", "th2": "sea", "tw2": "sea", "vn2": "sea",
}
ROUTING_VALUES = {"americas", "europe", "asia", "sea"}

# account-v1 is served from any routing cluster; americas is closest to the NA ladder
ACCOUNT_ROUTING = "americas"


def resolve_routing(value: Optional[str]) -> str:
    v = (value or "").lower()
    if v in ROUTING_VALUES:
        return v
    return PLATFORM_TO_ROUTING.get(v, "americas")


def platform_from_match_id(match_id: Optional[str]) -> Optional[str]:
    # "NA1_5365324203" -> "na1"
    if not match_id or "_" not in match_id:
        return None
    prefix = match_id.split("_", 1)[0].strip().lower()
    return prefix if prefix in PLATFORM_TO_ROUTING else None


def routing_for_match_id(match_id: Optional[str]) -> Optional[str]:
    platform = platform_from_match_id(match_id)
    if platform is None:
        return None
    return PLATFORM_TO_ROUTING[platform]
