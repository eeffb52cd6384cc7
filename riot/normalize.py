# riot/normalize.py
from typing import Optional, Tuple

SOLO_QUEUE_TYPE = "RANKED_SOLO_5x5"
FLEX_QUEUE_TYPE = "RANKED_FLEX_SR"
RANKED_QUEUE_TYPES = (SOLO_QUEUE_TYPE, FLEX_QUEUE_TYPE)

SOLO_QUEUE_ID = 420
FLEX_QUEUE_ID = 440

_QUEUE_IDS = {SOLO_QUEUE_TYPE: SOLO_QUEUE_ID, FLEX_QUEUE_TYPE: FLEX_QUEUE_ID}

# games shorter than this with no LP movement are remakes
REMAKE_MAX_S = 210
EARLY_SURRENDER_MAX_S = 300


def parse_riot_id(raw: str) -> Tuple[str, str]:
    # "Faker#KR1" -> ("Faker", "KR1")
    parts = (raw or "").strip().split("#")
    if len(parts) != 2 or not parts[0].strip() or not parts[1].strip():
        raise ValueError("Riot ID must be in the format gameName#tagLine")
    return parts[0].strip(), parts[1].strip()


def derive_patch(game_version: str) -> str:
    # "25.17.456.1234" -> "25.17"
    parts = (game_version or "").split(".")
    return ".".join(parts[:2]) if len(parts) >= 2 else game_version


def patch_major(dd_version: Optional[str]) -> Optional[int]:
    if not dd_version:
        return None
    try:
        return int(dd_version.split(".")[0])
    except ValueError:
        return None


def queue_id_for_queue_type(queue_type: Optional[str]) -> Optional[int]:
    return _QUEUE_IDS.get(queue_type or "")


def participant_cs(part: dict) -> int:
    return int((part.get("totalMinionsKilled") or 0) + (part.get("neutralMinionsKilled") or 0))


def game_end_ms(info: dict) -> int:
    end = info.get("gameEndTimestamp")
    if end:
        return int(end)
    return int(info.get("gameStartTimestamp") or 0) + int(info.get("gameDuration") or 0) * 1000


def _finite(value) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if value != value or value in (float("inf"), float("-inf")):
        return None
    return value


def compute_end_type(
    early_surrender: Optional[bool] = None,
    surrender: Optional[bool] = None,
    duration_s: Optional[int] = None,
    lp_change: Optional[float] = None,
) -> str:
    lp = _finite(lp_change)

    if early_surrender is True:
        if duration_s is not None:
            return "REMAKE" if duration_s <= REMAKE_MAX_S else "EARLY_SURRENDER"
        if lp is not None and lp < 0:
            return "EARLY_SURRENDER"
        return "REMAKE"

    if surrender is True:
        return "SURRENDER"

    if duration_s is not None:
        if duration_s <= REMAKE_MAX_S and (lp is None or lp == 0):
            return "REMAKE"
        if duration_s <= EARLY_SURRENDER_MAX_S and lp is not None and lp < 0:
            return "EARLY_SURRENDER"

    return "NORMAL"
