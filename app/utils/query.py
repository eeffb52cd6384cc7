from typing import Optional, Tuple

# Allowed sort keys for the champion table
_ALLOWED_SORT_KEYS = {"winrate", "games", "kda", "avgcs"}
_DEFAULT_SORT = ("winrate", "desc")


def parse_sort(sort: Optional[str]) -> Tuple[str, str]:
    """
    Returns (key, dir) where key ∈ _ALLOWED_SORT_KEYS and dir ∈ {'asc','desc'}.
    Supports '-key' for descending.
    Defaults to ('winrate','desc').
    """
    if not sort or not isinstance(sort, str):
        return _DEFAULT_SORT
    s = sort.strip().lower().replace("_", "")
    direction = "asc"
    if s.startswith("-"):
        direction = "desc"
        s = s[1:]
    if s not in _ALLOWED_SORT_KEYS:
        return _DEFAULT_SORT
    return (s, direction)


def champion_sort_key(key: str):
    """Row -> comparable tuple; primary column first, then the stable tie-breakers."""
    primary = {
        "winrate": lambda r: r["winrate_value"],
        "games": lambda r: r["games"],
        "kda": lambda r: r["kda"]["value"],
        "avgcs": lambda r: r["avg_cs"],
    }[key]
    # keep deterministic: games, kda, cs, then champion id
    return lambda r: (primary(r), r["games"], r["kda"]["value"], r["avg_cs"], -r["champion_id"])
