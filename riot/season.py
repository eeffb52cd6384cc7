# riot/season.py
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional

from util.logging import setup_logger

from .normalize import patch_major

log = setup_logger("season")


@dataclass(frozen=True)
class SeasonInfo:
    season: int
    start: datetime
    end: Optional[datetime]
    source: str  # 'override' | 'table' | 'version'

    @property
    def start_ms(self) -> int:
        return int(self.start.timestamp() * 1000)

    @property
    def start_iso(self) -> str:
        return self.start.isoformat().replace("+00:00", "Z")


def _utc(iso: str) -> datetime:
    dt = datetime.fromisoformat(iso.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


_SEASON_STARTS: List[dict] = [
    {"season": 2024, "start": "2024-01-10T20:00:00Z"},
    {"season": 2025, "start": "2025-01-08T20:00:00Z"},
    {
        "season": 2026,
        "start": "2026-01-08T20:00:00Z",
        "regions": {
            "OCE": "2026-01-08T01:00:00Z", "OC1": "2026-01-08T01:00:00Z",
            "JP": "2026-01-08T03:00:00Z", "JP1": "2026-01-08T03:00:00Z",
            "KR": "2026-01-08T03:00:00Z",
            "CN": "2026-01-08T04:00:00Z",
            "EUNE": "2026-01-08T11:00:00Z", "EUN1": "2026-01-08T11:00:00Z",
            "EUW": "2026-01-08T12:00:00Z", "EUW1": "2026-01-08T12:00:00Z",
            "RU": "2026-01-08T09:00:00Z",
            "TR": "2026-01-08T09:00:00Z", "TR1": "2026-01-08T09:00:00Z",
            "LAS": "2026-01-08T15:00:00Z", "LA2": "2026-01-08T15:00:00Z",
            "BR": "2026-01-08T15:00:00Z", "BR1": "2026-01-08T15:00:00Z",
            "LAN": "2026-01-08T18:00:00Z", "LA1": "2026-01-08T18:00:00Z",
            "NA": "2026-01-08T20:00:00Z", "NA1": "2026-01-08T20:00:00Z",
        },
    },
]


def _season_from_version(dd_version: Optional[str]) -> Optional[int]:
    # patch 16.x ships in 2026
    major = patch_major(dd_version)
    if not major:
        return None
    return 2010 + major


def season_table(region: Optional[str] = None) -> List[SeasonInfo]:
    code = (region or "").upper()
    rows = sorted(_SEASON_STARTS, key=lambda r: r["season"])
    out: List[SeasonInfo] = []
    for idx, row in enumerate(rows):
        nxt = rows[idx + 1] if idx + 1 < len(rows) else None
        regions: Dict[str, str] = row.get("regions", {})
        start = regions.get(code) or row["start"]
        out.append(SeasonInfo(
            season=row["season"],
            start=_utc(start),
            end=_utc(nxt["start"]) if nxt else None,
            source="table",
        ))
    return out


def current_season_info(
    now: Optional[datetime] = None,
    dd_version: Optional[str] = None,
    region: Optional[str] = None,
) -> SeasonInfo:
    now = now or datetime.now(timezone.utc)

    override = os.getenv("RANKED_SEASON_START")
    if override:
        try:
            return SeasonInfo(season=now.year, start=_utc(override), end=None, source="override")
        except ValueError:
            log.warning(f"Ignoring malformed RANKED_SEASON_START={override!r}")

    table = season_table(region)
    by_date = table[-1]
    for row in table:
        if now >= row.start and (row.end is None or now < row.end):
            by_date = row
            break

    wanted = _season_from_version(dd_version)
    by_version = next((row for row in table if row.season == wanted), None)
    if by_version and by_version.season >= by_date.season:
        return SeasonInfo(by_version.season, by_version.start, by_version.end, "version")
    return by_date


def season_start(
    now: Optional[datetime] = None,
    dd_version: Optional[str] = None,
    region: Optional[str] = None,
) -> datetime:
    return current_season_info(now=now, dd_version=dd_version, region=region).start
