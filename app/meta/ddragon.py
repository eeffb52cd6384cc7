# app/meta/ddragon.py
import os
import threading
import time
from typing import Callable, Dict, Optional

import httpx

from util.logging import setup_logger

log = setup_logger("ddragon")

CDN = "https://ddragon.leagueoflegends.com"
VERSIONS_URL = f"{CDN}/api/versions.json"

VERSION_TTL_S = 12 * 60 * 60
CHAMPIONS_TTL_S = 24 * 60 * 60


def fallback_version() -> str:
    return os.getenv("DDRAGON_VERSION", "15.24.1")


class DDragonCache:
    """Latest patch + champion id -> {id, name}, fetched lazily and kept for hours."""

    def __init__(self, transport: Optional[httpx.BaseTransport] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.version: Optional[str] = None
        self.lang: str = "en_US"
        self.champions: Dict[int, Dict[str, str]] = {}
        self._champions_version: Optional[str] = None
        self._version_at = 0.0
        self._champions_at = 0.0
        self._transport = transport
        self._clock = clock
        self._lock = threading.Lock()

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=10, transport=self._transport)

    def _fetch_versions(self) -> list:
        with self._client() as client:
            r = client.get(VERSIONS_URL)
            r.raise_for_status()
            versions = r.json()
        # newest first; anything else is a broken payload
        if not isinstance(versions, list) or not versions or not all(isinstance(v, str) for v in versions):
            raise ValueError(f"unexpected versions.json payload: {str(versions)[:80]}")
        return versions

    def _fetch_champions(self, version: str) -> Dict[int, Dict[str, str]]:
        with self._client() as client:
            r = client.get(f"{CDN}/cdn/{version}/data/{self.lang}/champion.json")
            r.raise_for_status()
            payload = r.json()
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise ValueError(f"unexpected champion.json payload for {version}")
        # champion.json is keyed by name; "key" holds the numeric id
        return {
            int(meta["key"]): {"id": meta["id"], "name": meta.get("name", meta["id"])}
            for meta in data.values()
        }

    def latest_version(self) -> str:
        """Newest Data Dragon version, else the last one seen, else DDRAGON_VERSION."""
        with self._lock:
            if self.version and self._clock() - self._version_at < VERSION_TTL_S:
                return self.version
        try:
            versions = self._fetch_versions()
        except (httpx.HTTPError, ValueError) as ex:
            log.warning(f"versions.json unavailable: {ex}")
            return self.version or fallback_version()
        with self._lock:
            self.version = versions[0]
            self._version_at = self._clock()
            return self.version

    def champion_map(self, version: Optional[str] = None) -> Dict[int, Dict[str, str]]:
        version = version or self.latest_version()
        with self._lock:
            fresh = self._clock() - self._champions_at < CHAMPIONS_TTL_S
            if self.champions and fresh and self._champions_version == version:
                return self.champions
        try:
            champions = self._fetch_champions(version)
        except (httpx.HTTPError, KeyError, ValueError) as ex:
            log.warning(f"champion.json unavailable for {version}: {ex}")
            return self.champions
        with self._lock:
            self.champions = champions
            self._champions_version = version
            self._champions_at = self._clock()
            return self.champions

    def refresh(self, patch_hint: Optional[str] = None, lang: Optional[str] = None) -> str:
        """Force a refetch. With a hint like '15.24', pick the newest version with that prefix."""
        if lang:
            self.lang = lang
        versions = self._fetch_versions()
        version = next((v for v in versions if patch_hint and v.startswith(patch_hint)), None) or versions[0]
        champions = self._fetch_champions(version)
        now = self._clock()
        with self._lock:
            self.version = version
            self._version_at = now
            self.champions = champions
            self._champions_version = version
            self._champions_at = now
        return version


DD = DDragonCache()
