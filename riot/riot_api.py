# riot/riot_api.py
import random
import time
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote

import httpx

from util.logging import setup_logger

from .metrics import Metrics
from .rate_limit import MultiLimiter
from .regions import ACCOUNT_ROUTING, resolve_routing, routing_for_match_id

log = setup_logger("riot")

RETRYABLE_STATUS = {408, 429}


class RiotApiError(Exception):
    def __init__(self, status: Optional[int], url: str, body: str = ""):
        self.status = status
        self.url = url
        self.body = body
        super().__init__(f"Riot {status}: {body[:200]}" if status else f"Riot request failed: {body[:200]}")


class RiotRateLimited(RiotApiError):
    pass


def _q(value: str) -> str:
    return quote(value, safe="")


class RiotClient:
    """
    platform = platform host (e.g., na1, euw1, kr)
    routing  = routing region (e.g., americas, europe, asia, sea)

    League/Summoner endpoints use 'platform'.
    Match v5 endpoints use 'routing' (or the routing implied by the match id).
    Account v1 is global and always goes through americas.
    """
    def __init__(
        self,
        api_key: str,
        platform: str = "na1",
        routing: Optional[str] = None,
        timeout: float = 15.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        limiter: Optional[MultiLimiter] = None,
        metrics: Optional[Metrics] = None,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not api_key:
            raise RuntimeError("RIOT_API_KEY is not set")
        self.api_key = api_key
        self.platform = platform.lower()
        self.routing = resolve_routing(routing or self.platform)
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.limiter = limiter
        self.metrics = metrics or Metrics()
        self._sleep = sleep
        self.client = httpx.Client(timeout=timeout, transport=transport)

    def close(self):
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _retry_delay(self, r: httpx.Response, attempt: int) -> float:
        ra = r.headers.get("Retry-After")
        if ra and ra.strip().isdigit() and int(ra) > 0:
            return float(int(ra))
        delay = self.retry_delay * (2 ** attempt)
        if r.status_code == 429:
            delay += random.random()  # up to 1s jitter
        return delay

    def _get(self, url: str, params: Optional[Dict[str, Any]] = None,
             scope: str = "platform", key: str = "", endpoint: str = "") -> Any:
        headers = {"X-Riot-Token": self.api_key, "User-Agent": "cwf-lol/1.0"}
        key = key or self.platform
        for attempt in range(self.max_retries + 1):
            if self.limiter is not None:
                self.limiter.acquire(key)
            try:
                r = self.client.get(url, params=params, headers=headers)
            except httpx.TransportError as ex:
                self.metrics.record_error(scope, key, endpoint)
                if attempt >= self.max_retries:
                    raise RiotApiError(None, url, repr(ex)) from ex
                delay = self.retry_delay * (2 ** attempt)
                log.warning(f"network error url={url} ({ex!r}); retrying in {delay:.1f}s "
                            f"(attempt {attempt + 1}/{self.max_retries + 1})")
                self._sleep(delay)
                continue

            self.metrics.record_request(scope, key, endpoint)
            if r.is_success:
                return r.json()

            status = r.status_code
            if status == 429:
                self.metrics.record_429(scope, key, endpoint)
            retryable = status in RETRYABLE_STATUS or 500 <= status < 600
            if retryable and attempt < self.max_retries:
                delay = self._retry_delay(r, attempt)
                log.warning(f"{status} url={url}; retrying in {delay:.1f}s "
                            f"(attempt {attempt + 1}/{self.max_retries + 1})")
                self._sleep(delay)
                continue

            self.metrics.record_error(scope, key, endpoint)
            body = r.text[:200]
            if status in (401, 403):
                log.error(f"{status} url={url} body={body}")
            if status == 429:
                raise RiotRateLimited(status, url, "Rate limit exceeded. Please try again later.")
            raise RiotApiError(status, url, body)

        raise RiotApiError(None, url, "exhausted retries")  # pragma: no cover

    def _platform_url(self, path: str) -> str:
        return f"https://{self.platform}.api.riotgames.com{path}"

    def _routing_url(self, routing: str, path: str) -> str:
        return f"https://{routing}.api.riotgames.com{path}"

    # --- Account v1 (global) ---
    def get_account_by_riot_id(self, game_name: str, tag_line: str) -> Dict[str, Any]:
        url = self._routing_url(ACCOUNT_ROUTING, f"/riot/account/v1/accounts/by-riot-id/{_q(game_name)}/{_q(tag_line)}")
        return self._get(url, scope="routing", key=ACCOUNT_ROUTING, endpoint="account")

    def get_account_by_puuid(self, puuid: str) -> Dict[str, Any]:
        url = self._routing_url(ACCOUNT_ROUTING, f"/riot/account/v1/accounts/by-puuid/{_q(puuid)}")
        return self._get(url, scope="routing", key=ACCOUNT_ROUTING, endpoint="account")

    def resolve_puuid(self, game_name: str, tag_line: str) -> str:
        data = self.get_account_by_riot_id(game_name, tag_line)
        puuid = (data or {}).get("puuid")
        if not puuid:
            raise RiotApiError(None, "account/by-riot-id", "No puuid returned from Riot")
        return puuid

    # --- Summoner (platform host) ---
    def get_summoner_by_puuid(self, puuid: str) -> Dict[str, Any]:
        url = self._platform_url(f"/lol/summoner/v4/summoners/by-puuid/{_q(puuid)}")
        return self._get(url, endpoint="summoner")

    # --- League (platform host) ---
    def get_league_entries_by_puuid(self, puuid: str) -> List[Dict[str, Any]]:
        url = self._platform_url(f"/lol/league/v4/entries/by-puuid/{_q(puuid)}")
        return self._get(url, endpoint="league") or []

    def get_challenger_entries(self, queue: str = "RANKED_SOLO_5x5") -> List[Dict[str, Any]]:
        url = self._platform_url(f"/lol/league/v4/challengerleagues/by-queue/{queue}")
        return (self._get(url, endpoint="league") or {}).get("entries", [])

    def get_grandmaster_entries(self, queue: str = "RANKED_SOLO_5x5") -> List[Dict[str, Any]]:
        url = self._platform_url(f"/lol/league/v4/grandmasterleagues/by-queue/{queue}")
        return (self._get(url, endpoint="league") or {}).get("entries", [])

    # --- Match v5 (routing region) ---
    def get_match_ids_by_puuid(
        self,
        puuid: str,
        queue: Optional[int] = None,
        start: int = 0,
        count: int = 20,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
        type_: Optional[str] = None,
    ) -> List[str]:
        """
        GET /lol/match/v5/matches/by-puuid/{puuid}/ids?queue=&start=&count=&startTime=&endTime=&type=
        """
        url = self._routing_url(self.routing, f"/lol/match/v5/matches/by-puuid/{_q(puuid)}/ids")
        params: Dict[str, Any] = {"start": start, "count": count}
        if queue is not None:
            params["queue"] = queue
        if start_time is not None:
            params["startTime"] = start_time
        if end_time is not None:
            params["endTime"] = end_time
        if type_:
            params["type"] = type_
        return self._get(url, params=params, scope="routing", key=self.routing, endpoint="matchlist") or []

    def _match_routing(self, match_id: str, routing: Optional[str]) -> str:
        return routing or routing_for_match_id(match_id) or self.routing

    def get_match(self, match_id: str, routing: Optional[str] = None) -> Dict[str, Any]:
        routing = self._match_routing(match_id, routing)
        url = self._routing_url(routing, f"/lol/match/v5/matches/{_q(match_id)}")
        return self._get(url, scope="routing", key=routing, endpoint="match")

    def get_timeline(self, match_id: str, routing: Optional[str] = None) -> Dict[str, Any]:
        routing = self._match_routing(match_id, routing)
        url = self._routing_url(routing, f"/lol/match/v5/matches/{_q(match_id)}/timeline")
        return self._get(url, scope="routing", key=routing, endpoint="timeline")
