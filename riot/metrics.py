# riot/metrics.py
from __future__ import annotations
import time
from collections import Counter, defaultdict, deque
from threading import Lock
from typing import Deque, Dict, Tuple

_WINDOW_120S = 120.0


class Metrics:
    """
    Thread-safe request counters for the Riot client.
    Tracks requests per (scope, key, endpoint) over a 120s window plus
    totals for requests, 429s, errors and refreshed players.
    - scope: 'platform' (na1/euw1/kr/...) or 'routing' (americas/europe/asia/sea)
    - endpoint: 'league', 'summoner', 'account', 'matchlist', 'match', 'timeline', ...
    """
    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._lock = Lock()
        self._events: Dict[Tuple[str, str, str], Deque[float]] = defaultdict(deque)
        self._totals: Counter = Counter()

    def record_request(self, scope: str, key: str, endpoint: str):
        k = (scope, key.lower(), endpoint)
        with self._lock:
            self._events[k].append(self._clock())
            self._totals[f"req::{scope}::{key.lower()}::{endpoint}"] += 1

    def record_429(self, scope: str, key: str, endpoint: str):
        with self._lock:
            self._totals[f"429::{scope}::{key.lower()}::{endpoint}"] += 1

    def record_error(self, scope: str, key: str, endpoint: str):
        with self._lock:
            self._totals[f"err::{scope}::{key.lower()}::{endpoint}"] += 1

    def record_player(self, ok: bool):
        with self._lock:
            self._totals["players_ok" if ok else "players_failed"] += 1

    def total(self, prefix: str) -> int:
        with self._lock:
            return sum(v for k, v in self._totals.items() if k.startswith(prefix))

    def _prune(self, now: float):
        cutoff = now - _WINDOW_120S
        for dq in self._events.values():
            while dq and dq[0] < cutoff:
                dq.popleft()

    def summary(self) -> str:
        with self._lock:
            now = self._clock()
            self._prune(now)
            windows = {k: len(dq) for k, dq in self._events.items()}
            totals = dict(self._totals)

        by_scope: Dict[Tuple[str, str], Counter] = defaultdict(Counter)
        for (scope, key, ep), n in windows.items():
            by_scope[(scope, key)][ep] += n

        lines = ["=== riot pacing ==="]
        for (scope, key), eps in sorted(by_scope.items()):
            tot = sum(eps.values())
            lines.append(f"{scope}:{key} -> {tot} req, {tot / _WINDOW_120S:.2f}/s (120s window)")
            for ep in sorted(eps):
                lines.append(f"  - {ep:<9} {eps[ep]}")
        for k, v in sorted(totals.items()):
            if not k.startswith("req::"):
                lines.append(f"{k}={v}")
        return "\n".join(lines)
