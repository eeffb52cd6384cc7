# riot/rate_limit.py
import time
from collections import deque
from threading import Lock
from typing import Callable, Deque, Dict


class MultiLimiter:
    """
    Enforces both: ≤per_sec in any 1s window AND ≤per_2min in any 120s window,
    keyed by platform host ('na1') or routing region ('americas').
    Defaults match a development key's application limits.
    """
    def __init__(
        self,
        per_sec: int = 20,
        per_2min: int = 100,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.per_sec = per_sec
        self.per_2min = per_2min
        self._clock = clock
        self._sleep = sleep
        self._sec: Dict[str, Deque[float]] = {}
        self._long: Dict[str, Deque[float]] = {}
        self._lock = Lock()

    def _wait_time(self, key: str, now: float) -> float:
        dq1 = self._sec.setdefault(key, deque())
        dq2 = self._long.setdefault(key, deque())
        while dq1 and dq1[0] <= now - 1.0:
            dq1.popleft()
        while dq2 and dq2[0] <= now - 120.0:
            dq2.popleft()

        wait = 0.0
        if len(dq1) >= self.per_sec:
            wait = max(wait, dq1[0] + 1.0 - now)
        if len(dq2) >= self.per_2min:
            wait = max(wait, dq2[0] + 120.0 - now)
        return wait

    def acquire(self, key: str) -> float:
        """Block until a request on `key` fits both windows. Returns seconds slept."""
        key = key.lower()
        slept = 0.0
        while True:
            with self._lock:
                now = self._clock()
                wait = self._wait_time(key, now)
                if wait <= 0:
                    self._sec[key].append(now)
                    self._long[key].append(now)
                    return slept
            self._sleep(wait)
            slept += wait

    @staticmethod
    def key_for_platform(platform_host: str) -> str:
        # league-v4 / summoner-v4 limits are per platform host (na1/euw1/kr/...)
        return platform_host.lower()

    @staticmethod
    def key_for_routing(routing: str) -> str:
        # match-v5 / account-v1 limits are per routing region (americas/europe/asia/sea)
        return routing.lower()
