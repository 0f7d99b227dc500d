from __future__ import annotations

import math
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional, Protocol, Tuple

from campuslink.logging import get_logger
from campuslink.service.errors import RateLimitedError

logger = get_logger(__name__)

_SWEEP_EVERY = 1000


class RateLimitStore(Protocol):
    async def check_sliding_window(
        self, key: str, limit: int, window_seconds: int
    ) -> Tuple[bool, int]: ...


class MemoryRateLimitStore:
    """Process-local sliding-window attempt log.

    State lives in this process only; run several server instances behind a
    shared RedisCache instead.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._attempts: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()
        self._hits_since_sweep = 0

    def _prune(self, attempts: Deque[float], now: float, window_seconds: int) -> None:
        while attempts and now - attempts[0] >= window_seconds:
            attempts.popleft()

    def _sweep(self, now: float, window_seconds: int) -> None:
        for key in list(self._attempts):
            attempts = self._attempts[key]
            self._prune(attempts, now, window_seconds)
            if not attempts:
                del self._attempts[key]

    async def check_sliding_window(
        self, key: str, limit: int, window_seconds: int
    ) -> Tuple[bool, int]:
        now = self._clock()
        with self._lock:
            self._hits_since_sweep += 1
            if self._hits_since_sweep >= _SWEEP_EVERY:
                self._hits_since_sweep = 0
                self._sweep(now, window_seconds)
            attempts = self._attempts.setdefault(key, deque())
            self._prune(attempts, now, window_seconds)
            if len(attempts) >= limit:
                retry_after = math.ceil(attempts[0] + window_seconds - now)
                return False, max(retry_after, 1)
            attempts.append(now)
            return True, 0

    def reset(self) -> None:
        with self._lock:
            self._attempts.clear()


class SensitiveOpLimiter:
    """Bounded attempts per (client address, subject, operation class) per window."""

    def __init__(
        self,
        store: RateLimitStore,
        *,
        max_attempts: int = 5,
        window_seconds: int = 15 * 60,
    ) -> None:
        self.store = store
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds

    @staticmethod
    def key_for(client_ip: Optional[str], subject_id: Optional[str], op_class: str) -> str:
        return f"{client_ip or 'unknown'}-{subject_id or 'anonymous'}-{op_class}"

    async def hit(
        self, client_ip: Optional[str], subject_id: Optional[str], op_class: str
    ) -> None:
        """Record one attempt, raising RateLimitedError once the budget is spent."""
        key = self.key_for(client_ip, subject_id, op_class)
        allowed, retry_after = await self.store.check_sliding_window(
            key, self.max_attempts, self.window_seconds
        )
        if not allowed:
            logger.warning(
                "sensitive_op_rate_limited",
                op_class=op_class,
                subject_id=subject_id,
                retry_after=retry_after,
            )
            raise RateLimitedError(
                retry_after=retry_after, detail={"retryAfter": retry_after}
            )
