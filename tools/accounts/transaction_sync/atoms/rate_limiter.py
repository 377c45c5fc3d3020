"""
Rate Limiter Atom - Per-key request throttle

Enforces a minimum spacing between requests and a maximum number of
requests per rolling 24 hour window, each tracked per logical key (an
email address, an account id). The check and the increment happen in one
synchronous call, so no other coroutine can interleave between them.

Part of Layer 1 Atoms - Single-purpose, pure functions.
"""

import logging
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional

logger = logging.getLogger(__name__)

DAY_SECONDS = 24 * 60 * 60


class RateLimiter:
    """
    In-process "one request per interval, N per day" gate.

    Args:
        min_interval: Minimum seconds between allowed requests (default 60)
        max_per_day: Maximum allowed requests per rolling 24h (default 5)
        clock: Returns the current time in seconds; injectable for tests

    Example:
        >>> limiter = RateLimiter()
        >>> limiter.check_and_increment('acc_1')
        {'can_send': True, 'remaining_attempts': 4, 'next_allowed_at': None}
        >>> limiter.check_and_increment('acc_1')['can_send']
        False
    """

    def __init__(self, min_interval: float = 60, max_per_day: int = 5,
                 clock: Callable[[], float] = time.time):
        self.min_interval = min_interval
        self.max_per_day = max_per_day
        self.clock = clock
        self._requests: Dict[str, Deque[float]] = {}

    def _window(self, key: str, now: float) -> Deque[float]:
        requests = self._requests.setdefault(key, deque())
        while requests and now - requests[0] >= DAY_SECONDS:
            requests.popleft()
        return requests

    def check_and_increment(self, key: str) -> Dict[str, Any]:
        """
        Decide whether a request for ``key`` may proceed and record it if so.

        Returns:
            {
                'can_send': bool,
                'remaining_attempts': int,    # left in the rolling day
                'next_allowed_at': float|None # epoch seconds when blocked
            }
        """
        now = self.clock()
        requests = self._window(key, now)

        if requests and now - requests[-1] < self.min_interval:
            return {
                'can_send': False,
                'remaining_attempts': max(0, self.max_per_day - len(requests)),
                'next_allowed_at': requests[-1] + self.min_interval,
            }

        if len(requests) >= self.max_per_day:
            logger.info(f"Daily limit reached for {key}")
            return {
                'can_send': False,
                'remaining_attempts': 0,
                'next_allowed_at': requests[0] + DAY_SECONDS,
            }

        requests.append(now)
        return {
            'can_send': True,
            'remaining_attempts': self.max_per_day - len(requests),
            'next_allowed_at': None,
        }

    def time_until_next_request(self, key: str) -> float:
        """Seconds until the spacing window for ``key`` elapses (0 when free)."""
        requests = self._requests.get(key)
        if not requests:
            return 0
        elapsed = self.clock() - requests[-1]
        if elapsed >= self.min_interval:
            return 0
        return self.min_interval - elapsed

    def clear(self, key: Optional[str] = None) -> None:
        """Forget history for one key, or for every key when ``key`` is None."""
        if key is None:
            self._requests.clear()
        else:
            self._requests.pop(key, None)
