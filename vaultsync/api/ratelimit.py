"""Sliding-window write limiter keyed by identifier."""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional

logger = logging.getLogger("vaultsync.api.ratelimit")

RATE_LIMIT_MAX = 3
RATE_LIMIT_WINDOW = 3600


@dataclass
class RateLimitDecision:
    """Outcome of checking one identifier's window."""

    allowed: bool
    window: List[float] = field(default_factory=list)  # Already trimmed
    retry_after: Optional[int] = None


class SlidingWindow:
    """Allows ``max_requests`` writes per ``window_seconds``.

    The window itself is stored by the caller (the metadata row), so this
    class only trims, counts and appends.
    """

    def __init__(self, max_requests: int = RATE_LIMIT_MAX, window_seconds: int = RATE_LIMIT_WINDOW) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds

    def check(self, timestamps: List[float], now: float) -> RateLimitDecision:
        cutoff = now - self.window_seconds
        window = sorted(ts for ts in timestamps if ts > cutoff)

        if len(window) >= self.max_requests:
            retry_after = math.ceil(window[0] + self.window_seconds - now)
            return RateLimitDecision(allowed=False, window=window, retry_after=max(1, retry_after))

        return RateLimitDecision(allowed=True, window=window)

    def record(self, window: List[float], now: float) -> List[float]:
        return window + [now]

    @staticmethod
    def load(raw: Optional[str]) -> List[float]:
        """Parse the serialized window; unreadable data counts as empty."""
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Discarding unreadable rate-limit window")
            return []
        if not isinstance(data, list):
            return []
        return [float(ts) for ts in data if isinstance(ts, (int, float))]

    @staticmethod
    def dump(window: List[float]) -> str:
        return json.dumps(window)


__all__ = ["RATE_LIMIT_MAX", "RATE_LIMIT_WINDOW", "RateLimitDecision", "SlidingWindow"]
