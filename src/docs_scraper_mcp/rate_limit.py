"""Quota tracking for the GitHub REST API.

The tracker is fed from ``X-RateLimit-*`` response headers and answers
"exhausted?" / "low?" before the fetcher spends another call.  One tracker
belongs to one credential; the fetcher receives it as a dependency.
"""

import math
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Mapping

_LOW_THRESHOLD = 5


@dataclass
class RateLimitInfo:
    limit: int
    remaining: int
    reset: int  # unix timestamp
    updated_at: float


class RateLimitTracker:
    """Remaining-quota / reset-time tracker (last writer wins)."""

    def __init__(self) -> None:
        self._info: RateLimitInfo | None = None

    @property
    def info(self) -> RateLimitInfo | None:
        return self._info

    def update_from_headers(self, headers: Mapping[str, str]) -> None:
        """Update from response headers; partial or malformed headers are ignored."""
        limit = headers.get("x-ratelimit-limit")
        remaining = headers.get("x-ratelimit-remaining")
        reset = headers.get("x-ratelimit-reset")
        if limit is None or remaining is None or reset is None:
            return
        try:
            self._info = RateLimitInfo(
                limit=int(limit),
                remaining=int(remaining),
                reset=int(reset),
                updated_at=time.time(),
            )
        except ValueError:
            return

    def _window_open(self) -> bool:
        """True while the tracked window has not reset yet."""
        return self._info is not None and self._info.reset > time.time()

    def is_exhausted(self) -> bool:
        return self._window_open() and self._info.remaining <= 0

    def is_low(self, threshold: int = _LOW_THRESHOLD) -> bool:
        return self._window_open() and self._info.remaining < threshold

    @property
    def reset_at(self) -> datetime | None:
        if self._info is None:
            return None
        return datetime.fromtimestamp(self._info.reset, tz=UTC)

    def seconds_until_reset(self) -> float:
        if self._info is None:
            return 0.0
        return max(0.0, self._info.reset - time.time())

    def status_message(self) -> str:
        if self._info is None:
            return "Rate limit info not available"

        minutes = math.ceil(self.seconds_until_reset() / 60)
        if self.is_exhausted():
            return f"Rate limit exhausted. Resets in {minutes} minutes."
        if self.is_low():
            return (
                f"Rate limit low: {self._info.remaining}/{self._info.limit} "
                f"remaining. Resets in {minutes} minutes."
            )
        return f"Rate limit: {self._info.remaining}/{self._info.limit} remaining"
