"""Tests for the GitHub rate limit tracker."""

import time
from datetime import UTC, datetime

import httpx

from docs_scraper_mcp.rate_limit import RateLimitTracker


def _headers(limit=60, remaining=42, reset_in=600):
    return httpx.Headers(
        {
            "X-RateLimit-Limit": str(limit),
            "X-RateLimit-Remaining": str(remaining),
            "X-RateLimit-Reset": str(int(time.time()) + reset_in),
        }
    )


class TestUpdateFromHeaders:
    def test_no_info_initially(self):
        tracker = RateLimitTracker()
        assert tracker.info is None
        assert not tracker.is_exhausted()
        assert not tracker.is_low()
        assert tracker.reset_at is None
        assert tracker.seconds_until_reset() == 0.0
        assert tracker.status_message() == "Rate limit info not available"

    def test_reads_headers_case_insensitively(self):
        tracker = RateLimitTracker()
        tracker.update_from_headers(_headers(limit=5000, remaining=4999))
        assert tracker.info.limit == 5000
        assert tracker.info.remaining == 4999

    def test_partial_headers_ignored(self):
        tracker = RateLimitTracker()
        tracker.update_from_headers({"x-ratelimit-limit": "60"})
        assert tracker.info is None

    def test_malformed_headers_ignored(self):
        tracker = RateLimitTracker()
        tracker.update_from_headers(_headers(remaining=10))
        tracker.update_from_headers(
            {
                "x-ratelimit-limit": "sixty",
                "x-ratelimit-remaining": "1",
                "x-ratelimit-reset": "0",
            }
        )
        # Previous reading kept
        assert tracker.info.remaining == 10

    def test_last_writer_wins(self):
        tracker = RateLimitTracker()
        tracker.update_from_headers(_headers(remaining=10))
        tracker.update_from_headers(_headers(remaining=3))
        assert tracker.info.remaining == 3


class TestQuotaState:
    def test_exhausted_before_reset(self):
        tracker = RateLimitTracker()
        tracker.update_from_headers(_headers(remaining=0, reset_in=900))
        assert tracker.is_exhausted()
        assert tracker.is_low()
        assert 0 < tracker.seconds_until_reset() <= 900
        assert tracker.status_message() == "Rate limit exhausted. Resets in 15 minutes."

    def test_window_elapsed_clears_exhaustion(self):
        tracker = RateLimitTracker()
        tracker.update_from_headers(_headers(remaining=0, reset_in=-10))
        assert not tracker.is_exhausted()
        assert not tracker.is_low()
        assert tracker.seconds_until_reset() == 0.0

    def test_low_threshold(self):
        tracker = RateLimitTracker()
        tracker.update_from_headers(_headers(limit=60, remaining=4))
        assert tracker.is_low()
        assert not tracker.is_exhausted()
        assert not tracker.is_low(threshold=3)
        assert tracker.status_message().startswith("Rate limit low: 4/60 remaining.")

    def test_healthy_status(self):
        tracker = RateLimitTracker()
        tracker.update_from_headers(_headers(limit=5000, remaining=4000))
        assert not tracker.is_low()
        assert tracker.status_message() == "Rate limit: 4000/5000 remaining"

    def test_reset_at_is_utc(self):
        tracker = RateLimitTracker()
        tracker.update_from_headers(
            {
                "x-ratelimit-limit": "60",
                "x-ratelimit-remaining": "1",
                "x-ratelimit-reset": "1700000000",
            }
        )
        assert tracker.reset_at == datetime.fromtimestamp(1700000000, tz=UTC)
