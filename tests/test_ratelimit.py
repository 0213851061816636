"""Tests for the sliding-window write limiter."""

from __future__ import annotations

from vaultsync.api.ratelimit import SlidingWindow

NOW = 10_000.0


def test_allows_until_limit_then_blocks():
    limiter = SlidingWindow(max_requests=3, window_seconds=3600)
    window: list = []

    for offset in (0, 10, 20):
        decision = limiter.check(window, NOW + offset)
        assert decision.allowed
        window = limiter.record(decision.window, NOW + offset)

    blocked = limiter.check(window, NOW + 30)
    assert not blocked.allowed
    assert blocked.retry_after == 3600 - 30


def test_old_entries_expire():
    limiter = SlidingWindow(max_requests=3, window_seconds=3600)
    window = [NOW - 4000, NOW - 3700, NOW - 100]

    decision = limiter.check(window, NOW)

    assert decision.allowed
    assert decision.window == [NOW - 100]


def test_entry_exactly_at_cutoff_has_expired():
    limiter = SlidingWindow(max_requests=1, window_seconds=60)

    assert limiter.check([NOW - 60], NOW).allowed
    assert not limiter.check([NOW - 59.5], NOW).allowed


def test_retry_after_is_at_least_one_second():
    limiter = SlidingWindow(max_requests=1, window_seconds=60)

    decision = limiter.check([NOW - 59.99], NOW)

    assert decision.retry_after == 1


def test_serialization_tolerates_garbage():
    assert SlidingWindow.load(SlidingWindow.dump([1.0, 2.5])) == [1.0, 2.5]
    assert SlidingWindow.load(None) == []
    assert SlidingWindow.load("not json") == []
    assert SlidingWindow.load('{"a": 1}') == []
    assert SlidingWindow.load('[1, "x", 2]') == [1.0, 2.0]
