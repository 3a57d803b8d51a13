# Carik Bot
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
#
# This file is part of Carik Bot.
#
# Carik Bot is dual-licensed:
#
# 1. Open Source: GNU Affero General Public License v3.0 (AGPL-3.0)
# 2. Commercial: Available from Phoenix Link (Pty) Ltd
#
# Contributions require a signed CLA. See COPYRIGHT.md and CLA.md.
"""Tests for the per-user sliding-window rate limiter."""

from __future__ import annotations

import threading

import pytest

from carik.security.rate_limiter import WINDOW_HOUR, WINDOW_MINUTE, UserRateLimiter


@pytest.fixture
def limiter(clock) -> UserRateLimiter:
    return UserRateLimiter(per_minute=1, per_hour=20, clock=clock)


class TestMinuteWindow:
    def test_first_query_allowed(self, limiter):
        result = limiter.check_and_record("42")
        assert result.allowed
        assert result.minute_count == 1
        assert result.hour_count == 1

    def test_burst_denied_with_minute_window(self, limiter, clock):
        """N queries inside 60s: only the first passes."""
        assert limiter.check_and_record("42").allowed
        for _ in range(5):
            clock.advance(5)
            result = limiter.check_and_record("42")
            assert not result.allowed
            assert result.window == WINDOW_MINUTE

    def test_retry_after_counts_down(self, limiter, clock):
        limiter.check_and_record("42")
        clock.advance(15)
        result = limiter.check_and_record("42")
        assert result.retry_after == pytest.approx(45)

    def test_window_is_half_open(self, limiter, clock):
        """An entry exactly 60s old no longer counts."""
        limiter.check_and_record("42")
        clock.advance(59)
        assert not limiter.check_and_record("42").allowed
        clock.advance(1)
        assert limiter.check_and_record("42").allowed

    def test_denied_query_not_recorded(self, limiter, clock):
        limiter.check_and_record("42")
        clock.advance(30)
        limiter.check_and_record("42")  # denied
        clock.advance(30)
        # Only the first entry existed, and it has just expired
        assert limiter.check_and_record("42").allowed

    def test_identities_are_independent(self, limiter):
        assert limiter.check_and_record("a").allowed
        assert limiter.check_and_record("b").allowed
        assert not limiter.check_and_record("a").allowed


class TestHourWindow:
    def test_twenty_first_query_denied(self, limiter, clock):
        """20 queries spaced 61s apart fill the hour; the 21st is denied."""
        for _ in range(20):
            assert limiter.check_and_record("42").allowed
            clock.advance(61)
        result = limiter.check_and_record("42")
        assert not result.allowed
        assert result.window == WINDOW_HOUR
        # Oldest entry was 20 * 61 = 1220s ago
        assert result.retry_after == pytest.approx(3600 - 1220)

    def test_hour_frees_after_oldest_expires(self, limiter, clock):
        for _ in range(20):
            limiter.check_and_record("42")
            clock.advance(61)
        clock.advance(3600 - 1220)
        assert limiter.check_and_record("42").allowed

    def test_longer_retry_reported_when_both_windows_full(self, clock):
        limiter = UserRateLimiter(per_minute=2, per_hour=2, clock=clock)
        limiter.check_and_record("42")
        clock.advance(10)
        limiter.check_and_record("42")
        result = limiter.check_and_record("42")
        assert result.window == WINDOW_HOUR
        assert result.retry_after == pytest.approx(3600 - 10)


class TestIntrospection:
    def test_remaining_does_not_record(self, limiter):
        assert limiter.remaining("42") == {WINDOW_MINUTE: 1, WINDOW_HOUR: 20}
        limiter.check_and_record("42")
        assert limiter.remaining("42") == {WINDOW_MINUTE: 0, WINDOW_HOUR: 19}
        assert limiter.remaining("42") == {WINDOW_MINUTE: 0, WINDOW_HOUR: 19}

    def test_reset_one_identity(self, limiter):
        limiter.check_and_record("a")
        limiter.check_and_record("b")
        limiter.reset("a")
        assert limiter.check_and_record("a").allowed
        assert not limiter.check_and_record("b").allowed

    def test_reset_everyone(self, limiter):
        limiter.check_and_record("a")
        limiter.check_and_record("b")
        limiter.reset()
        assert limiter.check_and_record("a").allowed
        assert limiter.check_and_record("b").allowed

    def test_old_entries_pruned(self, limiter, clock):
        limiter.check_and_record("42")
        clock.advance(3601)
        limiter.peek("42")
        assert "42" not in limiter._timestamps


class TestConcurrency:
    def test_parallel_checks_admit_exactly_one(self):
        """Check-then-record is atomic across threads."""
        limiter = UserRateLimiter(per_minute=1, per_hour=20, clock=lambda: 5000.0)
        results = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            results.append(limiter.check_and_record("42").allowed)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert results.count(True) == 1
