# Carik Bot
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
#
# This file is part of Carik Bot.
#
# Carik Bot is dual-licensed:
#
# 1. Open Source: GNU Affero General Public License v3.0 (AGPL-3.0)
#    You may use, modify, and distribute this file under AGPL-3.0.
#    See LICENSE for the full text.
#
# 2. Commercial: Available from Phoenix Link (Pty) Ltd
#    For proprietary use, SaaS deployment, or enterprise licensing.
#    See LICENSE-ENTERPRISE.md or contact info@phoenixlink.co.za
#
# Contributions require a signed CLA. See COPYRIGHT.md and CLA.md.
"""Per-user query rate limiter.

Two sliding windows per identity: a short one (60 s) and a long one
(3600 s). A query is allowed only if both windows still have room; the
timestamp is recorded in the same locked pass, so two concurrent checks for
one identity cannot both slip through.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger("carik.security.rate_limiter")

MINUTE_WINDOW = 60.0
HOUR_WINDOW = 3600.0

WINDOW_MINUTE = "minute"
WINDOW_HOUR = "hour"


@dataclass
class RateCheck:
    """Result of a rate limit check."""

    allowed: bool
    window: str = ""  # "minute" or "hour" when denied
    retry_after: float = 0.0  # Seconds until the blocking entry expires
    minute_count: int = 0
    hour_count: int = 0


class UserRateLimiter:
    """Sliding-window limiter keyed by identity.

    Timestamps older than the hour window are dropped during each check,
    so no separate sweep is needed.
    """

    def __init__(
        self,
        per_minute: int = 1,
        per_hour: int = 20,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.per_minute = per_minute
        self.per_hour = per_hour
        self._clock = clock
        self._timestamps: dict[str, list[float]] = {}
        self._lock = threading.Lock()

    def _prune(self, identity: str, now: float) -> list[float]:
        """Drop entries outside the hour window. Caller holds the lock."""
        cutoff = now - HOUR_WINDOW
        kept = [t for t in self._timestamps.get(identity, []) if t > cutoff]
        if kept:
            self._timestamps[identity] = kept
        else:
            self._timestamps.pop(identity, None)
        return kept

    def _evaluate(self, entries: list[float], now: float) -> RateCheck:
        minute_entries = [t for t in entries if t > now - MINUTE_WINDOW]
        violations: list[tuple[str, float]] = []

        if len(minute_entries) >= self.per_minute:
            # The oldest entry that must expire before a slot frees up
            blocker = minute_entries[len(minute_entries) - self.per_minute]
            violations.append((WINDOW_MINUTE, blocker + MINUTE_WINDOW - now))

        if len(entries) >= self.per_hour:
            blocker = entries[len(entries) - self.per_hour]
            violations.append((WINDOW_HOUR, blocker + HOUR_WINDOW - now))

        if not violations:
            return RateCheck(
                allowed=True,
                minute_count=len(minute_entries),
                hour_count=len(entries),
            )

        window, retry_after = max(violations, key=lambda v: v[1])
        return RateCheck(
            allowed=False,
            window=window,
            retry_after=max(0.0, retry_after),
            minute_count=len(minute_entries),
            hour_count=len(entries),
        )

    def check_and_record(self, identity: str) -> RateCheck:
        """Check both windows and record the query if it is allowed."""
        identity = str(identity)
        with self._lock:
            now = self._clock()
            entries = self._prune(identity, now)
            result = self._evaluate(entries, now)
            if result.allowed:
                self._timestamps.setdefault(identity, []).append(now)
                result.minute_count += 1
                result.hour_count += 1
            else:
                logger.debug(
                    "Rate limit (%s) for %s: retry in %.1fs",
                    result.window,
                    identity,
                    result.retry_after,
                )
        return result

    def peek(self, identity: str) -> RateCheck:
        """Evaluate without recording."""
        identity = str(identity)
        with self._lock:
            now = self._clock()
            return self._evaluate(self._prune(identity, now), now)

    def remaining(self, identity: str) -> dict[str, int]:
        """Slots left in each window."""
        check = self.peek(identity)
        return {
            WINDOW_MINUTE: max(0, self.per_minute - check.minute_count),
            WINDOW_HOUR: max(0, self.per_hour - check.hour_count),
        }

    def reset(self, identity: str | None = None) -> None:
        """Forget history for one identity, or for everyone."""
        with self._lock:
            if identity is None:
                self._timestamps.clear()
            else:
                self._timestamps.pop(str(identity), None)
