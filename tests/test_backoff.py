"""Tests for the retry backoff policy."""

import random
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from cadence.services.backoff import MAX_BACKOFF_MS, compute_backoff_ms, next_retry_at


def _fixed_rng(value: float) -> MagicMock:
    rng = MagicMock()
    rng.random.return_value = value
    return rng


class TestComputeBackoff:
    """Tests for compute_backoff_ms."""

    def test_no_jitter_is_pure_exponential(self):
        """Test that zero jitter yields backoff_ms * 2**attempt."""
        rng = _fixed_rng(0.0)
        assert compute_backoff_ms(0, 1000, rng) == 1000
        assert compute_backoff_ms(1, 1000, rng) == 2000
        assert compute_backoff_ms(3, 1000, rng) == 8000

    def test_jitter_adds_at_most_thirty_percent(self):
        """Test that jitter stays within [0, 30%) of the base delay."""
        rng = random.Random(7)
        for attempt in range(5):
            base = 500 * 2**attempt
            delay = compute_backoff_ms(attempt, 500, rng)
            assert base <= delay < base * 1.3

    def test_monotonic_for_moderate_attempts(self):
        """Test that delay is non-decreasing across attempts with worst-case jitter."""
        # Highest jitter on attempt n still stays below the lowest on attempt n+1
        high = _fixed_rng(0.9999)
        low = _fixed_rng(0.0)
        for attempt in range(10):
            assert compute_backoff_ms(attempt, 1000, high) <= compute_backoff_ms(
                attempt + 1, 1000, low
            )

    def test_capped_at_one_hour(self):
        """Test that the delay never exceeds one hour."""
        rng = _fixed_rng(0.2999)
        assert compute_backoff_ms(12, 1000, rng) == MAX_BACKOFF_MS
        assert compute_backoff_ms(30, 60_000, rng) == MAX_BACKOFF_MS

    def test_huge_attempt_does_not_overflow(self):
        """Test that very large attempt counts are clamped, not overflowed."""
        assert compute_backoff_ms(10_000, 1000) == MAX_BACKOFF_MS
        assert compute_backoff_ms(2**40, 1) == MAX_BACKOFF_MS

    def test_negative_attempt_treated_as_zero(self):
        """Test that a negative attempt count behaves like the first attempt."""
        assert compute_backoff_ms(-3, 1000, _fixed_rng(0.0)) == 1000

    def test_default_rng(self):
        """Test that the module-level random source is used by default."""
        delay = compute_backoff_ms(2, 100)
        assert 400 <= delay < 520


class TestNextRetryAt:
    """Tests for next_retry_at."""

    def test_offsets_from_now(self):
        """Test that the retry instant is now plus the computed delay."""
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        retry_at = next_retry_at(2, 1000, now=now, rng=_fixed_rng(0.0))
        assert retry_at == now + timedelta(milliseconds=4000)

    def test_defaults_to_current_time(self):
        """Test that omitting now uses the current UTC time."""
        before = datetime.now(timezone.utc)
        retry_at = next_retry_at(0, 1000, rng=_fixed_rng(0.0))
        assert before + timedelta(seconds=1) <= retry_at
        assert retry_at <= datetime.now(timezone.utc) + timedelta(seconds=1)
