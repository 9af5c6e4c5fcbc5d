"""Exponential retry backoff with jitter and a one hour ceiling."""

import random
from datetime import datetime, timedelta, timezone

MAX_BACKOFF_MS = 3_600_000
MAX_JITTER = 0.3

# 2**22 already exceeds the ceiling for any backoff_ms >= 1
_MAX_EXPONENT = 22


def compute_backoff_ms(
    attempt: int, backoff_ms: int, rng: random.Random | None = None
) -> float:
    """Delay before retry number ``attempt``.

    ``backoff_ms * 2**attempt`` plus up to 30% random jitter, capped at
    MAX_BACKOFF_MS.
    """
    rng = rng or random
    exponent = min(max(attempt, 0), _MAX_EXPONENT)
    jitter = rng.random() * MAX_JITTER
    delay = backoff_ms * (2**exponent) * (1 + jitter)
    return min(delay, MAX_BACKOFF_MS)


def next_retry_at(
    attempt: int,
    backoff_ms: int,
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now + timedelta(milliseconds=compute_backoff_ms(attempt, backoff_ms, rng))
