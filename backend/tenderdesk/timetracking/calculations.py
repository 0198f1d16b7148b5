"""Pure time calculations for snapshot creation.

Elapsed time for a live session is resolved by an ordered tuple of
strategies. Each returns None when it cannot produce a positive value;
the first non-None result wins. The last strategy always answers.
"""

import math
from datetime import datetime, timedelta
from typing import Callable, NamedTuple

from tenderdesk.timetracking.models import CalculationMethod, LiveSession


class ElapsedStrategy(NamedTuple):
    method: CalculationMethod
    compute: Callable[[LiveSession, datetime, tuple[int, int]], int | None]


def reported_total(session: LiveSession, now: datetime, reset_time: tuple[int, int]) -> int | None:
    if session.total_seconds and session.total_seconds > 0:
        return int(session.total_seconds)
    return None


def since_session_start(session: LiveSession, now: datetime, reset_time: tuple[int, int]) -> int | None:
    if session.session_start is None:
        return None
    elapsed = int((now - session.session_start).total_seconds())
    return elapsed if elapsed > 0 else None


def reported_duration(session: LiveSession, now: datetime, reset_time: tuple[int, int]) -> int | None:
    # Writer reports duration in milliseconds
    if session.session_duration_ms and session.session_duration_ms > 0:
        return int(session.session_duration_ms / 1000)
    return None


def since_daily_reset(session: LiveSession, now: datetime, reset_time: tuple[int, int]) -> int:
    return max(0, int((now - last_reset_before(now, reset_time)).total_seconds()))


ELAPSED_STRATEGIES: tuple[ElapsedStrategy, ...] = (
    ElapsedStrategy("firebase_direct", reported_total),
    ElapsedStrategy("calculated_from_start", since_session_start),
    ElapsedStrategy("session_duration", reported_duration),
    ElapsedStrategy("daily_reset_estimate", since_daily_reset),
)


def resolve_elapsed_seconds(
    session: LiveSession,
    now: datetime,
    reset_time: tuple[int, int],
    strategies: tuple[ElapsedStrategy, ...] = ELAPSED_STRATEGIES,
) -> tuple[int, CalculationMethod]:
    """Return (elapsed seconds >= 0, name of the strategy that produced it)."""
    for strategy in strategies:
        seconds = strategy.compute(session, now, reset_time)
        if seconds is not None:
            return max(0, seconds), strategy.method
    return 0, strategies[-1].method


def last_reset_before(now: datetime, reset_time: tuple[int, int]) -> datetime:
    """Most recent occurrence of the daily reset time at or before `now`."""
    hour, minute = reset_time
    reset = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if reset > now:
        reset -= timedelta(days=1)
    return reset


def start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def local_date(dt: datetime) -> str:
    """YYYY-MM-DD in the timezone `dt` carries."""
    return dt.strftime("%Y-%m-%d")


def is_same_local_day(timestamp: datetime | None, now: datetime) -> bool:
    if timestamp is None:
        return False
    if now.tzinfo is not None and timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone(now.tzinfo)
    return timestamp.date() == now.date()


def work_percentage(total_seconds: int, workday_minutes: int = 480) -> int:
    """Share of the workday completed, whole minutes only, rounded half up, capped at 100."""
    if workday_minutes <= 0:
        raise ValueError(f"Workday minutes must be positive, got {workday_minutes}")
    minutes = max(0, total_seconds) // 60
    return min(100, math.floor(minutes / workday_minutes * 100 + 0.5))


def format_duration(total_seconds: int) -> str:
    """Format seconds as HH:MM:SS (hours may exceed 24)."""
    total_seconds = max(0, int(total_seconds))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"
